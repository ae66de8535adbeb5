"""
Repository pour les sessions a fenetre glissante.

Toutes les transitions (touch, fin de session, balayage) sont des UPDATE
conditionnels portant les deux durees de vie dans la clause WHERE:
une session expiree ne peut jamais etre prolongee par un touch concurrent.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_

from dottir.models.session import Session, SessionEndReason
from dottir.repositories.base import BaseRepository


class SessionRepository(BaseRepository[Session]):
    """
    Repository pour les sessions utilisateur.
    """

    model = Session

    def _alive(self, now: datetime, inactivity_cutoff: datetime):
        """Condition SQL: session non terminee et dans ses deux durees de vie."""
        return and_(
            self.model.revoked_at.is_(None),
            self.model.last_activity_at > inactivity_cutoff,
            or_(
                self.model.absolute_expiry.is_(None),
                self.model.absolute_expiry > now,
            ),
        )

    def create_session(
        self,
        token_hash: str,
        user_id: int,
        now: datetime,
        absolute_expiry: Optional[datetime] = None,
        device_info: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
    ) -> Session:
        """
        Cree une session active.

        Args:
            token_hash: SHA-256 du token opaque
            now: Instant de creation (aussi derniere activite)
            absolute_expiry: Plafond de vie, None = pas de plafond
        """
        session = Session(
            id=uuid.uuid4(),
            token_hash=token_hash,
            user_id=user_id,
            created_at=now,
            last_activity_at=now,
            absolute_expiry=absolute_expiry,
            device_info=device_info,
            ip_address=ip_address,
        )
        self.session.add(session)
        self.session.flush()
        return session

    def get_by_token_hash(self, token_hash: str) -> Optional[Session]:
        """Recupere une session par hash de token, quel que soit son etat."""
        return (
            self.session.query(self.model)
            .filter(self.model.token_hash == token_hash)
            .populate_existing()
            .first()
        )

    def get_for_user(self, session_id: uuid.UUID, user_id: int) -> Optional[Session]:
        """
        Recupere une session en verifiant son proprietaire (anti-IDOR).
        """
        return (
            self.session.query(self.model)
            .filter(self.model.id == session_id)
            .filter(self.model.user_id == user_id)
            .populate_existing()
            .first()
        )

    def touch_if_alive(self, token_hash: str, now: datetime, inactivity_cutoff: datetime) -> bool:
        """
        Prolonge la fenetre d'inactivite si la session est toujours vivante.

        Returns:
            True si la session a ete prolongee
        """
        updated = (
            self.session.query(self.model)
            .filter(self.model.token_hash == token_hash)
            .filter(self._alive(now, inactivity_cutoff))
            .update({self.model.last_activity_at: now}, synchronize_session=False)
        )
        return updated == 1

    def end_session(self, session_id: uuid.UUID, reason: str, now: datetime) -> bool:
        """
        Termine une session encore ouverte.

        Returns:
            True si la session vient d'etre terminee par cet appel
        """
        updated = (
            self.session.query(self.model)
            .filter(self.model.id == session_id)
            .filter(self.model.revoked_at.is_(None))
            .update(
                {self.model.revoked_at: now, self.model.end_reason: reason},
                synchronize_session=False,
            )
        )
        return updated == 1

    def list_alive_for_user(self, user_id: int, now: datetime, inactivity_cutoff: datetime) -> List[Session]:
        """
        Liste les sessions actives d'un utilisateur, plus recente activite d'abord.
        """
        return (
            self.session.query(self.model)
            .filter(self.model.user_id == user_id)
            .filter(self._alive(now, inactivity_cutoff))
            .order_by(self.model.last_activity_at.desc())
            .populate_existing()
            .all()
        )

    def revoke_all_for_user(
        self,
        user_id: int,
        now: datetime,
        except_session_id: Optional[uuid.UUID] = None,
    ) -> int:
        """
        Revoque toutes les sessions ouvertes d'un utilisateur.

        Returns:
            Nombre de sessions revoquees
        """
        query = (
            self.session.query(self.model)
            .filter(self.model.user_id == user_id)
            .filter(self.model.revoked_at.is_(None))
        )
        if except_session_id is not None:
            query = query.filter(self.model.id != except_session_id)

        return query.update(
            {self.model.revoked_at: now, self.model.end_reason: SessionEndReason.REVOKED},
            synchronize_session=False,
        )

    def sweep_expired(self, now: datetime, inactivity_cutoff: datetime) -> Dict[str, int]:
        """
        Marque les sessions ouvertes ayant depasse une de leurs durees de vie.

        Le plafond absolu est traite en premier. Les sessions actives ne
        sont jamais modifiees.

        Returns:
            Nombre de sessions marquees par raison
        """
        absolute = (
            self.session.query(self.model)
            .filter(self.model.revoked_at.is_(None))
            .filter(self.model.absolute_expiry.is_not(None))
            .filter(self.model.absolute_expiry <= now)
            .update(
                {self.model.revoked_at: now, self.model.end_reason: SessionEndReason.EXPIRED_ABSOLUTE},
                synchronize_session=False,
            )
        )
        inactivity = (
            self.session.query(self.model)
            .filter(self.model.revoked_at.is_(None))
            .filter(self.model.last_activity_at <= inactivity_cutoff)
            .update(
                {self.model.revoked_at: now, self.model.end_reason: SessionEndReason.EXPIRED_INACTIVITY},
                synchronize_session=False,
            )
        )
        return {
            SessionEndReason.EXPIRED_ABSOLUTE: absolute,
            SessionEndReason.EXPIRED_INACTIVITY: inactivity,
        }

    def purge_ended_before(self, before: datetime) -> int:
        """
        Supprime les sessions terminees avant `before`.

        Returns:
            Nombre de sessions supprimees
        """
        return (
            self.session.query(self.model)
            .filter(self.model.revoked_at.is_not(None))
            .filter(self.model.revoked_at < before)
            .delete(synchronize_session=False)
        )
