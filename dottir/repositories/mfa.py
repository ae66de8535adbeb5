"""
Repositories pour la gestion MFA.

Ce module fournit les repositories pour:
- MFASecretRepository: CRUD pour les secrets TOTP
- MFARecoveryCodeRepository: CRUD pour les codes de secours

Les transitions sensibles (anti-replay TOTP, consommation d'un code de
secours) sont des UPDATE conditionnels: le rowcount decide du gagnant
en cas d'appels concurrents.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_

from dottir.models.base import utc_now
from dottir.models.mfa import MFARecoveryCode, MFASecret
from dottir.repositories.base import BaseRepository


class MFASecretRepository(BaseRepository[MFASecret]):
    """
    Repository pour les secrets MFA (TOTP).
    """

    model = MFASecret

    def get_by_user_id(self, user_id: int) -> Optional[MFASecret]:
        """
        Recupere le secret MFA d'un utilisateur.

        Returns:
            MFASecret ou None si pas trouve
        """
        return (
            self.session.query(self.model)
            .filter(self.model.user_id == user_id)
            .populate_existing()
            .first()
        )

    def replace(
        self,
        user_id: int,
        secret: str,
        algorithm: str = "SHA1",
        period: int = 30,
        digits: int = 6,
    ) -> MFASecret:
        """
        Remplace le secret d'un utilisateur par un nouveau secret inactif.

        Un seul secret par utilisateur: l'ancien (en attente) est ecrase.

        Args:
            user_id: ID de l'utilisateur
            secret: Secret TOTP deja chiffre
        """
        existing = self.get_by_user_id(user_id)

        if existing:
            existing.secret = secret
            existing.algorithm = algorithm
            existing.period = period
            existing.digits = digits
            existing.enabled = False
            existing.created_at = utc_now()
            existing.last_used_at = None
            existing.last_totp_window = None
            self.session.flush()
            return existing

        new_secret = MFASecret(
            user_id=user_id,
            secret=secret,
            algorithm=algorithm,
            period=period,
            digits=digits,
            enabled=False,
        )
        self.session.add(new_secret)
        self.session.flush()
        return new_secret

    def enable(self, user_id: int, window: Optional[int] = None, at: Optional[datetime] = None) -> bool:
        """
        Active le secret en attente.

        Args:
            window: Pas TOTP ayant servi a la confirmation (anti-replay)

        Returns:
            True si active, False si pas de secret en attente
        """
        updated = (
            self.session.query(self.model)
            .filter(self.model.user_id == user_id)
            .filter(self.model.enabled.is_(False))
            .update(
                {
                    self.model.enabled: True,
                    self.model.last_totp_window: window,
                    self.model.last_used_at: at or utc_now(),
                },
                synchronize_session=False,
            )
        )
        return updated > 0

    def record_totp_use(self, user_id: int, window: int, at: Optional[datetime] = None) -> bool:
        """
        Enregistre l'utilisation d'un pas TOTP (anti-replay atomique).

        Ne reussit que si aucun pas egal ou posterieur n'a deja ete accepte.

        Returns:
            True si le pas est accepte, False en cas de rejeu
        """
        updated = (
            self.session.query(self.model)
            .filter(self.model.user_id == user_id)
            .filter(self.model.enabled.is_(True))
            .filter(
                or_(
                    self.model.last_totp_window.is_(None),
                    self.model.last_totp_window < window,
                )
            )
            .update(
                {
                    self.model.last_totp_window: window,
                    self.model.last_used_at: at or utc_now(),
                },
                synchronize_session=False,
            )
        )
        return updated > 0

    def delete_by_user_id(self, user_id: int) -> bool:
        """
        Supprime le secret MFA d'un utilisateur.

        Returns:
            True si supprime, False si pas trouve
        """
        deleted = (
            self.session.query(self.model)
            .filter(self.model.user_id == user_id)
            .delete(synchronize_session=False)
        )
        return deleted > 0


class MFARecoveryCodeRepository(BaseRepository[MFARecoveryCode]):
    """
    Repository pour les codes de secours MFA.
    """

    model = MFARecoveryCode

    def create_codes_for_user(self, user_id: int, code_hashes: List[str]) -> List[MFARecoveryCode]:
        """
        Cree un jeu de codes de secours pour un utilisateur.

        Args:
            user_id: ID de l'utilisateur
            code_hashes: Liste des hashes de codes
        """
        codes = [MFARecoveryCode(user_id=user_id, code_hash=code_hash) for code_hash in code_hashes]
        self.session.add_all(codes)
        self.session.flush()
        return codes

    def get_valid_codes_for_user(self, user_id: int) -> List[MFARecoveryCode]:
        """
        Recupere tous les codes non utilises d'un utilisateur.
        """
        return (
            self.session.query(self.model)
            .filter(self.model.user_id == user_id)
            .filter(self.model.used_at.is_(None))
            .order_by(self.model.id)
            .all()
        )

    def get_all_for_user(self, user_id: int) -> List[MFARecoveryCode]:
        """
        Recupere tous les codes d'un utilisateur (utilises et non utilises).
        """
        return (
            self.session.query(self.model)
            .filter(self.model.user_id == user_id)
            .order_by(self.model.id)
            .populate_existing()
            .all()
        )

    def mark_code_as_used(self, code_id: int, at: Optional[datetime] = None) -> bool:
        """
        Consomme un code de secours.

        UPDATE conditionnel sur used_at IS NULL: sur deux consommations
        concurrentes du meme code, une seule obtient rowcount=1.

        Returns:
            True si ce appel a consomme le code, False sinon
        """
        updated = (
            self.session.query(self.model)
            .filter(self.model.id == code_id)
            .filter(self.model.used_at.is_(None))
            .update({self.model.used_at: at or utc_now()}, synchronize_session=False)
        )
        return updated == 1

    def delete_all_for_user(self, user_id: int) -> int:
        """
        Supprime tous les codes d'un utilisateur.

        Returns:
            Nombre de codes supprimes
        """
        return (
            self.session.query(self.model)
            .filter(self.model.user_id == user_id)
            .delete(synchronize_session=False)
        )

    def count_valid_codes(self, user_id: int) -> int:
        """Compte les codes non utilises d'un utilisateur."""
        return (
            self.session.query(self.model)
            .filter(self.model.user_id == user_id)
            .filter(self.model.used_at.is_(None))
            .count()
        )
