"""
Service de gestion des Sessions pour Dottir.

Sessions a fenetre glissante avec deux durees de vie independantes:
- inactivite (defaut 30 minutes, repoussee a chaque touch valide)
- plafond absolu optionnel (defaut 30 jours, jamais repousse)

Machine a etats:
    active -> expired_inactivity | expired_absolute | revoked (terminaux)

Une session terminee ne revit jamais: il faut en creer une nouvelle.
Le token opaque n'est connu que du client, la base ne stocke que son hash.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from dottir.core.crypto import SecureRandom, get_secure_random, hash_token
from dottir.core.session_timeout import InactivityCountdown
from dottir.models.base import utc_now
from dottir.models.session import Session, SessionEndReason
from dottir.repositories.base import translate_store_errors
from dottir.repositories.session import SessionRepository
from dottir.services.exceptions import SessionNotFoundError

logger = logging.getLogger(__name__)

# Raison retournee quand le token ne correspond a aucune session
NOT_FOUND = "not_found"


def parse_user_agent(user_agent: Optional[str]) -> Dict[str, Optional[str]]:
    """
    Parse le user-agent pour extraire device, OS et browser.

    Args:
        user_agent: String du User-Agent

    Returns:
        Dict avec device, os, browser
    """
    if not user_agent:
        return {"device": None, "os": None, "browser": None}

    result = {"device": "Desktop", "os": None, "browser": None}

    if "Mobile" in user_agent or "Android" in user_agent:
        result["device"] = "Mobile"
    elif "Tablet" in user_agent or "iPad" in user_agent:
        result["device"] = "Tablet"

    if "Windows" in user_agent:
        result["os"] = "Windows"
    elif "iPhone" in user_agent or "iPad" in user_agent:
        result["os"] = "iOS"
    elif "Mac OS" in user_agent or "Macintosh" in user_agent:
        result["os"] = "macOS"
    elif "Android" in user_agent:
        result["os"] = "Android"
    elif "Linux" in user_agent:
        result["os"] = "Linux"

    if "Edg" in user_agent:
        result["browser"] = "Edge"
    elif "Chrome" in user_agent:
        result["browser"] = "Chrome"
    elif "Firefox" in user_agent:
        result["browser"] = "Firefox"
    elif "Safari" in user_agent:
        result["browser"] = "Safari"

    return result


@dataclass(frozen=True)
class IssuedSession:
    """Session nouvellement creee. `token` n'est disponible qu'ici."""
    token: str
    session: Session


@dataclass(frozen=True)
class SessionCheck:
    """
    Resultat de validate().

    reason: None si valide, sinon expired_inactivity, expired_absolute,
    revoked ou not_found
    """
    valid: bool
    reason: Optional[str] = None
    session: Optional[Session] = None


@dataclass(frozen=True)
class SessionInfo:
    """Donnees de presentation d'une session (jamais le token)."""
    id: UUID
    device_info: Optional[Dict[str, Any]]
    device: Dict[str, Optional[str]]
    ip_address: Optional[str]
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    is_current: bool


@dataclass(frozen=True)
class TimeoutInfo:
    """Echeances d'une session pour l'avertissement client."""
    expires_at: datetime
    warn_at: datetime
    inactivity_expires_at: datetime
    absolute_expiry: Optional[datetime]
    activity_events: List[str]


class SessionService:
    """
    Service pour la gestion des sessions utilisateur.

    Args:
        session_repository: Repository des sessions
        random: Fournisseur d'alea pour les tokens
        inactivity_minutes: Fenetre d'inactivite
        absolute_expiry_hours: Plafond absolu, None pour le desactiver
        warning_minutes: Delai d'avertissement avant expiration
        clock: Source de temps UTC (injectable pour les tests)
    """

    TOKEN_BYTES = 32

    def __init__(
        self,
        session_repository: SessionRepository,
        random: Optional[SecureRandom] = None,
        inactivity_minutes: int = 30,
        absolute_expiry_hours: Optional[int] = 720,
        warning_minutes: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_repository = session_repository
        self.random = random or get_secure_random()
        self.inactivity = timedelta(minutes=inactivity_minutes)
        self.absolute_lifetime = (
            timedelta(hours=absolute_expiry_hours) if absolute_expiry_hours else None
        )
        self.warning = timedelta(minutes=warning_minutes)
        self.clock = clock

    # ========================================================================
    # Creation
    # ========================================================================

    @translate_store_errors
    def create(
        self,
        user_id: int,
        device_info: Optional[Dict[str, Any]] = None,
        source_address: Optional[str] = None,
    ) -> IssuedSession:
        """
        Cree une session et retourne son token (seule occurrence en clair).
        """
        now = self.clock()
        token = self.random.token_urlsafe(self.TOKEN_BYTES)
        session = self.session_repository.create_session(
            token_hash=hash_token(token),
            user_id=user_id,
            now=now,
            absolute_expiry=now + self.absolute_lifetime if self.absolute_lifetime else None,
            device_info=device_info,
            ip_address=source_address,
        )
        self.session_repository.commit()

        logger.info(f"Session creee pour user_id={user_id}", extra={"session_id": str(session.id)})
        return IssuedSession(token=token, session=session)

    # ========================================================================
    # Validation (touch)
    # ========================================================================

    def _expiry_reason(self, session: Session, now: datetime) -> str:
        if session.absolute_expiry is not None and session.absolute_expiry <= now:
            return SessionEndReason.EXPIRED_ABSOLUTE
        return SessionEndReason.EXPIRED_INACTIVITY

    @translate_store_errors
    def validate(self, token: Optional[str]) -> SessionCheck:
        """
        Valide une session et repousse sa fenetre d'inactivite.

        Le prolongement est un UPDATE conditionnel portant les deux durees
        de vie. S'il echoue pour cause d'expiration, la session est marquee
        terminee dans ce meme appel.
        """
        if not token:
            return SessionCheck(valid=False, reason=NOT_FOUND)

        token_hash = hash_token(token)
        now = self.clock()

        if self.session_repository.touch_if_alive(token_hash, now, now - self.inactivity):
            self.session_repository.commit()
            return SessionCheck(
                valid=True,
                session=self.session_repository.get_by_token_hash(token_hash),
            )

        session = self.session_repository.get_by_token_hash(token_hash)
        if session is None:
            return SessionCheck(valid=False, reason=NOT_FOUND)

        if session.revoked_at is not None:
            return SessionCheck(valid=False, reason=session.end_reason, session=session)

        reason = self._expiry_reason(session, now)
        self.session_repository.end_session(session.id, reason, now)
        self.session_repository.commit()
        logger.info(
            f"Session expiree ({reason}) pour user_id={session.user_id}",
            extra={"session_id": str(session.id)},
        )
        return SessionCheck(
            valid=False,
            reason=reason,
            session=self.session_repository.get_by_token_hash(token_hash),
        )

    def touch(self, token: Optional[str]) -> bool:
        """
        Marque une activite sur la session.

        Returns:
            True si la session est active (fenetre repoussee), False sinon
        """
        return self.validate(token).valid

    # ========================================================================
    # Consultation
    # ========================================================================

    def _expires_at(self, session: Session) -> datetime:
        inactivity_expiry = session.last_activity_at + self.inactivity
        if session.absolute_expiry is not None:
            return min(inactivity_expiry, session.absolute_expiry)
        return inactivity_expiry

    @translate_store_errors
    def list_sessions(self, user_id: int, current_token: Optional[str] = None) -> List[SessionInfo]:
        """
        Liste les sessions actives d'un utilisateur.

        Args:
            current_token: Token de la requete, pour marquer is_current
        """
        now = self.clock()
        current_hash = hash_token(current_token) if current_token else None
        sessions = self.session_repository.list_alive_for_user(user_id, now, now - self.inactivity)

        return [
            SessionInfo(
                id=s.id,
                device_info=s.device_info,
                device=parse_user_agent((s.device_info or {}).get("userAgent")),
                ip_address=s.ip_address,
                created_at=s.created_at,
                last_activity_at=s.last_activity_at,
                expires_at=self._expires_at(s),
                is_current=current_hash is not None and s.token_hash == current_hash,
            )
            for s in sessions
        ]

    def countdown(self, session: Session) -> InactivityCountdown:
        """Minuteur client arme sur la derniere activite confirmee."""
        timer = InactivityCountdown(timeout=self.inactivity, warning_threshold=self.warning)
        timer.arm(session.last_activity_at)
        return timer

    def timeout_info(self, session: Session) -> TimeoutInfo:
        """
        Echeances d'une session: expiration effective et instant
        d'avertissement (warning_minutes avant).

        Le plafond absolu peut avancer l'echeance du minuteur client.
        """
        countdown = self.countdown(session)
        expires_at = self._expires_at(session)
        return TimeoutInfo(
            expires_at=expires_at,
            warn_at=expires_at - self.warning,
            inactivity_expires_at=countdown.expires_at,
            absolute_expiry=session.absolute_expiry,
            activity_events=sorted(countdown.activity_events),
        )

    # ========================================================================
    # Revocation
    # ========================================================================

    @translate_store_errors
    def revoke(self, token: str) -> bool:
        """
        Revoque la session portant ce token (logout).

        Returns:
            True si une session active a ete revoquee
        """
        if not token:
            return False
        session = self.session_repository.get_by_token_hash(hash_token(token))
        if session is None:
            return False

        revoked = self.session_repository.end_session(session.id, SessionEndReason.REVOKED, self.clock())
        self.session_repository.commit()
        if revoked:
            logger.info(f"Session revoquee pour user_id={session.user_id}", extra={"session_id": str(session.id)})
        return revoked

    @translate_store_errors
    def revoke_by_id(self, session_id: UUID, user_id: int) -> bool:
        """
        Revoque une session par son identifiant public.

        La session doit appartenir a user_id (anti-IDOR).

        Raises:
            SessionNotFoundError: Session inconnue ou d'un autre utilisateur
        """
        session = self.session_repository.get_for_user(session_id, user_id)
        if session is None:
            raise SessionNotFoundError(session_id=session_id)

        revoked = self.session_repository.end_session(session.id, SessionEndReason.REVOKED, self.clock())
        self.session_repository.commit()
        if revoked:
            logger.info(f"Session revoquee pour user_id={user_id}", extra={"session_id": str(session_id)})
        return revoked

    @translate_store_errors
    def revoke_all(self, user_id: int, except_token: Optional[str] = None) -> int:
        """
        Revoque toutes les sessions d'un utilisateur ("deconnecter partout").

        Args:
            except_token: Session a conserver (typiquement la session courante)

        Returns:
            Nombre de sessions revoquees
        """
        except_id = None
        if except_token:
            current = self.session_repository.get_by_token_hash(hash_token(except_token))
            if current is not None and current.user_id == user_id:
                except_id = current.id

        count = self.session_repository.revoke_all_for_user(user_id, self.clock(), except_session_id=except_id)
        self.session_repository.commit()

        logger.info(f"{count} session(s) revoquee(s) pour user_id={user_id}")
        return count

    # ========================================================================
    # Maintenance
    # ========================================================================

    @translate_store_errors
    def sweep_expired(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Marque les sessions ayant depasse une duree de vie.
        Ne modifie jamais une session active.
        """
        now = now or self.clock()
        counts = self.session_repository.sweep_expired(now, now - self.inactivity)
        self.session_repository.commit()
        return counts

    @translate_store_errors
    def purge_ended(self, older_than_days: int = 90) -> int:
        """
        Supprime les sessions terminees depuis plus de older_than_days jours.
        """
        before = self.clock() - timedelta(days=older_than_days)
        deleted = self.session_repository.purge_ended_before(before)
        self.session_repository.commit()
        return deleted
