"""
Service Authentification pour Dottir (orchestrateur du login)

Ce module enchaine les composants:
- inscription par mot de passe (politique de robustesse, role ouvert)
- verification du mot de passe (bcrypt, timing constant sur email inconnu)
- barriere MFA: si MFA est actif, un PendingChallenge est emis a la place
  d'une session
- emission de la session par SessionService
- login SSO: meme barriere MFA apres SSOService.complete_callback

Chaque operation consulte d'abord le rate limiter (RateLimitedError).
Les echecs d'authentification sont des statuts de LoginResult.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING, Union

from sqlalchemy.exc import IntegrityError

from dottir.core.crypto import SecureRandom, get_secure_random
from dottir.core.logging import mask_email
from dottir.core.security import (
    BCRYPT_COST,
    PasswordValidationError,
    get_dummy_hash,
    hash_password,
    validate_password_strength,
    verify_password,
)
from dottir.core.transient_store import TransientStore
from dottir.models.base import utc_now
from dottir.models.session import Session
from dottir.models.user import User, UserRole
from dottir.repositories.base import translate_store_errors
from dottir.repositories.user import UserRepository
from dottir.services.exceptions import (
    EmailAlreadyExistsError,
    InvalidRoleError,
    WeakPasswordError,
)
from dottir.services.mfa import MFAService
from dottir.services.rate_limit import FixedWindowRateLimiter
from dottir.services.session import IssuedSession, SessionService
from dottir.services.sso import CSRFState, SSOCallbackStatus

# Type checking imports pour eviter les imports circulaires
if TYPE_CHECKING:
    from dottir.services.sso import SSOService

logger = logging.getLogger(__name__)


class LoginStatus:
    AUTHENTICATED = "authenticated"
    MFA_REQUIRED = "mfa_required"
    INVALID_CREDENTIALS = "invalid_credentials"
    MFA_FAILED = "mfa_failed"
    CHALLENGE_EXPIRED = "challenge_expired"
    CSRF_VIOLATION = "csrf_violation"


@dataclass(frozen=True)
class PendingChallenge:
    """
    Login partiellement authentifie en attente du code MFA.

    Ne contient que la reference de l'identite, l'instant d'emission et
    le contexte necessaire a la creation de la session.
    """
    token: str
    user_id: int
    issued_at: float
    expires_at: float
    source_address: Optional[str] = None
    device_info: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "source_address": self.source_address,
            "device_info": self.device_info,
        }

    @classmethod
    def from_dict(cls, token: str, data: Dict[str, Any]) -> "PendingChallenge":
        return cls(
            token=token,
            user_id=int(data["user_id"]),
            issued_at=float(data["issued_at"]),
            expires_at=float(data["expires_at"]),
            source_address=data.get("source_address"),
            device_info=data.get("device_info"),
        )


@dataclass(frozen=True)
class LoginResult:
    """
    Resultat d'une etape de login.

    - authenticated: `issued` porte la session et son token
    - mfa_required: `challenge` porte le PendingChallenge
    - mfa_failed: le challenge reste valide (attempts_remaining > 0)
    - invalid_credentials, challenge_expired, csrf_violation: aucun etat cree
    """
    status: str
    user: Optional[User] = None
    issued: Optional[IssuedSession] = None
    challenge: Optional[PendingChallenge] = None
    attempts_remaining: Optional[int] = None

    @property
    def authenticated(self) -> bool:
        return self.status == LoginStatus.AUTHENTICATED


class AuthService:
    """
    Service pour l'authentification complete.

    Args:
        user_repository: Repository des identites
        mfa_service: Controleur MFA
        session_service: Gestionnaire de sessions
        challenge_store: Store transitoire des PendingChallenge
        rate_limiter: Barriere par adresse source (None = pas de limite)
        sso_service: Controleur SSO (optionnel)
        random: Fournisseur d'alea pour les tokens de challenge
        challenge_ttl_seconds: Duree de vie d'un challenge (defaut 5 min)
        max_challenge_attempts: Echecs tolerables par challenge
        password_rounds: Cost factor bcrypt des mots de passe crees
        recent_session_minutes: Age maximal de la session courante pour
            re-authentifier une identite sans mot de passe ni MFA
        clock: Source de temps UTC
    """

    CHALLENGE_PREFIX = "mfa_challenge:"
    ATTEMPTS_PREFIX = "mfa_challenge_attempts:"

    def __init__(
        self,
        user_repository: UserRepository,
        mfa_service: MFAService,
        session_service: SessionService,
        challenge_store: TransientStore,
        rate_limiter: Optional[FixedWindowRateLimiter] = None,
        sso_service: Optional["SSOService"] = None,
        random: Optional[SecureRandom] = None,
        challenge_ttl_seconds: int = 300,
        max_challenge_attempts: int = 5,
        password_rounds: int = BCRYPT_COST,
        recent_session_minutes: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.user_repository = user_repository
        self.mfa_service = mfa_service
        self.session_service = session_service
        self.challenge_store = challenge_store
        self.rate_limiter = rate_limiter
        self.sso_service = sso_service
        self.random = random or get_secure_random()
        self.challenge_ttl_seconds = challenge_ttl_seconds
        self.max_challenge_attempts = max_challenge_attempts
        self.password_rounds = password_rounds
        self.recent_session = timedelta(minutes=recent_session_minutes)
        self.clock = clock

    def _check_rate_limit(self, source_address: Optional[str]) -> None:
        if self.rate_limiter is not None:
            self.rate_limiter.enforce(source_address)

    # ========================================================================
    # Barriere MFA et emission de session
    # ========================================================================

    def _issue_challenge(
        self,
        user: User,
        source_address: Optional[str],
        device_info: Optional[Dict[str, Any]],
    ) -> PendingChallenge:
        now = self.clock().timestamp()
        challenge = PendingChallenge(
            token=self.random.token_urlsafe(32),
            user_id=user.id,
            issued_at=now,
            expires_at=now + self.challenge_ttl_seconds,
            source_address=source_address,
            device_info=device_info,
        )
        self.challenge_store.put(
            f"{self.CHALLENGE_PREFIX}{challenge.token}",
            challenge.to_dict(),
            self.challenge_ttl_seconds,
        )
        return challenge

    def _gate(
        self,
        user: User,
        source_address: Optional[str],
        device_info: Optional[Dict[str, Any]],
    ) -> LoginResult:
        """Session directe, ou PendingChallenge si MFA est actif."""
        if self.mfa_service.is_enabled(user.id):
            challenge = self._issue_challenge(user, source_address, device_info)
            logger.info(f"Challenge MFA emis pour user_id={user.id}")
            return LoginResult(status=LoginStatus.MFA_REQUIRED, user=user, challenge=challenge)

        issued = self.session_service.create(user.id, device_info=device_info, source_address=source_address)
        return LoginResult(status=LoginStatus.AUTHENTICATED, user=user, issued=issued)

    # ========================================================================
    # Inscription
    # ========================================================================

    @translate_store_errors
    def register(
        self,
        email: str,
        password: str,
        full_name: str,
        role: str,
        source_address: Optional[str] = None,
    ) -> User:
        """
        Cree une identite par mot de passe.

        L'identite nait active et sans MFA. Aucune session n'est emise:
        le client se connecte ensuite par login().

        Raises:
            RateLimitedError: Trop de tentatives depuis cette adresse
            InvalidRoleError: Role non ouvert a l'inscription
            WeakPasswordError: Mot de passe refuse par la politique
            EmailAlreadyExistsError: Email deja associe a une identite
        """
        self._check_rate_limit(source_address)

        if role not in UserRole.REGISTRABLE:
            raise InvalidRoleError(role)

        try:
            validate_password_strength(password, email=email)
        except PasswordValidationError as e:
            raise WeakPasswordError(str(e)) from e

        if self.user_repository.get_by_email(email) is not None:
            logger.info(f"Inscription refusee (email existant): {mask_email(email)}")
            raise EmailAlreadyExistsError()

        try:
            user = self.user_repository.create_user(
                email=email,
                password_hash=hash_password(password, rounds=self.password_rounds),
                full_name=full_name,
                role=role,
            )
            self.user_repository.commit()
        except IntegrityError as e:
            # Inscription concurrente sur le meme email
            self.user_repository.rollback()
            raise EmailAlreadyExistsError() from e

        logger.info(f"Identite creee par inscription: user_id={user.id}", extra={"user_id": user.id})
        return user

    # ========================================================================
    # Login par mot de passe
    # ========================================================================

    @translate_store_errors
    def login(
        self,
        email: str,
        password: str,
        source_address: Optional[str] = None,
        device_info: Optional[Dict[str, Any]] = None,
    ) -> LoginResult:
        """
        Authentifie par email et mot de passe.

        SECURITE: un email inconnu est verifie contre un hash factice pour
        garder un temps de reponse constant.

        Raises:
            RateLimitedError: Trop de tentatives depuis cette adresse
        """
        self._check_rate_limit(source_address)

        user = self.user_repository.get_by_email(email)
        if user is None or user.password_hash is None:
            verify_password(password, get_dummy_hash())
            logger.info(f"Login refuse (identite inconnue): {mask_email(email)}")
            return LoginResult(status=LoginStatus.INVALID_CREDENTIALS)

        if not verify_password(password, user.password_hash) or not user.is_active:
            logger.info(f"Login refuse pour user_id={user.id}")
            return LoginResult(status=LoginStatus.INVALID_CREDENTIALS)

        return self._gate(user, source_address, device_info)

    # ========================================================================
    # Challenge MFA
    # ========================================================================

    def get_challenge(self, challenge_token: str) -> Optional[PendingChallenge]:
        """Challenge en cours, ou None s'il est inconnu ou expire."""
        if not challenge_token:
            return None
        key = f"{self.CHALLENGE_PREFIX}{challenge_token}"
        data = self.challenge_store.get(key)
        if data is None:
            return None

        challenge = PendingChallenge.from_dict(challenge_token, data)
        if challenge.expires_at <= self.clock().timestamp():
            self._discard_challenge(challenge_token)
            return None
        return challenge

    def _discard_challenge(self, challenge_token: str) -> bool:
        existed = self.challenge_store.pop(f"{self.CHALLENGE_PREFIX}{challenge_token}") is not None
        self.challenge_store.delete(f"{self.ATTEMPTS_PREFIX}{challenge_token}")
        return existed

    @translate_store_errors
    def complete_mfa(
        self,
        challenge_token: str,
        code: str,
        source_address: Optional[str] = None,
    ) -> LoginResult:
        """
        Complete un login en attente de MFA.

        En cas d'echec le challenge reste valide jusqu'a son expiration,
        dans la limite de max_challenge_attempts echecs.

        Raises:
            RateLimitedError: Trop de tentatives depuis cette adresse
        """
        self._check_rate_limit(source_address)

        challenge = self.get_challenge(challenge_token)
        if challenge is None:
            return LoginResult(status=LoginStatus.CHALLENGE_EXPIRED)

        if not self.mfa_service.challenge(challenge.user_id, code):
            attempts = self.challenge_store.incr(
                f"{self.ATTEMPTS_PREFIX}{challenge_token}", self.challenge_ttl_seconds
            )
            remaining = max(0, self.max_challenge_attempts - attempts)
            if remaining == 0:
                self._discard_challenge(challenge_token)
                logger.warning(f"Challenge MFA abandonne apres {attempts} echecs pour user_id={challenge.user_id}")
            else:
                logger.info(f"Code MFA refuse pour user_id={challenge.user_id}")
            return LoginResult(status=LoginStatus.MFA_FAILED, attempts_remaining=remaining)

        # Usage unique: seul l'appel qui retire le challenge emet la session
        if not self._discard_challenge(challenge_token):
            return LoginResult(status=LoginStatus.CHALLENGE_EXPIRED)

        user = self.user_repository.get(challenge.user_id)
        if user is None or not user.is_active:
            return LoginResult(status=LoginStatus.INVALID_CREDENTIALS)

        issued = self.session_service.create(
            user.id,
            device_info=challenge.device_info,
            source_address=challenge.source_address,
        )
        logger.info(f"Login MFA complete pour user_id={user.id}")
        return LoginResult(status=LoginStatus.AUTHENTICATED, user=user, issued=issued)

    def cancel_mfa(self, challenge_token: str) -> bool:
        """
        Abandonne un challenge sans emettre de session.

        Returns:
            True si un challenge a ete retire
        """
        if not challenge_token:
            return False
        return self._discard_challenge(challenge_token)

    # ========================================================================
    # Login SSO
    # ========================================================================

    @translate_store_errors
    async def login_via_sso(
        self,
        provider_id: str,
        code: str,
        returned_state: Optional[str],
        stored_state: Union[CSRFState, str, None],
        source_address: Optional[str] = None,
        device_info: Optional[Dict[str, Any]] = None,
    ) -> LoginResult:
        """
        Login par fournisseur SSO, soumis a la meme barriere MFA.

        Raises:
            RateLimitedError, ProviderNotFoundError, ProviderDisabledError,
            TokenExchangeFailedError, UserInfoFailedError, UnverifiedEmailError
        """
        if self.sso_service is None:
            raise RuntimeError("SSOService non configure")

        self._check_rate_limit(source_address)

        result = await self.sso_service.complete_callback(provider_id, code, returned_state, stored_state)
        if result.status == SSOCallbackStatus.CSRF_VIOLATION:
            return LoginResult(status=LoginStatus.CSRF_VIOLATION)

        if not result.user.is_active:
            return LoginResult(status=LoginStatus.INVALID_CREDENTIALS)

        return self._gate(result.user, source_address, device_info)

    # ========================================================================
    # Re-authentification et logout
    # ========================================================================

    @translate_store_errors
    def reauthenticate(
        self,
        user: User,
        password: Optional[str],
        mfa_code: Optional[str] = None,
        source_address: Optional[str] = None,
        current_session: Optional[Session] = None,
    ) -> bool:
        """
        Confirme l'identite avant une operation sensible (desactivation
        MFA, deconnexion de toutes les sessions).

        Exige le mot de passe si le compte en a un, et un code MFA si MFA
        est actif. Une identite sans aucun des deux facteurs (SSO seul)
        est confirmee par une session courante ouverte depuis moins de
        recent_session_minutes: elle sort d'un aller-retour chez le
        fournisseur.

        Raises:
            RateLimitedError: Trop de tentatives depuis cette adresse
        """
        self._check_rate_limit(source_address)

        has_password = user.password_hash is not None
        mfa_enabled = self.mfa_service.is_enabled(user.id)

        if not has_password and not mfa_enabled:
            return self._is_recent(user, current_session)

        if has_password and not verify_password(password or "", user.password_hash):
            logger.info(f"Re-authentification refusee (mot de passe) pour user_id={user.id}")
            return False

        if mfa_enabled and not (mfa_code and self.mfa_service.challenge(user.id, mfa_code)):
            logger.info(f"Re-authentification refusee (MFA) pour user_id={user.id}")
            return False

        return True

    def _is_recent(self, user: User, session: Optional[Session]) -> bool:
        if session is None or session.user_id != user.id or session.revoked_at is not None:
            return False
        return self.clock() - session.created_at <= self.recent_session

    def logout(self, token: str) -> bool:
        """Revoque la session courante."""
        return self.session_service.revoke(token)
