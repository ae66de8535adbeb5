"""
Dependencies FastAPI pour Dottir
Injection de dependances pour la DB, les services et la session courante.

La session est lue depuis le header Authorization (Bearer) ou, a defaut,
depuis le cookie de session. Chaque requete authentifiee repousse la
fenetre d'inactivite (validate est un touch).
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Generator, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session as DBSession

from dottir.core.config import Settings, get_settings
from dottir.core.crypto import SecureRandom, get_secure_random
from dottir.core.database import SessionLocal
from dottir.core.logging import set_request_context
from dottir.core.transient_store import TransientStore, get_transient_store
from dottir.models.base import utc_now
from dottir.models.session import Session, SessionEndReason
from dottir.models.user import User
from dottir.repositories.mfa import MFARecoveryCodeRepository, MFASecretRepository
from dottir.repositories.session import SessionRepository
from dottir.repositories.sso import SSOConnectionRepository, SSOProviderRepository
from dottir.repositories.user import UserRepository
from dottir.services.auth import AuthService
from dottir.services.exceptions import SessionExpiredError
from dottir.services.mfa import MFAService
from dottir.services.rate_limit import FixedWindowRateLimiter
from dottir.services.session import SessionService
from dottir.services.sso import SSOService
from dottir.services.totp import TOTPEngine

logger = logging.getLogger(__name__)


# ============================================
# Security Scheme
# ============================================

# Bearer token auth (le cookie de session est accepte en fallback)
security = HTTPBearer(auto_error=False)

# Raisons de fin de session exposees au client
_EXPIRY_REASONS = {
    SessionEndReason.EXPIRED_INACTIVITY: "inactivity",
    SessionEndReason.EXPIRED_ABSOLUTE: "absolute",
    SessionEndReason.REVOKED: "revoked",
}


# ============================================
# Database Session
# ============================================

def get_db() -> Generator[DBSession, None, None]:
    """
    Fournit une session DB avec auto-commit/rollback.

    Yields:
        Session SQLAlchemy
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# ============================================
# Primitives injectables (surchargees dans les tests)
# ============================================

def get_clock() -> Callable[[], datetime]:
    """Source de temps UTC des services."""
    return utc_now


def get_random() -> SecureRandom:
    return get_secure_random()


def get_store() -> TransientStore:
    """Store transitoire: challenges MFA, nonces SSO, rate limiting."""
    return get_transient_store()


def get_sso_transport():
    """Transport httpx des appels SSO sortants (None = reseau reel)."""
    return None


# ============================================
# Repositories
# ============================================

def get_user_repository(db: DBSession = Depends(get_db)) -> UserRepository:
    """Fournit le repository User"""
    return UserRepository(db)


def get_session_repository(db: DBSession = Depends(get_db)) -> SessionRepository:
    """Fournit le repository Session"""
    return SessionRepository(db)


def get_mfa_secret_repository(db: DBSession = Depends(get_db)) -> MFASecretRepository:
    """Fournit le repository MFASecret"""
    return MFASecretRepository(db)


def get_mfa_recovery_code_repository(db: DBSession = Depends(get_db)) -> MFARecoveryCodeRepository:
    """Fournit le repository MFARecoveryCode"""
    return MFARecoveryCodeRepository(db)


def get_sso_provider_repository(db: DBSession = Depends(get_db)) -> SSOProviderRepository:
    return SSOProviderRepository(db)


def get_sso_connection_repository(db: DBSession = Depends(get_db)) -> SSOConnectionRepository:
    return SSOConnectionRepository(db)


# ============================================
# Services
# ============================================

def get_session_service(
    session_repo: SessionRepository = Depends(get_session_repository),
    random: SecureRandom = Depends(get_random),
    clock: Callable[[], datetime] = Depends(get_clock),
    settings: Settings = Depends(get_settings),
) -> SessionService:
    """Fournit le gestionnaire de sessions configure."""
    return SessionService(
        session_repository=session_repo,
        random=random,
        inactivity_minutes=settings.SESSION_INACTIVITY_MINUTES,
        absolute_expiry_hours=settings.SESSION_ABSOLUTE_EXPIRY_HOURS,
        warning_minutes=settings.SESSION_WARNING_MINUTES,
        clock=clock,
    )


def get_mfa_service(
    user_repo: UserRepository = Depends(get_user_repository),
    secret_repo: MFASecretRepository = Depends(get_mfa_secret_repository),
    recovery_repo: MFARecoveryCodeRepository = Depends(get_mfa_recovery_code_repository),
    random: SecureRandom = Depends(get_random),
    clock: Callable[[], datetime] = Depends(get_clock),
    settings: Settings = Depends(get_settings),
) -> MFAService:
    """Fournit le controleur MFA."""
    return MFAService(
        user_repository=user_repo,
        mfa_secret_repository=secret_repo,
        mfa_recovery_code_repository=recovery_repo,
        totp_engine=TOTPEngine(
            random=random,
            period=settings.TOTP_PERIOD,
            digits=settings.TOTP_DIGITS,
            valid_window=settings.TOTP_VALID_WINDOW,
        ),
        issuer=settings.MFA_ISSUER,
        backup_codes_count=settings.MFA_BACKUP_CODES_COUNT,
        clock=clock,
    )


def get_sso_service(
    user_repo: UserRepository = Depends(get_user_repository),
    provider_repo: SSOProviderRepository = Depends(get_sso_provider_repository),
    connection_repo: SSOConnectionRepository = Depends(get_sso_connection_repository),
    random: SecureRandom = Depends(get_random),
    store: TransientStore = Depends(get_store),
    transport=Depends(get_sso_transport),
    clock: Callable[[], datetime] = Depends(get_clock),
    settings: Settings = Depends(get_settings),
) -> SSOService:
    """Fournit le controleur SSO."""
    return SSOService(
        user_repository=user_repo,
        provider_repository=provider_repo,
        connection_repository=connection_repo,
        random=random,
        state_ttl_seconds=settings.SSO_STATE_TTL_SECONDS,
        http_timeout=settings.SSO_HTTP_TIMEOUT,
        require_verified_email=settings.SSO_REQUIRE_VERIFIED_EMAIL,
        nonce_store=store,
        transport=transport,
        clock=clock,
    )


def get_rate_limiter(
    store: TransientStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(
        store=store,
        limit=settings.RATE_LIMIT_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
        enabled=settings.RATE_LIMIT_ENABLED,
    )


def get_auth_service(
    user_repo: UserRepository = Depends(get_user_repository),
    mfa_service: MFAService = Depends(get_mfa_service),
    session_service: SessionService = Depends(get_session_service),
    sso_service: SSOService = Depends(get_sso_service),
    store: TransientStore = Depends(get_store),
    rate_limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
    random: SecureRandom = Depends(get_random),
    clock: Callable[[], datetime] = Depends(get_clock),
    settings: Settings = Depends(get_settings),
) -> AuthService:
    """
    Fournit l'orchestrateur d'authentification.

    Les services partagent la meme session DB (une transaction par requete).
    """
    return AuthService(
        user_repository=user_repo,
        mfa_service=mfa_service,
        session_service=session_service,
        challenge_store=store,
        rate_limiter=rate_limiter,
        sso_service=sso_service,
        random=random,
        challenge_ttl_seconds=settings.MFA_CHALLENGE_TTL_SECONDS,
        max_challenge_attempts=settings.MFA_CHALLENGE_MAX_ATTEMPTS,
        recent_session_minutes=settings.REAUTH_RECENT_SESSION_MINUTES,
        clock=clock,
    )


# ============================================
# Request context
# ============================================

def get_client_address(request: Request) -> Optional[str]:
    """Adresse source de la requete (cle du rate limiting)."""
    return request.client.host if request.client else None


def get_device_info(request: Request) -> Dict[str, Any]:
    """Metadonnees d'appareil stockees avec la session."""
    return {"userAgent": request.headers.get("user-agent")}


def get_session_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: Settings = Depends(get_settings),
) -> Optional[str]:
    """Token de session: header Bearer, sinon cookie."""
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(settings.SESSION_COOKIE_NAME)


# ============================================
# Authentification
# ============================================

def get_current_session(
    token: Optional[str] = Depends(get_session_token),
    session_service: SessionService = Depends(get_session_service),
) -> Session:
    """
    Valide la session courante et repousse sa fenetre d'inactivite.

    Raises:
        HTTPException 401: Si pas de token ou token inconnu
        SessionExpiredError: Si la session a expire ou a ete revoquee
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session requise",
            headers={"WWW-Authenticate": "Bearer"},
        )

    check = session_service.validate(token)
    if check.valid:
        return check.session

    reason = _EXPIRY_REASONS.get(check.reason)
    if reason is None:
        # SECURITE: Message generique pour un token inconnu
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session invalide",
            headers={"WWW-Authenticate": "Bearer"},
        )
    raise SessionExpiredError(reason=reason)


def get_current_user(
    session: Session = Depends(get_current_session),
    user_repo: UserRepository = Depends(get_user_repository),
) -> User:
    """
    Recupere l'utilisateur de la session courante.

    Raises:
        HTTPException 401: Si l'utilisateur n'existe plus ou est inactif
    """
    user = user_repo.get(session.user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session invalide",
            headers={"WWW-Authenticate": "Bearer"},
        )

    set_request_context(user_id=user.id)
    return user
