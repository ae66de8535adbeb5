"""
Endpoints d'authentification pour Dottir.

- POST /auth/register: Inscription email + mot de passe
- POST /auth/login: Login email + mot de passe
- POST /auth/login/mfa: Seconde etape (code TOTP ou code de secours)
- POST /auth/login/mfa/cancel: Abandon du challenge MFA
- POST /auth/logout: Revocation de la session courante
- POST /auth/reauthenticate: Confirmation d'identite

Le token de session est retourne dans le corps ET pose en cookie HttpOnly.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from fastapi import APIRouter, Depends, Response, status

from dottir.core.config import Settings, get_settings
from dottir.core.dependencies import (
    get_auth_service,
    get_client_address,
    get_current_session,
    get_current_user,
    get_device_info,
    get_session_service,
    get_session_token,
)
from dottir.models.session import Session
from dottir.models.user import User
from dottir.schemas.auth import (
    LoginRequest,
    MFACancelRequest,
    MFAChallengeResponse,
    MFACompleteRequest,
    ReauthenticateRequest,
    RegisterRequest,
    RegisterResponse,
    SessionTokenResponse,
    UserRead,
)
from dottir.schemas.base import ResponseBase
from dottir.services.auth import AuthService, LoginResult, LoginStatus
from dottir.services.exceptions import (
    CSRFViolationError,
    InvalidCredentialsError,
    MFAVerificationFailedError,
    ReauthenticationRequiredError,
)
from dottir.services.session import SessionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


# ============================================
# Helpers partages avec /sso
# ============================================

def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
        path="/",
    )


def login_body(
    result: LoginResult,
    session_service: SessionService,
) -> Union[SessionTokenResponse, MFAChallengeResponse]:
    """
    Convertit un LoginResult en corps de response.

    Raises:
        InvalidCredentialsError, MFAVerificationFailedError, CSRFViolationError
    """
    if result.status == LoginStatus.AUTHENTICATED:
        session = result.issued.session
        return SessionTokenResponse(
            session_token=result.issued.token,
            session_id=str(session.id),
            expires_at=session_service.timeout_info(session).expires_at,
            user_id=session.user_id,
        )

    if result.status == LoginStatus.MFA_REQUIRED:
        return MFAChallengeResponse(
            challenge_token=result.challenge.token,
            expires_at=datetime.fromtimestamp(result.challenge.expires_at, tz=timezone.utc),
        )

    if result.status == LoginStatus.MFA_FAILED:
        raise MFAVerificationFailedError(
            f"Code MFA invalide ({result.attempts_remaining} tentative(s) restante(s))"
        )
    if result.status == LoginStatus.CHALLENGE_EXPIRED:
        raise MFAVerificationFailedError("Challenge MFA expire ou inconnu, reconnectez-vous")
    if result.status == LoginStatus.CSRF_VIOLATION:
        raise CSRFViolationError()
    raise InvalidCredentialsError()


def login_response(
    result: LoginResult,
    response: Response,
    session_service: SessionService,
    settings: Settings,
) -> Union[SessionTokenResponse, MFAChallengeResponse]:
    """Corps de response, et cookie de session si une session est emise."""
    body = login_body(result, session_service)
    if result.issued is not None:
        set_session_cookie(response, result.issued.token, settings)
    return body


# ============================================
# Endpoints
# ============================================

@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Inscription email + mot de passe",
)
def register(
    payload: RegisterRequest,
    client_address: Optional[str] = Depends(get_client_address),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Cree une identite sans MFA. Aucune session n'est ouverte:
    le client enchaine sur /auth/login.
    """
    user = auth_service.register(
        payload.email,
        payload.password,
        full_name=payload.full_name,
        role=payload.role,
        source_address=client_address,
    )
    return RegisterResponse(
        message="Inscription reussie",
        user=UserRead.model_validate(user),
    )


@router.post(
    "/login",
    response_model=Union[SessionTokenResponse, MFAChallengeResponse],
    summary="Login email + mot de passe",
)
def login(
    payload: LoginRequest,
    response: Response,
    client_address: Optional[str] = Depends(get_client_address),
    device_info: Dict[str, Any] = Depends(get_device_info),
    auth_service: AuthService = Depends(get_auth_service),
    session_service: SessionService = Depends(get_session_service),
    settings: Settings = Depends(get_settings),
):
    """
    Authentifie l'utilisateur.

    Si MFA est actif, retourne un challenge_token a presenter sur
    /auth/login/mfa au lieu d'une session.
    """
    result = auth_service.login(
        payload.email,
        payload.password,
        source_address=client_address,
        device_info=payload.device_info.merged_with(device_info) if payload.device_info else device_info,
    )
    return login_response(result, response, session_service, settings)


@router.post(
    "/login/mfa",
    response_model=SessionTokenResponse,
    summary="Complete le login avec un code MFA",
)
def login_mfa(
    payload: MFACompleteRequest,
    response: Response,
    client_address: Optional[str] = Depends(get_client_address),
    auth_service: AuthService = Depends(get_auth_service),
    session_service: SessionService = Depends(get_session_service),
    settings: Settings = Depends(get_settings),
):
    result = auth_service.complete_mfa(
        payload.challenge_token,
        payload.code,
        source_address=client_address,
    )
    return login_response(result, response, session_service, settings)


@router.post("/login/mfa/cancel", response_model=ResponseBase)
def cancel_mfa(
    payload: MFACancelRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Abandonne un challenge MFA (idempotent)."""
    auth_service.cancel_mfa(payload.challenge_token)
    return ResponseBase(message="Challenge MFA abandonne")


@router.post("/logout", response_model=ResponseBase)
def logout(
    response: Response,
    token: Optional[str] = Depends(get_session_token),
    auth_service: AuthService = Depends(get_auth_service),
    settings: Settings = Depends(get_settings),
):
    """
    Revoque la session courante et efface le cookie.

    Idempotent: une session deja terminee ne produit pas d'erreur.
    """
    if token:
        auth_service.logout(token)
    response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")
    return ResponseBase(message="Deconnexion reussie")


@router.post("/reauthenticate", response_model=ResponseBase)
def reauthenticate(
    payload: ReauthenticateRequest,
    current_user: User = Depends(get_current_user),
    current_session: Session = Depends(get_current_session),
    client_address: Optional[str] = Depends(get_client_address),
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Verifie le mot de passe (et le code MFA si actif) sans emettre de session.
    """
    if not auth_service.reauthenticate(
        current_user,
        payload.password,
        mfa_code=payload.mfa_code,
        source_address=client_address,
        current_session=current_session,
    ):
        raise ReauthenticationRequiredError()
    return ResponseBase(message="Identite confirmee")
