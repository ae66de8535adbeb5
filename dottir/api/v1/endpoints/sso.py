"""
Endpoints SSO (OAuth2 authorization code) pour Dottir.

- GET /sso/providers: Fournisseurs actives
- GET /sso/{provider_id}/authorize: URL d'autorisation, etat CSRF en cookie
- GET /sso/{provider_id}/callback: Termine le flow et ouvre une session
  (ou un challenge MFA)
- GET /sso/connections: Fournisseurs lies au compte courant
- DELETE /sso/connections/{provider_id}: Supprime un lien

Le cookie d'etat CSRF est supprime a chaque callback, quel que soit le
resultat: un etat ne sert qu'une fois.
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse

from dottir.api.v1.endpoints.auth import login_body, set_session_cookie
from dottir.core.config import Settings, get_settings
from dottir.core.dependencies import (
    get_auth_service,
    get_client_address,
    get_current_user,
    get_device_info,
    get_session_service,
    get_sso_service,
)
from dottir.middleware.exception_handler import service_exception_handler
from dottir.models.user import User
from dottir.schemas.auth import DeviceInfo
from dottir.schemas.base import ResponseBase
from dottir.schemas.sso import (
    SSOAuthorizeResponse,
    SSOConnectionListResponse,
    SSOConnectionRead,
    SSOProviderListResponse,
    SSOProviderRead,
)
from dottir.services.auth import AuthService
from dottir.services.exceptions import ServiceException
from dottir.services.session import SessionService
from dottir.services.sso import SSOService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sso", tags=["SSO"])


def _state_cookie_path(provider_id: str) -> str:
    return f"/api/v1/sso/{provider_id}"


def get_reported_device_info(
    platform: Optional[str] = Query(None, max_length=64),
    language: Optional[str] = Query(None, max_length=35),
    screen_width: Optional[int] = Query(None, alias="screenWidth", ge=0, le=32768),
    screen_height: Optional[int] = Query(None, alias="screenHeight", ge=0, le=32768),
    timezone: Optional[str] = Query(None, max_length=64),
) -> DeviceInfo:
    """Empreinte d'appareil relayee par le client avec le code de retour."""
    return DeviceInfo(
        platform=platform,
        language=language,
        screen_width=screen_width,
        screen_height=screen_height,
        timezone=timezone,
    )


@router.get("/providers", response_model=SSOProviderListResponse)
def list_providers(sso_service: SSOService = Depends(get_sso_service)):
    """Fournisseurs actives (jamais le client_secret)."""
    return SSOProviderListResponse(
        providers=[
            SSOProviderRead(id=p.id, name=p.name, icon_url=p.icon_url, description=p.description)
            for p in sso_service.list_providers()
        ]
    )


@router.get("/connections", response_model=SSOConnectionListResponse)
def list_connections(
    current_user: User = Depends(get_current_user),
    sso_service: SSOService = Depends(get_sso_service),
):
    return SSOConnectionListResponse(
        connections=[
            SSOConnectionRead.model_validate(connection)
            for connection in sso_service.list_connections(current_user.id)
        ]
    )


@router.delete("/connections/{provider_id}", response_model=ResponseBase)
def unlink_connection(
    provider_id: str,
    current_user: User = Depends(get_current_user),
    sso_service: SSOService = Depends(get_sso_service),
):
    """
    Supprime le lien avec un fournisseur.

    409 si c'est le dernier moyen de connexion du compte.
    """
    if not sso_service.unlink(current_user.id, provider_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Aucune connexion '{provider_id}' pour ce compte",
        )
    return ResponseBase(message=f"Connexion {provider_id} supprimee")


@router.get("/{provider_id}/authorize", response_model=SSOAuthorizeResponse)
def authorize(
    provider_id: str,
    response: Response,
    sso_service: SSOService = Depends(get_sso_service),
    settings: Settings = Depends(get_settings),
):
    """
    Initie le flow OAuth2.

    L'etat CSRF (fournisseur, instant, nonce) est pose en cookie HttpOnly
    limite au chemin du fournisseur; seul le nonce part chez le fournisseur.
    """
    authorization = sso_service.begin_authorization(provider_id)
    response.set_cookie(
        key=settings.SSO_STATE_COOKIE_NAME,
        value=authorization.state.serialize(),
        max_age=settings.SSO_STATE_TTL_SECONDS,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
        path=_state_cookie_path(provider_id),
    )
    return SSOAuthorizeResponse(authorization_url=authorization.url)


@router.get("/{provider_id}/callback")
async def callback(
    provider_id: str,
    request: Request,
    code: str = Query(..., max_length=2048),
    state: Optional[str] = Query(None, max_length=512),
    client_address: Optional[str] = Depends(get_client_address),
    device_info: Dict[str, Any] = Depends(get_device_info),
    reported_device: DeviceInfo = Depends(get_reported_device_info),
    auth_service: AuthService = Depends(get_auth_service),
    session_service: SessionService = Depends(get_session_service),
    settings: Settings = Depends(get_settings),
):
    """
    Traite le retour du fournisseur.

    Violation CSRF: 403 sans aucun appel sortant. Succes: session (ou
    challenge MFA si active), exactement comme /auth/login.
    """
    stored_state = request.cookies.get(settings.SSO_STATE_COOKIE_NAME)

    try:
        result = await auth_service.login_via_sso(
            provider_id,
            code,
            returned_state=state,
            stored_state=stored_state,
            source_address=client_address,
            device_info=reported_device.merged_with(device_info),
        )
        body = login_body(result, session_service)
        response = JSONResponse(content=body.model_dump(mode="json"))
        if result.issued is not None:
            set_session_cookie(response, result.issued.token, settings)
    except ServiceException as exc:
        response = await service_exception_handler(request, exc)

    response.delete_cookie(settings.SSO_STATE_COOKIE_NAME, path=_state_cookie_path(provider_id))
    return response
