"""
Endpoints de gestion des Sessions pour Dottir.

- GET /sessions: Liste les sessions actives de l'utilisateur
- POST /sessions/touch: Marque une activite et retourne les echeances
- DELETE /sessions/{session_id}: Termine une session specifique
- POST /sessions/revoke-all: Termine toutes les sessions (sauf courante),
  re-authentification exigee

Chaque requete authentifiee repousse deja la fenetre d'inactivite;
/touch existe pour les clients qui signalent une activite locale
(clavier, souris) sans autre appel API.
"""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends

from dottir.core.dependencies import (
    get_auth_service,
    get_client_address,
    get_current_session,
    get_current_user,
    get_session_service,
    get_session_token,
)
from dottir.models.session import Session
from dottir.models.user import User
from dottir.schemas.auth import ReauthenticateRequest
from dottir.schemas.session import (
    SessionDevice,
    SessionListResponse,
    SessionRead,
    SessionRevokeAllResponse,
    SessionRevokeResponse,
    SessionTimeoutResponse,
)
from dottir.services.auth import AuthService
from dottir.services.exceptions import ReauthenticationRequiredError
from dottir.services.session import SessionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["Sessions"])


@router.get("", response_model=SessionListResponse, summary="Liste des sessions actives")
def list_sessions(
    current_user: User = Depends(get_current_user),
    token: Optional[str] = Depends(get_session_token),
    session_service: SessionService = Depends(get_session_service),
):
    sessions = session_service.list_sessions(current_user.id, current_token=token)
    return SessionListResponse(
        sessions=[
            SessionRead(
                id=s.id,
                device=SessionDevice(**s.device),
                device_info=s.device_info,
                ip_address=s.ip_address,
                created_at=s.created_at,
                last_activity_at=s.last_activity_at,
                expires_at=s.expires_at,
                is_current=s.is_current,
            )
            for s in sessions
        ],
        total=len(sessions),
    )


@router.post("/touch", response_model=SessionTimeoutResponse)
def touch_session(
    session: Session = Depends(get_current_session),
    session_service: SessionService = Depends(get_session_service),
):
    """
    Repousse la fenetre d'inactivite de la session courante.

    La validation de la session (get_current_session) fait le touch;
    l'endpoint retourne les nouvelles echeances.
    """
    info = session_service.timeout_info(session)
    return SessionTimeoutResponse(
        expires_at=info.expires_at,
        warn_at=info.warn_at,
        inactivity_expires_at=info.inactivity_expires_at,
        absolute_expiry=info.absolute_expiry,
        activity_events=info.activity_events,
    )


@router.delete("/{session_id}", response_model=SessionRevokeResponse)
def revoke_session(
    session_id: UUID,
    current_user: User = Depends(get_current_user),
    session_service: SessionService = Depends(get_session_service),
):
    """
    Termine une session de l'utilisateur courant.

    404 si la session n'existe pas ou appartient a un autre utilisateur.
    """
    revoked = session_service.revoke_by_id(session_id, current_user.id)
    return SessionRevokeResponse(revoked=revoked)


@router.post("/revoke-all", response_model=SessionRevokeAllResponse)
def revoke_all_sessions(
    payload: ReauthenticateRequest,
    current_user: User = Depends(get_current_user),
    current_session: Session = Depends(get_current_session),
    token: Optional[str] = Depends(get_session_token),
    client_address: Optional[str] = Depends(get_client_address),
    auth_service: AuthService = Depends(get_auth_service),
    session_service: SessionService = Depends(get_session_service),
):
    """
    "Deconnecter partout": revoque toutes les autres sessions.
    """
    if not auth_service.reauthenticate(
        current_user,
        payload.password,
        mfa_code=payload.mfa_code,
        source_address=client_address,
        current_session=current_session,
    ):
        raise ReauthenticationRequiredError()

    count = session_service.revoke_all(current_user.id, except_token=token)
    return SessionRevokeAllResponse(revoked_count=count)
