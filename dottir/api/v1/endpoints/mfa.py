"""
Endpoints MFA pour Dottir.

- POST /mfa/setup: Demarre l'enrolement (secret, URI otpauth, codes de secours)
- POST /mfa/confirm: Active MFA avec un premier code TOTP
- GET /mfa/status: Statut MFA
- POST /mfa/disable: Desactive MFA (re-authentification exigee)
- POST /mfa/backup-codes/regenerate: Nouveau jeu de codes de secours

Securite:
- Authentification requise pour tous les endpoints
- Le secret et les codes ne sont visibles qu'une seule fois
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends

from dottir.core.dependencies import (
    get_auth_service,
    get_client_address,
    get_current_session,
    get_current_user,
    get_mfa_service,
)
from dottir.models.session import Session
from dottir.models.user import User
from dottir.schemas.mfa import (
    MFABackupCodesResponse,
    MFAConfirmRequest,
    MFAConfirmResponse,
    MFADisableRequest,
    MFADisableResponse,
    MFARegenerateRequest,
    MFASetupResponse,
    MFAStatusResponse,
)
from dottir.services.auth import AuthService
from dottir.services.exceptions import (
    MFAVerificationFailedError,
    ReauthenticationRequiredError,
)
from dottir.services.mfa import MFAService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/mfa", tags=["MFA"])


@router.post("/setup", response_model=MFASetupResponse, summary="Demarre l'enrolement MFA")
def setup_mfa(
    current_user: User = Depends(get_current_user),
    mfa_service: MFAService = Depends(get_mfa_service),
):
    """
    Genere un nouveau secret TOTP et un jeu de codes de secours.

    Un enrolement en attente est remplace. MFA deja actif: 409.
    """
    result = mfa_service.begin_setup(current_user)
    return MFASetupResponse(
        secret=result.secret,
        provisioning_uri=result.provisioning_uri,
        backup_codes=list(result.backup_codes),
        message="Scannez l'URI puis confirmez avec un code",
    )


@router.post("/confirm", response_model=MFAConfirmResponse)
def confirm_mfa(
    payload: MFAConfirmRequest,
    current_user: User = Depends(get_current_user),
    mfa_service: MFAService = Depends(get_mfa_service),
):
    if not mfa_service.confirm_setup(current_user, payload.code):
        raise MFAVerificationFailedError()
    return MFAConfirmResponse(message="MFA active")


@router.get("/status", response_model=MFAStatusResponse)
def mfa_status(
    current_user: User = Depends(get_current_user),
    mfa_service: MFAService = Depends(get_mfa_service),
):
    status = mfa_service.get_status(current_user.id)
    return MFAStatusResponse(
        state=status.state,
        enabled=status.enabled,
        configured=status.configured,
        backup_codes_remaining=status.backup_codes_remaining,
        last_used_at=status.last_used_at,
    )


@router.post("/disable", response_model=MFADisableResponse)
def disable_mfa(
    payload: MFADisableRequest,
    current_user: User = Depends(get_current_user),
    current_session: Session = Depends(get_current_session),
    client_address: Optional[str] = Depends(get_client_address),
    auth_service: AuthService = Depends(get_auth_service),
    mfa_service: MFAService = Depends(get_mfa_service),
):
    """
    Desactive MFA apres re-authentification (mot de passe et code MFA).
    """
    if not auth_service.reauthenticate(
        current_user,
        payload.password,
        mfa_code=payload.mfa_code,
        source_address=client_address,
        current_session=current_session,
    ):
        raise ReauthenticationRequiredError()

    mfa_service.disable(current_user.id)
    return MFADisableResponse()


@router.post("/backup-codes/regenerate", response_model=MFABackupCodesResponse)
def regenerate_backup_codes(
    payload: MFARegenerateRequest,
    current_user: User = Depends(get_current_user),
    mfa_service: MFAService = Depends(get_mfa_service),
):
    """
    Remplace les codes de secours. Exige un code TOTP frais.
    """
    codes = mfa_service.regenerate_backup_codes(current_user.id, payload.code)
    if codes is None:
        raise MFAVerificationFailedError()
    return MFABackupCodesResponse(backup_codes=codes, message="Nouveaux codes de secours generes")
