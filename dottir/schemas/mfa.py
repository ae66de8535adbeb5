"""
Schemas Pydantic pour l'authentification multi-facteur (MFA).

- Enrolement (secret + URI otpauth + codes de secours)
- Confirmation TOTP
- Desactivation (re-authentification)
- Statut et regeneration des codes de secours
"""
from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator

from dottir.schemas.auth import ReauthenticateRequest
from dottir.schemas.base import BaseSchema, ResponseBase


class MFASetupResponse(ResponseBase):
    """Response du setup MFA: seul moment ou le secret est visible"""
    secret: str = Field(..., description="Secret TOTP en base32")
    provisioning_uri: str = Field(..., description="URI otpauth:// pour configuration")
    backup_codes: List[str] = Field(
        ...,
        description="Codes de secours a sauvegarder (affiches une seule fois)"
    )


class MFAConfirmRequest(BaseSchema):
    """Confirmation de l'enrolement avec un premier code TOTP"""
    code: str = Field(..., min_length=6, max_length=8)

    @field_validator("code")
    @classmethod
    def validate_totp_code(cls, v: str) -> str:
        """Valide que le code est numerique"""
        cleaned = v.replace(" ", "")
        if not cleaned.isdigit():
            raise ValueError("Le code doit contenir uniquement des chiffres")
        return cleaned


class MFARegenerateRequest(MFAConfirmRequest):
    """Regeneration des codes de secours (code TOTP frais exige)"""
    pass


class MFADisableRequest(ReauthenticateRequest):
    """Desactivation MFA: mot de passe et code MFA"""
    pass


class MFAConfirmResponse(ResponseBase):
    enabled: bool = True


class MFADisableResponse(ResponseBase):
    enabled: bool = False
    message: str = "MFA desactive avec succes"


class MFABackupCodesResponse(ResponseBase):
    backup_codes: List[str]


class MFAStatusResponse(ResponseBase):
    """Status MFA d'un utilisateur"""
    state: str = Field(..., description="disabled, verify_pending ou enabled")
    enabled: bool
    configured: bool
    backup_codes_remaining: int = Field(..., ge=0)
    last_used_at: Optional[datetime] = None
