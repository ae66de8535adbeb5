"""
Schemas Pydantic pour le login et la re-authentification.
"""
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import EmailStr, Field, ValidationInfo, field_validator

from dottir.schemas.base import BaseSchema, ResponseBase


class DeviceInfo(BaseSchema):
    """
    Empreinte d'appareil declaree par le client.

    Stockee telle quelle avec la session; le User-Agent vient toujours
    du header de la requete.
    """
    user_agent: Optional[str] = Field(None, alias="userAgent", max_length=512)
    platform: Optional[str] = Field(None, max_length=64)
    language: Optional[str] = Field(None, max_length=35)
    screen_width: Optional[int] = Field(None, alias="screenWidth", ge=0, le=32768)
    screen_height: Optional[int] = Field(None, alias="screenHeight", ge=0, le=32768)
    timezone: Optional[str] = Field(None, max_length=64)

    def merged_with(self, base: Dict[str, Any]) -> Dict[str, Any]:
        return {**self.model_dump(by_alias=True, exclude_none=True), **base}


class LoginRequest(BaseSchema):
    """Requete de login par mot de passe"""
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)
    device_info: Optional[DeviceInfo] = None


class RegisterRequest(BaseSchema):
    """Inscription par email et mot de passe"""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    full_name: str = Field(..., min_length=1, max_length=255)
    role: Literal["student", "doctor", "educator"]

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str, info: ValidationInfo) -> str:
        """Valide la force du mot de passe"""
        from dottir.core.security import validate_password_strength
        validate_password_strength(v, email=info.data.get("email"))
        return v


class UserRead(BaseSchema):
    """Identite exposee par l'API (jamais le hash du mot de passe)"""
    id: int
    email: str
    full_name: Optional[str] = None
    role: str
    mfa_enabled: bool
    created_at: Optional[datetime] = None


class RegisterResponse(ResponseBase):
    user: UserRead


class MFACompleteRequest(BaseSchema):
    """Seconde etape du login: code TOTP ou code de secours"""
    challenge_token: str = Field(..., min_length=1, max_length=128)
    code: str = Field(..., min_length=1, max_length=32)


class MFACancelRequest(BaseSchema):
    challenge_token: str = Field(..., min_length=1, max_length=128)


class ReauthenticateRequest(BaseSchema):
    """
    Re-authentification pour les operations sensibles.

    password est requis si le compte en a un, mfa_code si MFA est actif.
    """
    password: Optional[str] = Field(None, max_length=128)
    mfa_code: Optional[str] = Field(None, max_length=32)


class SessionTokenResponse(ResponseBase):
    """
    Session emise. Le token est aussi pose en cookie HttpOnly.
    """
    status: str = "authenticated"
    session_token: str
    session_id: str
    expires_at: datetime
    user_id: int


class MFAChallengeResponse(ResponseBase):
    """Login en attente du code MFA"""
    status: str = "mfa_required"
    challenge_token: str
    expires_at: datetime
