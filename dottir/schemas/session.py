"""
Schemas Pydantic pour la gestion des sessions.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from dottir.schemas.base import BaseSchema, ResponseBase


class SessionDevice(BaseSchema):
    device: Optional[str] = None
    os: Optional[str] = None
    browser: Optional[str] = None


class SessionRead(BaseSchema):
    """Session active (jamais le token ni son hash)"""
    id: UUID
    device: SessionDevice
    device_info: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    is_current: bool = False


class SessionListResponse(ResponseBase):
    sessions: List[SessionRead]
    total: int


class SessionTimeoutResponse(ResponseBase):
    """
    Echeances de la session courante apres le touch.

    Le client affiche l'avertissement a warn_at et rearme son minuteur
    sur les evenements de activity_events.
    """
    expires_at: datetime
    warn_at: datetime
    inactivity_expires_at: datetime
    absolute_expiry: Optional[datetime] = None
    activity_events: List[str] = []


class SessionRevokeResponse(ResponseBase):
    revoked: bool = True


class SessionRevokeAllResponse(ResponseBase):
    revoked_count: int
