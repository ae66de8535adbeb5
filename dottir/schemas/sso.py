"""
Schemas Pydantic pour le SSO (OAuth2).
"""
from datetime import datetime
from typing import List, Optional

from pydantic import Field

from dottir.schemas.base import BaseSchema, ResponseBase


class SSOProviderRead(BaseSchema):
    """Fournisseur public (sans client_secret)"""
    id: str
    name: str
    icon_url: Optional[str] = None
    description: Optional[str] = None


class SSOProviderListResponse(ResponseBase):
    providers: List[SSOProviderRead]


class SSOAuthorizeResponse(ResponseBase):
    """URL d'autorisation. L'etat CSRF est pose en cookie HttpOnly."""
    authorization_url: str


class SSOConnectionRead(BaseSchema):
    """Connexion fournisseur (jamais les tokens)"""
    provider_id: str
    provider_user_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SSOConnectionListResponse(ResponseBase):
    connections: List[SSOConnectionRead] = Field(default_factory=list)
