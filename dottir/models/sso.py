"""
Models pour la federation d'identite (SSO OAuth2).

- SSOProvider: configuration d'un fournisseur (lecture seule ici)
- SSOConnection: lien entre une identite locale et un compte fournisseur
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dottir.models.base import Base, BigIntPK, TimestampMixin, UTCDateTime, utc_now


class SSOProvider(Base):
    """
    Configuration d'un fournisseur OAuth2.

    Attributs:
        id: Slug du fournisseur ('google', 'orcid'...)
        scopes: Scopes separes par des espaces
        client_secret: Ne quitte jamais le serveur
        enabled: Un fournisseur desactive n'est ni liste ni utilisable
    """

    __tablename__ = "sso_providers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)

    authorization_url: Mapped[str] = mapped_column(Text, nullable=False)
    token_url: Mapped[str] = mapped_column(Text, nullable=False)
    userinfo_url: Mapped[str] = mapped_column(Text, nullable=False)

    client_id: Mapped[str] = mapped_column(Text, nullable=False)
    client_secret: Mapped[str] = mapped_column(Text, nullable=False)
    redirect_uri: Mapped[str] = mapped_column(Text, nullable=False)
    scopes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    icon_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    def __repr__(self) -> str:
        return f"<SSOProvider(id='{self.id}', enabled={self.enabled})>"

    @property
    def scope_list(self) -> list:
        return [scope for scope in self.scopes.split() if scope]


class SSOConnection(Base, TimestampMixin):
    """
    Compte fournisseur lie a une identite locale.

    Un seul lien par couple (utilisateur, fournisseur).
    """

    __tablename__ = "user_sso_connections"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    provider_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("sso_providers.id", ondelete="CASCADE"),
        nullable=False
    )
    provider_user_id: Mapped[str] = mapped_column(Text, nullable=False)

    # Tokens OAuth du fournisseur
    access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "provider_id", name="uq_sso_connection_user_provider"),
    )

    def __repr__(self) -> str:
        return f"<SSOConnection(id={self.id}, provider='{self.provider_id}', user_id={self.user_id})>"

    def to_dict(self) -> dict:
        """Serialise la connexion (sans les tokens)"""
        return {
            "id": self.id,
            "provider_id": self.provider_id,
            "provider_user_id": self.provider_user_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
