"""
Model Session: sessions authentifiees a fenetre glissante.

Une session a deux durees de vie:
- Inactivite: expire si last_activity_at est trop ancien (fenetre glissante)
- Absolue: absolute_expiry ne bouge jamais, meme avec de l'activite

Le token opaque remis au client n'est jamais stocke, seul son hash
SHA-256 l'est (token_hash). L'UUID `id` sert de poignee publique pour
lister et revoquer les sessions.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, BigInteger, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from dottir.models.base import Base, UTCDateTime, utc_now


class SessionEndReason:
    """Raisons de fin de session (etats terminaux)."""
    REVOKED = "revoked"
    EXPIRED_INACTIVITY = "expired_inactivity"
    EXPIRED_ABSOLUTE = "expired_absolute"


class Session(Base):
    """
    Represente une session utilisateur.

    Attributs:
        id: UUID de la session (poignee publique)
        token_hash: SHA-256 du token opaque
        user_id: FK vers l'utilisateur
        last_activity_at: Derniere activite confirmee (touch)
        absolute_expiry: Plafond de vie, NULL = pas de plafond
        device_info: Blob client (userAgent, platform...), jamais interprete
        ip_address: Adresse source a la creation
        revoked_at: Fin de la session (revocation ou expiration constatee)
        end_reason: Voir SessionEndReason
    """

    __tablename__ = "sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)

    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    last_activity_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    # Cette date ne change JAMAIS apres la creation
    absolute_expiry: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)

    device_info: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    revoked_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)
    end_reason: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    def __repr__(self) -> str:
        status = self.end_reason or "active"
        return f"<Session(id={self.id}, user_id={self.user_id}, status='{status}')>"

    @property
    def is_ended(self) -> bool:
        return self.revoked_at is not None
