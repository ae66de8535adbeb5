"""
Models pour l'authentification multi-facteur (MFA/2FA).

Ce module contient les modeles SQLAlchemy pour:
- MFASecret: Secret TOTP pour la generation de codes a usage unique
- MFARecoveryCode: Codes de secours a usage unique

Cycle de vie MFA:
1. begin_setup cree un secret (enabled=False) et un jeu de codes de secours
2. L'utilisateur scanne l'URI otpauth:// avec son application
3. confirm_setup valide un premier code et passe enabled=True
4. disable supprime le secret et les codes

Securite:
- Le secret TOTP est chiffre en base (AES-256-GCM)
- Les codes de secours sont hashes (bcrypt)
- Chaque code de secours ne peut etre utilise qu'une fois
"""
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import BigInteger, Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dottir.models.base import Base, BigIntPK, UTCDateTime, utc_now


class MFASecret(Base):
    """
    Stocke le secret TOTP d'un utilisateur (user_id = PK, un seul secret).

    Attributs:
        user_id: Cle primaire, FK vers l'utilisateur
        secret: Secret TOTP base32 chiffre (AES-256-GCM)
        algorithm / period / digits: Parametres RFC 6238
        enabled: False tant que le premier code n'a pas ete confirme
        last_used_at: Derniere verification TOTP reussie
        last_totp_window: Dernier pas de temps accepte (anti-replay)
    """

    __tablename__ = "mfa_secrets"

    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True
    )

    # ATTENTION: toujours chiffre, voir dottir.core.crypto
    secret: Mapped[str] = mapped_column(Text, nullable=False)

    algorithm: Mapped[str] = mapped_column(String(16), nullable=False, default="SHA1")
    period: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    digits: Mapped[int] = mapped_column(Integer, nullable=False, default=6)

    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    # TOTP change toutes les 30s, ce champ stocke le numero de pas
    # pour empecher la reutilisation du meme code
    last_totp_window: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    def __repr__(self) -> str:
        status = "enabled" if self.enabled else "pending"
        return f"<MFASecret(user_id={self.user_id}, status='{status}')>"

    def to_dict(self) -> Dict[str, Any]:
        """Serialise le secret MFA (jamais la valeur du secret)."""
        return {
            "user_id": self.user_id,
            "enabled": self.enabled,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
        }


class MFARecoveryCode(Base):
    """
    Code de secours a usage unique.

    used_at NULL = code utilisable. Le passage a non-NULL est definitif.
    Le code brut est affiche une seule fois, seul son hash est stocke.
    """

    __tablename__ = "mfa_recovery_codes"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    user_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    code_hash: Mapped[str] = mapped_column(Text, nullable=False)

    used_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utc_now)

    def __repr__(self) -> str:
        status = "used" if self.used_at else "valid"
        return f"<MFARecoveryCode(id={self.id}, user_id={self.user_id}, status='{status}')>"

    @property
    def is_used(self) -> bool:
        """Retourne True si le code a deja ete utilise."""
        return self.used_at is not None
