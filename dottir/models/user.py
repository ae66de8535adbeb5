"""
Model User (Identity) pour Dottir
"""
from typing import Optional

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dottir.models.base import Base, BigIntPK, TimestampMixin


class UserRole:
    """Roles d'une identite. Une identite creee par SSO est `member`."""
    MEMBER = "member"
    STUDENT = "student"
    DOCTOR = "doctor"
    EDUCATOR = "educator"

    # Roles ouverts a l'inscription publique
    REGISTRABLE = frozenset({STUDENT, DOCTOR, EDUCATOR})


class User(Base, TimestampMixin):
    """
    Identite d'un membre de la plateforme.

    Le mot de passe est optionnel: une identite creee par SSO n'en a pas.
    Ce sous-systeme ne supprime jamais d'identite.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)

    # Email unique, stocke en minuscules
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    password_hash: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    full_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=UserRole.MEMBER)

    # Miroir de l'etat MFA (mfa_secrets.enabled)
    mfa_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, role='{self.role}')>"

    @property
    def has_password(self) -> bool:
        """True si l'utilisateur peut se connecter par mot de passe."""
        return self.password_hash is not None

    def to_dict(self) -> dict:
        """Serialise l'utilisateur (sans le hash du mot de passe)"""
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "avatar_url": self.avatar_url,
            "role": self.role,
            "mfa_enabled": self.mfa_enabled,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
