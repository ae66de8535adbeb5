"""
Repository pour les identites (User)
"""
from typing import Optional

from dottir.models.user import User, UserRole
from dottir.repositories.base import BaseRepository


def normalize_email(email: str) -> str:
    """Email compare et stocke en minuscules."""
    return (email or "").strip().lower()


class UserRepository(BaseRepository[User]):
    """
    Repository pour les utilisateurs.
    """

    model = User

    def get_by_email(self, email: str) -> Optional[User]:
        """
        Recupere un utilisateur par email (insensible a la casse).
        """
        return (
            self.session.query(self.model)
            .filter(self.model.email == normalize_email(email))
            .first()
        )

    def create_user(
        self,
        email: str,
        password_hash: Optional[str] = None,
        full_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
        role: str = UserRole.MEMBER,
    ) -> User:
        """
        Cree une identite. mfa_enabled est toujours False a la creation.
        """
        return self.create({
            "email": normalize_email(email),
            "password_hash": password_hash,
            "full_name": full_name,
            "avatar_url": avatar_url,
            "role": role,
            "mfa_enabled": False,
        })

    def set_mfa_enabled(self, user_id: int, enabled: bool) -> bool:
        """
        Met a jour le miroir users.mfa_enabled.

        Returns:
            True si l'utilisateur existe
        """
        updated = (
            self.session.query(self.model)
            .filter(self.model.id == user_id)
            .update({self.model.mfa_enabled: enabled}, synchronize_session="fetch")
        )
        return updated > 0
