"""
Repositories pour la federation SSO.

- SSOProviderRepository: lecture des fournisseurs configures
- SSOConnectionRepository: liens identite <-> compte fournisseur (upsert)
"""
from datetime import datetime
from typing import List, Optional

from dottir.models.sso import SSOConnection, SSOProvider
from dottir.repositories.base import BaseRepository


class SSOProviderRepository(BaseRepository[SSOProvider]):
    """
    Repository pour les fournisseurs SSO (lecture seule pour le service).
    """

    model = SSOProvider

    def list_enabled(self) -> List[SSOProvider]:
        """Fournisseurs actives, tries par nom."""
        return (
            self.session.query(self.model)
            .filter(self.model.enabled.is_(True))
            .order_by(self.model.name)
            .all()
        )


class SSOConnectionRepository(BaseRepository[SSOConnection]):
    """
    Repository pour les connexions SSO des utilisateurs.
    """

    model = SSOConnection

    def get_for_user_and_provider(self, user_id: int, provider_id: str) -> Optional[SSOConnection]:
        return (
            self.session.query(self.model)
            .filter(self.model.user_id == user_id)
            .filter(self.model.provider_id == provider_id)
            .first()
        )

    def list_for_user(self, user_id: int) -> List[SSOConnection]:
        return (
            self.session.query(self.model)
            .filter(self.model.user_id == user_id)
            .order_by(self.model.created_at)
            .all()
        )

    def count_for_user(self, user_id: int) -> int:
        return (
            self.session.query(self.model)
            .filter(self.model.user_id == user_id)
            .count()
        )

    def upsert(
        self,
        user_id: int,
        provider_id: str,
        provider_user_id: str,
        access_token: Optional[str],
        refresh_token: Optional[str],
        expires_at: Optional[datetime],
    ) -> SSOConnection:
        """
        Cree ou met a jour le lien (user_id, provider_id).

        Une re-authentification ecrase les tokens, ne duplique jamais.
        Un refresh_token absent de la reponse conserve le precedent.
        """
        connection = self.get_for_user_and_provider(user_id, provider_id)

        if connection is None:
            connection = SSOConnection(
                user_id=user_id,
                provider_id=provider_id,
                provider_user_id=provider_user_id,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=expires_at,
            )
            self.session.add(connection)
        else:
            connection.provider_user_id = provider_user_id
            connection.access_token = access_token
            if refresh_token is not None:
                connection.refresh_token = refresh_token
            connection.expires_at = expires_at

        self.session.flush()
        return connection

    def delete_for_user_and_provider(self, user_id: int, provider_id: str) -> bool:
        deleted = (
            self.session.query(self.model)
            .filter(self.model.user_id == user_id)
            .filter(self.model.provider_id == provider_id)
            .delete(synchronize_session=False)
        )
        return deleted > 0
