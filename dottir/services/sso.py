"""
Service SSO (OAuth2 authorization code) pour Dottir.

Machine a etats d'une tentative:
    idle -> redirect_issued -> callback_pending -> linked

- begin_authorization: construit l'URL du fournisseur et un etat CSRF
  (nonce a usage unique, conserve cote client dans un cookie)
- complete_callback: verifie l'etat CSRF AVANT tout appel sortant, echange
  le code, lit le profil, resout ou cree l'identite puis met a jour la
  connexion. Ne cree jamais de session: c'est le role d'AuthService.

Un etat CSRF invalide est un resultat (statut csrf_violation), pas une
exception. Les echecs reseau vers le fournisseur sont des exceptions typees
(TokenExchangeFailedError, UserInfoFailedError) et ne laissent aucune
connexion a moitie creee.
"""
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import urlencode

import httpx

from dottir.core.crypto import SecureRandom, get_secure_random
from dottir.core.logging import mask_email
from dottir.core.transient_store import TransientStore
from dottir.models.base import utc_now
from dottir.models.sso import SSOConnection, SSOProvider
from dottir.models.user import User
from dottir.repositories.base import translate_store_errors
from dottir.repositories.sso import SSOConnectionRepository, SSOProviderRepository
from dottir.repositories.user import UserRepository
from dottir.services.exceptions import (
    LastSignInMethodError,
    ProviderDisabledError,
    ProviderNotFoundError,
    TokenExchangeFailedError,
    UnverifiedEmailError,
    UserInfoFailedError,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Types
# ============================================================================

@dataclass(frozen=True)
class CSRFState:
    """
    Etat CSRF d'un aller-retour OAuth2.

    Serialise dans un cookie HttpOnly; seul `nonce` part dans le
    parametre `state` de l'URL d'autorisation.
    """
    provider_id: str
    issued_at: int
    nonce: str

    SEPARATOR = "|"

    def serialize(self) -> str:
        return self.SEPARATOR.join([self.provider_id, str(self.issued_at), self.nonce])

    @classmethod
    def parse(cls, raw: Optional[str]) -> Optional["CSRFState"]:
        """Relit un etat serialise; None si absent ou malforme."""
        if not raw:
            return None
        parts = raw.split(cls.SEPARATOR)
        if len(parts) != 3 or not all(parts):
            return None
        provider_id, issued_at, nonce = parts
        try:
            return cls(provider_id=provider_id, issued_at=int(issued_at), nonce=nonce)
        except ValueError:
            return None


@dataclass(frozen=True)
class AuthorizationRequest:
    url: str
    state: CSRFState


@dataclass(frozen=True)
class ProviderInfo:
    """Vue publique d'un fournisseur (jamais le client_secret)."""
    id: str
    name: str
    icon_url: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class ProviderProfile:
    """Profil normalise renvoye par l'endpoint userinfo."""
    subject: str
    email: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    email_verified: Optional[bool] = None


class SSOCallbackStatus:
    LINKED = "linked"
    CSRF_VIOLATION = "csrf_violation"


@dataclass(frozen=True)
class SSOCallbackResult:
    status: str
    user: Optional[User] = None
    connection: Optional[SSOConnection] = None
    created: bool = False

    @property
    def ok(self) -> bool:
        return self.status == SSOCallbackStatus.LINKED


def _parse_verified(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


# ============================================================================
# Service
# ============================================================================

class SSOService:
    """
    Federation d'identite via OAuth2.

    Args:
        user_repository: Repository des identites
        provider_repository: Fournisseurs configures (lecture seule)
        connection_repository: Connexions identite <-> fournisseur
        random: Fournisseur d'alea pour les nonces
        state_ttl_seconds: Duree de validite de l'etat CSRF
        http_timeout: Timeout des appels sortants (obligatoire)
        require_verified_email: Refuser un profil declare non verifie
        nonce_store: Registre des nonces deja presentes (usage unique)
        transport: Transport httpx (tests: httpx.MockTransport)
        clock: Source de temps UTC
    """

    def __init__(
        self,
        user_repository: UserRepository,
        provider_repository: SSOProviderRepository,
        connection_repository: SSOConnectionRepository,
        random: Optional[SecureRandom] = None,
        state_ttl_seconds: int = 600,
        http_timeout: float = 10.0,
        require_verified_email: bool = True,
        nonce_store: Optional[TransientStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.user_repository = user_repository
        self.provider_repository = provider_repository
        self.connection_repository = connection_repository
        self.random = random or get_secure_random()
        self.state_ttl_seconds = state_ttl_seconds
        self.http_timeout = http_timeout
        self.require_verified_email = require_verified_email
        self.nonce_store = nonce_store
        self.transport = transport
        self.clock = clock

    # ========================================================================
    # Fournisseurs
    # ========================================================================

    @translate_store_errors
    def list_providers(self) -> List[ProviderInfo]:
        """Fournisseurs actives uniquement, sans secret."""
        return [
            ProviderInfo(id=p.id, name=p.name, icon_url=p.icon_url, description=p.description)
            for p in self.provider_repository.list_enabled()
        ]

    def _get_enabled_provider(self, provider_id: str) -> SSOProvider:
        provider = self.provider_repository.get(provider_id)
        if provider is None:
            raise ProviderNotFoundError(provider_id)
        if not provider.enabled:
            raise ProviderDisabledError(provider_id)
        return provider

    # ========================================================================
    # Redirection
    # ========================================================================

    @translate_store_errors
    def begin_authorization(self, provider_id: str) -> AuthorizationRequest:
        """
        Construit l'URL d'autorisation et l'etat CSRF associe.

        Raises:
            ProviderNotFoundError, ProviderDisabledError
        """
        provider = self._get_enabled_provider(provider_id)
        state = CSRFState(
            provider_id=provider.id,
            issued_at=int(self.clock().timestamp()),
            nonce=self.random.token_urlsafe(32),
        )

        params = {
            "client_id": provider.client_id,
            "redirect_uri": provider.redirect_uri,
            "response_type": "code",
            "scope": " ".join(provider.scope_list),
            "state": state.nonce,
        }
        separator = "&" if "?" in provider.authorization_url else "?"
        url = f"{provider.authorization_url}{separator}{urlencode(params)}"

        logger.info(f"Redirection SSO emise vers {provider.id}")
        return AuthorizationRequest(url=url, state=state)

    # ========================================================================
    # Callback
    # ========================================================================

    def verify_state(
        self,
        provider_id: str,
        returned_state: Optional[str],
        stored_state: Union[CSRFState, str, None],
    ) -> bool:
        """
        Verifie l'etat CSRF d'un callback.

        Comparaison en temps constant du nonce, fournisseur identique,
        age inferieur au TTL et, si un registre est configure, premiere
        presentation du nonce.
        """
        state = stored_state if isinstance(stored_state, CSRFState) else CSRFState.parse(stored_state)
        if state is None or not returned_state:
            return False

        nonce_ok = hmac.compare_digest(returned_state.encode("utf-8"), state.nonce.encode("utf-8"))
        provider_ok = hmac.compare_digest(provider_id.encode("utf-8"), state.provider_id.encode("utf-8"))
        age = int(self.clock().timestamp()) - state.issued_at
        fresh = 0 <= age <= self.state_ttl_seconds

        if not (nonce_ok and provider_ok and fresh):
            return False

        if self.nonce_store is not None:
            uses = self.nonce_store.incr(f"sso_nonce:{state.nonce}", self.state_ttl_seconds)
            if uses > 1:
                logger.warning(f"Nonce SSO rejoue pour {provider_id}")
                return False
        return True

    async def _exchange_code(self, client: httpx.AsyncClient, provider: SSOProvider, code: str) -> Dict[str, Any]:
        """Echange le code d'autorisation contre des tokens (aucun retry)."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": provider.redirect_uri,
            "client_id": provider.client_id,
            "client_secret": provider.client_secret,
        }
        try:
            response = await client.post(
                provider.token_url,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Echange de code SSO impossible ({provider.id}): {type(e).__name__}")
            raise TokenExchangeFailedError(reason=type(e).__name__) from e

        if not response.is_success:
            logger.error(f"Echange de code SSO refuse ({provider.id}): HTTP {response.status_code}")
            raise TokenExchangeFailedError(reason=f"HTTP {response.status_code}")

        try:
            tokens = response.json()
        except ValueError as e:
            raise TokenExchangeFailedError(reason="reponse non JSON") from e

        if not isinstance(tokens, dict) or not tokens.get("access_token"):
            raise TokenExchangeFailedError(reason="access_token absent")
        return tokens

    async def _fetch_profile(self, client: httpx.AsyncClient, provider: SSOProvider, access_token: str) -> ProviderProfile:
        """Lit le profil du sujet sur l'endpoint userinfo."""
        try:
            response = await client.get(
                provider.userinfo_url,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Userinfo SSO impossible ({provider.id}): {type(e).__name__}")
            raise UserInfoFailedError(reason=type(e).__name__) from e

        if not response.is_success:
            logger.error(f"Userinfo SSO refuse ({provider.id}): HTTP {response.status_code}")
            raise UserInfoFailedError(reason=f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise UserInfoFailedError(reason="reponse non JSON") from e

        return self._normalize_profile(data)

    @staticmethod
    def _normalize_profile(data: Any) -> ProviderProfile:
        """Normalise les claims userinfo (sub ou id, picture ou avatar_url)."""
        if not isinstance(data, dict):
            raise UserInfoFailedError(reason="profil invalide")

        subject = data.get("sub") or data.get("id")
        email = data.get("email")
        if not subject:
            raise UserInfoFailedError(reason="identifiant du sujet absent")
        if not email:
            raise UserInfoFailedError(reason="email absent")

        return ProviderProfile(
            subject=str(subject),
            email=str(email).strip().lower(),
            name=data.get("name"),
            avatar_url=data.get("picture") or data.get("avatar_url"),
            email_verified=_parse_verified(data.get("email_verified")),
        )

    def _resolve_identity(self, profile: ProviderProfile):
        user = self.user_repository.get_by_email(profile.email)
        if user is not None:
            return user, False

        user = self.user_repository.create_user(
            email=profile.email,
            full_name=profile.name,
            avatar_url=profile.avatar_url,
        )
        logger.info(f"Identite creee via SSO: {mask_email(profile.email)}")
        return user, True

    @translate_store_errors
    async def complete_callback(
        self,
        provider_id: str,
        code: str,
        returned_state: Optional[str],
        stored_state: Union[CSRFState, str, None],
    ) -> SSOCallbackResult:
        """
        Termine l'aller-retour OAuth2.

        Returns:
            SSOCallbackResult(linked) ou SSOCallbackResult(csrf_violation).
            Sur violation CSRF aucun appel sortant n'est effectue.

        Raises:
            ProviderNotFoundError, ProviderDisabledError
            TokenExchangeFailedError: echange refuse, timeout ou erreur reseau
            UserInfoFailedError: profil indisponible ou incomplet
            UnverifiedEmailError: email declare non verifie
        """
        if not self.verify_state(provider_id, returned_state, stored_state):
            logger.warning(f"Etat CSRF invalide sur le callback SSO {provider_id}")
            return SSOCallbackResult(status=SSOCallbackStatus.CSRF_VIOLATION)

        provider = self._get_enabled_provider(provider_id)

        async with httpx.AsyncClient(timeout=self.http_timeout, transport=self.transport) as client:
            tokens = await self._exchange_code(client, provider, code)
            profile = await self._fetch_profile(client, provider, tokens["access_token"])

        if self.require_verified_email and profile.email_verified is False:
            logger.warning(f"Email SSO non verifie refuse: {mask_email(profile.email)}")
            raise UnverifiedEmailError()

        user, created = self._resolve_identity(profile)

        expires_at = None
        expires_in = tokens.get("expires_in")
        if isinstance(expires_in, (int, float)) and expires_in > 0:
            expires_at = self.clock() + timedelta(seconds=expires_in)

        connection = self.connection_repository.upsert(
            user_id=user.id,
            provider_id=provider.id,
            provider_user_id=profile.subject,
            access_token=tokens.get("access_token"),
            refresh_token=tokens.get("refresh_token"),
            expires_at=expires_at,
        )
        self.connection_repository.commit()

        logger.info(
            f"Connexion SSO {provider.id} liee pour user_id={user.id}",
            extra={"identity_created": created},
        )
        return SSOCallbackResult(
            status=SSOCallbackStatus.LINKED,
            user=user,
            connection=connection,
            created=created,
        )

    # ========================================================================
    # Connexions de l'utilisateur
    # ========================================================================

    @translate_store_errors
    def list_connections(self, user_id: int) -> List[SSOConnection]:
        return self.connection_repository.list_for_user(user_id)

    @translate_store_errors
    def unlink(self, user_id: int, provider_id: str) -> bool:
        """
        Supprime le lien avec un fournisseur.

        Refuse si c'est le dernier moyen de connexion du compte.

        Returns:
            True si un lien a ete supprime
        """
        connection = self.connection_repository.get_for_user_and_provider(user_id, provider_id)
        if connection is None:
            return False

        user = self.user_repository.get(user_id)
        has_password = user is not None and user.password_hash is not None
        if not has_password and self.connection_repository.count_for_user(user_id) <= 1:
            raise LastSignInMethodError(provider_id)

        self.connection_repository.delete_for_user_and_provider(user_id, provider_id)
        self.connection_repository.commit()
        logger.info(f"Connexion SSO {provider_id} supprimee pour user_id={user_id}")
        return True
