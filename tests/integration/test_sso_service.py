"""
Tests integration du controleur SSO OAuth2.

Le fournisseur est simule par httpx.MockTransport (tests.fakes.FakeProvider).
"""
import logging
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from dottir.models.user import User
from dottir.services.exceptions import (
    LastSignInMethodError,
    ProviderDisabledError,
    ProviderNotFoundError,
    TokenExchangeFailedError,
    UnverifiedEmailError,
    UserInfoFailedError,
)
from dottir.services.sso import SSOCallbackStatus
from tests.factories import SSOConnectionFactory, SSOProviderFactory, UserFactory
from tests.fakes import AUTHORIZATION_URL, START_TIME


@pytest.fixture
def idp(db_session):
    return SSOProviderFactory.create(db_session=db_session)


@pytest.fixture
def authorization(idp, sso_service):
    return sso_service.begin_authorization("idp")


async def callback(sso_service, authorization, code="auth-code-1"):
    return await sso_service.complete_callback(
        "idp", code, authorization.state.nonce, authorization.state.serialize()
    )


class TestProviders:

    @pytest.mark.integration
    def test_list_enabled_only(self, db_session, sso_service):
        SSOProviderFactory.create(db_session=db_session, id="orcid", name="ORCID")
        SSOProviderFactory.create(db_session=db_session, id="legacy", name="Legacy", enabled=False)
        SSOProviderFactory.create(db_session=db_session, id="google", name="Google")

        providers = sso_service.list_providers()

        assert [p.id for p in providers] == ["google", "orcid"]
        assert not hasattr(providers[0], "client_secret")


class TestBeginAuthorization:

    @pytest.mark.integration
    def test_authorization_url(self, idp, authorization):
        url = urlparse(authorization.url)
        params = parse_qs(url.query)

        assert authorization.url.startswith(AUTHORIZATION_URL)
        assert params["client_id"] == ["dottir-client"]
        assert params["response_type"] == ["code"]
        assert params["scope"] == ["openid email profile"]
        assert params["redirect_uri"] == [idp.redirect_uri]
        assert params["state"] == [authorization.state.nonce]
        assert "client_secret" not in params

    @pytest.mark.integration
    def test_state(self, authorization):
        assert authorization.state.provider_id == "idp"
        assert authorization.state.issued_at == int(START_TIME.timestamp())
        assert len(authorization.state.nonce) >= 43

    @pytest.mark.integration
    def test_fresh_nonce_each_time(self, idp, sso_service):
        first = sso_service.begin_authorization("idp")
        second = sso_service.begin_authorization("idp")
        assert first.state.nonce != second.state.nonce

    @pytest.mark.integration
    def test_unknown_provider(self, sso_service):
        with pytest.raises(ProviderNotFoundError):
            sso_service.begin_authorization("inconnu")

    @pytest.mark.integration
    def test_disabled_provider(self, db_session, sso_service):
        SSOProviderFactory.create(db_session=db_session, id="legacy", enabled=False)
        with pytest.raises(ProviderDisabledError):
            sso_service.begin_authorization("legacy")


class TestCompleteCallback:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_new_identity(self, sso_service, authorization, provider, sso_connection_repository, clock):
        result = await callback(sso_service, authorization)

        assert result.status == SSOCallbackStatus.LINKED
        assert result.created is True
        assert result.user.email == "ada@example.com"
        assert result.user.full_name == "Ada Lovelace"
        assert result.user.password_hash is None
        assert result.user.mfa_enabled is False

        connection = sso_connection_repository.get_for_user_and_provider(result.user.id, "idp")
        assert connection.provider_user_id == "idp-subject-42"
        assert connection.access_token == "provider-access-token"
        assert connection.expires_at == clock() + timedelta(hours=1)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_callback_with_info_logging(self, sso_service, authorization, provider, caplog):
        """Le journal INFO du lien ne doit pas casser le callback"""
        caplog.set_level(logging.INFO, logger="dottir")

        result = await callback(sso_service, authorization)

        assert result.status == SSOCallbackStatus.LINKED
        record = next(r for r in caplog.records if "Connexion SSO idp liee" in r.getMessage())
        assert record.identity_created is True

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_token_request(self, sso_service, authorization, provider, idp):
        await callback(sso_service, authorization, code="the-code")
        form = provider.last_form()

        assert provider.calls == 2
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "the-code"
        assert form["client_secret"] == "dottir-client-secret"
        assert form["redirect_uri"] == idp.redirect_uri

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_existing_identity_linked_by_email(self, db_session, sso_service, authorization):
        existing = UserFactory.create(db_session=db_session, email="ada@example.com")

        result = await callback(sso_service, authorization)

        assert result.created is False
        assert result.user.id == existing.id
        assert result.user.password_hash is not None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_relogin_updates_connection(self, sso_service, idp, provider, sso_connection_repository, clock):
        first = await callback(sso_service, sso_service.begin_authorization("idp"))

        provider.token_payload = {"access_token": "second-access-token", "expires_in": 60}
        clock.advance(minutes=5)
        await callback(sso_service, sso_service.begin_authorization("idp"))

        connections = sso_connection_repository.list_for_user(first.user.id)
        assert len(connections) == 1
        assert connections[0].access_token == "second-access-token"
        assert connections[0].refresh_token == "provider-refresh-token"
        assert connections[0].expires_at == clock() + timedelta(seconds=60)

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.security
    @pytest.mark.parametrize(
        "returned_state,stored_state",
        [
            ("forged", "valid"),
            (None, "valid"),
            ("nonce", None),
            ("nonce", "idp|garbage|nonce"),
        ],
    )
    async def test_csrf_violation_makes_no_outbound_call(
        self, sso_service, authorization, provider, user_repository, returned_state, stored_state
    ):
        if stored_state == "valid":
            stored_state = authorization.state.serialize()
        if returned_state == "nonce":
            returned_state = authorization.state.nonce

        result = await sso_service.complete_callback("idp", "code", returned_state, stored_state)

        assert result.status == SSOCallbackStatus.CSRF_VIOLATION
        assert result.ok is False
        assert provider.calls == 0
        assert user_repository.count() == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.security
    async def test_state_replay_refused(self, sso_service, authorization, provider):
        assert (await callback(sso_service, authorization)).ok

        replay = await callback(sso_service, authorization)

        assert replay.status == SSOCallbackStatus.CSRF_VIOLATION
        assert provider.calls == 2

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_expired_state(self, sso_service, authorization, provider, clock):
        clock.advance(minutes=11)

        result = await callback(sso_service, authorization)

        assert result.status == SSOCallbackStatus.CSRF_VIOLATION
        assert provider.calls == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_state_for_other_provider(self, db_session, sso_service, authorization, provider):
        SSOProviderFactory.create(db_session=db_session, id="orcid")

        result = await sso_service.complete_callback(
            "orcid", "code", authorization.state.nonce, authorization.state.serialize()
        )

        assert result.status == SSOCallbackStatus.CSRF_VIOLATION

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_provider_disabled_between_redirect_and_callback(self, idp, sso_service, authorization, db_session):
        idp.enabled = False
        db_session.flush()

        with pytest.raises(ProviderDisabledError):
            await callback(sso_service, authorization)


class TestProviderFailures:

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_token_exchange_rejected(self, sso_service, authorization, provider, user_repository):
        provider.token_status = 400
        provider.token_payload = {"error": "invalid_grant"}

        with pytest.raises(TokenExchangeFailedError) as exc_info:
            await callback(sso_service, authorization)

        assert exc_info.value.status_code == 502
        assert "HTTP 400" in exc_info.value.message
        assert user_repository.count() == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_token_without_access_token(self, sso_service, authorization, provider):
        provider.token_payload = {"token_type": "Bearer"}

        with pytest.raises(TokenExchangeFailedError):
            await callback(sso_service, authorization)

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_network_timeout(self, sso_service, authorization, provider, sso_connection_repository):
        provider.network_error = httpx.ConnectTimeout("timeout")

        with pytest.raises(TokenExchangeFailedError) as exc_info:
            await callback(sso_service, authorization)

        assert exc_info.value.reason == "ConnectTimeout"
        assert sso_connection_repository.count() == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_userinfo_failure(self, sso_service, authorization, provider, user_repository):
        provider.userinfo_status = 500

        with pytest.raises(UserInfoFailedError):
            await callback(sso_service, authorization)
        assert user_repository.count() == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_profile_without_email(self, sso_service, authorization, provider):
        provider.profile = {"sub": "42"}

        with pytest.raises(UserInfoFailedError):
            await callback(sso_service, authorization)

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.security
    async def test_unverified_email_not_linked(self, db_session, sso_service, authorization, provider, sso_connection_repository):
        UserFactory.create(db_session=db_session, email="ada@example.com")
        provider.profile["email_verified"] = False

        with pytest.raises(UnverifiedEmailError):
            await callback(sso_service, authorization)
        assert sso_connection_repository.count() == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unverified_email_allowed_when_configured(self, sso_service, authorization, provider):
        sso_service.require_verified_email = False
        provider.profile["email_verified"] = False

        assert (await callback(sso_service, authorization)).ok


class TestConnections:

    @pytest.mark.integration
    def test_list_connections(self, db_session, idp, sso_service):
        user = UserFactory.create(db_session=db_session)
        SSOConnectionFactory.create(db_session=db_session, user_id=user.id)

        assert [c.provider_id for c in sso_service.list_connections(user.id)] == ["idp"]

    @pytest.mark.integration
    def test_unlink_with_password(self, db_session, idp, sso_service):
        user = UserFactory.create(db_session=db_session)
        SSOConnectionFactory.create(db_session=db_session, user_id=user.id)

        assert sso_service.unlink(user.id, "idp") is True
        assert sso_service.list_connections(user.id) == []

    @pytest.mark.integration
    def test_unlink_last_sign_in_method(self, db_session, idp, sso_service):
        user = UserFactory.create(db_session=db_session, password_hash=None)
        SSOConnectionFactory.create(db_session=db_session, user_id=user.id)

        with pytest.raises(LastSignInMethodError):
            sso_service.unlink(user.id, "idp")

    @pytest.mark.integration
    def test_unlink_one_of_two_providers(self, db_session, idp, sso_service):
        SSOProviderFactory.create(db_session=db_session, id="orcid")
        user = UserFactory.create(db_session=db_session, password_hash=None)
        SSOConnectionFactory.create(db_session=db_session, user_id=user.id)
        SSOConnectionFactory.create(db_session=db_session, user_id=user.id, provider_id="orcid")

        assert sso_service.unlink(user.id, "idp") is True

    @pytest.mark.integration
    def test_unlink_not_linked(self, db_session, idp, sso_service):
        user = UserFactory.create(db_session=db_session)
        assert sso_service.unlink(user.id, "idp") is False

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_sso_identity_has_no_password(self, sso_service, authorization, db_session):
        result = await callback(sso_service, authorization)
        assert db_session.get(User, result.user.id).has_password is False
