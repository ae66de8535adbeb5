"""
Tests E2E du login SSO (OAuth2 authorization code).

Le fournisseur est simule (httpx.MockTransport); l'etat CSRF circule
dans le cookie sso_state pose par /authorize.
"""
from urllib.parse import parse_qs, urlparse

import pytest

from tests.factories import SSOProviderFactory
from tests.fakes import auth_headers

STATE_COOKIE = "sso_state"


@pytest.fixture
def idp(db_session):
    return SSOProviderFactory.create(db_session=db_session)


def authorize(client, provider_id="idp"):
    """Demarre le flow; retourne le nonce transmis au fournisseur"""
    response = client.get(f"/api/v1/sso/{provider_id}/authorize")
    assert response.status_code == 200
    url = urlparse(response.json()["authorization_url"])
    return parse_qs(url.query)["state"][0]


def state_cookie_deleted(response) -> bool:
    return any(
        header.startswith(f"{STATE_COOKIE}=") and "Max-Age=0" in header
        for header in response.headers.get_list("set-cookie")
    )


class TestProvidersE2E:

    @pytest.mark.e2e
    def test_list_providers(self, client, idp, db_session):
        SSOProviderFactory.create(db_session=db_session, id="legacy", name="Legacy", enabled=False)

        response = client.get("/api/v1/sso/providers")

        assert response.status_code == 200
        assert response.json()["providers"] == [
            {"id": "idp", "name": "Example IdP", "icon_url": None, "description": None}
        ]

    @pytest.mark.e2e
    def test_authorize_sets_state_cookie(self, client, idp):
        response = client.get("/api/v1/sso/idp/authorize")

        set_cookie = response.headers["set-cookie"]
        assert set_cookie.startswith(f"{STATE_COOKIE}=")
        assert "HttpOnly" in set_cookie
        assert "Path=/api/v1/sso/idp" in set_cookie
        assert "client_secret" not in response.json()["authorization_url"]

    @pytest.mark.e2e
    def test_authorize_unknown_provider(self, client):
        response = client.get("/api/v1/sso/inconnu/authorize")

        assert response.status_code == 404
        assert response.json()["error"] == "PROVIDER_NOT_FOUND"


class TestCallbackE2E:
    """
    Scenario E2E: aller-retour complet chez le fournisseur
    """

    @pytest.mark.e2e
    def test_callback_opens_session(self, client, idp, provider):
        nonce = authorize(client)

        response = client.get("/api/v1/sso/idp/callback", params={"code": "auth-code", "state": nonce})
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "authenticated"
        assert client.cookies.get("dottir_session") == data["session_token"]
        assert state_cookie_deleted(response)
        assert provider.calls == 2

        connections = client.get("/api/v1/sso/connections").json()["connections"]
        assert [c["provider_id"] for c in connections] == ["idp"]
        assert "access_token" not in connections[0]

    @pytest.mark.e2e
    def test_callback_stores_device_fingerprint(self, client, idp, provider):
        nonce = authorize(client)

        response = client.get(
            "/api/v1/sso/idp/callback",
            params={"code": "auth-code", "state": nonce, "platform": "MacIntel", "screenWidth": 1440, "timezone": "UTC"},
            headers={"User-Agent": "Safari/604.1"},
        )
        sessions = client.get("/api/v1/sessions").json()["sessions"]

        assert response.status_code == 200
        assert sessions[0]["device_info"] == {
            "userAgent": "Safari/604.1",
            "platform": "MacIntel",
            "screenWidth": 1440,
            "timezone": "UTC",
        }

    @pytest.mark.e2e
    @pytest.mark.security
    def test_forged_state(self, client, idp, provider):
        authorize(client)

        response = client.get("/api/v1/sso/idp/callback", params={"code": "auth-code", "state": "forge"})

        assert response.status_code == 403
        assert response.json()["error"] == "CSRF_VIOLATION"
        assert state_cookie_deleted(response)
        assert provider.calls == 0
        assert "dottir_session" not in client.cookies

    @pytest.mark.e2e
    @pytest.mark.security
    def test_missing_state_cookie(self, client, idp, provider):
        nonce = authorize(client)
        client.cookies.clear()

        response = client.get("/api/v1/sso/idp/callback", params={"code": "auth-code", "state": nonce})

        assert response.status_code == 403
        assert provider.calls == 0

    @pytest.mark.e2e
    @pytest.mark.security
    def test_state_expired(self, client, idp, provider, clock):
        nonce = authorize(client)
        clock.advance(minutes=11)

        response = client.get("/api/v1/sso/idp/callback", params={"code": "auth-code", "state": nonce})

        assert response.status_code == 403
        assert provider.calls == 0

    @pytest.mark.e2e
    def test_provider_failure(self, client, idp, provider):
        provider.token_status = 400
        nonce = authorize(client)

        response = client.get("/api/v1/sso/idp/callback", params={"code": "auth-code", "state": nonce})

        assert response.status_code == 502
        assert response.json()["error"] == "TOKEN_EXCHANGE_FAILED"
        assert state_cookie_deleted(response)

    @pytest.mark.e2e
    def test_unverified_email(self, client, idp, provider):
        provider.profile["email_verified"] = False
        nonce = authorize(client)

        response = client.get("/api/v1/sso/idp/callback", params={"code": "auth-code", "state": nonce})

        assert response.status_code == 403
        assert response.json()["error"] == "SSO_EMAIL_NOT_VERIFIED"


class TestConnectionsE2E:

    @pytest.mark.e2e
    def test_cannot_unlink_last_sign_in_method(self, client, idp):
        nonce = authorize(client)
        token = client.get(
            "/api/v1/sso/idp/callback", params={"code": "auth-code", "state": nonce}
        ).json()["session_token"]

        response = client.delete("/api/v1/sso/connections/idp", headers=auth_headers(token))

        assert response.status_code == 409
        assert response.json()["error"] == "LAST_SIGN_IN_METHOD"

    @pytest.mark.e2e
    def test_unlink_unknown_connection(self, client, idp):
        nonce = authorize(client)
        token = client.get(
            "/api/v1/sso/idp/callback", params={"code": "auth-code", "state": nonce}
        ).json()["session_token"]

        response = client.delete("/api/v1/sso/connections/orcid", headers=auth_headers(token))

        assert response.status_code == 404


class TestSSOOnlyReauthenticationE2E:
    """
    Identite creee par SSO, sans mot de passe ni MFA: la session fraiche
    issue du callback confirme l'identite pour "deconnecter partout".
    """

    def sign_in(self, client):
        nonce = authorize(client)
        response = client.get("/api/v1/sso/idp/callback", params={"code": "auth-code", "state": nonce})
        assert response.status_code == 200

    @pytest.mark.e2e
    def test_revoke_all_right_after_sign_in(self, client, idp, provider, clock):
        self.sign_in(client)
        clock.advance(minutes=4)

        response = client.post("/api/v1/sessions/revoke-all", json={})

        assert response.status_code == 200
        assert response.json()["revoked_count"] == 0

    @pytest.mark.e2e
    @pytest.mark.security
    def test_revoke_all_with_stale_session(self, client, idp, provider, clock):
        self.sign_in(client)
        clock.advance(minutes=6)

        response = client.post("/api/v1/sessions/revoke-all", json={})

        assert response.status_code == 401
        assert response.json()["error"] == "REAUTHENTICATION_REQUIRED"
