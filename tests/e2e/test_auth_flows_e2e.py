"""
Tests E2E des flows d'authentification.

Ces tests verifient les workflows complets via l'API:
1. Health checks
2. Login par mot de passe (corps + cookie HttpOnly)
3. Enrolement MFA puis login en deux etapes
4. Logout et re-authentification

IMPORTANT: TestClient FastAPI avec SQLite en memoire, horloge figee et
store transitoire en memoire (voir conftest.py).
"""
import pytest

from tests.factories import DEFAULT_TEST_PASSWORD, UserFactory
from tests.fakes import auth_headers

LOGIN_URL = "/api/v1/auth/login"


@pytest.fixture
def user(db_session):
    return UserFactory.create(db_session=db_session, email="ada@example.com")


def login(client, email="ada@example.com", password=DEFAULT_TEST_PASSWORD):
    return client.post(LOGIN_URL, json={"email": email, "password": password})


class TestHealthE2E:

    @pytest.mark.e2e
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        assert response.headers["X-Request-ID"]

    @pytest.mark.e2e
    def test_ready(self, client):
        response = client.get("/ready")
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "ready"
        assert data["checks"]["database"]["status"] == "ok"
        assert data["checks"]["redis"]["status"] == "not_configured"


class TestRegisterE2E:
    """
    Scenario E2E: Inscription puis login
    """

    PAYLOAD = {
        "email": "grace@example.com",
        "password": "Anatomie#2026xQ",
        "full_name": "Grace Hopper",
        "role": "educator",
    }

    @pytest.mark.e2e
    def test_register_then_login(self, client):
        response = client.post("/api/v1/auth/register", json=self.PAYLOAD)
        data = response.json()

        assert response.status_code == 201
        assert data["user"]["email"] == "grace@example.com"
        assert data["user"]["role"] == "educator"
        assert data["user"]["mfa_enabled"] is False
        assert "password_hash" not in data["user"]
        assert "dottir_session" not in client.cookies

        assert login(client, email="grace@example.com", password="Anatomie#2026xQ").status_code == 200

    @pytest.mark.e2e
    def test_duplicate_email(self, client, user):
        response = client.post("/api/v1/auth/register", json={**self.PAYLOAD, "email": "Ada@example.com"})

        assert response.status_code == 409
        assert response.json()["error"] == "EMAIL_EXISTS"

    @pytest.mark.e2e
    @pytest.mark.security
    def test_weak_password(self, client):
        response = client.post("/api/v1/auth/register", json={**self.PAYLOAD, "password": "motdepasse"})
        data = response.json()

        assert response.status_code == 422
        assert data["error"] == "VALIDATION_ERROR"
        assert data["details"]["errors"][0]["field"] == "body.password"

    @pytest.mark.e2e
    @pytest.mark.security
    def test_role_not_open(self, client):
        response = client.post("/api/v1/auth/register", json={**self.PAYLOAD, "role": "admin"})
        assert response.status_code == 422


class TestPasswordLoginE2E:
    """
    Scenario E2E: Login par mot de passe sans MFA
    """

    @pytest.mark.e2e
    def test_login_returns_session(self, client, user):
        """
        E2E: Le token est dans le corps ET dans un cookie HttpOnly.
        """
        response = login(client)
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "authenticated"
        assert data["user_id"] == user.id
        assert data["session_token"]
        assert client.cookies.get("dottir_session") == data["session_token"]

        set_cookie = response.headers["set-cookie"]
        assert "HttpOnly" in set_cookie
        assert "samesite=lax" in set_cookie.lower()

    @pytest.mark.e2e
    def test_cookie_authenticates(self, client, user):
        login(client)

        response = client.get("/api/v1/mfa/status")

        assert response.status_code == 200
        assert response.json()["state"] == "disabled"

    @pytest.mark.e2e
    def test_bearer_authenticates(self, client, user):
        token = login(client).json()["session_token"]
        client.cookies.clear()

        response = client.get("/api/v1/mfa/status", headers=auth_headers(token))

        assert response.status_code == 200

    @pytest.mark.e2e
    @pytest.mark.security
    def test_wrong_password(self, client, user):
        response = login(client, password="mauvais")

        assert response.status_code == 401
        assert response.json()["error"] == "INVALID_CREDENTIALS"
        assert "dottir_session" not in client.cookies

    @pytest.mark.e2e
    @pytest.mark.security
    def test_unknown_email_same_response(self, client, user):
        unknown = login(client, email="personne@example.com")
        wrong = login(client, password="mauvais")

        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json()["message"] == wrong.json()["message"]

    @pytest.mark.e2e
    def test_invalid_payload(self, client):
        response = client.post(LOGIN_URL, json={"email": "pas-un-email", "password": "x"})

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.e2e
    @pytest.mark.security
    def test_unknown_fields_rejected(self, client, user):
        response = client.post(
            LOGIN_URL,
            json={"email": "ada@example.com", "password": DEFAULT_TEST_PASSWORD, "role": "admin"},
        )
        assert response.status_code == 422


class TestMFAFlowE2E:
    """
    Scenario E2E: Enrolement MFA puis login en deux etapes
    """

    @pytest.fixture
    def enrolled(self, client, user, totp_engine, clock):
        """Enrolement complet via l'API; retourne la reponse du setup"""
        login(client)
        setup = client.post("/api/v1/mfa/setup").json()

        response = client.post(
            "/api/v1/mfa/confirm",
            json={"code": totp_engine.code_at(setup["secret"], clock())},
        )
        assert response.status_code == 200
        clock.advance(seconds=30)
        client.cookies.clear()
        return setup

    @pytest.mark.e2e
    def test_setup(self, client, user):
        login(client)

        response = client.post("/api/v1/mfa/setup")
        data = response.json()

        assert response.status_code == 200
        assert data["provisioning_uri"].startswith("otpauth://totp/")
        assert len(data["backup_codes"]) == 8
        assert client.get("/api/v1/mfa/status").json()["state"] == "verify_pending"

    @pytest.mark.e2e
    def test_confirm_with_wrong_code(self, client, user):
        login(client)
        client.post("/api/v1/mfa/setup")

        response = client.post("/api/v1/mfa/confirm", json={"code": "000000"})

        assert response.status_code == 401
        assert response.json()["error"] == "MFA_VERIFICATION_FAILED"

    @pytest.mark.e2e
    def test_setup_twice_when_enabled(self, client, enrolled, totp_engine, clock):
        token = login(client).json()["challenge_token"]
        code = totp_engine.code_at(enrolled["secret"], clock())
        client.post("/api/v1/auth/login/mfa", json={"challenge_token": token, "code": code})

        response = client.post("/api/v1/mfa/setup")

        assert response.status_code == 409
        assert response.json()["error"] == "MFA_ALREADY_ENABLED"

    @pytest.mark.e2e
    def test_login_requires_second_step(self, client, enrolled):
        response = login(client)
        data = response.json()

        assert response.status_code == 200
        assert data["status"] == "mfa_required"
        assert data["challenge_token"]
        assert "session_token" not in data
        assert "dottir_session" not in client.cookies

    @pytest.mark.e2e
    def test_complete_with_totp(self, client, enrolled, totp_engine, clock):
        challenge = login(client).json()["challenge_token"]

        response = client.post(
            "/api/v1/auth/login/mfa",
            json={"challenge_token": challenge, "code": totp_engine.code_at(enrolled["secret"], clock())},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "authenticated"
        status = client.get("/api/v1/mfa/status").json()
        assert status["enabled"] is True
        assert status["backup_codes_remaining"] == 8

    @pytest.mark.e2e
    def test_complete_with_backup_code(self, client, enrolled):
        challenge = login(client).json()["challenge_token"]

        response = client.post(
            "/api/v1/auth/login/mfa",
            json={"challenge_token": challenge, "code": enrolled["backup_codes"][0].upper()},
        )

        assert response.status_code == 200
        assert client.get("/api/v1/mfa/status").json()["backup_codes_remaining"] == 7

    @pytest.mark.e2e
    @pytest.mark.security
    def test_wrong_code_reports_attempts(self, client, enrolled):
        challenge = login(client).json()["challenge_token"]

        response = client.post(
            "/api/v1/auth/login/mfa",
            json={"challenge_token": challenge, "code": "000000"},
        )

        assert response.status_code == 401
        assert "4 tentative(s)" in response.json()["message"]

    @pytest.mark.e2e
    def test_cancel_challenge(self, client, enrolled):
        challenge = login(client).json()["challenge_token"]

        assert client.post("/api/v1/auth/login/mfa/cancel", json={"challenge_token": challenge}).status_code == 200
        response = client.post(
            "/api/v1/auth/login/mfa",
            json={"challenge_token": challenge, "code": enrolled["backup_codes"][0]},
        )
        assert response.status_code == 401

    @pytest.mark.e2e
    def test_disable_requires_password_and_code(self, client, enrolled, totp_engine, clock):
        challenge = login(client).json()["challenge_token"]
        client.post(
            "/api/v1/auth/login/mfa",
            json={"challenge_token": challenge, "code": enrolled["backup_codes"][0]},
        )

        refused = client.post("/api/v1/mfa/disable", json={"password": DEFAULT_TEST_PASSWORD})
        assert refused.status_code == 401
        assert refused.json()["error"] == "REAUTHENTICATION_REQUIRED"

        response = client.post(
            "/api/v1/mfa/disable",
            json={"password": DEFAULT_TEST_PASSWORD, "mfa_code": totp_engine.code_at(enrolled["secret"], clock())},
        )
        assert response.status_code == 200
        assert response.json()["enabled"] is False
        assert client.get("/api/v1/mfa/status").json()["state"] == "disabled"

    @pytest.mark.e2e
    def test_regenerate_backup_codes(self, client, enrolled, totp_engine, clock):
        challenge = login(client).json()["challenge_token"]
        client.post(
            "/api/v1/auth/login/mfa",
            json={"challenge_token": challenge, "code": enrolled["backup_codes"][0]},
        )

        response = client.post(
            "/api/v1/mfa/backup-codes/regenerate",
            json={"code": totp_engine.code_at(enrolled["secret"], clock())},
        )

        assert response.status_code == 200
        codes = response.json()["backup_codes"]
        assert len(codes) == 8
        assert set(codes).isdisjoint(enrolled["backup_codes"])
        assert client.get("/api/v1/mfa/status").json()["backup_codes_remaining"] == 8


class TestLogoutE2E:

    @pytest.mark.e2e
    def test_logout(self, client, user):
        token = login(client).json()["session_token"]

        response = client.post("/api/v1/auth/logout")

        assert response.status_code == 200
        assert "dottir_session" not in client.cookies

        after = client.get("/api/v1/sessions", headers=auth_headers(token))
        assert after.status_code == 401
        assert after.json()["error"] == "SESSION_EXPIRED"
        assert "revoked" in after.json()["message"]

    @pytest.mark.e2e
    def test_logout_without_session(self, client):
        assert client.post("/api/v1/auth/logout").status_code == 200

    @pytest.mark.e2e
    def test_reauthenticate(self, client, user):
        login(client)

        assert client.post("/api/v1/auth/reauthenticate", json={"password": DEFAULT_TEST_PASSWORD}).status_code == 200
        refused = client.post("/api/v1/auth/reauthenticate", json={"password": "faux"})
        assert refused.status_code == 401
