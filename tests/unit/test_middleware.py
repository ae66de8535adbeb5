"""
Tests des middlewares et des exception handlers sur une application minimale.
"""
import pytest
from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient
from pydantic import BaseModel

from dottir.middleware import (
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
    register_exception_handlers,
)
from dottir.services.exceptions import (
    RateLimitedError,
    SessionExpiredError,
    StoreUnavailableError,
)


class Payload(BaseModel):
    code: str


@pytest.fixture
def client():
    app = FastAPI()
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_exception_handlers(app)

    @app.get("/api/v1/auth/ping")
    def auth_ping():
        return {"ok": True}

    @app.get("/public")
    def public():
        return {"ok": True}

    @app.get("/expired")
    def expired():
        raise SessionExpiredError(reason="absolute")

    @app.get("/limited")
    def limited():
        raise RateLimitedError(retry_after=17)

    @app.get("/store")
    def store():
        raise StoreUnavailableError(reason="OperationalError")

    @app.get("/missing")
    def missing():
        raise HTTPException(status_code=404, detail="Introuvable")

    @app.post("/validate")
    def validate(payload: Payload):
        return payload

    @app.get("/boom")
    def boom():
        raise RuntimeError("details internes")

    return TestClient(app, raise_server_exceptions=False)


class TestRequestID:

    @pytest.mark.unit
    def test_generated(self, client):
        response = client.get("/public")
        assert len(response.headers["X-Request-ID"]) == 36

    @pytest.mark.unit
    def test_propagated(self, client):
        response = client.get("/public", headers={"X-Request-ID": "trace-42"})
        assert response.headers["X-Request-ID"] == "trace-42"

    @pytest.mark.unit
    def test_included_in_errors(self, client):
        response = client.get("/missing", headers={"X-Request-ID": "trace-42"})
        assert response.json()["request_id"] == "trace-42"


class TestSecurityHeaders:

    @pytest.mark.unit
    def test_headers_present(self, client):
        response = client.get("/public")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "Cache-Control" not in response.headers

    @pytest.mark.unit
    def test_auth_responses_not_cached(self, client):
        response = client.get("/api/v1/auth/ping")
        assert response.headers["Cache-Control"] == "no-store"


class TestExceptionHandlers:

    @pytest.mark.unit
    def test_service_exception(self, client):
        response = client.get("/expired")

        assert response.status_code == 401
        assert response.json()["error"] == "SESSION_EXPIRED"
        assert "absolute" in response.json()["message"]

    @pytest.mark.unit
    def test_rate_limited_retry_after(self, client):
        response = client.get("/limited")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "17"

    @pytest.mark.unit
    def test_store_unavailable(self, client):
        response = client.get("/store")

        assert response.status_code == 503
        assert response.json()["error"] == "STORE_UNAVAILABLE"

    @pytest.mark.unit
    def test_http_exception(self, client):
        response = client.get("/missing")

        assert response.status_code == 404
        assert response.json() == {
            "error": "NOT_FOUND",
            "message": "Introuvable",
            "request_id": response.headers["X-Request-ID"],
        }

    @pytest.mark.unit
    def test_validation_error(self, client):
        response = client.post("/validate", json={})

        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"
        assert response.json()["details"]["errors"][0]["field"] == "body.code"

    @pytest.mark.unit
    def test_unhandled_exception_hides_details(self, client):
        response = client.get("/boom")

        assert response.status_code == 500
        assert response.json()["error"] == "INTERNAL_ERROR"
        assert "details internes" not in response.text
