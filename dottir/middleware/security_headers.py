"""
Security Headers Middleware pour Dottir.

Ajoute les headers de securite HTTP et interdit la mise en cache
des reponses d'authentification (tokens, codes de secours).
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Headers de securite sur toutes les responses."""

    security_headers = {
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "Referrer-Policy": "strict-origin-when-cross-origin",
    }

    # Endpoints qui necessitent Cache-Control: no-store
    NO_STORE_PREFIXES = ("/api/v1/auth/", "/api/v1/mfa/", "/api/v1/sessions", "/api/v1/sso/")

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        for header, value in self.security_headers.items():
            response.headers.setdefault(header, value)

        if request.url.path.startswith(self.NO_STORE_PREFIXES):
            response.headers["Cache-Control"] = "no-store"
            response.headers["Pragma"] = "no-cache"

        return response
