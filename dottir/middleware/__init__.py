"""
Middlewares pour Dottir.

- RequestIDMiddleware: X-Request-ID et contexte de logging
- SecurityHeadersMiddleware: headers HTTP de securite
- register_exception_handlers: reponses d'erreur JSON uniformes
"""
from dottir.middleware.exception_handler import register_exception_handlers
from dottir.middleware.request_id import RequestIDMiddleware
from dottir.middleware.security_headers import SecurityHeadersMiddleware

__all__ = [
    "RequestIDMiddleware",
    "SecurityHeadersMiddleware",
    "register_exception_handlers",
]
