"""
Dottir Auth API - Point d'entree principal
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from dottir.api.health import router as health_router
from dottir.api.v1.router import api_router
from dottir.core.config import get_settings
from dottir.core.logging import configure_logging, get_logger
from dottir.core.redis import close_redis_client
from dottir.core.transient_store import reset_transient_store
from dottir.middleware import (
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
    register_exception_handlers,
)

settings = get_settings()

# JSON en prod, console en dev
configure_logging(level=settings.LOG_LEVEL, json_format=settings.ENV != "dev")
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Gestionnaire de cycle de vie de l'application
    Execute au demarrage et a l'arret
    """
    logger.info(f"Demarrage de {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environnement: {settings.ENV}")

    # Validation complete de la configuration en production
    try:
        for warning in settings.validate_production_config():
            logger.warning(warning)
        logger.info("Validation de la configuration: OK")
    except ValueError as e:
        logger.critical(f"SECURITE: {e}")
        if settings.is_strict_env:
            raise  # Bloquer le demarrage en production

    yield

    logger.info("Arret de l'application...")
    close_redis_client()
    reset_transient_store()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Authentification Dottir: MFA TOTP, sessions et SSO",
    lifespan=lifespan,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

# ============================================
# Middleware Stack (dernier ajoute = premier execute)
# ============================================

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.get_allowed_hosts())

cors_origins = settings.get_cors_origins()
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS and "*" not in cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "Retry-After"],
)

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestIDMiddleware)

register_exception_handlers(app)


# ============================================
# Routes
# ============================================

app.include_router(health_router)
app.include_router(api_router, prefix="/api/v1")
