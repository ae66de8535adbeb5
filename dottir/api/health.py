"""
Health Check endpoints pour Dottir.

- /health: Liveness check (l'app repond)
- /ready: Readiness check (base de donnees et Redis si configure)

Ces endpoints sont exclus de l'authentification pour
permettre aux load balancers de les utiliser.
"""
import logging
import time
from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dottir.core.config import get_settings
from dottir.core.dependencies import get_db
from dottir.core.redis import get_redis_client

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


def check_database(db: Session) -> Dict[str, Any]:
    """
    Verifie la connexion a la base de donnees.

    Returns:
        Dict avec status et details
    """
    try:
        start = time.perf_counter()
        db.execute(text("SELECT 1")).fetchone()
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        return {"status": "ok", "latency_ms": latency_ms}
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return {"status": "error", "error": type(e).__name__}


def check_redis() -> Dict[str, Any]:
    """Verifie Redis s'il est configure (sinon store memoire)."""
    if not get_settings().REDIS_URL:
        return {"status": "not_configured", "reason": "REDIS_URL not set"}

    if get_redis_client() is None:
        return {"status": "unavailable"}
    return {"status": "ok"}


@router.get("/health", include_in_schema=False)
async def health():
    """
    Liveness probe. Ne verifie pas les dependances.
    """
    return {"status": "ok"}


@router.get("/ready", include_in_schema=False)
def ready(db: Session = Depends(get_db)):
    """
    Readiness probe.

    503 si la base de donnees ne repond pas. Redis indisponible n'est
    pas bloquant (fallback memoire).
    """
    settings = get_settings()
    checks = {"database": check_database(db), "redis": check_redis()}
    healthy = checks["database"]["status"] == "ok"

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "ready" if healthy else "not_ready",
            "environment": settings.ENV,
            "version": settings.APP_VERSION,
            "checks": checks,
        },
    )
