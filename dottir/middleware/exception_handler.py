"""
Exception Handler pour Dottir.

Convertit les exceptions de service et les erreurs HTTP en responses
JSON standardisees: {"error", "message", "request_id"}.
"""
import logging
from typing import Union

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from dottir.services.exceptions import RateLimitedError, ServiceException

logger = logging.getLogger(__name__)


def create_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: dict = None,
    request_id: str = None,
    headers: dict = None,
) -> JSONResponse:
    """
    Cree une response d'erreur standardisee.

    Args:
        status_code: Code HTTP
        error_code: Code d'erreur applicatif
        message: Message d'erreur
        details: Details supplementaires
        request_id: ID de la requete pour tracabilite
        headers: Headers HTTP additionnels (Retry-After, ...)

    Returns:
        JSONResponse formatee
    """
    content = {
        "error": error_code,
        "message": message,
    }

    if details:
        content["details"] = details

    if request_id:
        content["request_id"] = request_id

    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def service_exception_handler(request: Request, exc: ServiceException) -> JSONResponse:
    """
    Handler pour les exceptions de service.

    Le status HTTP est porte par la classe d'exception (status_code).
    """
    request_id = getattr(request.state, "request_id", None)
    status_code = getattr(exc, "status_code", 400)
    error_code = exc.code or "SERVICE_ERROR"

    if status_code >= 500:
        logger.error(
            f"ServiceException: {error_code} - {exc.message}",
            extra={"request_id": request_id, "reason": getattr(exc, "reason", None)},
        )
    else:
        logger.info(f"ServiceException: {error_code} - {exc.message}", extra={"request_id": request_id})

    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after)}

    return create_error_response(
        status_code=status_code,
        error_code=error_code,
        message=exc.message,
        request_id=request_id,
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """
    Handler pour les HTTPException standard de FastAPI/Starlette.
    """
    request_id = getattr(request.state, "request_id", None)

    error_codes = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        429: "TOO_MANY_REQUESTS",
        500: "INTERNAL_ERROR",
    }

    return create_error_response(
        status_code=exc.status_code,
        error_code=error_codes.get(exc.status_code, "HTTP_ERROR"),
        message=str(exc.detail),
        request_id=request_id,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """
    Handler pour les erreurs de validation Pydantic.
    """
    request_id = getattr(request.state, "request_id", None)

    formatted_errors = []
    for error in exc.errors():
        loc = ".".join(str(part) for part in error.get("loc", []))
        formatted_errors.append({
            "field": loc,
            "message": error.get("msg", "Validation error"),
            "type": error.get("type", "unknown"),
        })

    return create_error_response(
        status_code=422,
        error_code="VALIDATION_ERROR",
        message="Request validation failed",
        details={"errors": formatted_errors},
        request_id=request_id,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handler catch-all pour les exceptions non gerees.

    SECURITE: Ne jamais exposer les details de l'exception au client.
    """
    request_id = getattr(request.state, "request_id", None)
    logger.critical(
        f"Erreur inattendue: {type(exc).__name__}: {exc}",
        extra={"request_id": request_id},
        exc_info=True,
    )
    return create_error_response(
        status_code=500,
        error_code="INTERNAL_ERROR",
        message="An unexpected error occurred",
        request_id=request_id,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Enregistre tous les exception handlers sur l'application.
    """
    app.add_exception_handler(ServiceException, service_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
