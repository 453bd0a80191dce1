"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Every error response keeps the shape clients of the alert API rely on:

    {"success": false, "message": "...", "error": {"code": ..., "status": ...}}

Usage:
    from panic_relay.app.core.errors import (
        PanicRelayError,
        InvalidPhoneError,
        SenderNotRegisteredError,
        register_error_handlers,
    )

    raise InvalidPhoneError("Número inválido.", field="telefono")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from panic_relay.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class PanicRelayError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "Error inesperado.",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class InvalidContactsError(PanicRelayError):
    """Contact list missing or not a list (400)."""

    def __init__(self, message: str = "Lista de contactos inválida."):
        super().__init__(
            message=message,
            status_code=400,
            error_code="INVALID_CONTACTS",
            details={"field": "contacts"},
        )


class InvalidPhoneError(PanicRelayError):
    """A phone number did not normalize (400)."""

    def __init__(self, message: str = "Número inválido.", *, field: Optional[str] = None):
        super().__init__(
            message=message,
            status_code=400,
            error_code="INVALID_PHONE",
            details={"field": field} if field else None,
        )


class SenderNotRegisteredError(PanicRelayError):
    """Sender phone has no matching user (403)."""

    def __init__(self):
        super().__init__(
            message="El remitente no está registrado en la base de datos.",
            status_code=403,
            error_code="SENDER_NOT_REGISTERED",
        )


class NotFoundError(PanicRelayError):
    """Resource not found (404)."""

    def __init__(self, message: str, resource: str, **identifiers: Any):
        super().__init__(
            message=message,
            status_code=404,
            error_code="NOT_FOUND",
            details={"resource": resource, **identifiers},
        )


class UserNotFoundError(NotFoundError):
    def __init__(self):
        super().__init__("Usuario no encontrado.", "usuario")


class AlertNotFoundError(NotFoundError):
    def __init__(self, alert_id: str):
        super().__init__("❌ Alerta no encontrada.", "alerta", id=alert_id)


class StoreError(PanicRelayError):
    """The document store failed or is unreachable (500)."""

    def __init__(self, operation: str, message: str = ""):
        super().__init__(
            message="Error de almacenamiento.",
            status_code=500,
            error_code="STORE_ERROR",
            details={"operation": operation, "reason": message} if message else {"operation": operation},
        )


class AlertFinalizationError(PanicRelayError):
    """Finalizing failed for a reason other than a missing alert (500)."""

    def __init__(self, alert_id: str):
        super().__init__(
            message="❌ Error al finalizar alerta.",
            status_code=500,
            error_code="FINALIZE_ERROR",
            details={"id": alert_id},
        )


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "success": False,
        "message": message,
        "error": {
            "code": error_code,
            "status": status_code,
        },
    }

    # Store internals stay server-side outside DEBUG
    if details and (status_code < 500 or settings.DEBUG):
        body["error"]["details"] = details

    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(PanicRelayError)
    async def handle_relay_error(request: Request, exc: PanicRelayError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        logger.warning("Request validation failed: %s", errors)
        if any("contacts" in err.get("loc", ()) for err in errors):
            message = "Lista de contactos inválida."
            code = "INVALID_CONTACTS"
        else:
            message = "Solicitud inválida."
            code = "VALIDATION_ERROR"
        fields = [".".join(str(p) for p in err.get("loc", ())) for err in errors]
        return _build_error_response(
            400, code, message, {"fields": fields}, request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Error interno del servidor."
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if settings.DEBUG else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details, request,
        )
