"""
Error taxonomy and the JSON error envelope.

Every error a client can see carries a stable machine-readable code:

    {"error": {"code": "NOT_A_MEMBER", "message": "...", "status": 403}}

AppError subclasses HTTPException so that code raising it from a service
or a dependency needs no extra wiring; `register_exception_handlers`
renders the envelope.
"""

from __future__ import annotations

from typing import Any, Optional

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from tenantry.core.config import get_settings

log = structlog.get_logger()

REAUTH = "reauthenticate"
FORBIDDEN = "forbidden"
BAD_INPUT = "bad_input"


class AppError(HTTPException):
    """Base class for all errors surfaced to API clients."""

    code: str = "INTERNAL_ERROR"
    status: int = 500
    default_message: str = "Internal server error"
    category: Optional[str] = None

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(status_code=self.status, detail=self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "status": self.status,
        }
        if self.details:
            body["details"] = self.details
        return {"error": body}


# ---------------------------------------------------------------------------
# Needs re-login
# ---------------------------------------------------------------------------

class Unauthenticated(AppError):
    code = "UNAUTHENTICATED"
    status = 401
    default_message = "Authentication required"
    category = REAUTH


class InvalidToken(AppError):
    code = "INVALID_TOKEN"
    status = 401
    default_message = "Invalid refresh token"
    category = REAUTH


class TokenNotFound(AppError):
    code = "TOKEN_NOT_FOUND"
    status = 401
    default_message = "Refresh token not found"
    category = REAUTH


class TokenExpired(AppError):
    code = "TOKEN_EXPIRED"
    status = 401
    default_message = "Refresh token has expired"
    category = REAUTH


class InvalidCredentials(AppError):
    code = "INVALID_CREDENTIALS"
    status = 401
    default_message = "Invalid email or password"
    category = REAUTH


# ---------------------------------------------------------------------------
# Logged in but not permitted
# ---------------------------------------------------------------------------

class OrgNotFound(AppError):
    code = "ORG_NOT_FOUND"
    status = 404
    default_message = "Organization not found"


class OrgInactive(AppError):
    code = "ORG_INACTIVE"
    status = 403
    default_message = "Organization is not active"
    category = FORBIDDEN


class NotAMember(AppError):
    code = "NOT_A_MEMBER"
    status = 403
    default_message = "You do not have access to this organization"
    category = FORBIDDEN


class InsufficientRole(AppError):
    code = "INSUFFICIENT_ROLE"
    status = 403
    default_message = "You do not have permission to perform this action"
    category = FORBIDDEN


class LastAdminProtected(AppError):
    code = "LAST_ADMIN_PROTECTED"
    status = 400
    default_message = "Cannot remove or demote the last organization admin"
    category = FORBIDDEN


class InvitationEmailMismatch(AppError):
    code = "INVITATION_EMAIL_MISMATCH"
    status = 403
    default_message = "This invitation is for a different email address"
    category = FORBIDDEN


class AccountInactive(AppError):
    code = "ACCOUNT_INACTIVE"
    status = 403
    default_message = "Account is not active"
    category = FORBIDDEN


# ---------------------------------------------------------------------------
# Bad input
# ---------------------------------------------------------------------------

class ValidationFailed(AppError):
    code = "VALIDATION_ERROR"
    status = 422
    default_message = "Validation failed"
    category = BAD_INPUT


class Conflict(AppError):
    code = "CONFLICT"
    status = 409
    default_message = "Resource already exists"
    category = BAD_INPUT


class BadRequest(AppError):
    code = "BAD_REQUEST"
    status = 400
    default_message = "Bad request"
    category = BAD_INPUT


class NotFound(AppError):
    code = "NOT_FOUND"
    status = 404
    default_message = "Resource not found"

    @classmethod
    def resource(cls, name: str) -> "NotFound":
        return cls(f"{name} not found")


class RateLimited(AppError):
    code = "RATE_LIMIT_EXCEEDED"
    status = 429
    default_message = "Too many requests, please try again later."


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    fields: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        fields.setdefault(".".join(loc) or "request", []).append(err.get("msg", "invalid"))
    error = ValidationFailed(details=fields)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("request.unhandled_error", path=request.url.path, error=str(exc))
    message = "Internal server error" if get_settings().is_production else str(exc)
    error = AppError(message)
    return JSONResponse(status_code=500, content=error.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
