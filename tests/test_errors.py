"""
Tests for the error envelope and exception handlers.
"""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from pydantic import BaseModel

from tenantry.core import errors
from tenantry.core.errors import register_exception_handlers


class TestErrorTaxonomy:
    @pytest.mark.parametrize(
        "cls,status,code",
        [
            (errors.Unauthenticated, 401, "UNAUTHENTICATED"),
            (errors.InvalidToken, 401, "INVALID_TOKEN"),
            (errors.TokenNotFound, 401, "TOKEN_NOT_FOUND"),
            (errors.TokenExpired, 401, "TOKEN_EXPIRED"),
            (errors.InvalidCredentials, 401, "INVALID_CREDENTIALS"),
            (errors.OrgNotFound, 404, "ORG_NOT_FOUND"),
            (errors.OrgInactive, 403, "ORG_INACTIVE"),
            (errors.NotAMember, 403, "NOT_A_MEMBER"),
            (errors.InsufficientRole, 403, "INSUFFICIENT_ROLE"),
            (errors.LastAdminProtected, 400, "LAST_ADMIN_PROTECTED"),
            (errors.InvitationEmailMismatch, 403, "INVITATION_EMAIL_MISMATCH"),
            (errors.AccountInactive, 403, "ACCOUNT_INACTIVE"),
            (errors.ValidationFailed, 422, "VALIDATION_ERROR"),
            (errors.Conflict, 409, "CONFLICT"),
            (errors.BadRequest, 400, "BAD_REQUEST"),
            (errors.NotFound, 404, "NOT_FOUND"),
            (errors.RateLimited, 429, "RATE_LIMIT_EXCEEDED"),
        ],
    )
    def test_status_and_code(self, cls, status, code):
        error = cls()
        assert error.status_code == status
        body = error.to_dict()["error"]
        assert body["code"] == code
        assert body["status"] == status
        assert body["message"]
        assert "details" not in body

    def test_reauth_category(self):
        assert errors.TokenExpired.category == errors.REAUTH
        assert errors.NotAMember.category == errors.FORBIDDEN
        assert errors.Conflict.category == errors.BAD_INPUT

    def test_not_found_resource(self):
        error = errors.NotFound.resource("Task")
        assert error.message == "Task not found"

    def test_details_included(self):
        error = errors.ValidationFailed(details={"email": ["bad"]})
        assert error.to_dict()["error"]["details"] == {"email": ["bad"]}


class _Payload(BaseModel):
    name: str
    count: int


@pytest.fixture
def error_app():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/conflict")
    async def conflict():
        raise errors.Conflict("Already there")

    @app.post("/payload")
    async def payload(body: _Payload):
        return body

    @app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    return app


class TestHandlers:
    async def test_app_error(self, error_app):
        async with AsyncClient(transport=ASGITransport(app=error_app), base_url="http://test") as ac:
            resp = await ac.get("/conflict")
        assert resp.status_code == 409
        assert resp.json() == {
            "error": {"code": "CONFLICT", "message": "Already there", "status": 409}
        }

    async def test_validation_error(self, error_app):
        async with AsyncClient(transport=ASGITransport(app=error_app), base_url="http://test") as ac:
            resp = await ac.post("/payload", json={"count": "many"})
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert set(error["details"]) == {"name", "count"}

    async def test_unhandled_error(self, error_app):
        transport = ASGITransport(app=error_app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            resp = await ac.get("/boom")
        assert resp.status_code == 500
        error = resp.json()["error"]
        assert error["code"] == "INTERNAL_ERROR"
        # Outside production the message is passed through
        assert error["message"] == "kaboom"
