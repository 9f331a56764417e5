"""
Authentication endpoints.

- Email/password registration and login
- Refresh token rotation (refresh token travels in an HTTP-only cookie)
- Logout of one session or all sessions
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from tenantry.core.auth import get_current_user, get_current_user_id, get_token_service
from tenantry.core.config import get_settings
from tenantry.core.database import get_session
from tenantry.core.errors import AppError, Unauthenticated
from tenantry.core.tokens import ClientMeta, TokenPair, TokenService
from tenantry.models.user import User
from tenantry.services import users as user_service
from tenantry_shared.schemas.common import MessageResponse
from tenantry_shared.schemas.users import (
    AuthResponse,
    LoginRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)

log = structlog.get_logger()
settings = get_settings()
router = APIRouter()


# ---------------------------------------------------------------------------
# Refresh cookie
# ---------------------------------------------------------------------------

def _set_refresh_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=token,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        path=settings.refresh_cookie_path,
        max_age=settings.refresh_token_expire_days * 24 * 60 * 60,
    )


def _clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.refresh_cookie_name,
        path=settings.refresh_cookie_path,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
    )


def client_meta(request: Request) -> ClientMeta:
    return ClientMeta(
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )


def _auth_response(user: User, pair: TokenPair, response: Response) -> AuthResponse:
    _set_refresh_cookie(response, pair.refresh_token)
    return AuthResponse(user=UserResponse.model_validate(user), access_token=pair.access_token)


# ---------------------------------------------------------------------------
# Registration & login
# ---------------------------------------------------------------------------

@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    body: RegisterRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
    tokens: TokenService = Depends(get_token_service),
):
    """Create an account and start a session."""
    user = await user_service.create_user(
        body.email, body.password, body.first_name, body.last_name, session
    )
    pair = await tokens.issue_token_pair(user.id, client_meta(request))
    return _auth_response(user, pair, response)


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
    tokens: TokenService = Depends(get_token_service),
):
    user = await user_service.authenticate_user(body.email, body.password, session)
    pair = await tokens.issue_token_pair(user.id, client_meta(request))
    return _auth_response(user, pair, response)


# ---------------------------------------------------------------------------
# Session management
# ---------------------------------------------------------------------------

@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
    tokens: TokenService = Depends(get_token_service),
):
    """
    Rotate the refresh cookie and return a fresh access token.

    On failure the cookie is cleared and the request transaction still
    commits, so an expired session row is removed for good.
    """
    raw = request.cookies.get(settings.refresh_cookie_name)

    async def is_active(user_id: uuid.UUID) -> bool:
        return await user_service.is_user_active(user_id, session)

    try:
        if not raw:
            raise Unauthenticated("No refresh token provided")
        pair = await tokens.rotate(raw, client_meta(request), is_user_active=is_active)
    except AppError as exc:
        failed = JSONResponse(status_code=exc.status_code, content=exc.to_dict())
        _clear_refresh_cookie(failed)
        return failed

    _set_refresh_cookie(response, pair.refresh_token)
    return TokenResponse(access_token=pair.access_token)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    tokens: TokenService = Depends(get_token_service),
):
    """End the current session. Succeeds even without a valid cookie."""
    raw = request.cookies.get(settings.refresh_cookie_name)
    if raw:
        await tokens.revoke(raw)
    _clear_refresh_cookie(response)
    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    response: Response,
    user_id: uuid.UUID = Depends(get_current_user_id),
    tokens: TokenService = Depends(get_token_service),
):
    """End every session of the authenticated user."""
    count = await tokens.revoke_all(user_id)
    _clear_refresh_cookie(response)
    return MessageResponse(message="Logged out from all devices", data={"sessions": count})


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)):
    return UserResponse.model_validate(user)
