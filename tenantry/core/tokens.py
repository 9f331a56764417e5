"""
Token service: access/refresh token issuance, verification and rotation.

- Access tokens are stateless JWTs signed with the access secret (15 min).
- Refresh tokens are JWTs signed with a separate refresh secret (7 days).
  Only their SHA-256 digest is persisted; the raw value goes to the client.
- Refresh tokens are single use: rotation deletes the presented row and
  issues a brand-new pair, so a superseded token can never be replayed.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

import jwt
import structlog

from tenantry.core.config import Settings
from tenantry.core.errors import InvalidToken, TokenExpired, TokenNotFound, Unauthenticated
from tenantry.core.security import generate_token_id, hash_token
from tenantry.models.base import ensure_utc
from tenantry.models.refresh_token import RefreshToken
from tenantry.services.refresh_tokens import RefreshTokenStore

log = structlog.get_logger()

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class TokenConfig:
    """Immutable token settings, built once from process configuration."""

    access_secret: str
    refresh_secret: str
    algorithm: str = "HS256"
    access_ttl: timedelta = timedelta(minutes=15)
    refresh_ttl: timedelta = timedelta(days=7)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenConfig":
        return cls(
            access_secret=settings.jwt_access_secret,
            refresh_secret=settings.jwt_refresh_secret,
            algorithm=settings.jwt_algorithm,
            access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
        )


@dataclass(frozen=True)
class ClientMeta:
    """Who is asking for a session: recorded alongside the stored refresh token."""

    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    org_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class AccessClaims:
    user_id: uuid.UUID
    org_id: Optional[uuid.UUID] = None


UserActiveCheck = Callable[[uuid.UUID], Awaitable[bool]]


class TokenService:
    def __init__(self, config: TokenConfig, store: RefreshTokenStore):
        self.config = config
        self.store = store

    # -----------------------------------------------------------------------
    # Access tokens
    # -----------------------------------------------------------------------

    def issue_access_token(
        self, user_id: uuid.UUID, *, org_id: Optional[uuid.UUID] = None
    ) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "userId": str(user_id),
            "type": ACCESS,
            "iat": now,
            "exp": now + self.config.access_ttl,
        }
        if org_id is not None:
            payload["orgId"] = str(org_id)
        return jwt.encode(payload, self.config.access_secret, algorithm=self.config.algorithm)

    def verify_access_token(self, token: str) -> AccessClaims:
        """Signature and expiry check only; never touches the store."""
        try:
            payload = jwt.decode(
                token,
                self.config.access_secret,
                algorithms=[self.config.algorithm],
                options={"require": ["exp", "userId"]},
            )
        except jwt.PyJWTError:
            raise Unauthenticated("Invalid or expired access token")

        if payload.get("type") != ACCESS:
            raise Unauthenticated("Invalid or expired access token")

        try:
            user_id = uuid.UUID(payload["userId"])
            org_id = uuid.UUID(payload["orgId"]) if payload.get("orgId") else None
        except (TypeError, ValueError):
            raise Unauthenticated("Invalid or expired access token")
        return AccessClaims(user_id=user_id, org_id=org_id)

    # -----------------------------------------------------------------------
    # Refresh tokens
    # -----------------------------------------------------------------------

    async def issue_refresh_token(
        self, user_id: uuid.UUID, client_meta: Optional[ClientMeta] = None
    ) -> str:
        meta = client_meta or ClientMeta()
        now = datetime.now(timezone.utc)
        expires_at = now + self.config.refresh_ttl
        payload = {
            "userId": str(user_id),
            "tokenId": generate_token_id(),
            "type": REFRESH,
            "iat": now,
            "exp": expires_at,
        }
        raw = jwt.encode(payload, self.config.refresh_secret, algorithm=self.config.algorithm)

        await self.store.insert(
            RefreshToken(
                token_hash=hash_token(raw),
                user_id=user_id,
                org_id=meta.org_id,
                user_agent=meta.user_agent,
                ip_address=meta.ip_address,
                expires_at=expires_at,
            )
        )
        return raw

    async def issue_token_pair(
        self, user_id: uuid.UUID, client_meta: Optional[ClientMeta] = None
    ) -> TokenPair:
        """Access and refresh token for one session, both scoped to `client_meta.org_id`."""
        org_id = client_meta.org_id if client_meta else None
        refresh = await self.issue_refresh_token(user_id, client_meta)
        return TokenPair(
            access_token=self.issue_access_token(user_id, org_id=org_id), refresh_token=refresh
        )

    def _decode_refresh(self, raw: str) -> dict:
        try:
            payload = jwt.decode(
                raw,
                self.config.refresh_secret,
                algorithms=[self.config.algorithm],
                options={"require": ["exp", "userId", "tokenId"]},
            )
        except jwt.PyJWTError:
            raise InvalidToken("Invalid refresh token")
        if payload.get("type") != REFRESH:
            raise InvalidToken("Invalid refresh token")
        return payload

    async def rotate(
        self,
        raw: str,
        client_meta: Optional[ClientMeta] = None,
        *,
        is_user_active: Optional[UserActiveCheck] = None,
    ) -> TokenPair:
        """Exchange a refresh token for a new pair. The presented token is consumed."""
        payload = self._decode_refresh(raw)

        token_hash = hash_token(raw)
        stored = await self.store.find_by_hash(token_hash)
        if stored is None or str(stored.user_id) != payload["userId"]:
            log.warning("auth.refresh_token_not_found", user_id=payload["userId"])
            raise TokenNotFound()

        if ensure_utc(stored.expires_at) < datetime.now(timezone.utc):
            await self.store.delete_by_id(stored.id)
            log.info("auth.refresh_token_expired", user_id=str(stored.user_id))
            raise TokenExpired()

        user_id = stored.user_id
        if is_user_active is not None and not await is_user_active(user_id):
            raise InvalidToken("User not found or inactive")

        # A concurrent rotation of the same token loses here.
        if not await self.store.delete_by_hash(token_hash):
            raise TokenNotFound()

        # The new session keeps the org it was scoped to.
        meta = replace(client_meta or ClientMeta(), org_id=stored.org_id)
        pair = await self.issue_token_pair(user_id, meta)
        log.info("auth.refresh_token_rotated", user_id=str(user_id))
        return pair

    async def revoke(self, raw: str) -> None:
        """Delete the session for this token. Unknown or malformed tokens are ignored."""
        if not raw:
            return
        await self.store.delete_by_hash(hash_token(raw))

    async def revoke_all(self, user_id: uuid.UUID) -> int:
        count = await self.store.delete_all_for_user(user_id)
        log.info("auth.sessions_revoked", user_id=str(user_id), count=count)
        return count
