"""
Refresh token store — persistence for live sessions keyed by token hash.

A user may hold any number of concurrent sessions (one row per device).
Lookups are always by hash; the raw token never reaches this layer.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tenantry.models.refresh_token import RefreshToken


class RefreshTokenStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def insert(self, record: RefreshToken) -> RefreshToken:
        self.session.add(record)
        await self.session.flush()
        return record

    async def find_by_hash(self, token_hash: str) -> Optional[RefreshToken]:
        result = await self.session.execute(
            select(RefreshToken).where(RefreshToken.token_hash == token_hash)
        )
        return result.scalar_one_or_none()

    async def delete_by_hash(self, token_hash: str) -> bool:
        result = await self.session.execute(
            delete(RefreshToken).where(RefreshToken.token_hash == token_hash)
        )
        return result.rowcount > 0

    async def delete_by_id(self, token_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            delete(RefreshToken).where(RefreshToken.id == token_id)
        )
        return result.rowcount > 0

    async def delete_all_for_user(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            delete(RefreshToken).where(RefreshToken.user_id == user_id)
        )
        return result.rowcount

    async def delete_expired(self, now: datetime) -> int:
        result = await self.session.execute(
            delete(RefreshToken).where(RefreshToken.expires_at <= now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def count_for_user(self, user_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(RefreshToken).where(RefreshToken.user_id == user_id)
        )
        return result.scalar_one()
