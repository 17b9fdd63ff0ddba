"""
User Directory

Read-only view of the auth service's ``auth_users`` table: email
verification for checkout and referral-code lookup for referrals.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from reimburse.src.billing.entitlements.tables import auth_users

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str
    email_verified_at: Optional[datetime] = None
    referral_code: Optional[str] = None

    @property
    def is_email_verified(self) -> bool:
        return self.email_verified_at is not None


class UserDirectory:

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        if session_factory is None:
            from reimburse.database.db import async_db_session
            session_factory = async_db_session
        self._session_factory = session_factory

    async def get(self, user_id: str) -> Optional[AuthUser]:
        return await self._find_one(auth_users.c.id == user_id)

    async def find_by_referral_code(self, referral_code: str) -> Optional[AuthUser]:
        if not referral_code:
            return None
        return await self._find_one(auth_users.c.referral_code == referral_code)

    async def _find_one(self, clause) -> Optional[AuthUser]:
        async with self._session_factory() as session:
            result = await session.execute(select(auth_users).where(clause))
            row = result.mappings().first()
        if row is None:
            return None
        return AuthUser(
            id=row['id'],
            email=row['email'],
            email_verified_at=row['email_verified_at'],
            referral_code=row['referral_code'],
        )


user_directory = UserDirectory()
