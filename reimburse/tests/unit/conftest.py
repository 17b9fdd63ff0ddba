"""Shared fixtures for billing unit tests.

Every test gets its own SQLite database (aiosqlite) with the billing tables,
so the store, referral and audit SQL runs for real.
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import insert

from reimburse.core.conf import StripeCredentials
from reimburse.database.db import create_async_engine_and_session, create_tables
from reimburse.src.billing.domain.entitlement import utcnow
from reimburse.src.billing.entitlements.store import EntitlementStore
from reimburse.src.billing.entitlements.tables import auth_users, metadata
from reimburse.src.billing.shared.audit import AuditLogger
from reimburse.src.billing.shared.users import UserDirectory

from .stripe_payloads import WEBHOOK_SECRET


TEST_CREDENTIALS = StripeCredentials(mode='test', secret_key='sk_test_123', webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
async def session_factory(tmp_path):
    engine, factory = create_async_engine_and_session(f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}")
    await create_tables(engine, metadata)
    yield factory
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return EntitlementStore(session_factory)


@pytest.fixture
def users(session_factory):
    return UserDirectory(session_factory)


@pytest.fixture
def audit():
    return MagicMock(spec=AuditLogger)


@pytest.fixture
def add_user(session_factory, store):
    """Insert an auth user and, unless told otherwise, its signup entitlement."""

    async def _add(
        user_id,
        email=None,
        verified=True,
        referral_code=None,
        entitlement=True,
        **entitlement_kwargs,
    ):
        async with session_factory.begin() as session:
            await session.execute(
                insert(auth_users).values(
                    id=user_id,
                    email=email or f"{user_id}@example.com",
                    email_verified_at=utcnow() if verified else None,
                    referral_code=referral_code,
                )
            )
        if entitlement:
            return await store.create(user_id, **entitlement_kwargs)
        return None

    return _add


@pytest.fixture
def stripe_credentials():
    """Test-mode Stripe credentials for the client wrapper and the webhook verifier."""
    with patch('reimburse.src.billing.external.stripe.webhooks.get_stripe_credentials', return_value=TEST_CREDENTIALS), \
         patch('reimburse.src.billing.external.stripe.client.get_stripe_credentials', return_value=TEST_CREDENTIALS):
        yield TEST_CREDENTIALS
