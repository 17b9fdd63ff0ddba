"""Tests for the referral bonus engine.

Tests cover:
- One credit per referred user
- Bonus granted exactly once at the threshold
- Self-referrals and unknown codes
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from reimburse.core.conf import settings
from reimburse.src.billing.domain.entitlement import utcnow
from reimburse.src.billing.referrals.service import ReferralService, bonus_marker


@pytest.fixture
def referrals(store, users, audit, session_factory):
    return ReferralService(store, users, audit, session_factory)


@pytest.fixture
async def referrer(add_user):
    await add_user('referrer', referral_code='REF123')
    return 'referrer'


class TestCreditReferral:

    @pytest.mark.asyncio
    async def test_credit(self, referrer, referrals, audit):
        outcome = await referrals.credit_referral('REF123', 'friend_1')

        assert outcome.status == 'credited'
        assert outcome.referrer_id == referrer
        assert outcome.referral_count == 1
        assert not outcome.bonus_granted
        audit.emit.assert_called_once()

    @pytest.mark.asyncio
    async def test_same_referred_user_credited_once(self, referrer, referrals):
        """Test a retried credit for the same referred user is not counted again."""
        await referrals.credit_referral('REF123', 'friend_1')

        outcome = await referrals.credit_referral('REF123', 'friend_1')

        assert outcome.status == 'already_credited'
        assert (await referrals.credit_referral('REF123', 'friend_2')).referral_count == 2

    @pytest.mark.asyncio
    async def test_unknown_code(self, referrals):
        outcome = await referrals.credit_referral('NOPE', 'friend_1')

        assert outcome.status == 'unknown_code'
        assert outcome.referrer_id is None

    @pytest.mark.asyncio
    async def test_self_referral(self, referrer, referrals):
        outcome = await referrals.credit_referral('REF123', referrer)

        assert outcome.status == 'self_referral'


class TestReferralBonus:

    @pytest.mark.asyncio
    async def test_bonus_at_threshold(self, referrer, referrals, store):
        """Test the third completed referral extends the referrer's period by a month."""
        assert settings.BILLING_REFERRAL_BONUS_THRESHOLD == 3

        for i in range(2):
            assert not (await referrals.credit_referral('REF123', f'friend_{i}')).bonus_granted

        outcome = await referrals.credit_referral('REF123', 'friend_2')

        assert outcome.referral_count == 3
        assert outcome.bonus_granted
        record = await store.get(referrer)
        assert timedelta(days=27) < record.period_end - utcnow() <= timedelta(days=31)
        assert await store.event_exists(bonus_marker(referrer, 3))

    @pytest.mark.asyncio
    async def test_bonus_granted_once(self, referrer, referrals, store):
        """Test referrals past the threshold do not grant the bonus again."""
        for i in range(3):
            await referrals.credit_referral('REF123', f'friend_{i}')
        period_end = (await store.get(referrer)).period_end

        outcome = await referrals.credit_referral('REF123', 'friend_3')

        assert outcome.status == 'credited'
        assert outcome.referral_count == 4
        assert not outcome.bonus_granted
        assert (await store.get(referrer)).period_end == period_end

    @pytest.mark.asyncio
    async def test_bonus_extends_existing_period(self, referrer, referrals, store):
        """Test a paid period is extended from its end, not from today."""
        future = utcnow() + timedelta(days=10)
        await store.apply_transition(referrer, lambda r: replace(r, period_end=future))

        for i in range(3):
            await referrals.credit_referral('REF123', f'friend_{i}')

        record = await store.get(referrer)
        assert record.period_end - future >= timedelta(days=28)
