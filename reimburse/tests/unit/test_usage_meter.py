"""Tests for the usage meter.

Tests cover:
- Free-tier caps with upgrade hints
- Boolean feature gating
- Lazy trial expiry
- Lazy usage-window reset
- Unknown users and features
"""

from dataclasses import replace
from datetime import timedelta

import pytest

from reimburse.src.billing.domain.entitlement import EntitlementStatus, utcnow
from reimburse.src.billing.entitlements.usage import UsageMeter


@pytest.fixture
def meter(store):
    return UsageMeter(store)


async def make_paid(store, user_id, tier):
    await store.apply_transition(
        user_id,
        lambda r: replace(r, tier=tier, status=EntitlementStatus.ACTIVE, billing_customer_ref=f'cus_{user_id}'),
    )


class TestCountableFeatures:
    """Tests for receipt uploads and report exports."""

    @pytest.mark.asyncio
    async def test_tenth_upload_allowed_eleventh_denied(self, add_user, meter):
        """Test a free user can upload ten receipts and is then asked to upgrade."""
        await add_user('u1')

        for _ in range(9):
            await meter.increment_usage('u1', 'receipt_uploads')

        decision = await meter.check_limit('u1', 'receipt_uploads')
        assert decision.allowed
        assert decision.used == 9
        assert decision.limit == 10

        await meter.increment_usage('u1', 'receipt_uploads')
        decision = await meter.check_limit('u1', 'receipt_uploads')

        assert not decision.allowed
        assert decision.upgrade_required == 'pro'
        assert decision.current_tier == 'free'
        assert decision.reason == 'Upload limit reached (10). Upgrade to Pro for unlimited uploads.'

    @pytest.mark.asyncio
    async def test_single_free_report(self, add_user, meter):
        await add_user('u1')

        assert (await meter.check_limit('u1', 'report_exports')).allowed
        await meter.increment_usage('u1', 'report_exports')

        decision = await meter.check_limit('u1', 'report_exports')
        assert not decision.allowed
        assert decision.reason == 'Report limit reached (1). Upgrade to Pro for unlimited reports.'

    @pytest.mark.asyncio
    async def test_paid_tier_is_unlimited(self, add_user, store, meter):
        """Test the cap check is skipped for unlimited tiers."""
        await add_user('u1')
        await make_paid(store, 'u1', 'pro')
        for _ in range(12):
            await meter.increment_usage('u1', 'receipt_uploads')

        decision = await meter.check_limit('u1', 'receipt_uploads')

        assert decision.allowed
        assert decision.limit == -1
        assert decision.used == 12

    @pytest.mark.asyncio
    async def test_increment_rejects_boolean_feature(self, add_user, meter):
        await add_user('u1')
        with pytest.raises(ValueError):
            await meter.increment_usage('u1', 'analytics')


class TestBooleanFeatures:
    """Tests for tier-gated features."""

    @pytest.mark.asyncio
    async def test_free_user_denied_csv_export(self, add_user, meter):
        await add_user('u1')

        decision = await meter.check_limit('u1', 'csv_export')

        assert not decision.allowed
        assert decision.reason == 'CSV export requires Pro subscription.'
        assert decision.upgrade_required == 'pro'

    @pytest.mark.asyncio
    async def test_pro_user_needs_premium_for_email_ingestion(self, add_user, store, meter):
        await add_user('u1')
        await make_paid(store, 'u1', 'pro')

        assert (await meter.check_limit('u1', 'csv_export')).allowed
        decision = await meter.check_limit('u1', 'email_ingestion')

        assert not decision.allowed
        assert decision.upgrade_required == 'premium'
        assert decision.current_tier == 'pro'
        assert decision.reason == 'Email receipt ingestion requires Premium subscription.'

    @pytest.mark.asyncio
    async def test_premium_has_everything(self, add_user, store, meter):
        await add_user('u1')
        await make_paid(store, 'u1', 'premium')

        for feature in ('email_ingestion', 'team_collaboration', 'analytics', 'csv_export'):
            assert (await meter.check_limit('u1', feature)).allowed


class TestLazyMaintenance:
    """Tests for trial expiry and usage-window reset on check."""

    @pytest.mark.asyncio
    async def test_expired_trial_downgrades(self, add_user, store, meter):
        """Test a lapsed trial is moved to free/canceled on the next check."""
        await add_user('u1', trial_days=-1)

        decision = await meter.check_limit('u1', 'receipt_uploads')

        assert decision.current_tier == 'free'
        record = await store.get('u1')
        assert record.status == EntitlementStatus.CANCELED
        assert record.billing_subscription_ref is None

    @pytest.mark.asyncio
    async def test_active_trial_untouched(self, add_user, store, meter):
        await add_user('u1')

        await meter.check_limit('u1', 'receipt_uploads')

        assert (await store.get('u1')).status == EntitlementStatus.TRIAL

    @pytest.mark.asyncio
    async def test_elapsed_window_resets_counters(self, add_user, store, meter):
        """Test counters are zeroed and the next boundary set once the window passes."""
        await add_user('u1')
        await store.apply_transition(
            'u1',
            lambda r: replace(r, receipt_uploads=10, report_exports=1, usage_reset_at=utcnow() - timedelta(days=1)),
        )

        decision = await meter.check_limit('u1', 'receipt_uploads')

        assert decision.allowed
        assert decision.used == 0
        record = await store.get('u1')
        assert record.report_exports == 0
        assert record.usage_reset_at > utcnow()

    @pytest.mark.asyncio
    async def test_long_elapsed_window_rolls_forward(self, add_user, store, meter):
        await add_user('u1')
        await store.apply_transition(
            'u1', lambda r: replace(r, receipt_uploads=3, usage_reset_at=utcnow() - timedelta(days=100))
        )

        await meter.check_limit('u1', 'receipt_uploads')

        record = await store.get('u1')
        now = utcnow()
        assert now < record.usage_reset_at <= now + timedelta(days=31)


class TestUnknowns:

    @pytest.mark.asyncio
    async def test_unknown_user(self, meter):
        decision = await meter.check_limit('nobody', 'receipt_uploads')

        assert not decision.allowed
        assert decision.reason == 'User not found'
        assert decision.upgrade_required is None

    @pytest.mark.asyncio
    async def test_unknown_feature(self, add_user, meter):
        await add_user('u1')

        decision = await meter.check_limit('u1', 'teleportation')

        assert not decision.allowed
        assert decision.reason == 'Unknown feature'
        assert decision.upgrade_required is None
