"""Tests for settings and Stripe credential resolution."""

from reimburse.core.conf import Settings, resolve_stripe_credentials


class TestStripeCredentials:

    def test_test_mode_keys(self):
        config = Settings(
            STRIPE_MODE='test',
            STRIPE_SECRET_KEY_TEST='sk_test_1',
            STRIPE_WEBHOOK_SECRET_TEST='whsec_test_1',
            STRIPE_SECRET_KEY_LIVE='sk_live_1',
        )

        credentials = resolve_stripe_credentials(config)

        assert credentials.mode == 'test'
        assert credentials.secret_key == 'sk_test_1'
        assert credentials.webhook_secret == 'whsec_test_1'

    def test_live_mode_keys(self):
        config = Settings(
            STRIPE_MODE='live',
            STRIPE_SECRET_KEY_LIVE='sk_live_1',
            STRIPE_WEBHOOK_SECRET_LIVE='whsec_live_1',
            STRIPE_SECRET_KEY_TEST='sk_test_1',
        )

        credentials = resolve_stripe_credentials(config)

        assert credentials.secret_key == 'sk_live_1'
        assert credentials.webhook_secret == 'whsec_live_1'

    def test_legacy_fallback(self):
        """Test the legacy single-key names are used when the mode-scoped ones are empty."""
        config = Settings(
            STRIPE_MODE='live',
            STRIPE_SECRET_KEY_LIVE='',
            STRIPE_WEBHOOK_SECRET_LIVE='',
            STRIPE_SECRET_KEY='sk_legacy',
            STRIPE_WEBHOOK_SECRET='whsec_legacy',
        )

        credentials = resolve_stripe_credentials(config)

        assert credentials.secret_key == 'sk_legacy'
        assert credentials.webhook_secret == 'whsec_legacy'

    def test_mode_scoped_key_wins_over_legacy(self):
        config = Settings(STRIPE_MODE='test', STRIPE_SECRET_KEY_TEST='sk_test_1', STRIPE_SECRET_KEY='sk_legacy')

        assert resolve_stripe_credentials(config).secret_key == 'sk_test_1'


class TestSettings:

    def test_prod_disables_docs(self):
        config = Settings(ENVIRONMENT='prod')

        assert config.FASTAPI_DOCS_URL is None
        assert config.FASTAPI_OPENAPI_URL is None

    def test_billing_defaults(self):
        config = Settings()

        assert config.BILLING_TRIAL_DAYS == 14
        assert config.BILLING_FREE_RECEIPT_UPLOADS_LIMIT == 10
        assert config.BILLING_FREE_REPORT_EXPORTS_LIMIT == 1
        assert config.BILLING_REFERRAL_BONUS_THRESHOLD == 3
