"""
Referral Bonus Engine

Credits a referrer when a referred user completes checkout. A referred
user is credited at most once (unique ``referred_id``), and the threshold
bonus is granted at most once per referrer (unique ledger marker).
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from reimburse.core.conf import settings
from reimburse.src.billing.domain.entitlement import EntitlementRecord, SubscriptionEventEntry, utcnow
from reimburse.src.billing.entitlements.store import EntitlementStore, entitlement_store
from reimburse.src.billing.entitlements.tables import referral_records
from reimburse.src.billing.shared.audit import AuditLogger, audit_logger
from reimburse.src.billing.shared.exceptions import DuplicateEventError
from reimburse.src.billing.shared.users import UserDirectory, user_directory

logger = logging.getLogger(__name__)

REFERRAL_STATUS_COMPLETED = 'completed'


@dataclass(frozen=True)
class ReferralOutcome:
    """
    Attributes:
        status: 'credited', 'already_credited', 'unknown_code' or 'self_referral'
        referrer_id: Owner of the referral code, when known
        referral_count: Completed referrals of the referrer after this one
        bonus_granted: Whether this call granted the threshold bonus
    """
    status: str
    referrer_id: Optional[str] = None
    referral_count: int = 0
    bonus_granted: bool = False


def bonus_marker(referrer_id: str, threshold: int) -> str:
    return f"referral_bonus:{referrer_id}:{threshold}"


def _extend_period(record: EntitlementRecord) -> EntitlementRecord:
    now = utcnow()
    start = record.period_end if record.period_end and record.period_end > now else now
    return replace(record, period_end=start + relativedelta(months=1))


class ReferralService:

    def __init__(
        self,
        store: Optional[EntitlementStore] = None,
        users: Optional[UserDirectory] = None,
        audit: Optional[AuditLogger] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self._store = store or entitlement_store
        self._users = users or user_directory
        self._audit = audit or audit_logger
        if session_factory is None:
            from reimburse.database.db import async_db_session
            session_factory = async_db_session
        self._session_factory = session_factory

    async def credit_referral(self, referral_code: str, referred_user_id: str) -> ReferralOutcome:
        """
        Record that ``referred_user_id`` signed up through ``referral_code``.

        Args:
            referral_code: Code carried in the checkout metadata
            referred_user_id: User who completed checkout

        Returns:
            ReferralOutcome
        """
        referrer = await self._users.find_by_referral_code(referral_code)
        if referrer is None:
            logger.info(f"[REFERRAL] Referrer not found for code {referral_code}")
            return ReferralOutcome(status='unknown_code')

        if referrer.id == referred_user_id:
            logger.info(f"[REFERRAL] Ignoring self-referral by {referred_user_id}")
            return ReferralOutcome(status='self_referral', referrer_id=referrer.id)

        threshold = settings.BILLING_REFERRAL_BONUS_THRESHOLD

        try:
            async with self._session_factory.begin() as session:
                await session.execute(
                    insert(referral_records).values(
                        referrer_id=referrer.id,
                        referred_id=referred_user_id,
                        referral_code=referral_code,
                        status=REFERRAL_STATUS_COMPLETED,
                        reward_type=settings.BILLING_REFERRAL_REWARD_TYPE,
                        reward_value=settings.BILLING_REFERRAL_REWARD_VALUE,
                        created_at=utcnow(),
                    )
                )
                result = await session.execute(
                    select(func.count())
                    .select_from(referral_records)
                    .where(
                        referral_records.c.referrer_id == referrer.id,
                        referral_records.c.status == REFERRAL_STATUS_COMPLETED,
                    )
                )
                count = result.scalar_one()
        except IntegrityError:
            logger.info(f"[REFERRAL] Referral already processed for {referred_user_id}")
            return ReferralOutcome(status='already_credited', referrer_id=referrer.id)

        logger.info(f"[REFERRAL] {referrer.id} -> {referred_user_id} credited ({count} completed)")
        self._audit.emit(referrer.id, 'referral_credited', {
            'referred_id': referred_user_id,
            'referral_code': referral_code,
            'count': count,
        })

        bonus_granted = False
        if count >= threshold:
            bonus_granted = await self._grant_bonus(referrer.id, threshold, count)

        return ReferralOutcome(
            status='credited',
            referrer_id=referrer.id,
            referral_count=count,
            bonus_granted=bonus_granted,
        )

    async def _grant_bonus(self, referrer_id: str, threshold: int, count: int) -> bool:
        """Extend the referrer's period by one month, once per threshold."""
        marker = bonus_marker(referrer_id, threshold)
        try:
            result = await self._store.apply_transition(
                referrer_id,
                _extend_period,
                SubscriptionEventEntry(
                    event_type='referral.bonus',
                    external_event_id=marker,
                    metadata={'threshold': threshold, 'referral_count': count},
                ),
            )
        except DuplicateEventError:
            logger.info(f"[REFERRAL] Bonus at {threshold} already granted to {referrer_id}")
            return False

        logger.info(
            f"[REFERRAL] {referrer_id} earned a free month for {threshold} referrals "
            f"(period ends {result.after.period_end.isoformat()})"
        )
        self._audit.emit(referrer_id, 'referral_bonus_granted', {
            'threshold': threshold,
            'period_end': result.after.period_end.isoformat(),
        })
        return True


referral_service = ReferralService()
