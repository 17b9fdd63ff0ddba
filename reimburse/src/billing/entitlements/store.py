"""
Entitlement Store

The only writer of the ``entitlements`` table. Every lifecycle change goes
through ``apply_transition``, which re-reads the row under a lock, applies a
pure mutation, checks the record invariants and appends the ledger row in
the same transaction.

Usage:
    from reimburse.src.billing.entitlements.store import entitlement_store

    result = await entitlement_store.apply_transition(
        user_id,
        lambda r: replace(r, status=EntitlementStatus.ACTIVE),
        SubscriptionEventEntry('invoice.payment_succeeded', external_event_id=event_id),
    )
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reimburse.core.conf import settings
from reimburse.src.billing.domain.entitlement import (
    EntitlementRecord,
    EntitlementStatus,
    SubscriptionEventEntry,
    TransitionResult,
    find_invariant_violations,
    utcnow,
)
from reimburse.src.billing.shared.config import COUNTABLE_FEATURES, TIER_FREE
from reimburse.src.billing.shared.exceptions import (
    DuplicateEventError,
    InvariantViolationError,
    UserNotFoundError,
)

from .tables import entitlements, subscription_events

logger = logging.getLogger(__name__)

Mutation = Callable[[EntitlementRecord], EntitlementRecord]


class EntitlementStore:
    """
    Durable per-user entitlement records.

    Atomicity is scoped to one record: the row is locked with
    ``SELECT ... FOR UPDATE`` for the length of a transition.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        if session_factory is None:
            from reimburse.database.db import async_db_session
            session_factory = async_db_session
        self._session_factory = session_factory

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, user_id: str) -> EntitlementRecord:
        """
        Get a user's record.

        Raises:
            UserNotFoundError: No record for this user
        """
        record = await self.find(user_id)
        if record is None:
            raise UserNotFoundError(user_id)
        return record

    async def find(self, user_id: str) -> Optional[EntitlementRecord]:
        return await self._find_one(entitlements.c.user_id == user_id)

    async def find_by_customer_ref(self, customer_ref: str) -> Optional[EntitlementRecord]:
        if not customer_ref:
            return None
        return await self._find_one(entitlements.c.billing_customer_ref == customer_ref)

    async def find_by_subscription_ref(self, subscription_ref: str) -> Optional[EntitlementRecord]:
        if not subscription_ref:
            return None
        return await self._find_one(entitlements.c.billing_subscription_ref == subscription_ref)

    async def _find_one(self, clause) -> Optional[EntitlementRecord]:
        async with self._session_factory() as session:
            result = await session.execute(select(entitlements).where(clause))
            row = result.mappings().first()
        return EntitlementRecord.from_row(dict(row)) if row else None

    async def event_exists(self, external_event_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(subscription_events.c.id)
                .where(subscription_events.c.external_event_id == external_event_id)
                .limit(1)
            )
            return result.first() is not None

    async def list_events(self, user_id: str, limit: int = 50) -> List[Dict]:
        """Most recent ledger rows of a user, newest first."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(subscription_events)
                .where(subscription_events.c.user_id == user_id)
                .order_by(subscription_events.c.id.desc())
                .limit(limit)
            )
            return [dict(row) for row in result.mappings().all()]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def create(
        self,
        user_id: str,
        trial_days: Optional[int] = None,
        early_adopter: bool = False,
        lifetime_discount_percent: int = 0,
    ) -> EntitlementRecord:
        """
        Create the signup record: free tier, trial status.

        Creating a record that already exists returns the existing one.
        """
        now = utcnow()
        trial_days = settings.BILLING_TRIAL_DAYS if trial_days is None else trial_days
        record = EntitlementRecord(
            user_id=user_id,
            tier=TIER_FREE,
            status=EntitlementStatus.TRIAL,
            trial_end=now + timedelta(days=trial_days),
            early_adopter=early_adopter,
            lifetime_discount_percent=lifetime_discount_percent,
            usage_reset_at=now + relativedelta(months=1),
        )

        violations = find_invariant_violations(None, record)
        if violations:
            raise InvariantViolationError(
                f"Invalid signup record for {user_id}", user_id=user_id, violations=violations
            )

        try:
            async with self._session_factory.begin() as session:
                await session.execute(insert(entitlements).values(**record.to_row()))
        except IntegrityError:
            logger.info(f"[ENTITLEMENT] Record for {user_id} already exists")
            return await self.get(user_id)

        logger.info(f"[ENTITLEMENT] Created trial record for {user_id} (trial ends {record.trial_end.isoformat()})")
        return record

    async def apply_transition(
        self,
        user_id: str,
        mutation: Mutation,
        ledger_entry: Optional[SubscriptionEventEntry] = None,
        event_at: Optional[datetime] = None,
        advance_watermark: bool = True,
    ) -> TransitionResult:
        """
        Atomically read, mutate, validate and persist one record.

        Args:
            user_id: Record to change
            mutation: Pure function from the freshly locked record to the new record
            ledger_entry: Optional ledger row appended in the same transaction
            event_at: Provider timestamp of a lifecycle event. An event older than
                the record's watermark is ledgered but not applied.
            advance_watermark: Whether an applied event moves the watermark to
                event_at. Events that carry only part of the subscription state
                are checked against it without moving it.

        Returns:
            TransitionResult with the before and after records

        Raises:
            UserNotFoundError: No record for this user
            InvariantViolationError: The mutation would corrupt the record
            DuplicateEventError: The ledger entry's external id was already recorded
        """
        try:
            async with self._session_factory.begin() as session:
                before = await self._lock(session, user_id)

                stale = (
                    event_at is not None
                    and before.last_event_at is not None
                    and event_at < before.last_event_at
                )

                if stale:
                    after = before
                    logger.info(
                        f"[ENTITLEMENT] Skipping stale event for {user_id} "
                        f"({event_at.isoformat()} < {before.last_event_at.isoformat()})"
                    )
                else:
                    after = mutation(before)
                    if event_at is not None and advance_watermark:
                        after = replace(after, last_event_at=max(event_at, before.last_event_at or event_at))

                    violations = find_invariant_violations(before, after)
                    if violations:
                        logger.error(
                            f"[ENTITLEMENT] Consistency fault for {user_id}: {violations} "
                            f"(event={ledger_entry.event_type if ledger_entry else None})"
                        )
                        raise InvariantViolationError(
                            f"Transition rejected for {user_id}", user_id=user_id, violations=violations
                        )

                    await self._write(session, before, after)

                if ledger_entry is not None:
                    await self._insert_event(session, user_id, before, after, ledger_entry, stale=stale)

        except DuplicateEventError:
            logger.info(f"[ENTITLEMENT] Duplicate ledger entry {ledger_entry.external_event_id}, rolled back")
            raise

        if after != before:
            logger.info(
                f"[ENTITLEMENT] {user_id}: {before.tier}/{before.status.value} -> "
                f"{after.tier}/{after.status.value}"
            )
        return TransitionResult(before=before, after=after, stale=stale)

    async def increment_usage(self, user_id: str, feature: str) -> None:
        """
        Add one to a usage counter with a single atomic UPDATE.

        Raises:
            ValueError: feature is not a countable feature
            UserNotFoundError: No record for this user
        """
        if feature not in COUNTABLE_FEATURES:
            raise ValueError(f"Not a countable feature: {feature}")

        column = entitlements.c[feature]
        async with self._session_factory.begin() as session:
            result = await session.execute(
                update(entitlements)
                .where(entitlements.c.user_id == user_id)
                .values({column: column + 1, entitlements.c.updated_at: func.now()})
            )
            if result.rowcount == 0:
                raise UserNotFoundError(user_id)

        logger.debug(f"[ENTITLEMENT] Incremented {feature} for {user_id}")

    async def append_event(
        self,
        user_id: str,
        entry: SubscriptionEventEntry,
    ) -> None:
        """
        Append a ledger row without touching the record.

        The row is locked so the ledgered tier and status are current.

        Raises:
            UserNotFoundError: No record for this user
            DuplicateEventError: external_event_id already recorded
        """
        async with self._session_factory.begin() as session:
            record = await self._lock(session, user_id)
            await self._insert_event(session, user_id, record, record, entry)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    async def _lock(self, session: AsyncSession, user_id: str) -> EntitlementRecord:
        result = await session.execute(
            select(entitlements).where(entitlements.c.user_id == user_id).with_for_update()
        )
        row = result.mappings().first()
        if row is None:
            raise UserNotFoundError(user_id)
        return EntitlementRecord.from_row(dict(row))

    async def _write(self, session: AsyncSession, before: EntitlementRecord, after: EntitlementRecord) -> None:
        old_row = before.to_row()
        changes = {k: v for k, v in after.to_row().items() if old_row[k] != v}
        if not changes:
            return
        changes['updated_at'] = func.now()
        await session.execute(
            update(entitlements).where(entitlements.c.user_id == before.user_id).values(**changes)
        )

    async def _insert_event(
        self,
        session: AsyncSession,
        user_id: str,
        before: Optional[EntitlementRecord],
        after: Optional[EntitlementRecord],
        entry: SubscriptionEventEntry,
        stale: bool = False,
    ) -> None:
        meta = dict(entry.metadata)
        if stale:
            meta['stale'] = True

        try:
            await session.execute(
                insert(subscription_events).values(
                    user_id=user_id,
                    event_type=entry.event_type,
                    old_tier=before.tier if before else None,
                    new_tier=after.tier if after else None,
                    old_status=before.status.value if before else None,
                    new_status=after.status.value if after else None,
                    external_event_id=entry.external_event_id,
                    metadata=meta,
                    received_at=utcnow(),
                )
            )
        except IntegrityError as e:
            # Unique external_event_id: the caller's transaction rolls back
            raise DuplicateEventError(entry.external_event_id) from e


entitlement_store = EntitlementStore()
