"""Tests for the audit side-channel."""

import asyncio
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select

from reimburse.src.billing.entitlements.tables import audit_log
from reimburse.src.billing.shared.audit import AuditLogger


async def audit_rows(session_factory):
    async with session_factory() as session:
        return (await session.execute(select(audit_log).order_by(audit_log.c.id))).mappings().all()


class TestAuditLogger:

    @pytest.mark.asyncio
    async def test_flush_writes_batch(self, session_factory):
        audit = AuditLogger(session_factory=session_factory, batch_size=2)
        audit.emit('u1', 'checkout_created', {'plan': 'pro'})
        audit.emit('u1', 'referral_credited')
        audit.emit(None, 'system_event')

        written = await audit.flush()

        assert written == 3
        rows = await audit_rows(session_factory)
        assert [r['event'] for r in rows] == ['checkout_created', 'referral_credited', 'system_event']
        assert rows[0]['meta'] == {'plan': 'pro'}
        assert audit.metrics['written'] == 3
        assert audit.pending == 0

    def test_full_queue_drops(self):
        """Test emit never blocks or raises when the queue is full."""
        audit = AuditLogger(session_factory=MagicMock(), maxsize=1)

        audit.emit('u1', 'first')
        audit.emit('u1', 'second')

        assert audit.metrics['emitted'] == 1
        assert audit.metrics['dropped'] == 1
        assert audit.pending == 1

    @pytest.mark.asyncio
    async def test_write_failure_is_counted(self):
        factory = MagicMock()
        factory.begin.side_effect = RuntimeError('database is down')
        audit = AuditLogger(session_factory=factory)
        audit.emit('u1', 'checkout_created')

        written = await audit.flush()

        assert written == 0
        assert audit.metrics['failed'] == 1

    @pytest.mark.asyncio
    async def test_background_drain(self, session_factory):
        audit = AuditLogger(session_factory=session_factory, flush_interval=0.01)
        await audit.start()

        audit.emit('u1', 'checkout_created')
        for _ in range(100):
            if audit.metrics['written']:
                break
            await asyncio.sleep(0.01)

        await audit.stop()
        assert audit.metrics['written'] == 1
        assert len(await audit_rows(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_stop_flushes_pending(self, session_factory):
        audit = AuditLogger(session_factory=session_factory, flush_interval=10)
        audit.emit('u1', 'queued_before_start')
        await audit.start()
        await audit.stop()

        assert len(await audit_rows(session_factory)) == 1
