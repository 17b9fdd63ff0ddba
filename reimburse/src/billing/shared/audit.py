"""
Audit Side-Channel

Best-effort audit trail of billing actions. ``emit`` never blocks and never
raises: events go onto a bounded queue and a background task writes them to
``audit_log`` in batches. A full queue drops the event and counts it. A failed
write is logged and counted.

Usage:
    from reimburse.src.billing.shared.audit import audit_logger

    audit_logger.emit(user_id, 'checkout_created', {'plan': 'pro'})
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import insert
from sqlalchemy.ext.asyncio import async_sessionmaker

from reimburse.core.conf import settings
from reimburse.src.billing.entitlements.tables import audit_log

logger = logging.getLogger(__name__)


@dataclass
class AuditEvent:
    user_id: Optional[str]
    event: str
    meta: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AuditLogger:
    """Bounded queue plus a single drain task."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        maxsize: Optional[int] = None,
        batch_size: Optional[int] = None,
        flush_interval: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self._queue: asyncio.Queue[AuditEvent] = asyncio.Queue(
            maxsize=maxsize or settings.BILLING_AUDIT_QUEUE_SIZE
        )
        self._batch_size = batch_size or settings.BILLING_AUDIT_BATCH_SIZE
        self._flush_interval = flush_interval or settings.BILLING_AUDIT_FLUSH_INTERVAL_SECONDS

        self._is_running = False
        self._worker: Optional[asyncio.Task] = None

        self._metrics = {
            'emitted': 0,
            'written': 0,
            'dropped': 0,
            'failed': 0,
        }

    @property
    def metrics(self) -> Dict[str, int]:
        return dict(self._metrics)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Emit
    # ------------------------------------------------------------------

    def emit(self, user_id: Optional[str], event: str, meta: Optional[Dict[str, Any]] = None) -> None:
        """Queue an audit event. Never raises, never waits."""
        try:
            self._queue.put_nowait(AuditEvent(user_id=user_id, event=event, meta=meta or {}))
            self._metrics['emitted'] += 1
        except asyncio.QueueFull:
            self._metrics['dropped'] += 1
            logger.warning(f"[AUDIT] Queue full, dropped '{event}' for {user_id} (dropped={self._metrics['dropped']})")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._is_running:
            return
        self._is_running = True
        self._worker = asyncio.create_task(self._drain(), name="audit_drain")
        logger.info("[AUDIT] Drain task started")

    async def stop(self) -> None:
        """Stop the drain task and write what is still queued."""
        if not self._is_running:
            return
        self._is_running = False

        if self._worker:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None

        await self.flush()
        logger.info(f"[AUDIT] Stopped: {self._metrics}")

    async def flush(self) -> int:
        """Write everything currently queued. Returns the number of rows written."""
        written = 0
        while not self._queue.empty():
            written += await self._write(self._take_batch())
        return written

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _drain(self) -> None:
        while self._is_running:
            try:
                first = await asyncio.wait_for(self._queue.get(), timeout=self._flush_interval)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            batch = [first] + self._take_batch(self._batch_size - 1)
            await self._write(batch)

    def _take_batch(self, size: Optional[int] = None) -> List[AuditEvent]:
        size = self._batch_size if size is None else size
        batch = []
        while len(batch) < size:
            try:
                batch.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return batch

    async def _write(self, batch: List[AuditEvent]) -> int:
        if not batch:
            return 0

        session_factory = self._session_factory
        if session_factory is None:
            from reimburse.database.db import async_db_session
            session_factory = async_db_session

        rows = [
            {'user_id': e.user_id, 'event': e.event, 'meta': e.meta, 'created_at': e.created_at}
            for e in batch
        ]
        try:
            async with session_factory.begin() as session:
                await session.execute(insert(audit_log), rows)
        except Exception as e:
            self._metrics['failed'] += len(batch)
            logger.error(f"[AUDIT] Failed to write {len(batch)} audit events: {e}")
            return 0

        self._metrics['written'] += len(batch)
        return len(batch)


audit_logger = AuditLogger()
