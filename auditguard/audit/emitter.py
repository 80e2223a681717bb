"""AuditEmitter — fire-and-forget hand-off of audit records to the storage sink.

Critical invariants:
- emit() never awaits the sink. The write is scheduled as an asyncio task, so
  it starts only after the current response-handling turn has yielded.
- Sink failures are logged at ERROR and swallowed; there is no retry here
  (retry policy, if any, belongs to the sink).
- Scheduled tasks are held in a set until done so they cannot be garbage
  collected mid-flight; drain()/aclose() give shutdown a bounded wait.
"""

from __future__ import annotations

import asyncio
import logging

from auditguard.audit.providers import AuditSink
from auditguard.models.audit import AuditRecord
from auditguard.models.taxonomy import RiskLevel

logger = logging.getLogger(__name__)

# Every emitted record is mirrored here for immediate visibility
audit_log = logging.getLogger("auditguard.audit")

_RISK_LOG_LEVEL: dict[RiskLevel, int] = {
    RiskLevel.LOW: logging.INFO,
    RiskLevel.MEDIUM: logging.WARNING,
    RiskLevel.HIGH: logging.ERROR,
    RiskLevel.CRITICAL: logging.CRITICAL,
}


class AuditEmitter:
    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def sink(self) -> AuditSink:
        return self._sink

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def emit(self, record: AuditRecord) -> None:
        """Schedule the sink write and return immediately."""
        audit_log.log(
            _RISK_LOG_LEVEL.get(record.risk_level, logging.INFO),
            "[AUDIT] %s - %s request_id=%s user=%s ip=%s",
            record.event_type,
            record.description,
            record.request_id,
            record.user_id,
            record.ip_address,
        )
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error(
                "No running event loop — audit record lost for request_id=%s event=%s",
                record.request_id,
                record.event_type,
            )
            return
        task = loop.create_task(self._deliver(record), name=f"audit-emit-{record.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, record: AuditRecord) -> None:
        try:
            await self._sink.append(record)
            logger.debug("audit write request_id=%s event=%s", record.request_id, record.event_type)
        except asyncio.CancelledError:
            logger.warning(
                "Audit write cancelled — audit record lost for request_id=%s", record.request_id
            )
            raise
        except Exception:
            logger.exception(
                "Audit sink failed — audit record lost for request_id=%s event=%s",
                record.request_id,
                record.event_type,
            )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight writes. Tasks still pending after ``timeout`` keep running."""
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout)

    async def aclose(self, timeout: float = 5.0) -> None:
        """Drain, then cancel anything still outstanding."""
        await self.drain(timeout)
        leftovers = list(self._tasks)
        for task in leftovers:
            task.cancel()
        if leftovers:
            await asyncio.gather(*leftovers, return_exceptions=True)
            logger.warning("Cancelled %d outstanding audit writes on shutdown", len(leftovers))
