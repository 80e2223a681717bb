"""Storage sinks for audit records.

SqlAlchemyAuditSink   — one session per append, append-only inserts.
LoggingAuditSink      — JSON line per record to a logger (no database).
BatchingAuditSink     — wraps another sink; HIGH/CRITICAL records are written
                        immediately, LOW/MEDIUM are buffered and flushed by
                        size or age.

Sinks may raise. The AuditEmitter is the boundary that swallows failures.
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from auditguard.audit.providers import AuditSink
from auditguard.db.models import AuditRecordRow
from auditguard.errors import AuditSinkError
from auditguard.models.audit import AuditRecord
from auditguard.models.taxonomy import RiskLevel

logger = logging.getLogger(__name__)


def record_to_row(record: AuditRecord) -> AuditRecordRow:
    return AuditRecordRow(
        id=record.id,
        event_type=record.event_type,
        action=record.action,
        description=record.description,
        user_id=record.user_id,
        session_id=record.session_id,
        organization_id=record.organization_id,
        resource_type=record.resource_type,
        resource_id=record.resource_id,
        affected_records=record.affected_records,
        request_id=record.request_id,
        request_method=record.request_method,
        request_path=record.request_path,
        request_size=record.request_size,
        request_body=record.request_body,
        response_status=record.response_status,
        response_size=record.response_size,
        response_body=record.response_body,
        duration_ms=record.duration_ms,
        completed=record.completed,
        ip_address=record.ip_address,
        user_agent=record.user_agent,
        country=record.country,
        region=record.region,
        city=record.city,
        device_type=record.device_type,
        browser=record.browser,
        os=record.os,
        risk_level=record.risk_level.value,
        data_sensitivity=record.data_sensitivity.value,
        tags=list(record.tags),
        compliance_tags=list(record.compliance_tags),
        metadata_=record.model_dump(mode="json")["metadata"],
        created_at=record.created_at,
    )


class SqlAlchemyAuditSink:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, record: AuditRecord) -> None:
        await self.append_many([record])

    async def append_many(self, records: list[AuditRecord]) -> None:
        """Insert records in one transaction. Raises AuditSinkError on failure."""
        if not records:
            return
        async with self._session_factory() as session:
            try:
                session.add_all([record_to_row(r) for r in records])
                await session.commit()
            except Exception as exc:
                await session.rollback()
                raise AuditSinkError(records[0].id, f"{type(exc).__name__}: {exc}") from exc


class LoggingAuditSink:
    """Writes each record as one JSON line. Used when no database is configured."""

    def __init__(self, logger_name: str = "auditguard.audit.records") -> None:
        self._logger = logging.getLogger(logger_name)

    async def append(self, record: AuditRecord) -> None:
        self._logger.info("%s", record.model_dump_json())


class BatchingAuditSink:
    def __init__(
        self,
        inner: SqlAlchemyAuditSink | AuditSink,
        batch_size: int = 100,
        batch_timeout_seconds: float = 5.0,
    ) -> None:
        self._inner = inner
        self._batch_size = batch_size
        self._batch_timeout = batch_timeout_seconds
        self._pending: list[AuditRecord] = []
        self._timer: asyncio.TimerHandle | None = None
        self._flush_tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def append(self, record: AuditRecord) -> None:
        if record.risk_level >= RiskLevel.HIGH:
            await self._inner.append(record)
            return

        self._pending.append(record)
        if len(self._pending) >= self._batch_size:
            await self.flush()
        elif self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self._batch_timeout, self._flush_soon)

    def _flush_soon(self) -> None:
        self._timer = None
        task = asyncio.get_running_loop().create_task(self.flush())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    async def flush(self) -> None:
        """Write everything buffered. Failures are logged; the batch is not retried."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._pending:
            return

        batch, self._pending = self._pending, []
        try:
            if isinstance(self._inner, SqlAlchemyAuditSink):
                await self._inner.append_many(batch)
            else:
                for record in batch:
                    await self._inner.append(record)
        except Exception:
            logger.exception("Failed to flush audit batch — %d records lost", len(batch))

    async def aclose(self) -> None:
        await self.flush()
        if self._flush_tasks:
            await asyncio.gather(*self._flush_tasks, return_exceptions=True)
