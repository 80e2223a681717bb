"""Filtered audit record reads for the admin API.

All queries return Pydantic AuditRecord objects (not raw ORM rows) and are
ordered by created_at DESC so the most recent records come first.
"""

import csv
import io
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import Select, case, delete, desc, distinct, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from auditguard.db.models import AuditRecordRow
from auditguard.models.audit import AuditRecord
from auditguard.models.taxonomy import DataSensitivity, RiskLevel

MAX_PAGE_SIZE = 1000
MAX_EXPORT_ROWS = 10_000

EXPORT_COLUMNS: tuple[tuple[str, str], ...] = (
    ("Timestamp", "created_at"),
    ("Event Type", "event_type"),
    ("User ID", "user_id"),
    ("Organization ID", "organization_id"),
    ("Action", "action"),
    ("Description", "description"),
    ("IP Address", "ip_address"),
    ("Risk Level", "risk_level"),
    ("Resource Type", "resource_type"),
    ("Resource ID", "resource_id"),
)


class AuditFilters(BaseModel):
    user_id: str | None = None
    organization_id: str | None = None
    event_type: str | None = None
    risk_level: RiskLevel | None = None
    resource_type: str | None = None
    ip_address: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    search: str | None = None  # substring of description, case-insensitive
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=MAX_PAGE_SIZE)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class AuditPage(BaseModel):
    data: list[AuditRecord]
    pagination: Pagination


class AuditStatistics(BaseModel):
    total_events: int = 0
    auth_events: int = 0
    org_events: int = 0
    project_events: int = 0
    task_events: int = 0
    security_events: int = 0
    low_risk_events: int = 0
    medium_risk_events: int = 0
    high_risk_events: int = 0
    critical_risk_events: int = 0
    unique_users: int = 0
    unique_ips: int = 0
    avg_response_time_ms: float | None = None
    error_rate: float = 0.0


def _row_to_record(row: AuditRecordRow) -> AuditRecord:
    """Convert a SQLAlchemy ORM row back to a Pydantic AuditRecord."""
    return AuditRecord(
        id=row.id,
        event_type=row.event_type,
        action=row.action,
        description=row.description,
        user_id=row.user_id,
        session_id=row.session_id,
        organization_id=row.organization_id,
        resource_type=row.resource_type,
        resource_id=row.resource_id,
        affected_records=row.affected_records,
        request_id=row.request_id,
        request_method=row.request_method,
        request_path=row.request_path,
        request_size=row.request_size,
        request_body=row.request_body,
        response_status=row.response_status,
        response_size=row.response_size,
        response_body=row.response_body,
        duration_ms=row.duration_ms,
        completed=row.completed,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        country=row.country,
        region=row.region,
        city=row.city,
        device_type=row.device_type,
        browser=row.browser,
        os=row.os,
        risk_level=RiskLevel(row.risk_level),
        data_sensitivity=DataSensitivity(row.data_sensitivity),
        tags=list(row.tags or []),
        compliance_tags=list(row.compliance_tags or []),
        metadata=dict(row.metadata_ or {}),
        created_at=row.created_at,
    )


def _apply_filters(stmt: Select[Any], filters: AuditFilters) -> Select[Any]:
    if filters.user_id:
        stmt = stmt.where(AuditRecordRow.user_id == filters.user_id)
    if filters.organization_id:
        stmt = stmt.where(AuditRecordRow.organization_id == filters.organization_id)
    if filters.event_type:
        stmt = stmt.where(AuditRecordRow.event_type == filters.event_type)
    if filters.risk_level:
        stmt = stmt.where(AuditRecordRow.risk_level == filters.risk_level.value)
    if filters.resource_type:
        stmt = stmt.where(AuditRecordRow.resource_type == filters.resource_type)
    if filters.ip_address:
        stmt = stmt.where(AuditRecordRow.ip_address == filters.ip_address)
    if filters.start_date:
        stmt = stmt.where(AuditRecordRow.created_at >= filters.start_date)
    if filters.end_date:
        stmt = stmt.where(AuditRecordRow.created_at <= filters.end_date)
    if filters.search:
        stmt = stmt.where(AuditRecordRow.description.ilike(f"%{filters.search}%"))
    return stmt


def _count_where(condition: Any) -> Any:
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


class AuditQuery:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_request_id(self, request_id: str) -> list[AuditRecord]:
        """All records for one request (a request can emit a security event too)."""
        result = await self._session.execute(
            select(AuditRecordRow)
            .where(AuditRecordRow.request_id == request_id)
            .order_by(desc(AuditRecordRow.created_at))
        )
        return [_row_to_record(r) for r in result.scalars().all()]

    async def list_records(self, filters: AuditFilters) -> AuditPage:
        """Filtered, paginated listing, newest first."""
        total = await self._session.scalar(
            _apply_filters(select(func.count()).select_from(AuditRecordRow), filters)
        )
        result = await self._session.execute(
            _apply_filters(select(AuditRecordRow), filters)
            .order_by(desc(AuditRecordRow.created_at))
            .limit(filters.limit)
            .offset((filters.page - 1) * filters.limit)
        )
        total = total or 0
        return AuditPage(
            data=[_row_to_record(r) for r in result.scalars().all()],
            pagination=Pagination(
                page=filters.page,
                limit=filters.limit,
                total=total,
                pages=-(-total // filters.limit),
            ),
        )

    async def statistics(
        self,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        organization_id: str | None = None,
    ) -> AuditStatistics:
        """Aggregate counts over a period. Defaults to the last 30 days."""
        end_date = end_date or datetime.now(timezone.utc)
        start_date = start_date or end_date - timedelta(days=30)
        row = AuditRecordRow
        stmt = select(
            func.count().label("total_events"),
            _count_where(row.event_type.like("auth.%")).label("auth_events"),
            _count_where(row.event_type.like("organization.%")).label("org_events"),
            _count_where(row.event_type.like("project.%")).label("project_events"),
            _count_where(row.event_type.like("task.%")).label("task_events"),
            _count_where(row.event_type.like("security.%")).label("security_events"),
            _count_where(row.risk_level == RiskLevel.LOW.value).label("low_risk_events"),
            _count_where(row.risk_level == RiskLevel.MEDIUM.value).label("medium_risk_events"),
            _count_where(row.risk_level == RiskLevel.HIGH.value).label("high_risk_events"),
            _count_where(row.risk_level == RiskLevel.CRITICAL.value).label(
                "critical_risk_events"
            ),
            func.count(distinct(row.user_id)).label("unique_users"),
            func.count(distinct(row.ip_address)).label("unique_ips"),
            func.avg(row.duration_ms).label("avg_response_time_ms"),
            _count_where(row.response_status >= 400).label("error_events"),
        ).where(row.created_at >= start_date, row.created_at <= end_date)
        if organization_id:
            stmt = stmt.where(row.organization_id == organization_id)

        values = dict((await self._session.execute(stmt)).mappings().one())
        error_events = int(values.pop("error_events") or 0)
        total = int(values["total_events"] or 0)
        avg = values.pop("avg_response_time_ms")
        return AuditStatistics(
            **{k: int(v or 0) for k, v in values.items()},
            avg_response_time_ms=float(avg) if avg is not None else None,
            error_rate=error_events / total if total else 0.0,
        )

    async def security_events(
        self, limit: int = 100, organization_id: str | None = None
    ) -> list[AuditRecord]:
        """security.* events, HIGH/CRITICAL records and 401/403/429 responses."""
        row = AuditRecordRow
        stmt = select(row).where(
            or_(
                row.event_type.like("security.%"),
                row.risk_level.in_([RiskLevel.HIGH.value, RiskLevel.CRITICAL.value]),
                row.response_status.in_([401, 403, 429]),
            )
        )
        if organization_id:
            stmt = stmt.where(row.organization_id == organization_id)
        result = await self._session.execute(
            stmt.order_by(desc(row.created_at)).limit(min(limit, MAX_PAGE_SIZE))
        )
        return [_row_to_record(r) for r in result.scalars().all()]

    async def export_csv(self, filters: AuditFilters) -> str:
        """CSV of up to MAX_EXPORT_ROWS matching records, every field quoted."""
        result = await self._session.execute(
            _apply_filters(select(AuditRecordRow), filters)
            .order_by(desc(AuditRecordRow.created_at))
            .limit(MAX_EXPORT_ROWS)
        )
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow([header for header, _ in EXPORT_COLUMNS])
        for record in result.scalars().all():
            writer.writerow(
                [
                    record.created_at.isoformat()
                    if attr == "created_at"
                    else getattr(record, attr) or ""
                    for _, attr in EXPORT_COLUMNS
                ]
            )
        return buffer.getvalue()

    async def cleanup(self, retention_days: int) -> int:
        """Delete records older than the retention period. Returns the row count."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        result = await self._session.execute(
            delete(AuditRecordRow).where(AuditRecordRow.created_at < cutoff)
        )
        await self._session.commit()
        return result.rowcount or 0
