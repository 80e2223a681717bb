"""Audit query endpoints — all require X-Admin-Key header."""

from datetime import datetime, timezone
from typing import Any, Literal

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from auditguard.api.deps import get_audit_query, get_interceptor, require_admin
from auditguard.audit.interceptor import AuditInterceptor
from auditguard.audit.query import MAX_PAGE_SIZE, AuditFilters, AuditPage, AuditQuery, AuditStatistics
from auditguard.models.audit import AuditRecord
from auditguard.models.taxonomy import EventType, RiskLevel
from auditguard.security.rate_limit import rate_limit

router = APIRouter(dependencies=[Depends(require_admin)])

MIN_RETENTION_DAYS = 30
MAX_RETENTION_DAYS = 2555


def _filters(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    event_type: str | None = None,
    user_id: str | None = None,
    organization_id: str | None = None,
    risk_level: RiskLevel | None = None,
    resource_type: str | None = None,
    ip_address: str | None = None,
    search: str | None = None,
) -> AuditFilters:
    return AuditFilters(
        page=page,
        limit=limit,
        start_date=start_date,
        end_date=end_date,
        event_type=event_type,
        user_id=user_id,
        organization_id=organization_id,
        risk_level=risk_level,
        resource_type=resource_type,
        ip_address=ip_address,
        search=search,
    )


@router.get("/logs", response_model=AuditPage, dependencies=[Depends(rate_limit("read"))])
async def list_logs(
    filters: AuditFilters = Depends(_filters),
    query: AuditQuery = Depends(get_audit_query),
) -> AuditPage:
    """Filtered, paginated audit records, newest first."""
    return await query.list_records(filters)


@router.get(
    "/logs/{request_id}",
    response_model=list[AuditRecord],
    dependencies=[Depends(rate_limit("read"))],
)
async def get_logs_for_request(
    request_id: str,
    query: AuditQuery = Depends(get_audit_query),
) -> list[AuditRecord]:
    """Every record emitted for one request ID."""
    records = await query.get_by_request_id(request_id)
    if not records:
        raise HTTPException(status_code=404, detail=f"Audit record not found: {request_id!r}")
    return records


@router.get(
    "/statistics", response_model=AuditStatistics, dependencies=[Depends(rate_limit("read"))]
)
async def statistics(
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    organization_id: str | None = None,
    query: AuditQuery = Depends(get_audit_query),
) -> AuditStatistics:
    """Aggregate counts for a period (default: last 30 days)."""
    return await query.statistics(start_date, end_date, organization_id)


@router.get(
    "/security-events",
    response_model=list[AuditRecord],
    dependencies=[Depends(rate_limit("read"))],
)
async def security_events(
    limit: int = Query(100, ge=1, le=MAX_PAGE_SIZE),
    organization_id: str | None = None,
    query: AuditQuery = Depends(get_audit_query),
) -> list[AuditRecord]:
    return await query.security_events(limit=limit, organization_id=organization_id)


@router.get("/export", dependencies=[Depends(rate_limit("api"))])
async def export(
    request: Request,
    format: Literal["csv"] = "csv",
    filters: AuditFilters = Depends(_filters),
    query: AuditQuery = Depends(get_audit_query),
    interceptor: AuditInterceptor = Depends(get_interceptor),
) -> PlainTextResponse:
    """CSV download of matching records. The export itself is audited."""
    interceptor.report_security_event(
        request,
        EventType.SECURITY_DATA_EXPORT,
        description="Audit log export requested",
        metadata={
            "export_filters": filters.model_dump(mode="json", exclude_none=True),
            "format": format,
        },
    )
    content = await query.export_csv(filters)
    filename = f"audit_logs_{datetime.now(timezone.utc).date().isoformat()}.csv"
    return PlainTextResponse(
        content,
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "no-cache",
        },
    )


@router.post("/cleanup", dependencies=[Depends(rate_limit("api"))])
async def cleanup(
    request: Request,
    retention_days: int | None = Body(None, embed=True),
    query: AuditQuery = Depends(get_audit_query),
    interceptor: AuditInterceptor = Depends(get_interceptor),
) -> dict[str, Any]:
    """Delete records older than the retention period (30 to 2555 days)."""
    if retention_days is None:
        retention_days = request.app.state.settings.audit_retention_days
    if not MIN_RETENTION_DAYS <= retention_days <= MAX_RETENTION_DAYS:
        raise HTTPException(
            status_code=400,
            detail=(
                f"Retention period must be between {MIN_RETENTION_DAYS} "
                f"and {MAX_RETENTION_DAYS} days"
            ),
        )
    interceptor.report_security_event(
        request,
        EventType.ADMIN_SYSTEM_MAINTENANCE,
        description=f"Audit log cleanup initiated ({retention_days} days retention)",
        metadata={"retention_days": retention_days, "operation": "audit_cleanup"},
    )
    deleted = await query.cleanup(retention_days)
    return {
        "deleted_records": deleted,
        "retention_days": retention_days,
        "cleanup_date": datetime.now(timezone.utc).isoformat(),
    }
