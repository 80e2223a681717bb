"""Brute-force status for the caller, and admin block management."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from auditguard.api.deps import get_guard, get_interceptor, require_admin
from auditguard.audit.interceptor import AuditInterceptor
from auditguard.errors import CounterStoreError
from auditguard.models.taxonomy import EventType
from auditguard.security.brute_force import BruteForceGuard, identifier_for

router = APIRouter()


@router.get("/status")
async def status(
    request: Request,
    guard: BruteForceGuard = Depends(get_guard),
    interceptor: AuditInterceptor = Depends(get_interceptor),
) -> dict[str, Any]:
    """Current block / delay / CAPTCHA state for the calling identifier."""
    identifier, identifier_type = identifier_for(request, interceptor.resolve_user(request))
    decision = await guard.evaluate(identifier)
    body: dict[str, Any] = {
        "identifier_type": identifier_type,
        "state": decision.state.value,
        "failed_attempts": decision.failed_attempts,
        "delay_ms": decision.delay_ms,
        "requires_captcha": decision.requires_captcha,
        "blocked": decision.block is not None,
    }
    if decision.block is not None:
        body["reason"] = decision.block.reason
        body["retry_after"] = decision.block.retry_after_seconds(guard.now())
    return body


@router.delete("/blocks/{identifier}", dependencies=[Depends(require_admin)])
async def unblock(
    identifier: str,
    request: Request,
    guard: BruteForceGuard = Depends(get_guard),
    interceptor: AuditInterceptor = Depends(get_interceptor),
) -> dict[str, str]:
    """Lift a block and reset the identifier's failed-attempt counters."""
    try:
        await guard.unblock(identifier)
    except CounterStoreError as exc:
        raise HTTPException(status_code=503, detail="Block store unavailable") from exc
    interceptor.report_security_event(
        request,
        EventType.ADMIN_CONFIG_CHANGE,
        description=f"Security block lifted for {identifier}",
        identifier=identifier,
    )
    return {"identifier": identifier, "status": "unblocked"}
