"""FastAPI dependency providers.

All dependencies are resolved per-request except the singletons stored on
app.state (emitter, interceptor, guard, rate limiter) which create_app()
builds once.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from auditguard.audit.interceptor import AuditInterceptor
from auditguard.audit.query import AuditQuery
from auditguard.security.brute_force import BruteForceGuard


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Yield a new DB session per request from the app-state sessionmaker."""
    async with request.app.state.db_sessionmaker() as session:
        yield session


async def get_audit_query(
    db: AsyncSession = Depends(get_db),
) -> AuditQuery:
    """Build an AuditQuery with a per-request DB session."""
    return AuditQuery(session=db)


async def get_interceptor(request: Request) -> AuditInterceptor:
    interceptor: AuditInterceptor = request.app.state.audit_interceptor
    return interceptor


async def get_guard(request: Request) -> BruteForceGuard:
    guard: BruteForceGuard = request.app.state.brute_force_guard
    return guard


async def require_admin(
    request: Request,
    x_admin_key: str = Header(...),
) -> None:
    """Require a valid X-Admin-Key header for admin-gated endpoints.

    An unset admin_api_key disables the admin API entirely.
    """
    expected = request.app.state.settings.admin_api_key
    if not expected or x_admin_key != expected:
        raise HTTPException(status_code=403, detail="Invalid admin key")
