"""FastAPI application factory for the audit and brute-force pipeline."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI
from starlette.requests import Request

from auditguard.api.v1 import audit as audit_router_module
from auditguard.api.v1 import security as security_router_module
from auditguard.audit.capture import RequestCapturer
from auditguard.audit.classifier import EventClassifier
from auditguard.audit.emitter import AuditEmitter
from auditguard.audit.interceptor import AuditInterceptor, InterceptorConfig
from auditguard.audit.middleware import AuditMiddleware
from auditguard.audit.providers import (
    AuditSink,
    GeoLocator,
    UserAgentParser,
    state_user_provider,
)
from auditguard.audit.sanitizer import FieldSanitizer, SanitizerPolicy
from auditguard.audit.sinks import BatchingAuditSink, LoggingAuditSink, SqlAlchemyAuditSink
from auditguard.config import Settings
from auditguard.config import settings as default_settings
from auditguard.db.session import create_sessionmaker
from auditguard.models.identity import CurrentUser
from auditguard.security.brute_force import BruteForceGuard
from auditguard.security.middleware import BruteForceMiddleware
from auditguard.security.rate_limit import RateLimiter
from auditguard.security.store import (
    BlockStore,
    CounterStore,
    FallbackBlockStore,
    FallbackCounterStore,
    RedisBlockStore,
    RedisCounterStore,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: log startup, flush and release resources on shutdown."""
    cfg: Settings = app.state.settings
    logger.info("Audit pipeline started (environment=%s sink=%s)", cfg.environment, cfg.audit_sink)

    yield

    # --- Shutdown ---
    # Outstanding emits first, then whatever the sink still buffers
    await app.state.audit_emitter.aclose()
    sink = app.state.audit_emitter.sink
    if isinstance(sink, BatchingAuditSink):
        await sink.aclose()
    await app.state.redis.aclose()
    await app.state.db_engine.dispose()

    logger.info("Audit pipeline shut down")


def create_app(
    settings: Settings | None = None,
    *,
    sink: AuditSink | None = None,
    counter_store: CounterStore | None = None,
    block_store: BlockStore | None = None,
    geo_locator: GeoLocator | None = None,
    user_agent_parser: UserAgentParser | None = None,
    user_provider: Callable[[Request], CurrentUser | None] = state_user_provider,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Collaborators default to the configured Postgres / Redis backends; tests
    and hosts inject their own. Nothing here opens a connection — engines and
    clients connect lazily on first use.
    """
    cfg = settings or default_settings
    logging.getLogger("auditguard").setLevel(cfg.log_level.upper())

    app = FastAPI(
        title="Audit Guard",
        description="Request audit trail and brute-force protection for HTTP APIs",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store settings on app.state so lifespan + deps can access them
    app.state.settings = cfg

    # Database engine + sessionmaker (audit sink and query API)
    engine, sessionmaker = create_sessionmaker(cfg.database_url)
    app.state.db_engine = engine
    app.state.db_sessionmaker = sessionmaker

    # Redis client (counters + blocks)
    redis_client = aioredis.from_url(cfg.redis_url, decode_responses=True)
    app.state.redis = redis_client

    if sink is None:
        if cfg.audit_sink == "log":
            sink = LoggingAuditSink()
        else:
            sink = BatchingAuditSink(
                SqlAlchemyAuditSink(sessionmaker),
                batch_size=cfg.audit_batch_size,
                batch_timeout_seconds=cfg.audit_batch_timeout_seconds,
            )
    if counter_store is None:
        counter_store = RedisCounterStore(redis_client)
        if cfg.redis_memory_fallback:
            counter_store = FallbackCounterStore(counter_store)
    if block_store is None:
        block_store = RedisBlockStore(redis_client)
        if cfg.redis_memory_fallback:
            block_store = FallbackBlockStore(block_store)

    emitter = AuditEmitter(sink)
    interceptor = AuditInterceptor(
        emitter,
        RequestCapturer(
            FieldSanitizer(SanitizerPolicy.from_settings(cfg)),
            geo_locator=geo_locator,
            user_agent_parser=user_agent_parser,
        ),
        EventClassifier(),
        InterceptorConfig.from_settings(cfg),
        user_provider=user_provider,
    )
    guard = BruteForceGuard(counter_store, block_store, emitter, cfg)

    app.state.audit_emitter = emitter
    app.state.audit_interceptor = interceptor
    app.state.brute_force_guard = guard
    app.state.rate_limiter = RateLimiter(counter_store, cfg.rate_limit_policies)

    # Middleware: the last one added runs first, so auditing wraps the gate
    app.add_middleware(
        BruteForceMiddleware,
        guard=guard,
        auth_path_prefixes=cfg.auth_path_prefixes,
        failed_attempt_statuses=cfg.failed_attempt_statuses,
        captcha_header=cfg.captcha_header,
        user_provider=user_provider,
    )
    app.add_middleware(
        AuditMiddleware,
        interceptor=interceptor,
        max_body_bytes=cfg.audit_capture_max_bytes,
    )

    # Routers
    app.include_router(audit_router_module.router, prefix="/api/v1/audit", tags=["audit"])
    app.include_router(
        security_router_module.router, prefix="/api/v1/security", tags=["security"]
    )

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/readyz", tags=["health"])
    async def readyz() -> dict[str, str]:
        """Check Redis connectivity. Audit writes never gate readiness."""
        try:
            await app.state.redis.ping()
        except Exception as exc:
            logger.warning("Redis readyz check failed: %s", exc)
            return {"status": "degraded", "reason": "redis_unavailable"}

        return {"status": "ready"}

    return app


# Module-level app instance for uvicorn / gunicorn
app = create_app()
