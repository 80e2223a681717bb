"""Shared fixtures for integration tests.

The full application from create_app() runs in-process behind an httpx
ASGITransport. Redis is replaced by the in-memory stores and audit records
go to a RecordingSink, so no external services are needed.

The audit API tests additionally point the app at a throwaway SQLite file
(aiosqlite) and create the schema from the ORM metadata.
"""

from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from auditguard.config import Settings
from auditguard.main import create_app
from auditguard.security.store import InMemoryBlockStore, InMemoryCounterStore

@pytest.fixture
def counter_store() -> InMemoryCounterStore:
    return InMemoryCounterStore()


@pytest.fixture
def block_store() -> InMemoryBlockStore:
    return InMemoryBlockStore()


@pytest.fixture
def app(settings: Settings, sink, counter_store, block_store) -> FastAPI:
    return create_app(
        settings,
        sink=sink,
        counter_store=counter_store,
        block_store=block_store,
    )


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=app, client=("127.0.0.1", 51000))
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    await app.state.audit_emitter.aclose(timeout=1.0)
    await app.state.db_engine.dispose()
