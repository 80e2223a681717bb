"""Opaque collaborators consumed by the audit pipeline.

Every provider is best-effort from the pipeline's point of view: a provider
that returns None or raises is treated as "no data", never as a failure of
the request. The Null* implementations are the defaults.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from starlette.requests import Request

from auditguard.models.audit import AuditRecord
from auditguard.models.identity import CurrentUser
from auditguard.models.snapshots import GeoLocation, UserAgentInfo


@runtime_checkable
class AuditSink(Protocol):
    """Append-only destination for audit records. May raise; never retried by the core."""

    async def append(self, record: AuditRecord) -> None: ...


@runtime_checkable
class CurrentUserProvider(Protocol):
    def __call__(self, request: Request) -> CurrentUser | None: ...


@runtime_checkable
class GeoLocator(Protocol):
    def lookup(self, ip: str) -> GeoLocation | None: ...


@runtime_checkable
class UserAgentParser(Protocol):
    def parse(self, user_agent: str) -> UserAgentInfo | None: ...


def state_user_provider(request: Request) -> CurrentUser | None:
    """Read the user the host's auth layer stored on ``request.state.user``.

    Accepts a CurrentUser or a plain mapping with id / organization_id / role.
    """
    user = getattr(request.state, "user", None)
    if user is None or isinstance(user, CurrentUser):
        return user
    if isinstance(user, dict) and user.get("id") is not None:
        return CurrentUser(
            id=str(user["id"]),
            organization_id=user.get("organization_id") or user.get("organizationId"),
            role=user.get("role"),
        )
    return None


class NullGeoLocator:
    def lookup(self, ip: str) -> GeoLocation | None:
        return None


class NullUserAgentParser:
    def parse(self, user_agent: str) -> UserAgentInfo | None:
        return None
