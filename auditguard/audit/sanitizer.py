"""FieldSanitizer — scrubs sensitive data before anything reaches the audit trail.

Three projections:
  - headers:        denylist (credentials never recorded)
  - request body:   recursive denylist, size-capped; sensitive endpoints are
                    further collapsed to an explicit allow-list
  - response body:  allow-list only — arbitrary payloads never pass through

Critical invariants:
  - Denylisted field names never appear in sanitized output, at any depth.
  - Sanitizing already-sanitized data is a no-op.
  - Nothing here raises into the request path; failures degrade to None + WARN.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from auditguard.audit.paths import path_has_marker
from auditguard.config import Settings

logger = logging.getLogger(__name__)

DENIED_HEADERS: frozenset[str] = frozenset(
    {"authorization", "cookie", "x-api-key", "x-auth-token"}
)
DENIED_BODY_FIELDS: tuple[str, ...] = ("password", "token", "secret", "apiKey", "privateKey")
RESPONSE_ALLOWED_FIELDS: tuple[str, ...] = ("success", "message", "count", "id")


@dataclass(frozen=True)
class SensitiveEndpointRule:
    """Endpoints whose body collapses to an allow-list after denylist removal.

    ``path_marker`` is matched per path word (see audit.paths), so
    ``password`` covers both /auth/password/reset and /auth/reset-password.
    """

    path_marker: str
    allowed_fields: tuple[str, ...]

    def applies_to(self, path: str) -> bool:
        return path_has_marker(path, self.path_marker)


@dataclass(frozen=True)
class SanitizerPolicy:
    denied_headers: frozenset[str] = DENIED_HEADERS
    denied_fields: tuple[str, ...] = DENIED_BODY_FIELDS
    response_allowed_fields: tuple[str, ...] = RESPONSE_ALLOWED_FIELDS
    sensitive_endpoints: tuple[SensitiveEndpointRule, ...] = (
        SensitiveEndpointRule(path_marker="password", allowed_fields=("email",)),
    )
    max_depth: int = 10
    max_array_length: int = 1000
    max_string_length: int = 10000

    # Lower-cased lookup set, derived once
    _denied_lookup: frozenset[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "_denied_lookup", frozenset(name.lower() for name in self.denied_fields)
        )

    def is_denied(self, key: str) -> bool:
        return key.lower() in self._denied_lookup

    @classmethod
    def from_settings(cls, settings: Settings) -> SanitizerPolicy:
        return cls(
            denied_fields=DENIED_BODY_FIELDS + tuple(settings.sanitizer_extra_denied_fields),
            max_depth=settings.sanitizer_max_depth,
            max_array_length=settings.sanitizer_max_array_length,
            max_string_length=settings.sanitizer_max_string_length,
        )


class FieldSanitizer:
    def __init__(self, policy: SanitizerPolicy | None = None) -> None:
        self._policy = policy or SanitizerPolicy()

    @property
    def policy(self) -> SanitizerPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # Headers
    # ------------------------------------------------------------------

    def sanitize_headers(self, headers: Mapping[str, str]) -> dict[str, str]:
        """Drop credential-bearing headers (case-insensitive). Never fails."""
        denied = self._policy.denied_headers
        return {
            str(name).lower(): str(value)
            for name, value in headers.items()
            if str(name).lower() not in denied
        }

    # ------------------------------------------------------------------
    # Request body
    # ------------------------------------------------------------------

    def sanitize_body(self, body: Any, context_path: str = "") -> Any:
        """Recursively strip denylisted keys and cap oversized values.

        Returns None (and logs) if the payload cannot be processed.
        """
        try:
            cleaned = self._walk(body, depth=0, location="$")
            for rule in self._policy.sensitive_endpoints:
                if rule.applies_to(context_path) and isinstance(cleaned, dict):
                    cleaned = {k: v for k, v in cleaned.items() if k in rule.allowed_fields}
            return cleaned
        except Exception:
            logger.warning(
                "Request body sanitization failed for path=%s — body dropped from audit",
                context_path,
                exc_info=True,
            )
            return None

    def _walk(self, value: Any, depth: int, location: str) -> Any:
        policy = self._policy

        if isinstance(value, str):
            if len(value) > policy.max_string_length:
                logger.warning(
                    "String truncated at %s, original length: %d", location, len(value)
                )
                return value[: policy.max_string_length]
            return value

        if not isinstance(value, (dict, list, tuple)):
            return value

        if depth >= policy.max_depth:
            logger.warning("Max body depth exceeded at %s — subtree dropped", location)
            return None

        if isinstance(value, dict):
            return {
                key: self._walk(item, depth + 1, f"{location}.{key}")
                for key, item in value.items()
                if not (isinstance(key, str) and policy.is_denied(key))
            }

        items = list(value)
        if len(items) > policy.max_array_length:
            logger.warning("Array truncated at %s, original length: %d", location, len(items))
            items = items[: policy.max_array_length]
        return [self._walk(item, depth + 1, f"{location}[{i}]") for i, item in enumerate(items)]

    # ------------------------------------------------------------------
    # Response body
    # ------------------------------------------------------------------

    def sanitize_response_body(self, body: Any) -> dict[str, Any] | None:
        """Allow-list projection: only {success, message, count, id} survive."""
        if not isinstance(body, dict):
            return None
        return {
            name: body[name] for name in self._policy.response_allowed_fields if name in body
        }
