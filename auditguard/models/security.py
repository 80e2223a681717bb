from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict

IdentifierType = Literal["user", "ip"]


class GuardState(str, Enum):
    CLEAR = "CLEAR"
    WARNED = "WARNED"  # CAPTCHA required on next attempt
    DELAYED = "DELAYED"
    BLOCKED = "BLOCKED"


class SecurityBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str
    identifier_type: IdentifierType
    reason: str
    blocked_at: datetime
    expires_at: datetime
    active: bool = True

    def is_in_effect(self, now: datetime) -> bool:
        """Expiry is a read-time timestamp comparison; nothing unblocks on a schedule."""
        return self.active and now < self.expires_at

    def retry_after_seconds(self, now: datetime) -> int:
        return max(0, int((self.expires_at - now).total_seconds()))


class BruteForceDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str
    state: GuardState
    failed_attempts: int = 0
    delay_ms: int = 0
    requires_captcha: bool = False
    block: SecurityBlock | None = None
    degraded: bool = False  # counter store unavailable: failed open


class RateLimitResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    policy: str
    identifier: str
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int = 0
