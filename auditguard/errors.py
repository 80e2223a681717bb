"""Exception types raised by the audit sinks and the security stores.

Neither escapes into the host request: the emitter swallows AuditSinkError and
the brute-force guard fails open on CounterStoreError.
"""


class CounterStoreError(Exception):
    """Raised when the counter or block store cannot be reached."""


class AuditSinkError(Exception):
    """Raised when the storage sink rejects an audit record."""

    def __init__(self, record_id: str, reason: str) -> None:
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"audit sink rejected record {record_id}: {reason}")
