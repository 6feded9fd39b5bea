"""Error taxonomy for the orchestrator.

TRANSIENT_IO           network / timeout failures on health checks, webhooks, CI dispatch.
                       Retried with backoff, then surfaced as a failed status.
CONFIGURATION_MISSING  a feature lacks its token or URL. The feature reports
                       itself disabled instead of erroring.
INVARIANT_VIOLATION    an operation would break a lifecycle rule (second active
                       deployment, overlapping rollback). Rejected, state unchanged.
PERSISTENCE            state file could not be read or written. Logged, the
                       operation proceeds in memory.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(Enum):
    """Error category classification."""

    TRANSIENT_IO = "transient_io"
    CONFIGURATION_MISSING = "configuration_missing"
    INVARIANT_VIOLATION = "invariant_violation"
    PERSISTENCE = "persistence"


class SentinelError(Exception):
    """Base class for all orchestrator errors."""

    category: ErrorCategory = ErrorCategory.INVARIANT_VIOLATION
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.category.value,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class TransientIOError(SentinelError):
    """Network or timeout failure talking to an external system."""

    category = ErrorCategory.TRANSIENT_IO
    retryable = True


class ConfigurationMissingError(SentinelError):
    """A feature cannot run because its configuration is absent."""

    category = ErrorCategory.CONFIGURATION_MISSING


class InvariantViolationError(SentinelError):
    """Operation rejected because it would break a lifecycle invariant."""

    category = ErrorCategory.INVARIANT_VIOLATION


class PersistenceError(SentinelError):
    """Durable state could not be read or written."""

    category = ErrorCategory.PERSISTENCE


class RemoteRejectedError(SentinelError):
    """External system answered with a client error. Not worth retrying."""

    category = ErrorCategory.TRANSIENT_IO


class CircuitOpenError(SentinelError):
    """Calls to an external system are short-circuited by its breaker."""

    category = ErrorCategory.TRANSIENT_IO
