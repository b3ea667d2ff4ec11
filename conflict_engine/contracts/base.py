"""
Shared Contract Primitives

Error codes, the Error record, engine exceptions, identity helpers and
time units used by every layer.

CONVENTIONS:
============
- Timestamps are integer unix seconds (UTC) everywhere
- Records are frozen dataclasses; bounded fields are validated on construction
- Item failures travel as Error data; exceptions are raised only where a
  phase or a cycle cannot continue
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple
from enum import Enum, auto
import hashlib


# =============================================================================
# ERROR CODES
# =============================================================================

class ErrorCode(Enum):
    """Every skipped item and failed phase is reported with one of these."""
    # Store errors
    TRANSIENT_STORE = auto()
    LOCK_HELD = auto()

    # Data errors
    MALFORMED_RECORD = auto()
    INVARIANT_CLAMPED = auto()
    CONFIGURATION = auto()

    # Execution errors
    ITEM_TIMEOUT = auto()
    PHASE_FAILED = auto()
    DEPENDENCY_BLOCKED = auto()
    CANCELLED = auto()
    DEADLINE_EXCEEDED = auto()
    INTERNAL = auto()

    # Query errors
    INVALID_QUERY = auto()


@dataclass(frozen=True)
class Error:
    """
    One failure, as data.

    entity_id names the skipped item (conflict id, front id, ...);
    context carries extra key/value pairs such as the phase name.
    """
    code: ErrorCode
    message: str
    timestamp: int
    entity_id: Optional[str] = None
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            'code': self.code.name,
            'message': self.message,
            'timestamp': self.timestamp,
            'entity_id': self.entity_id,
            'context': dict(self.context),
        }


# =============================================================================
# EXCEPTIONS (Raised only at boundaries that cannot continue)
# =============================================================================

class CCEError(Exception):
    """Base class for engine exceptions."""
    code = ErrorCode.INTERNAL

    def to_error(self, timestamp: int, entity_id: Optional[str] = None) -> Error:
        return Error(
            code=self.code,
            message=str(self),
            timestamp=timestamp,
            entity_id=entity_id,
        )


class TransientStoreError(CCEError):
    """Store temporarily unavailable (locked, unreachable)."""
    code = ErrorCode.TRANSIENT_STORE


class MalformedRecordError(CCEError):
    """Stored record cannot be decoded into its contract type."""
    code = ErrorCode.MALFORMED_RECORD


class ConfigurationError(CCEError):
    """Invalid configuration or missing reference data."""
    code = ErrorCode.CONFIGURATION


class TickLockHeldError(CCEError):
    """Another update cycle currently holds the tick lock."""
    code = ErrorCode.LOCK_HELD


# =============================================================================
# IDENTITY HELPERS
# =============================================================================

def canonical_pair(a: str, b: str) -> Tuple[str, str]:
    """Order an actor pair so that (a, b) and (b, a) share one key."""
    if a == b:
        raise ValueError(f"Actor pair must be distinct, got {a!r} twice")
    return (a, b) if a < b else (b, a)


def stable_id(prefix: str, *parts: object) -> str:
    """Generate a deterministic identifier from its parts."""
    seed = "|".join(str(p) for p in parts)
    digest = hashlib.sha256(seed.encode('utf-8')).hexdigest()[:16]
    return f"{prefix}_{digest}"


# =============================================================================
# TEMPORAL HELPERS
# =============================================================================

SECOND = 1
MINUTE = 60
HOUR = 3600
DAY = 86400


def to_iso(ts: Optional[int]) -> Optional[str]:
    """Render a unix timestamp as an ISO-8601 UTC string."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def check_unit(name: str, value: float) -> None:
    """Reject values outside [0, 1]; writers must clamp first."""
    if not (0.0 <= value <= 1.0):
        raise ValueError(f"{name} must be in [0, 1], got {value}")


def check_signed(name: str, value: float) -> None:
    """Reject values outside [-1, 1]; writers must clamp first."""
    if not (-1.0 <= value <= 1.0):
        raise ValueError(f"{name} must be in [-1, 1], got {value}")
