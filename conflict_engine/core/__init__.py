"""
Core Aggregation Layer

RESPONSIBILITY: Turn conflict events into decaying live state
ALLOWED INPUTS: StorageBackend, ReferenceDataProvider, contract records
OUTPUTS: Live state records (via the store) and PhaseStats

WHAT THIS LAYER MUST NOT DO:
============================
- Read wall-clock time (now is always passed in)
- Read configuration from the environment
- Abort a phase because one item failed
- Write partially computed records

BOUNDARY ENFORCEMENT:
=====================
- Each aggregator reads its inputs, computes with pure functions and
  writes one record per item
- Item failures are recorded as Error data in PhaseStats
- Per-item computation may run in a worker pool; writes never do
"""

from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from typing import Callable, Generic, Iterator, List, Optional, Sequence, Tuple, TypeVar
import logging
import time

from ..contracts.base import CCEError, Error, ErrorCode
from ..contracts.events import PhaseStats, PhaseStatus

logger = logging.getLogger(__name__)

T = TypeVar('T')


# =============================================================================
# PHASE TALLY (Mutable accumulator, frozen into PhaseStats)
# =============================================================================

@dataclass
class PhaseTally:
    """Counters collected while a phase runs."""
    name: str
    now: int
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    decayed: int = 0
    errors: List[Error] = field(default_factory=list)

    def fail_item(
        self,
        entity_id: str,
        code: ErrorCode,
        message: str,
        skip: bool = True,
    ) -> None:
        """Record an item error; the phase continues.

        skip=False records the error against an item already counted as
        created or updated (e.g. a follow-up write that failed).
        """
        if skip:
            self.skipped += 1
        self.errors.append(Error(
            code=code,
            message=message,
            timestamp=self.now,
            entity_id=entity_id,
            context=(("phase", self.name),)
        ))
        logger.warning(
            "%s: %s %s (%s): %s", self.name,
            "skipped" if skip else "error on", entity_id, code.name, message
        )

    def fail_exception(self, entity_id: str, exc: BaseException, skip: bool = True) -> None:
        if isinstance(exc, CCEError):
            code = exc.code
        elif isinstance(exc, (ValueError, TypeError, KeyError)):
            code = ErrorCode.MALFORMED_RECORD
        else:
            code = ErrorCode.INTERNAL
        self.fail_item(entity_id, code, f"{type(exc).__name__}: {exc}", skip=skip)

    def freeze(self, duration_ms: float = 0.0) -> PhaseStats:
        return PhaseStats(
            name=self.name,
            status=PhaseStatus.PARTIAL if self.errors else PhaseStatus.OK,
            processed=self.processed,
            created=self.created,
            updated=self.updated,
            skipped=self.skipped,
            decayed=self.decayed,
            duration_ms=duration_ms,
            errors=tuple(self.errors),
        )


# =============================================================================
# ITEM RUNNER (Per-item timeout, optional parallelism)
# =============================================================================

@dataclass(frozen=True)
class ItemOutcome(Generic[T]):
    key: str
    value: Optional[T] = None
    exception: Optional[BaseException] = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exception is None and not self.timed_out


class ItemRunner:
    """
    Runs per-item computations, each bounded by item_timeout_seconds.

    Outcomes are yielded in submission order. With max_workers=1 and no
    timeout, items run inline on the calling thread. A computation that
    times out is abandoned; its result is never returned.
    """

    def __init__(self, max_workers: int = 1, item_timeout_seconds: Optional[float] = None):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._max_workers = max_workers
        self._item_timeout = item_timeout_seconds

    def run(self, items: Sequence[Tuple[str, Callable[[], T]]]) -> Iterator[ItemOutcome[T]]:
        if self._max_workers == 1 and self._item_timeout is None:
            for key, compute in items:
                yield self._run_inline(key, compute)
            return

        executor = ThreadPoolExecutor(max_workers=self._max_workers)
        try:
            for start in range(0, len(items), self._max_workers):
                batch = items[start:start + self._max_workers]
                futures = [(key, executor.submit(compute)) for key, compute in batch]
                deadline = (
                    time.monotonic() + self._item_timeout
                    if self._item_timeout is not None else None
                )
                abandoned = False
                for key, future in futures:
                    remaining = None
                    if deadline is not None:
                        remaining = max(0.0, deadline - time.monotonic())
                    try:
                        yield ItemOutcome(key=key, value=future.result(timeout=remaining))
                    except FuturesTimeout:
                        abandoned = True
                        future.cancel()
                        yield ItemOutcome(key=key, timed_out=True)
                    except Exception as e:
                        yield ItemOutcome(key=key, exception=e)
                if abandoned:
                    # Hung workers keep their threads; start a fresh pool
                    executor.shutdown(wait=False, cancel_futures=True)
                    executor = ThreadPoolExecutor(max_workers=self._max_workers)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    @staticmethod
    def _run_inline(key: str, compute: Callable[[], T]) -> ItemOutcome[T]:
        try:
            return ItemOutcome(key=key, value=compute())
        except Exception as e:
            return ItemOutcome(key=key, exception=e)
