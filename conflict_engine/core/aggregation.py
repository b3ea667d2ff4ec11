"""
Event aggregation: event frames -> conflict events.

Frames are matched to a tracked conflict by actor pair (either order),
bucketed into fixed windows by occurrence time and materialised as one
ConflictEvent per (conflict, window). Frames that match no conflict, and
buckets without any evidence URL, are skipped rather than guessed at.
"""

from __future__ import annotations
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import logging

from ..contracts.base import ErrorCode, HOUR
from ..contracts.events import ConflictCore, ConflictEvent, EventFrame, PhaseStats
from ..storage import StorageBackend
from . import PhaseTally

logger = logging.getLogger(__name__)

PHASE_NAME = "aggregate"


@dataclass(frozen=True)
class AggregationConfig:
    window_seconds: int = 6 * HOUR
    max_evidence_urls: int = 5
    require_evidence: bool = True

    def __post_init__(self):
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")


def window_start(timestamp: int, window_seconds: int) -> int:
    return (timestamp // window_seconds) * window_seconds


def _most_common(values: List[str]) -> Optional[str]:
    if not values:
        return None
    counts = Counter(values)
    # Highest count first, then alphabetical for determinism
    return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]


class EventAggregator:
    """Materialises conflict events from recent event frames."""

    def __init__(self, store: StorageBackend, config: Optional[AggregationConfig] = None):
        self._store = store
        self._config = config or AggregationConfig()

    def match_conflict(self, frame: EventFrame) -> Optional[ConflictCore]:
        """First tracked conflict among the frame's actor pairs."""
        actors = frame.actors
        for i in range(len(actors)):
            for j in range(i + 1, len(actors)):
                core = self._store.find_conflict(actors[i], actors[j])
                if core is not None:
                    return core
        return None

    def build_event(
        self,
        core: ConflictCore,
        start: int,
        frames: List[EventFrame],
        now: int,
    ) -> Optional[ConflictEvent]:
        """Combine one bucket of frames; None when it has no evidence."""
        evidence: List[str] = []
        for frame in frames:
            if frame.source_url and frame.source_url not in evidence:
                evidence.append(frame.source_url)
        if self._config.require_evidence and not evidence:
            return None

        n = len(frames)
        initiators = [
            f.initiator for f in frames
            if f.initiator is not None and core.involves(f.initiator)
        ]
        return ConflictEvent(
            id=ConflictEvent.make_id(core.id, start),
            conflict_id=core.id,
            window_start=start,
            window_end=start + self._config.window_seconds,
            occurred_at=max(f.occurred_at for f in frames),
            created_at=now,
            event_type=_most_common([f.event_type for f in frames]),
            severity=sum(f.severity for f in frames) / n,
            confidence=sum(f.confidence for f in frames) / n,
            impact=max(f.impact for f in frames),
            initiator=_most_common(initiators),
            frame_count=n,
            evidence_urls=tuple(evidence[:self._config.max_evidence_urls]),
        )

    def run(self, since: int, until: int, now: int) -> PhaseStats:
        tally = PhaseTally(name=PHASE_NAME, now=now)
        frames = self._store.get_frames(since, until)

        buckets: Dict[Tuple[str, int], List[EventFrame]] = {}
        cores: Dict[str, ConflictCore] = {}
        for frame in frames:
            tally.processed += 1
            core = self.match_conflict(frame)
            if core is None:
                tally.skipped += 1
                continue
            key = (core.id, window_start(frame.occurred_at, self._config.window_seconds))
            buckets.setdefault(key, []).append(frame)
            cores[core.id] = core

        for (conflict_id, start) in sorted(buckets):
            if self._store.has_event(conflict_id, start):
                tally.skipped += 1
                continue
            try:
                event = self.build_event(cores[conflict_id], start, buckets[(conflict_id, start)], now)
            except ValueError as e:
                tally.fail_item(f"{conflict_id}@{start}", ErrorCode.MALFORMED_RECORD, str(e))
                continue
            if event is None:
                tally.skipped += 1
                continue
            if self._store.append_event(event):
                tally.created += 1
            else:
                tally.skipped += 1

        logger.info(
            "aggregated %d frames into %d conflict events (%d skipped)",
            tally.processed, tally.created, tally.skipped
        )
        return tally.freeze()
