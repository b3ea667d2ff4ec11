"""
Theatre Aggregator

Full recompute of TheatreStateLive from the current conflict states.
Theatres have no memory of their own; decay lives at the conflict level.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from ..contracts.events import (
    ConflictCore, ConflictStateLive, PhaseStats, TheatreStateLive,
)
from ..decay import clamp_signed, clamp_unit, weighted_mean
from ..reference import ReferenceDataProvider
from ..storage import StorageBackend
from . import PhaseTally

logger = logging.getLogger(__name__)

PHASE_NAME = "theatre"


@dataclass(frozen=True)
class TheatreConfig:
    dominant_conflicts: int = 5
    max_dominant_actors: int = 6


def dominant_actors(
    members: Sequence[Tuple[ConflictCore, ConflictStateLive]],
    top_n: int,
    limit: int,
) -> Tuple[str, ...]:
    """Actors of the top_n conflicts by tension, most involved first."""
    top = sorted(members, key=lambda m: (-m[1].tension, m[0].id))[:top_n]
    count: Dict[str, int] = {}
    best: Dict[str, float] = {}
    for core, state in top:
        for actor in core.actors:
            count[actor] = count.get(actor, 0) + 1
            best[actor] = max(best.get(actor, 0.0), state.tension)
    ordered = sorted(count, key=lambda a: (-count[a], -best[a], a))
    return tuple(ordered[:limit])


def compute_theatre_state(
    theatre: str,
    members: Sequence[Tuple[ConflictCore, ConflictStateLive]],
    fronts: Sequence[str],
    now: int,
    config: TheatreConfig,
) -> TheatreStateLive:
    weights = [core.importance for core, _ in members]
    return TheatreStateLive(
        theatre=theatre,
        tension=clamp_unit(weighted_mean([s.tension for _, s in members], weights)),
        momentum=clamp_signed(weighted_mean([s.momentum for _, s in members], weights)),
        heat=clamp_unit(weighted_mean([s.heat for _, s in members], weights)),
        velocity=clamp_signed(weighted_mean([s.velocity for _, s in members], weights)),
        conflict_count=len(members),
        dominant_actors=dominant_actors(members, config.dominant_conflicts, config.max_dominant_actors),
        active_fronts=tuple(sorted(set(fronts))),
        updated_at=now,
    )


class TheatreAggregator:
    """Phase 4 of the update cycle."""

    def __init__(
        self,
        store: StorageBackend,
        reference: Optional[ReferenceDataProvider] = None,
        config: Optional[TheatreConfig] = None,
    ):
        self._store = store
        self._reference = reference
        self._config = config or TheatreConfig()

    def _fronts_by_theatre(self) -> Dict[str, List[str]]:
        fronts: Dict[str, List[str]] = {}
        if self._reference is not None:
            for front in self._reference.front_lines():
                fronts.setdefault(front.theatre, []).append(front.front_id)
        for state in self._store.list_front_states():
            fronts.setdefault(state.theatre, []).append(state.front_id)
        return fronts

    def run(self, now: int) -> PhaseStats:
        tally = PhaseTally(name=PHASE_NAME, now=now)
        conflicts = {c.id: c for c in self._store.list_conflicts()}
        fronts = self._fronts_by_theatre()

        grouped: Dict[str, List[Tuple[ConflictCore, ConflictStateLive]]] = {}
        for state in self._store.list_conflict_states():
            core = conflicts.get(state.conflict_id)
            if core is None:
                continue
            grouped.setdefault(core.theatre, []).append((core, state))

        for theatre in sorted(grouped):
            tally.processed += 1
            try:
                row = compute_theatre_state(
                    theatre, grouped[theatre], fronts.get(theatre, ()), now, self._config
                )
                existed = self._store.get_theatre_state(theatre) is not None
                self._store.upsert_theatre_state(row)
            except Exception as e:
                tally.fail_exception(theatre, e)
                continue
            if existed:
                tally.updated += 1
            else:
                tally.created += 1

        logger.info("theatre: %d theatres recomputed", tally.created + tally.updated)
        return tally.freeze()
