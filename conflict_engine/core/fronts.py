"""
Front-Line State Aggregator

Per front line: decay intensity, boost it from new events of actors on
the front, and shift territorial control toward the side generating the
recent pressure.

CONTRACT:
=========
- |control_new[a] - control_old[a]| <= max_shift_per_tick for every actor
- control shares sum to 1.0 (within 1e-6) after every tick
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
import logging

from ..contracts.base import ConfigurationError, HOUR
from ..contracts.events import (
    ConflictEvent, FrontLine, FrontLineState, PhaseStats,
)
from ..decay import clamp_unit, decay, decay_factor, saturating_add
from ..reference import ReferenceDataProvider
from ..storage import StorageBackend
from . import PhaseTally

logger = logging.getLogger(__name__)

PHASE_NAME = "front"


@dataclass(frozen=True)
class FrontConfig:
    intensity_half_life_seconds: float = 6 * HOUR
    intensity_gain: float = 1.0
    control_shift_rate: float = 0.5
    max_shift_per_tick: float = 0.05

    def __post_init__(self):
        if not (0.0 < self.max_shift_per_tick <= 1.0):
            raise ConfigurationError("max_shift_per_tick must be in (0, 1]")
        if not (0.0 < self.control_shift_rate <= 1.0):
            raise ConfigurationError("control_shift_rate must be in (0, 1]")


def normalise(shares: Dict[str, float]) -> Dict[str, float]:
    """Scale shares to sum to 1; uniform when there is no mass."""
    if not shares:
        return {}
    clipped = {a: max(0.0, v) for a, v in shares.items()}
    total = sum(clipped.values())
    if total <= 0:
        return {a: 1.0 / len(clipped) for a in clipped}
    return {a: v / total for a, v in clipped.items()}


def initial_front_state(front: FrontLine) -> FrontLineState:
    actors = tuple(front.actors) or tuple(a for a, _ in front.base_control)
    base = dict(front.base_control)
    control = normalise({a: base.get(a, 0.0) for a in actors})
    return FrontLineState(
        front_id=front.front_id,
        theatre=front.theatre,
        name=front.name,
        actors=actors,
        base_control=front.base_control,
        control=tuple(sorted(control.items())),
    )


def shift_control(
    control: Dict[str, float],
    pressure: Dict[str, float],
    rate: float,
    max_shift: float,
) -> Dict[str, float]:
    """
    Move control toward the pressure distribution.

    The step is proportional to the total pressure (saturating at 1) and
    is scaled down uniformly so no share moves by more than max_shift.
    """
    total = sum(pressure.values())
    if total <= 0 or not control:
        return dict(control)

    step = rate * min(1.0, total)
    delta = {
        a: step * (pressure.get(a, 0.0) / total - share)
        for a, share in control.items()
    }
    largest = max(abs(d) for d in delta.values())
    if largest > max_shift:
        scale = max_shift / largest
        delta = {a: d * scale for a, d in delta.items()}

    shifted = {a: clamp_unit(control[a] + delta[a]) for a in control}
    return normalise(shifted)


def compute_front_state(
    front: FrontLine,
    prev: Optional[FrontLineState],
    events: Sequence[ConflictEvent],
    now: int,
    config: FrontConfig,
) -> FrontLineState:
    base = prev or initial_front_state(front)
    elapsed = max(0, now - prev.updated_at) if prev else 0
    half_life = config.intensity_half_life_seconds

    intensity = decay(base.intensity, elapsed, half_life)
    control = dict(base.control)
    for actor in base.actors:
        control.setdefault(actor, 0.0)
    control = normalise(control)

    boost = 0.0
    pressure: Dict[str, float] = {}
    for event in events:
        contribution = event.weight * decay_factor(now - event.occurred_at, half_life)
        boost += contribution
        if event.initiator in control:
            pressure[event.initiator] = pressure.get(event.initiator, 0.0) + contribution

    intensity = saturating_add(intensity, min(1.0, boost * config.intensity_gain))
    control = shift_control(control, pressure, config.control_shift_rate, config.max_shift_per_tick)

    last_event_at = base.last_event_at
    events_through = base.events_through
    if events:
        newest = max(e.occurred_at for e in events)
        last_event_at = newest if last_event_at is None else max(last_event_at, newest)
        events_through = max(events_through, max(e.created_at for e in events))

    return FrontLineState(
        front_id=front.front_id,
        theatre=front.theatre,
        name=front.name,
        actors=base.actors,
        base_control=front.base_control,
        control=tuple(sorted(control.items())),
        intensity=clamp_unit(intensity),
        last_event_at=last_event_at,
        updated_at=max(base.updated_at, now),
        events_through=events_through,
    )


class FrontLineAggregator:
    """Phase 6 of the update cycle."""

    def __init__(
        self,
        store: StorageBackend,
        reference: Optional[ReferenceDataProvider],
        config: Optional[FrontConfig] = None,
    ):
        self._store = store
        self._reference = reference
        self._config = config or FrontConfig()

    def _front_events(self, front: FrontLine, conflicts, since: int, now: int) -> List[ConflictEvent]:
        on_front = set(front.actors)
        events: List[ConflictEvent] = []
        for core in conflicts:
            if core.theatre != front.theatre:
                continue
            if not on_front.intersection(core.actors):
                continue
            events.extend(self._store.get_events(
                conflict_id=core.id, created_after=since, created_until=now
            ))
        return sorted(events, key=lambda e: (e.occurred_at, e.id))

    def run(self, now: int) -> PhaseStats:
        if self._reference is None:
            raise ConfigurationError("no reference data provider for front lines")
        fronts = self._reference.front_lines()

        tally = PhaseTally(name=PHASE_NAME, now=now)
        conflicts = self._store.list_conflicts()

        for front in fronts:
            tally.processed += 1
            try:
                prev = self._store.get_front_state(front.front_id)
                since = prev.events_through if prev else 0
                events = self._front_events(front, conflicts, since, now)
                row = compute_front_state(front, prev, events, now, self._config)
                self._store.upsert_front_state(row)
            except Exception as e:
                tally.fail_exception(front.front_id, e)
                continue
            if prev is None:
                tally.created += 1
            else:
                tally.updated += 1

        logger.info("front: %d fronts updated", tally.created + tally.updated)
        return tally.freeze()
