"""
Conflict State Aggregator

RESPONSIBILITY: Maintain ConflictStateLive for every active conflict
ALLOWED INPUTS: ConflictCore, previous ConflictStateLive, new ConflictEvents
OUTPUTS: ConflictStateLive rows (the only writer of that table)

ALGORITHM (per conflict, given S_prev, new events E and now):
=============================================================
1. Decay tension and heat by the time elapsed since S_prev.updated_at.
   Heat has the shorter half-life, so it reacts and fades faster.
2. Fold E in chronological order. Each event pulls tension/heat toward
   1.0 by its weight, blended in proportion to how recent it is.
3. Velocity is the tension change per reference interval; momentum is
   an exponentially smoothed velocity.
4. Pressure combines tension, escalating momentum, heat and importance.
   Instability combines velocity variance, driver type entropy and
   current speed of change.
5. top_drivers keeps the strongest recent events for explainability.

GUARANTEES:
===========
- compute_conflict_state() is pure: same (core, S_prev, E, now) gives
  the same result
- Decay depends on elapsed time only. Running twice with near-zero
  elapsed time and no new events leaves state effectively unchanged.
- New events are selected by the materialisation watermark
  (events_through), so each event is folded exactly once even if it
  arrives late
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple
import logging

from ..contracts.base import ConfigurationError, ErrorCode, DAY, HOUR, MINUTE
from ..contracts.events import (
    ConflictCore, ConflictEvent, ConflictStateLive, DriverSummary, PhaseStats,
)
from ..decay import (
    clamp_signed, clamp_unit, decay, decay_factor, saturating_add,
    shannon_entropy, smoothing_alpha, soft_limit, variance, weighted_blend,
)
from ..storage import StorageBackend
from . import ItemRunner, PhaseTally

logger = logging.getLogger(__name__)

PHASE_NAME = "conflict_state"


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class DecayConfig:
    """Tunable constants for conflict state evolution."""
    tension_half_life_seconds: float = 5 * DAY
    heat_half_life_seconds: float = 12 * HOUR

    # Event folding
    current_weight: float = 0.4
    incoming_weight: float = 0.6
    tension_gain: float = 1.0
    heat_gain: float = 1.0

    # Velocity is tanh of the tension change per velocity_reference_seconds
    # divided by velocity_scale
    velocity_reference_seconds: float = HOUR
    velocity_scale: float = 1.0
    velocity_floor_seconds: float = 15 * MINUTE
    momentum_alpha: float = 0.3

    # Pressure
    pressure_tension_weight: float = 0.75
    pressure_momentum_weight: float = 0.25
    pressure_heat_weight: float = 0.2
    importance_floor: float = 0.6

    # Instability
    instability_variance_weight: float = 0.5
    instability_entropy_weight: float = 0.3
    instability_velocity_weight: float = 0.2
    variance_scale: float = 4.0
    event_type_categories: int = 12
    velocity_history_size: int = 12

    # Selection and explainability
    max_drivers: int = 10
    staleness_window_seconds: float = 14 * DAY
    major_tension_change: float = 0.15
    major_heat_change: float = 0.20

    def __post_init__(self):
        if self.tension_half_life_seconds <= 0 or self.heat_half_life_seconds <= 0:
            raise ConfigurationError("half-lives must be positive")
        if self.heat_half_life_seconds >= self.tension_half_life_seconds:
            raise ConfigurationError(
                "heat half-life must be shorter than tension half-life"
            )
        if not (0.0 < self.momentum_alpha <= 1.0):
            raise ConfigurationError("momentum_alpha must be in (0, 1]")
        if self.velocity_floor_seconds <= 0 or self.velocity_scale <= 0:
            raise ConfigurationError("velocity_floor_seconds and velocity_scale must be positive")
        if self.max_drivers < 1 or self.velocity_history_size < 2:
            raise ConfigurationError("max_drivers and velocity_history_size too small")


# =============================================================================
# PURE COMPUTATION
# =============================================================================

def _recency(occurred_at: int, now: int, half_life: float) -> float:
    return decay_factor(now - occurred_at, half_life)


def rank_drivers(
    previous: Sequence[DriverSummary],
    events: Sequence[ConflictEvent],
    now: int,
    config: DecayConfig,
) -> Tuple[DriverSummary, ...]:
    """Merge previous drivers with new events and keep the strongest."""
    candidates: Dict[str, DriverSummary] = {d.event_id: d for d in previous}
    for event in events:
        candidates[event.id] = DriverSummary(
            event_id=event.id,
            event_type=event.event_type,
            weight=event.weight,
            occurred_at=event.occurred_at,
            evidence_urls=event.evidence_urls,
        )

    def score(d: DriverSummary):
        strength = d.weight * _recency(d.occurred_at, now, config.tension_half_life_seconds)
        return (-strength, -d.occurred_at, d.event_id)

    return tuple(sorted(candidates.values(), key=score)[:config.max_drivers])


def compute_conflict_state(
    core: ConflictCore,
    prev: Optional[ConflictStateLive],
    events: Sequence[ConflictEvent],
    now: int,
    config: DecayConfig,
) -> ConflictStateLive:
    """Advance one conflict's state to now, folding in new events."""
    if prev is None:
        prev = ConflictStateLive.initial(core.id)
        elapsed = 0
    else:
        elapsed = max(0, now - prev.updated_at)

    events = sorted(events, key=lambda e: (e.occurred_at, e.id))

    # 1. Decay
    tension = decay(prev.tension, elapsed, config.tension_half_life_seconds)
    heat = decay(prev.heat, elapsed, config.heat_half_life_seconds)

    # 2. Fold
    for event in events:
        r_tension = _recency(event.occurred_at, now, config.tension_half_life_seconds)
        r_heat = _recency(event.occurred_at, now, config.heat_half_life_seconds)
        tension = clamp_unit(weighted_blend(
            tension,
            saturating_add(tension, event.weight * config.tension_gain),
            config.current_weight,
            config.incoming_weight * r_tension,
        ))
        heat = clamp_unit(weighted_blend(
            heat,
            saturating_add(heat, event.weight * config.heat_gain),
            config.current_weight,
            config.incoming_weight * r_heat,
        ))

    # 3. Velocity & momentum
    measured = soft_limit(
        (tension - prev.tension) * config.velocity_reference_seconds
        / max(elapsed, config.velocity_floor_seconds),
        config.velocity_scale,
    )
    if events:
        velocity = measured
        alpha = config.momentum_alpha
    else:
        w = min(1.0, elapsed / config.velocity_floor_seconds)
        velocity = clamp_signed(prev.velocity * (1.0 - w) + measured * w)
        alpha = smoothing_alpha(config.momentum_alpha, elapsed, config.velocity_floor_seconds)
    momentum = clamp_signed(alpha * velocity + (1.0 - alpha) * prev.momentum)

    history = prev.velocity_history
    if events or elapsed >= config.velocity_floor_seconds:
        history = (history + (velocity,))[-config.velocity_history_size:]

    # 5. Drivers (needed for instability)
    drivers = rank_drivers(prev.top_drivers, events, now, config)

    # 4. Pressure & instability
    importance_scale = config.importance_floor + (1.0 - config.importance_floor) * core.importance
    pressure = clamp_unit(
        (config.pressure_tension_weight * tension
         + config.pressure_momentum_weight * max(momentum, 0.0)) * importance_scale
        + config.pressure_heat_weight * heat
    )
    instability = clamp_unit(
        config.instability_variance_weight * min(1.0, variance(history) * config.variance_scale)
        + config.instability_entropy_weight * shannon_entropy(
            (d.event_type for d in drivers), config.event_type_categories)
        + config.instability_velocity_weight * abs(velocity)
    )

    # 6. Bookkeeping
    last_event_at = prev.last_event_at
    events_through = prev.events_through
    if events:
        newest = max(e.occurred_at for e in events)
        last_event_at = newest if last_event_at is None else max(last_event_at, newest)
        events_through = max(events_through, max(e.created_at for e in events))

    last_major_change_at = prev.last_major_change_at
    if (abs(tension - prev.tension) > config.major_tension_change
            or abs(heat - prev.heat) > config.major_heat_change):
        last_major_change_at = now

    return ConflictStateLive(
        conflict_id=core.id,
        tension=tension,
        heat=heat,
        velocity=velocity,
        momentum=momentum,
        pressure=pressure,
        instability=instability,
        theatre_rank=prev.theatre_rank,
        last_event_at=last_event_at,
        top_drivers=drivers,
        updated_at=max(prev.updated_at, now),
        events_through=events_through,
        velocity_history=history,
        last_major_change_at=last_major_change_at,
    )


def assign_theatre_ranks(
    conflicts: Sequence[ConflictCore],
    states: Dict[str, ConflictStateLive],
) -> Dict[str, int]:
    """1-based rank by pressure within each theatre; ties by conflict id."""
    by_theatre: Dict[str, List[ConflictStateLive]] = {}
    for core in conflicts:
        state = states.get(core.id)
        if state is not None:
            by_theatre.setdefault(core.theatre, []).append(state)

    ranks = {}
    for members in by_theatre.values():
        ordered = sorted(members, key=lambda s: (-s.pressure, s.conflict_id))
        for rank, state in enumerate(ordered, start=1):
            ranks[state.conflict_id] = rank
    return ranks


# =============================================================================
# AGGREGATOR
# =============================================================================

@dataclass(frozen=True)
class _Work:
    core: ConflictCore
    prev: Optional[ConflictStateLive]
    events: Tuple[ConflictEvent, ...]


class ConflictStateAggregator:
    """
    Phase 2 of the update cycle.

    Inputs are read on the calling thread, computations go through an
    ItemRunner (optionally parallel, bounded by a per-item timeout) and
    results are written back on the calling thread. The theatre ranking
    pass runs only after every conflict of the tick has been written.
    """

    def __init__(
        self,
        store: StorageBackend,
        config: Optional[DecayConfig] = None,
        runner: Optional[ItemRunner] = None,
        compute: Callable[..., ConflictStateLive] = compute_conflict_state,
    ):
        self._store = store
        self._config = config or DecayConfig()
        self._runner = runner or ItemRunner()
        self._compute = compute

    def _is_active(self, prev: Optional[ConflictStateLive], has_events: bool, now: int) -> bool:
        if has_events:
            return True
        if prev is None or prev.last_event_at is None:
            return False
        return now - prev.last_event_at <= self._config.staleness_window_seconds

    def _collect_work(self, conflicts: Sequence[ConflictCore], now: int, tally: PhaseTally) -> List[_Work]:
        work = []
        for core in conflicts:
            try:
                prev = self._store.get_conflict_state(core.id)
                events = self._store.get_events(
                    conflict_id=core.id,
                    created_after=prev.events_through if prev else None,
                    created_until=now,
                )
            except Exception as e:
                tally.fail_exception(core.id, e)
                continue
            if self._is_active(prev, bool(events), now):
                work.append(_Work(core=core, prev=prev, events=tuple(events)))
        return work

    def run(self, now: int) -> PhaseStats:
        tally = PhaseTally(name=PHASE_NAME, now=now)
        conflicts = self._store.list_conflicts()
        work = self._collect_work(conflicts, now, tally)
        by_id = {w.core.id: w for w in work}

        items = [
            (w.core.id, (lambda w=w: self._compute(w.core, w.prev, w.events, now, self._config)))
            for w in work
        ]
        for outcome in self._runner.run(items):
            tally.processed += 1
            if outcome.timed_out:
                tally.fail_item(outcome.key, ErrorCode.ITEM_TIMEOUT, "computation exceeded item timeout")
                continue
            if outcome.exception is not None:
                tally.fail_exception(outcome.key, outcome.exception)
                continue
            try:
                self._store.upsert_conflict_state(outcome.value)
            except Exception as e:
                tally.fail_exception(outcome.key, e)
                continue
            if by_id[outcome.key].prev is None:
                tally.created += 1
            else:
                tally.updated += 1

        self._rank(conflicts, tally)

        logger.info(
            "conflict state: %d processed, %d created, %d updated, %d skipped",
            tally.processed, tally.created, tally.updated, tally.skipped
        )
        return tally.freeze()

    def _rank(self, conflicts: Sequence[ConflictCore], tally: PhaseTally) -> None:
        states: Dict[str, ConflictStateLive] = {}
        for core in conflicts:
            try:
                state = self._store.get_conflict_state(core.id)
            except Exception as e:
                logger.warning("ranking: cannot read state of %s: %s", core.id, e)
                continue
            if state is not None:
                states[core.id] = state

        for conflict_id, rank in assign_theatre_ranks(conflicts, states).items():
            state = states[conflict_id]
            if state.theatre_rank == rank:
                continue
            try:
                self._store.upsert_conflict_state(replace(state, theatre_rank=rank))
            except Exception as e:
                tally.fail_exception(conflict_id, e, skip=False)
