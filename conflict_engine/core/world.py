"""
World state rollup.

Computed on demand from the conflict set; nothing here is stored.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..contracts.base import DAY, HOUR
from ..contracts.events import (
    AlertLevel, ConflictCore, ConflictStateLive, WorldState,
)
from ..decay import clamp_unit
from ..storage import StorageBackend


DEFAULT_THEATRE_WEIGHTS = (
    ("Global", 1.0),
    ("EuropeEast", 0.9),
    ("IndoPacific", 0.85),
    ("MiddleEast", 0.8),
    ("SouthAsia", 0.7),
    ("Africa", 0.6),
    ("LatinAmerica", 0.5),
)


@dataclass(frozen=True)
class WorldConfig:
    theatre_weights: Tuple[Tuple[str, float], ...] = DEFAULT_THEATRE_WEIGHTS
    default_theatre_weight: float = 0.5
    high_tension: float = 0.7
    amplification_per_conflict: float = 0.05
    max_amplified_conflicts: int = 5
    active_tension: float = 0.2
    scenario_min_tension: float = 0.3
    max_scenarios: int = 20
    recent_window_seconds: int = DAY
    fresh_window_seconds: int = HOUR


def alert_level(tension: float) -> AlertLevel:
    if tension >= 0.75:
        return AlertLevel.CRITICAL
    if tension >= 0.5:
        return AlertLevel.HIGH
    if tension >= 0.25:
        return AlertLevel.MEDIUM
    return AlertLevel.LOW


def country_status(tension: float) -> str:
    if tension >= 0.8:
        return "critical"
    if tension >= 0.6:
        return "heightened"
    if tension >= 0.4:
        return "elevated"
    if tension >= 0.2:
        return "watchful"
    return "normal"


def global_tension(
    joined: Sequence[Tuple[ConflictCore, ConflictStateLive]],
    config: WorldConfig,
) -> float:
    """Importance and theatre weighted tension, amplified by hot conflicts."""
    weights = dict(config.theatre_weights)
    total = 0.0
    weight_sum = 0.0
    for core, state in joined:
        if state.tension <= 0:
            continue
        w = core.importance * weights.get(core.theatre, config.default_theatre_weight)
        total += (0.7 * state.tension + 0.3 * state.heat) * w
        weight_sum += w
    if weight_sum <= 0:
        return 0.0
    hot = sum(1 for _, s in joined if s.tension >= config.high_tension)
    amplification = 1.0 + min(hot, config.max_amplified_conflicts) * config.amplification_per_conflict
    return clamp_unit(total / weight_sum * amplification)


def compute_world_state(
    joined: Sequence[Tuple[ConflictCore, ConflictStateLive]],
    recent_event_count: int,
    now: int,
    config: Optional[WorldConfig] = None,
) -> WorldState:
    config = config or WorldConfig()
    tension = global_tension(joined, config)

    peak: Dict[str, float] = {}
    for core, state in joined:
        if state.tension <= config.active_tension:
            continue
        for actor in core.actors:
            peak[actor] = max(peak.get(actor, 0.0), state.tension)

    hottest = sorted(
        (m for m in joined if m[1].tension >= config.scenario_min_tension),
        key=lambda m: (-m[1].tension, m[0].id)
    )[:config.max_scenarios]
    scenarios = []
    for core, state in hottest:
        velocity_factor = 1.0 + state.velocity * 0.2 if state.velocity > 0 else 1.0
        probability = clamp_unit((state.tension * 0.6 + state.heat * 0.4) * velocity_factor)
        scenarios.append((f"CONFLICT_{core.actor_a}_{core.actor_b}".upper(), probability))

    states = [s for _, s in joined]
    fresh = sum(1 for s in states if s.updated_at >= now - config.fresh_window_seconds)
    quality = min(1.0, fresh / len(states) * 1.2) if states else 0.8

    return WorldState(
        computed_at=now,
        global_tension=tension,
        alert_level=alert_level(tension),
        active_conflict_count=sum(1 for s in states if s.tension > config.active_tension),
        high_tension_count=sum(1 for s in states if s.tension >= config.high_tension),
        recent_event_count=recent_event_count,
        country_statuses=tuple(sorted((c, country_status(t)) for c, t in peak.items())),
        scenario_scores=tuple(scenarios),
        data_quality=quality,
    )


def join_states(store: StorageBackend) -> List[Tuple[ConflictCore, ConflictStateLive]]:
    conflicts = {c.id: c for c in store.list_conflicts()}
    return [
        (conflicts[s.conflict_id], s)
        for s in store.list_conflict_states()
        if s.conflict_id in conflicts
    ]


def world_state_from_store(
    store: StorageBackend,
    now: int,
    config: Optional[WorldConfig] = None,
) -> WorldState:
    config = config or WorldConfig()
    recent = store.get_events(created_after=now - config.recent_window_seconds - 1)
    return compute_world_state(join_states(store), len(recent), now, config)


def conflict_summary(store: StorageBackend, now: int, top: int = 10) -> dict:
    """Counts and the highest-tension conflicts, for reporting."""
    joined = join_states(store)
    hottest = sorted(joined, key=lambda m: (-m[1].tension, m[0].id))[:top]
    return {
        'total_conflicts': len(store.list_conflicts()),
        'active_conflicts': sum(1 for _, s in joined if s.tension > 0.2),
        'high_tension_conflicts': sum(1 for _, s in joined if s.tension >= 0.7),
        'recent_events_24h': len(store.get_events(created_after=now - DAY - 1)),
        'top_tensions': [
            {
                'conflict_id': core.id,
                'actors': f"{core.actor_a}-{core.actor_b}",
                'tension': state.tension,
                'heat': state.heat,
                'velocity': state.velocity,
            }
            for core, state in hottest
        ],
    }
