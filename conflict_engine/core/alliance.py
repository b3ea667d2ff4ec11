"""
Alliance Pressure Aggregator

For each alliance, combine the pressure of conflicts involving any
member, weighted by conflict importance and membership strength.
Full recompute each tick.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import logging

from ..contracts.base import ConfigurationError
from ..contracts.events import (
    Alliance, AlliancePressureLive, ConflictCore, ConflictStateLive, PhaseStats,
)
from ..decay import clamp_unit, weighted_mean
from ..reference import ReferenceDataProvider
from ..storage import StorageBackend
from . import PhaseTally

logger = logging.getLogger(__name__)

PHASE_NAME = "alliance"


@dataclass(frozen=True)
class AllianceConfig:
    min_conflict_pressure: float = 0.1
    mean_weight: float = 0.4
    peak_weight: float = 0.6
    affected_pressure: float = 0.5
    top_conflicts: int = 5


def compute_alliance_pressure(
    alliance: Alliance,
    members: Sequence[Tuple[ConflictCore, ConflictStateLive]],
    now: int,
    config: AllianceConfig,
) -> AlliancePressureLive:
    """
    members are (core, state) pairs; only those involving an alliance
    member with pressure >= min_conflict_pressure contribute.
    """
    pressures: List[float] = []
    weights: List[float] = []
    scored: List[Tuple[float, str]] = []
    affected = set()

    for core, state in members:
        membership = max(alliance.membership(a) for a in core.actors)
        if membership <= 0 or state.pressure < config.min_conflict_pressure:
            continue
        pressures.append(state.pressure)
        weights.append(core.importance * membership)
        scored.append((state.pressure * membership, core.id))
        if state.pressure >= config.affected_pressure:
            affected.update(a for a in core.actors if alliance.membership(a) > 0)

    if pressures:
        peak = max(s for s, _ in scored)
        combined = config.mean_weight * weighted_mean(pressures, weights) + config.peak_weight * peak
        pressure = clamp_unit(combined * alliance.strength)
    else:
        pressure = 0.0

    top = sorted(scored, key=lambda x: (-x[0], x[1]))[:config.top_conflicts]
    return AlliancePressureLive(
        alliance_id=alliance.id,
        name=alliance.name,
        members=alliance.member_codes,
        pressure=pressure,
        top_conflicts=tuple(cid for _, cid in top),
        affected_members=tuple(sorted(affected)),
        conflict_count=len(scored),
        updated_at=now,
    )


class AlliancePressureAggregator:
    """Phase 5 of the update cycle."""

    def __init__(
        self,
        store: StorageBackend,
        reference: Optional[ReferenceDataProvider],
        config: Optional[AllianceConfig] = None,
    ):
        self._store = store
        self._reference = reference
        self._config = config or AllianceConfig()

    def run(self, now: int) -> PhaseStats:
        if self._reference is None:
            raise ConfigurationError("no reference data provider for alliances")
        alliances = self._reference.alliances()

        tally = PhaseTally(name=PHASE_NAME, now=now)
        conflicts = {c.id: c for c in self._store.list_conflicts()}
        joined = [
            (conflicts[s.conflict_id], s)
            for s in self._store.list_conflict_states()
            if s.conflict_id in conflicts
        ]
        existing = {p.alliance_id for p in self._store.list_alliance_pressure()}

        for alliance in alliances:
            tally.processed += 1
            try:
                row = compute_alliance_pressure(alliance, joined, now, self._config)
                self._store.upsert_alliance_pressure(row)
            except Exception as e:
                tally.fail_exception(alliance.id, e)
                continue
            if alliance.id in existing:
                tally.updated += 1
            else:
                tally.created += 1

        logger.info("alliance: %d alliances recomputed", tally.created + tally.updated)
        return tally.freeze()
