"""
Relation-Edge Deriver

Projects conflict state onto backward-compatible bilateral relation
edges (source 'cce_derived', relation_type 'hostile').

Filtering is intentionally two-stage: raw tension below min_tension is a
cheap pre-filter (not counted), while a computed relation_strength below
min_tension is authoritative and counted as skipped.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple
import logging

from ..contracts.base import DAY, canonical_pair
from ..contracts.events import (
    ConflictCore, ConflictStateLive, PhaseStats, RelationEdge,
)
from ..decay import clamp_unit, decay
from ..storage import StorageBackend
from . import PhaseTally

logger = logging.getLogger(__name__)

PHASE_NAME = "relation_edges"

CCE_SOURCE = "cce_derived"
HOSTILE = "hostile"

RELATION_TYPES = (
    "allied", "hostile", "neutral", "trade_partner",
    "adversary", "treaty_member", "sanctioned",
)


@dataclass(frozen=True)
class RelationConfig:
    min_tension: float = 0.1
    max_age_seconds: float = 7 * DAY
    tension_weight: float = 0.6
    hostility_weight: float = 0.4
    confidence_base: float = 0.7
    confidence_heat_weight: float = 0.3
    max_evidence: int = 10
    persisted_evidence: int = 5
    decay_half_life_seconds: float = 7 * DAY


@dataclass(frozen=True)
class RelationDerivationStats:
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    decayed: int = 0


def relation_strength(core: ConflictCore, state: ConflictStateLive, config: RelationConfig) -> float:
    raw = clamp_unit(config.tension_weight * state.tension + config.hostility_weight * core.base_hostility)
    return clamp_unit(raw * (0.5 + 0.5 * core.importance))


def relation_confidence(state: ConflictStateLive, config: RelationConfig) -> float:
    return clamp_unit(config.confidence_base + config.confidence_heat_weight * state.heat)


def collect_evidence(state: ConflictStateLive, limit: int) -> List[str]:
    urls: List[str] = []
    for driver in state.top_drivers:
        for url in driver.evidence_urls:
            if url not in urls:
                urls.append(url)
                if len(urls) >= limit:
                    return urls
    return urls


def relation_status(strength: float) -> str:
    if strength >= 0.8:
        return "critical"
    if strength >= 0.6:
        return "high"
    if strength >= 0.4:
        return "elevated"
    if strength >= 0.2:
        return "watchful"
    return "normal"


def build_edge(
    core: ConflictCore,
    state: ConflictStateLive,
    existing: Optional[RelationEdge],
    now: int,
    config: RelationConfig,
) -> RelationEdge:
    a, b = canonical_pair(core.actor_a, core.actor_b)
    evidence = collect_evidence(state, config.max_evidence)
    return RelationEdge(
        entity_a=a,
        entity_b=b,
        relation_type=HOSTILE,
        relation_strength=relation_strength(core, state, config),
        confidence=relation_confidence(state, config),
        first_observed_at=existing.first_observed_at if existing else now,
        last_updated_at=now,
        last_event_at=state.last_event_at,
        is_mutual=False,
        evidence_urls=tuple(evidence[:config.persisted_evidence]),
        evidence_count=len(evidence),
        source=CCE_SOURCE,
    )


def decay_edge(edge: RelationEdge, now: int, half_life: float) -> RelationEdge:
    """
    Decay strength for the time since the edge was last touched.

    last_updated_at moves to now, so repeated ticks compose instead of
    re-applying the same interval.
    """
    elapsed = now - edge.last_updated_at
    if elapsed <= 0:
        return edge
    return replace(
        edge,
        relation_strength=clamp_unit(decay(edge.relation_strength, elapsed, half_life)),
        last_updated_at=now,
    )


class RelationEdgeDeriver:
    """Phase 3 of the update cycle."""

    def __init__(self, store: StorageBackend, config: Optional[RelationConfig] = None):
        self._store = store
        self._config = config or RelationConfig()

    def derive(
        self,
        now: int,
        min_tension: Optional[float] = None,
        max_age_seconds: Optional[float] = None,
    ) -> Tuple[RelationDerivationStats, PhaseStats]:
        min_tension = self._config.min_tension if min_tension is None else min_tension
        max_age = self._config.max_age_seconds if max_age_seconds is None else max_age_seconds

        tally = PhaseTally(name=PHASE_NAME, now=now)
        conflicts = {c.id: c for c in self._store.list_conflicts()}
        refreshed: Set[Tuple[str, str, str, str]] = set()

        candidates = [
            s for s in self._store.list_conflict_states()
            if s.conflict_id in conflicts
            and s.tension >= min_tension
            and s.updated_at >= now - max_age
        ]
        for state in candidates:
            core = conflicts[state.conflict_id]
            tally.processed += 1
            try:
                if relation_strength(core, state, self._config) < min_tension:
                    tally.skipped += 1
                    continue
                a, b = canonical_pair(core.actor_a, core.actor_b)
                key = (a, b, HOSTILE, CCE_SOURCE)
                existing = self._store.get_relation(key)
                edge = build_edge(core, state, existing, now, self._config)
                created = self._store.upsert_relation(edge)
            except Exception as e:
                tally.fail_exception(core.id, e)
                continue
            refreshed.add(key)
            if created:
                tally.created += 1
            else:
                tally.updated += 1

        for edge in self._store.list_relations(source=CCE_SOURCE):
            if edge.key in refreshed:
                continue
            decayed = decay_edge(edge, now, self._config.decay_half_life_seconds)
            if decayed is edge:
                continue
            try:
                self._store.upsert_relation(decayed)
            except Exception as e:
                tally.fail_exception("|".join(edge.key), e)
                continue
            tally.decayed += 1

        stats = RelationDerivationStats(
            processed=tally.processed,
            created=tally.created,
            updated=tally.updated,
            skipped=tally.skipped,
            decayed=tally.decayed,
        )
        logger.info(
            "relation edges: %d created, %d updated, %d skipped, %d decayed",
            stats.created, stats.updated, stats.skipped, stats.decayed
        )
        return stats, tally.freeze()

    def run(self, now: int, min_tension: Optional[float] = None,
            max_age_seconds: Optional[float] = None) -> PhaseStats:
        return self.derive(now, min_tension, max_age_seconds)[1]


# =============================================================================
# READ HELPERS
# =============================================================================

def relations_for_entity(
    edges: Iterable[RelationEdge],
    entity: str,
    min_strength: float = 0.0,
    relation_type: Optional[str] = None,
) -> List[RelationEdge]:
    """Edges touching entity, strongest first."""
    selected = [
        e for e in edges
        if e.involves(entity)
        and e.relation_strength >= min_strength
        and (relation_type is None or e.relation_type == relation_type)
    ]
    return sorted(selected, key=lambda e: (-e.relation_strength, e.key))


def relation_stats(edges: Sequence[RelationEdge]) -> Dict[str, object]:
    """Summary counts over a set of edges."""
    by_status: Dict[str, int] = {}
    by_actor: Dict[str, int] = {}
    for edge in edges:
        status = relation_status(edge.relation_strength)
        by_status[status] = by_status.get(status, 0) + 1
        for actor in (edge.entity_a, edge.entity_b):
            by_actor[actor] = by_actor.get(actor, 0) + 1

    return {
        'total': len(edges),
        'by_status': by_status,
        'by_actor': dict(sorted(by_actor.items(), key=lambda kv: (-kv[1], kv[0]))),
        'average_strength': (
            sum(e.relation_strength for e in edges) / len(edges) if edges else 0.0
        ),
        'last_updated_at': max((e.last_updated_at for e in edges), default=None),
    }
