"""
Layer-Specific Contracts

These contracts define the records exchanged between the store, the
aggregators and the orchestrator. Each aggregator consumes and produces
only these types; encoding to a storage format happens inside a backend.

RECORD FAMILIES:
================
1. Inputs: EventFrame (upstream extraction), ConflictCore, Alliance,
   FrontLine (reference data)
2. Materialised events: ConflictEvent (append-only)
3. Live state: ConflictStateLive, TheatreStateLive, AlliancePressureLive,
   FrontLineState, RelationEdge
4. Outputs: WorldState, PhaseStats, UpdateCycleResult
5. Observability: AuditLogEntry, MetricPoint
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
from enum import Enum

from .base import (
    Error, canonical_pair, check_unit, check_signed, stable_id, to_iso
)


# =============================================================================
# INPUT CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class ConflictCore:
    """
    A tracked actor pair.

    The pair is stored in canonical (sorted) order; use create() to build
    one from an arbitrary ordering.
    """
    id: str
    actor_a: str
    actor_b: str
    theatre: str
    importance: float = 0.5
    base_hostility: float = 0.0
    base_tension: float = 0.0

    def __post_init__(self):
        if self.actor_a == self.actor_b:
            raise ValueError(f"Conflict {self.id} pairs {self.actor_a} with itself")
        if self.actor_a > self.actor_b:
            raise ValueError(f"Conflict {self.id} actor pair is not canonical")
        check_unit("importance", self.importance)
        check_unit("base_hostility", self.base_hostility)
        check_unit("base_tension", self.base_tension)

    @staticmethod
    def create(
        actor_a: str,
        actor_b: str,
        theatre: str,
        importance: float = 0.5,
        base_hostility: float = 0.0,
        base_tension: float = 0.0,
        conflict_id: Optional[str] = None,
    ) -> ConflictCore:
        a, b = canonical_pair(actor_a, actor_b)
        return ConflictCore(
            id=conflict_id or f"{a}_{b}",
            actor_a=a,
            actor_b=b,
            theatre=theatre,
            importance=importance,
            base_hostility=base_hostility,
            base_tension=base_tension,
        )

    @property
    def actors(self) -> Tuple[str, str]:
        return (self.actor_a, self.actor_b)

    def involves(self, actor: str) -> bool:
        return actor == self.actor_a or actor == self.actor_b


@dataclass(frozen=True)
class EventFrame:
    """
    Upstream extraction output: one observed event in one article.

    Role fields are actor codes; any may be absent.
    """
    id: str
    event_type: str
    severity: float
    confidence: float
    occurred_at: int
    created_at: int
    attacker: Optional[str] = None
    defender: Optional[str] = None
    source: Optional[str] = None
    target: Optional[str] = None
    impact: float = 0.0
    source_url: Optional[str] = None

    @property
    def actors(self) -> Tuple[str, ...]:
        """Distinct actor codes in role order."""
        seen = []
        for code in (self.attacker, self.defender, self.source, self.target):
            if code and code not in seen:
                seen.append(code)
        return tuple(seen)

    @property
    def initiator(self) -> Optional[str]:
        return self.attacker or self.source


@dataclass(frozen=True)
class Alliance:
    id: str
    name: str
    members: Tuple[Tuple[str, float], ...]
    strength: float = 1.0

    def membership(self, actor: str) -> float:
        for code, weight in self.members:
            if code == actor:
                return weight
        return 0.0

    @property
    def member_codes(self) -> Tuple[str, ...]:
        return tuple(code for code, _ in self.members)


@dataclass(frozen=True)
class FrontLine:
    front_id: str
    theatre: str
    name: str
    actors: Tuple[str, ...]
    base_control: Tuple[Tuple[str, float], ...] = field(default_factory=tuple)


# =============================================================================
# MATERIALISED EVENTS (Append-only)
# =============================================================================

@dataclass(frozen=True)
class ConflictEvent:
    """
    IMMUTABLE aggregate of event frames for one conflict and one window.

    created_at is the materialisation time; aggregators select new events
    by it, so late-arriving events are still folded exactly once.
    """
    id: str
    conflict_id: str
    window_start: int
    window_end: int
    occurred_at: int
    created_at: int
    event_type: str
    severity: float
    confidence: float
    impact: float = 0.0
    initiator: Optional[str] = None
    frame_count: int = 1
    evidence_urls: Tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        check_unit("severity", self.severity)
        check_unit("confidence", self.confidence)
        check_unit("impact", self.impact)
        if self.window_end < self.window_start:
            raise ValueError(f"Event {self.id} window ends before it starts")

    @property
    def weight(self) -> float:
        return self.severity * self.confidence

    @staticmethod
    def make_id(conflict_id: str, window_start: int) -> str:
        return stable_id("cev", conflict_id, window_start)


# =============================================================================
# LIVE STATE CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class DriverSummary:
    """One entry of a conflict's explainability list."""
    event_id: str
    event_type: str
    weight: float
    occurred_at: int
    evidence_urls: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            'event_id': self.event_id,
            'event_type': self.event_type,
            'weight': self.weight,
            'occurred_at': self.occurred_at,
            'evidence_urls': list(self.evidence_urls),
        }


@dataclass(frozen=True)
class ConflictStateLive:
    """
    Current decaying state of one conflict.

    Written only by the conflict state aggregator.
    """
    conflict_id: str
    tension: float = 0.0
    heat: float = 0.0
    velocity: float = 0.0
    momentum: float = 0.0
    pressure: float = 0.0
    instability: float = 0.0
    theatre_rank: Optional[int] = None
    last_event_at: Optional[int] = None
    top_drivers: Tuple[DriverSummary, ...] = field(default_factory=tuple)
    updated_at: int = 0
    events_through: int = 0
    velocity_history: Tuple[float, ...] = field(default_factory=tuple)
    last_major_change_at: Optional[int] = None

    def __post_init__(self):
        check_unit("tension", self.tension)
        check_unit("heat", self.heat)
        check_unit("pressure", self.pressure)
        check_unit("instability", self.instability)
        check_signed("velocity", self.velocity)
        check_signed("momentum", self.momentum)

    @staticmethod
    def initial(conflict_id: str) -> ConflictStateLive:
        return ConflictStateLive(conflict_id=conflict_id)

    def to_dict(self) -> dict:
        return {
            'conflict_id': self.conflict_id,
            'tension': self.tension,
            'heat': self.heat,
            'velocity': self.velocity,
            'momentum': self.momentum,
            'pressure': self.pressure,
            'instability': self.instability,
            'theatre_rank': self.theatre_rank,
            'last_event_at': self.last_event_at,
            'top_drivers': [d.to_dict() for d in self.top_drivers],
            'updated_at': self.updated_at,
            'last_major_change_at': self.last_major_change_at,
        }


@dataclass(frozen=True)
class TheatreStateLive:
    theatre: str
    tension: float
    momentum: float
    heat: float
    velocity: float
    conflict_count: int
    dominant_actors: Tuple[str, ...]
    active_fronts: Tuple[str, ...]
    updated_at: int

    def to_dict(self) -> dict:
        return {
            'theatre': self.theatre,
            'tension': self.tension,
            'momentum': self.momentum,
            'heat': self.heat,
            'velocity': self.velocity,
            'conflict_count': self.conflict_count,
            'dominant_actors': list(self.dominant_actors),
            'active_fronts': list(self.active_fronts),
            'updated_at': self.updated_at,
        }


@dataclass(frozen=True)
class AlliancePressureLive:
    alliance_id: str
    name: str
    members: Tuple[str, ...]
    pressure: float
    top_conflicts: Tuple[str, ...]
    affected_members: Tuple[str, ...]
    conflict_count: int
    updated_at: int

    def __post_init__(self):
        check_unit("pressure", self.pressure)

    def to_dict(self) -> dict:
        return {
            'alliance_id': self.alliance_id,
            'name': self.name,
            'members': list(self.members),
            'pressure': self.pressure,
            'top_conflicts': list(self.top_conflicts),
            'affected_members': list(self.affected_members),
            'conflict_count': self.conflict_count,
            'updated_at': self.updated_at,
        }


@dataclass(frozen=True)
class FrontLineState:
    """
    Live state of one front line.

    control maps actor to share, sorted by actor; shares sum to 1.
    """
    front_id: str
    theatre: str
    name: str
    actors: Tuple[str, ...]
    base_control: Tuple[Tuple[str, float], ...]
    control: Tuple[Tuple[str, float], ...]
    intensity: float = 0.0
    last_event_at: Optional[int] = None
    updated_at: int = 0
    events_through: int = 0

    def __post_init__(self):
        check_unit("intensity", self.intensity)
        for actor, share in self.control:
            check_unit(f"control[{actor}]", share)

    def control_map(self) -> Dict[str, float]:
        return dict(self.control)

    def to_dict(self) -> dict:
        return {
            'front_id': self.front_id,
            'theatre': self.theatre,
            'name': self.name,
            'actors': list(self.actors),
            'control': self.control_map(),
            'intensity': self.intensity,
            'last_event_at': self.last_event_at,
            'updated_at': self.updated_at,
        }


@dataclass(frozen=True)
class RelationEdge:
    """
    Directed-agnostic relation between two entities.

    Natural key: (entity_a, entity_b, relation_type, source), with the
    entity pair sorted. Edges are decayed, never deleted.
    """
    entity_a: str
    entity_b: str
    relation_type: str
    relation_strength: float
    confidence: float
    first_observed_at: int
    last_updated_at: int
    last_event_at: Optional[int] = None
    is_mutual: bool = False
    evidence_urls: Tuple[str, ...] = field(default_factory=tuple)
    evidence_count: int = 0
    source: str = "cce_derived"

    def __post_init__(self):
        if self.entity_a >= self.entity_b:
            raise ValueError(
                f"Relation pair must be sorted and distinct: {self.entity_a}, {self.entity_b}"
            )
        check_unit("relation_strength", self.relation_strength)
        check_unit("confidence", self.confidence)

    @property
    def key(self) -> Tuple[str, str, str, str]:
        return (self.entity_a, self.entity_b, self.relation_type, self.source)

    def involves(self, entity: str) -> bool:
        return entity == self.entity_a or entity == self.entity_b

    def to_dict(self) -> dict:
        return {
            'entity_a': self.entity_a,
            'entity_b': self.entity_b,
            'relation_type': self.relation_type,
            'relation_strength': self.relation_strength,
            'confidence': self.confidence,
            'is_mutual': self.is_mutual,
            'evidence_urls': list(self.evidence_urls),
            'evidence_count': self.evidence_count,
            'first_observed_at': self.first_observed_at,
            'last_updated_at': self.last_updated_at,
            'last_event_at': self.last_event_at,
            'source': self.source,
        }


# =============================================================================
# OUTPUT CONTRACTS
# =============================================================================

class AlertLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class WorldState:
    """Global rollup of conflict and theatre state at one instant."""
    computed_at: int
    global_tension: float
    alert_level: AlertLevel
    active_conflict_count: int
    high_tension_count: int
    recent_event_count: int
    country_statuses: Tuple[Tuple[str, str], ...]
    scenario_scores: Tuple[Tuple[str, float], ...]
    data_quality: float
    calculation_method: str = "cce_conflict_aggregation"

    def to_dict(self) -> dict:
        return {
            'computed_at': self.computed_at,
            'computed_at_iso': to_iso(self.computed_at),
            'global_tension': self.global_tension,
            'alert_level': self.alert_level.value,
            'active_conflict_count': self.active_conflict_count,
            'high_tension_count': self.high_tension_count,
            'recent_event_count': self.recent_event_count,
            'country_statuses': dict(self.country_statuses),
            'scenario_scores': dict(self.scenario_scores),
            'data_quality': self.data_quality,
            'calculation_method': self.calculation_method,
        }


class PhaseStatus(Enum):
    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class PhaseStats:
    """
    Counters and errors for one orchestrator phase.

    errors holds item-level failures; error holds the hard failure that
    aborted the phase, if any.
    """
    name: str
    status: PhaseStatus = PhaseStatus.OK
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    decayed: int = 0
    duration_ms: float = 0.0
    errors: Tuple[Error, ...] = field(default_factory=tuple)
    error: Optional[Error] = None
    blocked_by: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status == PhaseStatus.FAILED

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'processed': self.processed,
            'created': self.created,
            'updated': self.updated,
            'skipped': self.skipped,
            'decayed': self.decayed,
            'duration_ms': self.duration_ms,
            'errors': [e.to_dict() for e in self.errors],
            'error': self.error.to_dict() if self.error else None,
            'blocked_by': self.blocked_by,
        }


@dataclass(frozen=True)
class UpdateCycleResult:
    success: bool
    started_at: int
    completed_at: int
    phases: Tuple[PhaseStats, ...] = field(default_factory=tuple)
    disabled: bool = False
    world: Optional[WorldState] = None
    message: str = ""

    # Top-level created/updated/skipped are the relation-edge counts;
    # every other phase reports its own counts under phases.
    @property
    def created(self) -> int:
        return self._edge_count("created")

    @property
    def updated(self) -> int:
        return self._edge_count("updated")

    @property
    def skipped(self) -> int:
        return self._edge_count("skipped")

    def _edge_count(self, counter: str) -> int:
        stats = self.phase("relation_edges")
        return getattr(stats, counter) if stats else 0

    def phase(self, name: str) -> Optional[PhaseStats]:
        for stats in self.phases:
            if stats.name == name:
                return stats
        return None

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'disabled': self.disabled,
            'message': self.message,
            'created': self.created,
            'updated': self.updated,
            'skipped': self.skipped,
            'started_at': to_iso(self.started_at),
            'completed_at': to_iso(self.completed_at),
            'phases': {p.name: p.to_dict() for p in self.phases},
            'world': self.world.to_dict() if self.world else None,
        }


# =============================================================================
# OBSERVABILITY CONTRACTS
# =============================================================================

class AuditEventType(Enum):
    PHASE = "phase"
    ITEM_FAILURE = "item_failure"
    STORE = "store"
    QUERY = "query"
    SYSTEM = "system"


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable audit log entry."""
    entry_id: str
    event_type: AuditEventType
    timestamp: int
    layer: str
    action: str
    entity_id: Optional[str] = None
    metadata: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MetricPoint:
    """Immutable metric data point."""
    metric_name: str
    value: float
    timestamp: int
    labels: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


# =============================================================================
# QUERY CONTRACTS
# =============================================================================

class QueryType(Enum):
    TOP_CONFLICTS = "top_conflicts"
    THEATRES = "theatres"
    FRONTS = "fronts"
    RELATIONS = "relations"
    RELATION_STATS = "relation_stats"
    ALLIANCES = "alliances"
    WORLD = "world"


@dataclass(frozen=True)
class QueryResult:
    """
    IMMUTABLE query result.

    Empty results are distinct from errors. total counts matches before
    pagination; results holds the requested page.
    """
    query_type: QueryType
    success: bool
    results: Tuple[dict, ...] = field(default_factory=tuple)
    total: int = 0
    error: Optional[Error] = None
    execution_time_ms: float = 0.0

    @property
    def result_count(self) -> int:
        return len(self.results)

    @staticmethod
    def failed(query_type: QueryType, error: Error) -> QueryResult:
        return QueryResult(query_type=query_type, success=False, error=error)
