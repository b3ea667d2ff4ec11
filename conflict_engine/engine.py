"""
Engine Orchestration Module

This module provides the unified entry point for one update cycle (tick)
and the unified configuration for every layer.

DESIGN PRINCIPLES:
==================
1. Layers communicate ONLY through contracts and the store
2. Phases run in a fixed order with one `now` per tick
3. Item failures are data; phase failures are isolated
4. Configuration is explicit; the environment is read only by from_env()

PHASES:
=======
1. aggregate       event frames -> conflict events
2. conflict_state  decay and fold conflict state
3. relation_edges  project conflicts onto relation edges
4. theatre         (v2) theatre rollup
5. alliance        (v2) alliance pressure
6. front           (v2) front-line intensity and control

Phases 3-6 read phase 2 output, so a hard failure of phase 2 blocks them.
A hard failure of phase 1 does not: existing events still decay.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, List, Mapping, Optional
import logging
import os
import threading
import time

from .contracts.base import (
    CCEError, ConfigurationError, Error, ErrorCode, TickLockHeldError, DAY, HOUR,
)
from .contracts.events import (
    ConflictCore, EventFrame, PhaseStats, PhaseStatus, UpdateCycleResult, WorldState,
)
from .core import ItemRunner
from .core.aggregation import AggregationConfig, EventAggregator
from .core.alliance import AllianceConfig, AlliancePressureAggregator
from .core.conflict_state import ConflictStateAggregator, DecayConfig
from .core.fronts import FrontConfig, FrontLineAggregator
from .core.relations import RelationConfig, RelationEdgeDeriver
from .core.theatre import TheatreAggregator, TheatreConfig
from .core.world import WorldConfig, world_state_from_store
from .observability import ObservabilityConfig, ObservabilityEngine
from .query import ConflictQueryService, QueryConfig
from .reference import ReferenceDataProvider, StaticReferenceData
from .storage import StorageBackend, StorageConfig, create_backend
from .temporal.clock import LogicalClock

logger = logging.getLogger(__name__)


def _env_flag(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class EngineConfig:
    """Unified configuration for the entire engine."""
    cce_enabled: bool = True
    v2_enabled: bool = True
    aggregation_lookback_seconds: int = DAY
    min_tension: float = 0.1
    max_age_seconds: float = 7 * DAY
    item_timeout_seconds: Optional[float] = None
    tick_timeout_seconds: Optional[float] = None
    max_workers: int = 1
    lock_name: str = "cce_update_cycle"
    lock_ttl_seconds: int = HOUR
    reference_path: Optional[str] = None

    storage: StorageConfig = None
    aggregation: AggregationConfig = None
    decay: DecayConfig = None
    relations: RelationConfig = None
    theatre: TheatreConfig = None
    alliance: AllianceConfig = None
    front: FrontConfig = None
    world: WorldConfig = None
    query: QueryConfig = None
    observability: ObservabilityConfig = None

    def __post_init__(self):
        self.storage = self.storage or StorageConfig()
        self.aggregation = self.aggregation or AggregationConfig()
        self.decay = self.decay or DecayConfig()
        self.relations = self.relations or RelationConfig()
        self.theatre = self.theatre or TheatreConfig()
        self.alliance = self.alliance or AllianceConfig()
        self.front = self.front or FrontConfig()
        self.world = self.world or WorldConfig()
        self.query = self.query or QueryConfig()
        self.observability = self.observability or ObservabilityConfig()

        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be >= 1")
        if self.item_timeout_seconds is not None and self.item_timeout_seconds <= 0:
            raise ConfigurationError("item_timeout_seconds must be positive")
        if self.tick_timeout_seconds is not None and self.tick_timeout_seconds <= 0:
            raise ConfigurationError("tick_timeout_seconds must be positive")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> EngineConfig:
        """Build configuration from process environment (read once, at the edge)."""
        env = os.environ if environ is None else environ
        store_path = env.get("CCE_STORE_PATH")
        storage = (
            StorageConfig(backend_type="sqlite", path=store_path)
            if store_path else StorageConfig()
        )
        try:
            max_workers = int(env.get("CCE_MAX_WORKERS", "1"))
            item_timeout = env.get("CCE_ITEM_TIMEOUT_SECONDS")
            tick_timeout = env.get("CCE_TICK_TIMEOUT_SECONDS")
            return cls(
                cce_enabled=_env_flag(env, "CCE_ENABLED", True),
                v2_enabled=_env_flag(env, "CCE_V2_ENABLED", False),
                max_workers=max_workers,
                item_timeout_seconds=float(item_timeout) if item_timeout else None,
                tick_timeout_seconds=float(tick_timeout) if tick_timeout else None,
                reference_path=env.get("CCE_REFERENCE_PATH") or None,
                storage=storage,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid engine environment: {e}") from e


@dataclass(frozen=True)
class UpdateOptions:
    """Per-invocation overrides for one update cycle."""
    min_tension: Optional[float] = None
    max_age_seconds: Optional[float] = None
    v2_enabled: Optional[bool] = None


class UpdateOrchestrator:
    """
    Runs update cycles against one store.

    LAYER FLOW:
    ===========
    frames -> conflict events -> conflict state -> relation edges
           -> theatre / alliance / front rollups -> world state

    Only one cycle runs at a time per store, enforced by a lease lock.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        store: Optional[StorageBackend] = None,
        reference: Optional[ReferenceDataProvider] = None,
        clock: Optional[Callable[[], int]] = None,
        observability: Optional[ObservabilityEngine] = None,
    ):
        self._config = config or EngineConfig()
        self._clock = clock or LogicalClock.live()
        self._store = store or create_backend(self._config.storage)
        if reference is None and self._config.reference_path:
            reference = StaticReferenceData.from_json(self._config.reference_path)
        self._reference = reference
        self._observability = observability or ObservabilityEngine(self._config.observability)
        self._owner = f"orchestrator-{os.getpid()}-{id(self):x}"

        runner = ItemRunner(
            max_workers=self._config.max_workers,
            item_timeout_seconds=self._config.item_timeout_seconds,
        )
        self._aggregator = EventAggregator(self._store, self._config.aggregation)
        self._conflict_state = ConflictStateAggregator(self._store, self._config.decay, runner)
        self._relations = RelationEdgeDeriver(self._store, self._config.relations)
        self._theatre = TheatreAggregator(self._store, self._reference, self._config.theatre)
        self._alliance = AlliancePressureAggregator(self._store, self._reference, self._config.alliance)
        self._front = FrontLineAggregator(self._store, self._reference, self._config.front)
        self._query = ConflictQueryService(
            self._store, self._config.query, self._observability, clock=self._clock
        )

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    @property
    def store(self) -> StorageBackend:
        return self._store

    @property
    def query(self) -> ConflictQueryService:
        return self._query

    @property
    def observability(self) -> ObservabilityEngine:
        return self._observability

    @property
    def config(self) -> EngineConfig:
        return self._config

    # =========================================================================
    # INPUT INTERFACE
    # =========================================================================

    def register_conflicts(self, conflicts: List[ConflictCore]) -> int:
        for core in conflicts:
            self._store.upsert_conflict(core)
        return len(conflicts)

    def ingest_frames(self, frames: List[EventFrame]) -> int:
        """Append event frames; returns how many were new."""
        return sum(1 for frame in frames if self._store.append_frame(frame))

    # =========================================================================
    # UPDATE CYCLE
    # =========================================================================

    def run_update_cycle(
        self,
        options: Optional[UpdateOptions] = None,
        cancel: Optional[threading.Event] = None,
    ) -> UpdateCycleResult:
        """
        Run one full tick.

        Never raises for partial failures. Raises TransientStoreError when
        the store is unreachable at the first read and TickLockHeldError
        when another cycle holds the tick lock.
        """
        options = options or UpdateOptions()
        now = self._clock()

        if not self._config.cce_enabled:
            logger.info("update cycle requested while CCE is disabled")
            return UpdateCycleResult(
                success=False,
                started_at=now,
                completed_at=now,
                disabled=True,
                message="CCE is disabled",
            )

        v2_enabled = self._config.v2_enabled if options.v2_enabled is None else options.v2_enabled
        min_tension = self._config.min_tension if options.min_tension is None else options.min_tension
        max_age = self._config.max_age_seconds if options.max_age_seconds is None else options.max_age_seconds

        self._store.ping()
        if not self._store.acquire_lock(
            self._config.lock_name, self._owner, now, self._config.lock_ttl_seconds
        ):
            raise TickLockHeldError(f"update cycle lock {self._config.lock_name!r} is held")

        started = time.monotonic()
        try:
            phases = self._run_phases(now, v2_enabled, min_tension, max_age, cancel)
            state_phase = next((p for p in phases if p.name == "conflict_state"), None)
            world = None
            if state_phase is not None and state_phase.status in (PhaseStatus.OK, PhaseStatus.PARTIAL):
                world = self._compute_world(now)
        finally:
            self._store.release_lock(self._config.lock_name, self._owner)

        success = all(p.status in (PhaseStatus.OK, PhaseStatus.PARTIAL) for p in phases)
        duration_ms = (time.monotonic() - started) * 1000
        self._observability.collect_metric("cce_cycle_duration_ms", duration_ms)
        self._observability.log_audit(
            action="update_cycle",
            outcome="success" if success else "failure",
            details=f"phases={len(phases)} v2={v2_enabled}",
        )
        logger.info("update cycle finished in %.1f ms (success=%s)", duration_ms, success)

        return UpdateCycleResult(
            success=success,
            started_at=now,
            completed_at=now + int(duration_ms // 1000),
            phases=tuple(phases),
            world=world,
            message="" if success else "one or more phases failed or were skipped",
        )

    def _phase_plan(self, now: int, v2_enabled: bool, min_tension: float, max_age: float):
        since = now - self._config.aggregation_lookback_seconds
        plan = [
            ("aggregate", lambda: self._aggregator.run(since, now + 1, now)),
            ("conflict_state", lambda: self._conflict_state.run(now)),
            ("relation_edges", lambda: self._relations.run(now, min_tension, max_age)),
        ]
        if v2_enabled:
            plan += [
                ("theatre", lambda: self._theatre.run(now)),
                ("alliance", lambda: self._alliance.run(now)),
                ("front", lambda: self._front.run(now)),
            ]
        return plan

    def _run_phases(
        self,
        now: int,
        v2_enabled: bool,
        min_tension: float,
        max_age: float,
        cancel: Optional[threading.Event],
    ) -> List[PhaseStats]:
        deadline = None
        if self._config.tick_timeout_seconds is not None:
            deadline = time.monotonic() + self._config.tick_timeout_seconds

        results: List[PhaseStats] = []
        blocked = False
        for name, run in self._phase_plan(now, v2_enabled, min_tension, max_age):
            if blocked:
                stats = self._skipped(name, now, ErrorCode.DEPENDENCY_BLOCKED,
                                      "conflict state phase failed", blocked_by="conflict_state")
            elif cancel is not None and cancel.is_set():
                stats = self._skipped(name, now, ErrorCode.CANCELLED, "update cycle cancelled")
            elif deadline is not None and time.monotonic() >= deadline:
                stats = self._skipped(name, now, ErrorCode.DEADLINE_EXCEEDED, "tick deadline exceeded")
            else:
                stats = self._run_phase(name, run, now)
                if name == "conflict_state" and stats.failed:
                    blocked = True

            self._observability.record_phase(stats)
            results.append(stats)
        return results

    def _run_phase(self, name: str, run: Callable[[], PhaseStats], now: int) -> PhaseStats:
        started = time.perf_counter()
        try:
            stats = run()
        except CCEError as e:
            logger.error("phase %s failed: %s", name, e)
            return PhaseStats(
                name=name,
                status=PhaseStatus.FAILED,
                duration_ms=(time.perf_counter() - started) * 1000,
                error=e.to_error(now),
            )
        except Exception as e:
            logger.exception("phase %s failed unexpectedly", name)
            return PhaseStats(
                name=name,
                status=PhaseStatus.FAILED,
                duration_ms=(time.perf_counter() - started) * 1000,
                error=Error(
                    code=ErrorCode.PHASE_FAILED,
                    message=f"{type(e).__name__}: {e}",
                    timestamp=now,
                ),
            )

        duration_ms = (time.perf_counter() - started) * 1000
        if name == "conflict_state":
            self._observability.collect_metric(
                "cce_conflicts_updated_total", stats.created + stats.updated
            )
        elif name == "relation_edges":
            for action in ("created", "updated", "decayed"):
                self._observability.collect_metric(
                    "cce_relation_edges_total", getattr(stats, action), {'action': action}
                )
        return PhaseStats(
            name=stats.name,
            status=stats.status,
            processed=stats.processed,
            created=stats.created,
            updated=stats.updated,
            skipped=stats.skipped,
            decayed=stats.decayed,
            duration_ms=duration_ms,
            errors=stats.errors,
        )

    @staticmethod
    def _skipped(
        name: str,
        now: int,
        code: ErrorCode,
        message: str,
        blocked_by: Optional[str] = None,
    ) -> PhaseStats:
        logger.warning("phase %s skipped: %s", name, message)
        return PhaseStats(
            name=name,
            status=PhaseStatus.SKIPPED,
            error=Error(code=code, message=message, timestamp=now),
            blocked_by=blocked_by,
        )

    def _compute_world(self, now: int) -> Optional[WorldState]:
        try:
            world = world_state_from_store(self._store, now, self._config.world)
        except CCEError as e:
            logger.error("world state rollup failed: %s", e)
            return None
        self._observability.collect_metric("cce_global_tension", world.global_tension)
        return world
