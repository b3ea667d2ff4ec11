"""
Query Layer

RESPONSIBILITY: Read-only views over live state
ALLOWED INPUTS: Query parameters (sort metric, filters, pagination)
OUTPUTS: QueryResult with explicit success/failure

WHAT THIS LAYER MUST NOT DO:
============================
- Mutate any state
- Recompute or decay stored values
- Hide invalid parameters behind silent defaults

BOUNDARY ENFORCEMENT:
=====================
- ONLY reads through the StorageBackend interface
- Invalid parameters return a failed QueryResult (INVALID_QUERY)
- Store failures return a failed QueryResult, never raise
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, List, Optional
import logging
import time

from ..contracts.base import CCEError, Error, ErrorCode
from ..contracts.events import QueryResult, QueryType
from ..core.relations import relations_for_entity, relation_stats, RELATION_TYPES
from ..core.world import WorldConfig, world_state_from_store
from ..observability import ObservabilityEngine
from ..storage import StorageBackend

logger = logging.getLogger(__name__)


CONFLICT_METRICS = ("pressure", "momentum", "tension", "instability")
THEATRE_METRICS = ("tension", "momentum", "heat", "velocity")


class InvalidQuery(ValueError):
    pass


@dataclass(frozen=True)
class QueryConfig:
    """Configuration for the query service."""
    default_limit: int = 20
    max_limit: int = 100


class ConflictQueryService:
    """
    Read API over the live state tables.

    Every public method returns a QueryResult; results are plain dicts
    ready for JSON encoding.
    """

    def __init__(
        self,
        store: StorageBackend,
        config: Optional[QueryConfig] = None,
        observability: Optional[ObservabilityEngine] = None,
        clock: Callable[[], int] = lambda: int(time.time()),
    ):
        self._store = store
        self._config = config or QueryConfig()
        self._observability = observability
        self._clock = clock

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _execute(self, query_type: QueryType, handler: Callable[[], tuple]) -> QueryResult:
        start = time.perf_counter()
        try:
            rows, total = handler()
        except InvalidQuery as e:
            return QueryResult.failed(query_type, Error(
                code=ErrorCode.INVALID_QUERY,
                message=str(e),
                timestamp=self._clock(),
            ))
        except CCEError as e:
            logger.error("query %s failed: %s", query_type.value, e)
            return QueryResult.failed(query_type, e.to_error(self._clock()))

        elapsed_ms = (time.perf_counter() - start) * 1000
        if self._observability:
            self._observability.collect_metric(
                "query_execution_time_ms", elapsed_ms, {'query_type': query_type.value}
            )
        return QueryResult(
            query_type=query_type,
            success=True,
            results=tuple(rows),
            total=total,
            execution_time_ms=elapsed_ms,
        )

    def _page(self, rows: List[dict], limit: Optional[int], offset: int) -> tuple:
        limit = self._config.default_limit if limit is None else limit
        if limit < 1:
            raise InvalidQuery("limit must be >= 1")
        if offset < 0:
            raise InvalidQuery("offset must be >= 0")
        limit = min(limit, self._config.max_limit)
        return rows[offset:offset + limit], len(rows)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def top_conflicts(
        self,
        metric: str = "pressure",
        limit: Optional[int] = None,
        offset: int = 0,
        theatre: Optional[str] = None,
    ) -> QueryResult:
        def handler():
            if metric not in CONFLICT_METRICS:
                raise InvalidQuery(
                    f"metric must be one of {', '.join(CONFLICT_METRICS)}, got {metric!r}"
                )
            conflicts = {c.id: c for c in self._store.list_conflicts()}
            rows = []
            for state in self._store.list_conflict_states():
                core = conflicts.get(state.conflict_id)
                if core is None or (theatre and core.theatre != theatre):
                    continue
                row = state.to_dict()
                row.update({
                    'actor_a': core.actor_a,
                    'actor_b': core.actor_b,
                    'theatre': core.theatre,
                    'importance': core.importance,
                })
                rows.append(row)
            rows.sort(key=lambda r: (-r[metric], r['conflict_id']))
            return self._page(rows, limit, offset)
        return self._execute(QueryType.TOP_CONFLICTS, handler)

    def theatres(self, min_tension: float = 0.0, sort: str = "tension") -> QueryResult:
        def handler():
            if sort not in THEATRE_METRICS:
                raise InvalidQuery(
                    f"sort must be one of {', '.join(THEATRE_METRICS)}, got {sort!r}"
                )
            rows = [
                s.to_dict() for s in self._store.list_theatre_states()
                if s.tension >= min_tension
            ]
            rows.sort(key=lambda r: (-r[sort], r['theatre']))
            return rows, len(rows)
        return self._execute(QueryType.THEATRES, handler)

    def fronts(self, theatre: Optional[str] = None, min_intensity: float = 0.0) -> QueryResult:
        def handler():
            rows = [
                s.to_dict() for s in self._store.list_front_states()
                if (theatre is None or s.theatre == theatre)
                and s.intensity >= min_intensity
            ]
            rows.sort(key=lambda r: (-r['intensity'], r['front_id']))
            return rows, len(rows)
        return self._execute(QueryType.FRONTS, handler)

    def relations(
        self,
        code: Optional[str] = None,
        min_strength: float = 0.0,
        relation_type: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> QueryResult:
        def handler():
            if relation_type is not None and relation_type not in RELATION_TYPES:
                raise InvalidQuery(
                    f"type must be one of {', '.join(RELATION_TYPES)}, got {relation_type!r}"
                )
            edges = self._store.list_relations()
            if code:
                selected = relations_for_entity(edges, code.upper(), min_strength, relation_type)
            else:
                selected = sorted(
                    (e for e in edges
                     if e.relation_strength >= min_strength
                     and (relation_type is None or e.relation_type == relation_type)),
                    key=lambda e: (-e.relation_strength, e.key)
                )
            return self._page([e.to_dict() for e in selected], limit, offset)
        return self._execute(QueryType.RELATIONS, handler)

    def relation_stats(self) -> QueryResult:
        def handler():
            return [relation_stats(self._store.list_relations())], 1
        return self._execute(QueryType.RELATION_STATS, handler)

    def alliances(self, min_pressure: float = 0.0) -> QueryResult:
        def handler():
            rows = [
                p.to_dict() for p in self._store.list_alliance_pressure()
                if p.pressure >= min_pressure
            ]
            rows.sort(key=lambda r: (-r['pressure'], r['alliance_id']))
            return rows, len(rows)
        return self._execute(QueryType.ALLIANCES, handler)

    def world(self, config: Optional[WorldConfig] = None) -> QueryResult:
        def handler():
            state = world_state_from_store(self._store, self._clock(), config)
            return [state.to_dict()], 1
        return self._execute(QueryType.WORLD, handler)
