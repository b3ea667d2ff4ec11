"""
Event Store Layer

RESPONSIBILITY: Typed persistence for conflicts, events and live state
ALLOWED INPUTS: Contract records from the aggregators
OUTPUTS: Contract records (point lookups, range queries)

WHAT THIS LAYER MUST NOT DO:
============================
- Compute or interpret state values
- Clamp, decay or otherwise repair records
- Delete relation edges or conflict events
- Leak storage encodings (JSON, rows) to callers

BOUNDARY ENFORCEMENT:
=====================
- Every upsert of one record is a single atomic write
- Conflict events are append-only; a (conflict_id, window_start) pair is
  written at most once
- Transient backend failures surface as TransientStoreError after
  bounded retries; undecodable rows surface as MalformedRecordError
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import logging
import os
import sqlite3
import threading

from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from ..contracts.base import (
    ConfigurationError, TransientStoreError, canonical_pair
)
from ..contracts.events import (
    ConflictCore, EventFrame, ConflictEvent, ConflictStateLive,
    TheatreStateLive, AlliancePressureLive, FrontLineState, RelationEdge,
)
from . import codec

logger = logging.getLogger(__name__)

RelationKey = Tuple[str, str, str, str]


# =============================================================================
# STORAGE INTERFACES (Dependency Inversion)
# =============================================================================

class StorageBackend:
    """
    Abstract event store interface.

    Implementations can use different storage systems (memory, SQLite,
    a remote database) while keeping the same record semantics.
    """

    # --- conflicts -----------------------------------------------------------

    def upsert_conflict(self, core: ConflictCore) -> None:
        raise NotImplementedError

    def get_conflict(self, conflict_id: str) -> Optional[ConflictCore]:
        raise NotImplementedError

    def find_conflict(self, actor_a: str, actor_b: str) -> Optional[ConflictCore]:
        """Look up a conflict by actor pair in either order."""
        raise NotImplementedError

    def list_conflicts(self) -> List[ConflictCore]:
        raise NotImplementedError

    # --- event frames & conflict events --------------------------------------

    def append_frame(self, frame: EventFrame) -> bool:
        """Append an event frame; returns False if the id already exists."""
        raise NotImplementedError

    def get_frames(self, since: int, until: int) -> List[EventFrame]:
        """Frames with since <= created_at < until, oldest first."""
        raise NotImplementedError

    def append_event(self, event: ConflictEvent) -> bool:
        """
        Append a conflict event.

        Returns False (and writes nothing) if an event already exists for
        the same (conflict_id, window_start).
        """
        raise NotImplementedError

    def has_event(self, conflict_id: str, window_start: int) -> bool:
        raise NotImplementedError

    def get_events(
        self,
        conflict_id: Optional[str] = None,
        created_after: Optional[int] = None,
        created_until: Optional[int] = None,
        occurred_since: Optional[int] = None,
    ) -> List[ConflictEvent]:
        """
        Range query over conflict events.

        created_after is exclusive, created_until and occurred_since are
        inclusive. Results are ordered by (occurred_at, id).
        """
        raise NotImplementedError

    # --- live state -----------------------------------------------------------

    def get_conflict_state(self, conflict_id: str) -> Optional[ConflictStateLive]:
        raise NotImplementedError

    def list_conflict_states(self) -> List[ConflictStateLive]:
        raise NotImplementedError

    def upsert_conflict_state(self, state: ConflictStateLive) -> None:
        raise NotImplementedError

    def get_theatre_state(self, theatre: str) -> Optional[TheatreStateLive]:
        raise NotImplementedError

    def list_theatre_states(self) -> List[TheatreStateLive]:
        raise NotImplementedError

    def upsert_theatre_state(self, state: TheatreStateLive) -> None:
        raise NotImplementedError

    def list_alliance_pressure(self) -> List[AlliancePressureLive]:
        raise NotImplementedError

    def upsert_alliance_pressure(self, state: AlliancePressureLive) -> None:
        raise NotImplementedError

    def get_front_state(self, front_id: str) -> Optional[FrontLineState]:
        raise NotImplementedError

    def list_front_states(self) -> List[FrontLineState]:
        raise NotImplementedError

    def upsert_front_state(self, state: FrontLineState) -> None:
        raise NotImplementedError

    # --- relation edges --------------------------------------------------------

    def get_relation(self, key: RelationKey) -> Optional[RelationEdge]:
        raise NotImplementedError

    def list_relations(self, source: Optional[str] = None) -> List[RelationEdge]:
        raise NotImplementedError

    def upsert_relation(self, edge: RelationEdge) -> bool:
        """Insert or update by natural key; returns True if created."""
        raise NotImplementedError

    # --- tick lock ---------------------------------------------------------------

    def acquire_lock(self, name: str, owner: str, now: int, ttl_seconds: int) -> bool:
        """
        Take a lease lock.

        Succeeds if the lock is free, already held by owner, or its lease
        is older than ttl_seconds.
        """
        raise NotImplementedError

    def release_lock(self, name: str, owner: str) -> None:
        raise NotImplementedError

    def ping(self) -> None:
        """Raise TransientStoreError if the store is unreachable."""
        raise NotImplementedError

    def close(self) -> None:
        pass


# =============================================================================
# IN-MEMORY STORAGE BACKEND (Reference Implementation)
# =============================================================================

class InMemoryStorageBackend(StorageBackend):
    """
    In-memory implementation of the event store.

    Suitable for testing and single-process deployments. A single
    re-entrant lock makes every operation atomic.
    """

    def __init__(self):
        self._lock = threading.RLock()

        self._conflicts: Dict[str, ConflictCore] = {}
        self._pair_index: Dict[Tuple[str, str], str] = {}

        self._frames: Dict[str, EventFrame] = {}

        # Append-only event log plus (conflict_id, window_start) index
        self._events: List[ConflictEvent] = []
        self._event_windows: Dict[Tuple[str, int], str] = {}

        self._conflict_states: Dict[str, ConflictStateLive] = {}
        self._theatre_states: Dict[str, TheatreStateLive] = {}
        self._alliance_pressure: Dict[str, AlliancePressureLive] = {}
        self._front_states: Dict[str, FrontLineState] = {}
        self._relations: Dict[RelationKey, RelationEdge] = {}

        self._locks: Dict[str, Tuple[str, int]] = {}

    def upsert_conflict(self, core: ConflictCore) -> None:
        with self._lock:
            pair = canonical_pair(core.actor_a, core.actor_b)
            existing = self._pair_index.get(pair)
            if existing is not None and existing != core.id:
                raise ValueError(
                    f"Actor pair {pair} already tracked by conflict {existing}"
                )
            self._conflicts[core.id] = core
            self._pair_index[pair] = core.id

    def get_conflict(self, conflict_id: str) -> Optional[ConflictCore]:
        with self._lock:
            return self._conflicts.get(conflict_id)

    def find_conflict(self, actor_a: str, actor_b: str) -> Optional[ConflictCore]:
        if actor_a == actor_b:
            return None
        with self._lock:
            conflict_id = self._pair_index.get(canonical_pair(actor_a, actor_b))
            return self._conflicts.get(conflict_id) if conflict_id else None

    def list_conflicts(self) -> List[ConflictCore]:
        with self._lock:
            return sorted(self._conflicts.values(), key=lambda c: c.id)

    def append_frame(self, frame: EventFrame) -> bool:
        with self._lock:
            if frame.id in self._frames:
                return False
            self._frames[frame.id] = frame
            return True

    def get_frames(self, since: int, until: int) -> List[EventFrame]:
        with self._lock:
            frames = [
                f for f in self._frames.values()
                if since <= f.created_at < until
            ]
        return sorted(frames, key=lambda f: (f.created_at, f.id))

    def append_event(self, event: ConflictEvent) -> bool:
        with self._lock:
            window = (event.conflict_id, event.window_start)
            if window in self._event_windows:
                return False
            self._events.append(event)
            self._event_windows[window] = event.id
            return True

    def has_event(self, conflict_id: str, window_start: int) -> bool:
        with self._lock:
            return (conflict_id, window_start) in self._event_windows

    def get_events(
        self,
        conflict_id: Optional[str] = None,
        created_after: Optional[int] = None,
        created_until: Optional[int] = None,
        occurred_since: Optional[int] = None,
    ) -> List[ConflictEvent]:
        with self._lock:
            events = list(self._events)

        if conflict_id is not None:
            events = [e for e in events if e.conflict_id == conflict_id]
        if created_after is not None:
            events = [e for e in events if e.created_at > created_after]
        if created_until is not None:
            events = [e for e in events if e.created_at <= created_until]
        if occurred_since is not None:
            events = [e for e in events if e.occurred_at >= occurred_since]

        return sorted(events, key=lambda e: (e.occurred_at, e.id))

    def get_conflict_state(self, conflict_id: str) -> Optional[ConflictStateLive]:
        with self._lock:
            return self._conflict_states.get(conflict_id)

    def list_conflict_states(self) -> List[ConflictStateLive]:
        with self._lock:
            return sorted(self._conflict_states.values(), key=lambda s: s.conflict_id)

    def upsert_conflict_state(self, state: ConflictStateLive) -> None:
        with self._lock:
            self._conflict_states[state.conflict_id] = state

    def get_theatre_state(self, theatre: str) -> Optional[TheatreStateLive]:
        with self._lock:
            return self._theatre_states.get(theatre)

    def list_theatre_states(self) -> List[TheatreStateLive]:
        with self._lock:
            return sorted(self._theatre_states.values(), key=lambda s: s.theatre)

    def upsert_theatre_state(self, state: TheatreStateLive) -> None:
        with self._lock:
            self._theatre_states[state.theatre] = state

    def list_alliance_pressure(self) -> List[AlliancePressureLive]:
        with self._lock:
            return sorted(self._alliance_pressure.values(), key=lambda s: s.alliance_id)

    def upsert_alliance_pressure(self, state: AlliancePressureLive) -> None:
        with self._lock:
            self._alliance_pressure[state.alliance_id] = state

    def get_front_state(self, front_id: str) -> Optional[FrontLineState]:
        with self._lock:
            return self._front_states.get(front_id)

    def list_front_states(self) -> List[FrontLineState]:
        with self._lock:
            return sorted(self._front_states.values(), key=lambda s: s.front_id)

    def upsert_front_state(self, state: FrontLineState) -> None:
        with self._lock:
            self._front_states[state.front_id] = state

    def get_relation(self, key: RelationKey) -> Optional[RelationEdge]:
        with self._lock:
            return self._relations.get(key)

    def list_relations(self, source: Optional[str] = None) -> List[RelationEdge]:
        with self._lock:
            edges = list(self._relations.values())
        if source is not None:
            edges = [e for e in edges if e.source == source]
        return sorted(edges, key=lambda e: e.key)

    def upsert_relation(self, edge: RelationEdge) -> bool:
        with self._lock:
            created = edge.key not in self._relations
            self._relations[edge.key] = edge
            return created

    def acquire_lock(self, name: str, owner: str, now: int, ttl_seconds: int) -> bool:
        with self._lock:
            held = self._locks.get(name)
            if held is not None:
                holder, acquired_at = held
                if holder != owner and now - acquired_at < ttl_seconds:
                    return False
            self._locks[name] = (owner, now)
            return True

    def release_lock(self, name: str, owner: str) -> None:
        with self._lock:
            held = self._locks.get(name)
            if held is not None and held[0] == owner:
                del self._locks[name]

    def ping(self) -> None:
        return None


# =============================================================================
# SQLITE STORAGE BACKEND (Persistent)
# =============================================================================

_SCHEMA = """
CREATE TABLE IF NOT EXISTS conflicts (
    id TEXT PRIMARY KEY,
    actor_a TEXT NOT NULL,
    actor_b TEXT NOT NULL,
    data TEXT NOT NULL,
    UNIQUE (actor_a, actor_b)
);
CREATE TABLE IF NOT EXISTS event_frames (
    id TEXT PRIMARY KEY,
    created_at INTEGER NOT NULL,
    data TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_event_frames_created ON event_frames (created_at);
CREATE TABLE IF NOT EXISTS conflict_events (
    id TEXT PRIMARY KEY,
    conflict_id TEXT NOT NULL,
    window_start INTEGER NOT NULL,
    occurred_at INTEGER NOT NULL,
    created_at INTEGER NOT NULL,
    data TEXT NOT NULL,
    UNIQUE (conflict_id, window_start)
);
CREATE INDEX IF NOT EXISTS idx_conflict_events_created ON conflict_events (created_at);
CREATE INDEX IF NOT EXISTS idx_conflict_events_conflict ON conflict_events (conflict_id, occurred_at);
CREATE TABLE IF NOT EXISTS conflict_state_live (
    conflict_id TEXT PRIMARY KEY,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS theatre_state_live (
    theatre TEXT PRIMARY KEY,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS alliance_pressure_live (
    alliance_id TEXT PRIMARY KEY,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS front_line_state (
    front_id TEXT PRIMARY KEY,
    data TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS relation_edges (
    entity_a TEXT NOT NULL,
    entity_b TEXT NOT NULL,
    relation_type TEXT NOT NULL,
    source TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (entity_a, entity_b, relation_type, source)
);
CREATE TABLE IF NOT EXISTS tick_locks (
    name TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    acquired_at INTEGER NOT NULL
);
"""


def _is_busy(exc: BaseException) -> bool:
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return 'locked' in message or 'busy' in message


class SQLiteStorageBackend(StorageBackend):
    """
    SQLite implementation of the event store.

    Records are stored as JSON documents next to their key columns.
    'database is locked' errors are retried with exponential backoff before
    surfacing as TransientStoreError.
    """

    def __init__(
        self,
        path: str,
        max_retries: int = 3,
        retry_backoff_seconds: float = 0.05,
        busy_timeout_ms: int = 5000,
    ):
        self._path = path
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff_seconds
        self._lock = threading.RLock()

        if path != ":memory:":
            directory = os.path.dirname(os.path.abspath(path))
            os.makedirs(directory, exist_ok=True)

        try:
            self._conn = sqlite3.connect(path, check_same_thread=False)
            self._conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise TransientStoreError(f"Cannot open store at {path}: {e}") from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # -------------------------------------------------------------------------
    # Execution helpers
    # -------------------------------------------------------------------------

    def _run(self, operation, *args):
        retrying = Retrying(
            stop=stop_after_attempt(self._max_retries + 1),
            wait=wait_exponential(multiplier=self._retry_backoff, max=self._retry_backoff * 8),
            retry=retry_if_exception(_is_busy),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    with self._lock:
                        with self._conn:
                            return operation(self._conn, *args)
        except sqlite3.OperationalError as e:
            raise TransientStoreError(f"SQLite operation failed: {e}") from e

    def _log_retry(self, retry_state) -> None:
        logger.warning(
            "store busy, retrying (%d/%d): %s",
            retry_state.attempt_number, self._max_retries,
            retry_state.outcome.exception()
        )

    def _fetch_one(self, sql: str, params: tuple) -> Optional[str]:
        def op(conn):
            row = conn.execute(sql, params).fetchone()
            return row[0] if row else None
        return self._run(op)

    def _fetch_all(self, sql: str, params: tuple = ()) -> List[str]:
        def op(conn):
            return [row[0] for row in conn.execute(sql, params).fetchall()]
        return self._run(op)

    def _write(self, sql: str, params: tuple) -> int:
        def op(conn):
            return conn.execute(sql, params).rowcount
        return self._run(op)

    # -------------------------------------------------------------------------
    # Conflicts
    # -------------------------------------------------------------------------

    def upsert_conflict(self, core: ConflictCore) -> None:
        try:
            self._write(
                "INSERT INTO conflicts (id, actor_a, actor_b, data) VALUES (?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET actor_a = excluded.actor_a, "
                "actor_b = excluded.actor_b, data = excluded.data",
                (core.id, core.actor_a, core.actor_b, codec.encode_conflict(core))
            )
        except sqlite3.IntegrityError as e:
            raise ValueError(
                f"Actor pair ({core.actor_a}, {core.actor_b}) already tracked: {e}"
            ) from e

    def get_conflict(self, conflict_id: str) -> Optional[ConflictCore]:
        data = self._fetch_one("SELECT data FROM conflicts WHERE id = ?", (conflict_id,))
        return codec.decode_conflict(data) if data else None

    def find_conflict(self, actor_a: str, actor_b: str) -> Optional[ConflictCore]:
        if actor_a == actor_b:
            return None
        a, b = canonical_pair(actor_a, actor_b)
        data = self._fetch_one(
            "SELECT data FROM conflicts WHERE actor_a = ? AND actor_b = ?", (a, b)
        )
        return codec.decode_conflict(data) if data else None

    def list_conflicts(self) -> List[ConflictCore]:
        rows = self._fetch_all("SELECT data FROM conflicts ORDER BY id")
        return [codec.decode_conflict(r) for r in rows]

    # -------------------------------------------------------------------------
    # Frames & events
    # -------------------------------------------------------------------------

    def append_frame(self, frame: EventFrame) -> bool:
        count = self._write(
            "INSERT OR IGNORE INTO event_frames (id, created_at, data) VALUES (?, ?, ?)",
            (frame.id, frame.created_at, codec.encode_frame(frame))
        )
        return count > 0

    def get_frames(self, since: int, until: int) -> List[EventFrame]:
        rows = self._fetch_all(
            "SELECT data FROM event_frames WHERE created_at >= ? AND created_at < ? "
            "ORDER BY created_at, id",
            (since, until)
        )
        return [codec.decode_frame(r) for r in rows]

    def append_event(self, event: ConflictEvent) -> bool:
        count = self._write(
            "INSERT OR IGNORE INTO conflict_events "
            "(id, conflict_id, window_start, occurred_at, created_at, data) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                event.id, event.conflict_id, event.window_start,
                event.occurred_at, event.created_at, codec.encode_event(event)
            )
        )
        return count > 0

    def has_event(self, conflict_id: str, window_start: int) -> bool:
        data = self._fetch_one(
            "SELECT id FROM conflict_events WHERE conflict_id = ? AND window_start = ?",
            (conflict_id, window_start)
        )
        return data is not None

    def get_events(
        self,
        conflict_id: Optional[str] = None,
        created_after: Optional[int] = None,
        created_until: Optional[int] = None,
        occurred_since: Optional[int] = None,
    ) -> List[ConflictEvent]:
        clauses = []
        params: List[object] = []
        if conflict_id is not None:
            clauses.append("conflict_id = ?")
            params.append(conflict_id)
        if created_after is not None:
            clauses.append("created_at > ?")
            params.append(created_after)
        if created_until is not None:
            clauses.append("created_at <= ?")
            params.append(created_until)
        if occurred_since is not None:
            clauses.append("occurred_at >= ?")
            params.append(occurred_since)

        sql = "SELECT data FROM conflict_events"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY occurred_at, id"
        return [codec.decode_event(r) for r in self._fetch_all(sql, tuple(params))]

    # -------------------------------------------------------------------------
    # Live state
    # -------------------------------------------------------------------------

    def _upsert_doc(self, table: str, key_column: str, key: str, data: str) -> None:
        self._write(
            f"INSERT INTO {table} ({key_column}, data) VALUES (?, ?) "
            f"ON CONFLICT({key_column}) DO UPDATE SET data = excluded.data",
            (key, data)
        )

    def get_conflict_state(self, conflict_id: str) -> Optional[ConflictStateLive]:
        data = self._fetch_one(
            "SELECT data FROM conflict_state_live WHERE conflict_id = ?", (conflict_id,)
        )
        return codec.decode_conflict_state(data) if data else None

    def list_conflict_states(self) -> List[ConflictStateLive]:
        rows = self._fetch_all("SELECT data FROM conflict_state_live ORDER BY conflict_id")
        return [codec.decode_conflict_state(r) for r in rows]

    def upsert_conflict_state(self, state: ConflictStateLive) -> None:
        self._upsert_doc(
            "conflict_state_live", "conflict_id", state.conflict_id,
            codec.encode_conflict_state(state)
        )

    def get_theatre_state(self, theatre: str) -> Optional[TheatreStateLive]:
        data = self._fetch_one(
            "SELECT data FROM theatre_state_live WHERE theatre = ?", (theatre,)
        )
        return codec.decode_theatre_state(data) if data else None

    def list_theatre_states(self) -> List[TheatreStateLive]:
        rows = self._fetch_all("SELECT data FROM theatre_state_live ORDER BY theatre")
        return [codec.decode_theatre_state(r) for r in rows]

    def upsert_theatre_state(self, state: TheatreStateLive) -> None:
        self._upsert_doc(
            "theatre_state_live", "theatre", state.theatre,
            codec.encode_theatre_state(state)
        )

    def list_alliance_pressure(self) -> List[AlliancePressureLive]:
        rows = self._fetch_all("SELECT data FROM alliance_pressure_live ORDER BY alliance_id")
        return [codec.decode_alliance_pressure(r) for r in rows]

    def upsert_alliance_pressure(self, state: AlliancePressureLive) -> None:
        self._upsert_doc(
            "alliance_pressure_live", "alliance_id", state.alliance_id,
            codec.encode_alliance_pressure(state)
        )

    def get_front_state(self, front_id: str) -> Optional[FrontLineState]:
        data = self._fetch_one(
            "SELECT data FROM front_line_state WHERE front_id = ?", (front_id,)
        )
        return codec.decode_front_state(data) if data else None

    def list_front_states(self) -> List[FrontLineState]:
        rows = self._fetch_all("SELECT data FROM front_line_state ORDER BY front_id")
        return [codec.decode_front_state(r) for r in rows]

    def upsert_front_state(self, state: FrontLineState) -> None:
        self._upsert_doc(
            "front_line_state", "front_id", state.front_id,
            codec.encode_front_state(state)
        )

    # -------------------------------------------------------------------------
    # Relation edges
    # -------------------------------------------------------------------------

    def get_relation(self, key: RelationKey) -> Optional[RelationEdge]:
        data = self._fetch_one(
            "SELECT data FROM relation_edges WHERE entity_a = ? AND entity_b = ? "
            "AND relation_type = ? AND source = ?",
            key
        )
        return codec.decode_relation(data) if data else None

    def list_relations(self, source: Optional[str] = None) -> List[RelationEdge]:
        if source is None:
            rows = self._fetch_all(
                "SELECT data FROM relation_edges "
                "ORDER BY entity_a, entity_b, relation_type, source"
            )
        else:
            rows = self._fetch_all(
                "SELECT data FROM relation_edges WHERE source = ? "
                "ORDER BY entity_a, entity_b, relation_type, source",
                (source,)
            )
        return [codec.decode_relation(r) for r in rows]

    def upsert_relation(self, edge: RelationEdge) -> bool:
        def op(conn):
            exists = conn.execute(
                "SELECT 1 FROM relation_edges WHERE entity_a = ? AND entity_b = ? "
                "AND relation_type = ? AND source = ?",
                edge.key
            ).fetchone()
            conn.execute(
                "INSERT INTO relation_edges "
                "(entity_a, entity_b, relation_type, source, data) VALUES (?, ?, ?, ?, ?) "
                "ON CONFLICT(entity_a, entity_b, relation_type, source) "
                "DO UPDATE SET data = excluded.data",
                edge.key + (codec.encode_relation(edge),)
            )
            return exists is None
        return self._run(op)

    # -------------------------------------------------------------------------
    # Tick lock
    # -------------------------------------------------------------------------

    def acquire_lock(self, name: str, owner: str, now: int, ttl_seconds: int) -> bool:
        def op(conn):
            row = conn.execute(
                "SELECT owner, acquired_at FROM tick_locks WHERE name = ?", (name,)
            ).fetchone()
            if row is not None:
                holder, acquired_at = row
                if holder != owner and now - acquired_at < ttl_seconds:
                    return False
            conn.execute(
                "INSERT INTO tick_locks (name, owner, acquired_at) VALUES (?, ?, ?) "
                "ON CONFLICT(name) DO UPDATE SET owner = excluded.owner, "
                "acquired_at = excluded.acquired_at",
                (name, owner, now)
            )
            return True
        return self._run(op)

    def release_lock(self, name: str, owner: str) -> None:
        self._write("DELETE FROM tick_locks WHERE name = ? AND owner = ?", (name, owner))

    def ping(self) -> None:
        self._fetch_one("SELECT 1", ())


# =============================================================================
# BACKEND FACTORY
# =============================================================================

@dataclass(frozen=True)
class StorageConfig:
    """Configuration for the event store."""
    backend_type: str = "memory"  # "memory" or "sqlite"
    path: Optional[str] = None
    max_retries: int = 3
    retry_backoff_seconds: float = 0.05


def create_backend(config: Optional[StorageConfig] = None) -> StorageBackend:
    """Create a storage backend based on configuration."""
    config = config or StorageConfig()
    if config.backend_type == "memory":
        return InMemoryStorageBackend()
    if config.backend_type == "sqlite":
        if not config.path:
            raise ConfigurationError("sqlite backend requires a path")
        return SQLiteStorageBackend(
            config.path,
            max_retries=config.max_retries,
            retry_backoff_seconds=config.retry_backoff_seconds,
        )
    raise ConfigurationError(f"Unknown storage backend: {config.backend_type}")
