"""
Observability Layer

RESPONSIBILITY: Audit trail and metric series for update cycles and reads
ALLOWED INPUTS: PhaseStats, audit actions and metric samples from any layer
OUTPUTS: Per-layer audit entries, metric series, summary reports

WHAT THIS LAYER MUST NOT DO:
============================
- Change phase outcomes or retry anything
- Drop item failures (each skipped item gets its own audit entry)
- Read system time when a clock was injected

BOUNDARY ENFORCEMENT:
=====================
- Entries and points are immutable contract records
- Per-layer logs and metric series are bounded; the oldest entries are
  evicted first
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Iterable, List, Optional, Tuple
import threading
import time

import numpy as np

from ..contracts.base import stable_id
from ..contracts.events import (
    AuditEventType, AuditLogEntry, MetricPoint, PhaseStats,
)


def _wall_clock() -> int:
    return int(time.time())


# =============================================================================
# AUDIT LOG (one bounded log per layer)
# =============================================================================

class LayerAuditLog:
    """Bounded, thread-safe audit log for one layer (phase name or 'engine')."""

    def __init__(self, layer: str, capacity: int = 10000):
        self.layer = layer
        self._entries: Deque[AuditLogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, entry: AuditLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(
        self,
        since: Optional[int] = None,
        event_type: Optional[AuditEventType] = None,
    ) -> List[AuditLogEntry]:
        with self._lock:
            snapshot = list(self._entries)
        return [
            e for e in snapshot
            if (since is None or e.timestamp >= since)
            and (event_type is None or e.event_type == event_type)
        ]

    def __len__(self) -> int:
        return len(self._entries)


# =============================================================================
# METRICS
# =============================================================================

# name -> (kind, description)
CCE_METRICS: Dict[str, Tuple[str, str]] = {
    "cce_phase_duration_ms": ("timing", "Wall time of one update phase"),
    "cce_cycle_duration_ms": ("timing", "Wall time of one full update cycle"),
    "cce_items_processed_total": ("counter", "Items a phase looked at"),
    "cce_items_failed_total": ("counter", "Items a phase skipped with an error"),
    "cce_conflicts_updated_total": ("counter", "Conflict state rows created or updated"),
    "cce_relation_edges_total": ("counter", "Relation edges by action (created/updated/decayed)"),
    "cce_global_tension": ("gauge", "Global tension after the latest cycle"),
    "query_execution_time_ms": ("timing", "Read query latency"),
}


class MetricsCollector:
    """
    Bounded metric series keyed by metric name; each series keeps its
    newest `capacity` points.

    Labels are stored sorted so that label filters compare as sets.
    """

    def __init__(self, clock: Callable[[], int] = _wall_clock, capacity: int = 10000):
        self._clock = clock
        self._capacity = capacity
        self._series: Dict[str, Deque[MetricPoint]] = {
            name: deque(maxlen=capacity) for name in CCE_METRICS
        }
        self._lock = threading.Lock()

    @staticmethod
    def describe(metric_name: str) -> Optional[Tuple[str, str]]:
        return CCE_METRICS.get(metric_name)

    def record(self, metric_name: str, value: float, labels: Optional[Dict[str, str]] = None):
        point = MetricPoint(
            metric_name=metric_name,
            value=float(value),
            timestamp=self._clock(),
            labels=tuple(sorted((labels or {}).items())),
        )
        with self._lock:
            series = self._series.get(metric_name)
            if series is None:
                series = self._series[metric_name] = deque(maxlen=self._capacity)
            series.append(point)

    def get_metric(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> List[MetricPoint]:
        with self._lock:
            points = list(self._series.get(metric_name, ()))
        if not labels:
            return points
        wanted = set(labels.items())
        return [p for p in points if wanted <= set(p.labels)]

    def get_latest(self, metric_name: str) -> Optional[MetricPoint]:
        points = self.get_metric(metric_name)
        return points[-1] if points else None

    def compute_aggregates(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> Dict[str, float]:
        """count/sum/min/max/avg/p95 over the matching points; {} when none."""
        values = np.array([p.value for p in self.get_metric(metric_name, labels)], dtype=float)
        if values.size == 0:
            return {}
        return {
            'count': int(values.size),
            'sum': float(values.sum()),
            'min': float(values.min()),
            'max': float(values.max()),
            'avg': float(values.mean()),
            'p95': float(np.percentile(values, 95)),
        }


# =============================================================================
# OBSERVABILITY ENGINE
# =============================================================================

@dataclass(frozen=True)
class ObservabilityConfig:
    enable_metrics: bool = True
    max_entries_per_layer: int = 10000
    max_points_per_metric: int = 10000
    layers: Tuple[str, ...] = (
        'engine', 'aggregate', 'conflict_state', 'relation_edges',
        'theatre', 'alliance', 'front', 'query',
    )


class ObservabilityEngine:
    """
    Entry point the orchestrator and query service report into.

    A phase produces one PHASE audit entry, one ITEM_FAILURE entry per
    skipped item, and duration / processed / failed samples labelled with
    the phase name.
    """

    def __init__(
        self,
        config: Optional[ObservabilityConfig] = None,
        clock: Callable[[], int] = _wall_clock,
    ):
        self._config = config or ObservabilityConfig()
        self._clock = clock
        self._sequence = 0
        self._sequence_lock = threading.Lock()
        self._logs: Dict[str, LayerAuditLog] = {
            layer: LayerAuditLog(layer, self._config.max_entries_per_layer)
            for layer in self._config.layers
        }
        self._metrics = (
            MetricsCollector(clock, self._config.max_points_per_metric)
            if self._config.enable_metrics else None
        )

    def _log_for(self, layer: str) -> LayerAuditLog:
        log = self._logs.get(layer)
        if log is None:
            log = self._logs.setdefault(
                layer, LayerAuditLog(layer, self._config.max_entries_per_layer)
            )
        return log

    def log_audit(
        self,
        action: str,
        entity_id: Optional[str] = None,
        outcome: str = "success",
        details: str = "",
        layer: str = "engine",
        event_type: AuditEventType = AuditEventType.SYSTEM,
    ) -> AuditLogEntry:
        now = self._clock()
        with self._sequence_lock:
            self._sequence += 1
            sequence = self._sequence
        entry = AuditLogEntry(
            entry_id=stable_id("audit", layer, action, now, sequence),
            event_type=event_type,
            timestamp=now,
            layer=layer,
            action=action,
            entity_id=entity_id,
            metadata=(("outcome", outcome), ("details", details)),
        )
        self._log_for(layer).append(entry)
        return entry

    def collect_metric(self, metric_name: str, value: float, labels: Optional[Dict[str, str]] = None):
        if self._metrics is not None:
            self._metrics.record(metric_name, value, labels)

    def record_phase(self, stats: PhaseStats):
        self.log_audit(
            action=f"phase_{stats.status.value}",
            outcome=stats.status.value,
            details=(
                f"processed={stats.processed} created={stats.created} "
                f"updated={stats.updated} skipped={stats.skipped}"
            ),
            layer=stats.name,
            event_type=AuditEventType.PHASE,
        )
        for error in stats.errors:
            self.log_audit(
                action="item_skipped",
                entity_id=error.entity_id,
                outcome=error.code.name,
                details=error.message,
                layer=stats.name,
                event_type=AuditEventType.ITEM_FAILURE,
            )

        labels = {'phase': stats.name}
        self.collect_metric("cce_phase_duration_ms", stats.duration_ms, labels)
        self.collect_metric("cce_items_processed_total", stats.processed, labels)
        self.collect_metric("cce_items_failed_total", len(stats.errors), labels)

    # -------------------------------------------------------------------------
    # Read access
    # -------------------------------------------------------------------------

    def get_layer_log(self, layer_name: str, since: Optional[int] = None) -> List[AuditLogEntry]:
        log = self._logs.get(layer_name)
        return log.entries(since=since) if log else []

    def get_unified_log(
        self,
        since: Optional[int] = None,
        layers: Optional[Iterable[str]] = None,
    ) -> List[AuditLogEntry]:
        """Entries of the given layers (all by default), oldest first."""
        selected = list(layers) if layers else list(self._logs)
        merged = [
            entry
            for layer in selected if layer in self._logs
            for entry in self._logs[layer].entries(since=since)
        ]
        return sorted(merged, key=lambda e: e.timestamp)

    def get_metrics(self) -> Optional[MetricsCollector]:
        return self._metrics

    def generate_audit_report(self, since: Optional[int] = None) -> Dict:
        entries = self.get_unified_log(since=since)
        by_layer: Dict[str, int] = {}
        by_type: Dict[str, int] = {}
        for entry in entries:
            by_layer[entry.layer] = by_layer.get(entry.layer, 0) + 1
            by_type[entry.event_type.value] = by_type.get(entry.event_type.value, 0) + 1

        return {
            'total_entries': len(entries),
            'by_layer': by_layer,
            'by_event_type': by_type,
            'time_range': {
                'start': entries[0].timestamp if entries else None,
                'end': entries[-1].timestamp if entries else None,
            },
            'generated_at': self._clock(),
        }
