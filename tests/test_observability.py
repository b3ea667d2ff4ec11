"""
Observability, Clock and Reference Data Tests
=============================================

INVARIANTS TESTED:
1. Every phase leaves one audit entry plus one entry per skipped item
2. Audit logs and metric series never grow past their configured size
3. Manual and replayed clocks are deterministic
4. Reference data loading fails loudly on bad input
"""

import json

import pytest

from conflict_engine.contracts.base import ConfigurationError, Error, ErrorCode
from conflict_engine.contracts.events import AuditEventType, PhaseStats, PhaseStatus
from conflict_engine.observability import ObservabilityConfig, ObservabilityEngine
from conflict_engine.reference import StaticReferenceData
from conflict_engine.temporal import ClockExhausted, LogicalClock

from .fixtures import NOW


# =============================================================================
# OBSERVABILITY ENGINE
# =============================================================================

class TestObservabilityEngine:

    def partial_phase(self):
        return PhaseStats(
            name="conflict_state",
            status=PhaseStatus.PARTIAL,
            processed=3,
            updated=2,
            skipped=1,
            duration_ms=12.5,
            errors=(Error(ErrorCode.MALFORMED_RECORD, "bad row", NOW, entity_id="RUS_USA"),),
        )

    def test_record_phase_audits_items(self):
        obs = ObservabilityEngine(clock=lambda: NOW)
        obs.record_phase(self.partial_phase())

        entries = obs.get_layer_log("conflict_state")
        assert [e.event_type for e in entries] == [AuditEventType.PHASE, AuditEventType.ITEM_FAILURE]
        assert entries[0].action == "phase_partial"
        assert entries[1].entity_id == "RUS_USA"
        assert dict(entries[1].metadata)["outcome"] == "MALFORMED_RECORD"

    def test_record_phase_metrics_are_labelled(self):
        obs = ObservabilityEngine(clock=lambda: NOW)
        obs.record_phase(self.partial_phase())
        obs.record_phase(PhaseStats(name="aggregate", duration_ms=3.0))

        metrics = obs.get_metrics()
        [point] = metrics.get_metric("cce_phase_duration_ms", {'phase': "conflict_state"})
        assert point.value == 12.5
        assert metrics.get_latest("cce_items_failed_total").value == 0
        assert metrics.compute_aggregates("cce_items_processed_total")['sum'] == 3

    def test_unknown_layer_gets_a_collector(self):
        obs = ObservabilityEngine(clock=lambda: NOW)
        obs.log_audit(action="backfill", layer="maintenance")
        assert len(obs.get_layer_log("maintenance")) == 1

    def test_collector_is_bounded(self):
        obs = ObservabilityEngine(ObservabilityConfig(max_entries_per_layer=2), clock=lambda: NOW)
        for i in range(5):
            obs.log_audit(action=f"a{i}")
        assert [e.action for e in obs.get_layer_log("engine")] == ["a3", "a4"]

    def test_metric_series_are_bounded(self):
        obs = ObservabilityEngine(ObservabilityConfig(max_points_per_metric=3), clock=lambda: NOW)
        for i in range(10):
            obs.collect_metric("cce_global_tension", i / 10)
            obs.collect_metric("custom_backlog", i)
        metrics = obs.get_metrics()
        assert [p.value for p in metrics.get_metric("cce_global_tension")] == [0.7, 0.8, 0.9]
        assert len(metrics.get_metric("custom_backlog")) == 3
        assert metrics.get_latest("custom_backlog").value == 9

    def test_metrics_disabled(self):
        obs = ObservabilityEngine(ObservabilityConfig(enable_metrics=False))
        obs.collect_metric("cce_global_tension", 0.5)
        assert obs.get_metrics() is None

    def test_audit_report(self):
        obs = ObservabilityEngine(clock=lambda: NOW)
        obs.record_phase(self.partial_phase())
        obs.log_audit(action="update_cycle")

        report = obs.generate_audit_report()
        assert report['total_entries'] == 3
        assert report['by_layer'] == {'conflict_state': 2, 'engine': 1}
        assert report['by_event_type']['item_failure'] == 1
        assert report['time_range'] == {'start': NOW, 'end': NOW}


# =============================================================================
# LOGICAL CLOCK
# =============================================================================

class TestLogicalClock:

    def test_manual_clock_is_fixed_until_advanced(self):
        clock = LogicalClock.manual(NOW)
        assert clock() == clock() == NOW
        assert clock.advance(60) == NOW + 60
        assert clock() == NOW + 60
        assert clock.tick_count() == 3

    def test_manual_clock_never_moves_backwards(self):
        with pytest.raises(ValueError):
            LogicalClock.manual(NOW).advance(-1)

    def test_advance_rejected_for_live_clock(self):
        with pytest.raises(RuntimeError):
            LogicalClock.live().advance(1)

    def test_replay_exhausts(self):
        clock = LogicalClock.replay([NOW, NOW + 10])
        assert [clock(), clock()] == [NOW, NOW + 10]
        with pytest.raises(ClockExhausted):
            clock()

    def test_tick_log_round_trip(self, tmp_path):
        clock = LogicalClock.manual(NOW)
        clock()
        clock.advance(3600)
        clock()
        path = tmp_path / "ticks" / "log.json"
        clock.save_log(path)

        replayed = LogicalClock.from_log(path)
        assert [replayed(), replayed()] == [NOW, NOW + 3600]
        assert not replayed.is_live()


# =============================================================================
# REFERENCE DATA
# =============================================================================

class TestReferenceData:

    def write(self, tmp_path, data):
        path = tmp_path / "reference.json"
        path.write_text(json.dumps(data) if not isinstance(data, str) else data)
        return str(path)

    def test_from_json(self, tmp_path):
        path = self.write(tmp_path, {
            "alliances": [{"id": "NATO", "members": {"USA": 1.0, "GBR": 1}}],
            "front_lines": [{
                "front_id": "donbas", "theatre": "EuropeEast",
                "actors": ["RUS", "UKR"], "base_control": {"UKR": 0.4, "RUS": 0.6},
            }],
        })
        reference = StaticReferenceData.from_json(path)

        [nato] = reference.alliances()
        assert nato.name == "NATO"
        assert nato.members == (("GBR", 1.0), ("USA", 1.0))
        [front] = reference.front_lines()
        assert front.name == "donbas"
        assert front.base_control == (("RUS", 0.6), ("UKR", 0.4))

    def test_absent_alliances_are_unconfigured(self, tmp_path):
        reference = StaticReferenceData.from_json(self.write(tmp_path, {"front_lines": []}))
        with pytest.raises(ConfigurationError):
            reference.alliances()

    def test_empty_alliances_are_configured(self, tmp_path):
        reference = StaticReferenceData.from_json(self.write(tmp_path, {"alliances": []}))
        assert reference.alliances() == []

    @pytest.mark.parametrize("content", [
        "{not json",
        {"alliances": [{"name": "missing id"}]},
        {"front_lines": [{"front_id": "x"}]},
    ])
    def test_malformed_reference_data(self, tmp_path, content):
        with pytest.raises(ConfigurationError):
            StaticReferenceData.from_json(self.write(tmp_path, content))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            StaticReferenceData.from_json(str(tmp_path / "absent.json"))
