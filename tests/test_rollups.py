"""
Theatre, Alliance and World Rollup Tests
========================================

Rollups are full recomputes over current conflict state; these tests pin
the weighting and selection rules.
"""

import pytest

from conflict_engine.contracts.base import ConfigurationError, HOUR
from conflict_engine.contracts.events import Alliance, AlertLevel, PhaseStatus
from conflict_engine.core.alliance import (
    AllianceConfig, AlliancePressureAggregator, compute_alliance_pressure,
)
from conflict_engine.core.theatre import (
    TheatreAggregator, TheatreConfig, compute_theatre_state, dominant_actors,
)
from conflict_engine.core.world import (
    alert_level, compute_world_state, conflict_summary, world_state_from_store,
)
from conflict_engine.reference import StaticReferenceData

from .fixtures import NOW, make_alliance, make_conflict, make_event, make_front, make_state


@pytest.fixture
def europe():
    usa_rus = make_conflict("USA", "RUS", importance=0.8)
    rus_ukr = make_conflict("RUS", "UKR", importance=0.4)
    return [
        (usa_rus, make_state(usa_rus.id, tension=0.6, pressure=0.6)),
        (rus_ukr, make_state(rus_ukr.id, tension=0.3, pressure=0.3)),
    ]


def seed(store, joined):
    for core, state in joined:
        store.upsert_conflict(core)
        store.upsert_conflict_state(state)


# =============================================================================
# THEATRE
# =============================================================================

class TestTheatre:

    def test_importance_weighted_tension(self, europe):
        row = compute_theatre_state("EuropeEast", europe, ["donbas"], NOW, TheatreConfig())
        assert row.tension == pytest.approx(0.5)
        assert row.conflict_count == 2
        assert row.active_fronts == ("donbas",)

    def test_dominant_actors_by_involvement(self, europe):
        assert dominant_actors(europe, top_n=5, limit=6) == ("RUS", "USA", "UKR")
        assert dominant_actors(europe, top_n=1, limit=6) == ("RUS", "USA")

    def test_aggregator_groups_by_theatre(self, store, europe):
        seed(store, europe)
        pacific = make_conflict("CHN", "TWN", theatre="IndoPacific")
        seed(store, [(pacific, make_state(pacific.id, tension=0.9))])
        reference = StaticReferenceData(front_lines=[make_front()])

        first = TheatreAggregator(store, reference).run(NOW)
        second = TheatreAggregator(store, reference).run(NOW + HOUR)

        assert (first.created, second.updated) == (2, 2)
        rows = {t.theatre: t for t in store.list_theatre_states()}
        assert rows["IndoPacific"].tension == pytest.approx(0.9)
        assert rows["EuropeEast"].active_fronts == ("donbas",)
        assert rows["EuropeEast"].updated_at == NOW + HOUR


# =============================================================================
# ALLIANCE
# =============================================================================

class TestAlliance:

    def test_only_member_conflicts_contribute(self, europe):
        pacific = make_conflict("CHN", "TWN")
        joined = europe + [(pacific, make_state(pacific.id, pressure=0.9))]
        row = compute_alliance_pressure(make_alliance(), joined, NOW, AllianceConfig())

        assert row.pressure == pytest.approx(0.6)
        assert row.top_conflicts == ("RUS_USA",)
        assert row.affected_members == ("USA",)
        assert row.conflict_count == 1

    def test_no_member_conflicts_is_zero(self):
        row = compute_alliance_pressure(make_alliance(), [], NOW, AllianceConfig())
        assert row.pressure == 0.0
        assert row.top_conflicts == ()

    def test_strength_scales_pressure(self, europe):
        weak = Alliance(id="W", name="W", members=(("USA", 1.0),), strength=0.5)
        row = compute_alliance_pressure(weak, europe, NOW, AllianceConfig())
        assert row.pressure == pytest.approx(0.3)

    def test_missing_membership_table_is_configuration_error(self, store):
        with pytest.raises(ConfigurationError):
            AlliancePressureAggregator(store, StaticReferenceData()).run(NOW)

    def test_aggregator_writes_every_alliance(self, store, europe):
        seed(store, europe)
        reference = StaticReferenceData(alliances=[
            make_alliance(), make_alliance("CSTO", members=(("RUS", 1.0), ("BLR", 0.8))),
        ])
        stats = AlliancePressureAggregator(store, reference).run(NOW)
        assert stats.status == PhaseStatus.OK
        assert stats.created == 2
        assert [p.alliance_id for p in store.list_alliance_pressure()] == ["CSTO", "NATO"]


# =============================================================================
# WORLD
# =============================================================================

class TestWorld:

    def test_empty_world(self):
        world = compute_world_state([], 0, NOW)
        assert world.global_tension == 0.0
        assert world.alert_level == AlertLevel.LOW
        assert world.data_quality == 0.8

    def test_single_hot_conflict(self):
        core = make_conflict("USA", "RUS", importance=0.8)
        state = make_state(core.id, tension=0.8, heat=0.5, updated_at=NOW)
        world = compute_world_state([(core, state)], 3, NOW)

        assert world.global_tension == pytest.approx(0.71 * 1.05)
        assert world.alert_level == AlertLevel.HIGH
        assert dict(world.country_statuses) == {"RUS": "critical", "USA": "critical"}
        assert dict(world.scenario_scores) == {"CONFLICT_RUS_USA": pytest.approx(0.68)}
        assert (world.active_conflict_count, world.high_tension_count) == (1, 1)
        assert world.recent_event_count == 3
        assert world.data_quality == 1.0

    def test_alert_thresholds(self):
        assert alert_level(0.1) == AlertLevel.LOW
        assert alert_level(0.3) == AlertLevel.MEDIUM
        assert alert_level(0.6) == AlertLevel.HIGH
        assert alert_level(0.9) == AlertLevel.CRITICAL

    def test_from_store_counts_recent_events(self, store, europe):
        seed(store, europe)
        core = europe[0][0]
        store.append_event(make_event(core.id, occurred_at=NOW - HOUR))
        store.append_event(make_event(core.id, occurred_at=NOW - 3 * 86400))
        world = world_state_from_store(store, NOW)
        assert world.recent_event_count == 1
        assert world.to_dict()['calculation_method'] == "cce_conflict_aggregation"

    def test_summary(self, store, europe):
        seed(store, europe)
        summary = conflict_summary(store, NOW, top=1)
        assert summary['total_conflicts'] == 2
        assert [t['conflict_id'] for t in summary['top_tensions']] == ["RUS_USA"]
