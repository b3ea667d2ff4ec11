"""
Conflict State Aggregator Tests
===============================

INVARIANTS TESTED:
1. Folding events raises tension toward, never past, 1.0
2. Absent new events tension and heat only decay; heat decays faster
3. Re-running with zero elapsed time and no events changes nothing
4. All bounded fields stay in range for arbitrary event streams
5. One failing conflict never aborts the phase
6. Velocity tracks the size of a tension change at normal tick spacing
7. Erratic velocity history raises instability regardless of direction
"""

import time
from dataclasses import replace

import pytest
from hypothesis import given, settings, strategies as st

from conflict_engine.contracts.base import (
    ConfigurationError, DAY, HOUR, MINUTE, ErrorCode, TransientStoreError,
)
from conflict_engine.contracts.events import ConflictStateLive, PhaseStatus
from conflict_engine.core import ItemRunner
from conflict_engine.core.conflict_state import (
    ConflictStateAggregator, DecayConfig, assign_theatre_ranks,
    compute_conflict_state, rank_drivers,
)

from conflict_engine.storage import InMemoryStorageBackend

from .fixtures import NOW, STALE, make_conflict, make_event, make_state


CONFIG = DecayConfig()


# =============================================================================
# PURE COMPUTATION
# =============================================================================

class TestWorkedExample:
    """USA/RUS, importance 0.8, tension 0.2, one strong event."""

    def setup_method(self):
        self.core = make_conflict("USA", "RUS", importance=0.8)
        self.prev = make_state(self.core.id, tension=0.2, updated_at=NOW)
        event = make_event(self.core.id, occurred_at=NOW, severity=0.9, confidence=0.9)
        self.folded = compute_conflict_state(self.core, self.prev, [event], NOW, CONFIG)

    def test_tension_rises_but_stays_below_one(self):
        assert self.prev.tension < self.folded.tension < 1.0

    def test_velocity_positive(self):
        assert self.folded.velocity > 0
        assert self.folded.momentum > 0

    def test_pressure_rises_with_importance(self):
        assert self.folded.pressure > self.prev.pressure

        minor = replace(self.core, importance=0.2)
        event = make_event(self.core.id, occurred_at=NOW, severity=0.9, confidence=0.9)
        low = compute_conflict_state(minor, self.prev, [event], NOW, CONFIG)
        assert low.tension == pytest.approx(self.folded.tension)
        assert low.pressure < self.folded.pressure

    def test_decay_after_one_day(self):
        later = compute_conflict_state(self.core, self.folded, [], NOW + DAY, CONFIG)
        tension_drop = 1 - later.tension / self.folded.tension
        heat_drop = 1 - later.heat / self.folded.heat
        assert tension_drop >= 0.10
        assert heat_drop > 0.50
        assert heat_drop > tension_drop

    def test_bookkeeping(self):
        assert self.folded.last_event_at == NOW
        assert self.folded.events_through == NOW
        assert self.folded.last_major_change_at == NOW
        assert len(self.folded.top_drivers) == 1
        assert self.folded.top_drivers[0].evidence_urls == ("https://news.example/a",)


class TestDecayWithoutEvents:

    def test_repeated_ticks_never_increase(self):
        core = make_conflict()
        state = make_state(core.id, tension=0.9, heat=0.7, updated_at=NOW)
        for step in range(1, 20):
            nxt = compute_conflict_state(core, state, [], NOW + step * 6 * HOUR, CONFIG)
            assert nxt.tension <= state.tension
            assert nxt.heat <= state.heat
            state = nxt

    def test_zero_elapsed_is_idempotent(self):
        core = make_conflict()
        event = make_event(core.id, occurred_at=NOW - HOUR)
        first = compute_conflict_state(core, make_state(core.id, updated_at=NOW - DAY), [event], NOW, CONFIG)
        second = compute_conflict_state(core, first, [], NOW, CONFIG)
        for name in ("tension", "heat", "velocity", "momentum", "pressure", "instability"):
            assert getattr(second, name) == pytest.approx(getattr(first, name), abs=1e-9)
        assert second.velocity_history == first.velocity_history

    def test_decay_depends_on_elapsed_time_not_call_count(self):
        core = make_conflict()
        start = make_state(core.id, tension=0.8, heat=0.8, updated_at=NOW)
        once = compute_conflict_state(core, start, [], NOW + DAY, CONFIG)
        twice = compute_conflict_state(
            core, compute_conflict_state(core, start, [], NOW + DAY // 2, CONFIG), [], NOW + DAY, CONFIG
        )
        assert twice.tension == pytest.approx(once.tension)
        assert twice.heat == pytest.approx(once.heat)

    def test_clock_skew_does_not_move_updated_at_backwards(self):
        core = make_conflict()
        state = make_state(core.id, tension=0.5, updated_at=NOW)
        skewed = compute_conflict_state(core, state, [], NOW - HOUR, CONFIG)
        assert skewed.updated_at == NOW
        assert skewed.tension == pytest.approx(0.5)


events_strategy = st.lists(
    st.tuples(
        st.floats(0.0, 1.0),
        st.floats(0.0, 1.0),
        st.integers(0, 10 * DAY),
        st.sampled_from(["military_clash", "sanctions", "protest", "cyber"]),
    ),
    max_size=12,
)


@settings(max_examples=60, deadline=None)
@given(st.floats(0.0, 1.0), st.floats(0.0, 1.0), st.integers(0, 30 * DAY), events_strategy)
def test_outputs_stay_bounded(tension, heat, elapsed, raw_events):
    core = make_conflict(importance=1.0)
    prev = make_state(core.id, tension=tension, heat=heat, updated_at=NOW - elapsed)
    events = [
        make_event(core.id, occurred_at=NOW - age, severity=sev, confidence=conf,
                   event_type=etype, window_start=i * 6 * HOUR)
        for i, (sev, conf, age, etype) in enumerate(raw_events)
    ]
    state = compute_conflict_state(core, prev, events, NOW, CONFIG)
    for name in ("tension", "heat", "pressure", "instability"):
        assert 0.0 <= getattr(state, name) <= 1.0
    for name in ("velocity", "momentum"):
        assert -1.0 <= getattr(state, name) <= 1.0
    assert len(state.top_drivers) <= CONFIG.max_drivers


class TestVelocityAndInstability:

    def test_velocity_distinguishes_event_weights_within_one_tick(self):
        core = make_conflict()
        prev = make_state(core.id, tension=0.5, updated_at=NOW - 30 * MINUTE)
        velocities = [
            compute_conflict_state(
                core, prev, [make_event(core.id, occurred_at=NOW, severity=s, confidence=1.0)],
                NOW, CONFIG,
            ).velocity
            for s in (0.2, 0.5, 0.9)
        ]
        assert 0.0 < velocities[0] < velocities[1] < velocities[2] < 1.0

    def test_falling_tension_gives_negative_velocity(self):
        core = make_conflict()
        prev = make_state(core.id, tension=0.8, updated_at=NOW)
        later = compute_conflict_state(core, prev, [], NOW + DAY, CONFIG)
        assert -1.0 < later.velocity < 0.0

    def test_erratic_history_is_more_unstable_than_steady(self):
        core = make_conflict()
        event = make_event(core.id, occurred_at=NOW, severity=0.5, confidence=1.0)

        def instability(history):
            prev = replace(
                make_state(core.id, tension=0.5, updated_at=NOW - HOUR),
                velocity_history=history,
            )
            return compute_conflict_state(core, prev, [event], NOW, CONFIG).instability

        erratic = instability((0.4, -0.4, 0.4, -0.4))
        assert erratic > instability((0.4, 0.4, 0.4, 0.4))
        assert erratic > instability((-0.4, -0.4, -0.4, -0.4))
        assert instability((-0.4, 0.4, -0.4, 0.4)) == pytest.approx(erratic, abs=0.05)


class TestDriversAndRanks:

    def test_drivers_keep_strongest(self):
        core = make_conflict()
        config = DecayConfig(max_drivers=2)
        events = [
            make_event(core.id, occurred_at=NOW, severity=s, window_start=i * 6 * HOUR)
            for i, s in enumerate((0.2, 0.9, 0.5))
        ]
        drivers = rank_drivers((), events, NOW, config)
        assert [round(d.weight, 2) for d in drivers] == [0.81, 0.45]

    def test_theatre_ranks_by_pressure_then_id(self):
        a = make_conflict("USA", "RUS", theatre="EuropeEast")
        b = make_conflict("RUS", "UKR", theatre="EuropeEast")
        c = make_conflict("CHN", "TWN", theatre="IndoPacific")
        states = {
            a.id: make_state(a.id, pressure=0.3),
            b.id: make_state(b.id, pressure=0.7),
            c.id: make_state(c.id, pressure=0.1),
        }
        assert assign_theatre_ranks([a, b, c], states) == {b.id: 1, a.id: 2, c.id: 1}


class TestDecayConfig:

    def test_heat_must_decay_faster_than_tension(self):
        with pytest.raises(ConfigurationError):
            DecayConfig(tension_half_life_seconds=DAY, heat_half_life_seconds=2 * DAY)

    def test_momentum_alpha_range(self):
        with pytest.raises(ConfigurationError):
            DecayConfig(momentum_alpha=0.0)


# =============================================================================
# AGGREGATOR
# =============================================================================

class TestConflictStateAggregator:

    def test_creates_then_updates(self, store):
        core = make_conflict()
        store.upsert_conflict(core)
        store.append_event(make_event(core.id, occurred_at=NOW - HOUR))

        first = ConflictStateAggregator(store).run(NOW)
        assert (first.created, first.updated, first.status) == (1, 0, PhaseStatus.OK)
        state = store.get_conflict_state(core.id)
        assert state.theatre_rank == 1

        second = ConflictStateAggregator(store).run(NOW + HOUR)
        assert (second.created, second.updated) == (0, 1)
        assert store.get_conflict_state(core.id).tension < state.tension

    def test_events_fold_exactly_once(self, store):
        core = make_conflict()
        store.upsert_conflict(core)
        store.append_event(make_event(core.id, occurred_at=NOW - HOUR))
        aggregator = ConflictStateAggregator(store)
        aggregator.run(NOW)
        once = store.get_conflict_state(core.id)
        aggregator.run(NOW)
        assert store.get_conflict_state(core.id).tension == pytest.approx(once.tension)

    def test_late_event_is_folded_by_watermark(self, store):
        core = make_conflict()
        store.upsert_conflict(core)
        store.append_event(make_event(core.id, occurred_at=NOW - HOUR, created_at=NOW - HOUR))
        ConflictStateAggregator(store).run(NOW)
        before = store.get_conflict_state(core.id)

        # Occurred earlier than last_event_at but materialised later
        late = make_event(core.id, occurred_at=NOW - 2 * DAY, created_at=NOW + HOUR)
        store.append_event(late)
        ConflictStateAggregator(store).run(NOW + HOUR)
        after = store.get_conflict_state(core.id)

        assert after.events_through == NOW + HOUR
        assert after.last_event_at == before.last_event_at
        assert late.id in {d.event_id for d in after.top_drivers}

    def test_dormant_conflicts_are_untouched(self, store):
        core = make_conflict()
        store.upsert_conflict(core)
        store.upsert_conflict_state(make_state(core.id, tension=0.4, updated_at=STALE, last_event_at=STALE))
        stats = ConflictStateAggregator(store).run(NOW)
        assert stats.processed == 0
        assert store.get_conflict_state(core.id).updated_at == STALE

    def test_one_failing_conflict_does_not_abort_phase(self, store):
        cores = [make_conflict(f"A{i:02d}", f"B{i:02d}") for i in range(10)]
        for core in cores:
            store.upsert_conflict(core)
            store.append_event(make_event(core.id, occurred_at=NOW - HOUR))
        broken = cores[4].id

        def compute(core, prev, events, now, config):
            if core.id == broken:
                raise ValueError("severity out of range")
            return compute_conflict_state(core, prev, events, now, config)

        stats = ConflictStateAggregator(store, compute=compute).run(NOW)

        assert stats.status == PhaseStatus.PARTIAL
        assert stats.created == 9
        assert stats.skipped == 1
        assert stats.errors[0].entity_id == broken
        assert stats.errors[0].code == ErrorCode.MALFORMED_RECORD
        assert store.get_conflict_state(broken) is None

    def test_failed_rank_write_is_an_error_not_a_skip(self):
        class RankWriteFails(InMemoryStorageBackend):
            def upsert_conflict_state(self, state):
                if state.theatre_rank is not None:
                    raise TransientStoreError("database is locked")
                super().upsert_conflict_state(state)

        store = RankWriteFails()
        core = make_conflict()
        store.upsert_conflict(core)
        store.append_event(make_event(core.id, occurred_at=NOW - HOUR))

        stats = ConflictStateAggregator(store).run(NOW)

        assert stats.status == PhaseStatus.PARTIAL
        assert (stats.created, stats.skipped) == (1, 0)
        assert [(e.entity_id, e.code) for e in stats.errors] == [
            (core.id, ErrorCode.TRANSIENT_STORE)
        ]
        assert store.get_conflict_state(core.id).theatre_rank is None

    def test_item_timeout_skips_only_slow_conflict(self, store):
        fast, slow = make_conflict("USA", "RUS"), make_conflict("CHN", "TWN")
        for core in (fast, slow):
            store.upsert_conflict(core)
            store.append_event(make_event(core.id, occurred_at=NOW - HOUR))

        def compute(core, prev, events, now, config):
            if core.id == slow.id:
                time.sleep(0.5)
            return compute_conflict_state(core, prev, events, now, config)

        runner = ItemRunner(max_workers=2, item_timeout_seconds=0.1)
        stats = ConflictStateAggregator(store, runner=runner, compute=compute).run(NOW)

        assert stats.created == 1
        assert [e.code for e in stats.errors] == [ErrorCode.ITEM_TIMEOUT]
        assert store.get_conflict_state(fast.id) is not None
        assert store.get_conflict_state(slow.id) is None


class TestItemRunner:

    def test_parallel_outcomes_keep_submission_order(self):
        runner = ItemRunner(max_workers=3)
        items = [(str(i), (lambda i=i: i * i)) for i in range(7)]
        outcomes = list(runner.run(items))
        assert [o.key for o in outcomes] == [str(i) for i in range(7)]
        assert [o.value for o in outcomes] == [i * i for i in range(7)]

    def test_exceptions_are_captured(self):
        def boom():
            raise KeyError("missing")
        outcome = next(ItemRunner().run([("x", boom)]))
        assert not outcome.ok
        assert isinstance(outcome.exception, KeyError)


def test_initial_state_is_zero():
    state = ConflictStateLive.initial("USA_RUS")
    assert state.tension == 0.0 and state.last_event_at is None
