"""
Update Cycle CLI Tests
======================

The CLI runs against the live clock, so these tests only pin exit
status and output shape, never state values.
"""

import json

import pytest

from conflict_engine.cli import EXIT_NOT_STARTED, EXIT_OK, build_parser, main
from conflict_engine.contracts.base import HOUR
from conflict_engine.storage import SQLiteStorageBackend

from .fixtures import make_conflict

FAR_FUTURE = 4_000_000_000


@pytest.fixture
def seeded_path(sqlite_path):
    store = SQLiteStorageBackend(sqlite_path)
    store.upsert_conflict(make_conflict())
    store.close()
    return sqlite_path


def test_runs_one_cycle(seeded_path, capsys):
    code = main(["--store", seeded_path, "--no-v2", "--log-level", "WARNING"], environ={})
    assert code == EXIT_OK

    output = json.loads(capsys.readouterr().out)
    assert output["success"] is True
    assert list(output["phases"]) == ["aggregate", "conflict_state", "relation_edges"]


def test_disabled_engine_exits_cleanly(seeded_path, capsys):
    code = main(["--store", seeded_path], environ={"CCE_ENABLED": "0"})
    assert code == EXIT_OK
    assert json.loads(capsys.readouterr().out)["disabled"] is True


def test_held_lock_is_not_started(seeded_path):
    store = SQLiteStorageBackend(seeded_path)
    store.acquire_lock("cce_update_cycle", "someone-else", FAR_FUTURE, HOUR)
    store.close()
    assert main(["--store", seeded_path], environ={}) == EXIT_NOT_STARTED


def test_bad_configuration_is_not_started(tmp_path):
    assert main([], environ={"CCE_MAX_WORKERS": "zero"}) == EXIT_NOT_STARTED
    assert main(["--reference", str(tmp_path / "absent.json")], environ={}) == EXIT_NOT_STARTED


def test_parser_flags():
    args = build_parser().parse_args(["--v2", "--min-tension", "0.2", "--max-age-days", "3"])
    assert args.v2_enabled is True
    assert args.min_tension == 0.2
    assert args.max_age_days == 3.0
    assert build_parser().parse_args([]).v2_enabled is None
