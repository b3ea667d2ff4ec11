#!/usr/bin/env python3
"""
Update Cycle CLI
================

One-shot trigger for an external scheduler (cron, systemd timer).

RUN:
    python -m conflict_engine.cli
    python -m conflict_engine.cli --store cce.db --reference reference.json --v2

Configuration comes from the environment (CCE_ENABLED, CCE_V2_ENABLED,
CCE_STORE_PATH, ...); flags override it for this run.

EXIT STATUS:
    0  cycle succeeded, or the engine is disabled
    1  cycle ran but at least one phase failed or was skipped
    2  cycle could not start (configuration, store, tick lock)
"""

from __future__ import annotations
import argparse
import json
import logging
import os
import sys
from dataclasses import replace
from typing import List, Mapping, Optional

from .contracts.base import CCEError, DAY, TickLockHeldError
from .engine import EngineConfig, UpdateOptions, UpdateOrchestrator
from .storage import StorageConfig

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PHASE_FAILED = 1
EXIT_NOT_STARTED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run one Conflict & Context Engine update cycle"
    )
    parser.add_argument("--store", help="SQLite store path (overrides CCE_STORE_PATH)")
    parser.add_argument("--reference", help="Reference data JSON with alliances and front lines")
    parser.add_argument("--min-tension", type=float, default=None,
                        help="Minimum conflict tension for relation edges")
    parser.add_argument("--max-age-days", type=float, default=None,
                        help="Ignore conflict state older than this for relation edges")
    v2 = parser.add_mutually_exclusive_group()
    v2.add_argument("--v2", dest="v2_enabled", action="store_true", default=None,
                    help="Run theatre, alliance and front phases")
    v2.add_argument("--no-v2", dest="v2_enabled", action="store_false")
    parser.add_argument("--log-level", default=os.environ.get("CCE_LOG_LEVEL", "INFO"))
    return parser


def load_config(args: argparse.Namespace, environ: Optional[Mapping[str, str]] = None) -> EngineConfig:
    config = EngineConfig.from_env(environ)
    if args.store:
        config = replace(config, storage=StorageConfig(backend_type="sqlite", path=args.store))
    if args.reference:
        config = replace(config, reference_path=args.reference)
    return config


def main(argv: Optional[List[str]] = None, environ: Optional[Mapping[str, str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    options = UpdateOptions(
        min_tension=args.min_tension,
        max_age_seconds=args.max_age_days * DAY if args.max_age_days is not None else None,
        v2_enabled=args.v2_enabled,
    )

    try:
        engine = UpdateOrchestrator(load_config(args, environ))
    except CCEError as e:
        logger.error("cannot initialise engine: %s", e)
        return EXIT_NOT_STARTED

    try:
        result = engine.run_update_cycle(options)
    except TickLockHeldError as e:
        logger.warning("skipping cycle: %s", e)
        return EXIT_NOT_STARTED
    except CCEError as e:
        logger.error("update cycle could not start: %s", e)
        return EXIT_NOT_STARTED
    finally:
        engine.store.close()

    print(json.dumps(result.to_dict(), indent=2))
    if result.disabled:
        return EXIT_OK
    return EXIT_OK if result.success else EXIT_PHASE_FAILED


if __name__ == "__main__":
    sys.exit(main())
