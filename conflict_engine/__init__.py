"""
Conflict & Context Engine
=========================

Turns a stream of timestamped, confidence-weighted conflict events into
continuously decaying state at four levels: conflict pair, theatre,
alliance and front line.

ARCHITECTURE:
=============
  contracts/      Immutable records, error codes, exceptions
  decay.py        Pure decay/blend/clamp numerics
  storage/        Event store interface, in-memory and SQLite backends
  core/           Phase aggregators (one module per level)
  query/          Read-only views over live state
  api/            FastAPI read surface
  observability/  Audit log and metrics collectors
  temporal/       Injectable logical clock
  reference.py    Alliance and front-line reference data
  engine.py       UpdateOrchestrator and EngineConfig
  cli.py          One-shot update cycle for external schedulers

Layers communicate ONLY through contracts and the store.
"""

from .engine import EngineConfig, UpdateOptions, UpdateOrchestrator

__version__ = "0.1.0"

__all__ = ['EngineConfig', 'UpdateOptions', 'UpdateOrchestrator', '__version__']
