"""
Contracts Module

This module defines the data transfer objects that form the contracts
between layers. All inter-layer communication MUST use these contracts.
No layer may import implementation details from another layer.

DESIGN PRINCIPLES:
==================
1. All contract types are immutable (frozen dataclasses)
2. Bounded fields are validated on construction; writers clamp first
3. Errors are data (Error, ErrorCode) collected per phase
4. All timestamps are integer unix seconds (UTC)
5. Deterministic identity for materialised records
"""

from .base import (
    ErrorCode, Error,
    CCEError, TransientStoreError, MalformedRecordError,
    ConfigurationError, TickLockHeldError,
    canonical_pair, stable_id, to_iso,
    SECOND, MINUTE, HOUR, DAY,
)
from .events import (
    ConflictCore, EventFrame, Alliance, FrontLine,
    ConflictEvent, DriverSummary, ConflictStateLive, TheatreStateLive,
    AlliancePressureLive, FrontLineState, RelationEdge,
    AlertLevel, WorldState, PhaseStatus, PhaseStats, UpdateCycleResult,
    AuditEventType, AuditLogEntry, MetricPoint, QueryType, QueryResult,
)

__all__ = [
    'ErrorCode', 'Error',
    'CCEError', 'TransientStoreError', 'MalformedRecordError',
    'ConfigurationError', 'TickLockHeldError',
    'canonical_pair', 'stable_id', 'to_iso',
    'SECOND', 'MINUTE', 'HOUR', 'DAY',
    'ConflictCore', 'EventFrame', 'Alliance', 'FrontLine',
    'ConflictEvent', 'DriverSummary', 'ConflictStateLive', 'TheatreStateLive',
    'AlliancePressureLive', 'FrontLineState', 'RelationEdge',
    'AlertLevel', 'WorldState', 'PhaseStatus', 'PhaseStats', 'UpdateCycleResult',
    'AuditEventType', 'AuditLogEntry', 'MetricPoint', 'QueryType', 'QueryResult',
]
