"""
Record codec for persistent backends.

Structured fields are first-class tuples in the contracts; they are
turned into JSON here and nowhere else. Every decoder raises
MalformedRecordError with the offending key instead of a bare
KeyError/TypeError so that callers can skip one record and continue.
"""

from __future__ import annotations
import json
from typing import Any, Callable, Dict, TypeVar

from ..contracts.base import MalformedRecordError
from ..contracts.events import (
    ConflictCore, EventFrame, ConflictEvent, DriverSummary,
    ConflictStateLive, TheatreStateLive, AlliancePressureLive,
    FrontLineState, RelationEdge,
)

T = TypeVar('T')


def _pairs(items) -> list:
    return [[k, v] for k, v in items]


def _tuple_pairs(raw) -> tuple:
    return tuple((str(k), float(v)) for k, v in raw)


# =============================================================================
# ENCODERS
# =============================================================================

def encode_conflict(core: ConflictCore) -> str:
    return json.dumps({
        'id': core.id,
        'actor_a': core.actor_a,
        'actor_b': core.actor_b,
        'theatre': core.theatre,
        'importance': core.importance,
        'base_hostility': core.base_hostility,
        'base_tension': core.base_tension,
    })


def encode_frame(frame: EventFrame) -> str:
    return json.dumps({
        'id': frame.id,
        'event_type': frame.event_type,
        'severity': frame.severity,
        'confidence': frame.confidence,
        'occurred_at': frame.occurred_at,
        'created_at': frame.created_at,
        'attacker': frame.attacker,
        'defender': frame.defender,
        'source': frame.source,
        'target': frame.target,
        'impact': frame.impact,
        'source_url': frame.source_url,
    })


def encode_event(event: ConflictEvent) -> str:
    return json.dumps({
        'id': event.id,
        'conflict_id': event.conflict_id,
        'window_start': event.window_start,
        'window_end': event.window_end,
        'occurred_at': event.occurred_at,
        'created_at': event.created_at,
        'event_type': event.event_type,
        'severity': event.severity,
        'confidence': event.confidence,
        'impact': event.impact,
        'initiator': event.initiator,
        'frame_count': event.frame_count,
        'evidence_urls': list(event.evidence_urls),
    })


def encode_conflict_state(state: ConflictStateLive) -> str:
    data = state.to_dict()
    data['events_through'] = state.events_through
    data['velocity_history'] = list(state.velocity_history)
    return json.dumps(data)


def encode_theatre_state(state: TheatreStateLive) -> str:
    return json.dumps(state.to_dict())


def encode_alliance_pressure(state: AlliancePressureLive) -> str:
    return json.dumps(state.to_dict())


def encode_front_state(state: FrontLineState) -> str:
    return json.dumps({
        'front_id': state.front_id,
        'theatre': state.theatre,
        'name': state.name,
        'actors': list(state.actors),
        'base_control': _pairs(state.base_control),
        'control': _pairs(state.control),
        'intensity': state.intensity,
        'last_event_at': state.last_event_at,
        'updated_at': state.updated_at,
        'events_through': state.events_through,
    })


def encode_relation(edge: RelationEdge) -> str:
    return json.dumps(edge.to_dict())


# =============================================================================
# DECODERS
# =============================================================================

def _decode(payload: str, kind: str, build: Callable[[Dict[str, Any]], T]) -> T:
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as e:
        raise MalformedRecordError(f"{kind}: invalid JSON ({e})") from e
    if not isinstance(data, dict):
        raise MalformedRecordError(f"{kind}: expected an object")
    try:
        return build(data)
    except KeyError as e:
        raise MalformedRecordError(f"{kind}: missing field {e}") from e
    except (TypeError, ValueError) as e:
        raise MalformedRecordError(f"{kind}: {e}") from e


def decode_conflict(payload: str) -> ConflictCore:
    return _decode(payload, "conflict", lambda d: ConflictCore(
        id=d['id'],
        actor_a=d['actor_a'],
        actor_b=d['actor_b'],
        theatre=d['theatre'],
        importance=float(d['importance']),
        base_hostility=float(d.get('base_hostility', 0.0)),
        base_tension=float(d.get('base_tension', 0.0)),
    ))


def decode_frame(payload: str) -> EventFrame:
    return _decode(payload, "event_frame", lambda d: EventFrame(
        id=d['id'],
        event_type=d['event_type'],
        severity=float(d['severity']),
        confidence=float(d['confidence']),
        occurred_at=int(d['occurred_at']),
        created_at=int(d['created_at']),
        attacker=d.get('attacker'),
        defender=d.get('defender'),
        source=d.get('source'),
        target=d.get('target'),
        impact=float(d.get('impact', 0.0)),
        source_url=d.get('source_url'),
    ))


def decode_event(payload: str) -> ConflictEvent:
    return _decode(payload, "conflict_event", lambda d: ConflictEvent(
        id=d['id'],
        conflict_id=d['conflict_id'],
        window_start=int(d['window_start']),
        window_end=int(d['window_end']),
        occurred_at=int(d['occurred_at']),
        created_at=int(d['created_at']),
        event_type=d['event_type'],
        severity=float(d['severity']),
        confidence=float(d['confidence']),
        impact=float(d.get('impact', 0.0)),
        initiator=d.get('initiator'),
        frame_count=int(d.get('frame_count', 1)),
        evidence_urls=tuple(d.get('evidence_urls', ())),
    ))


def _driver(d: Dict[str, Any]) -> DriverSummary:
    return DriverSummary(
        event_id=d['event_id'],
        event_type=d['event_type'],
        weight=float(d['weight']),
        occurred_at=int(d['occurred_at']),
        evidence_urls=tuple(d.get('evidence_urls', ())),
    )


def decode_conflict_state(payload: str) -> ConflictStateLive:
    return _decode(payload, "conflict_state", lambda d: ConflictStateLive(
        conflict_id=d['conflict_id'],
        tension=float(d['tension']),
        heat=float(d['heat']),
        velocity=float(d['velocity']),
        momentum=float(d['momentum']),
        pressure=float(d['pressure']),
        instability=float(d['instability']),
        theatre_rank=d.get('theatre_rank'),
        last_event_at=d.get('last_event_at'),
        top_drivers=tuple(_driver(x) for x in d.get('top_drivers', ())),
        updated_at=int(d['updated_at']),
        events_through=int(d.get('events_through', 0)),
        velocity_history=tuple(float(v) for v in d.get('velocity_history', ())),
        last_major_change_at=d.get('last_major_change_at'),
    ))


def decode_theatre_state(payload: str) -> TheatreStateLive:
    return _decode(payload, "theatre_state", lambda d: TheatreStateLive(
        theatre=d['theatre'],
        tension=float(d['tension']),
        momentum=float(d['momentum']),
        heat=float(d['heat']),
        velocity=float(d['velocity']),
        conflict_count=int(d['conflict_count']),
        dominant_actors=tuple(d.get('dominant_actors', ())),
        active_fronts=tuple(d.get('active_fronts', ())),
        updated_at=int(d['updated_at']),
    ))


def decode_alliance_pressure(payload: str) -> AlliancePressureLive:
    return _decode(payload, "alliance_pressure", lambda d: AlliancePressureLive(
        alliance_id=d['alliance_id'],
        name=d['name'],
        members=tuple(d.get('members', ())),
        pressure=float(d['pressure']),
        top_conflicts=tuple(d.get('top_conflicts', ())),
        affected_members=tuple(d.get('affected_members', ())),
        conflict_count=int(d.get('conflict_count', 0)),
        updated_at=int(d['updated_at']),
    ))


def decode_front_state(payload: str) -> FrontLineState:
    return _decode(payload, "front_state", lambda d: FrontLineState(
        front_id=d['front_id'],
        theatre=d['theatre'],
        name=d['name'],
        actors=tuple(d.get('actors', ())),
        base_control=_tuple_pairs(d.get('base_control', ())),
        control=_tuple_pairs(d['control']),
        intensity=float(d['intensity']),
        last_event_at=d.get('last_event_at'),
        updated_at=int(d['updated_at']),
        events_through=int(d.get('events_through', 0)),
    ))


def decode_relation(payload: str) -> RelationEdge:
    return _decode(payload, "relation_edge", lambda d: RelationEdge(
        entity_a=d['entity_a'],
        entity_b=d['entity_b'],
        relation_type=d['relation_type'],
        relation_strength=float(d['relation_strength']),
        confidence=float(d['confidence']),
        first_observed_at=int(d['first_observed_at']),
        last_updated_at=int(d['last_updated_at']),
        last_event_at=d.get('last_event_at'),
        is_mutual=bool(d.get('is_mutual', False)),
        evidence_urls=tuple(d.get('evidence_urls', ())),
        evidence_count=int(d.get('evidence_count', 0)),
        source=d.get('source', 'cce_derived'),
    ))
