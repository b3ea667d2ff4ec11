"""
Test Fixtures

Deterministic record factories shared by the test modules.

RULES:
======
1. All timestamps are fixed integers derived from NOW
2. Factories build valid records; tests override only what they exercise
"""

from typing import Optional, Tuple

from conflict_engine.contracts.base import DAY, HOUR
from conflict_engine.contracts.events import (
    Alliance, ConflictCore, ConflictEvent, ConflictStateLive, EventFrame, FrontLine,
)


# Fixed "now" aligned to a 6h window boundary
NOW = 1_700_006_400
STALE = NOW - 30 * DAY


def make_conflict(
    actor_a: str = "USA",
    actor_b: str = "RUS",
    theatre: str = "EuropeEast",
    importance: float = 0.8,
    base_hostility: float = 0.0,
    conflict_id: Optional[str] = None,
) -> ConflictCore:
    return ConflictCore.create(
        actor_a, actor_b, theatre,
        importance=importance,
        base_hostility=base_hostility,
        conflict_id=conflict_id,
    )


def make_event(
    conflict_id: str,
    occurred_at: int = NOW,
    severity: float = 0.9,
    confidence: float = 0.9,
    event_type: str = "military_clash",
    initiator: Optional[str] = None,
    created_at: Optional[int] = None,
    window_start: Optional[int] = None,
    evidence_urls: Tuple[str, ...] = ("https://news.example/a",),
) -> ConflictEvent:
    start = occurred_at - occurred_at % (6 * HOUR) if window_start is None else window_start
    return ConflictEvent(
        id=ConflictEvent.make_id(conflict_id, start),
        conflict_id=conflict_id,
        window_start=start,
        window_end=start + 6 * HOUR,
        occurred_at=occurred_at,
        created_at=occurred_at if created_at is None else created_at,
        event_type=event_type,
        severity=severity,
        confidence=confidence,
        initiator=initiator,
        evidence_urls=evidence_urls,
    )


def make_frame(
    frame_id: str,
    attacker: str = "RUS",
    defender: str = "USA",
    occurred_at: int = NOW - HOUR,
    created_at: Optional[int] = None,
    severity: float = 0.8,
    confidence: float = 0.9,
    event_type: str = "military_clash",
    source_url: Optional[str] = "https://news.example/a",
    impact: float = 0.0,
) -> EventFrame:
    return EventFrame(
        id=frame_id,
        event_type=event_type,
        severity=severity,
        confidence=confidence,
        occurred_at=occurred_at,
        created_at=occurred_at if created_at is None else created_at,
        attacker=attacker,
        defender=defender,
        impact=impact,
        source_url=source_url,
    )


def make_state(
    conflict_id: str,
    tension: float = 0.2,
    heat: float = 0.0,
    updated_at: int = NOW,
    pressure: float = 0.0,
    last_event_at: Optional[int] = None,
    events_through: int = 0,
) -> ConflictStateLive:
    return ConflictStateLive(
        conflict_id=conflict_id,
        tension=tension,
        heat=heat,
        pressure=pressure,
        updated_at=updated_at,
        last_event_at=last_event_at,
        events_through=events_through,
    )


def make_alliance(alliance_id: str = "NATO", members=(("GBR", 1.0), ("USA", 1.0))) -> Alliance:
    return Alliance(id=alliance_id, name=alliance_id, members=tuple(members))


def make_front(
    front_id: str = "donbas",
    theatre: str = "EuropeEast",
    actors: Tuple[str, ...] = ("RUS", "UKR"),
    base_control=(("RUS", 0.5), ("UKR", 0.5)),
) -> FrontLine:
    return FrontLine(
        front_id=front_id,
        theatre=theatre,
        name=front_id.title(),
        actors=actors,
        base_control=tuple(base_control),
    )
