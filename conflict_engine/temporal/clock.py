"""
Logical Clock
=============

Supplies the `now` of every update cycle and query.

GUARANTEES:
- Aggregators never read system time; the orchestrator reads the clock
  once per tick and passes the value down
- A recorded tick sequence can be replayed to reproduce a run
- Manual clocks only move when advance() is called
"""

from __future__ import annotations
from pathlib import Path
from typing import List, Optional, Sequence, Union
import json
import time


class ClockExhausted(Exception):
    """A replay clock was asked for more ticks than were recorded."""


class LogicalClock:
    """
    Callable returning integer unix seconds.

    MODES:
    ======
    live    system time; ticks are recorded only with record=True
    manual  fixed time, moved forward explicitly with advance()
    replay  returns a recorded tick sequence, then raises ClockExhausted
    """

    def __init__(
        self,
        mode: str,
        start: Optional[int] = None,
        ticks: Sequence[int] = (),
        record: bool = True,
    ):
        if mode not in ("live", "manual", "replay"):
            raise ValueError(f"unknown clock mode {mode!r}")
        if mode == "manual" and start is None:
            raise ValueError("a manual clock needs a start time")
        self._mode = mode
        self._time = None if start is None else int(start)
        self._ticks: List[int] = [int(t) for t in ticks]
        self._position = 0
        self._record = record

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def live(cls, record: bool = False) -> LogicalClock:
        return cls("live", record=record)

    @classmethod
    def manual(cls, start: int) -> LogicalClock:
        return cls("manual", start=start)

    @classmethod
    def replay(cls, ticks: Sequence[int]) -> LogicalClock:
        return cls("replay", ticks=ticks, record=False)

    @classmethod
    def from_log(cls, path: Union[str, Path]) -> LogicalClock:
        with open(path, 'r') as f:
            return cls.replay(json.load(f)['ticks'])

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def now(self) -> int:
        if self._mode == "replay":
            if self._position >= len(self._ticks):
                raise ClockExhausted(
                    f"replay clock exhausted after {len(self._ticks)} recorded ticks"
                )
            tick = self._ticks[self._position]
            self._position += 1
            return tick

        tick = int(time.time()) if self._mode == "live" else self._time
        if self._record:
            self._ticks.append(tick)
        self._position += 1
        return tick

    __call__ = now

    def advance(self, seconds: int) -> int:
        """Move a manual clock forward; returns the new time."""
        if self._mode != "manual":
            raise RuntimeError("only a manual clock can be advanced")
        if seconds < 0:
            raise ValueError("a logical clock never moves backwards")
        self._time += int(seconds)
        return self._time

    def tick_count(self) -> int:
        """Number of readings taken so far."""
        return self._position

    def is_live(self) -> bool:
        return self._mode == "live"

    # -------------------------------------------------------------------------
    # Tick log
    # -------------------------------------------------------------------------

    def save_log(self, path: Union[str, Path]) -> None:
        """Write the recorded ticks for a later replay."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump({'mode': self._mode, 'ticks': self._ticks}, f, indent=2)

    def __repr__(self) -> str:
        return f"LogicalClock({self._mode}, readings={self._position})"
