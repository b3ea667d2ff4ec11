"""
Reference data providers.

Alliances and front lines change rarely and are maintained outside the
update cycle. Aggregators receive them through ReferenceDataProvider so
that tests and deployments can inject their own sets.
"""

from __future__ import annotations
import json
import logging
from typing import Iterable, List, Optional, Tuple

from .contracts.base import ConfigurationError
from .contracts.events import Alliance, FrontLine

logger = logging.getLogger(__name__)


class ReferenceDataProvider:
    """Source of alliance and front-line definitions."""

    def alliances(self) -> List[Alliance]:
        raise NotImplementedError

    def front_lines(self) -> List[FrontLine]:
        raise NotImplementedError


class StaticReferenceData(ReferenceDataProvider):
    """
    Fixed in-process reference data.

    alliances=None means the alliance set is not configured at all, which
    is distinct from an empty set.
    """

    def __init__(
        self,
        alliances: Optional[Iterable[Alliance]] = None,
        front_lines: Optional[Iterable[FrontLine]] = None,
    ):
        self._alliances = None if alliances is None else list(alliances)
        self._front_lines = list(front_lines or ())

    def alliances(self) -> List[Alliance]:
        if self._alliances is None:
            raise ConfigurationError("alliance reference data is not configured")
        return list(self._alliances)

    def front_lines(self) -> List[FrontLine]:
        return list(self._front_lines)

    @classmethod
    def from_json(cls, path: str) -> StaticReferenceData:
        """
        Load reference data from a JSON document.

        Layout::

            {"alliances": [{"id", "name", "strength", "members": {code: weight}}],
             "front_lines": [{"front_id", "theatre", "name", "actors",
                              "base_control": {code: share}}]}
        """
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Cannot load reference data from {path}: {e}") from e

        try:
            alliances = [
                Alliance(
                    id=a['id'],
                    name=a.get('name', a['id']),
                    members=_sorted_pairs(a.get('members', {})),
                    strength=float(a.get('strength', 1.0)),
                )
                for a in data.get('alliances', [])
            ] if 'alliances' in data else None
            fronts = [
                FrontLine(
                    front_id=f['front_id'],
                    theatre=f['theatre'],
                    name=f.get('name', f['front_id']),
                    actors=tuple(f.get('actors', ())),
                    base_control=_sorted_pairs(f.get('base_control', {})),
                )
                for f in data.get('front_lines', [])
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Malformed reference data in {path}: {e}") from e

        logger.info(
            "loaded reference data from %s: %d alliances, %d front lines",
            path, len(alliances or ()), len(fronts)
        )
        return cls(alliances=alliances, front_lines=fronts)


def _sorted_pairs(mapping) -> Tuple[Tuple[str, float], ...]:
    return tuple(sorted((str(k), float(v)) for k, v in dict(mapping).items()))
