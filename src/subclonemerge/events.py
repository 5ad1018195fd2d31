"""Set operations over ordered somatic event sequences.

Breakpoints reported by sequencing-based callers are imprecise, so two events
are treated as the same mutation when they agree on kind and chromosome and
their coordinates lie within a boundary resolution of each other. Every
operation here takes the :class:`EventMatcher` to use; none relies on
``SomaticEvent.__eq__``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .models import SomaticEvent

logger = logging.getLogger(__name__)

DEFAULT_BOUNDARY_RESOLUTION = 20_000_000


@dataclass(frozen=True)
class EventMatcher:
    """Tolerant equality between somatic events.

    resolution:
        Maximum difference (in coordinate units) allowed between the start
        offsets, and between the end offsets, of two events that are
        considered the same mutation.
    """

    resolution: int = DEFAULT_BOUNDARY_RESOLUTION

    def __post_init__(self) -> None:
        if isinstance(self.resolution, bool) or not isinstance(self.resolution, int):
            raise ValueError(f"Boundary resolution must be an integer (got {self.resolution!r})")
        if self.resolution < 0:
            raise ValueError(f"Boundary resolution must be >= 0 (got {self.resolution})")

    def same(self, a: SomaticEvent, b: SomaticEvent) -> bool:
        if a.kind is not b.kind or a.chrom != b.chrom:
            return False
        return abs(a.start - b.start) <= self.resolution and abs(a.end - b.end) <= self.resolution

    def __call__(self, a: SomaticEvent, b: SomaticEvent) -> bool:
        return self.same(a, b)

    def find(self, event: SomaticEvent, events: Sequence[SomaticEvent]) -> Optional[SomaticEvent]:
        """Return the first event of ``events`` matching ``event``, if any."""
        for other in events:
            if self.same(event, other):
                return other
        return None


_DEFAULT_MATCHER = EventMatcher()


def default_matcher() -> EventMatcher:
    return _DEFAULT_MATCHER


def event_difference(
    master: Sequence[SomaticEvent],
    unwanted: Sequence[SomaticEvent],
    matcher: Optional[EventMatcher] = None,
) -> List[SomaticEvent]:
    """Events of ``master`` without a counterpart in ``unwanted`` (``master`` order kept)."""
    m = matcher or _DEFAULT_MATCHER
    return [e for e in master if m.find(e, unwanted) is None]


def event_set_contains(
    container: Sequence[SomaticEvent],
    containee: Sequence[SomaticEvent],
    matcher: Optional[EventMatcher] = None,
) -> bool:
    """True if every event of ``containee`` has a counterpart in ``container``."""
    m = matcher or _DEFAULT_MATCHER
    return all(m.find(e, container) is not None for e in containee)


def compare_by_size(v1: Sequence[SomaticEvent], v2: Sequence[SomaticEvent]) -> bool:
    """Strict weak ordering of result sets: fewer events ranks first."""
    return len(v1) < len(v2)

