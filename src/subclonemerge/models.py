from __future__ import annotations

import weakref
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional


class EventKind(str, Enum):
    """Discriminant of a somatic event."""

    SNV = "snv"  # point mutation
    CNV = "cnv"  # copy-number / segmental change
    SV = "sv"  # structural variant

    @classmethod
    def parse(cls, value: "str | EventKind") -> "EventKind":
        if isinstance(value, EventKind):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(k.value for k in cls)
            raise ValueError(f"Unknown event kind '{value}' (expected one of: {allowed})") from None


@dataclass(frozen=True)
class SomaticEvent:
    """A somatic mutation located on the genome.

    Events are immutable values shared between subclone nodes. Dataclass
    equality is exact; comparisons between trees go through
    :class:`subclonemerge.events.EventMatcher`, which tolerates imprecise
    breakpoints.

    Attributes
    ----------
    kind:
        Event discriminant (SNV, CNV or SV).
    chrom:
        Chromosome identifier as reported by the caller.
    start, end:
        Coordinates of the event. Point events have ``end == start``.
    cn_frac:
        Copy-number magnitude for CNV events (if known).
    ref, alt:
        Alleles for point events (if known).
    label:
        Optional free-text identifier (gene name, VCF ID).
    event_id:
        Store identifier, set once archived. Not part of equality.
    """

    kind: EventKind
    chrom: str
    start: int
    end: Optional[int] = None
    cn_frac: Optional[float] = None
    ref: Optional[str] = None
    alt: Optional[str] = None
    label: Optional[str] = None
    event_id: Optional[int] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", EventKind.parse(self.kind))
        object.__setattr__(self, "chrom", str(self.chrom))
        if self.end is None:
            object.__setattr__(self, "end", self.start)
        if self.start < 0:
            raise ValueError(f"Event start must be >= 0 (got {self.start})")
        if self.end < self.start:
            raise ValueError(f"Event end ({self.end}) precedes start ({self.start}) on {self.chrom}")
        if self.kind is EventKind.SNV and self.end != self.start:
            raise ValueError(f"Point event on {self.chrom} must have end == start")

    @property
    def is_point(self) -> bool:
        return self.kind is EventKind.SNV

    def describe(self) -> str:
        loc = f"{self.chrom}:{self.start}" if self.is_point else f"{self.chrom}:{self.start}-{self.end}"
        name = f" ({self.label})" if self.label else ""
        return f"{self.kind.value}@{loc}{name}"


@dataclass(eq=False)
class Subclone:
    """One node of a subclonal evolution tree.

    ``events`` holds only the events that first appear at this node; the
    events of the ancestors are implied. Children are owned by their parent,
    the parent reference is a weak back-pointer used for upward walks only.
    """

    events: List[SomaticEvent] = field(default_factory=list)
    fraction: float = 0.0
    label: Optional[str] = None
    tree_id: Optional[int] = None
    node_id: Optional[int] = None
    children: List["Subclone"] = field(default_factory=list, repr=False)
    _parent_ref: Optional["weakref.ref[Subclone]"] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        for child in self.children:
            child._parent_ref = weakref.ref(self)

    @property
    def parent(self) -> Optional["Subclone"]:
        if self._parent_ref is None:
            return None
        return self._parent_ref()

    def add_child(self, child: "Subclone") -> "Subclone":
        if child.parent is self and child in self.children:
            return child
        if child.parent is not None and child.parent is not self:
            child.parent.children.remove(child)
        child._parent_ref = weakref.ref(self)
        self.children.append(child)
        return child

    def add_event(self, event: SomaticEvent) -> None:
        self.events.append(event)

    def is_root(self) -> bool:
        return self.parent is None

    def root(self) -> "Subclone":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def depth(self) -> int:
        d = 0
        node = self.parent
        while node is not None:
            d += 1
            node = node.parent
        return d

    def iter_preorder(self) -> Iterator["Subclone"]:
        """Depth-first pre-order traversal (children visited in insertion order)."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def iter_breadth_first(self) -> Iterator["Subclone"]:
        queue = deque([self])
        while queue:
            node = queue.popleft()
            yield node
            queue.extend(node.children)

    def display_name(self) -> str:
        if self.label:
            return self.label
        if self.node_id is not None:
            return f"#{self.node_id}"
        return "<unnamed>"

    def __len__(self) -> int:
        return sum(1 for _ in self.iter_preorder())
