"""Placement of event sets inside a subclone tree, and tree compatibility.

The question answered here: could tree ``q`` have been observed after tree
``p``, with every subclone of ``q`` explained by a root-to-node path of
``p``? Each node of ``q`` is expanded to its full event burden and searched
for inside ``p``:

- a node of ``p`` is a feasible placement point only if every event on its
  path is also carried by the floating set (descendants only add events, so
  an infeasible node rules out its whole subtree);
- among feasible points the deepest one is preferred;
- when several sibling branches are feasible, the branch leaving the fewest
  unexplained ("leftover") events wins, ties going to the earlier child.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .errors import TreeStructureError
from .events import (
    EventMatcher,
    compare_by_size,
    default_matcher,
    event_difference,
    event_set_contains,
)
from .models import SomaticEvent, Subclone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Placement:
    """Outcome of :func:`check_placement`.

    placeable:
        Whether the event set fits anywhere in the searched subtree.
    leftover:
        Events of the input set not explained by the chosen placement point
        (the input set itself when not placeable). Empty means a perfect fit.
    child_count:
        Number of children of the searched node that reported a feasible
        placement. Diagnostic only.
    node:
        Node the events were placed at, or None.
    ambiguous:
        True if, at some level of the search, more than one sibling branch was
        feasible and the tie-break had to choose.
    """

    placeable: bool
    leftover: List[SomaticEvent] = field(default_factory=list)
    child_count: int = 0
    node: Optional[Subclone] = None
    ambiguous: bool = False


def _walk(root: Subclone) -> Iterator[Subclone]:
    """Pre-order traversal that refuses to visit a node twice."""
    seen: set[int] = set()
    stack = [root]
    while stack:
        node = stack.pop()
        if id(node) in seen:
            raise TreeStructureError(
                f"Subclone {node.display_name()} is reachable more than once; the tree contains a cycle"
            )
        seen.add(id(node))
        yield node
        stack.extend(reversed(node.children))


def node_events_list(node: Subclone) -> List[SomaticEvent]:
    """All events carried by ``node``: its own plus those of every ancestor.

    Events are returned in root-to-node order.
    """
    if node is None:
        raise TreeStructureError("Cannot list events of a missing subclone")

    chain: List[Subclone] = []
    seen: set[int] = set()
    cur: Optional[Subclone] = node
    while cur is not None:
        if id(cur) in seen:
            raise TreeStructureError(f"Parent chain of {node.display_name()} loops back on itself")
        seen.add(id(cur))
        chain.append(cur)
        cur = cur.parent

    events: List[SomaticEvent] = []
    for n in reversed(chain):
        events.extend(n.events)
    return events


def _resolve(
    node: Subclone,
    implied: Sequence[SomaticEvent],
    child_results: Sequence[Placement],
    events: Sequence[SomaticEvent],
    matcher: EventMatcher,
) -> Placement:
    successes = [r for r in child_results if r.placeable]

    if not successes:
        leftover = event_difference(events, implied, matcher)
        logger.debug("Placed at %s with %d leftover event(s)", node.display_name(), len(leftover))
        return Placement(placeable=True, leftover=leftover, child_count=0, node=node)

    if len(successes) == 1:
        only = successes[0]
        return Placement(
            placeable=True,
            leftover=list(only.leftover),
            child_count=1,
            node=only.node,
            ambiguous=only.ambiguous,
        )

    # strict comparison keeps the earliest child among equal-sized results
    best = successes[0]
    for candidate in successes[1:]:
        if compare_by_size(candidate.leftover, best.leftover):
            best = candidate
    logger.info(
        "Ambiguous placement below %s: %d branches feasible, chose %s (%d leftover)",
        node.display_name(),
        len(successes),
        best.node.display_name() if best.node is not None else "?",
        len(best.leftover),
    )
    return Placement(
        placeable=True,
        leftover=list(best.leftover),
        child_count=len(successes),
        node=best.node,
        ambiguous=True,
    )


def check_placement(
    pnode: Subclone,
    somatic_events: Sequence[SomaticEvent],
    matcher: Optional[EventMatcher] = None,
) -> Placement:
    """Find where an event set fits inside the subtree rooted at ``pnode``.

    Parameters
    ----------
    pnode:
        Root of the subtree to search.
    somatic_events:
        Full event burden of the floating node (its own events plus all of its
        ancestors').
    matcher:
        Tolerant equality to use; defaults to the default boundary resolution.

    Returns
    -------
    Placement
        ``leftover`` is always a subsequence of ``somatic_events``.
    """
    if pnode is None:
        raise TreeStructureError("Cannot place events on a missing subclone tree")

    m = matcher or default_matcher()
    events = list(somatic_events)
    if not events:
        # nothing to explain: fits anywhere
        return Placement(placeable=True, leftover=[], node=pnode)

    results: Dict[int, Placement] = {}
    seen: set[int] = set()
    # (node, implied events, children already pushed)
    stack: List[Tuple[Subclone, List[SomaticEvent], bool]] = [(pnode, node_events_list(pnode), False)]

    while stack:
        node, implied, expanded = stack.pop()

        if expanded:
            child_results = [results.pop(id(c)) for c in node.children]
            results[id(node)] = _resolve(node, implied, child_results, events, m)
            continue

        if id(node) in seen:
            raise TreeStructureError(
                f"Subclone {node.display_name()} is reachable more than once; the tree contains a cycle"
            )
        seen.add(id(node))

        if not event_set_contains(events, implied, m):
            results[id(node)] = Placement(placeable=False, leftover=list(events))
            continue

        stack.append((node, implied, True))
        for child in reversed(node.children):
            stack.append((child, implied + list(child.events), False))

    return results[id(pnode)]


@dataclass(frozen=True)
class NodePlacement:
    """Diagnostics for one node of the derived tree."""

    node: Subclone
    implied_count: int
    placement: Placement
    compatible: bool

    @property
    def label(self) -> str:
        return self.node.display_name()

    @property
    def placed_at(self) -> Optional[str]:
        if self.placement.node is None:
            return None
        return self.placement.node.display_name()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node": self.label,
            "node_id": self.node.node_id,
            "implied_events": self.implied_count,
            "placeable": self.placement.placeable,
            "placed_at": self.placed_at,
            "child_count": self.placement.child_count,
            "ambiguous": self.placement.ambiguous,
            "leftover": [e.describe() for e in self.placement.leftover],
            "compatible": self.compatible,
        }


@dataclass(frozen=True)
class MergeResult:
    compatible: bool
    placements: List[NodePlacement]
    resolution: int
    allow_novel_events: bool = False

    @property
    def n_nodes(self) -> int:
        return len(self.placements)

    @property
    def n_incompatible(self) -> int:
        return sum(1 for p in self.placements if not p.compatible)

    @property
    def n_ambiguous(self) -> int:
        return sum(1 for p in self.placements if p.placement.ambiguous)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "compatible": self.compatible,
            "resolution": self.resolution,
            "allow_novel_events": self.allow_novel_events,
            "nodes": self.n_nodes,
            "incompatible_nodes": self.n_incompatible,
            "ambiguous_nodes": self.n_ambiguous,
            "placements": [p.to_dict() for p in self.placements],
        }


def _node_compatible(placement: Placement, allow_novel_events: bool) -> bool:
    if not placement.placeable:
        return False
    return allow_novel_events or not placement.leftover


def _check_roots(p: Subclone, q: Subclone) -> None:
    if p is None:
        raise TreeStructureError("Reference tree (p) has no root")
    if q is None:
        raise TreeStructureError("Derived tree (q) has no root")


def tree_merge(
    p: Subclone,
    q: Subclone,
    matcher: Optional[EventMatcher] = None,
    *,
    allow_novel_events: bool = False,
) -> bool:
    """Check whether tree ``q`` is compatible with reference tree ``p``.

    Every node of ``q`` must be placeable in ``p``; unless
    ``allow_novel_events`` is set, its full event burden must also be
    explained by the path to the placement point (no leftover events).
    Stops at the first incompatible node.
    """
    _check_roots(p, q)
    m = matcher or default_matcher()

    for node in _walk(q):
        events = node_events_list(node)
        placement = check_placement(p, events, m)
        if not _node_compatible(placement, allow_novel_events):
            logger.debug(
                "Node %s of q is incompatible (placeable=%s, leftover=%d)",
                node.display_name(),
                placement.placeable,
                len(placement.leftover),
            )
            return False
    return True


def compare_trees(
    p: Subclone,
    q: Subclone,
    matcher: Optional[EventMatcher] = None,
    *,
    allow_novel_events: bool = False,
) -> MergeResult:
    """Like :func:`tree_merge`, but places every node of ``q`` and keeps the diagnostics."""
    _check_roots(p, q)
    m = matcher or default_matcher()

    placements: List[NodePlacement] = []
    for node in _walk(q):
        events = node_events_list(node)
        placement = check_placement(p, events, m)
        placements.append(
            NodePlacement(
                node=node,
                implied_count=len(events),
                placement=placement,
                compatible=_node_compatible(placement, allow_novel_events),
            )
        )

    compatible = all(p_.compatible for p_ in placements)
    logger.info(
        "Compared trees: %d node(s), %d incompatible, %d ambiguous -> %s",
        len(placements),
        sum(1 for x in placements if not x.compatible),
        sum(1 for x in placements if x.placement.ambiguous),
        "compatible" if compatible else "incompatible",
    )
    return MergeResult(
        compatible=compatible,
        placements=placements,
        resolution=m.resolution,
        allow_novel_events=allow_novel_events,
    )
