from __future__ import annotations

import logging
from typing import Optional

from .errors import TreeStructureError
from .events import EventMatcher, default_matcher
from .models import Subclone

logger = logging.getLogger(__name__)


def check_acyclic(root: Subclone) -> int:
    """Ensure every node is reachable once and points back to its parent.

    Returns the number of nodes; raises TreeStructureError otherwise.
    """
    if root is None:
        raise TreeStructureError("Tree has no root subclone")

    seen: set[int] = set()
    stack = [root]
    while stack:
        node = stack.pop()
        if id(node) in seen:
            raise TreeStructureError(
                f"Subclone {node.display_name()} appears more than once in the tree (cycle or shared child)"
            )
        seen.add(id(node))
        for child in node.children:
            if child.parent is not node:
                raise TreeStructureError(
                    f"Subclone {child.display_name()} is listed under {node.display_name()} "
                    "but its parent reference points elsewhere. Build trees with Subclone.add_child()."
                )
            stack.append(child)
    return len(seen)


def check_sibling_disjoint(root: Subclone, matcher: Optional[EventMatcher] = None) -> None:
    """Ensure no two siblings carry the same (tolerant-equal) local event."""
    m = matcher or default_matcher()
    for node in root.iter_preorder():
        kids = node.children
        for i, a in enumerate(kids):
            for b in kids[i + 1 :]:
                for ev in a.events:
                    other = m.find(ev, b.events)
                    if other is not None:
                        raise TreeStructureError(
                            f"Sibling subclones {a.display_name()} and {b.display_name()} both carry "
                            f"{ev.describe()} (matched {other.describe()} at resolution {m.resolution}). "
                            "Event sets must diverge at branch points; merge the shared event into "
                            f"{node.display_name()} or lower --resolution."
                        )


def check_no_duplicate_ancestry(root: Subclone, matcher: Optional[EventMatcher] = None) -> None:
    """Ensure no subclone repeats an event already carried by one of its ancestors."""
    m = matcher or default_matcher()
    stack = [(root, [])]
    while stack:
        node, inherited = stack.pop()
        for ev in node.events:
            other = m.find(ev, inherited)
            if other is not None:
                raise TreeStructureError(
                    f"Subclone {node.display_name()} repeats {ev.describe()}, "
                    f"already inherited as {other.describe()}"
                )
        carried = inherited + list(node.events)
        for child in node.children:
            stack.append((child, carried))


def validate_tree(root: Subclone, matcher: Optional[EventMatcher] = None) -> int:
    """Run all structural checks; returns the node count."""
    n = check_acyclic(root)
    check_sibling_disjoint(root, matcher)
    check_no_duplicate_ancestry(root, matcher)
    logger.debug("Tree %s validated (%d nodes)", root.display_name(), n)
    return n
