"""SubcloneMerge: compatibility checks between tumor subclonal evolution trees.

Public API is intentionally small; most users should use the CLI:

    subclonemerge compare earlier.json later.json

"""

from __future__ import annotations

__all__ = [
    "__version__",
    "EventKind",
    "EventMatcher",
    "SomaticEvent",
    "Subclone",
    "check_placement",
    "compare_trees",
    "node_events_list",
    "tree_merge",
]

__version__ = "0.3.0"

from .events import EventMatcher
from .models import EventKind, SomaticEvent, Subclone
from .treemerge import check_placement, compare_trees, node_events_list, tree_merge
