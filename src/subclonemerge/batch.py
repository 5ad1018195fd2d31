"""All-pairs comparison of two sets of trees.

This is the workflow of comparing every candidate tree inferred for an
earlier sample against every candidate tree of a later sample, reporting the
pairs that are logically consistent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from .events import EventMatcher, default_matcher
from .models import Subclone
from .treemerge import compare_trees
from .utils import write_tsv

logger = logging.getLogger(__name__)

TreeEntry = Tuple[str, Subclone]


@dataclass(frozen=True)
class BatchResult:
    """Pairwise verdicts; rows are trees of p, columns trees of q."""

    p_ids: List[str]
    q_ids: List[str]
    compatible: np.ndarray  # bool, shape (len(p_ids), len(q_ids))
    incompatible_nodes: np.ndarray  # int, number of q nodes that failed per pair
    ambiguous_nodes: np.ndarray  # int

    def compatible_pairs(self) -> List[Tuple[str, str]]:
        rows, cols = np.nonzero(self.compatible)
        return [(self.p_ids[i], self.q_ids[j]) for i, j in zip(rows.tolist(), cols.tolist())]

    def summary(self) -> Dict[str, Any]:
        return {
            "p_trees": len(self.p_ids),
            "q_trees": len(self.q_ids),
            "pairs_total": int(self.compatible.size),
            "pairs_compatible": int(self.compatible.sum()),
            "q_trees_with_match": int(self.compatible.any(axis=0).sum()) if self.compatible.size else 0,
            "p_trees_with_match": int(self.compatible.any(axis=1).sum()) if self.compatible.size else 0,
        }


def compare_tree_sets(
    p_trees: Sequence[TreeEntry],
    q_trees: Sequence[TreeEntry],
    matcher: Optional[EventMatcher] = None,
    *,
    allow_novel_events: bool = False,
    progress: bool = True,
) -> BatchResult:
    m = matcher or default_matcher()
    n_p, n_q = len(p_trees), len(q_trees)

    compatible = np.zeros((n_p, n_q), dtype=bool)
    incompatible_nodes = np.zeros((n_p, n_q), dtype=np.int64)
    ambiguous_nodes = np.zeros((n_p, n_q), dtype=np.int64)

    pairs = [(i, j) for i in range(n_p) for j in range(n_q)]
    it = pairs
    if progress:
        it = tqdm(pairs, unit="pair", desc="Comparing trees")

    for i, j in it:
        res = compare_trees(p_trees[i][1], q_trees[j][1], m, allow_novel_events=allow_novel_events)
        compatible[i, j] = res.compatible
        incompatible_nodes[i, j] = res.n_incompatible
        ambiguous_nodes[i, j] = res.n_ambiguous

    logger.info("Compared %d tree pair(s): %d compatible", len(pairs), int(compatible.sum()))
    return BatchResult(
        p_ids=[str(k) for k, _ in p_trees],
        q_ids=[str(k) for k, _ in q_trees],
        compatible=compatible,
        incompatible_nodes=incompatible_nodes,
        ambiguous_nodes=ambiguous_nodes,
    )


def write_pairs_tsv(result: BatchResult, path: str | Path) -> int:
    """One row per pair; returns the number of rows written."""
    rows = []
    for i, p_id in enumerate(result.p_ids):
        for j, q_id in enumerate(result.q_ids):
            rows.append(
                (
                    p_id,
                    q_id,
                    int(bool(result.compatible[i, j])),
                    int(result.incompatible_nodes[i, j]),
                    int(result.ambiguous_nodes[i, j]),
                )
            )
    return write_tsv(path, ["p_tree", "q_tree", "compatible", "incompatible_nodes", "ambiguous_nodes"], rows)
