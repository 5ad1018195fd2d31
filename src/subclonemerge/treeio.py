"""Serialized trees (JSON) and VCF-derived somatic events.

JSON layout of one tree::

    {
      "label": "root",
      "fraction": 1.0,
      "events": [{"kind": "snv", "chrom": "1", "start": 12345}],
      "children": [ ...same layout... ]
    }

A file holds either one tree or ``{"trees": [tree, ...]}``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pysam

from .events import EventMatcher
from .models import EventKind, SomaticEvent, Subclone
from .utils import write_json
from .validation import validate_tree

logger = logging.getLogger(__name__)

_CN_SVTYPES = {"CNV", "DEL", "DUP"}


def event_from_dict(d: Mapping[str, Any]) -> SomaticEvent:
    missing = [k for k in ("kind", "chrom", "start") if k not in d]
    if missing:
        raise ValueError(f"Event is missing field(s) {missing}: {dict(d)}")
    return SomaticEvent(
        kind=EventKind.parse(d["kind"]),
        chrom=str(d["chrom"]),
        start=int(d["start"]),
        end=None if d.get("end") is None else int(d["end"]),
        cn_frac=None if d.get("cn_frac") is None else float(d["cn_frac"]),
        ref=d.get("ref"),
        alt=d.get("alt"),
        label=d.get("label"),
    )


def event_to_dict(event: SomaticEvent) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "kind": event.kind.value,
        "chrom": event.chrom,
        "start": event.start,
        "end": event.end,
    }
    for key in ("cn_frac", "ref", "alt", "label"):
        value = getattr(event, key)
        if value is not None:
            out[key] = value
    return out


def tree_from_dict(d: Mapping[str, Any]) -> Subclone:
    """Build a tree from nested dicts (no recursion, so depth is unbounded)."""
    root = Subclone()
    stack: List[Tuple[Mapping[str, Any], Subclone]] = [(d, root)]
    while stack:
        entry, node = stack.pop()
        if not isinstance(entry, Mapping):
            raise ValueError(f"Subclone entry must be an object, got {type(entry).__name__}")
        node.label = entry.get("label")
        node.fraction = float(entry.get("fraction", 0.0))
        node.events = [event_from_dict(e) for e in entry.get("events") or []]
        for child_entry in entry.get("children") or []:
            child = node.add_child(Subclone())
            stack.append((child_entry, child))
    return root


def tree_to_dict(root: Subclone) -> Dict[str, Any]:
    def _shallow(node: Subclone) -> Dict[str, Any]:
        out: Dict[str, Any] = {"fraction": node.fraction, "events": [event_to_dict(e) for e in node.events]}
        if node.label is not None:
            out["label"] = node.label
        out["children"] = []
        return out

    top = _shallow(root)
    stack = [(root, top)]
    while stack:
        node, out = stack.pop()
        for child in node.children:
            child_out = _shallow(child)
            out["children"].append(child_out)
            stack.append((child, child_out))
    return top


def load_trees_json(
    path: str | Path,
    *,
    validate: bool = False,
    matcher: Optional[EventMatcher] = None,
) -> List[Subclone]:
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"{p} is not valid JSON: {e}") from e

    entries = data["trees"] if isinstance(data, dict) and "trees" in data else [data]
    trees = [tree_from_dict(s) for s in entries]
    if validate:
        for t in trees:
            validate_tree(t, matcher)
    logger.info("Loaded %d tree(s) from %s", len(trees), p)
    return trees


def load_tree_json(path: str | Path, *, validate: bool = False, matcher: Optional[EventMatcher] = None) -> Subclone:
    trees = load_trees_json(path, validate=validate, matcher=matcher)
    if len(trees) != 1:
        raise ValueError(f"{path} holds {len(trees)} trees; use DB:ID references or 'batch' for tree sets")
    return trees[0]


def write_trees_json(trees: Iterable[Subclone], path: str | Path) -> None:
    trees = list(trees)
    if len(trees) == 1:
        write_json(path, tree_to_dict(trees[0]))
    else:
        write_json(path, {"trees": [tree_to_dict(t) for t in trees]})


def write_tree_json(tree: Subclone, path: str | Path) -> None:
    write_json(path, tree_to_dict(tree))


def _info_get(rec: pysam.VariantRecord, key: str) -> Any:
    try:
        return rec.info[key]
    except (KeyError, ValueError):
        return None


def _event_from_record(rec: pysam.VariantRecord) -> SomaticEvent:
    svtype = _info_get(rec, "SVTYPE")
    if isinstance(svtype, (list, tuple)):
        svtype = svtype[0] if svtype else None
    alt = rec.alts[0] if rec.alts else None
    label = rec.id if rec.id else None

    if svtype is not None:
        end = _info_get(rec, "END")
        end = int(end) if end is not None else int(rec.stop)
        if str(svtype).upper() in _CN_SVTYPES:
            cn = _info_get(rec, "CN")
            return SomaticEvent(
                kind=EventKind.CNV,
                chrom=rec.chrom,
                start=int(rec.pos),
                end=max(end, int(rec.pos)),
                cn_frac=None if cn is None else float(cn),
                label=label,
            )
        return SomaticEvent(
            kind=EventKind.SV,
            chrom=rec.chrom,
            start=int(rec.pos),
            end=max(end, int(rec.pos)),
            alt=alt,
            label=label,
        )

    return SomaticEvent(
        kind=EventKind.SNV,
        chrom=rec.chrom,
        start=int(rec.pos),
        ref=rec.ref,
        alt=alt,
        label=label,
    )


def load_events_from_vcf(
    vcf_path: str | Path,
    *,
    subclone_key: str = "SUBCLONE",
    require_pass: bool = True,
) -> Tuple[Dict[str, List[SomaticEvent]], Dict[str, int]]:
    """Group the somatic events of a VCF by the subclone that acquired them.

    Each record names its subclone(s) in the INFO field ``subclone_key``.
    Records with ``SVTYPE`` in {CNV, DEL, DUP} become copy-number events,
    other ``SVTYPE`` values structural events, the rest point events.
    A record listing several subclones yields one event shared by all of them.

    Returns
    -------
    events:
        Mapping subclone label -> events, in VCF order.
    stats:
        Simple counters about records kept/skipped.
    """
    stats: Dict[str, int] = {
        "records_total": 0,
        "events_kept": 0,
        "skipped_filter": 0,
        "skipped_no_subclone": 0,
    }
    by_subclone: Dict[str, List[SomaticEvent]] = {}

    with pysam.VariantFile(str(vcf_path)) as vcf:
        if subclone_key not in vcf.header.info:
            raise ValueError(
                f"VCF {vcf_path} has no INFO/{subclone_key} header line; "
                "tag each record with the subclone that acquired it."
            )
        for rec in vcf:
            stats["records_total"] += 1

            if require_pass:
                filt = list(rec.filter.keys())
                if len(filt) > 0 and not (len(filt) == 1 and filt[0] == "PASS"):
                    stats["skipped_filter"] += 1
                    continue

            owners = _info_get(rec, subclone_key)
            if owners is None:
                stats["skipped_no_subclone"] += 1
                continue
            if isinstance(owners, str):
                owners = [owners]

            event = _event_from_record(rec)
            for owner in owners:
                by_subclone.setdefault(str(owner), []).append(event)
            stats["events_kept"] += 1

    logger.info(
        "Read %d VCF record(s) from %s: %d event(s) for %d subclone(s)",
        stats["records_total"],
        vcf_path,
        stats["events_kept"],
        len(by_subclone),
    )
    return by_subclone, stats


def attach_vcf_events(root: Subclone, events_by_label: Mapping[str, List[SomaticEvent]]) -> int:
    """Append VCF-derived events to the tree nodes with matching labels."""
    nodes = {n.label: n for n in root.iter_preorder() if n.label is not None}
    unknown = sorted(set(events_by_label) - set(nodes))
    if unknown:
        raise ValueError(f"VCF names subclone(s) not present in the tree: {', '.join(unknown)}")

    n = 0
    for label, events in events_by_label.items():
        for ev in events:
            nodes[label].add_event(ev)
            n += 1
    return n
