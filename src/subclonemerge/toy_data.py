from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import pysam

from .archive import TreeStore
from .treeio import tree_from_dict, write_trees_json
from .utils import ensure_outdir, write_json

_CHROM_LENGTHS = {
    "3": 198_022_430,
    "5": 180_915_260,
    "7": 159_138_663,
    "12": 133_851_895,
    "17": 81_195_210,
}

# Subclone label -> local events. Siblings sit on different chromosomes so the
# trees stay well-formed at the default boundary resolution.
_EVENTS: Dict[str, List[Dict[str, Any]]] = {
    "founder": [
        {"kind": "snv", "chrom": "17", "start": 7_577_120, "ref": "C", "alt": "T", "label": "TP53"},
        {"kind": "cnv", "chrom": "7", "start": 54_000_000, "end": 56_500_000, "cn_frac": 4.0, "label": "EGFR_gain"},
    ],
    "kras": [
        {"kind": "snv", "chrom": "12", "start": 25_398_284, "ref": "C", "alt": "A", "label": "KRAS"},
    ],
    "pik3ca": [
        {"kind": "snv", "chrom": "3", "start": 178_936_091, "ref": "G", "alt": "A", "label": "PIK3CA"},
    ],
    "apc": [
        {"kind": "snv", "chrom": "5", "start": 112_175_770, "ref": "C", "alt": "T", "label": "APC"},
    ],
}


def _node(label: str, fraction: float, children: List[Dict[str, Any]], *, with_events: bool = True) -> Dict[str, Any]:
    return {
        "label": label,
        "fraction": fraction,
        "events": list(_EVENTS.get(label, [])) if with_events else [],
        "children": children,
    }


def _reference_tree(*, with_events: bool = True) -> Dict[str, Any]:
    return _node(
        "normal",
        1.0,
        [
            _node(
                "founder",
                0.8,
                [
                    _node("kras", 0.35, [], with_events=with_events),
                    _node("pik3ca", 0.25, [], with_events=with_events),
                ],
                with_events=with_events,
            ),
        ],
        with_events=with_events,
    )


def _later_compatible() -> Dict[str, Any]:
    return _node("normal", 1.0, [_node("founder", 0.9, [_node("kras", 0.6, [])])])


def _later_incompatible() -> Dict[str, Any]:
    # 'apc' carries an event the reference tree never saw
    return _node("normal", 1.0, [_node("founder", 0.9, [_node("kras", 0.5, []), _node("apc", 0.3, [])])])


def _write_subclone_vcf(path: Path) -> None:
    header = pysam.VariantHeader()
    header.add_meta("fileformat", "VCFv4.2")
    for chrom, length in _CHROM_LENGTHS.items():
        header.contigs.add(chrom, length=length)
    header.info.add("SUBCLONE", number=".", type="String", description="Subclone(s) acquiring the event")
    header.info.add("SVTYPE", number=1, type="String", description="Type of structural variant")
    header.info.add("END", number=1, type="Integer", description="End position of the variant")
    header.info.add("CN", number=1, type="Float", description="Copy number")

    records = []
    for label in ("founder", "kras", "pik3ca"):
        for ev in _EVENTS[label]:
            records.append((label, ev))
    records.sort(key=lambda item: (list(_CHROM_LENGTHS).index(item[1]["chrom"]), item[1]["start"]))

    with pysam.VariantFile(str(path), "w", header=header) as vcf:
        for label, ev in records:
            if ev["kind"] == "cnv":
                rec = vcf.new_record(
                    contig=ev["chrom"],
                    start=ev["start"] - 1,
                    stop=ev["end"],
                    alleles=("N", "<CNV>"),
                    id=ev["label"],
                    filter="PASS",
                )
                rec.info["SVTYPE"] = "CNV"
                rec.info["CN"] = ev["cn_frac"]
            else:
                rec = vcf.new_record(
                    contig=ev["chrom"],
                    start=ev["start"] - 1,
                    stop=ev["start"],
                    alleles=(ev["ref"], ev["alt"]),
                    id=ev["label"],
                    filter="PASS",
                )
            rec.info["SUBCLONE"] = (label,)
            vcf.write(rec)


def make_toy_data(*, outdir: str | Path) -> Dict[str, str]:
    """Create a small set of trees suitable for quick demos/tests.

    The outputs include:
    - reference.json: the earlier tree (p)
    - later_compatible.json / later_incompatible.json: candidate later trees (q)
    - reference.sqlite / later.sqlite: the same trees in tree stores
    - reference_skeleton.json + subclones.vcf: the reference tree without
      events, and its events as a VCF tagged with INFO/SUBCLONE

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)

    reference = tree_from_dict(_reference_tree())
    compatible = tree_from_dict(_later_compatible())
    incompatible = tree_from_dict(_later_incompatible())

    reference_json = outdir_p / "reference.json"
    compatible_json = outdir_p / "later_compatible.json"
    incompatible_json = outdir_p / "later_incompatible.json"
    write_trees_json([reference], reference_json)
    write_trees_json([compatible], compatible_json)
    write_trees_json([incompatible], incompatible_json)

    skeleton_json = outdir_p / "reference_skeleton.json"
    write_json(skeleton_json, _reference_tree(with_events=False))
    vcf_path = outdir_p / "subclones.vcf"
    _write_subclone_vcf(vcf_path)

    reference_db = outdir_p / "reference.sqlite"
    later_db = outdir_p / "later.sqlite"
    for db in (reference_db, later_db):
        if db.exists():
            db.unlink()
    with TreeStore(reference_db, create=True) as store:
        reference_id = store.save_tree(reference)
    with TreeStore(later_db, create=True) as store:
        compatible_id = store.save_tree(compatible)
        incompatible_id = store.save_tree(incompatible)

    summary = {
        "reference_json": str(reference_json),
        "later_compatible_json": str(compatible_json),
        "later_incompatible_json": str(incompatible_json),
        "reference_skeleton_json": str(skeleton_json),
        "subclones_vcf": str(vcf_path),
        "reference_db": str(reference_db),
        "later_db": str(later_db),
        "reference_tree_id": str(reference_id),
        "later_compatible_tree_id": str(compatible_id),
        "later_incompatible_tree_id": str(incompatible_id),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
