from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from . import __version__
from .archive import TreeStore
from .batch import compare_tree_sets, write_pairs_tsv
from .errors import ArchiveError
from .events import DEFAULT_BOUNDARY_RESOLUTION, EventMatcher
from .models import Subclone
from .plotting import plot_compatibility_matrix, plot_leftover_counts
from .report import render_batch_report, render_report
from .toy_data import make_toy_data
from .treeio import attach_vcf_events, load_events_from_vcf, load_tree_json, load_trees_json, write_tree_json
from .treemerge import MergeResult, compare_trees
from .utils import ensure_outdir, write_json, write_tsv
from .validation import validate_tree

_STORE_SUFFIXES = {".sqlite", ".sqlite3", ".db"}


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _non_negative_int(s: str) -> int:
    try:
        v = int(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected an integer, got: {s}") from None
    if v < 0:
        raise argparse.ArgumentTypeError(f"Expected a value >= 0, got: {s}")
    return v


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    msg = f"{err.__class__.__name__}: {err}"
    if isinstance(err, ArchiveError) and err.path and err.path not in msg:
        msg += f" ({err.path})"

    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _is_store(path: Path) -> bool:
    return path.suffix.lower() in _STORE_SUFFIXES


def _split_store_ref(ref: str) -> Tuple[Path, Optional[int]]:
    """Split ``store.sqlite:ID`` into (path, id); id is None for a bare path."""
    path_part, sep, id_part = ref.rpartition(":")
    if sep and id_part.isdigit() and _is_store(Path(path_part)):
        return Path(path_part), int(id_part)
    return Path(ref), None


def _load_tree_ref(ref: str, *, matcher: EventMatcher, validate: bool) -> Subclone:
    path, tree_id = _split_store_ref(ref)
    if _is_store(path):
        with TreeStore(path) as store:
            if tree_id is None:
                ids = store.tree_ids()
                if len(ids) != 1:
                    raise ValueError(f"{path} holds {len(ids)} trees; pick one with {path}:ID")
                tree_id = ids[0]
            tree = store.load_tree(tree_id)
        if validate:
            validate_tree(tree, matcher)
        return tree
    if not path.exists():
        raise FileNotFoundError(f"Tree file does not exist: {path}")
    return load_tree_json(path, validate=validate, matcher=matcher)


def _load_tree_set(ref: str, *, matcher: EventMatcher, validate: bool) -> List[Tuple[str, Subclone]]:
    path = Path(ref)
    if not path.exists():
        raise FileNotFoundError(f"Tree set does not exist: {path}")
    if _is_store(path):
        with TreeStore(path) as store:
            trees = [(str(tid), store.load_tree(tid)) for tid in store.tree_ids()]
        if validate:
            for _, t in trees:
                validate_tree(t, matcher)
        return trees
    return [(str(i), t) for i, t in enumerate(load_trees_json(path, validate=validate, matcher=matcher), start=1)]


def _add_matching_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--resolution",
        type=_non_negative_int,
        default=DEFAULT_BOUNDARY_RESOLUTION,
        help=(
            "Boundary resolution: events of the same kind and chromosome whose start and end "
            f"differ by at most this much are the same event (default: {DEFAULT_BOUNDARY_RESOLUTION})."
        ),
    )
    p.add_argument(
        "--allow-novel-events",
        action="store_true",
        help="Accept q subclones carrying events absent from their placement path in p.",
    )
    p.add_argument(
        "--validate",
        action="store_true",
        help="Check tree structure (no cycles, disjoint sibling events) after loading.",
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="subclonemerge",
        description=(
            "SubcloneMerge: check whether a later tumor subclonal tree could have evolved from an "
            "earlier one by accumulating somatic events along existing branches."
        ),
    )
    p.add_argument("--version", action="version", version=f"subclonemerge {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common scenarios.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate small example trees (JSON, sqlite stores, VCF) for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # compare
    # -----------------
    c = sub.add_parser(
        "compare",
        help="Compare two trees: exit 0 if q is compatible with p, 1 if not, 2 on errors.",
    )
    c.add_argument("p", help="Reference (earlier) tree: TREE.json or STORE.sqlite:ID.")
    c.add_argument("q", help="Derived (later) tree: TREE.json or STORE.sqlite:ID.")
    _add_matching_args(c)
    c.add_argument(
        "--details",
        action="store_true",
        help="Print per-subclone placement diagnostics (placement point, feasible children, leftover).",
    )
    c.add_argument("--outdir", default=None, help="Write summary.json, placements.tsv, plots and report.html here.")
    c.add_argument("--dry-run", action="store_true", help="Load and check inputs, print planned outputs.")
    c.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # batch
    # -----------------
    b = sub.add_parser(
        "batch",
        help="Compare every tree of one set against every tree of another; print compatible pairs.",
    )
    b.add_argument("p", type=_path_exists, help="Reference tree set: STORE.sqlite or JSON with {'trees': [...]}.")
    b.add_argument("q", type=_path_exists, help="Derived tree set: STORE.sqlite or JSON with {'trees': [...]}.")
    _add_matching_args(b)
    b.add_argument("--outdir", default=None, help="Write pairs.tsv, summary.json, plots and report.html here.")
    b.add_argument("--no-progress", action="store_true", help="Disable the progress bar.")
    b.add_argument("--dry-run", action="store_true", help="Load inputs and print the number of pairs.")
    b.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # import
    # -----------------
    i = sub.add_parser(
        "import",
        help="Archive JSON tree(s) into a sqlite tree store.",
    )
    i.add_argument("tree", type=_path_exists, help="Tree JSON (single tree or {'trees': [...]}).")
    i.add_argument("--db", required=True, help="Tree store to write (created if missing).")
    i.add_argument(
        "--vcf",
        type=_path_exists,
        default=None,
        help="Optional VCF whose records carry INFO/<subclone-key>; events are added to matching subclones.",
    )
    i.add_argument("--subclone-key", default="SUBCLONE", help="INFO field naming the subclone of a VCF record.")
    i.add_argument("--no-require-pass", action="store_true", help="Do not require FILTER=PASS for VCF records.")
    i.add_argument(
        "--resolution",
        type=_non_negative_int,
        default=DEFAULT_BOUNDARY_RESOLUTION,
        help="Boundary resolution used by --validate.",
    )
    i.add_argument("--validate", action="store_true", help="Check tree structure before archiving.")
    i.add_argument("--dry-run", action="store_true", help="Load inputs without writing the store.")
    i.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # export
    # -----------------
    e = sub.add_parser(
        "export",
        help="Write a tree from a sqlite tree store as JSON.",
    )
    e.add_argument("db", type=_path_exists, help="Tree store.")
    e.add_argument("tree_id", type=int, help="Tree id (id of the root subclone).")
    e.add_argument("--out", required=True, help="Output JSON path.")
    e.add_argument("--dry-run", action="store_true", help="Check that the tree can be loaded without writing.")
    e.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "SubcloneMerge quickstart (copy/paste):",
        "",
        "1) Two JSON trees:",
        "   subclonemerge compare \\",
        "     early.json \\",
        "     late.json \\",
        "     --details --outdir results/",
        "   Exit code: 0 compatible, 1 incompatible.",
        "   Outputs: results/report.html, results/placements.tsv, results/summary.json",
        "",
        "2) All candidate trees of two samples (sqlite tree stores):",
        "   subclonemerge batch \\",
        "     early.sqlite \\",
        "     late.sqlite \\",
        "     --outdir batch/",
        "   Prints compatible pairs (p_tree<TAB>q_tree); batch/pairs.tsv lists every pair.",
        "",
        "3) Build a tree store from a tree skeleton and a VCF tagged with INFO/SUBCLONE:",
        "   subclonemerge import skeleton.json --vcf subclones.vcf --db early.sqlite --validate",
        "",
        "Tip: lower --resolution for assays with precise breakpoints (default 20,000,000).",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def _print_details(result: MergeResult) -> None:
    print(f"{'subclone':20s} {'placeable':9s} {'placed_at':20s} {'children':>8s} {'leftover':>8s}")
    for row in result.placements:
        flag = " (ambiguous)" if row.placement.ambiguous else ""
        print(
            f"{row.label:20s} {str(row.placement.placeable):9s} {str(row.placed_at or '-'):20s} "
            f"{row.placement.child_count:8d} {len(row.placement.leftover):8d}{flag}"
        )


def _write_compare_outputs(outdir: Path, result: MergeResult, p_ref: str, q_ref: str) -> Path:
    outdir = ensure_outdir(outdir)
    data = result.to_dict()
    data["p"] = p_ref
    data["q"] = q_ref
    data["version"] = __version__
    write_json(outdir / "summary.json", data)

    write_tsv(
        outdir / "placements.tsv",
        ["subclone", "implied_events", "placeable", "placed_at", "child_count", "ambiguous", "leftover", "compatible"],
        (
            (
                row.label,
                row.implied_count,
                int(row.placement.placeable),
                row.placed_at,
                row.placement.child_count,
                int(row.placement.ambiguous),
                ",".join(e.describe() for e in row.placement.leftover),
                int(row.compatible),
            )
            for row in result.placements
        ),
    )

    plots_dir = outdir / "plots"
    leftover_png = plots_dir / "leftover_counts.png"
    plot_leftover_counts(placements=result.placements, out_png=leftover_png)

    return render_report(
        outdir=outdir,
        version=__version__,
        result=data,
        p_ref=p_ref,
        q_ref=q_ref,
        plots={"leftover_counts": str(Path("plots") / leftover_png.name)},
    )


def cmd_compare(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve() if args.outdir else None
    log_path = _log_path(outdir, "compare.log") if outdir is not None and not args.dry_run else None
    _setup_logging(args.verbose, logfile=log_path)

    logger = logging.getLogger("subclonemerge")
    logger.info("subclonemerge %s", __version__)

    try:
        matcher = EventMatcher(resolution=int(args.resolution))
        p = _load_tree_ref(args.p, matcher=matcher, validate=bool(args.validate))
        q = _load_tree_ref(args.q, matcher=matcher, validate=bool(args.validate))

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"p: {args.p} ({len(p)} subclones)")
            print(f"q: {args.q} ({len(q)} subclones)")
            if outdir is not None:
                print("Planned outputs:")
                print(f"  report.html -> {outdir / 'report.html'}")
                print(f"  placements.tsv -> {outdir / 'placements.tsv'}")
                print(f"  summary.json -> {outdir / 'summary.json'}")
            return 0

        result = compare_trees(p, q, matcher, allow_novel_events=bool(args.allow_novel_events))

        print("compatible" if result.compatible else "incompatible")
        if args.details:
            _print_details(result)

        if outdir is not None:
            report_path = _write_compare_outputs(outdir, result, args.p, args.q)
            logger.info("Report written: %s", report_path)

        return 0 if result.compatible else 1
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_batch(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve() if args.outdir else None
    log_path = _log_path(outdir, "batch.log") if outdir is not None and not args.dry_run else None
    _setup_logging(args.verbose, logfile=log_path)

    logger = logging.getLogger("subclonemerge")

    try:
        matcher = EventMatcher(resolution=int(args.resolution))
        p_trees = _load_tree_set(args.p, matcher=matcher, validate=bool(args.validate))
        q_trees = _load_tree_set(args.q, matcher=matcher, validate=bool(args.validate))

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"p: {len(p_trees)} tree(s), q: {len(q_trees)} tree(s), {len(p_trees) * len(q_trees)} pair(s)")
            return 0

        result = compare_tree_sets(
            p_trees,
            q_trees,
            matcher,
            allow_novel_events=bool(args.allow_novel_events),
            progress=not bool(args.no_progress),
        )
        pairs = result.compatible_pairs()
        for p_id, q_id in pairs:
            print(f"{p_id}\t{q_id}")

        if outdir is not None:
            outdir = ensure_outdir(outdir)
            write_pairs_tsv(result, outdir / "pairs.tsv")
            summary = result.summary()
            summary.update({"p": args.p, "q": args.q, "resolution": matcher.resolution, "version": __version__})
            write_json(outdir / "summary.json", summary)

            matrix_png = outdir / "plots" / "compatibility_matrix.png"
            plot_compatibility_matrix(
                compatible=result.compatible,
                p_ids=result.p_ids,
                q_ids=result.q_ids,
                out_png=matrix_png,
            )
            report_path = render_batch_report(
                outdir=outdir,
                version=__version__,
                summary=summary,
                pairs=pairs,
                p_ref=args.p,
                q_ref=args.q,
                plots={"matrix": str(Path("plots") / matrix_png.name)},
            )
            logger.info("Report written: %s", report_path)
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_import(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)

    try:
        matcher = EventMatcher(resolution=int(args.resolution))
        trees = load_trees_json(args.tree)

        if args.vcf:
            if len(trees) != 1:
                raise ValueError(f"--vcf needs a single tree, but {args.tree} holds {len(trees)}")
            events, stats = load_events_from_vcf(
                args.vcf,
                subclone_key=str(args.subclone_key),
                require_pass=not bool(args.no_require_pass),
            )
            n = attach_vcf_events(trees[0], events)
            logging.getLogger("subclonemerge").info("Attached %d VCF event(s) (%s)", n, stats)

        if args.validate:
            for t in trees:
                validate_tree(t, matcher)

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Would archive {len(trees)} tree(s) into {args.db}")
            return 0

        with TreeStore(args.db, create=True) as store:
            ids = [store.save_tree(t) for t in trees]
        for tid in ids:
            print(tid)
        return 0
    except Exception as e:
        return _handle_error(e, log_path=None)


def cmd_export(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)

    try:
        with TreeStore(args.db) as store:
            tree = store.load_tree(int(args.tree_id))
        out = Path(args.out).expanduser()
        if args.dry_run:
            print(f"Would write tree {args.tree_id} ({len(tree)} subclones) to {out}")
            return 0
        out.parent.mkdir(parents=True, exist_ok=True)
        write_tree_json(tree, out)
        print(str(out))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=None)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "compare":
        return cmd_compare(args)
    if args.cmd == "batch":
        return cmd_batch(args)
    if args.cmd == "import":
        return cmd_import(args)
    if args.cmd == "export":
        return cmd_export(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
