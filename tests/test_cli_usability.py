import json
import subprocess
import sys
from pathlib import Path

from subclonemerge.toy_data import make_toy_data


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "subclonemerge"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "subclonemerge compare" in cp.stdout
    assert "subclonemerge batch" in cp.stdout


def test_compare_exit_codes(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")

    cp = _run_cli(["compare", toy["reference_json"], toy["later_compatible_json"]])
    assert cp.returncode == 0, cp.stderr
    assert cp.stdout.strip() == "compatible"

    cp = _run_cli(["compare", toy["reference_json"], toy["later_incompatible_json"]])
    assert cp.returncode == 1, cp.stderr
    assert cp.stdout.strip() == "incompatible"

    cp = _run_cli(["compare", toy["reference_json"], toy["later_incompatible_json"], "--allow-novel-events"])
    assert cp.returncode == 0, cp.stderr


def test_compare_from_store_with_outputs(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "out"
    p_ref = f"{toy['reference_db']}:{toy['reference_tree_id']}"
    q_ref = f"{toy['later_db']}:{toy['later_incompatible_tree_id']}"

    cp = _run_cli(["compare", p_ref, q_ref, "--details", "--outdir", str(outdir)])
    assert cp.returncode == 1, cp.stderr
    assert "apc" in cp.stdout
    assert (outdir / "report.html").exists()
    assert (outdir / "placements.tsv").exists()
    assert (outdir / "plots" / "leftover_counts.png").exists()

    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["compatible"] is False
    assert summary["incompatible_nodes"] == 1
    bad = [row for row in summary["placements"] if not row["compatible"]]
    assert bad[0]["node"] == "apc"
    assert bad[0]["placed_at"] == "founder"


def test_compare_dry_run_writes_nothing(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "out"
    cp = _run_cli(
        ["compare", toy["reference_json"], toy["later_compatible_json"], "--outdir", str(outdir), "--dry-run"]
    )
    assert cp.returncode == 0, cp.stderr
    assert "Dry-run" in cp.stdout
    assert not outdir.exists()


def test_compare_missing_input_is_an_error(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(["compare", toy["reference_json"], str(tmp_path / "missing.json")])
    assert cp.returncode == 2
    assert "FileNotFoundError" in cp.stderr

    cp = _run_cli(["compare", f"{toy['reference_db']}:9999", toy["reference_json"]])
    assert cp.returncode == 2
    assert "ArchiveError" in cp.stderr


def test_batch_prints_compatible_pairs(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "batch"
    cp = _run_cli(["batch", toy["reference_db"], toy["later_db"], "--outdir", str(outdir), "--no-progress"])
    assert cp.returncode == 0, cp.stderr
    lines = [ln for ln in cp.stdout.splitlines() if ln.strip()]
    assert lines == [f"{toy['reference_tree_id']}\t{toy['later_compatible_tree_id']}"]

    pairs = (outdir / "pairs.tsv").read_text().splitlines()
    assert pairs[0].split("\t")[:3] == ["p_tree", "q_tree", "compatible"]
    assert len(pairs) == 3
    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["pairs_total"] == 2
    assert summary["pairs_compatible"] == 1
    assert (outdir / "plots" / "compatibility_matrix.png").exists()
    assert (outdir / "report.html").exists()


def test_import_with_vcf_then_export(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    db = tmp_path / "imported.sqlite"

    cp = _run_cli(
        ["import", toy["reference_skeleton_json"], "--vcf", toy["subclones_vcf"], "--db", str(db), "--validate"]
    )
    assert cp.returncode == 0, cp.stderr
    tree_id = cp.stdout.strip()
    assert tree_id.isdigit()

    cp = _run_cli(["compare", toy["reference_json"], f"{db}:{tree_id}", "--resolution", "0"])
    assert cp.returncode == 0, cp.stderr

    out = tmp_path / "exported.json"
    cp = _run_cli(["export", str(db), tree_id, "--out", str(out)])
    assert cp.returncode == 0, cp.stderr
    exported = json.loads(out.read_text())
    assert exported["label"] == "normal"
    assert exported["children"][0]["label"] == "founder"


def test_negative_resolution_is_rejected(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(["compare", toy["reference_json"], toy["reference_json"], "--resolution", "-5"])
    assert cp.returncode == 2
    assert "resolution" in cp.stderr


def test_make_toy_data_cli(tmp_path: Path) -> None:
    outdir = tmp_path / "toy"
    cp = _run_cli(["make-toy-data", "--outdir", str(outdir)])
    assert cp.returncode == 0, cp.stderr
    summary = json.loads(cp.stdout)
    assert Path(summary["reference_db"]).exists()
    assert (outdir / "subclones.vcf").exists()
