import json
import shutil
import subprocess
import sys
from pathlib import Path

from alignribbon.toy_data import make_toy_data


def _run_cli(args: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "alignribbon"] + args,
        check=False,
        capture_output=True,
        text=True,
    )


def test_quickstart_output() -> None:
    cp = _run_cli(["quickstart"])
    assert cp.returncode == 0
    assert "alignribbon region" in cp.stdout
    assert "alignribbon coords" in cp.stdout


def test_region_dry_run_does_not_write_outputs(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "region"
    cp = _run_cli(
        [
            "region",
            "--bam",
            toy["split_bam"],
            "--locus",
            toy["locus"],
            "--outdir",
            str(outdir),
            "--dry-run",
        ]
    )
    assert cp.returncode == 0
    assert "Dry-run" in cp.stdout
    assert "contig style" in cp.stdout
    assert "chr1:900-1200" in cp.stdout
    assert not (outdir / "summary.json").exists()


def test_make_toy_data_and_region(tmp_path: Path) -> None:
    toy_dir = tmp_path / "toy"
    cp = _run_cli(["make-toy-data", "--outdir", str(toy_dir)])
    assert cp.returncode == 0

    outdir = tmp_path / "out"
    cp = _run_cli(
        [
            "region",
            "--bam",
            str(toy_dir / "split_reads.bam"),
            "--locus",
            "chr1:1,000-1,100",
            "--locus",
            "chr1:15000-15100",
            "--outdir",
            str(outdir),
            "--read-order",
            "readname",
        ]
    )
    assert cp.returncode == 0, cp.stderr
    assert (outdir / "report.html").exists()
    assert (outdir / "plots" / "interval_counts.png").exists()

    reads = json.loads((outdir / "reads.json").read_text())
    assert [r["read_name"] for r in reads] == ["plain_a", "split_a", "split_b"]
    split_a = reads[1]
    assert [s["chrom"] for s in split_a["segments"]] == ["chr2", "chr1"]

    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["paired_end"] is False
    assert summary["counts"]["fetches_issued"] == 2


def test_region_wide_locus_keeps_axis_to_breakpoint_windows(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "wide"
    cp = _run_cli(
        ["region", "--bam", toy["split_bam"], "--locus", "chr1:1000-15050", "--outdir", str(outdir)]
    )
    assert cp.returncode == 0, cp.stderr
    intervals = json.loads((outdir / "intervals.json").read_text())["intervals"]
    chr1 = [(iv["start"], iv["end"]) for iv in intervals if iv["chrom"] == "chr1"]
    assert chr1 == [(0, 2100), (13_950, 16_150)]


def test_region_padding_and_paired_scan_limit_flags(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "padded"
    cp = _run_cli(
        [
            "region",
            "--bam",
            toy["split_bam"],
            "--locus",
            "chr1:1000-15050",
            "--region-padding",
            "50",
            "--outdir",
            str(outdir),
        ]
    )
    assert cp.returncode == 0, cp.stderr
    intervals = json.loads((outdir / "intervals.json").read_text())["intervals"]
    chr1 = [(iv["start"], iv["end"]) for iv in intervals if iv["chrom"] == "chr1"]
    assert chr1 == [(850, 1150), (14_900, 15_200)]
    settings = json.loads((outdir / "summary.json").read_text())["settings"]
    assert settings["additional_region_padding"] == 50

    outdir = tmp_path / "unpaired"
    cp = _run_cli(
        [
            "region",
            "--bam",
            toy["paired_bam"],
            "--locus",
            "chr1:3000-3500",
            "--paired-scan-limit",
            "0",
            "--outdir",
            str(outdir),
        ]
    )
    assert cp.returncode == 0, cp.stderr
    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["paired_end"] is False
    assert summary["settings"]["paired_scan_limit"] == 0


def test_region_paired_end(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    outdir = tmp_path / "pairs"
    cp = _run_cli(
        ["region", "--bam", toy["paired_bam"], "--locus", "chr1:3000-3500", "--outdir", str(outdir)]
    )
    assert cp.returncode == 0, cp.stderr
    summary = json.loads((outdir / "summary.json").read_text())
    assert summary["paired_end"] is True
    assert summary["counts"]["pairs_missing_mate"] == 1
    reads = json.loads((outdir / "reads.json").read_text())
    assert all(r["raw_type"] == "pairedEnd" for r in reads)


def test_sam_and_coords_inputs(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")

    cp = _run_cli(["sam", "--sam", toy["split_sam"], "--outdir", str(tmp_path / "sam"), "--min-indel-size", "-1"])
    assert cp.returncode == 0, cp.stderr
    summary = json.loads((tmp_path / "sam" / "summary.json").read_text())
    assert summary["counts"]["records_skipped_empty_cigar"] == 1
    assert summary["reads"] == 4

    cp = _run_cli(["coords", "--coords", toy["coords"], "--outdir", str(tmp_path / "coords")])
    assert cp.returncode == 0, cp.stderr
    intervals = json.loads((tmp_path / "coords" / "intervals.json").read_text())
    assert {iv["chrom"] for iv in intervals["intervals"]} == {"chr1", "chr2"}


def test_unindexed_bam_message(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    bam = tmp_path / "copy.bam"
    shutil.copy(toy["split_bam"], bam)

    cp = _run_cli(["region", "--bam", str(bam), "--locus", "chr1:1000-1100", "--outdir", str(tmp_path / "out")])
    assert cp.returncode == 2
    assert "not indexed" in cp.stderr


def test_bad_locus_is_rejected(tmp_path: Path) -> None:
    toy = make_toy_data(outdir=tmp_path / "toy")
    cp = _run_cli(["region", "--bam", toy["split_bam"], "--locus", "chr1", "--outdir", str(tmp_path / "out")])
    assert cp.returncode != 0
    assert "chrom:start-end" in cp.stderr
