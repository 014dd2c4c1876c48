from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pysam

from . import __version__
from .engine import (
    SORT_ORDERS,
    EngineResult,
    EngineSettings,
    ReadArena,
    build_coordinate_space,
    read_to_jsonable,
    run_engine,
    summarize,
)
from .models import Region
from .plotting import plot_alignments_per_read, plot_interval_counts, plot_read_length_hist
from .reader import BamRegionReader, fetch_from_all, fetch_regions, plan_focus_regions
from .report import render_report
from .sam import parse_coords_text, parse_locus, parse_sam_text
from .toy_data import make_toy_data
from .utils import ensure_outdir, read_text_maybe_gzip, write_json
from .validation import check_bam_index, detect_contig_style


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


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _locus(text: str) -> Region:
    try:
        return parse_locus(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    msg = f"{err.__class__.__name__}: {err}"
    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _bam_contigs(bam_path: str) -> list[str]:
    with pysam.AlignmentFile(bam_path, "rb") as bam:
        return list(bam.header.references)


def _add_engine_args(p: argparse.ArgumentParser) -> None:
    d = EngineSettings()
    p.add_argument(
        "--min-indel-size",
        type=int,
        default=d.min_indel_size,
        help="Smallest insertion/deletion shown as a path vertex; -1 hides all indels.",
    )
    p.add_argument(
        "--merge-margin",
        type=int,
        default=d.merge_margin,
        help="Footprints closer than this (bp) are merged into one interval.",
    )
    p.add_argument(
        "--whole-reference-fraction",
        type=float,
        default=d.whole_reference_fraction,
        help="If intervals cover more than this fraction of a chromosome, show the whole chromosome.",
    )
    p.add_argument(
        "--min-alignments",
        type=int,
        default=d.min_alignments_per_interval,
        help="Drop intervals with fewer alignments from the virtual axis.",
    )
    p.add_argument(
        "--pair-spacing",
        type=int,
        default=d.pair_spacing,
        help="Query-axis gap drawn between two mates of a pair.",
    )
    p.add_argument(
        "--no-flip-second-in-pair",
        action="store_true",
        help="Do not reverse the query axis of the second mate.",
    )
    p.add_argument(
        "--paired-scan-limit",
        type=int,
        default=d.paired_scan_limit,
        help="Number of leading records checked for the paired-end flag.",
    )
    p.add_argument(
        "--region-padding",
        type=int,
        default=d.additional_region_padding,
        help="Padding (bp) added on both sides of each requested region before layout.",
    )
    p.add_argument(
        "--show-all-references",
        action="store_true",
        help="Also list chromosomes whose size is only guessed from the alignments.",
    )
    p.add_argument(
        "--read-order",
        choices=list(SORT_ORDERS),
        default="original",
        help="Order of records in reads.json.",
    )


def _settings_from_args(args: argparse.Namespace) -> EngineSettings:
    return EngineSettings(
        min_indel_size=int(args.min_indel_size),
        merge_margin=int(args.merge_margin),
        whole_reference_fraction=float(args.whole_reference_fraction),
        min_alignments_per_interval=int(args.min_alignments),
        pair_spacing=int(args.pair_spacing),
        flip_second_in_pair=not bool(args.no_flip_second_in_pair),
        show_only_known_references=not bool(args.show_all_references),
        paired_scan_limit=int(args.paired_scan_limit),
        additional_region_padding=int(args.region_padding),
        fetch_margin=int(getattr(args, "fetch_margin", EngineSettings.fetch_margin)),
        fetch_workers=int(getattr(args, "threads", EngineSettings.fetch_workers)),
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="alignribbon",
        description=(
            "AlignRibbon: decode split, paired-end and assembly alignments around loci of interest "
            "and lay them out on a compact virtual reference axis."
        ),
    )
    p.add_argument("--version", action="version", version=f"alignribbon {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser(
        "quickstart",
        help="Print ready-to-run recipes for common inputs.",
    )

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate tiny BAM, SAM and coords inputs for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # region
    # -----------------
    r = sub.add_parser(
        "region",
        help="Fetch reads around one or more loci from indexed BAM/CRAM files.",
    )
    r.add_argument(
        "--bam",
        required=True,
        action="append",
        type=_path_exists,
        help="Indexed BAM/CRAM; repeat to combine several files.",
    )
    r.add_argument(
        "--locus",
        required=True,
        action="append",
        type=_locus,
        help="Locus chrom:start-end; reads are fetched around its start and end. Repeat for more.",
    )
    r.add_argument("--outdir", required=True, help="Output directory.")
    r.add_argument(
        "--fetch-margin",
        type=int,
        default=EngineSettings.fetch_margin,
        help="Reads are fetched within this many bp of each locus boundary.",
    )
    r.add_argument("--threads", type=int, default=EngineSettings.fetch_workers, help="Parallel region fetches.")
    _add_engine_args(r)
    r.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned fetches.")
    r.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # sam
    # -----------------
    s = sub.add_parser(
        "sam",
        help="Decode alignments from SAM text (.sam/.sam.gz), header optional.",
    )
    s.add_argument("--sam", required=True, type=_path_exists, help="SAM text file.")
    s.add_argument("--outdir", required=True, help="Output directory.")
    s.add_argument("--locus", default=None, type=_locus, help="Optional focal region to include.")
    _add_engine_args(s)
    s.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    s.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    # -----------------
    # coords
    # -----------------
    c = sub.add_parser(
        "coords",
        help="Decode assembly alignments from MUMmer show-coords -lTH output.",
    )
    c.add_argument("--coords", required=True, type=_path_exists, help="show-coords -lTH output.")
    c.add_argument("--outdir", required=True, help="Output directory.")
    c.add_argument("--locus", default=None, type=_locus, help="Optional focal region to include.")
    _add_engine_args(c)
    c.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")
    c.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "AlignRibbon quickstart (copy/paste):",
        "",
        "1) Indexed BAM around a breakpoint:",
        "   alignribbon region \\",
        "     --bam sample.bam \\",
        "     --locus chr1:1,000,000-1,002,000 \\",
        "     --outdir results/",
        "   Outputs: results/report.html, results/reads.json, results/intervals.json",
        "",
        "2) SAM text (e.g. a handful of lines copied from samtools view):",
        "   alignribbon sam --sam reads.sam --outdir sam_run/",
        "",
        "3) Assembly vs reference (MUMmer):",
        "   show-coords -lTH out.delta > out.coords",
        "   alignribbon coords --coords out.coords --outdir asm_run/",
        "",
        "Tip: use --min-indel-size -1 to hide indels, and --dry-run to check inputs first.",
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


def _planned_outputs(outdir: Path) -> List[str]:
    return [
        f"  report.html -> {outdir / 'report.html'}",
        f"  reads.json -> {outdir / 'reads.json'}",
        f"  intervals.json -> {outdir / 'intervals.json'}",
        f"  summary.json -> {outdir / 'summary.json'}",
    ]


def _write_outputs(
    *,
    outdir: Path,
    result: EngineResult,
    settings: EngineSettings,
    read_order: str,
    inputs: List[tuple],
    locus: Optional[str] = None,
) -> Path:
    logger = logging.getLogger("alignribbon")
    summary = summarize(result)

    order = result.arena.sort_index(read_order, mapper=result.space.mapper)
    write_json(outdir / "reads.json", [read_to_jsonable(result.arena[i]) for i in order])
    write_json(
        outdir / "intervals.json",
        {
            "intervals": [asdict(iv) for iv in result.space.intervals],
            "whole_references": [asdict(ref) for ref in result.space.whole_refs],
            "virtual_axis_length": result.space.mapper.domain_length,
        },
    )
    settings_d = asdict(settings)
    write_json(outdir / "summary.json", {**summary, "settings": settings_d, "version": __version__})

    plots_dir = outdir / "plots"
    plots_dir.mkdir(parents=True, exist_ok=True)
    interval_png = plots_dir / "interval_counts.png"
    length_png = plots_dir / "read_length_hist.png"
    per_read_png = plots_dir / "alignments_per_read.png"

    plot_interval_counts(intervals=result.space.intervals, out_png=interval_png)
    plot_read_length_hist(
        bin_edges=summary["read_length_hist"]["bin_edges"],
        counts=summary["read_length_hist"]["counts"],
        out_png=length_png,
    )
    plot_alignments_per_read(
        alignments_per_read=[len(r.segments) for r in result.arena],
        out_png=per_read_png,
    )

    plots_rel: Dict[str, str] = {
        "interval_counts": str(Path("plots") / interval_png.name),
        "read_length_hist": str(Path("plots") / length_png.name),
        "alignments_per_read": str(Path("plots") / per_read_png.name),
    }
    report_path = render_report(
        outdir=outdir,
        version=__version__,
        summary=summary,
        intervals=result.space.intervals,
        whole_refs=result.space.whole_refs,
        settings=settings_d,
        inputs=inputs,
        plots=plots_rel,
        locus=locus,
    )
    logger.info("Report written: %s", report_path)
    return report_path


def cmd_region(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "region.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("alignribbon")
    logger.info("alignribbon %s", __version__)

    try:
        settings = _settings_from_args(args)
        loci: Sequence[Region] = args.locus

        if args.dry_run:
            for bam in args.bam:
                check_bam_index(bam)
            print("Dry-run: inputs look OK.")
            for bam in args.bam:
                print(f"BAM contig style ({bam}): {detect_contig_style(_bam_contigs(bam))}")
            regions = plan_focus_regions(
                loci,
                fetch_margin=settings.fetch_margin,
                merge_margin=settings.merge_margin,
            )
            print("Planned fetches:")
            for reg in regions:
                print(f"  {reg.chrom}:{reg.start}-{reg.end}")
            print("Planned outputs:")
            print("\n".join(_planned_outputs(outdir)))
            return 0

        readers = [BamRegionReader(bam, source_index=i) for i, bam in enumerate(args.bam)]
        ref_sizes: Dict[str, int] = {}
        for reader in readers:
            for name, size in reader.ref_sizes.items():
                ref_sizes.setdefault(name, size)

        regions = plan_focus_regions(
            loci,
            fetch_margin=settings.fetch_margin,
            merge_margin=settings.merge_margin,
            ref_sizes=ref_sizes,
            whole_reference_fraction=settings.whole_reference_fraction,
        )
        records, progress = fetch_regions(
            fetch_from_all(readers),
            regions,
            max_workers=settings.fetch_workers,
        )
        if progress.failed == progress.issued and progress.issued:
            raise ValueError("Every region fetch failed; see the log for details")

        result = run_engine(
            records,
            settings,
            ref_sizes=ref_sizes,
            additional_regions=regions,
            progress=True,
        )
        result.counts["fetches_issued"] = progress.issued
        result.counts["fetches_failed"] = progress.failed

        outdir = ensure_outdir(outdir)
        report_path = _write_outputs(
            outdir=outdir,
            result=result,
            settings=settings,
            read_order=args.read_order,
            inputs=[("BAM", b) for b in args.bam],
            locus=", ".join(f"{r.chrom}:{r.start}-{r.end}" for r in loci),
        )
        print(str(report_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_sam(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "sam.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("alignribbon")
    logger.info("alignribbon %s", __version__)

    try:
        settings = _settings_from_args(args)
        ref_sizes, records, skipped = parse_sam_text(read_text_maybe_gzip(args.sam))
        if skipped:
            logger.warning("Skipped %d unparseable SAM line(s)", skipped)

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Alignment records: {len(records)}")
            print(f"Header references: {len(ref_sizes)}")
            print("Planned outputs:")
            print("\n".join(_planned_outputs(outdir)))
            return 0

        result = run_engine(
            records,
            settings,
            ref_sizes=ref_sizes,
            focal_region=args.locus,
            progress=True,
        )
        result.counts["sam_lines_skipped"] = skipped

        outdir = ensure_outdir(outdir)
        report_path = _write_outputs(
            outdir=outdir,
            result=result,
            settings=settings,
            read_order=args.read_order,
            inputs=[("SAM", args.sam)],
            locus=None if args.locus is None else f"{args.locus.chrom}:{args.locus.start}-{args.locus.end}",
        )
        print(str(report_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_coords(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "coords.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("alignribbon")
    logger.info("alignribbon %s", __version__)

    try:
        settings = _settings_from_args(args)
        reads, ref_sizes, skipped = parse_coords_text(read_text_maybe_gzip(args.coords))
        if skipped:
            logger.warning("Skipped %d malformed coords line(s)", skipped)

        if args.dry_run:
            print("Dry-run: inputs look OK.")
            print(f"Query sequences: {len(reads)}")
            print("Planned outputs:")
            print("\n".join(_planned_outputs(outdir)))
            return 0

        arena = ReadArena(reads)
        space = build_coordinate_space(arena, settings, ref_sizes=ref_sizes, focal_region=args.locus)
        counts = {
            "records_total": sum(len(r.segments) for r in reads),
            "coords_lines_skipped": skipped,
            "reads_total": len(reads),
            "intervals_total": len(space.intervals),
            "intervals_retained": sum(1 for iv in space.intervals if iv.retained),
        }
        result = EngineResult(arena=arena, space=space, counts=counts)

        outdir = ensure_outdir(outdir)
        report_path = _write_outputs(
            outdir=outdir,
            result=result,
            settings=settings,
            read_order=args.read_order,
            inputs=[("coords", args.coords)],
        )
        print(str(report_path))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "region":
        return cmd_region(args)
    if args.cmd == "sam":
        return cmd_sam(args)
    if args.cmd == "coords":
        return cmd_coords(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
