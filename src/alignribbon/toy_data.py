from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pysam

from .utils import ensure_outdir, write_json

TOY_CONTIGS: Tuple[Tuple[str, int], ...] = (("chr1", 20_000), ("chr2", 20_000))

_M, _I, _D, _S, _H = 0, 1, 2, 4, 5


def _make_read(
    name: str,
    ref_id: int,
    start0: int,
    cigartuples: Sequence[Tuple[int, int]],
    *,
    flag: int = 0,
    mapq: int = 60,
    tags: Optional[List[Tuple[str, str]]] = None,
    mate: Optional[Tuple[int, int]] = None,
) -> pysam.AlignedSegment:
    qlen = sum(n for op, n in cigartuples if op in (_M, _I, _S)) or 50
    a = pysam.AlignedSegment()
    a.query_name = name
    a.query_sequence = ("ACGT" * (qlen // 4 + 1))[:qlen]
    a.flag = flag
    a.reference_id = ref_id
    a.reference_start = start0
    a.mapping_quality = mapq
    a.cigartuples = list(cigartuples)
    a.query_qualities = pysam.qualitystring_to_array("I" * qlen)
    if mate is not None:
        a.next_reference_id, a.next_reference_start = mate
    for tag, value in tags or []:
        a.set_tag(tag, value, value_type="Z")
    return a


def _split_reads() -> List[pysam.AlignedSegment]:
    reads = [
        # chr1 -> chr2 breakpoint, primary plus its supplementary
        _make_read(
            "split_a",
            0,
            999,
            [(_M, 100), (_S, 50)],
            tags=[("SA", "chr2,5001,+,100S50M,60,0;"), ("HP", "1")],
        ),
        _make_read(
            "split_a",
            1,
            5000,
            [(_H, 100), (_M, 50)],
            flag=0x800,
            tags=[("SA", "chr1,1000,+,100M50S,60,0;"), ("HP", "1")],
        ),
        # same breakpoint, reverse strand for the chr2 part
        _make_read(
            "split_b",
            0,
            1019,
            [(_M, 80), (_S, 70)],
            mapq=50,
            tags=[("SA", "chr2,5101,-,80S70M,40,2;"), ("HP", "2")],
        ),
        # a long deletion and an insertion inside one alignment
        _make_read("indel_a", 0, 1999, [(_M, 60), (_D, 80), (_M, 30), (_I, 60), (_M, 40)]),
        # plain read far away from the others on chr1
        _make_read("plain_a", 0, 15_000, [(_M, 150)], mapq=30),
        # unaligned placeholder with no CIGAR
        _make_read("nocigar_a", 1, 9000, [], flag=0x4, mapq=0),
    ]
    return reads


def _paired_reads() -> List[pysam.AlignedSegment]:
    reads: List[pysam.AlignedSegment] = []
    for i, (left, right) in enumerate([(2999, 3299), (3049, 3399), (3099, 3449)]):
        name = f"pair_{i}"
        reads.append(_make_read(name, 0, left, [(_M, 100)], flag=0x1 | 0x2 | 0x20 | 0x40, mate=(0, right)))
        reads.append(_make_read(name, 0, right, [(_M, 100)], flag=0x1 | 0x2 | 0x10 | 0x80, mate=(0, left)))
    # mate outside the toy regions
    reads.append(_make_read("pair_lonely", 0, 3199, [(_M, 100)], flag=0x1 | 0x40, mate=(1, 7000)))
    return reads


def _write_bam(path: Path, header: Dict, reads: List[pysam.AlignedSegment]) -> None:
    reads = sorted(reads, key=lambda r: (r.reference_id, r.reference_start))
    with pysam.AlignmentFile(str(path), "wb", header=header) as bam:
        for r in reads:
            bam.write(r)
    pysam.index(str(path))


def _write_sam(path: Path, header: Dict, reads: List[pysam.AlignedSegment]) -> None:
    with pysam.AlignmentFile(str(path), "w", header=header) as sam:
        for r in reads:
            sam.write(r)


def _coords_rows() -> List[str]:
    # ref start, ref end, query start, query end, ref len, query len, identity,
    # ref total, query total, ref name, query name
    rows = [
        (1001, 6000, 1, 5000, 5000, 5000, 99.1, 20000, 9000, "chr1", "contig_1"),
        (8001, 11000, 9000, 6001, 3000, 3000, 98.4, 20000, 9000, "chr2", "contig_1"),
        (12001, 14000, 1, 2000, 2000, 2000, 99.9, 20000, 2000, "chr1", "contig_2"),
    ]
    return ["\t".join(str(c) for c in row) for row in rows]


def make_toy_data(*, outdir: str | Path) -> Dict[str, str]:
    """Create tiny alignment inputs for quick demos/tests.

    The outputs include:
    - split_reads.bam (+ .bai): split reads with SA tags, an indel read, a read without CIGAR
    - paired.bam (+ .bai): read pairs, one with its mate elsewhere
    - split_reads.sam: the split-read records as SAM text
    - assembly.coords: MUMmer show-coords -lTH style rows

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)

    header = {
        "HD": {"VN": "1.6", "SO": "coordinate"},
        "SQ": [{"SN": name, "LN": length} for name, length in TOY_CONTIGS],
    }

    split_bam = outdir_p / "split_reads.bam"
    _write_bam(split_bam, header, _split_reads())

    paired_bam = outdir_p / "paired.bam"
    _write_bam(paired_bam, header, _paired_reads())

    split_sam = outdir_p / "split_reads.sam"
    _write_sam(split_sam, header, _split_reads())

    coords = outdir_p / "assembly.coords"
    coords.write_text("\n".join(_coords_rows()) + "\n", encoding="utf-8")

    summary = {
        "split_bam": str(split_bam),
        "paired_bam": str(paired_bam),
        "split_sam": str(split_sam),
        "coords": str(coords),
        "locus": "chr1:1000-1100",
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
