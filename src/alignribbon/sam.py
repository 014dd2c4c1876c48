"""Parsers for the text formats the engine reads directly.

- SAM alignment lines (first 6 columns plus ``SA`` and ``HP`` tags),
- SAM ``@SQ`` header lines,
- MUMmer ``show-coords -lTH`` output (11 columns, no header),
- locus strings such as ``chr1:1,000,000-1,002,000``.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from .alignments import longest_segment_index
from .errors import MalformedCoordsLine, MalformedLocus
from .models import AlignmentSegment, PathPoint, RawAlignmentRecord, RawType, ReadRecord, Region

logger = logging.getLogger(__name__)

_SAM_MIN_COLUMNS = 6
_SAM_FIRST_TAG_COLUMN = 11
COORDS_COLUMNS = 11

_WS = re.compile(r"\s+")


def _tag_value(field: str) -> str:
    # TAG:TYPE:VALUE
    parts = field.split(":", 2)
    return parts[2] if len(parts) == 3 else ""


def parse_sam_line(line: str, *, source_index: int = 0) -> RawAlignmentRecord:
    """Parse one SAM alignment line (tab or whitespace separated)."""
    fields = line.rstrip("\r\n").split("\t")
    if len(fields) < _SAM_MIN_COLUMNS:
        fields = _WS.split(line.strip())
    if len(fields) < _SAM_MIN_COLUMNS:
        raise ValueError(f"SAM line has fewer than {_SAM_MIN_COLUMNS} columns: {line[:80]!r}")

    sa: Optional[str] = None
    hp: Optional[str] = None
    for field in fields[_SAM_FIRST_TAG_COLUMN:]:
        if field.startswith("SA:"):
            sa = _tag_value(field)
        elif field.startswith("HP:"):
            hp = _tag_value(field)

    try:
        flag = int(fields[1])
        pos = int(fields[3])
        mapq = int(fields[4])
    except ValueError:
        raise ValueError(f"SAM line has non-numeric FLAG/POS/MAPQ: {line[:80]!r}") from None

    return RawAlignmentRecord(
        read_name=fields[0],
        flag=flag,
        chrom=fields[2],
        pos=pos,
        mapping_quality=mapq,
        cigar=fields[5],
        sa=sa,
        hp=hp,
        source_index=source_index,
    )


def parse_sam_header(lines: Iterable[str]) -> Dict[str, object]:
    """Collect ``{SN: LN}`` from ``@SQ`` lines.

    Sizes are converted to int when possible; otherwise the raw text is kept so
    that the caller can report and exclude the chromosome.
    """
    sizes: Dict[str, object] = {}
    for line in lines:
        if not line.startswith("@SQ"):
            continue
        name: Optional[str] = None
        length: object = None
        for field in line.rstrip("\r\n").split("\t")[1:]:
            if field.startswith("SN:"):
                name = field[3:]
            elif field.startswith("LN:"):
                raw = field[3:]
                try:
                    length = int(raw)
                except ValueError:
                    length = raw
        if name is not None:
            sizes[name] = length
    return sizes


def parse_sam_text(text: str, *, source_index: int = 0) -> Tuple[Dict[str, object], List[RawAlignmentRecord], int]:
    """Split SAM text into header sizes and alignment records.

    Returns
    -------
    ref_sizes:
        ``@SQ`` sizes.
    records:
        Parsed alignment lines.
    skipped:
        Number of lines that could not be parsed (logged and dropped).
    """
    header: List[str] = []
    records: List[RawAlignmentRecord] = []
    skipped = 0
    for line in text.splitlines():
        if not line.strip():
            continue
        if line.startswith("@"):
            header.append(line)
            continue
        try:
            records.append(parse_sam_line(line, source_index=source_index))
        except ValueError as e:
            logger.warning("%s", e)
            skipped += 1
    return parse_sam_header(header), records, skipped


def parse_coords_columns(columns: List[str]) -> AlignmentSegment:
    """One ``show-coords -lTH`` row as an indel-free, two-vertex segment.

    Columns: ref start, ref end, query start, query end, ref aligned length,
    query aligned length, percent identity, ref total length, query total
    length, ref name, query name.
    """
    if len(columns) != COORDS_COLUMNS:
        raise MalformedCoordsLine(
            f"Expected {COORDS_COLUMNS} columns (MUMmer show-coords -lTH), found {len(columns)}"
        )
    try:
        rs, re_, qs, qe = (int(c) for c in columns[0:4])
        identity = float(columns[6])
        query_total = int(columns[8])
    except ValueError:
        raise MalformedCoordsLine(f"Non-numeric coordinate column in {' '.join(columns)!r}") from None

    return AlignmentSegment(
        chrom=columns[9],
        ref_start=rs,
        ref_end=re_,
        query_start=qs,
        query_end=qe,
        mapping_quality=identity,
        path=(PathPoint(rs, qs), PathPoint(re_, qe)),
        max_indel_size=None,
        aligned_length=abs(re_ - rs),
        read_length=query_total,
        strand="+" if qe >= qs else "-",
    )


def parse_coords_text(text: str) -> Tuple[List[ReadRecord], Dict[str, object], int]:
    """Group coords rows by query name into ReadRecords.

    Lines with fewer than 3 columns are treated as blank; other lines without
    exactly 11 columns are dropped with a warning.
    """
    by_query: Dict[str, List[AlignmentSegment]] = {}
    ref_sizes: Dict[str, object] = {}
    skipped = 0
    for lineno, line in enumerate(text.splitlines(), start=1):
        columns = _WS.split(line.strip()) if line.strip() else []
        if len(columns) < 3:
            continue
        try:
            seg = parse_coords_columns(columns)
        except MalformedCoordsLine as e:
            logger.warning("coords line %d: %s", lineno, e)
            skipped += 1
            continue
        by_query.setdefault(columns[10], []).append(seg)
        ref_sizes[columns[9]] = int(columns[7]) if columns[7].isdigit() else columns[7]

    reads: List[ReadRecord] = []
    for name, segments in by_query.items():
        reads.append(
            ReadRecord(
                read_name=name,
                raw_type=RawType.COORDS,
                segments=tuple(segments),
                primary_index=len(segments) - 1,
                longest_index=longest_segment_index(segments),
            )
        )
    return reads, ref_sizes, skipped


def parse_locus(text: str) -> Region:
    """Parse ``chrom:start[-end]``; commas in numbers are ignored. A bare start gives a 1bp region."""
    chrom, sep, rest = text.strip().rpartition(":")
    if not sep or not chrom or not rest:
        raise MalformedLocus(f"Locus must look like chrom:start-end, found {text!r}")
    parts = rest.replace(",", "").split("-")
    try:
        start = int(parts[0])
        end = int(parts[1]) if len(parts) == 2 else start + 1
    except ValueError:
        raise MalformedLocus(f"Locus positions must be integers, found {text!r}") from None
    if len(parts) > 2 or end < start:
        raise MalformedLocus(f"Invalid locus range {text!r}")
    return Region(chrom=chrom, start=start, end=end)
