from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

from .alignments import assemble_read, longest_segment_index, redecode_split_read
from .errors import UnrecognizedPairFlag
from .models import (
    AlignmentSegment,
    PairLink,
    PathPoint,
    RawType,
    ReadRecord,
)

logger = logging.getLogger(__name__)

PAIRED_SCAN_LIMIT = 100

# Edit distance written into SA entries rebuilt from duplicate primary lines.
# The real NM of the duplicate is not carried over.
_FABRICATED_SA_EDIT_DISTANCE = 0


@dataclass
class _MatePair:
    first: Optional[ReadRecord] = None
    second: Optional[ReadRecord] = None


def detect_paired_end(reads: Sequence[ReadRecord], scan_limit: int = PAIRED_SCAN_LIMIT) -> bool:
    """True if any of the first ``scan_limit`` records carries the paired flag bit."""
    return any(r.flag & 0x1 for r in reads[:scan_limit])


def most_common_read_length(reads: Sequence[ReadRecord]) -> int:
    """Mode of ``segments[0].read_length``; ties go to the length seen first."""
    counts = Counter(r.segments[0].read_length for r in reads if r.segments)
    if not counts:
        return 0
    return counts.most_common(1)[0][0]


def _is_better_mate(candidate: ReadRecord, current: ReadRecord) -> bool:
    # prefer primary lines over secondary/supplementary ones for the same mate
    def rank(r: ReadRecord) -> int:
        return 1 if r.flag & 0x900 else 0

    return rank(candidate) < rank(current)


def mate_slot(read: ReadRecord) -> str:
    """Return "first" or "second" from the pair flag bits."""
    if read.flag & 0x40:
        return "first"
    if read.flag & 0x80:
        return "second"
    raise UnrecognizedPairFlag(read.read_name, read.flag)


def _group_mates(reads: Sequence[ReadRecord]) -> Tuple[Dict[str, _MatePair], int]:
    pairs: Dict[str, _MatePair] = {}
    unrecognized = 0
    for read in reads:
        try:
            slot = mate_slot(read)
        except UnrecognizedPairFlag as e:
            logger.warning("%s; dropping it", e)
            unrecognized += 1
            continue
        pair = pairs.setdefault(read.read_name, _MatePair())
        current = getattr(pair, slot)
        if current is None or _is_better_mate(read, current):
            setattr(pair, slot, read)
    return pairs, unrecognized


def _shift_segment(seg: AlignmentSegment, *, flip: bool, shift: int, total: int) -> AlignmentSegment:
    if flip:
        path = tuple(PathPoint(p.R, total - p.Q) for p in seg.path)
        qs, qe = total - seg.query_start, total - seg.query_end
    else:
        path = tuple(PathPoint(p.R, p.Q + shift) for p in seg.path)
        qs, qe = seg.query_start + shift, seg.query_end + shift
    return replace(seg, path=path, query_start=qs, query_end=qe)


def _pair_link(
    first: Sequence[AlignmentSegment],
    second: Sequence[AlignmentSegment],
) -> PairLink:
    from_pos: Dict[bool, Optional[int]] = {True: None, False: None}
    to_pos: Dict[bool, Optional[int]] = {True: None, False: None}
    chrom: Dict[bool, Optional[str]] = {True: None, False: None}

    # first mate: rightmost reach anchors the "extends right" link,
    # leftmost reach anchors the "extends left" link
    for seg in first:
        hi = max(seg.ref_start, seg.ref_end)
        lo = min(seg.ref_start, seg.ref_end)
        if from_pos[False] is None or hi > from_pos[False]:
            from_pos[False] = hi
            chrom[False] = seg.chrom
        if to_pos[True] is None or lo < to_pos[True]:
            to_pos[True] = lo
            chrom[True] = seg.chrom

    for seg in second:
        hi = max(seg.ref_start, seg.ref_end)
        lo = min(seg.ref_start, seg.ref_end)
        if chrom[False] is not None and seg.chrom == chrom[False]:
            if to_pos[False] is None or lo < to_pos[False]:
                to_pos[False] = lo
        if chrom[True] is not None and seg.chrom == chrom[True]:
            if from_pos[True] is None or hi > from_pos[True]:
                from_pos[True] = hi

    diff: Optional[int] = None
    if to_pos[False] is not None and from_pos[False] is not None:
        diff = abs(to_pos[False] - from_pos[False])
    return PairLink(from_pos=from_pos, to_pos=to_pos, chrom=chrom, diff=diff)


def synthesize_pair(
    first: Optional[ReadRecord],
    second: Optional[ReadRecord],
    *,
    default_read_length: int,
    pair_spacing: int,
    flip_second_in_pair: bool,
) -> ReadRecord:
    """Glue two mates into one fragment-level record on a shared query axis.

    The first mate keeps its query coordinates. The second mate is moved behind
    it, after ``pair_spacing``: either shifted by ``first_length + pair_spacing``
    or, when flipping, mirrored as ``Q' = total_length - Q``.
    """
    if first is None and second is None:
        raise ValueError("synthesize_pair needs at least one mate")

    first_length = first.segments[0].read_length if first is not None else default_read_length
    second_length = second.segments[0].read_length if second is not None else default_read_length
    shift = first_length + pair_spacing
    total = first_length + pair_spacing + second_length

    first_segments: List[AlignmentSegment] = list(first.segments) if first is not None else []
    second_segments: List[AlignmentSegment] = []
    if second is not None:
        second_segments = [
            _shift_segment(s, flip=flip_second_in_pair, shift=shift, total=total)
            for s in second.segments
        ]

    link = _pair_link(first_segments, second_segments)
    segments = tuple(replace(s, read_length=total) for s in first_segments + second_segments)

    anchor = second if second is not None else first
    assert anchor is not None
    lead = first if first is not None else second
    assert lead is not None

    return ReadRecord(
        read_name=anchor.read_name,
        raw_type=RawType.PAIRED_END,
        segments=segments,
        primary_index=len(segments) - 1,
        longest_index=longest_segment_index(segments),
        flag=lead.flag,
        raw=None,
        sources=(),
        haplotype=lead.haplotype,
        source_index=lead.source_index,
        read_length_mismatch=any(m.read_length_mismatch for m in (first, second) if m is not None),
        pair_link=link,
        mates=(first, second),
        read_lengths=(first_length, pair_spacing, second_length),
    )


def reconcile_pairs(
    reads: Sequence[ReadRecord],
    *,
    pair_spacing: int = 20,
    flip_second_in_pair: bool = True,
) -> Tuple[List[ReadRecord], Dict[str, int]]:
    """Group mates by read name and synthesize one record per fragment."""
    default_read_length = most_common_read_length(reads)
    pairs, unrecognized = _group_mates(reads)

    out: List[ReadRecord] = []
    counts = {
        "pairs_total": 0,
        "pairs_missing_mate": 0,
        "records_unrecognized_pair_flag": unrecognized,
    }
    for pair in pairs.values():
        if pair.first is None or pair.second is None:
            counts["pairs_missing_mate"] += 1
        out.append(
            synthesize_pair(
                pair.first,
                pair.second,
                default_read_length=default_read_length,
                pair_spacing=pair_spacing,
                flip_second_in_pair=flip_second_in_pair,
            )
        )
        counts["pairs_total"] += 1
    return out, counts


def redecode_pair(
    record: ReadRecord,
    min_indel_size: int,
    *,
    default_read_length: Optional[int] = None,
    pair_spacing: int = 20,
    flip_second_in_pair: bool = True,
) -> ReadRecord:
    """Re-decode both mates at a new indel threshold and glue them again.

    A missing mate keeps the length stored in ``record.read_lengths`` so the
    present mate stays where it was on the query axis. ``default_read_length``
    is only consulted for records built without stored lengths.
    """
    first, second = record.mates
    if first is not None:
        first = redecode_split_read(first, min_indel_size)
    if second is not None:
        second = redecode_split_read(second, min_indel_size)
    missing_length = default_read_length
    if record.read_lengths is not None:
        first_length, _, second_length = record.read_lengths
        missing_length = first_length if first is None else second_length
    if missing_length is None and (first is None or second is None):
        raise ValueError(f"No read length stored for the missing mate of {record.read_name}")
    return synthesize_pair(
        first,
        second,
        default_read_length=missing_length or 0,
        pair_spacing=pair_spacing,
        flip_second_in_pair=flip_second_in_pair,
    )


def _fabricated_sa_entry(read: ReadRecord) -> str:
    raw = read.raw
    assert raw is not None
    return ",".join(
        [
            raw.chrom,
            str(raw.pos),
            raw.strand,
            raw.cigar,
            str(raw.mapping_quality),
            str(_FABRICATED_SA_EDIT_DISTANCE),
        ]
    )


def deduplicate_reads(
    reads: Sequence[ReadRecord],
    min_indel_size: int,
) -> Tuple[List[ReadRecord], Dict[str, int]]:
    """Collapse records that share a read name (non-paired input).

    Some aligners write one line per alignment instead of one line with SA
    siblings. The first record of a read keeps all its segments; a later
    duplicate adds its primary alignment only when the read has nothing on that
    chromosome yet. The addition is written into the kept record's SA tag and the
    record is re-assembled, so a later re-decode reproduces the same set.
    """
    kept: Dict[str, ReadRecord] = {}
    chroms_seen: Dict[str, set] = {}
    counts = {"duplicates_merged": 0, "duplicates_ignored": 0}

    for read in reads:
        name = read.read_name
        if name not in kept:
            kept[name] = read
            chroms_seen[name] = {s.chrom for s in read.segments}
            continue

        base = kept[name]
        if read.raw is None or base.raw is None or read.primary.chrom in chroms_seen[name]:
            counts["duplicates_ignored"] += 1
            continue

        entry = _fabricated_sa_entry(read)
        sa = f"{base.raw.sa};{entry}" if base.raw.sa else entry
        merged_raw = replace(base.raw, sa=sa)
        merged, _ = assemble_read(merged_raw, min_indel_size)
        kept[name] = merged
        chroms_seen[name].add(read.primary.chrom)
        counts["duplicates_merged"] += 1

    return list(kept.values()), counts
