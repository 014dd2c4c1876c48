from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

from .models import Interval, ReadRecord, Region, WholeReference

logger = logging.getLogger(__name__)

START = "s"
END = "e"

DEFAULT_MERGE_MARGIN = 10_000
DEFAULT_WHOLE_REFERENCE_FRACTION = 0.3

Event = Tuple[int, str]  # (position, START | END)
RawInterval = Tuple[int, int, int]  # (start, end, alignment_count)

_DIGITS = re.compile(r"(\d+)")


def natural_sort_key(name: str) -> Tuple[Tuple[int, Union[int, str]], ...]:
    """Sort key comparing digit runs as integers, so "chr2" < "chr10"."""
    return tuple((0, int(tok)) if tok.isdigit() else (1, tok) for tok in _DIGITS.split(name) if tok)


def planesweep_consolidate(events: Iterable[Event], margin: int = 0) -> List[RawInterval]:
    """Merge start/end events into disjoint intervals.

    Every end is pushed out by ``margin`` so footprints closer than the margin
    coalesce; the margin is removed again from the reported ends. Starts sort
    before ends at the same position, so touching footprints merge.

    Returns ``[(start, end, alignment_count), ...]`` ordered by start.
    """
    if margin < 0:
        raise ValueError("margin must be non-negative")

    shifted: List[Event] = []
    for pos, kind in events:
        if kind == END:
            shifted.append((pos + margin, END))
        elif kind == START:
            shifted.append((pos, START))
        else:
            raise ValueError(f"Unrecognized event kind {kind!r}; must be {START!r} or {END!r}")

    shifted.sort(key=lambda ev: (ev[0], 0 if ev[1] == START else 1))

    intervals: List[RawInterval] = []
    coverage = 0
    alignment_count = 0
    current_start = -1
    for pos, kind in shifted:
        if kind == START:
            coverage += 1
            alignment_count += 1
            if coverage == 1:
                current_start = pos
        else:
            coverage -= 1
            if coverage == 0:
                intervals.append((current_start, pos - margin, alignment_count))
                alignment_count = 0
    return intervals


def events_for_span(start: int, end: int) -> List[Event]:
    return [(min(start, end), START), (max(start, end), END)]


def apply_density_fallback(
    intervals: List[RawInterval],
    chrom_size: Optional[int],
    fraction: float = DEFAULT_WHOLE_REFERENCE_FRACTION,
) -> List[RawInterval]:
    """Show the whole chromosome when the intervals already cover most of it."""
    if not chrom_size:
        return intervals
    covered = sum(end - start for start, end, _ in intervals)
    count = sum(n for _, _, n in intervals)
    if covered / float(chrom_size) > fraction:
        return [(0, chrom_size, count)]
    return intervals


def consolidate_footprints(
    pieces_by_chrom: Mapping[str, Sequence[Event]],
    *,
    margin: int = DEFAULT_MERGE_MARGIN,
    ref_sizes: Optional[Mapping[str, int]] = None,
    whole_reference_fraction: float = DEFAULT_WHOLE_REFERENCE_FRACTION,
) -> Dict[str, List[RawInterval]]:
    """Planesweep each chromosome's events, then apply the density fallback."""
    sizes = ref_sizes or {}
    out: Dict[str, List[RawInterval]] = {}
    for chrom, events in pieces_by_chrom.items():
        merged = planesweep_consolidate(events, margin)
        out[chrom] = apply_density_fallback(merged, sizes.get(chrom), whole_reference_fraction)
    return out


def collect_footprints(
    reads: Iterable[ReadRecord],
    *,
    focal_region: Optional[Region] = None,
    additional_regions: Sequence[Region] = (),
    region_padding: int = 1000,
) -> Dict[str, List[Event]]:
    """Gather start/end events for every segment plus the regions that must stay in view."""
    pieces: Dict[str, List[Event]] = {}
    for read in reads:
        for seg in read.segments:
            pieces.setdefault(seg.chrom, []).extend(events_for_span(seg.ref_start, seg.ref_end))

    if focal_region is not None:
        pieces.setdefault(focal_region.chrom, []).extend(
            events_for_span(focal_region.start, focal_region.end)
        )

    for region in additional_regions:
        start = max(0, region.start - region_padding)
        end = region.end + region_padding
        pieces.setdefault(region.chrom, []).extend(events_for_span(start, end))
    return pieces


def build_intervals(consolidated: Mapping[str, Sequence[RawInterval]]) -> List[Interval]:
    """Lay out intervals in natural chromosome order with running offsets."""
    out: List[Interval] = []
    offset = 0
    for chrom in sorted(consolidated, key=natural_sort_key):
        for start, end, count in consolidated[chrom]:
            size = end - start
            out.append(
                Interval(
                    chrom=chrom,
                    start=start,
                    end=end,
                    size=size,
                    cumulative_offset=offset,
                    alignment_count=count,
                )
            )
            offset += size
    return out


def apply_interval_filters(
    intervals: Sequence[Interval],
    *,
    visible_chroms: Optional[Set[str]] = None,
    min_alignments: int = 1,
) -> List[Interval]:
    """Reassign offsets to the intervals that pass; the rest get offset -1."""
    out: List[Interval] = []
    offset = 0
    for iv in intervals:
        visible = visible_chroms is None or iv.chrom in visible_chroms
        if visible and iv.alignment_count >= min_alignments:
            out.append(replace(iv, cumulative_offset=offset))
            offset += iv.size
        else:
            out.append(replace(iv, cumulative_offset=-1))
    return out


def _numeric_size(chrom: str, size: object) -> Optional[int]:
    try:
        return int(size)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        logger.warning(
            "Skipping chromosome %s because its size is not a number (from header): %r",
            chrom,
            size,
        )
        return None


def whole_references_from_header(ref_sizes: Mapping[str, object]) -> List[WholeReference]:
    """WholeReference list from header sizes; non-numeric sizes are excluded."""
    out: List[WholeReference] = []
    offset = 0
    for chrom in sorted(ref_sizes, key=natural_sort_key):
        size = _numeric_size(chrom, ref_sizes[chrom])
        if size is None:
            continue
        out.append(WholeReference(chrom=chrom, size=size, cumulative_offset=offset))
        offset += size
    return out


def build_whole_references(
    consolidated: Mapping[str, Sequence[RawInterval]],
    ref_sizes: Mapping[str, object],
    *,
    show_only_known: bool = True,
) -> List[WholeReference]:
    """One entry per chromosome seen in the data or the header.

    Chromosomes missing from the header get a guessed size (twice the last
    interval end) unless ``show_only_known`` is set, in which case they are left
    out.
    """
    chroms = list(consolidated)
    for chrom in ref_sizes:
        if chrom not in consolidated:
            chroms.append(chrom)

    out: List[WholeReference] = []
    offset = 0
    for chrom in sorted(chroms, key=natural_sort_key):
        if chrom in ref_sizes:
            size = _numeric_size(chrom, ref_sizes[chrom])
            if size is None:
                continue
        elif show_only_known:
            continue
        else:
            intervals = consolidated[chrom]
            if not intervals:
                continue
            size = intervals[-1][1] * 2
        out.append(WholeReference(chrom=chrom, size=size, cumulative_offset=offset))
        offset += size
    return out


def apply_reference_filters(
    whole_refs: Sequence[WholeReference],
    *,
    visible_chroms: Optional[Set[str]] = None,
) -> List[WholeReference]:
    out: List[WholeReference] = []
    offset = 0
    for ref in whole_refs:
        if visible_chroms is None or ref.chrom in visible_chroms:
            out.append(replace(ref, filtered_offset=offset))
            offset += ref.size
        else:
            out.append(replace(ref, filtered_offset=-1))
    return out
