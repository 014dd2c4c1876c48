from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import numpy as np
from tqdm import tqdm

from .alignments import assemble_read, redecode_split_read
from .errors import EmptyOrWildcardCigar, MalformedCigar
from .intervals import (
    DEFAULT_MERGE_MARGIN,
    DEFAULT_WHOLE_REFERENCE_FRACTION,
    apply_interval_filters,
    apply_reference_filters,
    build_intervals,
    build_whole_references,
    collect_footprints,
    consolidate_footprints,
    natural_sort_key,
)
from .mapper import CoordinateMapper
from .models import Interval, RawAlignmentRecord, RawType, ReadRecord, Region, WholeReference
from .pairing import (
    PAIRED_SCAN_LIMIT,
    deduplicate_reads,
    detect_paired_end,
    most_common_read_length,
    reconcile_pairs,
    redecode_pair,
)

logger = logging.getLogger(__name__)

SORT_ORDERS = ("original", "readname", "num_alignments", "haplotype", "source", "primary", "longest")


@dataclass(frozen=True)
class EngineSettings:
    """Tunable parameters, passed explicitly to every stage."""

    min_indel_size: int = 50  # -1 hides all indels
    merge_margin: int = DEFAULT_MERGE_MARGIN
    whole_reference_fraction: float = DEFAULT_WHOLE_REFERENCE_FRACTION
    pair_spacing: int = 20
    flip_second_in_pair: bool = True
    paired_scan_limit: int = PAIRED_SCAN_LIMIT
    min_alignments_per_interval: int = 1
    show_only_known_references: bool = True
    additional_region_padding: int = 1000
    fetch_margin: int = 100
    fetch_workers: int = 4


class ReadArena:
    """Immutable store of ReadRecords addressed by index.

    Orderings are returned as index permutations, so sorting for display never
    touches the stored records.
    """

    def __init__(self, records: Iterable[ReadRecord], *, paired_end: bool = False, default_read_length: int = 0) -> None:
        self._records: Tuple[ReadRecord, ...] = tuple(records)
        self.paired_end = paired_end
        self.default_read_length = default_read_length

    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, index: int) -> ReadRecord:
        return self._records[index]

    def __iter__(self):
        return iter(self._records)

    @property
    def records(self) -> Tuple[ReadRecord, ...]:
        return self._records

    def sort_index(self, by: str = "original", *, mapper: Optional[CoordinateMapper] = None) -> List[int]:
        """Permutation of record indices for a display order (see SORT_ORDERS)."""
        idx = list(range(len(self._records)))
        recs = self._records
        if by == "original":
            return idx
        if by == "readname":
            return sorted(idx, key=lambda i: natural_sort_key(recs[i].read_name))
        if by == "num_alignments":
            return sorted(idx, key=lambda i: len(recs[i].segments))
        if by == "haplotype":
            return sorted(idx, key=lambda i: recs[i].haplotype.sort_key())
        if by == "source":
            return sorted(idx, key=lambda i: recs[i].source_index)
        if by in ("primary", "longest"):
            if mapper is None:
                raise ValueError(f"Sorting by {by} position needs a CoordinateMapper")

            def position(i: int) -> float:
                seg = recs[i].primary if by == "primary" else recs[i].longest
                pos = mapper.map_exact(seg.chrom, seg.ref_start)
                return float("inf") if pos is None else float(pos)

            return sorted(idx, key=position)
        raise ValueError(f"Unknown read order {by!r}; choose from {', '.join(SORT_ORDERS)}")


@dataclass(frozen=True)
class CoordinateSpace:
    intervals: List[Interval]
    whole_refs: List[WholeReference]
    mapper: CoordinateMapper


@dataclass
class EngineResult:
    arena: ReadArena
    space: CoordinateSpace
    counts: Dict[str, int] = field(default_factory=dict)


def build_read_records(
    raw_records: Iterable[RawAlignmentRecord],
    settings: EngineSettings = EngineSettings(),
    *,
    progress: bool = False,
) -> Tuple[ReadArena, Dict[str, int]]:
    """Decode raw records into read-level records.

    Records with ``*``/empty CIGAR are skipped quietly, records with a malformed
    CIGAR are dropped with an error message; neither stops the batch. If the
    batch is paired-end, mates are glued together, otherwise records sharing a
    read name are merged.
    """
    counts = {
        "records_total": 0,
        "records_skipped_empty_cigar": 0,
        "records_malformed_cigar": 0,
        "sa_entries_dropped": 0,
        "reads_length_mismatch": 0,
    }

    it: Iterable[RawAlignmentRecord] = raw_records
    if progress:
        it = tqdm(it, unit="record", desc="Decoding alignments")

    parsed: List[ReadRecord] = []
    for raw in it:
        counts["records_total"] += 1
        try:
            record, dropped = assemble_read(raw, settings.min_indel_size)
        except EmptyOrWildcardCigar:
            counts["records_skipped_empty_cigar"] += 1
            continue
        except MalformedCigar as e:
            logger.error("Dropping record %s: %s", raw.read_name, e)
            counts["records_malformed_cigar"] += 1
            continue
        counts["sa_entries_dropped"] += dropped
        if record.read_length_mismatch:
            counts["reads_length_mismatch"] += 1
        parsed.append(record)

    paired = detect_paired_end(parsed, settings.paired_scan_limit)
    default_read_length = 0
    if paired:
        logger.info(
            "Paired-end mode activated. Only mates within the fetched regions are shown; "
            "SA tags do not point to the other read of a pair."
        )
        default_read_length = most_common_read_length(parsed)
        reads, pair_counts = reconcile_pairs(
            parsed,
            pair_spacing=settings.pair_spacing,
            flip_second_in_pair=settings.flip_second_in_pair,
        )
    else:
        reads, pair_counts = deduplicate_reads(parsed, settings.min_indel_size)
    counts.update(pair_counts)
    counts["reads_total"] = len(reads)

    return ReadArena(reads, paired_end=paired, default_read_length=default_read_length), counts


def redecode_read(record: ReadRecord, min_indel_size: int, settings: EngineSettings = EngineSettings(), *, default_read_length: Optional[int] = None) -> ReadRecord:
    """Return a new record decoded at another indel threshold; ``record`` is left untouched.

    Pairs missing a mate reuse the mate length stored on the record.
    """
    if record.raw_type == RawType.COORDS:
        return record
    if record.raw_type == RawType.PAIRED_END:
        return redecode_pair(
            record,
            min_indel_size,
            default_read_length=default_read_length,
            pair_spacing=settings.pair_spacing,
            flip_second_in_pair=settings.flip_second_in_pair,
        )
    return redecode_split_read(record, min_indel_size)


def build_coordinate_space(
    reads: Iterable[ReadRecord],
    settings: EngineSettings = EngineSettings(),
    *,
    ref_sizes: Optional[Mapping[str, object]] = None,
    focal_region: Optional[Region] = None,
    additional_regions: Sequence[Region] = (),
    visible_chroms: Optional[Set[str]] = None,
) -> CoordinateSpace:
    """Consolidate read footprints into intervals and build the position mapper."""
    sizes: Mapping[str, object] = ref_sizes or {}
    numeric_sizes = {c: s for c, s in sizes.items() if isinstance(s, int)}

    pieces = collect_footprints(
        reads,
        focal_region=focal_region,
        additional_regions=additional_regions,
        region_padding=settings.additional_region_padding,
    )
    consolidated = consolidate_footprints(
        pieces,
        margin=settings.merge_margin,
        ref_sizes=numeric_sizes,
        whole_reference_fraction=settings.whole_reference_fraction,
    )

    intervals = apply_interval_filters(
        build_intervals(consolidated),
        visible_chroms=visible_chroms,
        min_alignments=settings.min_alignments_per_interval,
    )
    whole_refs = apply_reference_filters(
        build_whole_references(consolidated, sizes, show_only_known=settings.show_only_known_references),
        visible_chroms=visible_chroms,
    )
    return CoordinateSpace(
        intervals=intervals,
        whole_refs=whole_refs,
        mapper=CoordinateMapper(intervals, whole_refs),
    )


def run_engine(
    raw_records: Iterable[RawAlignmentRecord],
    settings: EngineSettings = EngineSettings(),
    *,
    ref_sizes: Optional[Mapping[str, object]] = None,
    focal_region: Optional[Region] = None,
    additional_regions: Sequence[Region] = (),
    progress: bool = False,
) -> EngineResult:
    arena, counts = build_read_records(raw_records, settings, progress=progress)
    space = build_coordinate_space(
        arena,
        settings,
        ref_sizes=ref_sizes,
        focal_region=focal_region,
        additional_regions=additional_regions,
    )
    counts["intervals_total"] = len(space.intervals)
    counts["intervals_retained"] = sum(1 for iv in space.intervals if iv.retained)
    return EngineResult(arena=arena, space=space, counts=counts)


def summarize(result: EngineResult) -> Dict[str, Any]:
    """Batch statistics used for slider ranges and the report."""
    reads = result.arena.records
    mqs = [s.mapping_quality for r in reads for s in r.segments]
    read_lengths = [r.read_length for r in reads]
    max_indels = [s.max_indel_size for r in reads for s in r.segments if s.max_indel_size is not None]

    length_hist: Dict[str, List[float]] = {"bin_edges": [], "counts": []}
    if read_lengths:
        counts, edges = np.histogram(np.asarray(read_lengths, dtype=np.int64), bins=min(50, max(1, len(set(read_lengths)))))
        length_hist = {"bin_edges": edges.tolist(), "counts": counts.tolist()}

    return {
        "reads": len(reads),
        "paired_end": result.arena.paired_end,
        "min_mapping_quality": min(mqs) if mqs else None,
        "max_mapping_quality": max(mqs) if mqs else None,
        "max_alignments_per_read": max((len(r.segments) for r in reads), default=0),
        "max_read_length": max(read_lengths, default=0),
        "max_indel_size": max(max_indels, default=0),
        "virtual_axis_length": result.space.mapper.domain_length,
        "read_length_hist": length_hist,
        "counts": dict(result.counts),
    }


def read_to_jsonable(record: ReadRecord) -> Dict[str, Any]:
    out = asdict(record)
    out.pop("mates", None)
    out.pop("sources", None)
    if record.pair_link is not None:
        link = record.pair_link
        out["pair_link"] = {
            "from": {str(k).lower(): v for k, v in link.from_pos.items()},
            "to": {str(k).lower(): v for k, v in link.to_pos.items()},
            "chrom": {str(k).lower(): v for k, v in link.chrom.items()},
            "diff": link.diff,
        }
    return out
