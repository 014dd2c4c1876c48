"""Alignment-file access through pysam.

The engine only needs ``fetch_region(chrom, start, end) -> [RawAlignmentRecord]``;
this module provides that for one or more indexed BAM/CRAM files, plus the
parallel multi-region fetch used when several focus intervals are in view.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import pysam

from .cigar import cigar_to_string, ops_from_cigartuples
from .intervals import consolidate_footprints, events_for_span
from .models import RawAlignmentRecord, Region
from .validation import check_bam_index, resolve_contig

logger = logging.getLogger(__name__)

FetchRegion = Callable[[str, int, int], List[RawAlignmentRecord]]


def record_from_segment(read: pysam.AlignedSegment, *, source_index: int = 0) -> RawAlignmentRecord:
    """Convert a pysam read into the SAM-text shaped record the engine consumes (1-based POS)."""
    if read.cigartuples:
        cigar = cigar_to_string(ops_from_cigartuples(read.cigartuples))
    else:
        cigar = "*"
    sa = str(read.get_tag("SA")) if read.has_tag("SA") else None
    hp = str(read.get_tag("HP")) if read.has_tag("HP") else None
    return RawAlignmentRecord(
        read_name=str(read.query_name),
        flag=int(read.flag),
        chrom=read.reference_name if read.reference_name is not None else "*",
        pos=int(read.reference_start) + 1,
        mapping_quality=int(read.mapping_quality),
        cigar=cigar,
        sa=sa,
        hp=hp,
        source_index=source_index,
    )


class BamRegionReader:
    """Region queries against one indexed alignment file.

    Each fetch opens its own ``pysam.AlignmentFile`` so that fetches can run on
    separate threads.
    """

    def __init__(self, path: str | Path, *, source_index: int = 0) -> None:
        self.path = str(path)
        self.source_index = source_index
        check_bam_index(self.path)
        with pysam.AlignmentFile(self.path, "rb") as bam:
            self._sizes: Dict[str, int] = {
                name: int(length) for name, length in zip(bam.references, bam.lengths)
            }

    @property
    def ref_sizes(self) -> Dict[str, int]:
        return dict(self._sizes)

    def fetch(self, chrom: str, start: int, end: int) -> List[RawAlignmentRecord]:
        contig = resolve_contig(chrom, self._sizes)
        if contig is None:
            return []
        start0 = max(0, int(start) - 1)
        end0 = max(start0 + 1, int(end))
        out: List[RawAlignmentRecord] = []
        with pysam.AlignmentFile(self.path, "rb") as bam:
            for read in bam.fetch(contig, start0, end0):
                if read.is_unmapped:
                    continue
                out.append(record_from_segment(read, source_index=self.source_index))
        if not out:
            logger.info("No reads in %s at %s:%d-%d", self.path, contig, start, end)
        return out


def fetch_from_all(readers: Sequence[BamRegionReader]) -> FetchRegion:
    """A fetch function returning the union of records from every reader."""

    def _fetch(chrom: str, start: int, end: int) -> List[RawAlignmentRecord]:
        records: List[RawAlignmentRecord] = []
        for reader in readers:
            records.extend(reader.fetch(chrom, start, end))
        return records

    return _fetch


@dataclass
class FetchProgress:
    issued: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def done(self) -> bool:
        return self.completed >= self.issued


def fetch_regions(
    fetch_region: FetchRegion,
    regions: Sequence[Region],
    *,
    max_workers: int = 4,
) -> Tuple[List[RawAlignmentRecord], FetchProgress]:
    """Fetch every region concurrently and return the union once all have completed.

    Completion is tracked by comparing the completed count to the issued count;
    records are collected in completion order, which is not deterministic.
    A failed fetch is logged and counted but does not abort the batch.
    """
    progress = FetchProgress()
    collected: List[RawAlignmentRecord] = []
    if not regions:
        return collected, progress

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        futures = {pool.submit(fetch_region, r.chrom, r.start, r.end): r for r in regions}
        progress.issued = len(futures)
        for fut in as_completed(futures):
            region = futures[fut]
            try:
                collected.extend(fut.result())
            except (OSError, ValueError) as e:
                logger.warning("Fetching %s:%d-%d failed: %s", region.chrom, region.start, region.end, e)
                progress.failed += 1
            progress.completed += 1

    assert progress.done
    logger.info(
        "Fetched %d records from %d region(s) (%d failed)",
        len(collected),
        progress.issued,
        progress.failed,
    )
    return collected, progress


def plan_focus_regions(
    loci: Sequence[Region],
    *,
    fetch_margin: int = 100,
    merge_margin: int = 10_000,
    ref_sizes: Optional[Dict[str, int]] = None,
    whole_reference_fraction: float = 0.3,
) -> List[Region]:
    """Windows of ``fetch_margin`` around each locus' start and end, consolidated.

    Reads spanning a breakpoint are found from either side, so only the two
    ends of a locus are queried, not its whole span.
    """
    pieces: Dict[str, list] = {}
    for locus in loci:
        for anchor in (locus.start, locus.end):
            start = max(0, anchor - fetch_margin)
            pieces.setdefault(locus.chrom, []).extend(events_for_span(start, anchor + fetch_margin))

    consolidated = consolidate_footprints(
        pieces,
        margin=merge_margin,
        ref_sizes=ref_sizes,
        whole_reference_fraction=whole_reference_fraction,
    )
    return [
        Region(chrom=chrom, start=start, end=end)
        for chrom, intervals in consolidated.items()
        for start, end, _ in intervals
    ]
