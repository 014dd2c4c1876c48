from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from .cigar import decode_cigar, parse_cigar
from .errors import EmptyOrWildcardCigar, MalformedCigar, MalformedSATag
from .models import (
    AlignmentSegment,
    CigarOp,
    Haplotype,
    PathPoint,
    RawAlignmentRecord,
    RawType,
    ReadRecord,
    SegmentSource,
)

logger = logging.getLogger(__name__)

_SA_FIELDS = 6


def build_segment(
    chrom: str,
    ref_start: int,
    strand: str,
    ops: Sequence[CigarOp],
    mapping_quality: float,
    min_indel_size: int,
) -> AlignmentSegment:
    """Decode one op list into an AlignmentSegment with a self-contained path."""
    walk = decode_cigar(ops, ref_start, strand, min_indel_size)
    ref_end = ref_start + walk.ref_aligned_length
    path = (
        (PathPoint(ref_start, walk.query_start),)
        + walk.path
        + (PathPoint(ref_end, walk.query_end),)
    )
    return AlignmentSegment(
        chrom=chrom,
        ref_start=ref_start,
        ref_end=ref_end,
        query_start=walk.query_start,
        query_end=walk.query_end,
        mapping_quality=mapping_quality,
        path=path,
        max_indel_size=walk.max_indel_size,
        aligned_length=walk.read_aligned_length,
        read_length=walk.read_length,
        strand=strand,
    )


def parse_source(chrom: str, ref_start: int, strand: str, cigar: str, mapping_quality: float) -> SegmentSource:
    """Parse CIGAR text once into a re-decodable SegmentSource."""
    if cigar in ("*", ""):
        raise EmptyOrWildcardCigar(f"CIGAR {cigar!r} has no alignment to decode")
    return SegmentSource(
        chrom=chrom,
        ref_start=int(ref_start),
        strand=strand,
        ops=tuple(parse_cigar(cigar)),
        mapping_quality=mapping_quality,
    )


def segment_from_source(source: SegmentSource, min_indel_size: int) -> AlignmentSegment:
    return build_segment(
        source.chrom,
        source.ref_start,
        source.strand,
        source.ops,
        source.mapping_quality,
        min_indel_size,
    )


def segment_from_cigar(
    chrom: str,
    ref_start: int,
    strand: str,
    cigar: str,
    mapping_quality: float,
    min_indel_size: int,
) -> AlignmentSegment:
    """Build a segment straight from CIGAR text.

    Raises EmptyOrWildcardCigar for ``*``/empty and MalformedCigar for bad text.
    """
    source = parse_source(chrom, ref_start, strand, cigar, mapping_quality)
    return segment_from_source(source, min_indel_size)


def parse_sa_entry(entry: str) -> SegmentSource:
    """Parse one ``chrom,pos,strand,cigar,mq,nm`` entry of an SA tag."""
    fields = entry.split(",")
    if len(fields) < _SA_FIELDS:
        raise MalformedSATag(entry, f"expected {_SA_FIELDS} comma-separated fields, found {len(fields)}")
    chrom, pos, strand, cigar, mq = fields[0], fields[1], fields[2], fields[3], fields[4]
    try:
        ref_start = int(pos)
        mapq = int(mq)
    except ValueError:
        raise MalformedSATag(entry, "position and mapping quality must be integers") from None
    if strand not in ("+", "-"):
        raise MalformedSATag(entry, f"strand must be '+' or '-', found {strand!r}")
    return parse_source(chrom, ref_start, strand, cigar, mapq)


def parse_sa_tag(sa: Optional[str]) -> Tuple[List[SegmentSource], int]:
    """Parse all SA entries, dropping malformed ones.

    Returns
    -------
    sources:
        Parsed entries in tag order.
    dropped:
        Number of entries that were ignored.
    """
    sources: List[SegmentSource] = []
    dropped = 0
    if not sa:
        return sources, dropped
    for entry in sa.split(";"):
        if entry.strip() == "":
            continue
        try:
            sources.append(parse_sa_entry(entry))
        except MalformedSATag as e:
            logger.warning("%s", e)
            dropped += 1
        except EmptyOrWildcardCigar:
            logger.debug("Ignoring SA entry without CIGAR: %s", entry)
            dropped += 1
        except MalformedCigar as e:
            logger.warning("Ignoring SA entry %r: %s", entry, e)
            dropped += 1
    return sources, dropped


def longest_segment_index(segments: Sequence[AlignmentSegment]) -> int:
    best = 0
    for i, seg in enumerate(segments):
        if seg.aligned_length > segments[best].aligned_length:
            best = i
    return best


def _read_length_mismatch(read_name: str, segments: Sequence[AlignmentSegment]) -> bool:
    primary_len = segments[-1].read_length
    mismatched = [s for s in segments if s.read_length != primary_len]
    if mismatched:
        logger.warning(
            "Read length of primary and supplementary alignments do not match for read %s "
            "(calculated from CIGAR strings: %s); using the primary length %d",
            read_name,
            sorted({s.read_length for s in segments}),
            primary_len,
        )
    return bool(mismatched)


def _record_from_sources(
    raw: RawAlignmentRecord,
    sources: Sequence[SegmentSource],
    min_indel_size: int,
) -> ReadRecord:
    segments = tuple(segment_from_source(s, min_indel_size) for s in sources)
    return ReadRecord(
        read_name=raw.read_name,
        raw_type=RawType.SPLIT_ASSEMBLED if len(segments) > 1 else RawType.SINGLE,
        segments=segments,
        primary_index=len(segments) - 1,
        longest_index=longest_segment_index(segments),
        flag=raw.flag,
        raw=raw,
        sources=tuple(sources),
        haplotype=Haplotype.parse(raw.hp),
        source_index=raw.source_index,
        read_length_mismatch=_read_length_mismatch(raw.read_name, segments),
    )


def assemble_read(raw: RawAlignmentRecord, min_indel_size: int) -> Tuple[ReadRecord, int]:
    """Assemble a primary record and its SA siblings into one ReadRecord.

    SA segments come first, the primary alignment is always appended last so that
    ``primary_index`` is the final position.

    Raises EmptyOrWildcardCigar / MalformedCigar for the primary CIGAR; the caller
    drops the record. Returns the record and the number of SA entries dropped.
    """
    primary = parse_source(raw.chrom, raw.pos, raw.strand, raw.cigar, raw.mapping_quality)
    sources, dropped = parse_sa_tag(raw.sa)
    sources.append(primary)
    return _record_from_sources(raw, sources, min_indel_size), dropped


def redecode_split_read(record: ReadRecord, min_indel_size: int) -> ReadRecord:
    """Rebuild segments from the cached op lists at a new indel threshold."""
    if record.raw is None or not record.sources:
        return record
    segments = tuple(segment_from_source(s, min_indel_size) for s in record.sources)
    return replace(
        record,
        segments=segments,
        longest_index=longest_segment_index(segments),
    )
