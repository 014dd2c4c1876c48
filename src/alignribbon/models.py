from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

CigarOp = Tuple[int, str]  # (length, operation character)

FLAG_PAIRED = 0x1
FLAG_REVERSE = 0x10
FLAG_READ1 = 0x40
FLAG_READ2 = 0x80
FLAG_SECONDARY = 0x100
FLAG_SUPPLEMENTARY = 0x800


class RawType(str, Enum):
    SINGLE = "single"
    SPLIT_ASSEMBLED = "splitAssembled"
    PAIRED_END = "pairedEnd"
    COORDS = "coords"


class Precision(str, Enum):
    EXACT = "exact"
    INEXACT = "inexact"
    NONE = "none"


class HaplotypeKind(str, Enum):
    HAPLOTYPE_1 = "haplotype1"
    HAPLOTYPE_2 = "haplotype2"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Haplotype:
    """Phasing group from the HP tag.

    ``UNKNOWN`` keeps the raw label (any other HP value) or ``None`` when the
    record carried no HP tag at all.
    """

    kind: HaplotypeKind
    label: Optional[str] = None

    @classmethod
    def parse(cls, value: Optional[str]) -> "Haplotype":
        if value is None:
            return cls(HaplotypeKind.UNKNOWN, None)
        value = str(value).strip()
        if value == "1":
            return cls(HaplotypeKind.HAPLOTYPE_1, value)
        if value == "2":
            return cls(HaplotypeKind.HAPLOTYPE_2, value)
        return cls(HaplotypeKind.UNKNOWN, value)

    def sort_key(self) -> Tuple[int, str]:
        # records without HP go last; equal labels stay grouped
        if self.label is None:
            return (1, "")
        return (0, self.label)


@dataclass(frozen=True)
class PathPoint:
    """One vertex of an alignment walk (reference position R, query position Q)."""

    R: int
    Q: int


@dataclass(frozen=True)
class AlignmentSegment:
    """A single decoded alignment of (part of) a read against one chromosome.

    Attributes
    ----------
    chrom:
        Reference sequence name.
    ref_start, ref_end:
        Reference span; ``ref_end = ref_start + reference-consuming lengths``.
    query_start, query_end:
        Query span in read-relative order; decreasing for '-' strand.
    mapping_quality:
        MAPQ for SAM/BAM input, percent identity for coords input.
    path:
        Coordinate walk from ``(ref_start, query_start)`` to ``(ref_end, query_end)``.
    max_indel_size:
        Largest I/D operation seen; ``None`` when the source has no indel data.
    aligned_length:
        Query bases consumed by the alignment (clips excluded).
    read_length:
        Clips plus aligned query bases.
    """

    chrom: str
    ref_start: int
    ref_end: int
    query_start: int
    query_end: int
    mapping_quality: float
    path: Tuple[PathPoint, ...]
    max_indel_size: Optional[int]
    aligned_length: int
    read_length: int
    strand: str = "+"


@dataclass(frozen=True)
class SegmentSource:
    """Already-parsed input for one segment, kept so it can be re-decoded cheaply."""

    chrom: str
    ref_start: int
    strand: str
    ops: Tuple[CigarOp, ...]
    mapping_quality: float


@dataclass(frozen=True)
class RawAlignmentRecord:
    """One SAM-formatted alignment line as delivered by the alignment reader."""

    read_name: str
    flag: int
    chrom: str
    pos: int
    mapping_quality: int
    cigar: str
    sa: Optional[str] = None
    hp: Optional[str] = None
    source_index: int = 0

    @property
    def strand(self) -> str:
        return "-" if self.flag & FLAG_REVERSE else "+"

    @property
    def is_paired(self) -> bool:
        return bool(self.flag & FLAG_PAIRED)

    @property
    def is_read1(self) -> bool:
        return bool(self.flag & FLAG_READ1)

    @property
    def is_read2(self) -> bool:
        return bool(self.flag & FLAG_READ2)

    @property
    def is_secondary(self) -> bool:
        return bool(self.flag & FLAG_SECONDARY)

    @property
    def is_supplementary(self) -> bool:
        return bool(self.flag & FLAG_SUPPLEMENTARY)


@dataclass(frozen=True)
class PairLink:
    """Endpoints of the connector between two mates, keyed by orientation.

    ``True`` means the read extends left from its anchor, ``False`` right.
    """

    from_pos: Dict[bool, Optional[int]]
    to_pos: Dict[bool, Optional[int]]
    chrom: Dict[bool, Optional[str]]
    diff: Optional[int]


@dataclass(frozen=True)
class ReadRecord:
    """All alignments of one logical read (or one read pair)."""

    read_name: str
    raw_type: RawType
    segments: Tuple[AlignmentSegment, ...]
    primary_index: int
    longest_index: int
    flag: int = 0
    raw: Optional[RawAlignmentRecord] = None
    sources: Tuple[SegmentSource, ...] = ()
    haplotype: Haplotype = field(default_factory=lambda: Haplotype.parse(None))
    source_index: int = 0
    read_length_mismatch: bool = False
    pair_link: Optional[PairLink] = None
    mates: Tuple[Optional["ReadRecord"], Optional["ReadRecord"]] = (None, None)
    read_lengths: Optional[Tuple[int, int, int]] = None

    @property
    def primary(self) -> AlignmentSegment:
        return self.segments[self.primary_index]

    @property
    def longest(self) -> AlignmentSegment:
        return self.segments[self.longest_index]

    @property
    def read_length(self) -> int:
        return self.primary.read_length


@dataclass(frozen=True)
class Region:
    chrom: str
    start: int
    end: int


@dataclass(frozen=True)
class Interval:
    """A consolidated reference interval on the virtual axis (offset -1 = filtered out)."""

    chrom: str
    start: int
    end: int
    size: int
    cumulative_offset: int
    alignment_count: int

    @property
    def retained(self) -> bool:
        return self.cumulative_offset != -1


@dataclass(frozen=True)
class WholeReference:
    chrom: str
    size: int
    cumulative_offset: int
    filtered_offset: int = -1


@dataclass(frozen=True)
class MappedPosition:
    precision: Precision
    pos: int
