"""Exceptions raised while parsing alignment input.

Every error here describes one offending unit (a record, an SA entry, a line).
Batch-level code catches them, drops the unit, and keeps going.
"""

from __future__ import annotations


class AlignRibbonError(ValueError):
    """Base class for recoverable input errors."""


class MalformedCigar(AlignRibbonError):
    """CIGAR text does not tokenize into ``(\\d+[MIDNSHP=X])+``."""

    def __init__(self, cigar: str) -> None:
        super().__init__(
            f"Not a valid CIGAR string: {cigar!r}. "
            "The 6th column of SAM input must be a valid CIGAR string."
        )
        self.cigar = cigar


class EmptyOrWildcardCigar(AlignRibbonError):
    """CIGAR is ``*`` or empty (e.g. an unmapped read listed in the region)."""


class MalformedSATag(AlignRibbonError):
    """An SA tag entry lacks the six ``chrom,pos,strand,cigar,mq,nm`` fields."""

    def __init__(self, entry: str, reason: str) -> None:
        super().__init__(f"Ignoring SA entry {entry!r}: {reason}")
        self.entry = entry


class UnrecognizedPairFlag(AlignRibbonError):
    """Paired record with neither the first- nor the second-in-pair bit set."""

    def __init__(self, read_name: str, flag: int) -> None:
        super().__init__(
            f"Read {read_name!r} (flag {flag}) is not first or second in pair, "
            "despite the batch being paired-end"
        )
        self.read_name = read_name
        self.flag = flag


class MalformedCoordsLine(AlignRibbonError):
    """A coordinates line that is not the 11-column ``show-coords -lTH`` layout."""


class MalformedLocus(AlignRibbonError):
    """Locus text that is not ``chrom:start[-end]``."""
