from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from .errors import MalformedCigar
from .models import CigarOp, PathPoint

logger = logging.getLogger(__name__)

_CIGAR_TOKEN = re.compile(r"(\d+)([MIDNSHP=X])")
_CIGAR_FULL = re.compile(r"(?:\d+[MIDNSHP=X])+")

# pysam/BAM numeric op codes, in order
_BAM_OPS = "MIDNSHP=XB"

# min_indel_size value that hides every insertion/deletion vertex
HIDE_INDELS = -1


@dataclass(frozen=True)
class CigarWalk:
    """Result of walking one CIGAR op list.

    ``path`` only holds the interior vertices produced by indels and skips;
    :func:`alignribbon.alignments.build_segment` adds the start/end vertices.
    """

    ref_aligned_length: int
    read_aligned_length: int
    front_padding: int
    end_padding: int
    path: Tuple[PathPoint, ...]
    max_indel_size: int
    query_start: int
    query_end: int

    @property
    def read_length(self) -> int:
        return self.front_padding + self.read_aligned_length + self.end_padding


def parse_cigar(cigar: str) -> List[CigarOp]:
    """Parse CIGAR text into ``[(length, op), ...]``; raise MalformedCigar if it doesn't tokenize."""
    if not cigar or _CIGAR_FULL.fullmatch(cigar) is None:
        raise MalformedCigar(cigar)
    return [(int(num), op) for num, op in _CIGAR_TOKEN.findall(cigar)]


def ops_from_cigartuples(cigartuples: Iterable[Tuple[int, int]]) -> List[CigarOp]:
    """Convert pysam ``cigartuples`` (op code, length) to ``(length, op)`` pairs."""
    out: List[CigarOp] = []
    for code, length in cigartuples:
        op = _BAM_OPS[code] if 0 <= code < len(_BAM_OPS) else "?"
        out.append((int(length), op))
    return out


def cigar_to_string(ops: Sequence[CigarOp]) -> str:
    return "".join(f"{length}{op}" for length, op in ops)


def _measure(ops: Sequence[CigarOp]) -> Tuple[int, int, int, int]:
    """Return (ref_aligned, read_aligned, front_padding, end_padding) for an op list."""
    ref_len = 0
    read_len = 0
    front = 0
    end = 0
    no_matches_yet = True
    for length, op in ops:
        if op in ("H", "S"):
            if no_matches_yet:
                front += length
            else:
                end += length
            continue
        no_matches_yet = False
        if op in ("M", "=", "X"):
            read_len += length
            ref_len += length
        elif op == "I":
            read_len += length
        elif op in ("D", "N", "P"):
            ref_len += length
        else:
            read_len += length
            ref_len += length
    return ref_len, read_len, front, end


def _indel_visible(length: int, min_indel_size: int) -> bool:
    return min_indel_size != HIDE_INDELS and length >= min_indel_size


def decode_cigar(
    ops: Sequence[CigarOp],
    ref_start: int,
    strand: str,
    min_indel_size: int,
) -> CigarWalk:
    """Walk a parsed CIGAR and produce the reference/query coordinate path.

    Query positions are reported in original-read order: for '-' strand the walk
    starts at the read length and steps backwards, so downstream code sees the
    same read-relative axis regardless of the mapped strand.

    ``min_indel_size`` controls which I/D operations get bracketing vertices;
    ``HIDE_INDELS`` (-1) disables them. ``N`` skips always get vertices and ``P``
    never does. The op list is not modified, so callers can cache it and call
    this again with a different threshold.
    """
    ref_len, read_len, front, end = _measure(ops)

    if strand == "-":
        query_start = end + read_len
        query_end = end
        read_pos = front + read_len + end
        step = -1
    else:
        query_start = front
        query_end = front + read_len
        read_pos = 0
        step = 1

    ref_pos = ref_start
    max_indel = 0
    path: List[PathPoint] = []

    for length, op in ops:
        if op in ("H", "S"):
            read_pos += step * length
        elif op in ("M", "=", "X"):
            read_pos += step * length
            ref_pos += length
        elif op == "I":
            if _indel_visible(length, min_indel_size):
                path.append(PathPoint(ref_pos, read_pos))
                path.append(PathPoint(ref_pos, read_pos + step * length))
            max_indel = max(max_indel, length)
            read_pos += step * length
        elif op == "D":
            if _indel_visible(length, min_indel_size):
                path.append(PathPoint(ref_pos, read_pos))
                path.append(PathPoint(ref_pos + length, read_pos))
            max_indel = max(max_indel, length)
            ref_pos += length
        elif op == "N":
            path.append(PathPoint(ref_pos, read_pos))
            path.append(PathPoint(ref_pos + length, read_pos))
            ref_pos += length
        elif op == "P":
            ref_pos += length
        else:
            logger.warning(
                "Unrecognized CIGAR operation %r; treating it like a match (advances query and reference)",
                op,
            )
            read_pos += step * length
            ref_pos += length

    return CigarWalk(
        ref_aligned_length=ref_len,
        read_aligned_length=read_len,
        front_padding=front,
        end_padding=end,
        path=tuple(path),
        max_indel_size=max_indel,
        query_start=query_start,
        query_end=query_end,
    )
