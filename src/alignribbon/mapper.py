from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .models import Interval, MappedPosition, Precision, WholeReference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _ChromIntervals:
    """Retained intervals of one chromosome, sorted by start."""

    starts: List[int]
    intervals: List[Interval]


class CoordinateMapper:
    """Project (chrom, position) onto the consolidated virtual axis.

    Built from intervals whose offsets were assigned by
    :func:`alignribbon.intervals.apply_interval_filters`; intervals with offset -1
    are ignored. Interval ends are inclusive.
    """

    def __init__(
        self,
        intervals: Sequence[Interval],
        whole_refs: Sequence[WholeReference] = (),
    ) -> None:
        by_chrom: Dict[str, List[Interval]] = {}
        for iv in intervals:
            if iv.retained:
                by_chrom.setdefault(iv.chrom, []).append(iv)

        self._by_chrom: Dict[str, _ChromIntervals] = {}
        for chrom, lst in by_chrom.items():
            lst_sorted = sorted(lst, key=lambda x: x.start)
            self._by_chrom[chrom] = _ChromIntervals(
                starts=[iv.start for iv in lst_sorted],
                intervals=lst_sorted,
            )

        self._whole: Dict[str, WholeReference] = {}
        for ref in whole_refs:
            self._whole.setdefault(ref.chrom, ref)

        self.domain_length = sum(iv.size for iv in intervals if iv.retained)
        self.whole_domain_length = sum(ref.size for ref in whole_refs)
        self.filtered_whole_domain_length = sum(
            ref.size for ref in whole_refs if ref.filtered_offset != -1
        )

    @property
    def chromosomes(self) -> List[str]:
        return list(self._by_chrom)

    def map_exact(self, chrom: str, pos: int) -> Optional[int]:
        """Virtual position of ``pos`` or None when no retained interval contains it."""
        idx = self._by_chrom.get(chrom)
        if idx is None:
            return None
        i = bisect.bisect_right(idx.starts, pos) - 1
        if i < 0:
            return None
        iv = idx.intervals[i]
        if pos <= iv.end:
            return iv.cumulative_offset + (pos - iv.start)
        return None

    def map_closest(self, chrom: str, pos: int) -> MappedPosition:
        """Like :meth:`map_exact`, but positions in gaps snap to the nearest interval boundary.

        Returns precision ``none`` with position 0 when the chromosome has no
        retained interval at all.
        """
        exact = self.map_exact(chrom, pos)
        if exact is not None:
            return MappedPosition(Precision.EXACT, exact)

        idx = self._by_chrom.get(chrom)
        if idx is None:
            return MappedPosition(Precision.NONE, 0)

        closest = 0
        best_distance = -1
        for iv in idx.intervals:
            d_start = abs(pos - iv.start)
            if best_distance == -1 or d_start < best_distance:
                closest = iv.cumulative_offset
                best_distance = d_start
            d_end = abs(pos - iv.end)
            if d_end < best_distance:
                closest = iv.cumulative_offset + iv.end - iv.start
                best_distance = d_end
        return MappedPosition(Precision.INEXACT, closest)

    def map_whole(self, chrom: str, pos: int) -> Optional[int]:
        ref = self._whole.get(chrom)
        if ref is None:
            return None
        return ref.cumulative_offset + pos

    def map_whole_filtered(self, chrom: str, pos: int) -> Optional[int]:
        ref = self._whole.get(chrom)
        if ref is None or ref.filtered_offset == -1:
            return None
        return ref.filtered_offset + pos
