from __future__ import annotations

import logging
from pathlib import Path
from typing import Collection, Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)


_UCSC_PREFIX = "chr"

# mitochondrion is the one contig whose name changes beyond the prefix
_MITO_NAMES: Dict[str, str] = {"ucsc": "chrM", "ensembl": "MT"}

_INDEX_SUFFIXES: Dict[str, Tuple[str, ...]] = {
    ".bam": (".bai", ".csi"),
    ".cram": (".crai",),
}


def _index_candidates(path: Path) -> Iterable[Path]:
    for suffix in _INDEX_SUFFIXES.get(path.suffix, (".bai", ".csi")):
        yield path.with_name(path.name + suffix)
        yield path.with_suffix(suffix)


def check_bam_index(bam_path: str | Path) -> None:
    """Ensure an alignment file can be queried by region.

    Looks for ``x.bam.bai``/``x.bai``/``x.bam.csi`` (or ``.crai`` for CRAM) and
    raises ValueError with a samtools hint when none is present.
    """
    path = Path(bam_path)
    if any(p.exists() for p in _index_candidates(path)):
        return
    raise ValueError(
        f"{path} is not indexed; region queries need an index. Run: samtools index {path}"
    )


def detect_contig_style(contigs: Iterable[str], min_fraction: float = 0.5) -> str:
    """Return 'ucsc' when at least ``min_fraction`` of the names carry a chr prefix.

    'ensembl' otherwise, 'unknown' for an empty header.
    """
    total = 0
    prefixed = 0
    for name in contigs:
        if not name:
            continue
        total += 1
        prefixed += name.startswith(_UCSC_PREFIX)
    if total == 0:
        return "unknown"
    return "ucsc" if prefixed >= max(1, int(min_fraction * total)) else "ensembl"


def remap_contig(contig: str, style: str) -> str:
    """Rewrite ``contig`` in ``style`` ('ucsc' or 'ensembl'); other styles are a no-op."""
    if style not in _MITO_NAMES:
        return contig
    if contig in _MITO_NAMES.values() or contig == "chrMT":
        return _MITO_NAMES[style]
    bare = contig[len(_UCSC_PREFIX):] if contig.startswith(_UCSC_PREFIX) else contig
    return _UCSC_PREFIX + bare if style == "ucsc" else bare


def resolve_contig(contig: str, known: Collection[str]) -> Optional[str]:
    """Find ``contig`` among ``known`` names, allowing a chr-prefix mismatch.

    Returns None (and logs a warning) when neither spelling is present.
    """
    if contig in known:
        return contig
    for style in ("ucsc", "ensembl"):
        candidate = remap_contig(contig, style)
        if candidate in known:
            logger.info("Using contig %s for requested %s (chr prefix differs)", candidate, contig)
            return candidate
    logger.warning(
        "Reference sequence %r was not found in the header of the BAM. "
        "Note that the chr prefix must be consistent across files.",
        contig,
    )
    return None
