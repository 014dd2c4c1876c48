"""AlignRibbon: read-level alignment decoding and a compact virtual reference axis.

Public API is intentionally small; most users should use the CLI:

    alignribbon region --bam ... --locus chr1:1000-2000 --outdir ...

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
