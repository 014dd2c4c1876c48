from __future__ import annotations

import gzip
import json
from pathlib import Path
from typing import Any


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def read_text_maybe_gzip(path: str | Path) -> str:
    """Read a whole text input; ``.gz`` files are decompressed transparently."""
    p = Path(path)
    if p.suffix == ".gz":
        with gzip.open(p, "rt", encoding="utf-8") as fh:
            return fh.read()
    return p.read_text(encoding="utf-8")


def write_json(path: str | Path, obj: Any) -> None:
    # Paths and other non-JSON values are written via str()
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True, default=str)
