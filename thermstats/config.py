"""
Default parameters for thermstats runs.

Defaults are *recommendations*; every public function still accepts explicit
arguments. Keeping them here makes the values machine-readable and testable.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple


DEFAULT_K = 8
DEFAULT_STYLE = "W"
# Two-sided 95% normal critical value used to bin local G z-values.
DEFAULT_Z_CRIT = 1.96
DEFAULT_SUM_STATS: Tuple[str, ...] = ("mean", "min", "max")

EXIFTOOL_ENV = "THERMSTATS_EXIFTOOL"

# spdep weight styles -> libpysal transform codes understood by esda.G_Local.
# C and U only rescale binary weights globally, which leaves local G z-values
# unchanged, so they run as binary.
WEIGHT_STYLES: Dict[str, str] = {
    "W": "R",
    "R": "R",
    "B": "B",
    "C": "B",
    "U": "B",
}


def weight_transform(style: str) -> str:
    """Map an spdep/libpysal weight style onto the transform used for local G."""
    key = str(style).strip().upper()
    try:
        return WEIGHT_STYLES[key]
    except KeyError as exc:
        raise ValueError(
            f"Unsupported weight style {style!r}; expected one of: "
            + ", ".join(sorted(WEIGHT_STYLES))
        ) from exc


def resolve_exiftool(exiftool_path: Optional[str] = None) -> str:
    """Resolve the exiftool binary: explicit argument, env override, then PATH.

    ``"installed"`` is accepted as an alias for the PATH lookup. A directory
    is resolved to the ``exiftool`` binary inside it.
    """
    candidate = exiftool_path
    if candidate in (None, "", "installed"):
        candidate = os.environ.get(EXIFTOOL_ENV) or "exiftool"

    path = Path(candidate)
    if path.is_dir():
        path = path / "exiftool"
        return str(path)
    if path.name == str(candidate):
        found = shutil.which(str(candidate))
        return found or str(candidate)
    return str(path)


@dataclass
class StatsParams:
    """Configuration for a ``get_stats``/``stats_by_group`` run."""

    k: int = DEFAULT_K
    style: str = DEFAULT_STYLE
    z_crit: float = DEFAULT_Z_CRIT
    sum_stats: Sequence[str] = field(default_factory=lambda: DEFAULT_SUM_STATS)
    round_val: Optional[float] = None
    get_patches: bool = True

    def as_dict(self) -> Dict[str, object]:
        return {
            "k": int(self.k),
            "style": self.style,
            "z_crit": float(self.z_crit),
            "sum_stats": list(self.sum_stats),
            "round_val": self.round_val,
            "get_patches": bool(self.get_patches),
        }
