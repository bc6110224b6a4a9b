"""
Lightweight, versioned-ish contracts for thermstats outputs.

These are *documentation-as-code* constants used to keep CSV/JSON outputs
interpretable. They intentionally avoid heavy dependencies.
"""

from __future__ import annotations

from typing import Dict, Tuple


HOT = 1
COLD = -1
NO_PATCH = 0

PATCH_CLASSES: Dict[str, int] = {"hot": HOT, "cold": COLD}

PIXEL_COLUMNS: Tuple[str, ...] = ("val", "x", "y", "row", "col", "G", "G_bin", "patch_id")

PIXEL_SEMANTICS = (
    "One row per non-missing pixel. x/y are cell centres in map units (pixel "
    "units when no extent is given). G is the analytical local Getis-Ord z-value; "
    "G_bin is 1 (hot), -1 (cold) or 0 from right-closed bins at +/- z_crit."
)

PATCH_SEMANTICS = (
    "A patch is a 4-connected group of pixels sharing a hot or cold G_bin. "
    "Patches describe spatial clustering of values, not calibrated temperatures."
)

PSTATS_CONTRACT: Dict[str, object] = {
    "schema_version": "1",
    "purpose": "thermal_patch_stats",
    "pixel_columns": list(PIXEL_COLUMNS),
    "classes": dict(PATCH_CLASSES),
    "connectivity": 4,
    "notes": PIXEL_SEMANTICS + " " + PATCH_SEMANTICS,
}

EXTRACT_CONTRACT: Dict[str, object] = {
    "schema_version": "1",
    "purpose": "flir_raw_extract",
    "units": "raw sensor counts (uint16)",
    "temperature_calibrated": False,
    "notes": "Convert with thermstats.convert.batch_convert using the camera Planck constants.",
}

CONVERT_CONTRACT: Dict[str, object] = {
    "schema_version": "1",
    "purpose": "flir_temperature",
    "units": "degrees Celsius",
    "temperature_calibrated": True,
}
