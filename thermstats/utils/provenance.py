from __future__ import annotations

import json
import os
import platform
import sys
import warnings
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0, tzinfo=None).isoformat() + "Z"


def _safe_git_sha() -> str | None:
    # Avoid shelling out; allow env override if CI sets it
    return os.environ.get("GIT_SHA") or None


def _package_version() -> str | None:
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("thermstats")
    except PackageNotFoundError:
        return None


def write_provenance(
    out_dir: Path,
    filename: str = "provenance.json",
    extra: Dict[str, Any] | None = None,
) -> Path | None:
    """Write a lightweight provenance record to `out_dir/filename`.

    Includes timestamp, Python version, platform, package version, optional
    GIT_SHA env var, and any extra fields provided by the caller (e.g. inputs,
    params, output contracts). Returns the written path, or None when the
    directory is not writeable; a provenance failure never aborts a run.
    """
    payload: Dict[str, Any] = {
        "timestamp": _now_iso(),
        "python": sys.version.split()[0],
        "platform": platform.platform(),
        "thermstats": _package_version(),
        "git_sha": _safe_git_sha(),
    }
    if extra:
        payload.update(extra)

    path = Path(out_dir) / filename
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2, default=str))
    except OSError as exc:
        warnings.warn(f"Could not write provenance to {path}: {exc}", RuntimeWarning, stacklevel=2)
        return None
    return path
