"""
FLIR radiometric JPEG extraction.

Pulls the raw 16-bit sensor image and the camera calibration constants out of
FLIR radiometric JPEGs by shelling out to ExifTool. Nothing here interprets
the counts as temperatures; see ``thermstats.convert`` for that.

DEPENDENCIES:
    Requires the ``exiftool`` binary (https://exiftool.org).

        brew install exiftool                      # macOS
        apt-get install libimage-exiftool-perl     # Debian/Ubuntu

    A non-standard install can be pointed to with ``exiftool_path=`` or the
    ``THERMSTATS_EXIFTOOL`` environment variable.
"""

from __future__ import annotations

import io
import json
import re
import subprocess
import warnings
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
from PIL import Image

from . import contracts
from .config import resolve_exiftool
from .utils.provenance import write_provenance


PLANCK_TAGS = ("PlanckR1", "PlanckB", "PlanckF", "PlanckO", "PlanckR2")
SETTING_TAGS = (
    "Emissivity",
    "ObjectDistance",
    "ReflectedApparentTemperature",
    "AtmosphericTemperature",
    "IRWindowTemperature",
    "IRWindowTransmission",
    "RelativeHumidity",
)


@dataclass
class ExtractResult:
    """Raw FLIR counts keyed by photo number, plus calibration metadata."""

    raw_dat: Dict[str, Optional[np.ndarray]]
    camera_params: pd.DataFrame
    settings: pd.DataFrame = field(default_factory=pd.DataFrame)

    @property
    def failed(self) -> List[str]:
        return [k for k, v in self.raw_dat.items() if v is None]


@dataclass
class ExtractParams:
    """Inputs and outputs for a batch extraction run."""

    in_dir: Path
    out_dir: Optional[Path] = None
    file_name: Optional[str] = None
    inc: Optional[Sequence[str]] = None
    exc: Optional[Sequence[str]] = None
    exiftool_path: Optional[str] = None
    timeout_s: Optional[float] = None
    verbose: bool = False


def run(params: ExtractParams) -> Path:
    """Run ``batch_extract`` with ``params`` and return the written ``.npz`` path."""
    file_name = params.file_name or default_file_name("flir_raw")
    batch_extract(
        params.in_dir,
        write_results=True,
        out_dir=params.out_dir,
        file_name=file_name,
        inc=params.inc,
        exc=params.exc,
        exiftool_path=params.exiftool_path,
        timeout_s=params.timeout_s,
        verbose=params.verbose,
    )
    out_dir = Path(params.out_dir) if params.out_dir is not None else Path.cwd()
    return out_dir / f"{file_name}.npz"


def default_file_name(prefix: str) -> str:
    return f"{prefix}_{date.today().isoformat()}"


def photo_number(path: Path) -> str:
    """Photo number from a FLIR file name: ``FLIR8565.jpg`` -> ``8565``."""
    name = re.sub(r"\.jpe?g$", "", Path(path).name, flags=re.IGNORECASE)
    return name.replace("FLIR", "")


def select_files(
    in_dir: Path,
    inc: Optional[Sequence[str]] = None,
    exc: Optional[Sequence[str]] = None,
) -> List[Path]:
    """List files in ``in_dir`` (sorted), keeping ``inc`` and dropping ``exc`` basenames."""
    in_dir = Path(in_dir)
    if not in_dir.is_dir():
        raise FileNotFoundError(f"Input directory not found: {in_dir}")

    files = sorted(p for p in in_dir.iterdir() if p.is_file())
    if inc is not None:
        keep = {Path(name).name for name in inc}
        files = [p for p in files if p.name in keep]
    if exc is not None:
        drop = {Path(name).name for name in exc}
        files = [p for p in files if p.name not in drop]
    return files


def _exiftool(args: List[str], exiftool: str, timeout_s: Optional[float] = None) -> bytes:
    cmd = [exiftool, *args]
    try:
        result = subprocess.run(cmd, capture_output=True, check=True, timeout=timeout_s)
    except FileNotFoundError as exc:
        raise FileNotFoundError(
            f"exiftool not found ({exiftool}). Install via: brew install exiftool (macOS) "
            "or apt-get install libimage-exiftool-perl (Linux), or set THERMSTATS_EXIFTOOL"
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise TimeoutError(f"exiftool timed out after {timeout_s}s: {' '.join(cmd)}") from exc
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.decode(errors="replace") if isinstance(exc.stderr, bytes) else exc.stderr
        raise RuntimeError(f"exiftool failed: {(stderr or '').strip()}") from exc
    return result.stdout


def read_metadata(
    image_path: Path,
    exiftool_path: Optional[str] = None,
    tags: Sequence[str] = ("RawThermalImageType", *PLANCK_TAGS, *SETTING_TAGS),
    timeout_s: Optional[float] = None,
) -> Dict[str, object]:
    """Read numeric FLIR metadata tags for one image as a dict."""
    exiftool = resolve_exiftool(exiftool_path)
    out = _exiftool(
        ["-j", "-n", *[f"-{t}" for t in tags], str(image_path)],
        exiftool,
        timeout_s=timeout_s,
    )
    try:
        records = json.loads(out.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise RuntimeError(f"Unreadable exiftool JSON for {image_path}") from exc
    if not records:
        raise RuntimeError(f"exiftool returned no metadata for {image_path}")
    record = dict(records[0])
    record.pop("SourceFile", None)
    return record


def read_raw(
    image_path: Path,
    exiftool_path: Optional[str] = None,
    raw_type: Optional[str] = None,
    timeout_s: Optional[float] = None,
) -> np.ndarray:
    """Extract the embedded raw thermal image as a uint16 array.

    FLIR stores PNG payloads with little-endian samples inside a big-endian
    container, so PNG data is byte-swapped after decoding.
    """
    exiftool = resolve_exiftool(exiftool_path)
    blob = _exiftool(["-b", "-RawThermalImage", str(image_path)], exiftool, timeout_s=timeout_s)
    if not blob:
        raise RuntimeError(f"No RawThermalImage found in {image_path}")

    try:
        with Image.open(io.BytesIO(blob)) as img:
            fmt = (raw_type or img.format or "").upper()
            raw = np.asarray(img).astype(np.uint16)
    except OSError as exc:
        raise RuntimeError(f"Could not decode RawThermalImage in {image_path}: {exc}") from exc

    if raw.ndim != 2:
        raise RuntimeError(f"Expected a single-band raw image in {image_path}, got shape {raw.shape}")
    if fmt == "PNG":
        raw = raw.byteswap()
    return raw


def batch_extract(
    in_dir,
    write_results: bool = True,
    out_dir=None,
    file_name: Optional[str] = None,
    inc: Optional[Sequence[str]] = None,
    exc: Optional[Sequence[str]] = None,
    exiftool_path: Optional[str] = None,
    timeout_s: Optional[float] = None,
    verbose: bool = False,
) -> ExtractResult:
    """Batch extraction of raw data from FLIR thermal images.

    Args:
        in_dir: Directory holding the thermal images.
        write_results: Write ``<file_name>.npz`` plus camera/settings CSVs.
        out_dir: Output directory (default: current working directory).
        file_name: Output stem without extension (default ``flir_raw_<date>``).
        inc: Basenames to include (default: all files).
        exc: Basenames to exclude.
        exiftool_path: ExifTool binary or folder; ``None``/``"installed"`` uses PATH.

    Returns:
        ExtractResult with one raw matrix per photo number (``None`` for files
        that could not be read), the camera Planck constants taken from the
        first readable file, and per-photo environmental settings.
    """
    files = select_files(in_dir, inc=inc, exc=exc)
    if not files:
        raise ValueError(f"No files selected in {in_dir}")

    raw_dat: Dict[str, Optional[np.ndarray]] = {}
    settings: List[Dict[str, object]] = []
    camera_meta: Optional[Dict[str, object]] = None

    for i, path in enumerate(files, start=1):
        photo_no = photo_number(path)
        if verbose:
            print(f"Processing file {i} of {len(files)}: {path.name}")
        try:
            meta = read_metadata(path, exiftool_path=exiftool_path, timeout_s=timeout_s)
            raw = read_raw(
                path,
                exiftool_path=exiftool_path,
                raw_type=str(meta.get("RawThermalImageType") or "") or None,
                timeout_s=timeout_s,
            )
        except (RuntimeError, TimeoutError) as err:
            warnings.warn(f"Couldn't process file: {path} ({err})", RuntimeWarning, stacklevel=2)
            raw_dat[photo_no] = None
            continue

        raw_dat[photo_no] = raw
        if camera_meta is None:
            camera_meta = meta
        settings.append({"photo_no": photo_no, **{t: meta.get(t) for t in SETTING_TAGS}})

    if camera_meta is None:
        raise RuntimeError(f"None of the {len(files)} files in {in_dir} could be processed")

    if verbose:
        print("Extracting camera parameters...")
    camera_params = pd.DataFrame([{t: camera_meta.get(t) for t in PLANCK_TAGS}])
    settings_df = pd.DataFrame(settings, columns=["photo_no", *SETTING_TAGS]).set_index("photo_no")

    result = ExtractResult(raw_dat=raw_dat, camera_params=camera_params, settings=settings_df)

    if write_results:
        write_extract(
            result,
            out_dir=out_dir,
            file_name=file_name or default_file_name("flir_raw"),
            extra={"in_dir": str(in_dir), "files": [p.name for p in files]},
        )
    return result


def write_extract(
    result: ExtractResult,
    out_dir=None,
    file_name: Optional[str] = None,
    contract: Optional[Dict[str, object]] = None,
    extra: Optional[Dict[str, object]] = None,
) -> Path:
    """Write matrices to ``.npz`` and metadata to CSV; returns the ``.npz`` path.

    ``<file_name>_frames.csv`` lists every photo in order with a ``failed``
    flag, so frames that could not be read come back as ``None``.
    """
    out_dir = Path(out_dir) if out_dir is not None else Path.cwd()
    file_name = file_name or default_file_name("flir_raw")
    out_dir.mkdir(parents=True, exist_ok=True)

    npz_path = out_dir / f"{file_name}.npz"
    arrays = {k: v for k, v in result.raw_dat.items() if v is not None}
    np.savez_compressed(npz_path, **arrays)
    pd.DataFrame(
        {
            "photo_no": [str(k) for k in result.raw_dat],
            "failed": [v is None for v in result.raw_dat.values()],
        }
    ).to_csv(out_dir / f"{file_name}_frames.csv", index=False)
    result.camera_params.to_csv(out_dir / f"{file_name}_camera_params.csv", index=False)
    if not result.settings.empty:
        result.settings.to_csv(out_dir / f"{file_name}_settings.csv")

    write_provenance(
        out_dir,
        filename=f"{file_name}_provenance.json",
        extra={
            "contract": contract or contracts.EXTRACT_CONTRACT,
            "outputs": [npz_path.name],
            "failed": result.failed,
            **(extra or {}),
        },
    )
    return npz_path


def load_extract(npz_path) -> ExtractResult:
    """Read back the files written by ``write_extract``."""
    npz_path = Path(npz_path)
    if not npz_path.exists():
        raise FileNotFoundError(f"Missing extract archive: {npz_path}")

    stem = npz_path.with_suffix("")
    with np.load(npz_path, allow_pickle=False) as data:
        arrays = {k: data[k] for k in data.files}

    frames_path = Path(f"{stem}_frames.csv")
    if frames_path.exists():
        frames = pd.read_csv(frames_path, dtype={"photo_no": str})
        raw_dat: Dict[str, Optional[np.ndarray]] = {
            key: None if failed else arrays[key]
            for key, failed in zip(frames["photo_no"], frames["failed"].astype(bool))
        }
    else:
        raw_dat = dict(arrays)

    params_path = Path(f"{stem}_camera_params.csv")
    camera_params = pd.read_csv(params_path) if params_path.exists() else pd.DataFrame()
    settings_path = Path(f"{stem}_settings.csv")
    if settings_path.exists():
        settings = pd.read_csv(settings_path, dtype={"photo_no": str}).set_index("photo_no")
    else:
        settings = pd.DataFrame()
    return ExtractResult(raw_dat=raw_dat, camera_params=camera_params, settings=settings)
