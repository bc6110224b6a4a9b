"""
Raw FLIR counts -> temperature (degrees Celsius).

Implements the standard FLIR radiometric chain: atmospheric transmission from
object distance and humidity, then removal of reflected, atmospheric and IR
window radiance before inverting the Planck curve. Default constants match a
typical FLIR camera; real runs should take the Planck constants from
``batch_extract(...).camera_params``.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import numpy as np
import pandas as pd

from . import contracts
from .extract import ExtractResult, default_file_name, load_extract, write_extract


PLANCK_FIELDS = {
    "PlanckR1": "PR1",
    "PlanckB": "PB",
    "PlanckF": "PF",
    "PlanckO": "PO",
    "PlanckR2": "PR2",
}
SETTING_FIELDS = {
    "Emissivity": "E",
    "ObjectDistance": "OD",
    "ReflectedApparentTemperature": "RTemp",
    "AtmosphericTemperature": "ATemp",
    "IRWindowTemperature": "IRWTemp",
    "IRWindowTransmission": "IRT",
    "RelativeHumidity": "RH",
}


@dataclass
class ConversionParams:
    """Object, environment and camera constants for ``raw2temp``.

    ``ATemp`` and ``IRWTemp`` default to ``RTemp`` when left as None. ``RH``
    is a percentage.
    """

    E: float = 1.0
    OD: float = 1.0
    RTemp: float = 20.0
    ATemp: Optional[float] = None
    IRWTemp: Optional[float] = None
    IRT: float = 1.0
    RH: float = 50.0
    PR1: float = 21106.77
    PB: float = 1501.0
    PF: float = 1.0
    PO: float = -7340.0
    PR2: float = 0.012545258
    ATA1: float = 0.006569
    ATA2: float = 0.01262
    ATB1: float = -0.002276
    ATB2: float = -0.00667
    ATX: float = 1.9

    @classmethod
    def from_camera_params(
        cls,
        camera_params: pd.DataFrame,
        settings_row: Optional[Mapping[str, object]] = None,
        **overrides,
    ) -> "ConversionParams":
        """Build params from ``batch_extract`` output.

        ``camera_params`` is the one-row Planck table; ``settings_row`` is one
        photo's row of the settings table (ExifTool numeric values, where
        relative humidity is a 0-1 fraction).
        """
        values: Dict[str, float] = {}
        if camera_params is not None and not camera_params.empty:
            row = camera_params.iloc[0]
            for tag, name in PLANCK_FIELDS.items():
                if tag in row.index and pd.notna(row[tag]):
                    values[name] = float(row[tag])
        if settings_row is not None:
            values.update(settings_values(settings_row))
        values.update(overrides)
        return cls(**values)

    def replace(self, **changes) -> "ConversionParams":
        return dataclasses.replace(self, **changes)

    def as_dict(self) -> Dict[str, float]:
        return dataclasses.asdict(self)


def settings_values(settings_row: Mapping[str, object]) -> Dict[str, float]:
    """Map one photo's ExifTool settings onto ``ConversionParams`` field names.

    ExifTool reports relative humidity as a 0-1 fraction; it is returned as a
    percentage.
    """
    values: Dict[str, float] = {}
    for tag, name in SETTING_FIELDS.items():
        val = settings_row.get(tag)
        if val is None or pd.isna(val):
            continue
        values[name] = float(val)
    if "RH" in values and values["RH"] <= 1.0:
        values["RH"] *= 100.0
    return values


def _planck_raw(temp_c, p: ConversionParams):
    """Raw counts emitted by a black body at ``temp_c``."""
    return p.PR1 / (p.PR2 * (np.exp(p.PB / (np.asarray(temp_c, dtype=np.float64) + 273.15)) - p.PF)) - p.PO


def atmospheric_transmission(p: ConversionParams) -> float:
    """Transmission through ``OD`` metres of air at ``RH`` percent humidity."""
    atemp = p.RTemp if p.ATemp is None else p.ATemp
    h2o = (p.RH / 100.0) * np.exp(
        1.5587 + 0.06939 * atemp - 0.00027816 * atemp ** 2 + 0.00000068455 * atemp ** 3
    )
    scale = -np.sqrt(p.OD / 2.0)
    return float(
        p.ATX * np.exp(scale * (p.ATA1 + p.ATB1 * np.sqrt(h2o)))
        + (1.0 - p.ATX) * np.exp(scale * (p.ATA2 + p.ATB2 * np.sqrt(h2o)))
    )


def raw2temp(raw, params: Optional[ConversionParams] = None, **overrides) -> np.ndarray:
    """Convert raw FLIR counts to degrees Celsius.

    Keyword overrides replace individual ``ConversionParams`` fields, e.g.
    ``raw2temp(raw, E=0.95, OD=1.2)``.
    """
    p = params or ConversionParams()
    if overrides:
        p = p.replace(**overrides)
    if not 0 < p.E <= 1:
        raise ValueError(f"Emissivity must be in (0, 1], got {p.E}")
    if not 0 < p.IRT <= 1:
        raise ValueError(f"IR window transmission must be in (0, 1], got {p.IRT}")

    atemp = p.RTemp if p.ATemp is None else p.ATemp
    irwtemp = p.RTemp if p.IRWTemp is None else p.IRWTemp

    emiss_wind = 1.0 - p.IRT
    refl_wind = 0.0
    # The same transmission applies on both sides of the IR window.
    tau1 = tau2 = atmospheric_transmission(p)

    raw_refl1 = _planck_raw(p.RTemp, p)
    raw_refl1_attn = (1.0 - p.E) / p.E * raw_refl1
    raw_atm1 = _planck_raw(atemp, p)
    raw_atm1_attn = (1.0 - tau1) / p.E / tau1 * raw_atm1
    raw_wind = _planck_raw(irwtemp, p)
    raw_wind_attn = emiss_wind / p.E / tau1 / p.IRT * raw_wind
    raw_refl2 = _planck_raw(p.RTemp, p)
    raw_refl2_attn = refl_wind / p.E / tau1 / p.IRT * raw_refl2
    raw_atm2 = _planck_raw(atemp, p)
    raw_atm2_attn = (1.0 - tau2) / p.E / tau1 / p.IRT / tau2 * raw_atm2

    raw_obj = (
        np.asarray(raw, dtype=np.float64) / p.E / tau1 / p.IRT / tau2
        - raw_atm1_attn
        - raw_atm2_attn
        - raw_wind_attn
        - raw_refl1_attn
        - raw_refl2_attn
    )
    with np.errstate(invalid="ignore", divide="ignore"):
        return p.PB / np.log(p.PR1 / (p.PR2 * (raw_obj + p.PO)) + p.PF) - 273.15


def batch_convert(
    raw_dat: Mapping[str, Optional[np.ndarray]],
    params: Optional[ConversionParams] = None,
    settings: Optional[pd.DataFrame] = None,
    write_results: bool = False,
    out_dir=None,
    file_name: Optional[str] = None,
    **overrides,
) -> Dict[str, Optional[np.ndarray]]:
    """Convert every raw matrix in ``raw_dat`` to degrees Celsius.

    ``settings`` (the per-photo table from ``batch_extract``) supplies
    per-image emissivity, distance and ambient conditions on top of
    ``params``; explicit ``overrides`` win over both. ``None`` entries (frames
    that failed extraction) are kept as ``None``.
    """
    base = params or ConversionParams()
    if overrides:
        base = base.replace(**overrides)

    out: Dict[str, Optional[np.ndarray]] = {}
    for key, raw in raw_dat.items():
        if raw is None:
            out[key] = None
            continue
        p = base
        if settings is not None and str(key) in settings.index.astype(str):
            row = settings.loc[settings.index.astype(str) == str(key)].iloc[0]
            p = base.replace(**{**settings_values(row.to_dict()), **overrides})
        out[key] = raw2temp(raw, p).astype(np.float32)

    if write_results:
        write_extract(
            ExtractResult(raw_dat=out, camera_params=pd.DataFrame([base.as_dict()])),
            out_dir=out_dir,
            file_name=file_name or default_file_name("flir_temp"),
            contract=contracts.CONVERT_CONTRACT,
        )
    return out


def load_temps(npz_path) -> Dict[str, Optional[np.ndarray]]:
    """Read a matrix archive written by ``batch_convert``/``batch_extract``.

    Frames that failed extraction come back as ``None``.
    """
    return load_extract(npz_path).raw_dat
