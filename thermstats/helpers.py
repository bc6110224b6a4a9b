"""
Pixel summary statistics.

Every helper takes a numeric vector or matrix (matrices are flattened) and an
``na_rm`` flag. Statistics are dispatched by name through ``SUMMARY_STATS`` so
callers can request them as plain strings, e.g. ``("mean", "perc_95", "SHDI")``.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import stats

StatFn = Callable[..., float]
StatSpec = Union[str, StatFn]


def _values(x, na_rm: bool = True) -> np.ndarray:
    """Flatten ``x`` to a float vector, dropping NaN when ``na_rm``."""
    vals = np.asarray(x, dtype=np.float64).ravel()
    if na_rm:
        vals = vals[~np.isnan(vals)]
    return vals


def _usable(vals: np.ndarray) -> bool:
    return vals.size > 0 and not np.isnan(vals).any()


def perc_5(x, na_rm: bool = True) -> float:
    """5th percentile (linear interpolation)."""
    vals = _values(x, na_rm)
    if not _usable(vals):
        return float("nan")
    return float(np.percentile(vals, 5))


def perc_95(x, na_rm: bool = True) -> float:
    """95th percentile (linear interpolation)."""
    vals = _values(x, na_rm)
    if not _usable(vals):
        return float("nan")
    return float(np.percentile(vals, 95))


def _proportions(vals: np.ndarray) -> np.ndarray:
    _, counts = np.unique(vals, return_counts=True)
    return counts / vals.size


def SHDI(x, na_rm: bool = True) -> float:
    """Shannon diversity index over the distinct values of ``x``.

    Continuous data should be rounded first (see ``round_to``), otherwise every
    value is distinct and the index is simply ``ln(n)``.
    """
    vals = _values(x, na_rm)
    if not _usable(vals):
        return float("nan")
    props = _proportions(vals)
    return float(-np.sum(props * np.log(props)))


def SIDI(x, na_rm: bool = True) -> float:
    """Simpson diversity index (``1 - sum(p^2)``) over the distinct values of ``x``."""
    vals = _values(x, na_rm)
    if not _usable(vals):
        return float("nan")
    props = _proportions(vals)
    return float(1.0 - np.sum(props ** 2))


def skewness(x, na_rm: bool = True) -> float:
    """Moment skewness ``m3 / m2**1.5``."""
    vals = _values(x, na_rm)
    if not _usable(vals):
        return float("nan")
    return float(stats.skew(vals, bias=True))


def kurtosis(x, na_rm: bool = True) -> float:
    """Pearson kurtosis ``m4 / m2**2`` (a normal sample gives ~3, not 0)."""
    vals = _values(x, na_rm)
    if not _usable(vals):
        return float("nan")
    return float(stats.kurtosis(vals, fisher=False, bias=True))


def _nan_guard(fn: Callable[[np.ndarray], float], ddof: Optional[int] = None) -> StatFn:
    def stat(x, na_rm: bool = True) -> float:
        vals = _values(x, na_rm)
        if not _usable(vals):
            return float("nan")
        if ddof is not None:
            if vals.size <= ddof:
                return float("nan")
            return float(fn(vals, ddof=ddof))
        return float(fn(vals))

    stat.__name__ = fn.__name__
    return stat


def _count(x, na_rm: bool = True) -> float:
    return float(_values(x, na_rm).size)


SUMMARY_STATS: Dict[str, StatFn] = {
    "mean": _nan_guard(np.mean),
    "median": _nan_guard(np.median),
    "min": _nan_guard(np.min),
    "max": _nan_guard(np.max),
    "sum": _nan_guard(np.sum),
    "sd": _nan_guard(np.std, ddof=1),
    "var": _nan_guard(np.var, ddof=1),
    "n": _count,
    "perc_5": perc_5,
    "perc_95": perc_95,
    "SHDI": SHDI,
    "SIDI": SIDI,
    "skewness": skewness,
    "kurtosis": kurtosis,
}


def resolve_stat(spec: StatSpec) -> Tuple[str, StatFn]:
    """Return ``(name, callable)`` for a statistic given by name or callable."""
    if callable(spec):
        return getattr(spec, "__name__", repr(spec)), spec
    try:
        return str(spec), SUMMARY_STATS[str(spec)]
    except KeyError as exc:
        raise ValueError(
            f"Unknown statistic {spec!r}; known: {', '.join(sorted(SUMMARY_STATS))}"
        ) from exc


def multi_sapply(
    x,
    fns: Sequence[StatSpec],
    names: Optional[Sequence[str]] = None,
    na_rm: bool = True,
) -> pd.DataFrame:
    """Apply several statistics to ``x`` and return them as a one-row DataFrame.

    Registry statistics receive ``na_rm``; user callables receive the
    NaN-filtered values (or the raw flattened values when ``na_rm=False``).
    """
    resolved = [resolve_stat(fn) for fn in fns]
    if names is None:
        names = [name for name, _ in resolved]
    elif len(names) != len(resolved):
        raise ValueError(
            f"Got {len(names)} names for {len(resolved)} statistics: {list(names)}"
        )

    vals = _values(x, na_rm)
    row: Dict[str, float] = {}
    for name, (_, fn) in zip(names, resolved):
        if fn in SUMMARY_STATS.values():
            row[str(name)] = fn(vals, na_rm=na_rm)
        else:
            row[str(name)] = float(fn(vals)) if vals.size else float("nan")
    return pd.DataFrame([row], columns=[str(n) for n in names])


def round_to(x, round_val: Optional[float]) -> np.ndarray:
    """Round values to the nearest multiple of ``round_val`` (no-op when None)."""
    arr = np.asarray(x, dtype=np.float64)
    if round_val is None:
        return arr
    if round_val <= 0:
        raise ValueError(f"round_val must be positive, got {round_val}")
    return np.round(arr / round_val) * round_val
