"""
Summary and spatial statistics across matrices.

``get_stats`` combines pixel statistics (computed over every pixel) with hot
and cold patch statistics for a single matrix; ``stats_by_group`` does the same
for groups of matrices, e.g. all images taken at one site.
"""

from __future__ import annotations

import warnings
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from . import patches as patches_mod
from .config import DEFAULT_K, DEFAULT_STYLE, DEFAULT_SUM_STATS, DEFAULT_Z_CRIT
from .helpers import StatSpec, multi_sapply, round_to
from .patch_stats import pooled_patch_stats
from .patches import PatchResult


def _prepend_pixel_stats(pixel_stats: pd.DataFrame, pstats: pd.DataFrame) -> pd.DataFrame:
    out = pd.concat([pixel_stats.reset_index(drop=True), pstats.reset_index(drop=True)], axis=1)
    if "matrix_id" in out.columns:
        out.insert(0, "matrix_id", out.pop("matrix_id"))
    return out


def get_stats(
    val_mat,
    matrix_id: Optional[str] = None,
    get_patches: bool = True,
    k: int = DEFAULT_K,
    style: str = DEFAULT_STYLE,
    mat_proj=None,
    mat_extent: Optional[Sequence[float]] = None,
    return_vals: Sequence[str] = ("df", "patches", "pstats"),
    pixel_fns: Optional[Sequence[str]] = None,
    sum_stats: Sequence[StatSpec] = DEFAULT_SUM_STATS,
    round_val: Optional[float] = None,
    z_crit: float = DEFAULT_Z_CRIT,
) -> Union[pd.DataFrame, PatchResult]:
    """Calculate summary and spatial statistics across a single matrix or raster.

    Args:
        val_mat: 2-D array, open rasterio dataset or raster path.
        matrix_id: Optional matrix id (useful when iterating over many matrices).
        get_patches: Whether to identify hot and cold patches.
        k: Number of nearest neighbours for the spatial weights.
        style: Weight style (``W`` row-standardised, ``B`` binary, ...).
        mat_proj: CRS; optional, but needed for geographic data to plot correctly.
        mat_extent: ``(xmin, ymin, xmax, ymax)``; optional, as for ``mat_proj``.
        return_vals: Any of ``"df"``, ``"patches"``, ``"pstats"``. ``pstats`` is
            always returned; use ``patches.get_patches`` to avoid it.
        pixel_fns: Column names for ``sum_stats`` (defaults to their names).
        sum_stats: Statistics computed across all pixels, by registry name
            (``mean``, ``perc_95``, ``SHDI``, ``skewness``, ...) or callable.
        round_val: Round values to the nearest multiple first.
        z_crit: Critical |z| for the hot/cold classification.

    Returns:
        The one-row pixel statistics frame when ``get_patches`` is False; the
        pixel statistics joined to the patch statistics when only ``pstats`` is
        requested; otherwise a PatchResult whose ``pstats`` carries both.
    """
    if not get_patches:
        arr = round_to(patches_mod.matrix_values(val_mat), round_val)
        pixel_stats = multi_sapply(arr, sum_stats, names=pixel_fns)
        if matrix_id is not None:
            pixel_stats.insert(0, "matrix_id", matrix_id)
        return pixel_stats

    arr, crs, transform = patches_mod.as_matrix(val_mat, mat_proj=mat_proj, mat_extent=mat_extent)
    arr = round_to(arr, round_val)
    pixel_stats = multi_sapply(arr, sum_stats, names=pixel_fns)

    return_vals = list(patches_mod.check_return_vals(return_vals))
    if "pstats" not in return_vals:
        return_vals.append("pstats")

    result = patches_mod.get_patches(
        arr,
        matrix_id=matrix_id,
        k=k,
        style=style,
        mat_proj=crs,
        return_vals=return_vals,
        z_crit=z_crit,
        mat_transform=transform,
    )

    pstats = _prepend_pixel_stats(pixel_stats, result.pstats)
    if return_vals == ["pstats"]:
        return pstats
    result.pstats = pstats
    return result


def _group_matrices(
    ids: Sequence[str],
    mat_list: Mapping[str, object],
    mat_proj,
    mat_extent,
    round_val: Optional[float],
    georeference: bool = True,
) -> List[Tuple[str, np.ndarray, object]]:
    mats = []
    for matrix_id in ids:
        mat = mat_list[matrix_id]
        if mat is None:
            warnings.warn(f"Matrix {matrix_id!r} is empty and was skipped", RuntimeWarning, stacklevel=3)
            continue
        if georeference:
            arr, _, transform = patches_mod.as_matrix(mat, mat_proj=mat_proj, mat_extent=mat_extent)
        else:
            arr, transform = patches_mod.matrix_values(mat), None
        mats.append((matrix_id, round_to(arr, round_val), transform))
    return mats


def stats_by_group(
    metadata: pd.DataFrame,
    mat_list: Mapping[str, object],
    idvar: str,
    grouping_var: str,
    round_val: Optional[float] = None,
    sum_stats: Sequence[StatSpec] = DEFAULT_SUM_STATS,
    get_patches: bool = True,
    k: int = DEFAULT_K,
    style: str = DEFAULT_STYLE,
    mat_proj=None,
    mat_extent: Optional[Sequence[float]] = None,
    z_crit: float = DEFAULT_Z_CRIT,
    pixel_fns: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """Calculate summary and spatial statistics across groups of matrices.

    Pixel statistics pool every pixel of every matrix in a group. Patches are
    detected per matrix, so neighbour graphs never span two images, and the
    patch statistics are then pooled across the group.

    Args:
        metadata: One row per matrix, holding ``idvar`` and ``grouping_var``.
        mat_list: Mapping of matrix id (matching ``metadata[idvar]``) to matrix.
        idvar: Column of ``metadata`` identifying each matrix.
        grouping_var: Column of ``metadata`` to group by.

    Returns:
        One row per group: ``grouping_var``, ``n_matrices``, the pixel
        statistics and (with ``get_patches``) the pooled patch statistics.
    """
    for col in (idvar, grouping_var):
        if col not in metadata.columns:
            raise ValueError(f"Column {col!r} not in metadata; have {list(metadata.columns)}")

    mats_by_id: Dict[str, object] = {str(key): mat for key, mat in mat_list.items()}
    wanted = metadata[idvar].astype(str)
    missing = sorted(set(wanted) - set(mats_by_id))
    if missing:
        raise KeyError(f"No matrix supplied for ids: {missing}")

    rows = []
    grouped = metadata.assign(_id=wanted).dropna(subset=[grouping_var]).groupby(grouping_var, sort=True)
    for group, sub in grouped:
        ids = list(dict.fromkeys(sub["_id"]))
        mats = _group_matrices(ids, mats_by_id, mat_proj, mat_extent, round_val, georeference=get_patches)
        if not mats:
            warnings.warn(f"Group {group!r} has no usable matrices and was skipped", RuntimeWarning, stacklevel=2)
            continue

        pooled = np.concatenate([arr.ravel() for _, arr, _ in mats])
        row = multi_sapply(pooled, sum_stats, names=pixel_fns)
        row.insert(0, "n_matrices", len(mats))
        row.insert(0, grouping_var, group)

        if get_patches:
            frames = []
            for _, arr, transform in mats:
                _, g_grid = patches_mod.detect(arr, transform, k=k, style=style, z_crit=z_crit)
                frames.append((arr, g_grid, patches_mod.cell_size(transform)))
            row = pd.concat([row, pooled_patch_stats(frames)], axis=1)
        rows.append(row)

    if not rows:
        return pd.DataFrame(columns=[grouping_var, "n_matrices"])
    return pd.concat(rows, ignore_index=True)
