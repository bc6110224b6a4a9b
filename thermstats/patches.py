"""
Hot and cold patch detection.

Classifies every pixel of a temperature grid by its local Getis-Ord G z-value
computed over a k-nearest-neighbour graph, then groups hot (1) and cold (-1)
pixels into 4-connected patches and polygonises them.

DEPENDENCIES:
    The neighbour graph, local G and polygon steps are delegated to the
    geospatial stack:

        pip install libpysal esda rasterio geopandas shapely

    or, where GDAL wheels are a problem:

        conda install -c conda-forge libpysal esda rasterio geopandas
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import DEFAULT_K, DEFAULT_STYLE, DEFAULT_Z_CRIT, weight_transform
from .contracts import COLD, HOT, NO_PATCH
from .patch_stats import label_patches, patch_stats, patch_table

# Guarded imports for the geospatial stack
try:
    import geopandas as gpd
    import rasterio
    from rasterio import features
    from rasterio.transform import Affine, from_bounds, xy
    from shapely.geometry import shape
    from shapely.ops import unary_union
    from libpysal.weights import KNN
    from esda.getisord import G_Local
    GIS_AVAILABLE = True
except ImportError as e:
    GIS_AVAILABLE = False
    _GIS_IMPORT_ERROR = str(e)


RETURN_VALS = ("df", "patches", "pstats")


def check_dependencies():
    """Check if the geospatial stack is available. Raises ImportError if not."""
    if not GIS_AVAILABLE:
        raise ImportError(
            f"Geospatial stack not available: {_GIS_IMPORT_ERROR}\n"
            "Install via: pip install libpysal esda rasterio geopandas shapely\n"
            "Or: conda install -c conda-forge libpysal esda rasterio geopandas"
        )


@dataclass
class PatchResult:
    """Outputs of a patch run; fields not requested via ``return_vals`` stay None.

    df: one row per non-missing pixel (val, x, y, row, col, G, G_bin, patch_id).
    patches: GeoDataFrame with one polygon per hot/cold patch.
    pstats: one-row DataFrame of hot/cold patch statistics.
    """

    df: Optional[pd.DataFrame] = None
    patches: Optional["gpd.GeoDataFrame"] = None
    pstats: Optional[pd.DataFrame] = None


def check_return_vals(return_vals: Sequence[str]) -> Tuple[str, ...]:
    if isinstance(return_vals, str):
        return_vals = (return_vals,)
    unknown = [v for v in return_vals if v not in RETURN_VALS]
    if unknown:
        raise ValueError(f"Unknown return_vals {unknown}; expected any of {list(RETURN_VALS)}")
    return tuple(dict.fromkeys(return_vals))


def as_matrix(
    val_mat,
    mat_proj=None,
    mat_extent: Optional[Sequence[float]] = None,
    mat_transform=None,
):
    """Coerce a matrix, open raster dataset or raster path to ``(array, crs, transform)``.

    ``mat_extent`` is ``(xmin, ymin, xmax, ymax)``. Rasters contribute their
    own CRS and transform unless overridden. Without any georeferencing, cell
    ``(row, col)`` spans ``[col, col + 1] x [row, row + 1]``.
    """
    check_dependencies()

    if isinstance(val_mat, (str, Path)):
        path = Path(val_mat)
        if not path.exists():
            raise FileNotFoundError(f"Raster not found: {path}")
        with rasterio.open(path) as src:
            return as_matrix(src, mat_proj=mat_proj, mat_extent=mat_extent, mat_transform=mat_transform)

    crs = mat_proj
    transform = mat_transform
    if hasattr(val_mat, "read") and hasattr(val_mat, "transform"):
        arr = val_mat.read(1, masked=True).astype(np.float64).filled(np.nan)
        if crs is None and val_mat.crs is not None:
            crs = val_mat.crs.to_string()
        if transform is None and mat_extent is None:
            transform = val_mat.transform
    else:
        arr = np.array(val_mat, dtype=np.float64)

    if arr.ndim != 2:
        raise ValueError(f"Expected a 2-D matrix, got shape {arr.shape}")

    if transform is None:
        if mat_extent is not None:
            xmin, ymin, xmax, ymax = map(float, mat_extent)
            if xmax <= xmin or ymax <= ymin:
                raise ValueError(f"Invalid extent (xmin, ymin, xmax, ymax): {tuple(mat_extent)}")
            transform = from_bounds(xmin, ymin, xmax, ymax, arr.shape[1], arr.shape[0])
        else:
            transform = Affine.identity()
    return arr, crs, transform


def matrix_values(val_mat) -> np.ndarray:
    """Values of a matrix or raster; plain arrays do not need the geospatial stack."""
    if isinstance(val_mat, (str, Path)) or hasattr(val_mat, "read"):
        return as_matrix(val_mat)[0]
    arr = np.array(val_mat, dtype=np.float64)
    if arr.ndim != 2:
        raise ValueError(f"Expected a 2-D matrix, got shape {arr.shape}")
    return arr


def cell_size(transform) -> Tuple[float, float]:
    return float(abs(transform.a)), float(abs(transform.e))


def pixel_frame(arr: np.ndarray, transform) -> pd.DataFrame:
    """Reshape a matrix into one row per non-missing pixel with cell-centre coordinates."""
    rows, cols = np.indices(arr.shape)
    rows = rows.ravel()
    cols = cols.ravel()
    vals = arr.ravel()
    keep = ~np.isnan(vals)
    rows, cols, vals = rows[keep], cols[keep], vals[keep]
    xs = np.zeros(0)
    ys = np.zeros(0)
    if rows.size:
        xs, ys = (np.asarray(c, dtype=np.float64) for c in xy(transform, rows, cols, offset="center"))
    return pd.DataFrame({"val": vals, "x": xs, "y": ys, "row": rows, "col": cols})


def local_g(vals, coords: np.ndarray, k: int = DEFAULT_K, style: str = DEFAULT_STYLE) -> np.ndarray:
    """Analytical local G z-values over a k-nearest-neighbour graph of ``coords``."""
    check_dependencies()
    w = KNN.from_array(np.asarray(coords, dtype=np.float64), k=int(k))
    g = G_Local(np.asarray(vals, dtype=np.float64), w, transform=weight_transform(style), permutations=0)
    return np.asarray(g.Zs, dtype=np.float64)


def classify(G, z_crit: float = DEFAULT_Z_CRIT) -> np.ndarray:
    """Bin z-values: ``G > z_crit`` hot, ``G <= -z_crit`` cold, otherwise (and NaN) none."""
    G = np.asarray(G, dtype=np.float64)
    with np.errstate(invalid="ignore"):
        return np.where(G > z_crit, HOT, np.where(G <= -z_crit, COLD, NO_PATCH)).astype(np.int8)


def detect(
    arr: np.ndarray,
    transform,
    k: int = DEFAULT_K,
    style: str = DEFAULT_STYLE,
    z_crit: float = DEFAULT_Z_CRIT,
) -> Tuple[pd.DataFrame, np.ndarray]:
    """Per-pixel frame with ``G``/``G_bin`` plus the ``G_bin`` grid (NaN outside data).

    Local G assumes non-negative values. Below zero the statistic flips, so
    hot and cold swap; shift such grids (e.g. to Kelvin) first.
    """
    if int(k) < 1:
        raise ValueError(f"k must be >= 1, got {k}")
    df = pixel_frame(arr, transform)
    if len(df) <= int(k):
        raise ValueError(f"Need more than k={k} non-missing pixels, got {len(df)}")
    if df["val"].min() < 0:
        warnings.warn(
            "Matrix has negative values; local G assumes non-negative data and may swap hot and cold",
            RuntimeWarning,
            stacklevel=2,
        )

    df["G"] = local_g(df["val"].to_numpy(), df[["x", "y"]].to_numpy(), k=k, style=style)
    df["G_bin"] = classify(df["G"].to_numpy(), z_crit)

    g_grid = np.full(arr.shape, np.nan)
    g_grid[df["row"].to_numpy(), df["col"].to_numpy()] = df["G_bin"].to_numpy()
    return df, g_grid


def label_hot_cold(g_grid: np.ndarray) -> Tuple[np.ndarray, Dict[int, int]]:
    """Label hot then cold patches in one grid; returns labels and label -> G_bin."""
    hot, n_hot = label_patches(g_grid == HOT)
    cold, n_cold = label_patches(g_grid == COLD)
    labels = hot.copy()
    labels[cold > 0] = cold[cold > 0] + n_hot
    g_of_label = {i: HOT for i in range(1, n_hot + 1)}
    g_of_label.update({n_hot + j: COLD for j in range(1, n_cold + 1)})
    return labels, g_of_label


def polygonize(
    labels: np.ndarray,
    table: pd.DataFrame,
    transform,
    crs=None,
) -> "gpd.GeoDataFrame":
    """Polygon per labelled patch, carrying the columns of ``table`` (indexed by patch_id)."""
    geoms: Dict[int, list] = {}
    for geom, value in features.shapes(
        labels.astype(np.int32), mask=labels > 0, transform=transform, connectivity=4
    ):
        geoms.setdefault(int(value), []).append(shape(geom))

    polys = [
        geoms[int(pid)][0] if len(geoms[int(pid)]) == 1 else unary_union(geoms[int(pid)])
        for pid in table["patch_id"]
    ]
    return gpd.GeoDataFrame(table.reset_index(drop=True), geometry=polys, crs=crs)


def get_patches(
    val_mat,
    matrix_id: Optional[str] = None,
    k: int = DEFAULT_K,
    style: str = DEFAULT_STYLE,
    mat_proj=None,
    mat_extent: Optional[Sequence[float]] = None,
    return_vals: Sequence[str] = RETURN_VALS,
    z_crit: float = DEFAULT_Z_CRIT,
    mat_transform=None,
) -> PatchResult:
    """Find hot and cold patches in a single matrix or raster.

    Args:
        val_mat: 2-D array, open rasterio dataset or raster path.
        matrix_id: Optional id added to every output (useful across many matrices).
        k: Number of nearest neighbours for the spatial weights.
        style: Weight style (spdep ``W``/``B``/``C``/``U`` or libpysal ``R``/``B``).
        mat_proj: CRS of the grid; needed for geographic data to map correctly.
        mat_extent: ``(xmin, ymin, xmax, ymax)`` of the grid.
        return_vals: Any of ``"df"``, ``"patches"``, ``"pstats"``.
        z_crit: Critical |z| separating hot/cold from neutral pixels.
        mat_transform: Affine transform, overriding ``mat_extent``.

    Returns:
        PatchResult with the requested outputs populated.
    """
    check_dependencies()
    return_vals = check_return_vals(return_vals)
    arr, crs, transform = as_matrix(val_mat, mat_proj=mat_proj, mat_extent=mat_extent, mat_transform=mat_transform)

    df, g_grid = detect(arr, transform, k=k, style=style, z_crit=z_crit)
    labels, g_of_label = label_hot_cold(g_grid)
    size = cell_size(transform)

    result = PatchResult()
    if "df" in return_vals:
        pid = labels[df["row"].to_numpy(), df["col"].to_numpy()]
        df["patch_id"] = pd.array(pid, dtype="Int64")
        df.loc[pid == 0, "patch_id"] = pd.NA
        if matrix_id is not None:
            df["matrix_id"] = matrix_id
        result.df = df
    if "patches" in return_vals:
        table = patch_table(arr, labels, g_of_label, cell_size=size)
        if matrix_id is not None:
            table.insert(0, "matrix_id", matrix_id)
        result.patches = polygonize(labels, table, transform, crs=crs)
    if "pstats" in return_vals:
        result.pstats = patch_stats(arr, g_grid, matrix_id=matrix_id, cell_size=size)
    return result
