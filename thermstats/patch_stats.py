"""
Patch and class metrics for hot/cold patches.

Patches are 4-connected components of one class in a ``G_bin`` grid. Shape
metrics follow the raster FRAGSTATS definitions, which compare a perimeter to
the smallest perimeter achievable by the same number of cells:

- SHAPE (per patch) = perimeter / min perimeter
- LSI (per class)   = total class edge / min edge for the class area
- AI (per class)    = like adjacencies / max like adjacencies * 100

All edge counts are in cell edges, so the indices are unitless; areas are in
map units (cells times cell area).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import ndimage

from .contracts import PATCH_CLASSES

# Rook (4-neighbour) connectivity: diagonal contact does not join patches.
STRUCTURE_4 = ndimage.generate_binary_structure(2, 1)

CLASS_METRICS: Tuple[str, ...] = (
    "mean",
    "max",
    "min",
    "n_patches",
    "mean_area",
    "mean_shape_index",
    "landscape_shape_index",
    "aggregation_index",
)


def label_patches(mask: np.ndarray) -> Tuple[np.ndarray, int]:
    """Label 4-connected patches in a boolean mask."""
    labels, n = ndimage.label(np.asarray(mask, dtype=bool), structure=STRUCTURE_4)
    return labels, int(n)


def min_perimeter(cells):
    """Smallest perimeter (in cell edges) of a shape made of ``cells`` cells."""
    a = np.asarray(cells, dtype=np.int64)
    n = np.floor(np.sqrt(a)).astype(np.int64)
    m = a - n * n
    return np.where(m == 0, 4 * n, np.where(m <= n, 4 * n + 2, 4 * n + 4))


def max_like_adjacencies(cells: int) -> int:
    """Largest single-count number of shared edges among ``cells`` cells."""
    n = int(np.floor(np.sqrt(cells)))
    m = int(cells) - n * n
    base = 2 * n * (n - 1)
    if m == 0:
        return base
    if m <= n:
        return base + 2 * m - 1
    return base + 2 * m - 2


def patch_edges(labels: np.ndarray, n: Optional[int] = None) -> np.ndarray:
    """Perimeter of each labelled patch in cell edges (grid border included)."""
    labels = np.asarray(labels)
    if n is None:
        n = int(labels.max()) if labels.size else 0
    padded = np.pad(labels, 1, mode="constant", constant_values=0)
    perim = np.zeros(n + 1, dtype=np.int64)
    for a, b in ((padded[1:, :], padded[:-1, :]), (padded[:, 1:], padded[:, :-1])):
        diff = a != b
        perim += np.bincount(a[diff].ravel(), minlength=n + 1)[: n + 1]
        perim += np.bincount(b[diff].ravel(), minlength=n + 1)[: n + 1]
    return perim[1:]


def like_adjacencies(mask: np.ndarray) -> int:
    mask = np.asarray(mask, dtype=bool)
    return int(
        np.count_nonzero(mask[1:, :] & mask[:-1, :])
        + np.count_nonzero(mask[:, 1:] & mask[:, :-1])
    )


@dataclass
class ClassCounts:
    """Additive raw counts for one class; indices are derived from them."""

    cells: int = 0
    area: float = 0.0
    edges: int = 0
    like_adjacencies: int = 0
    n_patches: int = 0
    shape_index_sum: float = 0.0

    def __add__(self, other: "ClassCounts") -> "ClassCounts":
        return ClassCounts(
            cells=self.cells + other.cells,
            area=self.area + other.area,
            edges=self.edges + other.edges,
            like_adjacencies=self.like_adjacencies + other.like_adjacencies,
            n_patches=self.n_patches + other.n_patches,
            shape_index_sum=self.shape_index_sum + other.shape_index_sum,
        )

    @property
    def mean_area(self) -> float:
        return self.area / self.n_patches if self.n_patches else float("nan")

    @property
    def mean_shape_index(self) -> float:
        return self.shape_index_sum / self.n_patches if self.n_patches else float("nan")

    @property
    def landscape_shape_index(self) -> float:
        if not self.cells:
            return float("nan")
        return float(self.edges / min_perimeter(self.cells))

    @property
    def aggregation_index(self) -> float:
        max_g = max_like_adjacencies(self.cells) if self.cells else 0
        if max_g == 0:
            return float("nan")
        return float(100.0 * self.like_adjacencies / max_g)


def class_counts(mask: np.ndarray, cell_area: float = 1.0) -> ClassCounts:
    """Raw counts for the class given by ``mask``."""
    mask = np.asarray(mask, dtype=bool)
    labels, n = label_patches(mask)
    if n == 0:
        return ClassCounts()
    cells = np.bincount(labels.ravel(), minlength=n + 1)[1:]
    edges = patch_edges(labels, n)
    return ClassCounts(
        cells=int(cells.sum()),
        area=float(cells.sum() * cell_area),
        edges=int(edges.sum()),
        like_adjacencies=like_adjacencies(mask),
        n_patches=n,
        shape_index_sum=float(np.sum(edges / min_perimeter(cells))),
    )


def pool_class_counts(counts: Iterable[ClassCounts]) -> ClassCounts:
    total = ClassCounts()
    for c in counts:
        total = total + c
    return total


def class_row(name: str, values: np.ndarray, counts: ClassCounts) -> Dict[str, float]:
    """One class's metrics, keyed ``<name>_<metric>``."""
    values = np.asarray(values, dtype=np.float64)
    values = values[~np.isnan(values)]
    has = values.size > 0
    return {
        f"{name}_mean": float(values.mean()) if has else float("nan"),
        f"{name}_max": float(values.max()) if has else float("nan"),
        f"{name}_min": float(values.min()) if has else float("nan"),
        f"{name}_n_patches": int(counts.n_patches),
        f"{name}_mean_area": counts.mean_area,
        f"{name}_mean_shape_index": counts.mean_shape_index,
        f"{name}_landscape_shape_index": counts.landscape_shape_index,
        f"{name}_aggregation_index": counts.aggregation_index,
    }


def _cell_area(cell_size: Sequence[float]) -> float:
    return float(abs(cell_size[0] * cell_size[1]))


def patch_stats(
    val_mat,
    patch_mat,
    matrix_id: Optional[str] = None,
    cell_size: Sequence[float] = (1.0, 1.0),
) -> pd.DataFrame:
    """Hot and cold patch statistics for one matrix as a one-row DataFrame.

    Args:
        val_mat: 2-D value matrix.
        patch_mat: Matching ``G_bin`` grid (1 hot, -1 cold, 0 none, NaN no data).
        matrix_id: Optional id, emitted as the first column.
        cell_size: ``(width, height)`` of one cell in map units.
    """
    return pooled_patch_stats([(val_mat, patch_mat, cell_size)], matrix_id=matrix_id)


def pooled_patch_stats(
    frames: Sequence[Tuple[np.ndarray, np.ndarray, Sequence[float]]],
    matrix_id: Optional[str] = None,
) -> pd.DataFrame:
    """Patch statistics over several ``(val_mat, patch_mat, cell_size)`` frames.

    Value statistics use the pooled class pixels; shape indices use summed
    raw counts, so a group behaves like one landscape made of separate tiles.
    """
    row: Dict[str, object] = {}
    if matrix_id is not None:
        row["matrix_id"] = matrix_id

    for name, code in PATCH_CLASSES.items():
        values = []
        counts = []
        for val_mat, patch_mat, cell_size in frames:
            val_mat = np.asarray(val_mat, dtype=np.float64)
            patch_mat = np.asarray(patch_mat, dtype=np.float64)
            if val_mat.shape != patch_mat.shape:
                raise ValueError(
                    f"val_mat shape {val_mat.shape} does not match patch_mat shape {patch_mat.shape}"
                )
            mask = patch_mat == code
            values.append(val_mat[mask])
            counts.append(class_counts(mask, cell_area=_cell_area(cell_size)))
        pooled = np.concatenate(values) if values else np.zeros(0)
        row.update(class_row(name, pooled, pool_class_counts(counts)))

    return pd.DataFrame([row])


def patch_table(
    val_mat,
    labels: np.ndarray,
    g_bin_of_label: Mapping[int, int],
    cell_size: Sequence[float] = (1.0, 1.0),
) -> pd.DataFrame:
    """Per-patch metrics for a label grid (0 = no patch)."""
    val_mat = np.asarray(val_mat, dtype=np.float64)
    labels = np.asarray(labels)
    n = int(labels.max()) if labels.size else 0
    columns = ["patch_id", "G_bin", "n_cells", "area", "edges", "shape_index", "mean", "min", "max"]
    if n == 0:
        return pd.DataFrame(columns=columns)

    ids = np.arange(1, n + 1)
    cells = np.bincount(labels.ravel(), minlength=n + 1)[1:]
    edges = patch_edges(labels, n)
    return pd.DataFrame(
        {
            "patch_id": ids,
            "G_bin": [int(g_bin_of_label[int(i)]) for i in ids],
            "n_cells": cells,
            "area": cells * _cell_area(cell_size),
            "edges": edges,
            "shape_index": edges / min_perimeter(cells),
            "mean": ndimage.mean(val_mat, labels, ids),
            "min": ndimage.minimum(val_mat, labels, ids),
            "max": ndimage.maximum(val_mat, labels, ids),
        },
        columns=columns,
    )
