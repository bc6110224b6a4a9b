"""Stacks of same-shaped matrices, e.g. repeated images of one scene over time."""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import List, Mapping, Optional

import numpy as np
import pandas as pd


@dataclass
class ImageStack:
    """Layers of equal shape; ``data`` is ``(n_layers, rows, cols)``."""

    names: List[str]
    data: np.ndarray

    def __len__(self) -> int:
        return len(self.names)

    def sample(self, n: int = 100, seed: Optional[int] = None) -> pd.DataFrame:
        """Sample up to ``n`` cells that hold data in every layer.

        The same cells are drawn from each layer. Returns a long frame with
        ``rep_id`` (layer name) and ``val`` columns.
        """
        if n < 1:
            raise ValueError(f"n must be >= 1, got {n}")
        flat = self.data.reshape(len(self.names), -1)
        valid = np.flatnonzero(~np.isnan(flat).any(axis=0))
        rng = np.random.default_rng(seed)
        cells = rng.choice(valid, size=min(int(n), valid.size), replace=False)
        cells.sort()
        return pd.DataFrame(
            {
                "rep_id": np.repeat(self.names, cells.size),
                "val": flat[:, cells].ravel(),
            }
        )


def stack_imgs(img_list: Mapping[str, Optional[np.ndarray]]) -> ImageStack:
    """Stack a mapping of id -> matrix into an ImageStack.

    ``None`` entries (frames that failed extraction) are dropped with a
    warning; every remaining matrix must share one shape.
    """
    names: List[str] = []
    layers: List[np.ndarray] = []
    for name, mat in img_list.items():
        if mat is None:
            warnings.warn(f"Skipping empty matrix {name!r}", RuntimeWarning, stacklevel=2)
            continue
        arr = np.asarray(mat, dtype=np.float64)
        if arr.ndim != 2:
            raise ValueError(f"Matrix {name!r} is not 2-D (shape {arr.shape})")
        if layers and arr.shape != layers[0].shape:
            raise ValueError(
                f"Matrix {name!r} has shape {arr.shape}; expected {layers[0].shape} like {names[0]!r}"
            )
        names.append(str(name))
        layers.append(arr)

    if not layers:
        raise ValueError("No matrices to stack")
    return ImageStack(names=names, data=np.stack(layers, axis=0))
