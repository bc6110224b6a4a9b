"""
Plots of patch maps and image stacks.

Thin matplotlib layer: each function builds one figure and optionally shows,
saves and/or returns it. Scripts running headless should select the ``Agg``
backend before importing pyplot.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .contracts import COLD, HOT
from .stack import ImageStack

_UNITS_PER_INCH = {"in": 1.0, "cm": 2.54, "mm": 25.4}


def _figsize(width: float, height: float, units: str) -> Tuple[float, float]:
    try:
        per_inch = _UNITS_PER_INCH[units]
    except KeyError as exc:
        raise ValueError(f"Unknown figure units {units!r}; expected one of {list(_UNITS_PER_INCH)}") from exc
    return width / per_inch, height / per_inch


def _axis_extent(coord: pd.Series, index: pd.Series, size: int) -> Tuple[float, float]:
    """Outer edges of the first and last cell along one axis."""
    lo, hi = int(index.min()), int(index.max())
    c_lo = float(coord[index == lo].iloc[0])
    c_hi = float(coord[index == hi].iloc[0])
    step = (c_hi - c_lo) / (hi - lo) if hi > lo else 1.0
    first = c_lo - step * lo
    last = first + step * (size - 1)
    return first - step / 2.0, last + step / 2.0


def _finish(
    fig,
    print_plot: bool,
    save_plot: bool,
    return_plot: bool,
    out_dir,
    file_name: str,
    file_ext: str,
    dpi: int,
):
    if print_plot:
        plt.show()
    if save_plot:
        out_dir = Path(out_dir) if out_dir is not None else Path.cwd()
        out_dir.mkdir(parents=True, exist_ok=True)
        fig.savefig(out_dir / f"{file_name}.{file_ext.lstrip('.')}", dpi=dpi, bbox_inches="tight")
    if return_plot:
        return fig
    plt.close(fig)
    return None


def plot_patches(
    df: pd.DataFrame,
    patches=None,
    print_plot: bool = True,
    save_plot: bool = False,
    return_plot: bool = False,
    out_dir=None,
    file_name: Optional[str] = None,
    file_ext: str = "png",
    fig_width: float = 12,
    fig_height: float = 9,
    fig_units: str = "cm",
    val_label: str = "Temperature",
    cmap: str = "inferno",
    outline_width: float = 0.6,
    dpi: int = 800,
):
    """Plot the value surface with hot (red) and cold (blue) patch outlines.

    ``df`` and ``patches`` are the ``df``/``patches`` outputs of
    ``get_patches``/``get_stats``.
    """
    for col in ("val", "x", "y", "row", "col"):
        if col not in df.columns:
            raise ValueError(f"df is missing column {col!r}")

    n_rows = int(df["row"].max()) + 1
    n_cols = int(df["col"].max()) + 1
    grid = np.full((n_rows, n_cols), np.nan)
    grid[df["row"].to_numpy(), df["col"].to_numpy()] = df["val"].to_numpy()

    left, right = _axis_extent(df["x"], df["col"], n_cols)
    top, bottom = _axis_extent(df["y"], df["row"], n_rows)

    fig, ax = plt.subplots(figsize=_figsize(fig_width, fig_height, fig_units))
    im = ax.imshow(grid, cmap=cmap, extent=(left, right, bottom, top), origin="upper", interpolation="nearest")
    fig.colorbar(im, ax=ax, label=val_label, fraction=0.046)

    if patches is not None and len(patches):
        for g_bin, colour in ((HOT, "red"), (COLD, "blue")):
            sub = patches[patches["G_bin"] == g_bin]
            if len(sub):
                sub.boundary.plot(ax=ax, color=colour, linewidth=outline_width)

    ax.set_xlabel("x")
    ax.set_ylabel("y")
    ax.set_aspect("equal")

    return _finish(fig, print_plot, save_plot, return_plot, out_dir, file_name or "patch_plot", file_ext, dpi)


def plot_stack(
    img_stack: ImageStack,
    n: int = 100,
    print_plot: bool = True,
    save_plot: bool = False,
    return_plot: bool = False,
    out_dir=None,
    file_name: Optional[str] = None,
    file_ext: str = "png",
    fig_width: float = 8,
    fig_height: float = 9,
    fig_units: str = "cm",
    xlabel: Optional[str] = None,
    ylabel: Optional[str] = None,
    lab_size: float = 8,
    text_size: float = 6,
    y_breaks: Optional[Sequence[float]] = None,
    seed: Optional[int] = None,
    dpi: int = 800,
):
    """Violin plots of ``n`` sampled pixels per layer of an image stack.

    Useful to assess the distribution of values across replicates, e.g. over
    time. Quartiles are drawn on each violin; sampled points are jittered
    underneath.
    """
    sample = img_stack.sample(n=n, seed=seed)
    names = list(img_stack.names)
    data = [sample.loc[sample["rep_id"] == name, "val"].to_numpy() for name in names]
    positions = np.arange(1, len(names) + 1)

    fig, ax = plt.subplots(figsize=_figsize(fig_width, fig_height, fig_units))
    rng = np.random.default_rng(seed)
    for pos, vals in zip(positions, data):
        ax.scatter(
            pos + rng.uniform(-0.2, 0.2, size=vals.size),
            vals,
            s=4,
            color="grey",
            linewidths=0,
            zorder=1,
        )
    if all(v.size for v in data):
        parts = ax.violinplot(
            data,
            positions=positions,
            showextrema=False,
            quantiles=[[0.25, 0.5, 0.75]] * len(data),
        )
        for body in parts["bodies"]:
            body.set_facecolor("none")
            body.set_edgecolor("black")
        if "cquantiles" in parts:
            parts["cquantiles"].set_color("black")
            parts["cquantiles"].set_linestyle("dashed")

    ax.set_xticks(positions)
    ax.set_xticklabels(names)
    if y_breaks is not None:
        ax.set_yticks(list(y_breaks))
    if xlabel is not None:
        ax.set_xlabel(xlabel, fontsize=lab_size)
    if ylabel is not None:
        ax.set_ylabel(ylabel, fontsize=lab_size)
    ax.tick_params(labelsize=text_size)
    for side in ("top", "right"):
        ax.spines[side].set_visible(False)

    return _finish(fig, print_plot, save_plot, return_plot, out_dir, file_name or "stack_plot", file_ext, dpi)
