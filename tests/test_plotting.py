import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

HERE = Path(__file__).resolve()
ROOT = HERE.parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from thermstats import patches as patches_mod
from thermstats.plotting import plot_patches, plot_stack
from thermstats.stack import stack_imgs


def _pixel_df(n_rows: int = 4, n_cols: int = 5) -> pd.DataFrame:
    rows, cols = np.indices((n_rows, n_cols))
    rows = rows.ravel()
    cols = cols.ravel()
    return pd.DataFrame(
        {
            "val": np.linspace(0, 1, rows.size),
            "x": cols + 0.5,
            "y": rows + 0.5,
            "row": rows,
            "col": cols,
        }
    )


def test_plot_patches_saves_file(tmp_path: Path):
    fig = plot_patches(
        _pixel_df(),
        print_plot=False,
        save_plot=True,
        return_plot=True,
        out_dir=tmp_path,
        file_name="surface",
        dpi=50,
    )
    assert (tmp_path / "surface.png").exists()
    assert fig is not None


def test_plot_patches_default_name_and_no_return(tmp_path: Path):
    out = plot_patches(_pixel_df(), print_plot=False, save_plot=True, out_dir=tmp_path, file_ext=".jpg", dpi=50)
    assert out is None
    assert (tmp_path / "patch_plot.jpg").exists()


def test_plot_patches_requires_pixel_columns():
    with pytest.raises(ValueError, match="row"):
        plot_patches(_pixel_df().drop(columns=["row"]), print_plot=False)


def test_plot_patches_rejects_unknown_units():
    with pytest.raises(ValueError, match="units"):
        plot_patches(_pixel_df(), print_plot=False, fig_units="px")


@pytest.mark.skipif(
    not patches_mod.GIS_AVAILABLE,
    reason="libpysal/esda/rasterio/geopandas not installed",
)
def test_plot_patches_with_outlines(tmp_path: Path):
    grid = np.full((20, 20), 20.0)
    grid[2:7, 2:7] = 35.0
    grid[12:17, 12:17] = 5.0
    res = patches_mod.get_patches(grid, return_vals=["df", "patches"])
    fig = plot_patches(res.df, res.patches, print_plot=False, return_plot=True)
    # hot and cold outlines on top of the image
    assert len(fig.axes[0].collections) >= 2


def test_plot_stack_saves_file(tmp_path: Path):
    rng = np.random.default_rng(3)
    stack = stack_imgs({f"t{i}": rng.normal(20 + i, 1, size=(10, 10)) for i in range(3)})
    fig = plot_stack(
        stack,
        n=30,
        print_plot=False,
        save_plot=True,
        return_plot=True,
        out_dir=tmp_path,
        ylabel="Temperature",
        seed=3,
        dpi=50,
    )
    assert (tmp_path / "stack_plot.png").exists()
    ax = fig.axes[0]
    assert [t.get_text() for t in ax.get_xticklabels()] == ["t0", "t1", "t2"]
