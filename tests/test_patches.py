"""
Tests for hot/cold patch detection.

The neighbour graph, local G and polygon tests need libpysal, esda, rasterio
and geopandas; they are skipped when the geospatial stack is missing.
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

HERE = Path(__file__).resolve()
ROOT = HERE.parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from thermstats import patches as patches_mod
from thermstats.config import weight_transform
from thermstats.contracts import COLD, HOT, NO_PATCH
from thermstats.patches import (
    PatchResult,
    check_return_vals,
    classify,
    label_hot_cold,
    matrix_values,
)

try:
    patches_mod.check_dependencies()
    GIS_AVAILABLE = True
except ImportError:
    GIS_AVAILABLE = False

requires_gis = pytest.mark.skipif(
    not GIS_AVAILABLE,
    reason="libpysal/esda/rasterio/geopandas not installed",
)


def hot_cold_grid(size: int = 20) -> np.ndarray:
    """Background of 20 with a 5x5 block of 35 (hot) and a 5x5 block of 5 (cold)."""
    grid = np.full((size, size), 20.0)
    grid[2:7, 2:7] = 35.0
    grid[12:17, 12:17] = 5.0
    return grid


def test_classify_bins_are_right_closed():
    G = np.array([2.0, 1.96, -1.96, -1.0, np.nan, -3.0])
    np.testing.assert_array_equal(classify(G, 1.96), [HOT, NO_PATCH, COLD, NO_PATCH, NO_PATCH, COLD])


def test_weight_styles():
    assert weight_transform("W") == "R"
    assert weight_transform("b") == "B"
    assert weight_transform("C") == "B"
    with pytest.raises(ValueError, match="Unsupported weight style"):
        weight_transform("S")


def test_check_return_vals():
    assert check_return_vals("df") == ("df",)
    assert check_return_vals(["pstats", "df", "pstats"]) == ("pstats", "df")
    with pytest.raises(ValueError, match="Unknown return_vals"):
        check_return_vals(["df", "plots"])


def test_label_hot_cold_numbers_hot_first():
    g = np.array(
        [
            [1, 1, 0, -1],
            [0, 0, 0, -1],
            [1, np.nan, 0, 0],
        ]
    )
    labels, g_of_label = label_hot_cold(g)
    assert g_of_label == {1: HOT, 2: HOT, 3: COLD}
    assert labels[0, 0] == labels[0, 1] == 1
    assert labels[2, 0] == 2
    assert labels[0, 3] == labels[1, 3] == 3
    assert labels[2, 1] == 0


def test_matrix_values_plain_array():
    out = matrix_values([[1, 2], [3, 4]])
    assert out.dtype == np.float64
    with pytest.raises(ValueError, match="2-D"):
        matrix_values([1, 2, 3])


@requires_gis
class TestGeoreferencing:
    def test_identity_transform_without_extent(self):
        arr, crs, transform = patches_mod.as_matrix(np.zeros((3, 4)))
        assert crs is None
        df = patches_mod.pixel_frame(arr, transform)
        first = df.iloc[0]
        assert (first["row"], first["col"], first["x"], first["y"]) == (0, 0, 0.5, 0.5)
        assert patches_mod.cell_size(transform) == (1.0, 1.0)

    def test_extent_gives_north_up_cell_centres(self):
        arr, _, transform = patches_mod.as_matrix(np.zeros((20, 10)), mat_extent=(100, 0, 110, 40))
        df = patches_mod.pixel_frame(arr, transform)
        first = df.iloc[0]
        assert first["x"] == pytest.approx(100.5)
        assert first["y"] == pytest.approx(39.0)
        assert patches_mod.cell_size(transform) == (1.0, 2.0)

    def test_invalid_extent(self):
        with pytest.raises(ValueError, match="Invalid extent"):
            patches_mod.as_matrix(np.zeros((2, 2)), mat_extent=(1, 0, 0, 1))

    def test_nan_pixels_are_dropped(self):
        arr = np.array([[1.0, np.nan], [3.0, 4.0]])
        arr, _, transform = patches_mod.as_matrix(arr)
        df = patches_mod.pixel_frame(arr, transform)
        assert len(df) == 3
        assert not ((df["row"] == 0) & (df["col"] == 1)).any()

    def test_missing_raster_path(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            patches_mod.as_matrix(tmp_path / "missing.tif")


@requires_gis
class TestGetPatches:
    def test_detects_one_hot_and_one_cold_patch(self):
        res = patches_mod.get_patches(hot_cold_grid(), matrix_id="site_a")
        assert isinstance(res, PatchResult)

        df = res.df
        for col in ("val", "x", "y", "row", "col", "G", "G_bin", "patch_id", "matrix_id"):
            assert col in df.columns
        assert len(df) == 400
        assert (df["matrix_id"] == "site_a").all()

        centre_hot = df[(df["row"] == 4) & (df["col"] == 4)].iloc[0]
        centre_cold = df[(df["row"] == 14) & (df["col"] == 14)].iloc[0]
        far = df[(df["row"] == 0) & (df["col"] == 19)].iloc[0]
        assert centre_hot["G_bin"] == HOT
        assert centre_cold["G_bin"] == COLD
        assert far["G_bin"] == NO_PATCH
        assert pd.isna(far["patch_id"])
        assert centre_hot["patch_id"] != centre_cold["patch_id"]

        pstats = res.pstats.iloc[0]
        assert pstats["matrix_id"] == "site_a"
        assert pstats["hot_n_patches"] == 1
        assert pstats["cold_n_patches"] == 1
        assert pstats["hot_mean"] == pytest.approx(35.0, abs=5.0)
        assert pstats["cold_mean"] == pytest.approx(5.0, abs=5.0)

    def test_patch_polygons_match_patch_cells(self):
        res = patches_mod.get_patches(hot_cold_grid(), mat_extent=(0, 0, 40, 40), return_vals=["patches"])
        assert res.df is None
        assert res.pstats is None

        gdf = res.patches
        assert sorted(gdf["G_bin"]) == [COLD, HOT]
        # 2x2 map-unit cells
        np.testing.assert_allclose(gdf.geometry.area.to_numpy(), gdf["n_cells"].to_numpy() * 4.0)
        assert (gdf["shape_index"] >= 1.0).all()

    def test_binary_weights_agree_on_patch_count(self):
        res = patches_mod.get_patches(hot_cold_grid(), style="B", return_vals="pstats")
        row = res.pstats.iloc[0]
        assert row["hot_n_patches"] == 1
        assert row["cold_n_patches"] == 1

    def test_k_validation(self):
        with pytest.raises(ValueError, match="k must be"):
            patches_mod.get_patches(hot_cold_grid(), k=0)
        with pytest.raises(ValueError, match="non-missing pixels"):
            patches_mod.get_patches(np.ones((2, 2)), k=8)

    @pytest.mark.parametrize("value", [20.0, 0.0])
    def test_constant_surface_has_no_patches(self, value):
        res = patches_mod.get_patches(np.full((10, 10), value))
        assert (res.df["G_bin"] == NO_PATCH).all()
        assert res.df["patch_id"].isna().all()
        row = res.pstats.iloc[0]
        assert row["hot_n_patches"] == 0
        assert row["cold_n_patches"] == 0
        assert len(res.patches) == 0

    def test_negative_values_warn(self):
        with pytest.warns(RuntimeWarning, match="negative values"):
            patches_mod.get_patches(hot_cold_grid() - 30.0, return_vals=["pstats"])
