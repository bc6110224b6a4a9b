import importlib.util
import json
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from click.testing import CliRunner

HERE = Path(__file__).resolve()
ROOT = HERE.parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from thermstats import extract
from thermstats import patches as patches_mod
from thermstats.convert import ConversionParams, load_temps
from thermstats.extract import ExtractResult, write_extract


def _load_cli():
    script = ROOT / "scripts" / "run_thermstats.py"
    spec = importlib.util.spec_from_file_location("run_thermstats", script)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module.cli


cli = _load_cli()


def _write_matrix_csv(path: Path, mat: np.ndarray) -> Path:
    pd.DataFrame(mat).to_csv(path, header=False, index=False)
    return path


def test_stats_pixel_only_from_csv(tmp_path: Path):
    path = _write_matrix_csv(tmp_path / "m.csv", np.array([[1.0, 2.0], [3.0, 4.0]]))
    result = CliRunner().invoke(
        cli,
        ["stats", "--matrix", str(path), "--matrix-id", "m", "--no-patches", "--sum-stats", "mean,max"],
    )
    assert result.exit_code == 0, result.output
    rows = json.loads(result.output)
    assert rows == [{"matrix_id": "m", "mean": 2.5, "max": 4.0}]


def test_stats_from_npy_with_rounding(tmp_path: Path):
    path = tmp_path / "m.npy"
    np.save(path, np.array([[0.9, 1.1], [2.9, 3.2]]))
    result = CliRunner().invoke(
        cli, ["stats", "--matrix", str(path), "--no-patches", "--sum-stats", "SHDI", "--round-val", "1"]
    )
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)[0]["SHDI"] == pytest.approx(np.log(2))


def test_stats_unknown_statistic_exits(tmp_path: Path):
    path = _write_matrix_csv(tmp_path / "m.csv", np.ones((2, 2)))
    result = CliRunner().invoke(cli, ["stats", "--matrix", str(path), "--no-patches", "--sum-stats", "mode"])
    assert result.exit_code == 1
    assert "Unknown statistic" in result.output


def test_stats_bad_extent(tmp_path: Path):
    path = _write_matrix_csv(tmp_path / "m.csv", np.ones((2, 2)))
    result = CliRunner().invoke(cli, ["stats", "--matrix", str(path), "--extent", "0,0,1"])
    assert result.exit_code != 0


def test_group_stats_writes_csv(tmp_path: Path):
    np.savez(tmp_path / "mats.npz", **{"1": np.ones((3, 3)), "2": np.full((3, 3), 3.0)})
    pd.DataFrame({"photo_no": ["1", "2"], "site": ["x", "x"]}).to_csv(tmp_path / "meta.csv", index=False)
    out = tmp_path / "out" / "groups.csv"

    result = CliRunner().invoke(
        cli,
        [
            "group-stats",
            "--metadata", str(tmp_path / "meta.csv"),
            "--matrices", str(tmp_path / "mats.npz"),
            "--idvar", "photo_no",
            "--grouping-var", "site",
            "--no-patches",
            "--out", str(out),
        ],
    )
    assert result.exit_code == 0, result.output
    df = pd.read_csv(out)
    assert list(df.columns) == ["site", "n_matrices", "mean", "min", "max"]
    assert df.loc[0, "mean"] == pytest.approx(2.0)
    assert (tmp_path / "out" / "groups_provenance.json").exists()


def test_convert_from_extract_archive(tmp_path: Path):
    p = ConversionParams(E=1.0, OD=0.0)
    raw_val = p.PR1 / (p.PR2 * (np.exp(p.PB / (25.0 + 273.15)) - p.PF)) - p.PO
    camera = pd.DataFrame([{"PlanckR1": p.PR1, "PlanckB": p.PB, "PlanckF": p.PF, "PlanckO": p.PO, "PlanckR2": p.PR2}])
    write_extract(
        ExtractResult(raw_dat={"0001": np.full((2, 2), raw_val), "0002": None}, camera_params=camera),
        out_dir=tmp_path,
        file_name="raw",
    )

    result = CliRunner().invoke(
        cli,
        [
            "convert",
            "--extract", str(tmp_path / "raw.npz"),
            "--out-dir", str(tmp_path),
            "--file-name", "temps",
            "--set", "OD=0",
            "--set", "E=1",
        ],
    )
    assert result.exit_code == 0, result.output
    temps = load_temps(tmp_path / "temps.npz")
    np.testing.assert_allclose(temps["0001"], 25.0, atol=1e-3)
    assert temps["0002"] is None


def test_convert_rejects_malformed_override(tmp_path: Path):
    write_extract(
        ExtractResult(raw_dat={"0001": np.ones((2, 2))}, camera_params=pd.DataFrame([{"PlanckR1": 21106.77}])),
        out_dir=tmp_path,
        file_name="raw",
    )
    result = CliRunner().invoke(cli, ["convert", "--extract", str(tmp_path / "raw.npz"), "--set", "E"])
    assert result.exit_code != 0


def test_extract_reports_missing_exiftool(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    def fake_run(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(extract.subprocess, "run", fake_run)
    (tmp_path / "imgs").mkdir()
    (tmp_path / "imgs" / "FLIR0001.jpg").write_bytes(b"\xff\xd8")

    result = CliRunner().invoke(cli, ["extract", "--in-dir", str(tmp_path / "imgs"), "--out-dir", str(tmp_path)])
    assert result.exit_code == 1
    assert "exiftool not found" in result.output


@pytest.mark.skipif(
    not patches_mod.GIS_AVAILABLE,
    reason="libpysal/esda/rasterio/geopandas not installed",
)
def test_stats_with_patches_writes_outputs(tmp_path: Path):
    grid = np.full((20, 20), 20.0)
    grid[2:7, 2:7] = 35.0
    grid[12:17, 12:17] = 5.0
    path = tmp_path / "grid.npy"
    np.save(path, grid)

    result = CliRunner().invoke(
        cli,
        [
            "stats",
            "--matrix", str(path),
            "--matrix-id", "g",
            "--df-out", str(tmp_path / "out" / "pixels.csv"),
            "--patches-out", str(tmp_path / "out" / "patches.geojson"),
        ],
    )
    assert result.exit_code == 0, result.output
    pixels = pd.read_csv(tmp_path / "out" / "pixels.csv")
    assert len(pixels) == 400
    geo = json.loads((tmp_path / "out" / "patches.geojson").read_text())
    assert len(geo["features"]) == 2
    assert (tmp_path / "out" / "g_provenance.json").exists()
