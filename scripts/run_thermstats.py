#!/usr/bin/env python3
"""
Thermal statistics CLI

Wrapper for the thermstats extraction, conversion and statistics functions.

USAGE:
    # Extract raw counts + calibration constants from FLIR radiometric JPEGs
    python scripts/run_thermstats.py extract \\
        --in-dir data/flir --out-dir data/processed --file-name flir_raw

    # Convert raw counts to degrees Celsius using the extracted constants
    python scripts/run_thermstats.py convert \\
        --extract data/processed/flir_raw.npz --out-dir data/processed

    # Pixel + patch statistics for one matrix (raster, .npy or headerless .csv)
    python scripts/run_thermstats.py stats \\
        --matrix data/processed/worldclim.tif --matrix-id sulawesi \\
        --sum-stats mean,min,max,perc_95,SHDI --round-val 0.5 \\
        --df-out data/processed/sulawesi_pixels.csv \\
        --patches-out data/processed/sulawesi_patches.geojson

    # Statistics per group of matrices (e.g. per site)
    python scripts/run_thermstats.py group-stats \\
        --metadata data/metadata.csv --matrices data/processed/flir_temp.npz \\
        --idvar photo_no --grouping-var site --out data/processed/site_stats.csv

NOTES:
    - extract requires exiftool on PATH (or THERMSTATS_EXIFTOOL)
    - stats/group-stats with patches require libpysal, esda, rasterio, geopandas
"""

import json
import sys
from pathlib import Path
from typing import Optional, Tuple

# Ensure project root is on PYTHONPATH so we can import thermstats/*
HERE = Path(__file__).resolve()
ROOT = HERE.parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import click
import numpy as np
import pandas as pd

from thermstats.config import DEFAULT_K, DEFAULT_STYLE, DEFAULT_SUM_STATS, DEFAULT_Z_CRIT, StatsParams
from thermstats.contracts import PSTATS_CONTRACT
from thermstats.convert import ConversionParams, batch_convert, load_temps
from thermstats.extract import ExtractParams, load_extract, run as run_extract
from thermstats.utils.provenance import write_provenance


def emit_json(d, pretty: bool = True):
    """Print dict/list as JSON."""
    print(json.dumps(d, indent=2, default=str) if pretty else json.dumps(d, default=str))


def _split(value: str) -> Tuple[str, ...]:
    return tuple(v.strip() for v in value.split(",") if v.strip())


def _load_matrix(path: Path):
    """Load a matrix from .npy, headerless .csv, or pass a raster path through."""
    suffix = path.suffix.lower()
    if suffix == ".npy":
        return np.load(path, allow_pickle=False)
    if suffix in (".csv", ".txt"):
        return pd.read_csv(path, header=None).to_numpy(dtype=float)
    return path


def _stats_params(k, style, z_crit, sum_stats, round_val, get_patches) -> StatsParams:
    return StatsParams(
        k=k,
        style=style,
        z_crit=z_crit,
        sum_stats=_split(sum_stats),
        round_val=round_val,
        get_patches=get_patches,
    )


def _parse_extent(extent: Optional[str]):
    if extent is None:
        return None
    try:
        xmin, ymin, xmax, ymax = [float(v) for v in extent.split(",")]
    except ValueError:
        raise click.BadParameter(f"Expected 'xmin,ymin,xmax,ymax', got {extent!r}", param_hint="--extent")
    return xmin, ymin, xmax, ymax


@click.group()
def cli():
    """Thermal heterogeneity statistics: extraction, conversion and hot/cold patches."""


@cli.command("extract")
@click.option(
    "--in-dir", type=click.Path(exists=True, file_okay=False, path_type=Path), required=True,
    help="Directory of FLIR radiometric JPEGs"
)
@click.option("--out-dir", type=click.Path(path_type=Path), default=None, help="Output directory (default: cwd)")
@click.option("--file-name", type=str, default=None, help="Output stem (default: flir_raw_<date>)")
@click.option("--inc", type=str, multiple=True, help="File name to include (repeatable)")
@click.option("--exc", type=str, multiple=True, help="File name to exclude (repeatable)")
@click.option("--exiftool", "exiftool_path", type=str, default=None, help="ExifTool binary or folder")
@click.option("--timeout-s", type=float, default=None, help="Per-call exiftool timeout in seconds")
def cmd_extract(in_dir, out_dir, file_name, inc, exc, exiftool_path, timeout_s):
    """Batch-extract raw thermal counts and camera constants."""
    try:
        out_path = run_extract(
            ExtractParams(
                in_dir=in_dir,
                out_dir=out_dir,
                file_name=file_name,
                inc=list(inc) or None,
                exc=list(exc) or None,
                exiftool_path=exiftool_path,
                timeout_s=timeout_s,
                verbose=True,
            )
        )
    except (FileNotFoundError, RuntimeError, TimeoutError, ValueError) as e:
        click.echo(f"Error during extraction: {e}", err=True)
        sys.exit(1)
    click.echo(f"\nRaw data written to {out_path}", err=True)


@cli.command("convert")
@click.option(
    "--extract", "extract_path", type=click.Path(exists=True, dir_okay=False, path_type=Path), required=True,
    help="Archive written by the extract command"
)
@click.option("--out-dir", type=click.Path(path_type=Path), default=None, help="Output directory (default: cwd)")
@click.option("--file-name", type=str, default=None, help="Output stem (default: flir_temp_<date>)")
@click.option(
    "--per-image-settings/--no-per-image-settings", default=True,
    help="Use each image's emissivity, distance and ambient settings"
)
@click.option(
    "--set", "overrides", type=str, multiple=True,
    help="Override a conversion parameter, e.g. --set E=0.95 --set OD=1.5"
)
def cmd_convert(extract_path, out_dir, file_name, per_image_settings, overrides):
    """Convert extracted raw counts to degrees Celsius."""
    extracted = load_extract(extract_path)
    values = {}
    for item in overrides:
        key, _, value = item.partition("=")
        if not value:
            raise click.BadParameter(f"Expected KEY=VALUE, got {item!r}", param_hint="--set")
        values[key.strip()] = float(value)

    try:
        params = ConversionParams.from_camera_params(extracted.camera_params)
        batch_convert(
            extracted.raw_dat,
            params=params,
            settings=extracted.settings if per_image_settings else None,
            write_results=True,
            out_dir=out_dir,
            file_name=file_name,
            **values,
        )
    except (TypeError, ValueError) as e:
        click.echo(f"Error during conversion: {e}", err=True)
        sys.exit(1)
    n_failed = len(extracted.failed)
    click.echo(f"\nConverted {len(extracted.raw_dat) - n_failed} matrices ({n_failed} failed frame(s) kept empty)", err=True)


@cli.command("stats")
@click.option(
    "--matrix", type=click.Path(exists=True, dir_okay=False, path_type=Path), required=True,
    help="Raster, .npy or headerless .csv matrix"
)
@click.option("--matrix-id", type=str, default=None, help="Matrix id added to the outputs")
@click.option("--sum-stats", type=str, default=",".join(DEFAULT_SUM_STATS), help="Comma-separated pixel statistics")
@click.option("--round-val", type=float, default=None, help="Round values to the nearest multiple first")
@click.option("--k", type=int, default=DEFAULT_K, help="Nearest neighbours for the spatial weights")
@click.option("--style", type=str, default=DEFAULT_STYLE, help="Weight style: W, B, C or U")
@click.option("--z-crit", type=float, default=DEFAULT_Z_CRIT, help="Critical |z| for hot/cold pixels")
@click.option("--patches/--no-patches", "get_patches", default=True, help="Identify hot and cold patches")
@click.option("--proj", "mat_proj", type=str, default=None, help="CRS of the matrix, e.g. EPSG:4326")
@click.option("--extent", type=str, default=None, help="xmin,ymin,xmax,ymax of the matrix")
@click.option("--df-out", type=click.Path(path_type=Path), default=None, help="Per-pixel CSV output")
@click.option("--patches-out", type=click.Path(path_type=Path), default=None, help="Patch GeoJSON output")
@click.option("--plot-out", type=click.Path(path_type=Path), default=None, help="Patch map image output")
def cmd_stats(
    matrix, matrix_id, sum_stats, round_val, k, style, z_crit, get_patches,
    mat_proj, extent, df_out, patches_out, plot_out,
):
    """Pixel and hot/cold patch statistics for one matrix."""
    from thermstats.stats import get_stats

    params = _stats_params(k, style, z_crit, sum_stats, round_val, get_patches)
    try:
        result = get_stats(
            _load_matrix(matrix),
            matrix_id=matrix_id,
            mat_proj=mat_proj,
            mat_extent=_parse_extent(extent),
            **params.as_dict(),
        )
    except (ImportError, ValueError, FileNotFoundError) as e:
        click.echo(f"Error computing statistics: {e}", err=True)
        sys.exit(1)

    if not get_patches:
        emit_json(result.to_dict(orient="records"))
        return

    emit_json(result.pstats.to_dict(orient="records"))
    if df_out is not None:
        df_out.parent.mkdir(parents=True, exist_ok=True)
        result.df.to_csv(df_out, index=False)
        click.echo(f"Pixel table written to {df_out}", err=True)
    if patches_out is not None:
        patches_out.parent.mkdir(parents=True, exist_ok=True)
        result.patches.to_file(patches_out, driver="GeoJSON")
        click.echo(f"Patches written to {patches_out}", err=True)
    if plot_out is not None:
        import matplotlib
        matplotlib.use("Agg")
        from thermstats.plotting import plot_patches

        plot_patches(
            result.df, result.patches, print_plot=False, save_plot=True,
            out_dir=plot_out.parent, file_name=plot_out.stem, file_ext=plot_out.suffix or "png",
        )
        click.echo(f"Patch map written to {plot_out}", err=True)

    written = df_out or patches_out
    if written is not None:
        write_provenance(
            written.parent,
            filename=f"{matrix_id or matrix.stem}_provenance.json",
            extra={"contract": PSTATS_CONTRACT, "matrix": str(matrix), "params": params.as_dict()},
        )


@cli.command("group-stats")
@click.option(
    "--metadata", type=click.Path(exists=True, dir_okay=False, path_type=Path), required=True,
    help="CSV with one row per matrix"
)
@click.option(
    "--matrices", type=click.Path(exists=True, dir_okay=False, path_type=Path), required=True,
    help=".npz archive of matrices (from extract/convert)"
)
@click.option("--idvar", type=str, required=True, help="Metadata column holding matrix ids")
@click.option("--grouping-var", type=str, required=True, help="Metadata column to group by")
@click.option("--sum-stats", type=str, default=",".join(DEFAULT_SUM_STATS), help="Comma-separated pixel statistics")
@click.option("--round-val", type=float, default=None, help="Round values to the nearest multiple first")
@click.option("--k", type=int, default=DEFAULT_K, help="Nearest neighbours for the spatial weights")
@click.option("--style", type=str, default=DEFAULT_STYLE, help="Weight style: W, B, C or U")
@click.option("--z-crit", type=float, default=DEFAULT_Z_CRIT, help="Critical |z| for hot/cold pixels")
@click.option("--patches/--no-patches", "get_patches", default=True, help="Identify hot and cold patches")
@click.option("--out", type=click.Path(path_type=Path), required=True, help="Output CSV path")
def cmd_group_stats(
    metadata, matrices, idvar, grouping_var, sum_stats, round_val, k, style, z_crit, get_patches, out,
):
    """Pixel and pooled patch statistics per group of matrices."""
    from thermstats.stats import stats_by_group

    params = _stats_params(k, style, z_crit, sum_stats, round_val, get_patches)
    meta = pd.read_csv(metadata, dtype={idvar: str})
    try:
        result = stats_by_group(
            meta,
            load_temps(matrices),
            idvar=idvar,
            grouping_var=grouping_var,
            **params.as_dict(),
        )
    except (ImportError, KeyError, ValueError) as e:
        click.echo(f"Error computing group statistics: {e}", err=True)
        sys.exit(1)

    out.parent.mkdir(parents=True, exist_ok=True)
    result.to_csv(out, index=False)
    write_provenance(
        out.parent,
        filename=f"{out.stem}_provenance.json",
        extra={
            "contract": PSTATS_CONTRACT,
            "metadata": str(metadata),
            "matrices": str(matrices),
            "grouping_var": grouping_var,
            "params": params.as_dict(),
        },
    )
    click.echo(f"{len(result)} group(s) written to {out}", err=True)


if __name__ == "__main__":
    cli()
