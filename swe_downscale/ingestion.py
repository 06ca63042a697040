"""
swe_downscale.ingestion
=======================
Readers for the leaf inputs: observation CSV, station points, static
covariate rasters, the daily ERA5-Land SWE stack, and the AOI.

Public API
----------
parse_layer_date(name)             → datetime.date
read_observations(path)            → pd.DataFrame   (as stored, wide or long)
parse_dates(series, fmt, column)   → pd.Series of datetime64 (midnight)
read_stations(path)                → pd.DataFrame   (station_number, x, y)
open_raster(path)                  → xr.DataArray   (y, x), nodata → NaN
load_static_layers(mapping)        → Dict[str, xr.DataArray]
load_temporal_stack(path)          → xr.DataArray   (time, y, x)
load_aoi_geometry(path)            → shapely Polygon (bounding box)
load_covariates(inputs)            → Covariates (aligned static + temporal)
"""

from __future__ import annotations

import glob
import os
import re
import warnings
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
import rasterio
import rioxarray
import xarray as xr
from shapely.geometry import box

from .checks import AlignmentError, InputFormatError, require_columns, validate_alignment
from .config import DATE_COLUMN, STATION_ID_COLUMN, TEMPORAL_FEATURE, InputConfig


# ======================================================================== #
#  1.  Dates                                                                #
# ======================================================================== #

def parse_layer_date(name: str) -> date:
    """
    Extract a calendar date from a layer name or filename.

    Supported patterns (tested in order):
      • ISO      : ``era5_swe_2001-01-15.tif``
      • compact  : ``era5_swe_20010115.tif``

    Raises
    ------
    ValueError
        If no date pattern is found.
    """
    base = os.path.basename(str(name))

    m_iso = re.search(r"(\d{4})-(\d{2})-(\d{2})", base)
    if m_iso:
        yyyy, mm, dd = m_iso.groups()
        return date(int(yyyy), int(mm), int(dd))

    m_compact = re.search(r"(?<!\d)(\d{8})(?!\d)", base)
    if m_compact:
        return datetime.strptime(m_compact.group(1), "%Y%m%d").date()

    raise ValueError(f"Cannot parse a date from layer name: {name}")


def parse_dates(
    values: pd.Series,
    date_format: Optional[str] = None,
    column: str = DATE_COLUMN,
) -> pd.Series:
    """
    Parse *values* strictly into midnight ``datetime64`` timestamps.

    Every value must match *date_format* (``None`` = ISO-8601).  A single
    unparseable value fails the whole column.

    Raises
    ------
    InputFormatError
        Naming the column and the first offending values.
    """
    fmt = date_format or "ISO8601"
    parsed = pd.to_datetime(values, format=fmt, errors="coerce")
    bad = parsed.isna() & values.notna()
    if bad.any() or values.isna().any():
        offending = values[bad | values.isna()].head(3).tolist()
        raise InputFormatError(
            f"Column '{column}': {int((bad | values.isna()).sum())} value(s) do "
            f"not match date format {fmt!r}, e.g. {offending}"
        )
    return parsed.dt.normalize()


# ======================================================================== #
#  2.  Tabular / vector sources                                             #
# ======================================================================== #

def read_observations(path: str | Path) -> pd.DataFrame:
    """
    Read the SWE observation table as stored.

    Wide layout: a ``date`` column plus one column per ``station_number``.
    Long layout: ``date, station_number, swe`` columns.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Observation table not found: {path}")
    df = pd.read_csv(path)
    require_columns(df, [DATE_COLUMN], f"Observation table {path.name}")
    return df


def read_stations(path: str | Path) -> pd.DataFrame:
    """
    Read station points and return ``station_number, x, y``.

    Station identifiers are returned as strings so they match wide-table
    column headers.
    """
    gdf = gpd.read_file(path)
    require_columns(gdf, [STATION_ID_COLUMN], f"Station source {Path(path).name}")

    not_points = ~gdf.geometry.geom_type.isin(["Point"])
    if not_points.any():
        bad = gdf.loc[not_points, STATION_ID_COLUMN].head(3).tolist()
        raise InputFormatError(
            f"Station source {Path(path).name}: non-point geometries for "
            f"station(s) {bad}"
        )

    stations = pd.DataFrame({
        STATION_ID_COLUMN: gdf[STATION_ID_COLUMN].astype(str).str.strip(),
        "x": gdf.geometry.x.to_numpy(dtype=np.float64),
        "y": gdf.geometry.y.to_numpy(dtype=np.float64),
    })

    dupes = stations[STATION_ID_COLUMN].duplicated()
    if dupes.any():
        raise InputFormatError(
            f"Station source {Path(path).name}: duplicate station_number "
            f"{stations.loc[dupes, STATION_ID_COLUMN].unique().tolist()}"
        )
    return stations


# ======================================================================== #
#  3.  Rasters                                                              #
# ======================================================================== #

def open_raster(path: str | Path, name: Optional[str] = None) -> xr.DataArray:
    """Open a single-band raster as a float ``(y, x)`` array with nodata → NaN."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Raster not found: {path}")
    da = rioxarray.open_rasterio(path, masked=True)
    if "band" in da.dims:
        if da.sizes["band"] != 1:
            raise InputFormatError(
                f"{path.name}: expected a single-band raster, "
                f"found {da.sizes['band']} bands"
            )
        da = da.squeeze("band", drop=True)
    return da.astype(np.float64).rename(name or path.stem)


def load_static_layers(layers: Mapping[str, str]) -> Dict[str, xr.DataArray]:
    """Open every static covariate keeping the configured name order."""
    return {name: open_raster(path, name=name).load() for name, path in layers.items()}


def load_temporal_stack(path: str | Path) -> xr.DataArray:
    """
    Load the daily coarse-SWE stack as a ``(time, y, x)`` array.

    Accepted layouts:
      • a directory of single-band GeoTIFFs, one per day, dated by filename;
      • a multi-band GeoTIFF whose band descriptions carry the dates;
      • a NetCDF file with a ``time`` coordinate.

    The ``time`` coordinate is normalised to midnight and sorted; duplicate
    dates are rejected.
    """
    path = Path(path)
    if path.is_dir():
        stack = _stack_from_directory(path)
    elif path.suffix.lower() in (".nc", ".nc4", ".netcdf"):
        stack = _stack_from_netcdf(path)
    elif path.exists():
        stack = _stack_from_multiband(path)
    else:
        raise FileNotFoundError(f"Temporal stack not found: {path}")

    times = pd.DatetimeIndex(stack["time"].values).normalize()
    dupes = times[times.duplicated()]
    if len(dupes):
        raise InputFormatError(
            f"Temporal stack {path.name}: duplicate dates "
            f"{[d.date().isoformat() for d in dupes.unique()[:5]]}"
        )
    stack = stack.assign_coords(time=times).sortby("time")
    return stack.astype(np.float64).rename(TEMPORAL_FEATURE).load()


def list_dated_tiffs(input_dir: str | Path) -> List[Tuple[date, str]]:
    """
    List all ``*.tif`` files in *input_dir*, parse their dates and sort
    chronologically.  Files without a date are skipped with a warning.
    """
    files = glob.glob(os.path.join(str(input_dir), "*.tif"))
    parsed: List[Tuple[date, str]] = []
    for f in files:
        try:
            parsed.append((parse_layer_date(f), f))
        except ValueError:
            warnings.warn(f"Skipping file with unparseable date: {f}")
    parsed.sort(key=lambda x: x[0])
    return parsed


def _stack_from_directory(input_dir: Path) -> xr.DataArray:
    files = list_dated_tiffs(input_dir)
    if not files:
        raise InputFormatError(f"No dated GeoTIFFs found in {input_dir}")

    layers = [open_raster(f, name=TEMPORAL_FEATURE) for _, f in files]
    ref = layers[0]
    for (day, f), layer in zip(files[1:], layers[1:]):
        if layer.shape != ref.shape:
            raise AlignmentError(
                f"{os.path.basename(f)} ({day}): shape {layer.shape} "
                f"!= reference {ref.shape}"
            )
    times = pd.to_datetime([d for d, _ in files])
    stack = xr.concat(layers, dim="time", join="override")
    return stack.assign_coords(time=times)


def _stack_from_multiband(path: Path) -> xr.DataArray:
    descs = _get_band_descriptions(path)
    try:
        days = [parse_layer_date(d) for d in descs]
    except ValueError as e:
        raise InputFormatError(
            f"{path.name}: every band must be described by its date ({e})"
        ) from e

    da = rioxarray.open_rasterio(path, masked=True)
    if "band" not in da.dims:
        da = da.expand_dims("band")
    da = da.rename(band="time").assign_coords(time=pd.to_datetime(days))
    return da


def _stack_from_netcdf(path: Path) -> xr.DataArray:
    ds = xr.open_dataset(path, decode_coords="all")
    if TEMPORAL_FEATURE in ds.data_vars:
        da = ds[TEMPORAL_FEATURE]
    else:
        da = ds[list(ds.data_vars)[0]]
    if "time" not in da.dims:
        raise InputFormatError(f"{path.name}: variable '{da.name}' has no 'time' dimension")

    renames = {k: v for k, v in (("longitude", "x"), ("latitude", "y"), ("lon", "x"), ("lat", "y"))
               if k in da.dims}
    if renames:
        da = da.rename(renames)
    da = da.rio.set_spatial_dims(x_dim="x", y_dim="y")
    if da.rio.crs is None and ds.rio.crs is not None:
        da = da.rio.write_crs(ds.rio.crs)
    return da.transpose("time", "y", "x").load()


def _get_band_descriptions(path: Path) -> List[str]:
    """Return band descriptions (or DESCRIPTION tags) from a rasterio file."""
    with rasterio.open(path) as src:
        descs = list(src.descriptions)
        if descs and all(descs):
            return descs
        names = []
        for i in range(1, src.count + 1):
            tags = src.tags(i)
            names.append(tags.get("DESCRIPTION", tags.get("name", "")) or "")
        return names


# ======================================================================== #
#  4.  Area of interest                                                     #
# ======================================================================== #

def load_aoi_geometry(path: str | Path):
    """
    Return the bounding box of the AOI as a shapely polygon.

    A raster AOI is bounded by its valid (non-nodata) pixels; a vector AOI
    by the total bounds of its features.
    """
    path = Path(path)
    if path.suffix.lower() in (".tif", ".tiff"):
        da = open_raster(path)
        valid = np.isfinite(da.values)
        if not valid.any():
            raise InputFormatError(f"AOI raster {path.name} has no valid pixels")
        res_x, res_y = (abs(r) for r in da.rio.resolution())
        rows, cols = np.nonzero(valid)
        xs = da["x"].values[cols]
        ys = da["y"].values[rows]
        return box(
            xs.min() - res_x / 2, ys.min() - res_y / 2,
            xs.max() + res_x / 2, ys.max() + res_y / 2,
        )
    gdf = gpd.read_file(path)
    if gdf.empty:
        raise InputFormatError(f"AOI vector {path.name} has no features")
    return box(*gdf.total_bounds)


# ======================================================================== #
#  5.  Bundled covariates                                                   #
# ======================================================================== #

@dataclass(frozen=True)
class Covariates:
    """Static layers and the temporal stack, checked to share one grid."""
    static: Dict[str, xr.DataArray]
    temporal: xr.DataArray

    @property
    def dates(self) -> pd.DatetimeIndex:
        return pd.DatetimeIndex(self.temporal["time"].values)


def load_covariates(inputs: InputConfig) -> Covariates:
    """Open static layers and the temporal stack and validate alignment."""
    static = load_static_layers(inputs.static_layers)
    temporal = load_temporal_stack(inputs.temporal_stack)
    validate_alignment({**static, TEMPORAL_FEATURE: temporal})
    return Covariates(static=static, temporal=temporal)
