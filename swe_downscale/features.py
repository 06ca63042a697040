"""
swe_downscale.features
======================
Feature engineering shared by training and prediction: the seasonal DOY
transform, point-in-raster sampling at station locations, and assembly of
the named per-day prediction stack.

Public API
----------
day_of_year_feature(dates)                        → np.ndarray in [-1, 1]
sample_points(da, x, y)                           → np.ndarray
extract_static_covariates(static, stations)       → pd.DataFrame
extract_temporal_covariates(stack, stations)      → pd.DataFrame
build_feature_stack(static, layer, day)           → xr.Dataset
stack_to_frame(stack, feature_names)              → (pd.DataFrame, valid mask)

Convention
----------
Sampling uses the pixel that *contains* the point (no interpolation).
Points outside the grid, or on nodata pixels, sample as NaN.
"""

from __future__ import annotations

from datetime import date
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

import numpy as np
import pandas as pd
import xarray as xr
from rasterio.transform import rowcol
from tqdm import tqdm

from .config import (
    DATE_COLUMN,
    DOY_PERIOD,
    SEASONAL_FEATURE,
    STACK_ORDER,
    STATION_ID_COLUMN,
    TEMPORAL_FEATURE,
)


# ======================================================================== #
#  Seasonal feature                                                         #
# ======================================================================== #

def day_of_year_feature(dates) -> np.ndarray:
    """
    ``sin(2π · day_of_year / 365)`` for each date.

    Accepts anything ``pd.to_datetime`` understands (scalar or sequence);
    always returns an array.
    """
    idx = pd.DatetimeIndex(pd.to_datetime(np.atleast_1d(dates)))
    return np.sin(2.0 * np.pi * idx.dayofyear.to_numpy(dtype=np.float64) / DOY_PERIOD)


# ======================================================================== #
#  Point sampling                                                           #
# ======================================================================== #

def _pixel_indices(da: xr.DataArray, x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Row / column of the containing pixel, plus an inside-grid mask."""
    xs = np.atleast_1d(np.asarray(x, dtype=np.float64))
    ys = np.atleast_1d(np.asarray(y, dtype=np.float64))
    if xs.size == 0:
        empty = np.empty(0, dtype=np.int64)
        return empty, empty, np.empty(0, dtype=bool)
    rows, cols = rowcol(da.rio.transform(), xs, ys, op=np.floor)
    rows = np.atleast_1d(np.asarray(rows)).astype(np.int64)
    cols = np.atleast_1d(np.asarray(cols)).astype(np.int64)
    inside = (cols >= 0) & (cols < da.rio.width) & (rows >= 0) & (rows < da.rio.height)
    return rows, cols, inside


def sample_points(da: xr.DataArray, x: Sequence[float], y: Sequence[float]) -> np.ndarray:
    """
    Sample *da* at point coordinates.

    For a 2-D ``(y, x)`` array returns shape ``(n_points,)``; for a 3-D
    ``(time, y, x)`` array returns ``(n_times, n_points)``.
    """
    rows, cols, inside = _pixel_indices(da, x, y)
    values = da.values
    if values.ndim == 2:
        out = np.full(rows.shape, np.nan)
        out[inside] = values[rows[inside], cols[inside]]
    else:
        out = np.full((values.shape[0], rows.shape[0]), np.nan)
        out[:, inside] = values[:, rows[inside], cols[inside]]
    return out


def extract_static_covariates(
    static: Mapping[str, xr.DataArray],
    stations: pd.DataFrame,
) -> pd.DataFrame:
    """
    Sample every static layer once per station.

    Returns
    -------
    pd.DataFrame
        ``station_number, <layer_1>, <layer_2>, ...`` — stations with any
        NaN sample are dropped.
    """
    out = pd.DataFrame({STATION_ID_COLUMN: stations[STATION_ID_COLUMN].to_numpy()})
    for name, da in static.items():
        out[name] = sample_points(da, stations["x"], stations["y"])
    return out.dropna().reset_index(drop=True)


def extract_temporal_covariates(
    stack: xr.DataArray,
    stations: pd.DataFrame,
    progress: bool = True,
) -> pd.DataFrame:
    """
    Sample the temporal stack at every station for each of its dates.

    Returns
    -------
    pd.DataFrame
        Long format ``station_number, date, swe_era5`` without NaN rows.
    """
    station_ids = stations[STATION_ID_COLUMN].to_numpy()
    rows, cols, inside = _pixel_indices(stack, stations["x"], stations["y"])
    times = pd.DatetimeIndex(stack["time"].values)

    frames: List[pd.DataFrame] = []
    for i in tqdm(range(len(times)), desc="Sampling ERA5 SWE", unit="day", disable=not progress):
        layer = stack.isel(time=i).values
        vals = np.full(station_ids.shape[0], np.nan)
        vals[inside] = layer[rows[inside], cols[inside]]
        frames.append(pd.DataFrame({
            STATION_ID_COLUMN: station_ids,
            DATE_COLUMN: times[i],
            TEMPORAL_FEATURE: vals,
        }))

    if not frames:
        return pd.DataFrame(columns=[STATION_ID_COLUMN, DATE_COLUMN, TEMPORAL_FEATURE])
    return pd.concat(frames, ignore_index=True).dropna(subset=[TEMPORAL_FEATURE])


# ======================================================================== #
#  Prediction stack                                                         #
# ======================================================================== #

def build_feature_stack(
    static: Mapping[str, xr.DataArray],
    layer: xr.DataArray,
    day: date,
) -> xr.Dataset:
    """
    Assemble the named per-day feature stack.

    Variables are ordered ``elevation, aspect, roughness, slope, swe_era5,
    DOY`` (extra static layers follow the default ones).  DOY is constant
    over the valid footprint of *layer* and NaN elsewhere.
    """
    layer = layer.drop_vars("time", errors="ignore")
    doy_value = float(day_of_year_feature(day)[0])
    doy = xr.where(layer.notnull(), doy_value, np.nan)

    variables: Dict[str, xr.DataArray] = {}
    for name in STACK_ORDER:
        if name in static:
            variables[name] = static[name]
        elif name == TEMPORAL_FEATURE:
            variables[name] = layer
        elif name == SEASONAL_FEATURE:
            variables[name] = doy
    for name, da in static.items():
        variables.setdefault(name, da)

    return xr.Dataset({name: _on_grid(da, layer) for name, da in variables.items()})


def _on_grid(da: xr.DataArray, ref: xr.DataArray) -> xr.DataArray:
    """Put *da* on the coordinates of *ref* (grids are validated upstream)."""
    return xr.DataArray(da.values, dims=ref.dims, coords={d: ref[d] for d in ref.dims})


def stack_to_frame(
    stack: xr.Dataset,
    feature_names: Iterable[str],
) -> Tuple[pd.DataFrame, np.ndarray]:
    """
    Flatten a feature stack into one row per valid pixel.

    Columns are bound by *name*, in the order of *feature_names*, regardless
    of the stack's own variable order.

    Returns
    -------
    frame : pd.DataFrame
        Feature rows for pixels where every feature is finite.
    valid : np.ndarray of bool, shape ``(ny, nx)``
    """
    feature_names = list(feature_names)
    missing = [f for f in feature_names if f not in stack.data_vars]
    if missing:
        raise KeyError(
            f"Feature stack lacks model feature(s) {missing}; "
            f"has {list(stack.data_vars)}"
        )
    arrays = {name: stack[name].values.ravel() for name in feature_names}
    shape = stack[feature_names[0]].shape
    matrix = np.column_stack([arrays[n] for n in feature_names])
    valid = np.isfinite(matrix).all(axis=1)
    frame = pd.DataFrame(matrix[valid], columns=feature_names)
    return frame, valid.reshape(shape)
