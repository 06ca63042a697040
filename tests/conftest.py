"""
Synthetic basin fixtures shared by the test modules.

Grid: 4 rows × 5 columns, 10 m pixels, upper-left corner at (0, 40).
Every pixel value encodes its location (and day) so a sampled value
identifies exactly which pixel / date it came from.
"""

from __future__ import annotations

import sys
from datetime import date, timedelta
from pathlib import Path

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
import rioxarray  # noqa: F401
import xarray as xr

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

CRS = "EPSG:32633"
NY, NX, RES = 4, 5, 10.0
Y_TOP = 40.0
FIRST_DAY = date(2001, 1, 1)
STATIC_OFFSETS = {"elevation": 1000.0, "aspect": 2000.0, "roughness": 3000.0, "slope": 4000.0}


def make_grid(values, name="layer", times=None) -> xr.DataArray:
    """Wrap a ``(y, x)`` or ``(time, y, x)`` array on the test grid."""
    values = np.asarray(values, dtype=np.float64)
    x = RES * (np.arange(values.shape[-1]) + 0.5)
    y = Y_TOP - RES * (np.arange(values.shape[-2]) + 0.5)
    if values.ndim == 2:
        da = xr.DataArray(values, dims=("y", "x"), coords={"y": y, "x": x}, name=name)
    else:
        da = xr.DataArray(
            values, dims=("time", "y", "x"),
            coords={"time": pd.to_datetime(times), "y": y, "x": x}, name=name,
        )
    return da.rio.write_crs(CRS)


def pixel_code(row, col):
    return row * 10.0 + col


def static_layers():
    rows, cols = np.mgrid[0:NY, 0:NX]
    return {name: make_grid(off + pixel_code(rows, cols), name=name)
            for name, off in STATIC_OFFSETS.items()}


def temporal_stack(n_days=10, skip=()):
    days = [FIRST_DAY + timedelta(days=i) for i in range(n_days)
            if FIRST_DAY + timedelta(days=i) not in skip]
    rows, cols = np.mgrid[0:NY, 0:NX]
    values = np.stack([
        100.0 * (1 + (d - FIRST_DAY).days) + pixel_code(rows, cols) for d in days
    ])
    return make_grid(values, name="swe_era5", times=days)


# station id → (x, y, row, col)
STATIONS = {
    "101": (5.0, 35.0, 0, 0),
    "102": (25.0, 15.0, 2, 2),
    "103": (45.0, 5.0, 3, 4),
}


@pytest.fixture
def stations_df():
    return pd.DataFrame({
        "station_number": list(STATIONS),
        "x": [v[0] for v in STATIONS.values()],
        "y": [v[1] for v in STATIONS.values()],
    })


@pytest.fixture
def covariates():
    from swe_downscale.ingestion import Covariates
    return Covariates(static=static_layers(), temporal=temporal_stack(10))


def wide_observations(n_days, observed, na_value=-999.0, fmt="%Y-%m-%d"):
    """
    Wide table over *n_days*; ``observed`` maps station → number of leading
    days with a measurement (later days hold *na_value*).
    """
    days = [FIRST_DAY + timedelta(days=i) for i in range(n_days)]
    data = {"date": [d.strftime(fmt) for d in days]}
    for sid in STATIONS:
        n_obs = observed.get(sid, 0)
        data[sid] = [float(5 * i + int(sid) % 100) if i < n_obs else na_value
                     for i in range(n_days)]
    return pd.DataFrame(data)


@pytest.fixture
def basin_files(tmp_path):
    """
    A complete input set on disk: static GeoTIFFs, a directory of daily ERA5
    GeoTIFFs (2001-01-15 missing), a station GeoPackage with integer ids, a
    wide ``%d/%m/%Y`` observation CSV and an AOI raster.
    """
    from swe_downscale.config import InputConfig

    data = tmp_path / "data"
    era5_dir = data / "era5"
    era5_dir.mkdir(parents=True)

    static_paths = {}
    for name, da in static_layers().items():
        path = data / f"{name}.tif"
        da.rio.to_raster(path)
        static_paths[name] = str(path)

    n_days = 30
    stack = temporal_stack(n_days, skip=(date(2001, 1, 15),))
    rng = np.random.default_rng(0)
    for i in range(stack.sizes["time"]):
        layer = stack.isel(time=i)
        day = pd.Timestamp(layer["time"].values).date()
        noisy = layer.drop_vars("time").copy(
            data=np.where(rng.random(layer.shape) < 0.3, 0.0, layer.values)
        )
        noisy.rio.to_raster(era5_dir / f"era5_swe_{day.isoformat()}.tif")

    gdf = gpd.GeoDataFrame(
        {"station_number": [int(s) for s in STATIONS]},
        geometry=gpd.points_from_xy(
            [v[0] for v in STATIONS.values()], [v[1] for v in STATIONS.values()]
        ),
        crs=CRS,
    )
    stations_path = data / "snow_stations.gpkg"
    gdf.to_file(stations_path, driver="GPKG")

    obs = wide_observations(n_days, {s: n_days for s in STATIONS}, fmt="%d/%m/%Y")
    obs.loc[obs.index % 4 == 0, "101"] = 0.0
    obs.loc[3, "102"] = -999.0
    obs_path = data / "snowcover.csv"
    obs.to_csv(obs_path, index=False)

    mask = np.ones((NY, NX))
    mask[:, -1] = np.nan
    aoi = make_grid(mask, name="aoi")
    aoi_path = data / "aoi.tif"
    aoi.rio.to_raster(aoi_path)

    return InputConfig(
        observations_csv=str(obs_path),
        stations_file=str(stations_path),
        temporal_stack=str(era5_dir),
        static_layers=static_paths,
        aoi_file=str(aoi_path),
        date_format="%d/%m/%Y",
    )
