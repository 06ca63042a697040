"""
swe_downscale.dataset
=====================
Stage 1 — build the station/day training table.

Flow
----
::

  observations (wide)  ──→  long (station_number, date, swe)
        │                        │ parse dates, attach station x/y
        │                        ▼
        │                  sort, drop na_value
        │                        │
  ERA5 stack ──→ keep observed dates ──→ sample at stations ─┐
  static layers ─────────────────────→ sample at stations ──┤ join on station
                                                             ▼
                                     inner join on (station_number, date)
                                                             │
                                                     DOY, named projection
                                                             ▼
                                    RF_SWE_training_data_<simulation>.parquet

Public API
----------
reshape_observations(df)                   → long observations
prepare_observations(df, stations, ...)    → filtered, located observations
assemble_training_table(obs, stations, covariates)  → training table
build_training_dataset(config)             → (training table, path)
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Optional, Tuple

import numpy as np
import pandas as pd

from .checks import (
    InsufficientDataError,
    assert_finite_features,
    assert_no_sentinel,
    require_columns,
    require_rows,
)
from .config import (
    DATE_COLUMN,
    SEASONAL_FEATURE,
    STATION_ID_COLUMN,
    TARGET_COLUMN,
    PipelineConfig,
)
from .export import ArtifactPaths, save_stage_metadata, save_training_table
from .features import (
    day_of_year_feature,
    extract_static_covariates,
    extract_temporal_covariates,
)
from .ingestion import (
    Covariates,
    load_aoi_geometry,
    load_covariates,
    parse_dates,
    read_observations,
    read_stations,
)


# ======================================================================== #
#  1.  Observations                                                         #
# ======================================================================== #

def reshape_observations(df: pd.DataFrame) -> pd.DataFrame:
    """
    Reshape a wide observation table (``date`` + one column per station) to
    long ``station_number, date, swe``.  Long tables pass through.
    """
    if {STATION_ID_COLUMN, TARGET_COLUMN}.issubset(df.columns):
        long_obs = df[[STATION_ID_COLUMN, DATE_COLUMN, TARGET_COLUMN]].copy()
    else:
        require_columns(df, [DATE_COLUMN], "Observation table")
        if len(df.columns) < 2:
            raise InsufficientDataError("Observation table has no station columns.")
        long_obs = df.melt(
            id_vars=[DATE_COLUMN],
            var_name=STATION_ID_COLUMN,
            value_name=TARGET_COLUMN,
        )
    long_obs[STATION_ID_COLUMN] = long_obs[STATION_ID_COLUMN].astype(str).str.strip()
    return long_obs


def prepare_observations(
    observations: pd.DataFrame,
    stations: pd.DataFrame,
    na_value: float,
    date_format: Optional[str] = None,
) -> pd.DataFrame:
    """
    Long-format, dated, located and filtered observations.

    Returns
    -------
    pd.DataFrame
        ``station_number, date, swe, x, y`` sorted by date then station,
        without sentinel or non-numeric SWE values.
    """
    long_obs = reshape_observations(observations)
    long_obs[DATE_COLUMN] = parse_dates(long_obs[DATE_COLUMN], date_format, DATE_COLUMN)

    merged = long_obs.merge(stations, on=STATION_ID_COLUMN, how="inner")
    require_rows(merged, "observations ↔ stations")

    merged = merged.sort_values(
        [DATE_COLUMN, STATION_ID_COLUMN], kind="mergesort"
    ).reset_index(drop=True)

    merged[TARGET_COLUMN] = pd.to_numeric(merged[TARGET_COLUMN], errors="coerce")
    merged = merged[merged[TARGET_COLUMN].notna() & (merged[TARGET_COLUMN] != na_value)]
    if merged.empty:
        raise InsufficientDataError(
            f"No observations left after removing na_value={na_value} "
            f"and non-numeric SWE values."
        )
    return merged.reset_index(drop=True)


# ======================================================================== #
#  2.  Join with covariates                                                 #
# ======================================================================== #

def assemble_training_table(
    observations: pd.DataFrame,
    stations: pd.DataFrame,
    covariates: Covariates,
    feature_columns,
    progress: bool = True,
) -> pd.DataFrame:
    """
    Sample covariates at the stations for every observed date and join them
    with the observations.

    Parameters
    ----------
    observations : pd.DataFrame
        Output of :func:`prepare_observations`.
    stations : pd.DataFrame
        ``station_number, x, y``.
    covariates : Covariates
    feature_columns : sequence of str
        Model features in output order.

    Returns
    -------
    pd.DataFrame
        ``swe`` followed by *feature_columns*.
    """
    observed_dates = pd.DatetimeIndex(observations[DATE_COLUMN].unique())
    stack = covariates.temporal
    keep = covariates.dates.isin(observed_dates)
    stack = stack.isel(time=np.flatnonzero(keep))
    print(f"  ERA5 layers matching observed dates: {int(keep.sum()):,} "
          f"of {len(keep):,} ({len(observed_dates):,} observed dates)")

    static_cov = extract_static_covariates(covariates.static, stations)
    temporal_cov = extract_temporal_covariates(stack, stations, progress=progress)

    combined = temporal_cov.merge(static_cov, on=STATION_ID_COLUMN, how="inner")
    require_rows(combined, "temporal ↔ static covariates")

    obs_cols = [STATION_ID_COLUMN, DATE_COLUMN, TARGET_COLUMN]
    table = observations[obs_cols].merge(
        combined, on=[STATION_ID_COLUMN, DATE_COLUMN], how="inner"
    )
    require_rows(table, "observations ↔ covariates")

    table[SEASONAL_FEATURE] = day_of_year_feature(table[DATE_COLUMN])
    table = table.sort_values(
        [DATE_COLUMN, STATION_ID_COLUMN], kind="mergesort"
    ).reset_index(drop=True)

    columns = [TARGET_COLUMN, *feature_columns]
    require_columns(table, columns, "Joined training table")
    table = table[columns].astype(np.float64)
    finite = np.isfinite(table.to_numpy()).all(axis=1)
    return table[finite].reset_index(drop=True)


# ======================================================================== #
#  3.  Stage entry point                                                    #
# ======================================================================== #

def build_training_dataset(
    config: PipelineConfig,
    covariates: Optional[Covariates] = None,
) -> Tuple[pd.DataFrame, Path]:
    """
    Run the Dataset Builder and persist the training table.

    Parameters
    ----------
    config : PipelineConfig
    covariates : Covariates, optional
        Pre-loaded rasters (loaded from ``config.inputs`` when omitted).

    Returns
    -------
    (training table, path written)
    """
    t0 = time.time()
    inputs = config.inputs
    paths = ArtifactPaths.from_config(config)
    print(f"\n{'='*60}")
    print(f"  Dataset builder: {config.simulation_name}")
    print(f"{'='*60}")

    stations = read_stations(inputs.stations_file)
    raw_obs = read_observations(inputs.observations_csv)
    print(f"  Stations: {len(stations):,}   observation table: "
          f"{raw_obs.shape[0]:,} rows × {raw_obs.shape[1]:,} columns")

    observations = prepare_observations(
        raw_obs, stations, config.na_value, inputs.date_format
    )
    print(f"  Valid observations: {len(observations):,} "
          f"({observations[STATION_ID_COLUMN].nunique():,} stations)")

    if covariates is None:
        covariates = load_covariates(inputs)

    table = assemble_training_table(
        observations, stations, covariates, config.feature_columns
    )
    assert_no_sentinel(table, TARGET_COLUMN, config.na_value)
    assert_finite_features(table, config.feature_columns)

    out_path = save_training_table(table, paths.training_table)

    extra = {"n_rows": len(table), "n_observations": len(observations)}
    if inputs.aoi_file and Path(inputs.aoi_file).exists():
        extra["aoi_bounds"] = list(load_aoi_geometry(inputs.aoi_file).bounds)
    save_stage_metadata(
        paths.root / "dataset_metadata.json",
        stage="dataset",
        config=config,
        files_used=[inputs.observations_csv, inputs.stations_file,
                    *inputs.static_layers.values()],
        extra=extra,
    )

    print(f"  ✓ Training table: {len(table):,} rows → {out_path} "
          f"({time.time() - t0:.1f}s)")
    return table, out_path
