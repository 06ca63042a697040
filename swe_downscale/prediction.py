"""
swe_downscale.prediction
========================
Stage 3 — apply the trained model over the full grid, one raster per day.

Per date ``d`` (independent of every other date):

1. select the ERA5 layer dated ``d`` (missing → skip and report);
2. build the DOY raster on the layer's valid footprint;
3. assemble the named stack ``elevation, aspect, roughness, slope,
   swe_era5, DOY``;
4. predict every pixel whose features are all valid;
5. write ``prediction/predicted_swe_YYYY-MM-DD.tif`` atomically.

Dates run sequentially (``n_workers=1``) or on a bounded thread pool.

Public API
----------
daily_range(start, end)                          → List[date]
select_layer(stack, day)                         → xr.DataArray
predict_grid(model, stack)                       → np.ndarray (ny, nx)
predict_day(model, covariates, day)              → xr.DataArray
predict_range(model, covariates, start, end, ...) → PredictionSummary
predict_swe(config)                              → PredictionSummary
"""

from __future__ import annotations

import time
import warnings
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd
import xarray as xr

from .checks import MissingLayerError
from .config import PipelineConfig
from .export import ArtifactPaths, load_model, save_stage_metadata, write_raster_atomic
from .features import build_feature_stack, stack_to_frame
from .ingestion import Covariates, load_covariates
from .models import SweRegressor


@dataclass
class PredictionSummary:
    predicted: List[date] = field(default_factory=list)
    skipped: List[date] = field(default_factory=list)
    outputs: List[Path] = field(default_factory=list)
    interrupted: bool = False

    def to_dict(self) -> dict:
        return {
            "n_predicted": len(self.predicted),
            "n_skipped": len(self.skipped),
            "predicted": [d.isoformat() for d in sorted(self.predicted)],
            "skipped": [d.isoformat() for d in sorted(self.skipped)],
            "interrupted": self.interrupted,
        }


# ======================================================================== #
#  Single-date prediction                                                   #
# ======================================================================== #

def daily_range(start: date, end: date) -> List[date]:
    """Every calendar day from *start* to *end*, inclusive."""
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def select_layer(stack: xr.DataArray, day: date) -> xr.DataArray:
    """Return the layer of *stack* dated *day*, or raise MissingLayerError."""
    times = pd.DatetimeIndex(stack["time"].values)
    matches = np.flatnonzero(times == pd.Timestamp(day))
    if matches.size == 0:
        raise MissingLayerError(f"No ERA5 SWE layer for {day.isoformat()}")
    return stack.isel(time=int(matches[0]))


def predict_grid(model: SweRegressor, stack: xr.Dataset) -> np.ndarray:
    """
    Predict every pixel of a named feature stack.

    Pixels with any non-finite feature are NaN in the output.
    """
    frame, valid = stack_to_frame(stack, model.feature_names)
    out = np.full(valid.shape, np.nan, dtype=np.float32)
    out[valid] = model.predict(frame)
    return out


def predict_day(model: SweRegressor, covariates: Covariates, day: date) -> xr.DataArray:
    """Predicted SWE for *day* on the covariate grid."""
    layer = select_layer(covariates.temporal, day)
    stack = build_feature_stack(covariates.static, layer, day)
    values = predict_grid(model, stack)

    out = layer.drop_vars("time", errors="ignore").copy(data=values)
    out = out.rename("predicted_swe")
    out.attrs = {"long_name": "predicted_swe", "units": "mm", "date": day.isoformat()}
    out = out.rio.write_nodata(np.nan, encoded=False)
    if layer.rio.crs is not None:
        out = out.rio.write_crs(layer.rio.crs)
    return out


def _run_one(
    model: SweRegressor,
    covariates: Covariates,
    day: date,
    paths: ArtifactPaths,
) -> Path:
    raster = predict_day(model, covariates, day)
    return write_raster_atomic(raster, paths.prediction_raster(day))


# ======================================================================== #
#  Date-range sweep                                                         #
# ======================================================================== #

def predict_range(
    model: SweRegressor,
    covariates: Covariates,
    start: date,
    end: date,
    paths: ArtifactPaths,
    n_workers: int = 1,
    summary: Optional[PredictionSummary] = None,
) -> PredictionSummary:
    """
    Predict every day in ``[start, end]``.

    Days without an ERA5 layer are skipped with a warning.  On
    ``KeyboardInterrupt`` pending days are cancelled, *summary* is marked
    interrupted, and the interrupt propagates; rasters already on disk are
    complete.  Pass a *summary* to keep the partial record after an
    interrupt.
    """
    days = daily_range(start, end)
    paths.ensure()
    if summary is None:
        summary = PredictionSummary()

    def _record(day: date, fn):
        try:
            out_path = fn()
        except MissingLayerError as e:
            warnings.warn(f"Skipping {day.isoformat()}: {e}")
            summary.skipped.append(day)
            return
        summary.predicted.append(day)
        summary.outputs.append(out_path)
        print(f"  Downscaled SWE predicted for: {day.isoformat()}")

    try:
        if n_workers <= 1:
            for day in days:
                _record(day, lambda d=day: _run_one(model, covariates, d, paths))
        else:
            with ThreadPoolExecutor(max_workers=n_workers) as pool:
                futures = {
                    pool.submit(_run_one, model, covariates, day, paths): day
                    for day in days
                }
                try:
                    for fut in as_completed(futures):
                        _record(futures[fut], fut.result)
                except KeyboardInterrupt:
                    for fut in futures:
                        fut.cancel()
                    raise
    except KeyboardInterrupt:
        summary.interrupted = True
        print(f"\n  Interrupted: {len(summary.predicted):,} date(s) written, "
              f"{len(days) - len(summary.predicted) - len(summary.skipped):,} not run.")
        raise

    return summary


def predict_swe(
    config: PipelineConfig,
    covariates: Optional[Covariates] = None,
    model: Optional[SweRegressor] = None,
) -> PredictionSummary:
    """Run the Spatial Predictor over ``config.start_date … config.end_date``."""
    t0 = time.time()
    paths = ArtifactPaths.from_config(config)
    start, end = config.prediction_range
    print(f"\n{'='*60}")
    print(f"  Spatial predictor: {config.simulation_name} "
          f"({start.isoformat()} → {end.isoformat()})")
    print(f"{'='*60}")

    if model is None:
        model = load_model(paths.model)
    if covariates is None:
        covariates = load_covariates(config.inputs)

    summary = PredictionSummary()
    try:
        predict_range(
            model, covariates, start, end, paths,
            n_workers=config.n_workers, summary=summary,
        )
    finally:
        # written on interrupt too, with the dates completed so far
        save_stage_metadata(
            paths.root / "prediction_summary.json",
            stage="predict",
            config=config,
            extra=summary.to_dict(),
        )
    print(f"  ✓ {len(summary.predicted):,} date(s) predicted, "
          f"{len(summary.skipped):,} skipped ({time.time() - t0:.1f}s)")
    return summary
