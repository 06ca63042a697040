"""
swe_downscale — Station-calibrated downscaling of ERA5-Land snow water equivalent.

Flow:
  observations + stations + ERA5 SWE stack + terrain layers
  → training table → random-forest fit + validation
  → daily fine-resolution SWE rasters

Modules
-------
config      : Feature catalogue and immutable configuration dataclasses
checks      : Error taxonomy, schema guards, grid alignment, data quality
ingestion   : Observation / station / raster / AOI readers
features    : DOY transform, station sampling, named prediction stack
dataset     : Stage 1 — build_training_dataset
splitting   : Zero-row rebalancing and the target-stratified 80/20 split
models/     : Ensemble registry and the named-feature SweRegressor
evaluation  : RMSE / R², performance report, importance chart
training    : Stage 2 — train_swe_model
prediction  : Stage 3 — predict_swe (per-date, optional worker pool)
export      : Artifact layout, persistence, metadata
runner      : PipelineRunner — runs the enabled stages in order
"""

__version__ = "0.1.0"
