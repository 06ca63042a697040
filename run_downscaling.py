#!/usr/bin/env python3
"""
run_downscaling.py
==================
Main entry point for the ERA5-Land SWE downscaling pipeline.

Usage
-----
  # All enabled stages with the default configuration
  python run_downscaling.py

  # Custom config from JSON
  python run_downscaling.py --config simulations/basin.json

  # Only re-run predictions for a new period, on 4 workers
  python run_downscaling.py --config simulations/basin.json \\
      --stages predict --start-date 2002-01-01 --end-date 2002-03-31 --workers 4

  # Write the default configuration to edit it
  python run_downscaling.py --write-config simulations/basin.json

Pipeline Flow
-------------
::

  snowcover.csv (wide)  +  snow_stations.shp
       │
       ▼
  long observations, dates parsed, na_value removed
       │
       ▼
  sample ERA5 SWE (observed dates) + terrain layers at stations
       │
       ▼
  training table  (swe, swe_era5, elevation, aspect, roughness, slope, DOY)
       │
       ▼
  rebalance zero rows → 80/20 split → random forest (500 trees)
       │
       ▼
  model_performance.txt  +  variable_importance.png  +  model.joblib
       │
       ▼
  for day in [start_date, end_date]:
      stack terrain + ERA5(day) + DOY(day) → predict → predicted_swe_<day>.tif
"""

from __future__ import annotations

import argparse

from swe_downscale.config import InputConfig, PipelineConfig
from swe_downscale.runner import PipelineRunner

STAGES = ("dataset", "train", "predict")


# ======================================================================== #
#  Preset configuration                                                     #
# ======================================================================== #

def default_config() -> PipelineConfig:
    """Production layout: inputs under data/, outputs under output/<simulation>/."""
    return PipelineConfig(
        simulation_name="my_simulation",
        output_dir="output",
        na_value=-999,
        start_date="2001-01-01",
        end_date="2001-12-31",
        inputs=InputConfig(
            observations_csv="data/snowcover.csv",
            stations_file="data/snow_stations.shp",
            temporal_stack="data/era5_land_swe.tif",
            static_layers={
                "elevation": "data/elevation.tif",
                "aspect": "data/aspect.tif",
                "roughness": "data/roughness.tif",
                "slope": "data/slope.tif",
            },
            aoi_file="data/aoi.tif",
            date_format="%d/%m/%Y",
        ),
        random_seed=123,
    )


# ======================================================================== #
#  CLI                                                                      #
# ======================================================================== #

def parse_args():
    parser = argparse.ArgumentParser(
        description="ERA5-Land SWE Downscaling Pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=str, default=None,
                        help="Path to a pipeline_config.json file.")
    parser.add_argument("--write-config", type=str, default=None, metavar="PATH",
                        help="Write the (possibly overridden) config to PATH and exit.")
    parser.add_argument("--stages", nargs="+", choices=STAGES, default=None,
                        help="Stages to run (overrides the config flags).")
    parser.add_argument("--simulation", type=str, default=None,
                        help="Simulation name (namespaces all outputs).")
    parser.add_argument("--start-date", type=str, default=None,
                        help="First prediction date (YYYY-MM-DD).")
    parser.add_argument("--end-date", type=str, default=None,
                        help="Last prediction date, inclusive (YYYY-MM-DD).")
    parser.add_argument("--workers", type=int, default=None,
                        help="Parallel prediction workers (default: config, 1).")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed.")
    return parser.parse_args()


def build_config(args) -> PipelineConfig:
    if args.config:
        cfg = PipelineConfig.load(args.config)
        print(f"Loaded config from {args.config}")
    else:
        cfg = default_config()
        print("Using DEFAULT config")

    overrides = {
        "simulation_name": args.simulation,
        "start_date": args.start_date,
        "end_date": args.end_date,
        "n_workers": args.workers,
        "random_seed": args.seed,
    }
    if args.stages is not None:
        overrides.update(
            create_new_dataset="dataset" in args.stages,
            train_new_model="train" in args.stages,
            do_predictions="predict" in args.stages,
        )
    return cfg.with_overrides(**overrides)


def main():
    args = parse_args()
    cfg = build_config(args)

    if args.write_config:
        cfg.save(args.write_config)
        print(f"Config written to {args.write_config}")
        return

    stages = [name for name, on in zip(
        STAGES, (cfg.create_new_dataset, cfg.train_new_model, cfg.do_predictions)
    ) if on]

    print(f"\nPipeline Configuration:")
    print(f"  Simulation     : {cfg.simulation_name}")
    print(f"  Output dir     : {cfg.output_dir}/{cfg.simulation_name}")
    print(f"  Observations   : {cfg.inputs.observations_csv} (na_value={cfg.na_value})")
    print(f"  Stations       : {cfg.inputs.stations_file}")
    print(f"  ERA5 SWE stack : {cfg.inputs.temporal_stack}")
    print(f"  Static layers  : {', '.join(cfg.inputs.static_layers)}")
    print(f"  Model          : {cfg.model.model_name} ({cfg.model.n_estimators} trees)")
    print(f"  Prediction     : {cfg.start_date} → {cfg.end_date} "
          f"({cfg.n_workers} worker(s))")
    print(f"  Seed           : {cfg.random_seed}")
    print(f"  Stages         : {stages or 'none'}")
    print()

    result = PipelineRunner(cfg).run()

    print(f"\n{'='*60}")
    print("  SUMMARY")
    print(f"{'='*60}")
    if result.n_training_rows is not None:
        print(f"  Training rows      : {result.n_training_rows:,}")
    if result.training is not None:
        m = result.training.metrics
        print(f"  Validation RMSE    : {m['rmse']:.3f}")
        print(f"  Validation R²      : {m['r2']:.3f}")
    if result.prediction is not None:
        print(f"  Dates predicted    : {len(result.prediction.predicted):,}")
        print(f"  Dates skipped      : {len(result.prediction.skipped):,}")


if __name__ == "__main__":
    main()
