"""
swe_downscale.training
======================
Stage 2 — fit and validate the SWE regression model.

Flow
----
::

  training table ──→ validate schema / numeric target
        │
        ▼
  rebalance zero-SWE rows  (seeded)
        │
        ▼
  80 / 20 target-stratified partition
        │
        ▼
  fit ensemble on {swe_era5, elevation, aspect, roughness, slope, DOY}
        │
        ▼
  validate → model_performance.txt + variable_importance.png
        │
        ▼
  RF_SWE_model_<simulation>.joblib

Public API
----------
fit_model(table, config)       → (SweRegressor, Split)
train_swe_model(config)        → TrainingResult
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd

from .checks import InsufficientDataError, require_columns, require_numeric
from .config import TARGET_COLUMN, PipelineConfig
from .evaluation import compute_metrics, plot_feature_importance, write_report
from .export import (
    ArtifactPaths,
    load_training_table,
    save_model,
    save_stage_metadata,
)
from .models import SweRegressor, get_model, instantiate_model
from .splitting import Split, make_split


@dataclass
class TrainingResult:
    model: SweRegressor
    metrics: Dict[str, float]
    model_path: Path
    report_path: Path
    importance_path: Optional[Path]
    n_train: int
    n_validation: int


def fit_model(
    table: pd.DataFrame,
    config: PipelineConfig,
) -> Tuple[SweRegressor, Split]:
    """
    Rebalance, split and fit.

    Raises
    ------
    InputFormatError
        Missing feature columns or a non-numeric target.
    InsufficientDataError
        Empty table, or a partition with fewer than two rows.
    """
    features = config.feature_columns
    require_columns(table, [TARGET_COLUMN, *features], "Training table")
    require_numeric(table, TARGET_COLUMN, "Training table")
    if table.empty:
        raise InsufficientDataError("Training table is empty.")

    split = make_split(table, config.model, config.random_seed)

    entry = get_model(config.model.model_name)
    estimator = instantiate_model(
        entry,
        n_estimators=config.model.n_estimators,
        random_state=config.random_seed,
        n_jobs=config.model.n_jobs,
    )
    model = SweRegressor(estimator, features, model_name=entry["name"])
    print(f"  Fitting {entry['name']} ({config.model.n_estimators} estimators) "
          f"on {len(split.train):,} rows...")
    model.fit(split.train)
    return model, split


def train_swe_model(config: PipelineConfig) -> TrainingResult:
    """Run the Model Trainer: fit, validate, report and persist."""
    t0 = time.time()
    paths = ArtifactPaths.from_config(config)
    print(f"\n{'='*60}")
    print(f"  Model trainer: {config.simulation_name}")
    print(f"{'='*60}")

    table = load_training_table(paths.training_table)
    print(f"  Training table: {len(table):,} rows")

    model, split = fit_model(table, config)

    y_val = split.validation[TARGET_COLUMN].to_numpy(dtype=np.float64)
    y_hat = model.predict(split.validation)
    metrics = compute_metrics(y_val, y_hat)
    print(f"  Validation — RMSE={metrics['rmse']:.3f}  R²={metrics['r2']:.3f}  "
          f"(n={metrics['n']:,})")

    report_path = write_report(
        paths.report, metrics, model_name=model.model_name, n_train=len(split.train)
    )
    importance_path = plot_feature_importance(
        model,
        split.validation,
        paths.importance_plot,
        n_repeats=config.model.permutation_repeats,
        random_state=config.random_seed,
    )
    model_path = save_model(model, paths.model)

    save_stage_metadata(
        paths.root / "training_metadata.json",
        stage="train",
        config=config,
        files_used=[str(paths.training_table)],
        extra={
            "metrics": metrics,
            "n_input_rows": split.n_input_rows,
            "n_balanced_rows": len(split.balanced),
            "n_train": len(split.train),
            "n_validation": len(split.validation),
            "feature_names": model.feature_names,
            "feature_importances": model.feature_importances,
        },
    )

    print(f"  ✓ Model saved → {model_path} ({time.time() - t0:.1f}s)")
    return TrainingResult(
        model=model,
        metrics=metrics,
        model_path=model_path,
        report_path=report_path,
        importance_path=importance_path,
        n_train=len(split.train),
        n_validation=len(split.validation),
    )
