"""
swe_downscale.runner
====================
Pipeline runner: executes the enabled stages in order for one simulation.

Stages communicate only through the artifacts written under
``<output_dir>/<simulation_name>/``, so any stage can be re-run on its own:

.. code-block:: text

    create_new_dataset → build_training_dataset  → training table
    train_new_model    → train_swe_model         → model + report
    do_predictions     → predict_swe             → daily rasters

Public API
----------
PipelineRunner(config) – instantiate once, call .run()
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .config import PipelineConfig
from .dataset import build_training_dataset
from .export import ArtifactPaths
from .ingestion import Covariates, load_covariates
from .prediction import PredictionSummary, predict_swe
from .training import TrainingResult, train_swe_model


@dataclass
class RunResult:
    n_training_rows: Optional[int] = None
    training: Optional[TrainingResult] = None
    prediction: Optional[PredictionSummary] = None
    elapsed_s: float = 0.0


class PipelineRunner:
    """
    End-to-end orchestrator.

    Parameters
    ----------
    config : PipelineConfig
        Immutable run configuration; the stage flags select what runs.
    """

    def __init__(self, config: PipelineConfig):
        self.cfg = config
        self.paths = ArtifactPaths.from_config(config)
        self._covariates: Optional[Covariates] = None

    def run(self) -> RunResult:
        """Execute every enabled stage and return their results."""
        np.random.seed(self.cfg.random_seed)
        t0 = time.time()
        result = RunResult()

        self.paths.ensure()
        self.cfg.save(self.paths.root / "pipeline_config.json")

        if self.cfg.create_new_dataset:
            table, _ = build_training_dataset(self.cfg, covariates=self._get_covariates())
            result.n_training_rows = len(table)

        if self.cfg.train_new_model:
            result.training = train_swe_model(self.cfg)

        if self.cfg.do_predictions:
            model = result.training.model if result.training else None
            result.prediction = predict_swe(
                self.cfg, covariates=self._get_covariates(), model=model
            )

        result.elapsed_s = time.time() - t0
        print(f"\n✓ Pipeline finished in {result.elapsed_s:.1f}s")
        return result

    def _get_covariates(self) -> Covariates:
        """Load rasters once and share them between stages."""
        if self._covariates is None:
            print("Loading covariate rasters...")
            self._covariates = load_covariates(self.cfg.inputs)
            cov = self._covariates
            ref = next(iter(cov.static.values()), cov.temporal)
            print(f"  ✓ {len(cov.static)} static layer(s), {cov.temporal.sizes['time']:,} "
                  f"ERA5 day(s), grid {ref.rio.height}×{ref.rio.width}")
        return self._covariates
