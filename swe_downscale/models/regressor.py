"""
swe_downscale.models.regressor
==============================
`SweRegressor` — the trained-model artifact.

Wraps any estimator from the registry together with the ordered feature
names it was fitted on.  Features are always bound by *name*: the caller
may pass columns in any order, and a missing feature is an error rather
than a silent positional shift.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from ..checks import InputFormatError, require_columns
from ..config import TARGET_COLUMN


class SweRegressor:
    """
    Fitted mapping ``features → swe``.

    Parameters
    ----------
    estimator : sklearn-compatible regressor
        Unfitted; :meth:`fit` fits it in place.
    feature_names : sequence of str
        Training feature order.
    model_name : str
        Registry name, recorded for reports.
    """

    def __init__(self, estimator: Any, feature_names: Sequence[str], model_name: str = ""):
        self.estimator = estimator
        self.feature_names: List[str] = list(feature_names)
        self.model_name = model_name
        self.n_train_rows: Optional[int] = None

    def fit(self, table: pd.DataFrame, target: str = TARGET_COLUMN) -> "SweRegressor":
        """Fit on the named feature columns of *table*."""
        require_columns(table, [target, *self.feature_names], "Training table")
        self.estimator.fit(table[self.feature_names], table[target].to_numpy(dtype=np.float64))
        self.n_train_rows = len(table)
        return self

    def predict(self, features: pd.DataFrame) -> np.ndarray:
        """Predict SWE for each row of *features* (extra columns are ignored)."""
        if self.n_train_rows is None:
            raise InputFormatError("SweRegressor.predict called before fit().")
        require_columns(features, self.feature_names, "Prediction features")
        if len(features) == 0:
            return np.empty(0, dtype=np.float64)
        return np.asarray(self.estimator.predict(features[self.feature_names]), dtype=np.float64)

    @property
    def feature_importances(self) -> Optional[Dict[str, float]]:
        """Impurity-based importances, or None if the estimator has none."""
        values = getattr(self.estimator, "feature_importances_", None)
        if values is None:
            return None
        return dict(zip(self.feature_names, (float(v) for v in values)))

    def __repr__(self) -> str:
        return (f"SweRegressor({self.model_name or type(self.estimator).__name__}, "
                f"features={self.feature_names})")
