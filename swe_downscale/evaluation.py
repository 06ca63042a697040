"""
swe_downscale.evaluation
========================
Validation metrics, the text performance report, and the
feature-importance chart.

Metrics
-------
* **RMSE**  — root mean squared error of predicted vs observed SWE (mm).
* **R²**    — squared Pearson correlation of predicted vs observed SWE.
* **MAE**   — mean absolute error (mm).
* **bias**  — mean of (predicted − observed) (mm).

Importance
----------
Two panels, after the classic random-forest importance plot:

* *%IncMSE* — permutation importance on the validation rows, expressed as
  the percentage increase in MSE when a feature is shuffled.
* *IncNodePurity* — impurity-based importance of the fitted ensemble (only
  for estimators that expose ``feature_importances_``).

Public API
----------
compute_metrics(y_true, y_pred)                       → dict
write_report(path, metrics, ...)                      → Path
permutation_importance_table(model, frame, ...)       → pd.DataFrame
plot_feature_importance(model, frame, path, ...)      → Path
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Dict, Optional

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402
from sklearn.inspection import permutation_importance  # noqa: E402
from sklearn.metrics import mean_absolute_error, mean_squared_error  # noqa: E402

from .config import TARGET_COLUMN  # noqa: E402
from .models.regressor import SweRegressor  # noqa: E402


# ======================================================================== #
#  Metrics                                                                  #
# ======================================================================== #

def compute_metrics(y_true, y_pred) -> Dict[str, float]:
    """
    Compute fit-quality metrics for continuous SWE predictions.

    Returns
    -------
    dict
        Keys: ``rmse, r2, mae, bias, n``.  ``r2`` is NaN when either series
        is constant (correlation undefined).
    """
    y_true = np.asarray(y_true, dtype=np.float64)
    y_pred = np.asarray(y_pred, dtype=np.float64)
    if y_true.shape != y_pred.shape:
        raise ValueError(f"Shape mismatch: {y_true.shape} vs {y_pred.shape}")

    metrics: Dict[str, float] = {}
    metrics["rmse"] = float(np.sqrt(mean_squared_error(y_true, y_pred)))
    metrics["mae"] = float(mean_absolute_error(y_true, y_pred))
    metrics["bias"] = float(np.mean(y_pred - y_true))
    metrics["n"] = int(y_true.size)

    if np.std(y_true) == 0 or np.std(y_pred) == 0:
        warnings.warn("R² undefined: observed or predicted SWE is constant.")
        metrics["r2"] = float("nan")
    else:
        metrics["r2"] = float(np.corrcoef(y_true, y_pred)[0, 1] ** 2)
    return metrics


def write_report(
    path: str | Path,
    metrics: Dict[str, float],
    model_name: str = "",
    n_train: Optional[int] = None,
) -> Path:
    """Write the human-readable validation summary."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [
        f"RMSE: {metrics['rmse']}",
        f"R-squared: {metrics['r2']}",
        f"MAE: {metrics['mae']}",
        f"Bias: {metrics['bias']}",
        f"Validation rows: {metrics['n']}",
    ]
    if n_train is not None:
        lines.append(f"Training rows: {n_train}")
    if model_name:
        lines.append(f"Model: {model_name}")
    path.write_text("\n".join(lines) + "\n")
    return path


# ======================================================================== #
#  Importance                                                               #
# ======================================================================== #

def permutation_importance_table(
    model: SweRegressor,
    frame: pd.DataFrame,
    n_repeats: int = 5,
    random_state: Optional[int] = None,
) -> pd.DataFrame:
    """
    Percentage increase in MSE when each feature is permuted.

    Returns
    -------
    pd.DataFrame
        Columns ``feature, inc_mse_pct, inc_mse_std``, sorted descending.
    """
    X = frame[model.feature_names]
    y = frame[TARGET_COLUMN].to_numpy(dtype=np.float64)
    base_mse = mean_squared_error(y, model.predict(X))
    result = permutation_importance(
        model.estimator, X, y,
        scoring="neg_mean_squared_error",
        n_repeats=n_repeats,
        random_state=random_state,
    )
    scale = 100.0 / base_mse if base_mse > 0 else 0.0
    table = pd.DataFrame({
        "feature": model.feature_names,
        "inc_mse_pct": result.importances_mean * scale,
        "inc_mse_std": result.importances_std * scale,
    })
    return table.sort_values("inc_mse_pct", ascending=False).reset_index(drop=True)


def plot_feature_importance(
    model: SweRegressor,
    frame: pd.DataFrame,
    path: str | Path,
    n_repeats: int = 5,
    random_state: Optional[int] = None,
) -> Path:
    """Save the importance chart for *model*, permuting on *frame*."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    perm = permutation_importance_table(model, frame, n_repeats, random_state)
    impurity = model.feature_importances

    n_panels = 2 if impurity is not None else 1
    fig, axes = plt.subplots(1, n_panels, figsize=(5 * n_panels, 4), squeeze=False)

    ax = axes[0, 0]
    d = perm.iloc[::-1]
    ax.barh(d["feature"], d["inc_mse_pct"], xerr=d["inc_mse_std"],
            color="tab:blue", alpha=0.8)
    ax.set_xlabel("%IncMSE")
    ax.set_title("Permutation importance")

    if impurity is not None:
        ax = axes[0, 1]
        s = pd.Series(impurity).sort_values()
        ax.barh(s.index, s.values, color="tab:green", alpha=0.8)
        ax.set_xlabel("IncNodePurity (normalised)")
        ax.set_title("Impurity importance")

    fig.suptitle(model.model_name or "Feature importance")
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path
