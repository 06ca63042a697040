"""
swe_downscale.models.registry
=============================
Catalogue of the tree-ensemble regressors the pipeline can fit.

The method uses one fixed configuration (``RandomForest``, 500 trees); the
other entries exist so the learner can be swapped without touching the
pipeline.  Every entry consumes the same tabular feature matrix and exposes
feature importances.

=====================  ========================================  ===========
Name                   Class                                     Notes
=====================  ========================================  ===========
RandomForest           sklearn.ensemble.RandomForestRegressor    default
ExtraTrees             sklearn.ensemble.ExtraTreesRegressor      randomized splits
BaggedTrees            sklearn.ensemble.BaggingRegressor         plain bagging
GradientBoosting       sklearn.ensemble.GradientBoostingRegressor  boosted
=====================  ========================================  ===========
"""

from __future__ import annotations

import importlib
from typing import Any, Dict, List


# ======================================================================== #
#  Registry structure                                                       #
# ======================================================================== #

def _entry(
    cls_path: str,
    name: str,
    default_params: Dict | None = None,
    size_param: str = "n_estimators",
    notes: str = "",
) -> Dict[str, Any]:
    return {
        "cls_path": cls_path,
        "name": name,
        "default_params": default_params or {},
        "size_param": size_param,     # hyperparameter holding the ensemble size
        "notes": notes,
    }


MODEL_REGISTRY: List[Dict[str, Any]] = [
    _entry(
        "sklearn.ensemble.RandomForestRegressor", "RandomForest",
        default_params={
            "n_estimators": 500,
            "max_features": 1.0 / 3.0,
            "min_samples_leaf": 5,
            "n_jobs": -1,
        },
        notes="Bagged regression trees with feature subsampling per split.",
    ),
    _entry(
        "sklearn.ensemble.ExtraTreesRegressor", "ExtraTrees",
        default_params={"n_estimators": 500, "min_samples_leaf": 5, "n_jobs": -1},
    ),
    _entry(
        "sklearn.ensemble.BaggingRegressor", "BaggedTrees",
        default_params={"n_estimators": 500, "n_jobs": -1},
        notes="Bagging over full-depth decision trees.",
    ),
    _entry(
        "sklearn.ensemble.GradientBoostingRegressor", "GradientBoosting",
        default_params={
            "n_estimators": 500,
            "learning_rate": 0.05,
            "max_depth": 4,
            "subsample": 0.8,
        },
    ),
]


# ======================================================================== #
#  Public helpers                                                           #
# ======================================================================== #

def get_model(name: str) -> Dict[str, Any]:
    """Look up a model entry by its unique name."""
    for e in MODEL_REGISTRY:
        if e["name"] == name:
            return e
    raise KeyError(
        f"Model '{name}' not found in registry "
        f"({[e['name'] for e in MODEL_REGISTRY]})."
    )


def instantiate_model(
    entry: Dict[str, Any],
    n_estimators: int | None = None,
    random_state: int | None = None,
    n_jobs: int | None = None,
    **overrides,
) -> Any:
    """
    Import and instantiate an estimator from its registry entry.

    Parameters
    ----------
    entry : dict
        As returned by :func:`get_model`.
    n_estimators : int, optional
        Ensemble size (written to the entry's ``size_param``).
    random_state : int, optional
    n_jobs : int, optional
        Ignored by estimators that do not parallelise.
    **overrides
        Override any default hyperparameter.
    """
    cls = _import_class(entry["cls_path"])
    params = {**entry["default_params"], **overrides}
    if n_estimators is not None:
        params[entry["size_param"]] = n_estimators
    if random_state is not None:
        params["random_state"] = random_state
    if n_jobs is not None and "n_jobs" in params:
        params["n_jobs"] = n_jobs
    return cls(**params)


def _import_class(dotted_path: str):
    """Import a class from a dotted module path like 'sklearn.ensemble.RandomForestRegressor'."""
    parts = dotted_path.rsplit(".", 1)
    if len(parts) != 2:
        raise ImportError(f"Invalid class path: {dotted_path}")
    module_path, class_name = parts
    module = importlib.import_module(module_path)
    return getattr(module, class_name)
