"""
swe_downscale.export
====================
Artifact layout, persistence, and metadata logging for the three stages.

Folder layout
-------------
::

    output/
        <simulation_name>/
            pipeline_config.json                        ← config snapshot
            RF_SWE_training_data_<simulation>.parquet   ← stage 1
            dataset_metadata.json
            RF_SWE_model_<simulation>.joblib            ← stage 2
            model_performance.txt
            variable_importance.png
            training_metadata.json
            prediction/                                 ← stage 3
                predicted_swe_YYYY-MM-DD.tif
            prediction_summary.json

Every stage reads its predecessor's artifact through a loader here; a
missing artifact raises :class:`ArtifactNotFoundError` naming the stage that
produces it.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import joblib
import numpy as np
import pandas as pd
import rioxarray  # noqa: F401  (registers .rio accessor)
import xarray as xr

from .checks import ArtifactNotFoundError
from .config import PipelineConfig, file_hash, get_environment_info


# ======================================================================== #
#  Paths                                                                    #
# ======================================================================== #

@dataclass(frozen=True)
class ArtifactPaths:
    """Output locations namespaced by simulation name."""
    root: Path
    simulation_name: str

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "ArtifactPaths":
        return cls(Path(config.output_dir) / config.simulation_name, config.simulation_name)

    @property
    def training_table(self) -> Path:
        return self.root / f"RF_SWE_training_data_{self.simulation_name}.parquet"

    @property
    def model(self) -> Path:
        return self.root / f"RF_SWE_model_{self.simulation_name}.joblib"

    @property
    def report(self) -> Path:
        return self.root / "model_performance.txt"

    @property
    def importance_plot(self) -> Path:
        return self.root / "variable_importance.png"

    @property
    def prediction_dir(self) -> Path:
        return self.root / "prediction"

    def prediction_raster(self, day: date) -> Path:
        return self.prediction_dir / f"predicted_swe_{day.isoformat()}.tif"

    def ensure(self) -> "ArtifactPaths":
        """Create the output directories."""
        self.prediction_dir.mkdir(parents=True, exist_ok=True)
        return self


# ======================================================================== #
#  Training table                                                           #
# ======================================================================== #

def save_training_table(df: pd.DataFrame, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_parquet(path, index=False)
    return path


def load_training_table(path: str | Path) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise ArtifactNotFoundError(path, stage="dataset")
    return pd.read_parquet(path)


# ======================================================================== #
#  Model                                                                    #
# ======================================================================== #

def save_model(model: Any, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(model, path)
    return path


def load_model(path: str | Path) -> Any:
    path = Path(path)
    if not path.exists():
        raise ArtifactNotFoundError(path, stage="train")
    return joblib.load(path)


# ======================================================================== #
#  Rasters                                                                  #
# ======================================================================== #

def write_raster_atomic(da: xr.DataArray, path: str | Path) -> Path:
    """
    Write a single-band GeoTIFF so that *path* only ever holds a complete
    file: the raster goes to a temporary sibling first and is then renamed.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.stem}.{os.getpid()}.tmp.tif")
    try:
        da.rio.to_raster(tmp, compress="lzw")
        os.replace(tmp, path)
    finally:
        if tmp.exists():
            tmp.unlink()
    return path


# ======================================================================== #
#  Metadata                                                                 #
# ======================================================================== #

def save_stage_metadata(
    path: str | Path,
    stage: str,
    config: PipelineConfig,
    files_used: Optional[Iterable[str]] = None,
    extra: Optional[Dict] = None,
) -> str:
    """
    Write a ``*_metadata.json`` for one stage run: config, environment,
    hashes of the input files and any stage-specific counts.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    meta = {
        "timestamp": datetime.now().isoformat(),
        "stage": stage,
        "pipeline_config": config.to_dict(),
        "environment": get_environment_info(),
    }

    if files_used:
        meta["files_used"] = {
            os.path.basename(f): file_hash(f)
            for f in files_used
            if f and os.path.isfile(f)
        }

    if extra:
        meta.update(_make_serialisable(extra))

    path.write_text(json.dumps(meta, indent=2, default=str))
    return str(path)


# ======================================================================== #
#  Internal helpers                                                         #
# ======================================================================== #

def _make_serialisable(obj: Any) -> Any:
    """Recursively convert numpy / date types for JSON serialisation."""
    if isinstance(obj, dict):
        return {k: _make_serialisable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_make_serialisable(v) for v in obj]
    if isinstance(obj, (np.integer,)):
        return int(obj)
    if isinstance(obj, (np.floating,)):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.bool_,)):
        return bool(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    return obj
