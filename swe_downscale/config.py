"""
swe_downscale.config
====================
Central configuration: feature catalogue, dataclasses, and sane defaults.

A run is fully described by a frozen `PipelineConfig` that is passed into
every stage entry point and serialised alongside the outputs for
reproducibility.
"""

from __future__ import annotations

import hashlib
import json
import platform
import subprocess
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple


# ---------------------------------------------------------------------------
# Feature catalogue
# ---------------------------------------------------------------------------
TARGET_COLUMN: str = "swe"

# Coarse ERA5-Land SWE sampled from the temporal stack
TEMPORAL_FEATURE: str = "swe_era5"

# Sine-transformed day of year
SEASONAL_FEATURE: str = "DOY"

STATIC_FEATURES: Tuple[str, ...] = ("elevation", "aspect", "roughness", "slope")

# Column order of the training table (after the target)
FEATURE_COLUMNS: Tuple[str, ...] = (TEMPORAL_FEATURE,) + STATIC_FEATURES + (SEASONAL_FEATURE,)
TRAINING_COLUMNS: Tuple[str, ...] = (TARGET_COLUMN,) + FEATURE_COLUMNS

# Band order of the per-day prediction stack
STACK_ORDER: Tuple[str, ...] = STATIC_FEATURES + (TEMPORAL_FEATURE, SEASONAL_FEATURE)

# Days per cycle in the DOY transform
DOY_PERIOD: float = 365.0

STATION_ID_COLUMN: str = "station_number"
DATE_COLUMN: str = "date"


# ---------------------------------------------------------------------------
# Configuration dataclasses
# ---------------------------------------------------------------------------
def _default_static_layers() -> Dict[str, str]:
    return {
        "elevation": "data/elevation.tif",
        "aspect": "data/aspect.tif",
        "roughness": "data/roughness.tif",
        "slope": "data/slope.tif",
    }


@dataclass(frozen=True)
class InputConfig:
    """Locations of the leaf inputs.  All rasters share one grid and CRS."""
    observations_csv: str = "data/snowcover.csv"
    stations_file: str = "data/snow_stations.shp"
    temporal_stack: str = "data/era5_land_swe.tif"
    static_layers: Dict[str, str] = field(default_factory=_default_static_layers)
    aoi_file: Optional[str] = "data/aoi.tif"
    date_format: Optional[str] = "%d/%m/%Y"   # None = ISO-8601

    def to_dict(self) -> dict:
        return {
            "observations_csv": self.observations_csv,
            "stations_file": self.stations_file,
            "temporal_stack": self.temporal_stack,
            "static_layers": dict(self.static_layers),
            "aoi_file": self.aoi_file,
            "date_format": self.date_format,
        }


@dataclass(frozen=True)
class ModelConfig:
    """Regression and validation settings."""
    model_name: str = "RandomForest"
    n_estimators: int = 500
    zero_drop_fraction: float = 0.8     # share of zero-SWE rows discarded
    train_fraction: float = 0.8
    n_quantile_groups: int = 5          # target bins for the partition
    permutation_repeats: int = 5
    n_jobs: int = -1

    def to_dict(self) -> dict:
        return {
            "model_name": self.model_name,
            "n_estimators": self.n_estimators,
            "zero_drop_fraction": self.zero_drop_fraction,
            "train_fraction": self.train_fraction,
            "n_quantile_groups": self.n_quantile_groups,
            "permutation_repeats": self.permutation_repeats,
            "n_jobs": self.n_jobs,
        }


@dataclass(frozen=True)
class PipelineConfig:
    """Master configuration for one simulation."""

    simulation_name: str = "my_simulation"
    output_dir: str = "output"

    # -- Observations --
    na_value: float = -999

    # -- Prediction range (ISO dates, inclusive) --
    start_date: str = "2001-01-01"
    end_date: str = "2001-12-31"

    # -- Stage flags --
    create_new_dataset: bool = True
    train_new_model: bool = True
    do_predictions: bool = True

    # -- Sub-configs --
    inputs: InputConfig = field(default_factory=InputConfig)
    model: ModelConfig = field(default_factory=ModelConfig)

    # -- Performance / reproducibility --
    random_seed: int = 123
    n_workers: int = 1

    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    # ----- helpers -----
    @property
    def feature_columns(self) -> List[str]:
        """Model features in training-table order."""
        return [TEMPORAL_FEATURE, *self.inputs.static_layers, SEASONAL_FEATURE]

    @property
    def prediction_range(self) -> Tuple[date, date]:
        start = date.fromisoformat(self.start_date)
        end = date.fromisoformat(self.end_date)
        if end < start:
            raise ValueError(
                f"end_date {self.end_date} is before start_date {self.start_date}"
            )
        return start, end

    def with_overrides(self, **changes) -> "PipelineConfig":
        """Return a copy with top-level fields replaced (None values ignored)."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "simulation_name": self.simulation_name,
            "output_dir": self.output_dir,
            "na_value": self.na_value,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "create_new_dataset": self.create_new_dataset,
            "train_new_model": self.train_new_model,
            "do_predictions": self.do_predictions,
            "inputs": self.inputs.to_dict(),
            "model": self.model.to_dict(),
            "random_seed": self.random_seed,
            "n_workers": self.n_workers,
            "created_at": self.created_at,
        }

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2))

    @classmethod
    def load(cls, path: str | Path) -> "PipelineConfig":
        raw = json.loads(Path(path).read_text())
        raw["inputs"] = InputConfig(**raw.get("inputs", {}))
        raw["model"] = ModelConfig(**raw.get("model", {}))
        return cls(**raw)


# ---------------------------------------------------------------------------
# Environment / reproducibility snapshot
# ---------------------------------------------------------------------------
def get_environment_info() -> dict:
    """Capture runtime environment for metadata."""
    info = {
        "python": platform.python_version(),
        "platform": platform.platform(),
        "timestamp": datetime.now().isoformat(),
    }
    try:
        info["git_commit"] = (
            subprocess.check_output(
                ["git", "rev-parse", "HEAD"], stderr=subprocess.DEVNULL
            )
            .decode()
            .strip()
        )
    except (OSError, subprocess.CalledProcessError):
        info["git_commit"] = None
    return info


def file_hash(filepath: str | Path, algo: str = "sha256") -> str:
    """Compute hash of a file for provenance tracking."""
    h = hashlib.new(algo)
    with open(filepath, "rb") as f:
        for chunk in iter(lambda: f.read(1 << 20), b""):
            h.update(chunk)
    return h.hexdigest()
