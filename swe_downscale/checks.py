"""
swe_downscale.checks
====================
Error taxonomy, schema guards, grid-alignment assertions, and
data-quality checks shared by the three stages.
"""

from __future__ import annotations

from typing import Iterable, List, Mapping, Optional

import numpy as np
import pandas as pd
import xarray as xr


# ======================================================================== #
#  Error kinds                                                              #
# ======================================================================== #

class PipelineError(Exception):
    """Base class for every error raised by the downscaling stages."""


class InputFormatError(PipelineError):
    """Malformed input: unparseable dates, missing columns, bad values."""


class AlignmentError(InputFormatError):
    """Raised when rasters are not on the same grid / CRS."""


class InsufficientDataError(PipelineError):
    """Too few rows survive filtering to continue."""


class EmptyJoinError(PipelineError):
    """A join between two inputs produced zero rows."""


class MissingLayerError(PipelineError):
    """No temporal layer exists for a requested date."""


class ArtifactNotFoundError(PipelineError):
    """A stage was invoked without its predecessor's persisted output."""

    def __init__(self, path, stage: str):
        self.path = str(path)
        self.stage = stage
        super().__init__(
            f"Expected artifact not found: {self.path} "
            f"(produced by the '{stage}' stage; run it first)"
        )


# ======================================================================== #
#  Schema guards                                                            #
# ======================================================================== #

def require_columns(df: pd.DataFrame, columns: Iterable[str], what: str) -> None:
    """Raise InputFormatError listing every column of *columns* absent from *df*."""
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise InputFormatError(
            f"{what} is missing required column(s) {missing}; "
            f"found {list(df.columns)}"
        )


def require_rows(df: pd.DataFrame, join_name: str) -> pd.DataFrame:
    """Raise EmptyJoinError when *df* (the result of *join_name*) is empty."""
    if df.empty:
        raise EmptyJoinError(f"Join '{join_name}' produced zero rows.")
    return df


def require_numeric(df: pd.DataFrame, column: str, what: str) -> None:
    """Raise InputFormatError if *column* holds anything but numbers."""
    if not pd.api.types.is_numeric_dtype(df[column]):
        coerced = pd.to_numeric(df[column], errors="coerce")
        bad = df.loc[coerced.isna() & df[column].notna(), column]
        sample = bad.head(3).tolist()
        raise InputFormatError(
            f"{what}: column '{column}' is not numeric (e.g. {sample})"
        )


# ======================================================================== #
#  Grid alignment                                                           #
# ======================================================================== #

def validate_alignment(layers: Mapping[str, xr.DataArray]) -> dict:
    """
    Check that all named rasters share the same CRS, transform and shape.

    Parameters
    ----------
    layers : mapping of name → DataArray
        2-D ``(y, x)`` or 3-D ``(time, y, x)`` arrays with rioxarray
        spatial metadata.

    Returns
    -------
    dict
        Reference grid of the first layer (crs, transform, width, height).

    Raises
    ------
    AlignmentError
        With a descriptive message listing every mismatch.
    """
    if not layers:
        raise AlignmentError("No layers to validate.")

    names = list(layers)
    ref_name = names[0]
    ref = _grid_meta(layers[ref_name])
    errors: List[str] = []

    for name in names[1:]:
        meta = _grid_meta(layers[name])
        if meta["crs"] != ref["crs"]:
            errors.append(f"{name}: CRS {meta['crs']} != {ref_name} {ref['crs']}")
        if (meta["width"], meta["height"]) != (ref["width"], ref["height"]):
            errors.append(
                f"{name}: shape ({meta['height']},{meta['width']}) "
                f"!= {ref_name} ({ref['height']},{ref['width']})"
            )
        elif not meta["transform"].almost_equals(ref["transform"]):
            errors.append(f"{name}: transform {tuple(meta['transform'])[:6]} != {ref_name}")

    if errors:
        msg = "Spatial alignment check failed:\n  • " + "\n  • ".join(errors)
        raise AlignmentError(msg)

    return ref


def _grid_meta(da: xr.DataArray) -> dict:
    crs = da.rio.crs
    return {
        "crs": crs.to_string() if crs is not None else None,
        "transform": da.rio.transform(),
        "width": da.rio.width,
        "height": da.rio.height,
    }


# ======================================================================== #
#  Data quality                                                             #
# ======================================================================== #

def assert_no_sentinel(df: pd.DataFrame, column: str, na_value: float) -> None:
    """No value of *column* may equal the missing-data sentinel."""
    hits = int((df[column] == na_value).sum())
    assert hits == 0, f"{hits} row(s) in '{column}' still equal na_value={na_value}"


def assert_finite_features(df: pd.DataFrame, feature_cols: Iterable[str]) -> None:
    """Verify that the final feature matrix has no NaN / inf values."""
    values = df[list(feature_cols)].to_numpy(dtype=np.float64)
    bad = ~np.isfinite(values)
    assert not bad.any(), (
        f"Non-finite values in features: "
        f"{dict(zip(feature_cols, bad.sum(axis=0).tolist()))}"
    )


def assert_disjoint_partition(
    index: pd.Index,
    train_index: pd.Index,
    val_index: pd.Index,
    label: Optional[str] = None,
) -> None:
    """Train / validation partitions are disjoint and cover *index*."""
    prefix = f"{label}: " if label else ""
    overlap = train_index.intersection(val_index)
    assert overlap.empty, f"{prefix}train ∩ validation has {len(overlap)} row(s)"
    union = train_index.union(val_index)
    assert union.sort_values().equals(index.sort_values()), (
        f"{prefix}train ∪ validation does not cover the input rows"
    )
