"""
swe_downscale.splitting
=======================
Training-table rebalancing and the single train / validation partition.

Public API
----------
zero_swe_mask(df)                          → bool Series
rebalance_zero_rows(df, drop_fraction, rng) → balanced DataFrame
partition_by_target(df, train_fraction, ...) → (train_index, val_index)
make_split(df, model_config, seed)         → Split

Rebalancing
-----------
Rows with ``swe == 0`` or ``swe_era5 == 0`` dominate snow records.  A
fraction ``drop_fraction`` of *those* rows (rounded down) is discarded at
random; every other row is kept unchanged.

Partition
---------
The target is cut into up to ``n_groups`` quantile bins of at least
``MIN_GROUP_ROWS`` rows each (fewer bins on small tables) and each bin
contributes ``ceil(train_fraction · n_bin)`` randomly chosen rows to the
training partition, so both partitions follow the target distribution.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd

from .checks import InsufficientDataError, assert_disjoint_partition
from .config import TARGET_COLUMN, TEMPORAL_FEATURE, ModelConfig

MIN_SPLIT_ROWS = 2
MIN_GROUP_ROWS = 5


# ======================================================================== #
#  1.  Rebalancing                                                          #
# ======================================================================== #

def zero_swe_mask(df: pd.DataFrame) -> pd.Series:
    """Rows where either observed or coarse SWE is exactly zero."""
    return (df[TARGET_COLUMN] == 0) | (df[TEMPORAL_FEATURE] == 0)


def rebalance_zero_rows(
    df: pd.DataFrame,
    drop_fraction: float,
    rng: np.random.Generator,
) -> pd.DataFrame:
    """
    Randomly discard ``floor(drop_fraction · n_zero)`` zero-SWE rows.

    The original index is preserved so callers can audit which rows were
    removed.  With no zero rows the table is returned unchanged.
    """
    if not 0.0 <= drop_fraction <= 1.0:
        raise ValueError(f"drop_fraction must be in [0, 1], got {drop_fraction}")

    zero_idx = df.index[zero_swe_mask(df)]
    n_drop = int(math.floor(drop_fraction * len(zero_idx)))
    if n_drop == 0:
        print(f"  Rebalancing: {len(zero_idx):,} zero-SWE rows, none removed")
        return df

    drop_idx = rng.choice(zero_idx.to_numpy(), size=n_drop, replace=False)
    balanced = df.drop(index=drop_idx)
    print(f"  Rebalancing: removed {n_drop:,} of {len(zero_idx):,} zero-SWE rows "
          f"({len(df):,} → {len(balanced):,})")
    return balanced


# ======================================================================== #
#  2.  Partition                                                            #
# ======================================================================== #

def partition_by_target(
    df: pd.DataFrame,
    train_fraction: float,
    rng: np.random.Generator,
    n_groups: int = 5,
    target: str = TARGET_COLUMN,
) -> Tuple[pd.Index, pd.Index]:
    """
    Target-stratified random partition.

    Returns
    -------
    (train_index, val_index)
        Disjoint index labels of *df* whose union is ``df.index``.
    """
    if not 0.0 < train_fraction < 1.0:
        raise ValueError(f"train_fraction must be in (0, 1), got {train_fraction}")

    y = df[target]
    n_bins = max(1, min(n_groups, y.nunique(), len(df) // MIN_GROUP_ROWS))
    if n_bins > 1:
        groups = pd.qcut(y.rank(method="first"), q=n_bins, labels=False).to_numpy()
    else:
        groups = np.zeros(len(df), dtype=int)

    train_labels = []
    for g in np.unique(groups):
        members = df.index.to_numpy()[groups == g]
        n_take = int(math.ceil(train_fraction * len(members)))
        train_labels.extend(rng.choice(members, size=n_take, replace=False).tolist())

    train_index = df.index[df.index.isin(train_labels)]
    val_index = df.index[~df.index.isin(train_labels)]
    return train_index, val_index


@dataclass
class Split:
    """Rebalanced table and its train / validation partitions."""
    balanced: pd.DataFrame
    train: pd.DataFrame
    validation: pd.DataFrame
    n_input_rows: int


def make_split(df: pd.DataFrame, model_config: ModelConfig, seed: int) -> Split:
    """
    Rebalance *df* then partition it into training and validation rows.

    Raises
    ------
    InsufficientDataError
        If either partition has fewer than two rows.
    """
    rng = np.random.default_rng(seed)
    balanced = rebalance_zero_rows(df, model_config.zero_drop_fraction, rng)

    if balanced.empty:
        raise InsufficientDataError(
            f"No rows left after rebalancing ({len(df):,} input rows)."
        )

    train_idx, val_idx = partition_by_target(
        balanced,
        model_config.train_fraction,
        rng,
        n_groups=model_config.n_quantile_groups,
    )
    if len(train_idx) < MIN_SPLIT_ROWS or len(val_idx) < MIN_SPLIT_ROWS:
        raise InsufficientDataError(
            f"Split too small: train={len(train_idx)}, validation={len(val_idx)} "
            f"(need ≥{MIN_SPLIT_ROWS} each; {len(balanced):,} rows after rebalancing)"
        )

    assert_disjoint_partition(balanced.index, train_idx, val_idx, label="train/validation")
    print(f"  Split sizes — train: {len(train_idx):,}  validation: {len(val_idx):,}")
    return Split(
        balanced=balanced,
        train=balanced.loc[train_idx],
        validation=balanced.loc[val_idx],
        n_input_rows=len(df),
    )
