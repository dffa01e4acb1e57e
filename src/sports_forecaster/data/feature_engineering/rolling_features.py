from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import pandas as pd


@dataclass(frozen=True)
class RollingSpec:
    """
    Specification for leak-free rolling features built from a single column.

    Attributes
    ----------
    col:
        Source column in the DataFrame to roll over.
    windows:
        Rolling window sizes, in number of games. None means an expanding
        window over every prior game in the group.
    stats:
        Statistics to compute. Supported: "mean", "sum", "std", "min", "max".
    min_periods:
        Minimum number of prior observations required to compute a value.
        If fewer than min_periods, result will be NaN.
    prefix:
        Prefix used for generated feature names. If None, uses `col`.
        Output columns follow "{prefix}_rolling_{stat}_{window}" or
        "{prefix}_expanding_{stat}".
    """

    col: str
    windows: Sequence[Optional[int]]
    stats: Sequence[str] = ("mean",)
    min_periods: int = 1
    prefix: str | None = None


_SUPPORTED_STATS = {"mean", "sum", "std", "min", "max"}


def feature_name(spec: RollingSpec, stat: str, window: Optional[int]) -> str:
    prefix = spec.prefix or spec.col
    if window is None:
        return f"{prefix}_expanding_{stat}"
    return f"{prefix}_rolling_{stat}_{window}"


def _validate_specs(df: pd.DataFrame, specs: Iterable[RollingSpec]) -> list[RollingSpec]:
    specs = list(specs)
    if not specs:
        raise ValueError("At least one RollingSpec must be provided.")

    for spec in specs:
        if spec.col not in df.columns:
            raise KeyError(f"RollingSpec refers to missing column: {spec.col}")
        for stat in spec.stats:
            if stat not in _SUPPORTED_STATS:
                raise ValueError(
                    f"Unsupported stat '{stat}' in RollingSpec for col '{spec.col}'. "
                    f"Supported: {_SUPPORTED_STATS}"
                )
    return specs


def add_rolling_features(
    df: pd.DataFrame,
    group_cols: Sequence[str],
    time_col: str,
    specs: Sequence[RollingSpec],
) -> pd.DataFrame:
    """
    Add leak-free rolling/expanding features to a DataFrame.

    Anti-leakage guarantee
    ----------------------
    For each row, statistics are computed ONLY from rows with strictly
    smaller `time_col` within the same group (group_cols). This is enforced by
    applying a 1-row shift before rolling.

    Parameters
    ----------
    df:
        Input DataFrame. Must contain group_cols + time_col + all spec.col values.
    group_cols:
        Columns defining an independent time series (e.g., ["team"]).
    time_col:
        Column defining chronological order within each group (e.g., "game_index").
    specs:
        RollingSpec definitions describing what to compute.

    Returns
    -------
    pd.DataFrame
        Copy of `df` with new feature columns appended. Original index
        order is preserved.
    """
    if not group_cols:
        raise ValueError("group_cols must not be empty.")

    for col in group_cols:
        if col not in df.columns:
            raise KeyError(f"group_col '{col}' not found in DataFrame.")
    if time_col not in df.columns:
        raise KeyError(f"time_col '{time_col}' not found in DataFrame.")

    specs = _validate_specs(df, specs)

    original_index = df.index
    result = df.sort_values(list(group_cols) + [time_col], kind="mergesort").copy()
    grouped = result.groupby(list(group_cols), sort=False)

    for spec in specs:
        for window in spec.windows:
            for stat in spec.stats:

                def _roll(s: pd.Series, window=window, stat=stat, spec=spec) -> pd.Series:
                    prior = s.shift(1)  # drop current row from window
                    if window is None:
                        roll = prior.expanding(min_periods=spec.min_periods)
                    else:
                        roll = prior.rolling(window=window, min_periods=spec.min_periods)
                    return getattr(roll, stat)()

                result[feature_name(spec, stat, window)] = grouped[spec.col].transform(_roll)

    # Restore original row order
    return result.loc[original_index]
