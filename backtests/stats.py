"""Cross-sectional statistics: z-scoring and Spearman rank correlation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
import pandas as pd

from backtests.errors import DegenerateCrossSection, InsufficientCrossSection

MIN_STD_THRESHOLD = 1e-12


@dataclass(frozen=True)
class CrossSectionStats:
    mean: float
    std: float  # population std
    n: int


def _as_float_series(values: Any) -> pd.Series:
    s = values if isinstance(values, pd.Series) else pd.Series(values)
    return s.astype(float).replace([np.inf, -np.inf], np.nan)


def finite_subset(values: Any) -> pd.Series:
    """Drop missing and non-finite entries."""
    return _as_float_series(values).dropna()


def cross_section_stats(scores: pd.Series, *, date: Optional[Any] = None) -> CrossSectionStats:
    x = finite_subset(scores)
    if len(x) < 2:
        raise InsufficientCrossSection(
            f"need at least 2 finite scores to standardize, got {len(x)}",
            date=date,
            symbols=x.index,
        )
    return CrossSectionStats(mean=float(x.mean()), std=float(x.std(ddof=0)), n=int(len(x)))


def standardize(
    scores: pd.Series,
    *,
    on_degenerate: str = "raise",
    date: Optional[Any] = None,
) -> pd.Series:
    """Z-score a cross-section of scores at a single date.

    Mean and population std are taken over the finite subset only; symbols
    that were missing on input stay NaN on output.

    Args:
        scores: per-symbol raw scores
        on_degenerate: "raise" (default) or "zero" to map a zero-variance
            cross-section to all-zero scores
        date: optional date, attached to raised errors

    Raises:
        InsufficientCrossSection: fewer than 2 finite values
        DegenerateCrossSection: zero standard deviation and on_degenerate="raise"
    """
    if on_degenerate not in ("raise", "zero"):
        raise ValueError(f"Unknown on_degenerate: {on_degenerate}")

    x = _as_float_series(scores)
    st = cross_section_stats(x, date=date)
    if st.std <= MIN_STD_THRESHOLD:
        if on_degenerate == "zero":
            return x.where(x.isna(), 0.0)
        raise DegenerateCrossSection(
            f"all {st.n} finite scores are equal ({st.mean:g})",
            date=date,
        )
    return (x - st.mean) / st.std


def average_rank(values: pd.Series) -> pd.Series:
    """1-based ranks with ties sharing their average rank ([1, 1, 2] -> [1.5, 1.5, 3])."""
    return _as_float_series(values).rank(method="average")


def rank_correlation(a: pd.Series, b: pd.Series, *, date: Optional[Any] = None) -> float:
    """Spearman correlation of two score vectors aligned on symbol.

    Only symbols present and finite in both vectors take part.
    """
    x = _as_float_series(a)
    y = _as_float_series(b)
    joined = pd.concat([x.rename("a"), y.rename("b")], axis=1, join="inner").dropna()
    if len(joined) < 2:
        raise InsufficientCrossSection(
            f"need at least 2 overlapping symbols, got {len(joined)}",
            date=date,
            symbols=joined.index,
        )

    ra = average_rank(joined["a"]).to_numpy()
    rb = average_rank(joined["b"]).to_numpy()
    da = ra - ra.mean()
    db = rb - rb.mean()
    denom = float(np.sqrt((da * da).sum() * (db * db).sum()))
    if denom <= MIN_STD_THRESHOLD:
        raise DegenerateCrossSection("rank vector is constant; correlation undefined", date=date)

    rho = float((da * db).sum() / denom)
    return float(np.clip(rho, -1.0, 1.0))
