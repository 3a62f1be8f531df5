"""Position construction: standardized composite score -> target weights."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np
import pandas as pd


class PositionPolicy(str, Enum):
    LONG_ONLY_TOP_K = "long_only_top_k"
    LONG_SHORT_EQUAL_WEIGHT = "long_short_equal_weight"
    SCORE_PROPORTIONAL = "score_proportional"


@dataclass(frozen=True)
class PositionConstruction:
    policy: PositionPolicy = PositionPolicy.LONG_ONLY_TOP_K
    k: Optional[int] = 10  # names per side; None -> all (long-only) or half (long/short)
    threshold: float = 0.0  # score_proportional: ignore |z| below this
    gross_exposure: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "policy", PositionPolicy(self.policy))
        if self.k is not None and self.k < 1:
            raise ValueError("k must be >= 1")
        if self.threshold < 0:
            raise ValueError("threshold must be >= 0")
        if self.gross_exposure <= 0:
            raise ValueError("gross_exposure must be > 0")


def rank_order(scores: pd.Series) -> pd.Series:
    """Finite scores sorted best-first; ties broken by symbol for determinism."""
    s = scores.astype(float).replace([np.inf, -np.inf], np.nan).dropna()
    frame = pd.DataFrame({"score": s.values, "symbol": s.index.astype(str)}, index=s.index)
    frame = frame.sort_values(["score", "symbol"], ascending=[False, True], kind="mergesort")
    return frame["score"]


def long_only_top_k(scores: pd.Series, k: Optional[int], gross_exposure: float = 1.0) -> pd.Series:
    ordered = rank_order(scores)
    n = len(ordered) if k is None else min(k, len(ordered))
    weights = pd.Series(0.0, index=scores.index)
    if n == 0:
        return weights
    weights.loc[ordered.index[:n]] = gross_exposure / n
    return weights


def long_short_equal_weight(scores: pd.Series, k: Optional[int], gross_exposure: float = 1.0) -> pd.Series:
    ordered = rank_order(scores)
    half = len(ordered) // 2
    n = half if k is None else min(k, half)
    weights = pd.Series(0.0, index=scores.index)
    if n == 0:
        return weights
    side = gross_exposure / 2.0 / n
    weights.loc[ordered.index[:n]] = side
    weights.loc[ordered.index[-n:]] = -side
    return weights


def score_proportional(scores: pd.Series, threshold: float = 0.0, gross_exposure: float = 1.0) -> pd.Series:
    s = scores.astype(float).replace([np.inf, -np.inf], np.nan).fillna(0.0)
    s = s.where(s.abs() >= threshold, 0.0) if threshold > 0 else s
    gross = float(s.abs().sum())
    if gross == 0.0:
        return pd.Series(0.0, index=scores.index)
    return s * (gross_exposure / gross)


def construct_positions(scores: pd.Series, construction: Optional[PositionConstruction] = None) -> pd.Series:
    """Target weights per symbol. Deterministic given the scores and parameters."""
    c = construction or PositionConstruction()
    if c.policy is PositionPolicy.LONG_ONLY_TOP_K:
        w = long_only_top_k(scores, c.k, c.gross_exposure)
    elif c.policy is PositionPolicy.LONG_SHORT_EQUAL_WEIGHT:
        w = long_short_equal_weight(scores, c.k, c.gross_exposure)
    elif c.policy is PositionPolicy.SCORE_PROPORTIONAL:
        w = score_proportional(scores, c.threshold, c.gross_exposure)
    else:  # pragma: no cover
        raise ValueError(f"Unknown position policy: {c.policy}")
    w.name = "weight"
    return w
