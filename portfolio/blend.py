"""Blend named signal scores into a single composite score per asset."""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class Signal:
    name: str
    score: pd.Series  # per-asset signal score
    weight: float = 1.0


def zscore(s: pd.Series) -> pd.Series:
    x = s.astype(float).replace([np.inf, -np.inf], np.nan)
    std = x.std()
    if std == 0 or np.isnan(std):
        return x * 0.0
    return (x - x.mean()) / std


def blend_signals(signals: list[Signal], *, zscore_each: bool = True) -> pd.Series:
    """Weighted sum of signals -> composite score per asset.

    An asset missing from one signal contributes zero for it; an asset missing
    from every signal stays NaN.
    """

    if not signals:
        return pd.Series(dtype=float)

    # Align universe
    idx = signals[0].score.index
    for s in signals[1:]:
        idx = idx.union(s.score.index)

    alpha = pd.Series(0.0, index=idx)
    seen = pd.Series(False, index=idx)
    for s in signals:
        x = s.score.reindex(idx)
        x = zscore(x) if zscore_each else x.astype(float)
        seen = seen | x.notna()
        alpha = alpha + (float(s.weight) * x.fillna(0.0))
    return alpha.where(seen)


class BaseCombiner:
    """Equal-weight blend; subclasses override ``weights``."""

    name = "base"

    def __init__(self, *, zscore_each: bool = True, normalize: bool = True):
        self.zscore_each = zscore_each
        self.normalize = normalize

    def weights(self, names: List[str]) -> Dict[str, float]:
        return {n: 1.0 / len(names) for n in names}

    def combine(self, signals: Dict[str, pd.Series]) -> pd.Series:
        if not signals:
            raise ValueError("cannot combine zero signals")
        w = self.weights(list(signals))
        composite = blend_signals(
            [Signal(name=n, score=s, weight=w[n]) for n, s in signals.items()],
            zscore_each=self.zscore_each,
        )
        if self.normalize:
            composite = zscore(composite)
        composite.name = self.name
        return composite

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class EqualWeightCombiner(BaseCombiner):
    name = "equal_weight"


class ICWeightedCombiner(BaseCombiner):
    """Weights proportional to |mean IC| over a rolling window of recent ICs.

    ``decay_factor`` > 0 weights recent ICs by exp(-decay * age). Signals
    without IC history get zero weight; with no usable history at all the
    combiner falls back to equal weights.
    """

    name = "ic_weight"

    def __init__(self, ic_lookback: int = 60, decay_factor: float = 0.0, **kwargs):
        super().__init__(**kwargs)
        if ic_lookback < 1:
            raise ValueError("ic_lookback must be >= 1")
        if decay_factor < 0:
            raise ValueError("decay_factor must be >= 0")
        self.ic_lookback = ic_lookback
        self.decay_factor = decay_factor
        self.ic_history: Dict[str, Deque[float]] = {}

    def update_ic(self, signal_name: str, ic: float) -> None:
        if not math.isfinite(ic):
            return
        hist = self.ic_history.setdefault(signal_name, deque(maxlen=self.ic_lookback))
        hist.append(float(ic))

    def weighted_ic(self, signal_name: str) -> float:
        hist = self.ic_history.get(signal_name)
        if not hist:
            return 0.0
        values = np.asarray(hist, dtype=float)
        if self.decay_factor < 1e-10:
            return float(values.mean())
        age = np.arange(len(values) - 1, -1, -1, dtype=float)
        w = np.exp(-self.decay_factor * age)
        return float((values * w).sum() / w.sum())

    def weights(self, names: List[str]) -> Dict[str, float]:
        abs_ics = {n: abs(self.weighted_ic(n)) for n in names}
        total = sum(abs_ics.values())
        if total < 1e-10:
            return super().weights(names)
        return {n: v / total for n, v in abs_ics.items()}


class VolScaledCombiner(ICWeightedCombiner):
    """IC (or equal) weights, standardized, then scaled to a target dispersion."""

    name = "vol_scale"

    def __init__(self, target_vol: float = 1.0, ic_weight: bool = True, **kwargs):
        super().__init__(**kwargs)
        if target_vol <= 0:
            raise ValueError("target_vol must be > 0")
        self.target_vol = target_vol
        self.ic_weight = ic_weight

    def update_ic(self, signal_name: str, ic: float) -> None:
        if self.ic_weight:
            super().update_ic(signal_name, ic)

    def weights(self, names: List[str]) -> Dict[str, float]:
        if not self.ic_weight:
            return BaseCombiner.weights(self, names)
        return super().weights(names)

    def combine(self, signals: Dict[str, pd.Series]) -> pd.Series:
        composite = super().combine(signals)
        std = composite.std()
        if std < 1e-10 or np.isnan(std):
            return composite
        return composite * (self.target_vol / std)


_COMBINERS = {
    "equal_weight": EqualWeightCombiner,
    "ic_weight": ICWeightedCombiner,
    "vol_scale": VolScaledCombiner,
}
_ALIASES = {"equal": "equal_weight", "ic": "ic_weight", "ic_weighted": "ic_weight", "vol": "vol_scale"}


def list_combiners() -> List[str]:
    return list(_COMBINERS)


def get_combiner(name: str, **kwargs) -> BaseCombiner:
    key = _ALIASES.get(name.lower(), name.lower())
    if key not in _COMBINERS:
        raise ValueError(f"Unknown combiner '{name}'. Available: {', '.join(_COMBINERS)}")
    return _COMBINERS[key](**kwargs)
