"""Core types for signal evaluation and backtesting."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np
import pandas as pd

# Per-symbol finite scores for one date; NaN marks a missing symbol.
ScoreVector = pd.Series

Universe = Union[Sequence[str], Callable[[pd.Timestamp], Sequence[str]]]


class SignalSource(Protocol):
    name: str
    lookback: int

    def score(self, universe: Sequence[str], date: pd.Timestamp) -> ScoreVector:
        """Raw score per symbol at ``date``. Raises NoDataForDate."""


class ForwardReturnSource(Protocol):
    def forward_return(self, universe: Sequence[str], date: pd.Timestamp, horizon: int) -> ScoreVector:
        """Simple return per symbol from ``date`` over ``horizon`` periods. Raises NoDataForDate."""


class Combiner(Protocol):
    name: str

    def combine(self, signals: Dict[str, ScoreVector]) -> ScoreVector:
        """Composite score from named score vectors observed at one date."""


class CostModel(Protocol):
    def cost(self, delta: pd.Series, portfolio_value: float) -> float:
        """Currency cost of moving weights by ``delta`` at ``portfolio_value``."""


@dataclass(frozen=True)
class LinearCostModel:
    """Linear transaction cost: cost_bps * |delta| * portfolio value.

    The zero default ignores spread, commission and impact and therefore
    overstates net performance.
    """

    cost_bps: float = 0.0

    def cost(self, delta: pd.Series, portfolio_value: float) -> float:
        traded = float(delta.fillna(0.0).abs().sum())
        return (self.cost_bps / 10000.0) * traded * float(portfolio_value)


@dataclass(frozen=True)
class BacktestResult:
    returns: pd.Series  # simple period returns, one per trading date
    equity: pd.Series  # portfolio value after each date
    turnover: pd.Series  # one-way turnover per rebalance date
    costs: pd.Series  # transaction cost (currency) per rebalance date
    weights: pd.DataFrame  # target weights, rebalance date x symbol
    total_costs: float
    initial_capital: float
    data_gaps: Tuple[Tuple[pd.Timestamp, str], ...] = ()
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def n_rebalances(self) -> int:
        return int(len(self.turnover))

    @property
    def final_value(self) -> float:
        return float(self.equity.iloc[-1]) if len(self.equity) else float(self.initial_capital)

    @property
    def mean_turnover(self) -> float:
        return float(self.turnover.mean()) if len(self.turnover) else 0.0


def to_timestamp(d: Any) -> pd.Timestamp:
    ts = pd.Timestamp(d)
    if ts.tzinfo is not None:
        ts = ts.tz_convert(None)
    return ts.normalize()


def resolve_universe(universe: Optional[Universe], date: pd.Timestamp, default: Sequence[str]) -> List[str]:
    if universe is None:
        return list(default)
    if callable(universe):
        return list(universe(date))
    return list(universe)


def as_score_vector(values: Any, universe: Optional[Sequence[str]] = None) -> ScoreVector:
    """Coerce to a float Series indexed by symbol; non-finite entries become NaN."""
    s = values if isinstance(values, pd.Series) else pd.Series(values, dtype=float)
    s = s.astype(float).replace([np.inf, -np.inf], np.nan)
    if universe is not None:
        s = s.reindex(list(universe))
    return s
