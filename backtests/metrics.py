"""Common performance metrics for strategy evaluation."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import numpy as np
import pandas as pd

from backtests.errors import EmptyReturnSeries

DEFAULT_PERIODS_PER_YEAR = 252


@dataclass(frozen=True)
class PerformanceSummary:
    total_return: float
    annualized_return: float
    annualized_volatility: float
    sharpe_ratio: float  # NaN when volatility is 0
    max_drawdown: float  # positive fraction, 0.0 when the curve never falls
    win_rate: float
    n_periods: int
    periods_per_year: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _clean(returns: pd.Series) -> pd.Series:
    r = returns.astype(float).replace([np.inf, -np.inf], np.nan).dropna()
    if r.empty:
        raise EmptyReturnSeries("return series has no finite observations")
    return r


def infer_periods_per_year(index: Any) -> int:
    """Guess the sampling frequency from the median spacing of a date index."""
    if not isinstance(index, pd.DatetimeIndex) or len(index) < 2:
        return DEFAULT_PERIODS_PER_YEAR
    days = float(pd.Series(index.sort_values()).diff().dropna().dt.days.median())
    if days <= 4:
        return 252
    if days <= 10:
        return 52
    if days <= 45:
        return 12
    if days <= 135:
        return 4
    return 1


def equity_curve(returns: pd.Series, start: float = 1.0) -> pd.Series:
    return start * (1.0 + returns.fillna(0.0)).cumprod()


def total_return(equity: pd.Series) -> float:
    e = equity.dropna()
    if len(e) < 2:
        return 0.0
    return float(e.iloc[-1] / e.iloc[0] - 1.0)


def max_drawdown(equity: pd.Series) -> float:
    """Largest peak-to-trough fall as a positive fraction."""
    e = equity.dropna()
    if len(e) < 2:
        return 0.0
    peak = e.cummax()
    dd = 1.0 - e / peak
    m = float(dd.max())
    if np.isnan(m) or np.isinf(m):
        return 0.0
    return max(m, 0.0)


def annualized_volatility(returns: pd.Series, periods_per_year: int = DEFAULT_PERIODS_PER_YEAR) -> float:
    r = returns.dropna()
    if len(r) < 2:
        return 0.0
    return float(r.std(ddof=1) * np.sqrt(periods_per_year))


def annualized_return(returns: pd.Series, periods_per_year: int = DEFAULT_PERIODS_PER_YEAR) -> float:
    r = returns.dropna()
    if r.empty:
        return 0.0
    growth = float((1.0 + r).prod())
    if growth <= 0:
        return -1.0
    return float(growth ** (periods_per_year / len(r)) - 1.0)


def annualized_sharpe(
    returns: pd.Series,
    periods_per_year: int = DEFAULT_PERIODS_PER_YEAR,
    risk_free_rate: float = 0.0,
) -> float:
    vol = annualized_volatility(returns, periods_per_year)
    if vol == 0.0 or np.isnan(vol):
        return float("nan")
    return float((annualized_return(returns, periods_per_year) - risk_free_rate) / vol)


def summarize_performance(
    returns: pd.Series,
    *,
    periods_per_year: Optional[int] = None,
    risk_free_rate: float = 0.0,
) -> PerformanceSummary:
    r = _clean(returns)
    ppy = int(periods_per_year) if periods_per_year else infer_periods_per_year(r.index)

    # value curve starts at 1.0 so a loss on the first period counts as drawdown
    curve = pd.concat([pd.Series([1.0]), equity_curve(r).reset_index(drop=True)], ignore_index=True)

    return PerformanceSummary(
        total_return=float((1.0 + r).prod() - 1.0),
        annualized_return=annualized_return(r, ppy),
        annualized_volatility=annualized_volatility(r, ppy),
        sharpe_ratio=annualized_sharpe(r, ppy, risk_free_rate),
        max_drawdown=max_drawdown(curve),
        win_rate=float((r > 0).mean()),
        n_periods=int(len(r)),
        periods_per_year=ppy,
    )
