"""Periodically rebalanced portfolio simulation.

The engine walks the trading calendar from the first rebalance date to the
end of the range. On rebalance dates it asks the composite signal for scores,
standardizes them, converts them to target weights and pays transaction
costs; between rebalances holdings are only marked to market, so weights
drift exactly as a buy-and-hold position would.

State machine (enforced by PortfolioSimulation):

    UNINITIALIZED -> WARMED_UP -> REBALANCING -> HOLDING -> REBALANCING -> ... -> FINALIZED

Any failure aborts the run; no partial BacktestResult is returned.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from backtests.core import (
    BacktestResult,
    CostModel,
    LinearCostModel,
    SignalSource,
    Universe,
    as_score_vector,
    resolve_universe,
    to_timestamp,
)
from backtests.errors import BacktestStateError, IncompleteUniverseData, InvalidSchedule
from backtests.parallel import check_cancelled
from backtests.schedule import validate_schedule
from backtests.stats import standardize
from portfolio.construction import PositionConstruction, construct_positions

logger = logging.getLogger(__name__)

ScoreFn = Union[SignalSource, Callable[[Sequence[str], pd.Timestamp], pd.Series]]


class MissingDataPolicy(str, Enum):
    FAIL_FAST = "fail_fast"
    CARRY_FORWARD = "carry_forward"


class BacktestState(str, Enum):
    UNINITIALIZED = "uninitialized"
    WARMED_UP = "warmed_up"
    REBALANCING = "rebalancing"
    HOLDING = "holding"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class BacktestConfig:
    construction: PositionConstruction = PositionConstruction()
    cost_model: CostModel = LinearCostModel(cost_bps=0.0)
    missing_data_policy: MissingDataPolicy = MissingDataPolicy.FAIL_FAST
    initial_capital: float = 1_000_000.0
    warmup_periods: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "missing_data_policy", MissingDataPolicy(self.missing_data_policy))
        if self.initial_capital <= 0:
            raise ValueError("initial_capital must be > 0")
        if self.warmup_periods < 0:
            raise ValueError("warmup_periods must be >= 0")


@dataclass
class PortfolioSnapshot:
    date: Optional[pd.Timestamp] = None
    holdings: Dict[str, float] = field(default_factory=dict)  # notional per symbol
    cash: float = 0.0
    value: float = 0.0

    def weights(self) -> pd.Series:
        if self.value <= 0 or not self.holdings:
            return pd.Series(dtype=float)
        return pd.Series(self.holdings, dtype=float) / self.value


class PortfolioSimulation:
    """Single-use owner of the portfolio snapshot for one backtest run."""

    def __init__(self, prices: pd.DataFrame, config: BacktestConfig):
        self.prices = prices
        self.config = config
        self.state = BacktestState.UNINITIALIZED
        self.snapshot = PortfolioSnapshot(cash=config.initial_capital, value=config.initial_capital)
        self._last_price: Dict[str, float] = {}
        self._prev_value = float(config.initial_capital)
        self._returns: Dict[pd.Timestamp, float] = {}
        self._equity: Dict[pd.Timestamp, float] = {}
        self._turnover: Dict[pd.Timestamp, float] = {}
        self._costs: Dict[pd.Timestamp, float] = {}
        self._weights: Dict[pd.Timestamp, pd.Series] = {}
        self._gaps: List[Tuple[pd.Timestamp, str]] = []

    # -- state helpers -----------------------------------------------------

    def _require(self, action: str, *allowed: BacktestState) -> None:
        if self.state not in allowed:
            raise BacktestStateError(
                f"cannot {action} in state {self.state.value}",
                date=self.snapshot.date,
            )

    def _observe_prices(self, date: pd.Timestamp) -> pd.Series:
        row = self.prices.loc[date].astype(float).replace([np.inf, -np.inf], np.nan)
        for sym, px in row.dropna().items():
            if px > 0:
                self._last_price[str(sym)] = float(px)
        return row

    def _price_or_gap(self, date: pd.Timestamp, row: pd.Series, symbols: Iterable[str], action: str) -> Dict[str, float]:
        """Price per symbol at ``date``, applying the missing-data policy."""
        out: Dict[str, float] = {}
        missing: List[str] = []
        for sym in symbols:
            px = row.get(sym, np.nan)
            if px is not None and np.isfinite(px) and px > 0:
                out[sym] = float(px)
            else:
                missing.append(sym)
        if not missing:
            return out

        if self.config.missing_data_policy is MissingDataPolicy.FAIL_FAST:
            raise IncompleteUniverseData(f"missing price while trying to {action}", date=date, symbols=missing)

        for sym in missing:
            if sym in self._last_price:
                out[sym] = self._last_price[sym]
                self._gaps.append((date, sym))
        carried = [s for s in missing if s in out]
        if carried:
            logger.warning("Carrying forward last price on %s for %s", date.date(), ",".join(sorted(carried)))
        return out

    # -- transitions -------------------------------------------------------

    def warm_up(self, date: pd.Timestamp) -> None:
        self._require("warm up", BacktestState.UNINITIALIZED)
        self.snapshot.date = date
        self._observe_prices(date)
        self.state = BacktestState.WARMED_UP

    def mark_to_market(self, date: pd.Timestamp) -> None:
        self._require("mark to market", BacktestState.HOLDING)
        if self.snapshot.date is not None and date <= self.snapshot.date:
            raise BacktestStateError("dates must be processed in ascending order", date=date)

        prev_prices = {s: self._last_price[s] for s in self.snapshot.holdings}
        row = self.prices.loc[date].astype(float).replace([np.inf, -np.inf], np.nan)
        held = [s for s, n in self.snapshot.holdings.items() if n != 0.0]
        px = self._price_or_gap(date, row, held, "mark to market")
        self._observe_prices(date)

        for sym in held:
            if sym in px:
                self.snapshot.holdings[sym] *= px[sym] / prev_prices[sym]
                self._last_price[sym] = px[sym]
        self.snapshot.value = self.snapshot.cash + float(sum(self.snapshot.holdings.values()))
        self.snapshot.date = date

    def rebalance(self, date: pd.Timestamp, targets: pd.Series) -> float:
        """Move to ``targets`` at ``date``; returns the transaction cost paid."""
        self._require("rebalance", BacktestState.WARMED_UP, BacktestState.HOLDING)
        self.state = BacktestState.REBALANCING
        self.snapshot.date = date

        value = self.snapshot.value
        if value <= 0:
            raise BacktestStateError("portfolio value is non-positive; cannot rebalance", date=date)

        targets = targets.astype(float).fillna(0.0)
        current = self.snapshot.weights()
        idx = current.index.union(targets.index)
        delta = targets.reindex(idx).fillna(0.0) - current.reindex(idx).fillna(0.0)

        cost = float(self.config.cost_model.cost(delta, value))
        value -= cost

        self.snapshot.holdings = {str(s): float(w) * value for s, w in targets.items() if w != 0.0}
        self.snapshot.cash = value - float(sum(self.snapshot.holdings.values()))
        self.snapshot.value = value

        self._turnover[date] = 0.5 * float(delta.abs().sum())
        self._costs[date] = cost
        self._weights[date] = targets[targets != 0.0]
        self.state = BacktestState.HOLDING
        return cost

    def close_day(self, date: pd.Timestamp) -> None:
        self._require("close the day", BacktestState.HOLDING)
        value = self.snapshot.value
        self._returns[date] = value / self._prev_value - 1.0
        self._equity[date] = value
        self._prev_value = value

    def finalize(self, metadata: Optional[Dict[str, str]] = None) -> BacktestResult:
        self._require("finalize", BacktestState.HOLDING)
        self.state = BacktestState.FINALIZED

        def _series(d: Dict[pd.Timestamp, float], name: str) -> pd.Series:
            s = pd.Series(d, dtype=float)
            s.index = pd.DatetimeIndex(s.index, name="date")
            s.name = name
            return s.sort_index()

        weights = pd.DataFrame(self._weights).T.sort_index().fillna(0.0)
        weights.index = pd.DatetimeIndex(weights.index, name="date")
        costs = _series(self._costs, "cost")
        return BacktestResult(
            returns=_series(self._returns, "return"),
            equity=_series(self._equity, "equity"),
            turnover=_series(self._turnover, "turnover"),
            costs=costs,
            weights=weights,
            total_costs=float(costs.sum()),
            initial_capital=float(self.config.initial_capital),
            data_gaps=tuple(self._gaps),
            metadata=dict(metadata or {}),
        )


def _as_price_frame(prices: Any) -> pd.DataFrame:
    frame = prices if isinstance(prices, pd.DataFrame) else prices.to_frame()
    frame = frame.sort_index()
    frame.index = pd.DatetimeIndex([to_timestamp(d) for d in frame.index])
    frame.columns = [str(c) for c in frame.columns]
    return frame


def _score(score_fn: ScoreFn, universe: Sequence[str], date: pd.Timestamp) -> pd.Series:
    fn = score_fn.score if hasattr(score_fn, "score") else score_fn
    return as_score_vector(fn(universe, date))


class BacktestEngine:
    """Replays a scheduled rebalancing strategy against historical prices."""

    def __init__(self, config: Optional[BacktestConfig] = None):
        self.config = config or BacktestConfig()

    def align_schedule(self, schedule: Iterable[Any], calendar: pd.DatetimeIndex) -> pd.DatetimeIndex:
        """Snap rebalance dates to trading days and drop those inside the warm-up window."""
        requested = validate_schedule(schedule)
        if len(calendar) == 0:
            raise InvalidSchedule("price calendar is empty")

        pos = calendar.searchsorted(requested, side="right") - 1
        snapped: List[pd.Timestamp] = []
        dropped: List[pd.Timestamp] = []
        for req, p in zip(requested, pos):
            if p < 0 or req > calendar[-1] or p < self.config.warmup_periods:
                dropped.append(req)
                continue
            d = calendar[p]
            if snapped and d <= snapped[-1]:
                dropped.append(req)
                continue
            snapped.append(d)
        if dropped:
            logger.warning(
                "Dropped %d rebalance date(s) outside the tradable window: %s",
                len(dropped),
                ", ".join(str(d.date()) for d in dropped[:5]),
            )
        if not snapped:
            raise InvalidSchedule("no rebalance date falls inside the price calendar after warm-up")
        return pd.DatetimeIndex(snapped)

    def _targets(
        self,
        sim: PortfolioSimulation,
        score_fn: ScoreFn,
        universe: Sequence[str],
        date: pd.Timestamp,
    ) -> pd.Series:
        raw = _score(score_fn, universe, date)
        z = standardize(raw, date=date)
        row = sim.prices.loc[date].astype(float).replace([np.inf, -np.inf], np.nan)

        if self.config.missing_data_policy is MissingDataPolicy.CARRY_FORWARD:
            # a symbol never priced cannot be valued, whatever its rank
            unpriceable = [
                s for s in z.index
                if not (np.isfinite(row.get(s, np.nan)) and row.get(s, np.nan) > 0) and s not in sim._last_price
            ]
            if unpriceable:
                logger.warning(
                    "No price history on %s for %s; excluded from targets", date.date(), ",".join(unpriceable)
                )
                z = z.drop(unpriceable)

        targets = construct_positions(z, self.config.construction)
        wanted = [s for s, w in targets.items() if w != 0.0]
        sim._price_or_gap(date, row, wanted, "rebalance")
        return targets

    def run(
        self,
        prices: Any,
        schedule: Iterable[Any],
        score_fn: ScoreFn,
        universe: Optional[Universe] = None,
        *,
        start: Optional[Any] = None,
        end: Optional[Any] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> BacktestResult:
        frame = _as_price_frame(prices)
        calendar = frame.index
        if start is not None:
            calendar = calendar[calendar >= to_timestamp(start)]
        if end is not None:
            calendar = calendar[calendar <= to_timestamp(end)]

        # warm-up counts rows of history available before the first rebalance
        full_calendar = frame.index[frame.index <= calendar[-1]] if len(calendar) else calendar
        rebalances = self.align_schedule(
            [d for d in validate_schedule(schedule) if not len(calendar) or d >= calendar[0]],
            full_calendar,
        )
        first = rebalances[0]
        days = calendar[calendar >= first]
        rebalance_set = set(rebalances)

        sim = PortfolioSimulation(frame, self.config)
        sim.warm_up(first)
        signal_name = getattr(score_fn, "name", getattr(score_fn, "__name__", "signal"))
        logger.info(
            "Backtest %s: %d trading days, %d rebalances, policy=%s",
            signal_name,
            len(days),
            len(rebalances),
            self.config.construction.policy.value,
        )

        for d in days:
            check_cancelled(cancel_event, where="backtest")
            if d != first:
                sim.mark_to_market(d)
            if d in rebalance_set:
                u = resolve_universe(universe, d, list(frame.columns))
                sim.rebalance(d, self._targets(sim, score_fn, u, d))
            sim.close_day(d)

        metadata = {
            "signal": str(signal_name),
            "policy": self.config.construction.policy.value,
            "missing_data_policy": self.config.missing_data_policy.value,
        }
        if isinstance(self.config.cost_model, LinearCostModel):
            metadata["cost_bps"] = str(self.config.cost_model.cost_bps)
        result = sim.finalize(metadata)
        logger.info(
            "Backtest %s finished: final_value=%.2f total_costs=%.2f gaps=%d",
            signal_name,
            result.final_value,
            result.total_costs,
            len(result.data_gaps),
        )
        return result
