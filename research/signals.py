"""Signal registry: versioned, reusable signal components for research and backtesting."""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from backtests.core import Combiner, as_score_vector, to_timestamp
from backtests.errors import EvaluationError, NoDataForDate
from backtests.stats import rank_correlation
from quant_data.store import PriceStore

logger = logging.getLogger(__name__)


class BaseSignal(ABC):
    """Standard interface for signals in the registry.

    Each signal has: name, lookback, compute logic over a price panel, and a
    point-in-time ``score(universe, date)`` that only sees prices up to date.
    """

    name: str = ""
    lookback: int = 252
    description: str = ""

    def __init__(self, store: Optional[PriceStore] = None):
        self.store = store

    @abstractmethod
    def compute(self, prices: pd.DataFrame) -> pd.DataFrame:
        """Compute signal from price data.

        Args:
            prices: DataFrame with DatetimeIndex, ticker columns, close values.

        Returns:
            DataFrame with the same index and columns as prices.
        """
        ...

    def bind(self, store: PriceStore) -> "BaseSignal":
        """Copy of this signal reading from ``store``."""
        bound = copy.copy(self)
        bound.store = store
        return bound

    def score(self, universe: Sequence[str], date: Any) -> pd.Series:
        if self.store is None:
            raise RuntimeError(f"signal {self.name!r} is not bound to a PriceStore")
        d = to_timestamp(date)
        i = self.store.position(d)
        if i < self.lookback:
            raise NoDataForDate(
                f"{self.name} needs {self.lookback} periods of history, have {i}",
                date=d,
            )
        hist = self.store.history(d, universe, lookback=self.lookback)
        panel = self.compute(hist)
        row = panel.iloc[-1]
        row.name = self.name
        return as_score_vector(row, universe)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, lookback={self.lookback})"


class MomentumSignal(BaseSignal):
    """Momentum: return over lookback period, skipping recent skip days."""

    name = "momentum_252_21"
    lookback = 252
    skip = 21
    description = "12-month cumulative return skipping the most recent month"

    def __init__(
        self,
        lookback: Optional[int] = None,
        skip: Optional[int] = None,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        store: Optional[PriceStore] = None,
    ):
        super().__init__(store)
        if lookback is not None:
            self.lookback = lookback
        if skip is not None:
            self.skip = skip
        if self.skip < 0 or self.skip >= self.lookback:
            raise ValueError("skip must satisfy 0 <= skip < lookback")
        self.name = name or f"momentum_{self.lookback}_{self.skip}"
        if description is not None:
            self.description = description

    def compute(self, prices: pd.DataFrame) -> pd.DataFrame:
        return prices.pct_change(self.lookback - self.skip, fill_method=None).shift(self.skip)


class MeanReversionSignal(BaseSignal):
    """Mean reversion: negative z-score of price vs moving average.
    When price > MA, signal is negative (expect reversion down).
    """

    name = "mean_reversion"
    lookback = 63
    description = "Negative z-score of price against its moving average"

    def __init__(self, lookback: Optional[int] = None, *, store: Optional[PriceStore] = None):
        super().__init__(store)
        if lookback is not None:
            self.lookback = lookback

    def compute(self, prices: pd.DataFrame) -> pd.DataFrame:
        ma = prices.rolling(self.lookback, min_periods=self.lookback // 2).mean()
        z = (prices - ma) / prices.rolling(self.lookback, min_periods=self.lookback // 2).std()
        z = z.replace([np.inf, -np.inf], np.nan)
        # Negative so that high price -> short signal
        return -z


class LowVolatilitySignal(BaseSignal):
    """Low volatility: negative rolling std of daily returns."""

    name = "low_volatility"
    lookback = 63
    description = "Negative realized volatility of daily returns"

    def __init__(self, lookback: Optional[int] = None, *, store: Optional[PriceStore] = None):
        super().__init__(store)
        if lookback is not None:
            self.lookback = lookback

    def compute(self, prices: pd.DataFrame) -> pd.DataFrame:
        rets = prices.pct_change(fill_method=None)
        vol = rets.rolling(self.lookback, min_periods=max(self.lookback // 2, 2)).std()
        return -vol


class CompositeSignal:
    """Scores every component signal at a date and blends them with a combiner."""

    def __init__(
        self,
        signals: Union[Mapping[str, BaseSignal], Sequence[BaseSignal]],
        combiner: Combiner,
        name: Optional[str] = None,
    ):
        if isinstance(signals, Mapping):
            self.signals: Dict[str, BaseSignal] = dict(signals)
        else:
            self.signals = {s.name: s for s in signals}
        if not self.signals:
            raise ValueError("CompositeSignal needs at least one signal")
        self.combiner = combiner
        self.name = name or f"{combiner.name}({'+'.join(self.signals)})"
        self.lookback = max(s.lookback for s in self.signals.values())

    def bind(self, store: PriceStore) -> "CompositeSignal":
        return CompositeSignal({n: s.bind(store) for n, s in self.signals.items()}, self.combiner, self.name)

    def component_scores(self, universe: Sequence[str], date: Any) -> Dict[str, pd.Series]:
        return {n: s.score(universe, date) for n, s in self.signals.items()}

    def score(self, universe: Sequence[str], date: Any) -> pd.Series:
        composite = self.combiner.combine(self.component_scores(universe, date))
        return as_score_vector(composite, universe)


class AdaptiveCompositeSignal(CompositeSignal):
    """Composite whose IC-weighted combiner learns only from realized ICs.

    Before scoring at ``date`` the combiner is fed each component's IC at
    sample dates every ``ic_step`` rows whose ``ic_horizon`` forward window
    closed on or before ``date``. Weights at a date therefore never see prices
    after it. Scoring an earlier date than the last one rebuilds the IC
    history from scratch.
    """

    def __init__(
        self,
        signals: Union[Mapping[str, BaseSignal], Sequence[BaseSignal]],
        combiner: Combiner,
        ic_horizon: int,
        name: Optional[str] = None,
        ic_step: Optional[int] = None,
    ):
        super().__init__(signals, combiner, name)
        if not hasattr(combiner, "update_ic") or not hasattr(combiner, "ic_history"):
            raise TypeError(f"combiner {combiner.name!r} does not learn from IC")
        if ic_horizon < 1:
            raise ValueError("ic_horizon must be >= 1")
        self.ic_horizon = int(ic_horizon)
        self.ic_step = int(ic_step or ic_horizon)
        if self.ic_step < 1:
            raise ValueError("ic_step must be >= 1")
        self._lock = threading.Lock()
        self._next_pos = self.lookback
        self._last_pos = -1

    def bind(self, store: PriceStore) -> "AdaptiveCompositeSignal":
        combiner = copy.deepcopy(self.combiner)
        combiner.ic_history.clear()
        return AdaptiveCompositeSignal(
            {n: s.bind(store) for n, s in self.signals.items()},
            combiner,
            self.ic_horizon,
            self.name,
            self.ic_step,
        )

    @property
    def store(self) -> Optional[PriceStore]:
        return next(iter(self.signals.values())).store

    def _learn_until(self, universe: Sequence[str], date: pd.Timestamp) -> None:
        store = self.store
        if store is None:
            raise RuntimeError(f"signal {self.name!r} is not bound to a PriceStore")
        i = store.position(date)
        if i < self._last_pos:
            self.combiner.ic_history.clear()
            self._next_pos = self.lookback
        self._last_pos = i

        while self._next_pos + self.ic_horizon <= i:
            d = store.calendar[self._next_pos]
            fwd = store.forward_return(universe, d, self.ic_horizon)
            for n, s in self.signals.items():
                try:
                    ic = rank_correlation(s.score(universe, d), fwd, date=d)
                except EvaluationError as e:
                    logger.debug("No IC for %s on %s: %s", n, d.date(), e)
                    continue
                self.combiner.update_ic(n, ic)
            self._next_pos += self.ic_step

    def weights_at(self, universe: Sequence[str], date: Any) -> Dict[str, float]:
        """Component weights usable at ``date``."""
        with self._lock:
            self._learn_until(universe, to_timestamp(date))
            return self.combiner.weights(list(self.signals))

    def score(self, universe: Sequence[str], date: Any) -> pd.Series:
        d = to_timestamp(date)
        with self._lock:
            self._learn_until(universe, d)
            composite = self.combiner.combine(self.component_scores(universe, d))
        return as_score_vector(composite, universe)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_SIGNAL_REGISTRY: Dict[str, BaseSignal] = {}

_ALIASES = {
    "momentum_1m": "short_term_momentum",
    "mom_1m": "short_term_momentum",
    "momentum_6m": "medium_term_momentum",
    "mom_6m": "medium_term_momentum",
    "momentum_12m": "long_term_momentum",
    "mom_12m": "long_term_momentum",
}


def register(signal: BaseSignal) -> None:
    """Add a signal to the registry."""
    _SIGNAL_REGISTRY[signal.name] = signal


def resolve_name(name: str) -> str:
    return _ALIASES.get(name, name)


def get_signal(name: str) -> Optional[BaseSignal]:
    """Retrieve a signal by name or alias."""
    return _SIGNAL_REGISTRY.get(resolve_name(name))


def list_signals() -> List[str]:
    """List all registered signal names."""
    return list(_SIGNAL_REGISTRY.keys())


def describe_signals() -> List[Dict[str, Any]]:
    aliases: Dict[str, List[str]] = {}
    for alias, target in _ALIASES.items():
        aliases.setdefault(target, []).append(alias)
    return [
        {
            "name": s.name,
            "lookback": s.lookback,
            "description": s.description,
            "aliases": aliases.get(s.name, []),
        }
        for s in _SIGNAL_REGISTRY.values()
    ]


def create_signal(name: str, store: PriceStore) -> BaseSignal:
    """Registered signal bound to ``store``."""
    signal = get_signal(name)
    if signal is None:
        raise KeyError(f"Unknown signal '{name}'. Available: {', '.join(list_signals())}")
    return signal.bind(store)


# Register default signals
def _init_defaults():
    register(MomentumSignal(21, 0, name="short_term_momentum", description="1-month cumulative return"))
    register(MomentumSignal(126, 21, name="medium_term_momentum", description="6-month cumulative return skipping the last month"))
    register(MomentumSignal(252, 21, name="long_term_momentum"))
    register(MeanReversionSignal())
    register(LowVolatilitySignal())


_init_defaults()
