"""Evaluator facade: IC, decay, turnover and backtest for a signal over a price store."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

import pandas as pd

from backtests.config import EvaluationSettings
from backtests.core import BacktestResult, SignalSource, Universe, to_timestamp
from backtests.decay import DecayAnalysis, DecayAnalyzer
from backtests.engine import BacktestEngine
from backtests.errors import EvaluationCancelled, EvaluationError
from backtests.ic import ICAnalysis, ICAnalyzer
from backtests.metrics import PerformanceSummary, summarize_performance
from backtests.parallel import map_ordered
from backtests.schedule import build_schedule
from backtests.turnover import TurnoverAnalysis, TurnoverAnalyzer
from quant_data.store import PriceStore

logger = logging.getLogger(__name__)


class AnalysisType(str, Enum):
    IC = "ic"
    DECAY = "decay"
    TURNOVER = "turnover"
    BACKTEST = "backtest"
    ALL = "all"


SECTIONS = (AnalysisType.IC, AnalysisType.DECAY, AnalysisType.TURNOVER, AnalysisType.BACKTEST)


def _iso(d: Optional[pd.Timestamp]) -> Optional[str]:
    return d.date().isoformat() if d is not None else None


@dataclass(frozen=True)
class EvaluationReport:
    signal: str
    analysis: AnalysisType
    horizon: int
    start: Optional[pd.Timestamp] = None
    end: Optional[pd.Timestamp] = None
    ic: Optional[ICAnalysis] = None
    decay: Optional[DecayAnalysis] = None
    turnover: Optional[TurnoverAnalysis] = None
    backtest: Optional[BacktestResult] = None
    performance: Optional[PerformanceSummary] = None
    errors: Dict[str, Dict[str, Any]] = field(default_factory=dict)  # section -> error.to_dict()

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "signal": self.signal,
            "analysis": self.analysis.value,
            "horizon": self.horizon,
            "start": _iso(self.start),
            "end": _iso(self.end),
        }
        if self.ic is not None:
            out["ic"] = self.ic.to_dict()
        if self.decay is not None:
            out["decay"] = self.decay.to_dict()
        if self.turnover is not None:
            out["turnover"] = self.turnover.to_dict()
        if self.backtest is not None:
            bt = self.backtest
            out["backtest"] = {
                "initial_capital": bt.initial_capital,
                "final_value": bt.final_value,
                "total_costs": bt.total_costs,
                "n_rebalances": bt.n_rebalances,
                "mean_turnover": bt.mean_turnover,
                "data_gaps": [{"date": _iso(d), "symbol": s} for d, s in bt.data_gaps],
                "metadata": dict(bt.metadata),
            }
        if self.performance is not None:
            out["performance"] = self.performance.to_dict()
        if self.errors:
            out["errors"] = dict(self.errors)
        return out


class SignalEvaluator:
    """Stateless apart from its price store and settings; safe to share across threads."""

    def __init__(self, prices: Union[PriceStore, pd.DataFrame], settings: Optional[EvaluationSettings] = None):
        self.store = prices if isinstance(prices, PriceStore) else PriceStore(prices)
        self.settings = settings or EvaluationSettings()

    # -- helpers -----------------------------------------------------------

    def _bind(self, signal: SignalSource) -> SignalSource:
        # signals must read the same prices the forward returns come from
        if hasattr(signal, "bind") and getattr(signal, "store", None) is not self.store:
            return signal.bind(self.store)
        return signal

    def _candidate_dates(self, frequency, start: Optional[Any], end: Optional[Any], lookback: int) -> pd.DatetimeIndex:
        dates = build_schedule(self.store.calendar, frequency, start=start, end=end)
        if lookback > 0 and len(self.store) > lookback:
            dates = dates[dates >= self.store.calendar[lookback]]
        elif lookback > 0:
            dates = dates[:0]
        return dates

    def evaluation_dates(
        self,
        signal: SignalSource,
        horizon: int,
        *,
        start: Optional[Any] = None,
        end: Optional[Any] = None,
    ) -> pd.DatetimeIndex:
        """Scheduled dates with full signal history and ``horizon`` periods of future prices."""
        dates = self._candidate_dates(self.settings.evaluation_frequency, start, end, int(signal.lookback))
        last = self.store.last_forward_date(horizon)
        if last is None:
            return dates[:0]
        return dates[dates <= last]

    # -- sections ----------------------------------------------------------

    def analyze_ic(
        self,
        signal: SignalSource,
        *,
        universe: Optional[Universe] = None,
        start: Optional[Any] = None,
        end: Optional[Any] = None,
        horizon: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ICAnalysis:
        signal = self._bind(signal)
        h = int(horizon or self.settings.horizon)
        analyzer = ICAnalyzer(signal, self.store, max_workers=self.settings.max_workers)
        return analyzer.analyze(
            self.evaluation_dates(signal, h, start=start, end=end),
            h,
            universe=universe,
            default_universe=self.store.symbols,
            cancel_event=cancel_event,
        )

    def analyze_decay(
        self,
        signal: SignalSource,
        *,
        universe: Optional[Universe] = None,
        start: Optional[Any] = None,
        end: Optional[Any] = None,
        horizons: Optional[Sequence[int]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> DecayAnalysis:
        signal = self._bind(signal)
        ic_analyzer = ICAnalyzer(signal, self.store)
        analyzer = DecayAnalyzer(ic_analyzer, max_workers=self.settings.max_workers)
        return analyzer.analyze(
            lambda h: self.evaluation_dates(signal, h, start=start, end=end),
            horizons or self.settings.decay_horizons,
            universe=universe,
            default_universe=self.store.symbols,
            cancel_event=cancel_event,
        )

    def analyze_turnover(
        self,
        signal: SignalSource,
        *,
        universe: Optional[Universe] = None,
        start: Optional[Any] = None,
        end: Optional[Any] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> TurnoverAnalysis:
        signal = self._bind(signal)
        dates = self._candidate_dates(self.settings.evaluation_frequency, start, end, int(signal.lookback))
        return TurnoverAnalyzer(signal).analyze(
            dates,
            universe=universe,
            default_universe=self.store.symbols,
            cancel_event=cancel_event,
        )

    def run_backtest(
        self,
        signal: SignalSource,
        *,
        universe: Optional[Universe] = None,
        start: Optional[Any] = None,
        end: Optional[Any] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> BacktestResult:
        signal = self._bind(signal)
        schedule = build_schedule(self.store.calendar, self.settings.rebalance_frequency, start=start, end=end)
        engine = BacktestEngine(self.settings.backtest_config(extra_warmup=int(signal.lookback)))
        return engine.run(
            self.store,
            schedule,
            signal,
            universe,
            start=start,
            end=end,
            cancel_event=cancel_event,
        )

    def summarize(self, result: BacktestResult) -> PerformanceSummary:
        return summarize_performance(
            result.returns,
            periods_per_year=self.settings.periods_per_year,
            risk_free_rate=self.settings.risk_free_rate,
        )

    # -- facade ------------------------------------------------------------

    def evaluate(
        self,
        signal: SignalSource,
        analysis: Union[AnalysisType, str] = AnalysisType.ALL,
        *,
        universe: Optional[Universe] = None,
        start: Optional[Any] = None,
        end: Optional[Any] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> EvaluationReport:
        """Run one analysis (errors propagate) or all of them (errors captured per section)."""
        kind = AnalysisType(analysis)
        signal = self._bind(signal)
        name = getattr(signal, "name", "signal")
        kwargs = dict(universe=universe, start=start, end=end, cancel_event=cancel_event)
        sections = SECTIONS if kind is AnalysisType.ALL else (kind,)

        logger.info("Evaluating %s (%s)", name, kind.value, extra={"signal": name})
        parts: Dict[str, Any] = {}
        errors: Dict[str, Dict[str, Any]] = {}
        for section in sections:
            try:
                if section is AnalysisType.IC:
                    parts["ic"] = self.analyze_ic(signal, **kwargs)
                elif section is AnalysisType.DECAY:
                    parts["decay"] = self.analyze_decay(signal, **kwargs)
                elif section is AnalysisType.TURNOVER:
                    parts["turnover"] = self.analyze_turnover(signal, **kwargs)
                else:
                    result = self.run_backtest(signal, **kwargs)
                    parts["backtest"] = result
                    parts["performance"] = self.summarize(result)
            except EvaluationCancelled:
                raise
            except EvaluationError as e:
                if kind is not AnalysisType.ALL:
                    raise
                logger.warning("%s section of %s failed: %s", section.value, name, e)
                errors[section.value] = e.to_dict()

        return EvaluationReport(
            signal=name,
            analysis=kind,
            horizon=self.settings.horizon,
            start=to_timestamp(start) if start is not None else None,
            end=to_timestamp(end) if end is not None else None,
            errors=errors,
            **parts,
        )

    def evaluate_many(
        self,
        signals: Sequence[SignalSource],
        analysis: Union[AnalysisType, str] = AnalysisType.ALL,
        *,
        universe: Optional[Universe] = None,
        start: Optional[Any] = None,
        end: Optional[Any] = None,
        cancel_event: Optional[threading.Event] = None,
        max_workers: Optional[int] = None,
    ) -> List[EvaluationReport]:
        """Evaluate independent signals concurrently; reports keep the input order."""
        return map_ordered(
            lambda s: self.evaluate(s, analysis, universe=universe, start=start, end=end, cancel_event=cancel_event),
            signals,
            max_workers=max_workers or self.settings.max_workers,
            cancel_event=cancel_event,
            where="signal batch",
        )
