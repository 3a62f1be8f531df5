"""Signal turnover: 1 - rank autocorrelation between consecutive evaluation dates."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Sequence

import pandas as pd

from backtests.core import SignalSource, Universe, as_score_vector, resolve_universe, to_timestamp
from backtests.errors import EmptyEvaluationWindow, EvaluationCancelled, EvaluationError
from backtests.parallel import check_cancelled
from backtests.stats import rank_correlation, standardize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TurnoverAnalysis:
    turnover: pd.Series  # indexed by the later date of each pair
    autocorrelation: pd.Series
    mean_turnover: float
    n_obs: int
    skipped: Dict[pd.Timestamp, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mean_turnover": self.mean_turnover,
            "mean_autocorrelation": float(self.autocorrelation.mean()),
            "n_obs": self.n_obs,
            "n_skipped": len(self.skipped),
            "turnover": {d.date().isoformat(): float(v) for d, v in self.turnover.items()},
        }


def signal_turnover(previous: pd.Series, current: pd.Series, *, date: Optional[Any] = None) -> float:
    """1 - Spearman correlation of the same signal at two consecutive dates."""
    return 1.0 - rank_correlation(previous, current, date=date)


class TurnoverAnalyzer:
    def __init__(self, signal: SignalSource, *, standardize_scores: bool = True):
        self.signal = signal
        self.standardize_scores = standardize_scores

    def _scores(self, d: pd.Timestamp, universe: Sequence[str]) -> pd.Series:
        s = as_score_vector(self.signal.score(universe, d))
        return standardize(s, date=d) if self.standardize_scores else s

    def analyze(
        self,
        dates: Iterable[Any],
        *,
        universe: Optional[Universe] = None,
        default_universe: Sequence[str] = (),
        cancel_event: Optional[threading.Event] = None,
    ) -> TurnoverAnalysis:
        ordered = sorted({to_timestamp(x) for x in dates})

        prev: Optional[pd.Series] = None
        turn: Dict[pd.Timestamp, float] = {}
        skipped: Dict[pd.Timestamp, str] = {}
        for d in ordered:
            check_cancelled(cancel_event, where="turnover sweep")
            try:
                curr = self._scores(d, resolve_universe(universe, d, default_universe))
            except EvaluationCancelled:
                raise
            except EvaluationError as e:
                logger.debug("Skipping turnover at %s: %s", d.date(), e)
                skipped[d] = e.kind
                prev = None
                continue

            if prev is not None:
                try:
                    turn[d] = signal_turnover(prev, curr, date=d)
                except EvaluationError as e:
                    logger.debug("Skipping turnover pair ending %s: %s", d.date(), e)
                    skipped[d] = e.kind
            prev = curr

        if not turn:
            raise EmptyEvaluationWindow(f"no consecutive date pair produced a turnover value ({len(skipped)} skipped)")

        series = pd.Series(turn, dtype=float).sort_index()
        series.index = pd.DatetimeIndex(series.index)
        series.index.name = "date"
        series.name = "turnover"
        autocorr = (1.0 - series).rename("rank_autocorrelation")
        result = TurnoverAnalysis(
            turnover=series,
            autocorrelation=autocorr,
            mean_turnover=float(series.mean()),
            n_obs=int(len(series)),
            skipped=skipped,
        )
        logger.info(
            "Turnover %s: n=%d mean=%.4f",
            getattr(self.signal, "name", "signal"),
            result.n_obs,
            result.mean_turnover,
        )
        return result
