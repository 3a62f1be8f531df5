"""Information Coefficient (IC) time series and Information Ratio (IR).

IC at a date is the Spearman rank correlation between the cross-sectionally
standardized signal and the realized forward return over ``horizon`` periods.
Dates whose computation fails (missing data, thin cross-section) are skipped,
never zero-filled; an empty series escalates to EmptyEvaluationWindow.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy import stats as sps

from backtests.core import ForwardReturnSource, SignalSource, Universe, as_score_vector, resolve_universe, to_timestamp
from backtests.errors import EmptyEvaluationWindow, EvaluationCancelled, EvaluationError
from backtests.parallel import map_ordered
from backtests.stats import rank_correlation, standardize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ICAnalysis:
    horizon: int
    ic_series: pd.Series
    mean_ic: float
    std_ic: float  # population std across dates
    ir: float  # mean / std; +/-inf when std is 0, NaN when mean is also 0
    hit_rate: float
    n_obs: int
    t_stat: float
    p_value: float
    std_error: float
    skipped: Dict[pd.Timestamp, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "horizon": self.horizon,
            "mean_ic": self.mean_ic,
            "std_ic": self.std_ic,
            "ir": self.ir,
            "hit_rate": self.hit_rate,
            "n_obs": self.n_obs,
            "t_stat": self.t_stat,
            "p_value": self.p_value,
            "std_error": self.std_error,
            "n_skipped": len(self.skipped),
            "ic_series": {d.date().isoformat(): float(v) for d, v in self.ic_series.items()},
        }


def information_ratio(mean_ic: float, std_ic: float) -> float:
    if std_ic > 0:
        return mean_ic / std_ic
    if mean_ic == 0:
        return float("nan")
    return math.copysign(math.inf, mean_ic)


def summarize_ic(
    ic_series: pd.Series,
    *,
    horizon: int = 1,
    skipped: Optional[Dict[pd.Timestamp, str]] = None,
) -> ICAnalysis:
    """Reduce a per-date IC series to IR, hit rate and significance."""
    ic = ic_series.astype(float).dropna()
    if ic.empty:
        raise EmptyEvaluationWindow(f"no valid IC observations at horizon {horizon}")

    values = ic.to_numpy()
    n = len(values)
    mean_ic = float(values.mean())
    std_ic = float(values.std(ddof=0))
    hit_rate = float((np.sign(values) == np.sign(mean_ic)).mean())

    sample_std = float(values.std(ddof=1)) if n > 1 else float("nan")
    std_error = sample_std / math.sqrt(n) if n > 1 else float("nan")
    if n > 1 and sample_std > 0:
        test = sps.ttest_1samp(values, 0.0)
        t_stat, p_value = float(test.statistic), float(test.pvalue)
    else:
        t_stat, p_value = float("nan"), float("nan")

    return ICAnalysis(
        horizon=int(horizon),
        ic_series=ic,
        mean_ic=mean_ic,
        std_ic=std_ic,
        ir=information_ratio(mean_ic, std_ic),
        hit_rate=hit_rate,
        n_obs=n,
        t_stat=t_stat,
        p_value=p_value,
        std_error=std_error,
        skipped=dict(skipped or {}),
    )


class ICAnalyzer:
    """Drive the rank-correlation engine across evaluation dates."""

    def __init__(
        self,
        signal: SignalSource,
        returns: ForwardReturnSource,
        *,
        standardize_scores: bool = True,
        max_workers: int = 1,
    ):
        self.signal = signal
        self.returns = returns
        self.standardize_scores = standardize_scores
        self.max_workers = max_workers

    def ic_at(self, date: Any, universe: Sequence[str], horizon: int) -> float:
        """IC for one date. Raises the underlying EvaluationError on failure."""
        d = to_timestamp(date)
        scores = as_score_vector(self.signal.score(universe, d))
        if self.standardize_scores:
            scores = standardize(scores, date=d)
        fwd = as_score_vector(self.returns.forward_return(universe, d, horizon))
        return rank_correlation(scores, fwd, date=d)

    def _safe_ic(self, args: Tuple[pd.Timestamp, Sequence[str], int]) -> Tuple[pd.Timestamp, Optional[float], str]:
        d, universe, horizon = args
        try:
            return d, self.ic_at(d, universe, horizon), ""
        except EvaluationCancelled:
            raise
        except EvaluationError as e:
            logger.debug("Skipping %s at horizon %d: %s", d.date(), horizon, e)
            return d, None, e.kind

    def analyze(
        self,
        dates: Iterable[Any],
        horizon: int,
        *,
        universe: Optional[Universe] = None,
        default_universe: Sequence[str] = (),
        cancel_event: Optional[threading.Event] = None,
    ) -> ICAnalysis:
        if horizon < 1:
            raise ValueError("horizon must be >= 1")

        work = []
        for d in sorted({to_timestamp(x) for x in dates}):
            work.append((d, resolve_universe(universe, d, default_universe), int(horizon)))

        rows = map_ordered(
            self._safe_ic,
            work,
            max_workers=self.max_workers,
            cancel_event=cancel_event,
            where=f"IC sweep (horizon={horizon})",
        )

        values = {d: ic for d, ic, _ in rows if ic is not None}
        skipped = {d: kind for d, ic, kind in rows if ic is None}
        series = pd.Series(values, dtype=float).sort_index()
        series.index = pd.DatetimeIndex(series.index)
        series.index.name = "date"
        series.name = f"ic_{horizon}"

        if series.empty:
            raise EmptyEvaluationWindow(
                f"no date had a valid IC at horizon {horizon} ({len(skipped)} skipped)"
            )

        result = summarize_ic(series, horizon=horizon, skipped=skipped)
        logger.info(
            "IC sweep %s h=%d: n=%d skipped=%d mean=%.4f ir=%.3f",
            getattr(self.signal, "name", "signal"),
            horizon,
            result.n_obs,
            len(skipped),
            result.mean_ic,
            result.ir,
        )
        return result
