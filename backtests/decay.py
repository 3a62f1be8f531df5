"""Signal decay: IC measured across increasing forecast horizons."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from backtests.core import Universe
from backtests.errors import EmptyEvaluationWindow
from backtests.ic import ICAnalysis, ICAnalyzer
from backtests.parallel import check_cancelled, map_ordered

logger = logging.getLogger(__name__)

STANDARD_HORIZONS = (1, 5, 21, 63, 126, 252)
SHORT_TERM_HORIZONS = (1, 2, 3, 5, 10)
LONG_TERM_HORIZONS = (21, 42, 63, 126, 252)


@dataclass(frozen=True)
class DecayAnalysis:
    curve: Dict[int, ICAnalysis]
    half_life: Optional[int]  # None -> not observed within the horizon set
    half_life_interpolated: Optional[float]
    peak_horizon: int
    peak_ic: float
    is_monotonic: bool
    skipped_horizons: Tuple[int, ...] = field(default_factory=tuple)

    @property
    def horizons(self) -> List[int]:
        return sorted(self.curve)

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "horizon": h,
                "mean_ic": a.mean_ic,
                "std_ic": a.std_ic,
                "ir": a.ir,
                "hit_rate": a.hit_rate,
                "std_error": a.std_error,
                "n_obs": a.n_obs,
            }
            for h, a in sorted(self.curve.items())
        ]
        return pd.DataFrame(rows).set_index("horizon")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "half_life": self.half_life,
            "half_life_interpolated": self.half_life_interpolated,
            "peak_horizon": self.peak_horizon,
            "peak_ic": self.peak_ic,
            "is_monotonic": self.is_monotonic,
            "skipped_horizons": list(self.skipped_horizons),
            "curve": {str(h): a.to_dict() for h, a in sorted(self.curve.items())},
        }


def validate_horizons(horizons: Iterable[int]) -> List[int]:
    hs = [int(h) for h in horizons]
    if not hs:
        raise ValueError("at least one horizon is required")
    if any(h < 1 for h in hs):
        raise ValueError("horizons must be positive")
    if any(b <= a for a, b in zip(hs, hs[1:])):
        raise ValueError("horizons must be strictly increasing")
    return hs


def half_life(mean_ics: Dict[int, float]) -> Optional[int]:
    """Smallest horizon where |mean IC| falls below half its shortest-horizon value."""
    hs = sorted(mean_ics)
    if not hs:
        return None
    threshold = abs(mean_ics[hs[0]]) / 2.0
    for h in hs[1:]:
        if abs(mean_ics[h]) < threshold:
            return h
    return None


def interpolated_half_life(mean_ics: Dict[int, float]) -> Optional[float]:
    """Linear interpolation of the half-life between bracketing horizons."""
    hs = sorted(mean_ics)
    if not hs:
        return None
    threshold = abs(mean_ics[hs[0]]) / 2.0
    for h1, h2 in zip(hs, hs[1:]):
        ic1, ic2 = abs(mean_ics[h1]), abs(mean_ics[h2])
        if ic1 >= threshold and ic2 < threshold:
            w = (ic1 - threshold) / (ic1 - ic2)
            return float(h1 + w * (h2 - h1))
    return None


def summarize_decay(curve: Dict[int, ICAnalysis], skipped: Sequence[int] = ()) -> DecayAnalysis:
    if not curve:
        raise EmptyEvaluationWindow("no horizon produced a valid IC series")
    mean_ics = {h: a.mean_ic for h, a in curve.items()}
    hs = sorted(mean_ics)
    peak = max(hs, key=lambda h: abs(mean_ics[h]))
    monotonic = all(abs(mean_ics[a]) >= abs(mean_ics[b]) for a, b in zip(hs, hs[1:]))
    return DecayAnalysis(
        curve=dict(sorted(curve.items())),
        half_life=half_life(mean_ics),
        half_life_interpolated=interpolated_half_life(mean_ics),
        peak_horizon=peak,
        peak_ic=mean_ics[peak],
        is_monotonic=monotonic,
        skipped_horizons=tuple(skipped),
    )


class DecayAnalyzer:
    """Repeat the IC sweep for each horizon to build a decay curve."""

    def __init__(self, ic_analyzer: ICAnalyzer, *, max_workers: int = 1):
        self.ic_analyzer = ic_analyzer
        self.max_workers = max_workers

    def analyze(
        self,
        dates_for_horizon,
        horizons: Iterable[int] = STANDARD_HORIZONS,
        *,
        universe: Optional[Universe] = None,
        default_universe: Sequence[str] = (),
        cancel_event: Optional[threading.Event] = None,
    ) -> DecayAnalysis:
        """Build the decay curve.

        Args:
            dates_for_horizon: evaluation dates, either a fixed sequence or a
                callable ``horizon -> dates`` so longer horizons can drop dates
                without enough forward data
            horizons: strictly increasing forecast horizons
        """
        hs = validate_horizons(horizons)

        def _one(h: int) -> Tuple[int, Optional[ICAnalysis]]:
            check_cancelled(cancel_event, where=f"decay sweep (horizon={h})")
            dates = dates_for_horizon(h) if callable(dates_for_horizon) else dates_for_horizon
            try:
                return h, self.ic_analyzer.analyze(
                    dates,
                    h,
                    universe=universe,
                    default_universe=default_universe,
                    cancel_event=cancel_event,
                )
            except EmptyEvaluationWindow as e:
                logger.debug("Decay horizon %d has no valid IC: %s", h, e)
                return h, None

        rows = map_ordered(_one, hs, max_workers=self.max_workers, cancel_event=cancel_event, where="decay sweep")
        curve = {h: a for h, a in rows if a is not None}
        skipped = [h for h, a in rows if a is None]
        if skipped:
            logger.warning("Decay horizons without data: %s", skipped)
        result = summarize_decay(curve, skipped)
        logger.info(
            "Decay %s: horizons=%s half_life=%s peak=%d",
            getattr(self.ic_analyzer.signal, "name", "signal"),
            result.horizons,
            result.half_life if result.half_life is not None else "not observed",
            result.peak_horizon,
        )
        return result
