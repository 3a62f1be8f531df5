"""Error taxonomy for signal evaluation and backtesting.

Every error carries the offending date and symbol set (when known) so the
report layer can surface exactly what failed instead of a generic message.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional, Tuple

import pandas as pd


class EvaluationError(Exception):
    """Base class for all evaluation/backtest failures."""

    kind: str = "evaluation_error"

    def __init__(
        self,
        detail: str = "",
        *,
        date: Optional[Any] = None,
        symbols: Optional[Iterable[str]] = None,
    ):
        self.detail = detail
        self.date = pd.Timestamp(date) if date is not None else None
        self.symbols: Tuple[str, ...] = tuple(sorted(str(s) for s in symbols)) if symbols else ()
        super().__init__(self._render())

    def _render(self) -> str:
        parts = [self.detail or self.kind]
        if self.date is not None:
            parts.append(f"date={self.date.date().isoformat()}")
        if self.symbols:
            parts.append(f"symbols={','.join(self.symbols)}")
        return " | ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "detail": self.detail,
            "date": self.date.date().isoformat() if self.date is not None else None,
            "symbols": list(self.symbols),
        }


class InsufficientCrossSection(EvaluationError):
    kind = "insufficient_cross_section"


class DegenerateCrossSection(EvaluationError):
    kind = "degenerate_cross_section"


class EmptyEvaluationWindow(EvaluationError):
    kind = "empty_evaluation_window"


class NoDataForDate(EvaluationError):
    kind = "no_data_for_date"


class DataGap(EvaluationError):
    """A held symbol had no price on a mark-to-market date."""

    kind = "data_gap"


class IncompleteUniverseData(DataGap):
    kind = "incomplete_universe_data"


class EmptyReturnSeries(EvaluationError):
    kind = "empty_return_series"


class EvaluationCancelled(EvaluationError):
    kind = "cancelled"


class BacktestStateError(EvaluationError):
    kind = "invalid_state"


class InvalidSchedule(EvaluationError, ValueError):
    kind = "invalid_schedule"
