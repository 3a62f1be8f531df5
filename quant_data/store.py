"""Read-only price store used by signals, forward returns and the backtest.

Prices are held as a wide frame: DatetimeIndex (trading calendar) x symbol
columns of close prices. Missing observations stay NaN; nothing is filled.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from backtests.core import to_timestamp
from backtests.errors import NoDataForDate
from quant_data.qconfig import QuantDataSettings


def _normalize_wide(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    out.index = pd.DatetimeIndex([to_timestamp(d) for d in out.index], name="date")
    out.columns = [str(c) for c in out.columns]
    out = out.apply(pd.to_numeric, errors="coerce").astype(float)
    out = out.replace([np.inf, -np.inf], np.nan)
    out = out[~out.index.duplicated(keep="last")]
    return out.sort_index()


class PriceStore:
    """Wide close-price panel with point-in-time accessors."""

    def __init__(self, prices: pd.DataFrame, name: str = "prices"):
        self._prices = _normalize_wide(prices)
        self.name = name

    # -- constructors ------------------------------------------------------

    @classmethod
    def from_frame(cls, prices: pd.DataFrame, name: str = "prices") -> "PriceStore":
        return cls(prices, name=name)

    @classmethod
    def from_long_frame(
        cls,
        df: pd.DataFrame,
        *,
        date_column: str = "date",
        symbol_column: str = "symbol",
        value_column: str = "close",
        name: str = "prices",
    ) -> "PriceStore":
        """Build from (date, symbol, close) rows, e.g. the output of a bars connector."""
        missing = [c for c in (date_column, symbol_column, value_column) if c not in df.columns]
        if missing:
            raise ValueError(f"long price frame missing columns: {missing}")
        d = df[[date_column, symbol_column, value_column]].copy()
        d[date_column] = pd.to_datetime(d[date_column])
        wide = d.pivot_table(index=date_column, columns=symbol_column, values=value_column, aggfunc="last")
        return cls(wide, name=name)

    @classmethod
    def from_csv(cls, path: Union[str, Path], *, date_column: str = "date", long: bool = False) -> "PriceStore":
        df = pd.read_csv(path)
        return cls._from_table(df, Path(path), date_column=date_column, long=long)

    @classmethod
    def from_parquet(cls, path: Union[str, Path], *, date_column: str = "date", long: bool = False) -> "PriceStore":
        df = pd.read_parquet(path)
        return cls._from_table(df, Path(path), date_column=date_column, long=long)

    @classmethod
    def from_settings(cls, settings: Optional[QuantDataSettings] = None) -> "PriceStore":
        s = settings or QuantDataSettings.from_env()
        long = s.prices_format == "long"
        if s.prices_path.suffix.lower() in (".parquet", ".pq"):
            return cls.from_parquet(s.prices_path, date_column=s.date_column, long=long)
        return cls.from_csv(s.prices_path, date_column=s.date_column, long=long)

    @classmethod
    def _from_table(cls, df: pd.DataFrame, path: Path, *, date_column: str, long: bool) -> "PriceStore":
        if long:
            return cls.from_long_frame(df, date_column=date_column, name=path.stem)
        if date_column in df.columns:
            df = df.set_index(date_column)
        elif isinstance(df.index, pd.RangeIndex):
            raise ValueError(f"{path}: no '{date_column}' column in wide price file")
        return cls(df, name=path.stem)

    # -- accessors ---------------------------------------------------------

    @property
    def calendar(self) -> pd.DatetimeIndex:
        return self._prices.index

    @property
    def symbols(self) -> List[str]:
        return list(self._prices.columns)

    def __len__(self) -> int:
        return len(self._prices)

    def __repr__(self) -> str:
        if self._prices.empty:
            return f"PriceStore({self.name!r}, empty)"
        return (
            f"PriceStore({self.name!r}, {len(self.symbols)} symbols, "
            f"{self.calendar[0].date()}..{self.calendar[-1].date()})"
        )

    def to_frame(self) -> pd.DataFrame:
        return self._prices.copy()

    def slice(self, start: Optional[Any] = None, end: Optional[Any] = None) -> "PriceStore":
        p = self._prices
        if start is not None:
            p = p[p.index >= to_timestamp(start)]
        if end is not None:
            p = p[p.index <= to_timestamp(end)]
        return PriceStore(p, name=self.name)

    def position(self, date: Any) -> int:
        """Row number of ``date`` on the calendar; NoDataForDate if it is not a trading day."""
        d = to_timestamp(date)
        try:
            loc = self._prices.index.get_loc(d)
        except KeyError:
            raise NoDataForDate("date is not on the price calendar", date=d) from None
        return int(loc)

    def _columns(self, symbols: Optional[Iterable[str]]) -> List[str]:
        return self.symbols if symbols is None else [str(s) for s in symbols]

    def history(self, end: Any, symbols: Optional[Iterable[str]] = None, lookback: Optional[int] = None) -> pd.DataFrame:
        """Prices up to and including ``end`` (no look-ahead)."""
        d = to_timestamp(end)
        p = self._prices[self._prices.index <= d]
        if p.empty:
            raise NoDataForDate("no price history on or before date", date=d)
        if lookback is not None:
            p = p.iloc[-(lookback + 1):]
        return p.reindex(columns=self._columns(symbols))

    def prices_on(self, date: Any, symbols: Optional[Iterable[str]] = None) -> pd.Series:
        i = self.position(date)
        row = self._prices.iloc[i].reindex(self._columns(symbols))
        row.name = self.calendar[i]
        return row

    def forward_return(self, universe: Sequence[str], date: Any, horizon: int) -> pd.Series:
        """Simple return from the close at ``date`` to the close ``horizon`` rows later."""
        if horizon < 1:
            raise ValueError("horizon must be >= 1")
        i = self.position(date)
        j = i + int(horizon)
        if j >= len(self._prices):
            raise NoDataForDate(f"forward window of {horizon} periods runs past the end of the data", date=date)
        cols = self._columns(universe)
        p0 = self._prices.iloc[i].reindex(cols)
        p1 = self._prices.iloc[j].reindex(cols)
        p0 = p0.where(p0 > 0)
        out = p1 / p0 - 1.0
        out.name = f"fwd_{horizon}"
        return out

    def last_forward_date(self, horizon: int) -> Optional[pd.Timestamp]:
        """Latest date that still has ``horizon`` rows of future prices."""
        if len(self._prices) <= horizon:
            return None
        return self.calendar[-1 - int(horizon)]
