"""Configuration for the quant research data layer."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _workspace_root() -> Path:
    # Assumes this file lives in {root}/quant_data/qconfig.py
    return Path(__file__).resolve().parent.parent


@dataclass(frozen=True)
class QuantDataSettings:
    """Settings for the price store used by research scripts.

    Env vars:
      - PRICES_PATH: CSV or Parquet file of close prices (default: {repo}/data/prices.csv)
      - PRICES_FORMAT: "wide" (date x symbol) or "long" (date, symbol, close) (default: wide)
      - PRICES_DATE_COLUMN: name of the date column (default: date)
    """

    prices_path: Path
    prices_format: str = "wide"
    date_column: str = "date"

    @classmethod
    def from_env(cls) -> "QuantDataSettings":
        root = _workspace_root()
        prices_path = Path(os.getenv("PRICES_PATH", str(root / "data" / "prices.csv"))).expanduser()
        prices_format = os.getenv("PRICES_FORMAT", "wide").lower()
        if prices_format not in ("wide", "long"):
            raise ValueError(f"PRICES_FORMAT must be 'wide' or 'long', got {prices_format!r}")
        date_column = os.getenv("PRICES_DATE_COLUMN", "date")
        return cls(prices_path=prices_path, prices_format=prices_format, date_column=date_column)
