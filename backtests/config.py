"""Configuration for signal evaluation and backtests."""

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from backtests.core import LinearCostModel
from backtests.engine import BacktestConfig, MissingDataPolicy
from backtests.schedule import Frequency
from portfolio.construction import PositionConstruction, PositionPolicy


class EvaluationSettings(BaseSettings):
    """Evaluation parameters. Values come from EVAL_* env vars or a YAML file."""

    horizon: int = Field(default=21, ge=1, description="Forward-return horizon in trading periods")
    evaluation_frequency: Frequency = Field(default=Frequency.MONTHLY, description="IC / turnover sampling frequency")
    rebalance_frequency: Frequency = Field(default=Frequency.MONTHLY, description="Backtest rebalance frequency")
    decay_horizons: List[int] = Field(
        default_factory=lambda: [1, 5, 21, 63, 126, 252],
        description="Horizons for the decay curve",
    )
    position_policy: PositionPolicy = Field(default=PositionPolicy.LONG_ONLY_TOP_K)
    top_k: Optional[int] = Field(default=10, ge=1, description="Names per side; null for all/half the universe")
    score_threshold: float = Field(default=0.0, ge=0.0, description="score_proportional: ignore |z| below this")
    gross_exposure: float = Field(default=1.0, gt=0.0)
    cost_bps: float = Field(default=0.0, ge=0.0, description="Linear transaction cost in basis points")
    risk_free_rate: float = Field(default=0.0, description="Annual risk-free rate for the Sharpe ratio")
    missing_data_policy: MissingDataPolicy = Field(default=MissingDataPolicy.FAIL_FAST)
    initial_capital: float = Field(default=1_000_000.0, gt=0.0)
    periods_per_year: Optional[int] = Field(default=None, ge=1, description="None infers from the return index")
    warmup_periods: int = Field(default=0, ge=0, description="Extra rows skipped on top of the signal lookback")
    max_workers: int = Field(default=1, ge=1, description="Thread pool size for date/horizon sweeps")

    class Config:
        env_prefix = "EVAL_"
        extra = "forbid"

    @field_validator("decay_horizons")
    @classmethod
    def _check_horizons(cls, v: List[int]) -> List[int]:
        if not v:
            raise ValueError("decay_horizons must not be empty")
        if any(h < 1 for h in v):
            raise ValueError("decay_horizons must be positive")
        if any(b <= a for a, b in zip(v, v[1:])):
            raise ValueError("decay_horizons must be strictly increasing")
        return v

    @classmethod
    def load_from_yaml(cls, config_path: Optional[Path] = None) -> "EvaluationSettings":
        """Load settings from a YAML file; env vars still fill unspecified fields."""
        if config_path is None:
            return cls()
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"config file not found: {config_path}")

        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
        if not isinstance(config_data, dict):
            raise ValueError(f"{config_path}: expected a mapping at the top level")
        return cls(**config_data)

    def construction(self) -> PositionConstruction:
        return PositionConstruction(
            policy=self.position_policy,
            k=self.top_k,
            threshold=self.score_threshold,
            gross_exposure=self.gross_exposure,
        )

    def backtest_config(self, extra_warmup: int = 0) -> BacktestConfig:
        return BacktestConfig(
            construction=self.construction(),
            cost_model=LinearCostModel(cost_bps=self.cost_bps),
            missing_data_policy=self.missing_data_policy,
            initial_capital=self.initial_capital,
            warmup_periods=self.warmup_periods + max(int(extra_warmup), 0),
        )
