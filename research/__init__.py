"""Research workstation utilities for signal development and backtesting."""

from research.signals import (
    BaseSignal,
    CompositeSignal,
    LowVolatilitySignal,
    MeanReversionSignal,
    MomentumSignal,
    create_signal,
    describe_signals,
    get_signal,
    list_signals,
    register,
)

__all__ = [
    "BaseSignal",
    "CompositeSignal",
    "LowVolatilitySignal",
    "MeanReversionSignal",
    "MomentumSignal",
    "create_signal",
    "describe_signals",
    "get_signal",
    "list_signals",
    "register",
]
