#!/usr/bin/env python3
"""Signal research command line: list, score, evaluate, research, combine and backtest signals.

Examples:
    python -m research.experiments.run_signal_research --prices data/prices.csv signals
    python -m research.experiments.run_signal_research --prices data/prices.csv research mom_12m --analysis all
    python -m research.experiments.run_signal_research --prices data/prices.csv --format json backtest mean_reversion --cost-bps 10
    python -m research.experiments.run_signal_research --prices data/prices.csv combine mom_12m,low_volatility --method ic_weight --backtest
"""

from __future__ import annotations

import argparse
import json
import math
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from backtests.config import EvaluationSettings
from backtests.errors import EvaluationError
from backtests.evaluator import AnalysisType, EvaluationReport, SignalEvaluator
from backtests.logging_config import get_logger, setup_logging
from backtests.stats import standardize
from portfolio.blend import ICWeightedCombiner, get_combiner, list_combiners
from quant_data.qconfig import QuantDataSettings
from quant_data.store import PriceStore
from research.signals import AdaptiveCompositeSignal, CompositeSignal, create_signal, describe_signals

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_EVALUATION = 2


def _csv(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [v.strip() for v in value.split(",") if v.strip()]


def _jsonable(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {str(k): _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(v) for v in obj]
    if isinstance(obj, float) and not math.isfinite(obj):
        return None
    if isinstance(obj, pd.Timestamp):
        return obj.date().isoformat()
    return obj


def _fmt(x: Optional[float], spec: str = ".4f") -> str:
    if x is None or (isinstance(x, float) and math.isnan(x)):
        return "n/a"
    return format(x, spec)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def render_report(report: EvaluationReport) -> str:
    lines = [f"Signal:   {report.signal}", f"Analysis: {report.analysis.value}", f"Horizon:  {report.horizon}", ""]
    if report.ic is not None:
        ic = report.ic
        lines += [
            f"Information Coefficient (horizon = {ic.horizon})",
            f"  Mean IC:     {_fmt(ic.mean_ic)}",
            f"  IC Std Dev:  {_fmt(ic.std_ic)}",
            f"  IR:          {_fmt(ic.ir, '.3f')}",
            f"  Hit Rate:    {_fmt(ic.hit_rate * 100.0, '.2f')}%",
            f"  t-stat:      {_fmt(ic.t_stat, '.3f')}  (p={_fmt(ic.p_value)})",
            f"  Dates:       {ic.n_obs} used, {len(ic.skipped)} skipped",
            "",
        ]
    if report.decay is not None:
        dec = report.decay
        hl = str(dec.half_life) if dec.half_life is not None else "not observed"
        lines += ["Decay curve", f"  {'horizon':>8} {'mean_ic':>10} {'ir':>8} {'n':>5}"]
        for h, a in dec.curve.items():
            lines.append(f"  {h:>8} {_fmt(a.mean_ic):>10} {_fmt(a.ir, '.3f'):>8} {a.n_obs:>5}")
        lines += [
            f"  Half-life:   {hl}" + (f" (interpolated {_fmt(dec.half_life_interpolated, '.1f')})" if dec.half_life_interpolated else ""),
            f"  Peak:        horizon {dec.peak_horizon} (IC {_fmt(dec.peak_ic)})",
            f"  Monotonic:   {'yes' if dec.is_monotonic else 'no'}",
            "",
        ]
    if report.turnover is not None:
        t = report.turnover
        lines += [
            "Turnover",
            f"  Mean turnover:        {_fmt(t.mean_turnover)}",
            f"  Mean autocorrelation: {_fmt(float(t.autocorrelation.mean()))}",
            f"  Pairs:                {t.n_obs}",
            "",
        ]
    if report.backtest is not None:
        lines += render_backtest(report.backtest, report.performance).splitlines() + [""]
    for section, err in report.errors.items():
        lines.append(f"{section}: FAILED [{err['kind']}] {err['detail']}" + (f" (date={err['date']})" if err["date"] else ""))
    return "\n".join(lines).rstrip()


def render_backtest(result, perf) -> str:
    lines = [
        "Backtest",
        f"  Policy:        {result.metadata.get('policy', '')}",
        f"  Rebalances:    {result.n_rebalances}",
        f"  Final value:   {result.final_value:,.2f} (initial {result.initial_capital:,.2f})",
        f"  Total costs:   {result.total_costs:,.2f}",
        f"  Mean turnover: {_fmt(result.mean_turnover)}",
    ]
    if result.data_gaps:
        lines.append(f"  Data gaps:     {len(result.data_gaps)} carried-forward prices")
    if perf is not None:
        lines += [
            f"  Total return:  {_fmt(perf.total_return * 100.0, '.2f')}%",
            f"  Ann. return:   {_fmt(perf.annualized_return * 100.0, '.2f')}%",
            f"  Ann. vol:      {_fmt(perf.annualized_volatility * 100.0, '.2f')}%",
            f"  Sharpe:        {_fmt(perf.sharpe_ratio, '.2f')}",
            f"  Max drawdown:  {_fmt(perf.max_drawdown * 100.0, '.2f')}%",
            f"  Win rate:      {_fmt(perf.win_rate * 100.0, '.1f')}%",
        ]
    return "\n".join(lines)


def _emit(payload: Dict[str, Any], text: str, fmt: str) -> None:
    if fmt == "json":
        print(json.dumps(_jsonable(payload), indent=2, default=str))
    else:
        print(text)


def _track(experiment: Optional[str], params: Dict[str, Any], report: EvaluationReport) -> None:
    """Log the run's parameters and headline metrics to MLflow."""
    if not experiment:
        return
    import mlflow

    metrics: Dict[str, float] = {}
    if report.ic is not None:
        metrics.update(mean_ic=report.ic.mean_ic, ir=report.ic.ir, hit_rate=report.ic.hit_rate)
    if report.turnover is not None:
        metrics["signal_turnover"] = report.turnover.mean_turnover
    if report.performance is not None:
        p = report.performance
        metrics.update(total_return=p.total_return, sharpe=p.sharpe_ratio, max_drawdown=p.max_drawdown)
    mlflow.set_experiment(experiment)
    with mlflow.start_run(run_name=report.signal):
        mlflow.log_params({k: str(v) for k, v in params.items()})
        mlflow.log_metrics({k: float(v) for k, v in metrics.items() if math.isfinite(v)})


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _settings(args: argparse.Namespace) -> EvaluationSettings:
    settings = EvaluationSettings.load_from_yaml(Path(args.config) if args.config else None)
    overrides: Dict[str, Any] = {}
    for field in ("horizon", "top_k", "cost_bps", "max_workers"):
        value = getattr(args, field, None)
        if value is not None:
            overrides[field] = value
    for arg, field in (("policy", "position_policy"), ("rebalance", "rebalance_frequency"), ("frequency", "evaluation_frequency"), ("missing", "missing_data_policy")):
        value = getattr(args, arg, None)
        if value is not None:
            overrides[field] = value
    if not overrides:
        return settings
    return EvaluationSettings(**{**settings.model_dump(), **overrides})


def _store(args: argparse.Namespace) -> PriceStore:
    if args.prices:
        path = Path(args.prices)
        if path.suffix.lower() in (".parquet", ".pq"):
            return PriceStore.from_parquet(path, long=args.long)
        return PriceStore.from_csv(path, long=args.long)
    return PriceStore.from_settings(QuantDataSettings.from_env())


def cmd_signals(args: argparse.Namespace) -> int:
    rows = describe_signals()
    text = "\n".join(
        [f"{'name':<22} {'lookback':>8}  description"]
        + [f"{r['name']:<22} {r['lookback']:>8}  {r['description']}" + (f" (aliases: {', '.join(r['aliases'])})" if r["aliases"] else "") for r in rows]
    )
    _emit({"signals": rows}, text, args.format)
    return EXIT_OK


def cmd_score(args: argparse.Namespace) -> int:
    store = _store(args)
    signal = create_signal(args.signal, store)
    universe = _csv(args.universe) or store.symbols
    date = pd.Timestamp(args.date) if args.date else store.calendar[-1]
    scores = signal.score(universe, date)
    if not args.raw:
        scores = standardize(scores, date=date)
    scores = scores.sort_values(ascending=False)
    text = "\n".join([f"Scores for {signal.name} as of {date.date()}", f"{'Symbol':<10} {'Score':>10}"] + [f"{s:<10} {_fmt(v):>10}" for s, v in scores.items()])
    _emit({"signal": signal.name, "date": date, "scores": {s: float(v) for s, v in scores.items()}}, text, args.format)
    return EXIT_OK


def _evaluate(args: argparse.Namespace, analysis: AnalysisType) -> int:
    store = _store(args)
    settings = _settings(args)
    signal = create_signal(args.signal, store)
    report = SignalEvaluator(store, settings).evaluate(
        signal,
        analysis,
        universe=_csv(args.universe),
        start=args.start,
        end=args.end,
    )
    _emit(report.to_dict(), render_report(report), args.format)
    _track(args.track, {"signal": signal.name, "analysis": analysis.value, **settings.model_dump(mode="json")}, report)
    return EXIT_OK if report.ok else EXIT_EVALUATION


def cmd_eval(args: argparse.Namespace) -> int:
    return _evaluate(args, AnalysisType.IC)


def cmd_research(args: argparse.Namespace) -> int:
    return _evaluate(args, AnalysisType(args.analysis))


def cmd_backtest(args: argparse.Namespace) -> int:
    return _evaluate(args, AnalysisType.BACKTEST)


def cmd_combine(args: argparse.Namespace) -> int:
    store = _store(args)
    settings = _settings(args)
    names = _csv(args.signals) or []
    if len(names) < 2:
        raise ValueError("combine needs at least two signals, e.g. mom_12m,low_volatility")
    signals = [create_signal(n, store) for n in names]
    combiner = get_combiner(args.method)
    universe = _csv(args.universe)

    if isinstance(combiner, ICWeightedCombiner):
        # weights at each date come only from ICs whose forward window has closed
        composite: CompositeSignal = AdaptiveCompositeSignal(signals, combiner, ic_horizon=settings.horizon)
    else:
        composite = CompositeSignal(signals, combiner)

    if args.backtest:
        report = SignalEvaluator(store, settings).evaluate(
            composite, AnalysisType.BACKTEST, universe=universe, start=args.start, end=args.end
        )
        _emit(report.to_dict(), render_report(report), args.format)
        _track(args.track, {"signal": composite.name, "method": combiner.name}, report)
        return EXIT_OK

    date = pd.Timestamp(args.date) if args.date else store.calendar[-1]
    symbols = universe or store.symbols
    if isinstance(composite, AdaptiveCompositeSignal):
        weights = composite.weights_at(symbols, date)
    else:
        weights = combiner.weights([s.name for s in signals])
    logger.info("Combiner weights as of %s: %s", date.date(), weights)
    scores = composite.score(symbols, date).sort_values(ascending=False)
    text = "\n".join(
        [f"Combined scores ({combiner.name}) as of {date.date()}", "Weights: " + ", ".join(f"{n}={w:.3f}" for n, w in weights.items()), f"{'Symbol':<10} {'Score':>10}"]
        + [f"{s:<10} {_fmt(v):>10}" for s, v in scores.items()]
    )
    _emit(
        {"composite": composite.name, "date": date, "weights": weights, "scores": {s: float(v) for s, v in scores.items()}},
        text,
        args.format,
    )
    return EXIT_OK


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Alpha signal research and backtesting")
    p.add_argument("--prices", help="CSV/Parquet close prices (default: $PRICES_PATH)")
    p.add_argument("--long", action="store_true", help="Price file is long format (date, symbol, close)")
    p.add_argument("--config", help="YAML file with evaluation settings")
    p.add_argument("--format", choices=("text", "json"), default="text")
    p.add_argument("--log-level", default="WARNING")
    p.add_argument("--log-json", action="store_true", help="Emit log records as JSON lines on stderr")
    p.add_argument("--log-file", help="Also write log records to this file")
    p.add_argument("--track", metavar="EXPERIMENT", help="Log params and metrics to this MLflow experiment")
    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("signals", help="List available signals")
    sp.set_defaults(func=cmd_signals)

    def _window(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--universe", help="Comma-separated symbols (default: all)")
        sp.add_argument("--start", help="Start date (YYYY-MM-DD)")
        sp.add_argument("--end", help="End date (YYYY-MM-DD)")

    def _portfolio(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--policy", choices=("long_only_top_k", "long_short_equal_weight", "score_proportional"))
        sp.add_argument("--top-k", dest="top_k", type=int)
        sp.add_argument("--cost-bps", dest="cost_bps", type=float)
        sp.add_argument("--rebalance", choices=("daily", "weekly", "monthly", "quarterly"))
        sp.add_argument("--missing", choices=("fail_fast", "carry_forward"))

    sp = sub.add_parser("score", help="Show signal scores for symbols at a date")
    sp.add_argument("signal")
    sp.add_argument("--universe")
    sp.add_argument("--date", help="Date (YYYY-MM-DD, default: latest)")
    sp.add_argument("--raw", action="store_true", help="Raw scores instead of standardized")
    sp.set_defaults(func=cmd_score)

    sp = sub.add_parser("eval", help="IC / IR of a signal at one horizon")
    sp.add_argument("signal")
    sp.add_argument("-H", "--horizon", type=int)
    sp.add_argument("--frequency", choices=("daily", "weekly", "monthly", "quarterly"))
    _window(sp)
    sp.set_defaults(func=cmd_eval)

    sp = sub.add_parser("research", help="IC analysis, decay curve and turnover")
    sp.add_argument("signal")
    sp.add_argument("-a", "--analysis", choices=[a.value for a in AnalysisType], default="all")
    sp.add_argument("-H", "--horizon", type=int)
    sp.add_argument("--frequency", choices=("daily", "weekly", "monthly", "quarterly"))
    sp.add_argument("--max-workers", dest="max_workers", type=int)
    _window(sp)
    _portfolio(sp)
    sp.set_defaults(func=cmd_research)

    sp = sub.add_parser("backtest", help="Backtest a signal")
    sp.add_argument("signal")
    _window(sp)
    _portfolio(sp)
    sp.set_defaults(func=cmd_backtest)

    sp = sub.add_parser("combine", help="Combine multiple signals")
    sp.add_argument("signals", help="Comma-separated signal names")
    sp.add_argument("-m", "--method", default="equal_weight", help=f"One of: {', '.join(list_combiners())}")
    sp.add_argument("--date", help="Score date (default: latest)")
    sp.add_argument("--backtest", action="store_true", help="Backtest the composite instead of printing scores")
    sp.add_argument("-H", "--horizon", type=int)
    _window(sp)
    _portfolio(sp)
    sp.set_defaults(func=cmd_combine)
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(log_level=args.log_level, use_json=args.log_json, log_file=args.log_file)
    try:
        return args.func(args)
    except EvaluationError as e:
        if args.format == "json":
            print(json.dumps({"error": e.to_dict()}, indent=2))
        parts = [f"error [{e.kind}]: {e.detail or e.kind}"]
        if e.date is not None:
            parts.append(f"date={e.date.date().isoformat()}")
        if e.symbols:
            parts.append(f"symbols={','.join(e.symbols)}")
        print(" ".join(parts), file=sys.stderr)
        return EXIT_EVALUATION
    except (KeyError, ValueError, FileNotFoundError) as e:
        msg = e.args[0] if e.args else str(e)
        print(f"error: {msg}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":
    raise SystemExit(main())
