"""Tests for the signal research command line."""
import json
import logging

import numpy as np
import pytest

from backtests.logging_config import JSONFormatter
from research.experiments.run_signal_research import EXIT_EVALUATION, EXIT_OK, EXIT_USAGE, main


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def prices_csv(price_panel, tmp_path):
    path = tmp_path / "prices.csv"
    price_panel.to_csv(path, index_label="date")
    return str(path)


@pytest.fixture
def short_prices_csv(price_panel, tmp_path):
    """Fewer rows than the 12-month momentum lookback."""
    path = tmp_path / "short.csv"
    price_panel.iloc[:200].to_csv(path, index_label="date")
    return str(path)


class TestCli:
    """End-to-end command line runs over a CSV price file."""

    def test_signals(self, capsys):
        """Lists registered signals with aliases."""
        assert main(["signals"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "short_term_momentum" in out
        assert "mom_1m" in out

    def test_signals_json(self, capsys):
        """JSON listing parses."""
        assert main(["--format", "json", "signals"]) == EXIT_OK
        payload = json.loads(capsys.readouterr().out)
        assert any(s["name"] == "low_volatility" for s in payload["signals"])

    def test_score(self, prices_csv, capsys):
        """Scores every symbol at the latest date."""
        assert main(["--prices", prices_csv, "--format", "json", "score", "mom_1m"]) == EXIT_OK
        payload = json.loads(capsys.readouterr().out)
        assert payload["signal"] == "short_term_momentum"
        assert len(payload["scores"]) == 8

    def test_eval(self, prices_csv, capsys):
        """IC report in text form."""
        assert main(["--prices", prices_csv, "eval", "mom_1m", "-H", "5", "--frequency", "weekly"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "Information Coefficient (horizon = 5)" in out
        assert "Mean IC:" in out

    def test_backtest_json(self, prices_csv, capsys):
        """Backtest JSON carries final value and performance."""
        code = main(["--prices", prices_csv, "--format", "json", "backtest", "mom_1m", "--top-k", "3", "--cost-bps", "5"])
        assert code == EXIT_OK
        payload = json.loads(capsys.readouterr().out)
        assert payload["backtest"]["n_rebalances"] > 0
        assert payload["backtest"]["metadata"]["cost_bps"] == "5.0"
        assert "sharpe_ratio" in payload["performance"]

    def test_combine(self, prices_csv, capsys):
        """Composite scores with IC-seeded weights."""
        code = main(
            ["--prices", prices_csv, "--format", "json", "combine", "mom_1m,low_volatility", "-m", "ic", "-H", "5"]
        )
        assert code == EXIT_OK
        payload = json.loads(capsys.readouterr().out)
        assert set(payload["weights"]) == {"short_term_momentum", "low_volatility"}
        assert sum(payload["weights"].values()) == pytest.approx(1.0)

    def test_unknown_signal(self, prices_csv, capsys):
        """Unknown signal names are usage errors."""
        assert main(["--prices", prices_csv, "score", "nope"]) == EXIT_USAGE
        assert "Unknown signal" in capsys.readouterr().err

    def test_missing_prices_file(self, tmp_path, capsys):
        """A missing price file is a usage error."""
        assert main(["--prices", str(tmp_path / "none.csv"), "score", "mom_1m"]) == EXIT_USAGE

    def test_evaluation_error(self, short_prices_csv, capsys):
        """A signal with no valid dates exits 2 and names the error kind."""
        assert main(["--prices", short_prices_csv, "eval", "mom_12m"]) == EXIT_EVALUATION
        assert "empty_evaluation_window" in capsys.readouterr().err

    def test_research_partial_failure(self, short_prices_csv, capsys):
        """Section failures are reported and the exit code flags them."""
        assert main(["--prices", short_prices_csv, "research", "mom_12m"]) == EXIT_EVALUATION
        out = capsys.readouterr().out
        assert "ic: FAILED [empty_evaluation_window]" in out

    def test_combine_backtest_ic_weighted(self, prices_csv, capsys):
        """IC-weighted composites backtest with weights learned as the run advances."""
        code = main(
            ["--prices", prices_csv, "--format", "json", "combine", "mom_1m,low_volatility", "-m", "ic", "-H", "5", "--backtest"]
        )
        assert code == EXIT_OK
        payload = json.loads(capsys.readouterr().out)
        assert payload["backtest"]["n_rebalances"] > 0

    def test_combine_weights_use_realized_ics_only(self, price_panel, tmp_path, capsys):
        """Weights at a date do not change when prices after it are rewritten."""
        date = price_panel.index[150]
        shocked = price_panel.copy()
        shocked.iloc[151:] *= np.random.RandomState(3).uniform(0.5, 1.5, size=shocked.iloc[151:].shape)

        weights = []
        for name, panel in (("plain.csv", price_panel), ("shocked.csv", shocked)):
            path = tmp_path / name
            panel.to_csv(path, index_label="date")
            args = ["--prices", str(path), "--format", "json", "combine", "mom_1m,low_volatility", "-m", "ic", "-H", "5"]
            assert main(args + ["--date", str(date.date())]) == EXIT_OK
            weights.append(json.loads(capsys.readouterr().out)["weights"])

        assert weights[0] == pytest.approx(weights[1])


class TestLogging:
    """Log output configured from the command line."""

    def test_log_json(self):
        """--log-json installs the JSON formatter on the stderr handler."""
        assert main(["--log-json", "signals"]) == EXIT_OK
        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert isinstance(handlers[0].formatter, JSONFormatter)

    def test_plain_by_default(self):
        """Without --log-json records are plain text."""
        assert main(["signals"]) == EXIT_OK
        assert not isinstance(logging.getLogger().handlers[0].formatter, JSONFormatter)

    def test_log_file(self, prices_csv, tmp_path, capsys):
        """--log-file mirrors records into a file."""
        log_path = tmp_path / "run.log"
        args = ["--prices", prices_csv, "--log-level", "INFO", "--log-json", "--log-file", str(log_path)]
        assert main(args + ["combine", "mom_1m,low_volatility", "-m", "ic", "-H", "5"]) == EXIT_OK
        for h in logging.getLogger().handlers:
            h.close()

        records = [json.loads(line) for line in log_path.read_text().splitlines()]
        assert any("Combiner weights" in r["message"] for r in records)

    def test_json_formatter_extra_fields(self):
        """Fields passed via extra= land in the JSON record."""
        record = logging.LogRecord("research", logging.WARNING, __file__, 1, "IC for %s", ("mom",), None)
        record.horizon = 21
        payload = json.loads(JSONFormatter().format(record))

        assert payload["message"] == "IC for mom"
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "research"
        assert payload["horizon"] == 21
