"""Unit tests for the signal registry and built-in signals."""
import pytest
import pandas as pd
import numpy as np

from backtests.errors import NoDataForDate
from portfolio.blend import EqualWeightCombiner, ICWeightedCombiner
from quant_data.store import PriceStore
from research.signals import (
    AdaptiveCompositeSignal,
    CompositeSignal,
    LowVolatilitySignal,
    MeanReversionSignal,
    MomentumSignal,
    create_signal,
    describe_signals,
    get_signal,
    list_signals,
    resolve_name,
)


@pytest.fixture
def trend_store():
    """A rises linearly, B falls linearly, C is flat."""
    dates = pd.bdate_range("2023-01-02", periods=120)
    t = np.arange(len(dates), dtype=float)
    return PriceStore(
        pd.DataFrame({"A": 100.0 + t, "B": 300.0 - t, "C": 100.0}, index=dates),
        name="trend",
    )


class TestMomentumSignal:
    """Tests for MomentumSignal."""

    def test_value(self, store, price_panel):
        """Return over the lookback window ending at the date."""
        signal = MomentumSignal(21, 0, store=store)
        d = price_panel.index[100]
        s = signal.score(["AAA", "BBB"], d)

        expected = price_panel.iloc[100] / price_panel.iloc[79] - 1.0
        assert s["AAA"] == pytest.approx(expected["AAA"])
        assert s["BBB"] == pytest.approx(expected["BBB"])

    def test_skip(self, store, price_panel):
        """Skip excludes the most recent periods."""
        signal = MomentumSignal(10, 2, store=store)
        s = signal.score(["CCC"], price_panel.index[50])

        expected = price_panel["CCC"].iloc[48] / price_panel["CCC"].iloc[40] - 1.0
        assert s["CCC"] == pytest.approx(expected)

    def test_no_look_ahead(self, store, price_panel):
        """Changing future prices does not change today's score."""
        d = price_panel.index[100]
        before = MomentumSignal(21, 0, store=store).score(["AAA"], d)

        shocked = price_panel.copy()
        shocked.iloc[101:] *= 3.0
        after = MomentumSignal(21, 0, store=PriceStore(shocked)).score(["AAA"], d)
        assert after["AAA"] == pytest.approx(before["AAA"])

    def test_insufficient_history(self, store, price_panel):
        """Dates inside the lookback window have no score."""
        with pytest.raises(NoDataForDate):
            MomentumSignal(21, 0, store=store).score(["AAA"], price_panel.index[20])

    def test_non_trading_date(self, store):
        """Dates off the calendar have no score."""
        with pytest.raises(NoDataForDate):
            MomentumSignal(21, 0, store=store).score(["AAA"], "2022-06-04")

    def test_unknown_symbol_is_missing(self, store, price_panel):
        """Symbols without prices come back NaN, not dropped."""
        s = MomentumSignal(21, 0, store=store).score(["AAA", "ZZZ"], price_panel.index[100])
        assert list(s.index) == ["AAA", "ZZZ"]
        assert np.isnan(s["ZZZ"])

    def test_unbound(self):
        """Scoring without a store is a usage error."""
        with pytest.raises(RuntimeError):
            MomentumSignal(21, 0).score(["AAA"], "2022-06-01")

    def test_invalid_skip(self):
        """Skip must be shorter than the lookback."""
        with pytest.raises(ValueError):
            MomentumSignal(10, 10)

    def test_default_name(self):
        """Name encodes lookback and skip."""
        assert MomentumSignal(63, 5).name == "momentum_63_5"


class TestMeanReversionSignal:
    """Tests for MeanReversionSignal."""

    def test_sign(self, trend_store):
        """Price above its moving average scores negative, below scores positive."""
        s = MeanReversionSignal(20, store=trend_store).score(["A", "B"], trend_store.calendar[-1])
        assert s["A"] < 0
        assert s["B"] > 0

    def test_flat_price_missing(self, trend_store):
        """Zero dispersion gives no score rather than inf."""
        s = MeanReversionSignal(20, store=trend_store).score(["C"], trend_store.calendar[-1])
        assert np.isnan(s["C"])


class TestLowVolatilitySignal:
    """Tests for LowVolatilitySignal."""

    def test_calm_beats_noisy(self):
        """The lower-volatility symbol has the higher score."""
        dates = pd.bdate_range("2023-01-02", periods=60)
        flip = np.where(np.arange(60) % 2 == 0, 1.0, -1.0)
        prices = pd.DataFrame(
            {"CALM": 100.0 * np.cumprod(1.0 + 0.005 * flip), "NOISY": 100.0 * np.cumprod(1.0 + 0.03 * flip)},
            index=dates,
        )
        signal = LowVolatilitySignal(20, store=PriceStore(prices))
        s = signal.score(["CALM", "NOISY"], dates[-1])
        assert s["CALM"] > s["NOISY"]
        assert s["NOISY"] < 0


class TestCompositeSignal:
    """Tests for CompositeSignal."""

    def test_score(self, store, price_panel):
        """Composite is a standardized blend over the universe."""
        composite = CompositeSignal(
            [MomentumSignal(21, 0), LowVolatilitySignal(21)], EqualWeightCombiner()
        ).bind(store)
        s = composite.score(store.symbols, price_panel.index[100])

        assert composite.lookback == 21
        assert composite.name == "equal_weight(momentum_21_0+low_volatility)"
        assert list(s.index) == store.symbols
        assert abs(s.mean()) < 1e-10

    def test_components(self, store, price_panel):
        """Each component is scored at the same date."""
        composite = CompositeSignal({"m": MomentumSignal(21, 0), "v": LowVolatilitySignal(63)}, EqualWeightCombiner())
        parts = composite.bind(store).component_scores(["AAA", "BBB"], price_panel.index[100])
        assert set(parts) == {"m", "v"}
        assert composite.lookback == 63

    def test_empty(self):
        """At least one component is required."""
        with pytest.raises(ValueError):
            CompositeSignal([], EqualWeightCombiner())


class TestAdaptiveCompositeSignal:
    """Tests for the composite that learns IC weights as dates advance."""

    def _composite(self):
        return AdaptiveCompositeSignal(
            [MomentumSignal(21, 0), LowVolatilitySignal(21)], ICWeightedCombiner(), ic_horizon=5
        )

    def _shocked_store(self, price_panel, after):
        shocked = price_panel.copy()
        rng = np.random.RandomState(7)
        shocked.iloc[after + 1:] *= rng.uniform(0.5, 1.5, size=shocked.iloc[after + 1:].shape)
        return PriceStore(shocked, name="shocked")

    def test_weights_ignore_later_prices(self, store, price_panel):
        """Rewriting every price after the date leaves weights and scores at that date unchanged."""
        date = price_panel.index[150]
        a = self._composite().bind(store)
        b = self._composite().bind(self._shocked_store(price_panel, 150))

        assert a.weights_at(store.symbols, date) == pytest.approx(b.weights_at(store.symbols, date))
        pd.testing.assert_series_equal(a.score(store.symbols, date), b.score(store.symbols, date))

    def test_later_dates_see_realized_ics(self, store, price_panel):
        """Once the changed prices are realized the weights diverge."""
        date = price_panel.index[250]
        a = self._composite().bind(store)
        b = self._composite().bind(self._shocked_store(price_panel, 150))

        assert a.weights_at(store.symbols, date) != pytest.approx(b.weights_at(store.symbols, date))

    def test_only_closed_windows_are_used(self, store, price_panel):
        """Samples every 5 rows from the lookback whose 5-row window ends by the date."""
        a = self._composite().bind(store)
        a.weights_at(store.symbols, price_panel.index[150])

        # rows 21, 26, ..., 141; row 146 would need prices at 151
        assert set(a.combiner.ic_history) == {"momentum_21_0", "low_volatility"}
        assert all(len(h) == 25 for h in a.combiner.ic_history.values())

    def test_earlier_date_rebuilds_history(self, store, price_panel):
        """Going back in time forgets ICs learned from later dates."""
        a = self._composite().bind(store)
        early = a.weights_at(store.symbols, price_panel.index[150])
        a.weights_at(store.symbols, price_panel.index[250])

        assert a.weights_at(store.symbols, price_panel.index[150]) == pytest.approx(early)

    def test_bind_starts_fresh(self, store, price_panel):
        """Bound copies do not share IC history with the template."""
        template = self._composite()
        template.bind(store).weights_at(store.symbols, price_panel.index[150])
        assert template.combiner.ic_history == {}

    def test_requires_ic_combiner(self):
        """Combiners that do not track IC are rejected."""
        with pytest.raises(TypeError):
            AdaptiveCompositeSignal([MomentumSignal(21, 0)], EqualWeightCombiner(), ic_horizon=5)


class TestRegistry:
    """Tests for the signal registry."""

    def test_defaults_registered(self):
        """Built-in signals are available by canonical name."""
        names = list_signals()
        for n in ("short_term_momentum", "medium_term_momentum", "long_term_momentum", "mean_reversion", "low_volatility"):
            assert n in names

    @pytest.mark.parametrize(
        "alias, canonical",
        [("mom_1m", "short_term_momentum"), ("momentum_6m", "medium_term_momentum"), ("mom_12m", "long_term_momentum")],
    )
    def test_aliases(self, alias, canonical):
        """Short aliases resolve to canonical names."""
        assert resolve_name(alias) == canonical
        assert get_signal(alias).name == canonical

    def test_lookbacks(self):
        """Momentum windows are 21, 126 and 252 periods."""
        assert get_signal("short_term_momentum").lookback == 21
        assert get_signal("medium_term_momentum").lookback == 126
        assert get_signal("long_term_momentum").lookback == 252

    def test_unknown(self, store):
        """Unknown names return None from lookup and raise from create."""
        assert get_signal("no_such_signal") is None
        with pytest.raises(KeyError):
            create_signal("no_such_signal", store)

    def test_create_binds_copy(self, store):
        """create_signal binds a copy and leaves the registered instance untouched."""
        bound = create_signal("mom_1m", store)
        assert bound.store is store
        assert get_signal("mom_1m").store is None
        assert bound is not get_signal("mom_1m")

    def test_describe(self):
        """Descriptions list lookback and aliases."""
        info = {d["name"]: d for d in describe_signals()}
        assert info["short_term_momentum"]["lookback"] == 21
        assert "mom_1m" in info["short_term_momentum"]["aliases"]
        assert info["mean_reversion"]["aliases"] == []
