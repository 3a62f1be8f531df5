"""Unit tests for position construction policies."""
import pytest
import pandas as pd
import numpy as np

from portfolio.construction import (
    PositionConstruction,
    PositionPolicy,
    construct_positions,
    rank_order,
)


@pytest.fixture
def scores():
    return pd.Series({"A": 1.5, "B": -0.5, "C": 0.2, "D": -1.2, "E": 0.0, "F": np.nan})


class TestRankOrder:
    """Tests for deterministic ordering."""

    def test_ties_broken_by_symbol(self):
        """Equal scores order by symbol ascending."""
        s = pd.Series({"Z": 1.0, "M": 1.0, "A": 1.0, "Q": 2.0})
        assert list(rank_order(s).index) == ["Q", "A", "M", "Z"]

    def test_missing_excluded(self, scores):
        """NaN scores never get a rank."""
        assert "F" not in rank_order(scores).index


class TestLongOnlyTopK:
    """Tests for long_only_top_k."""

    def test_top_k_equal_weight(self, scores):
        """Top k names get gross/k each, the rest zero."""
        w = construct_positions(scores, PositionConstruction(PositionPolicy.LONG_ONLY_TOP_K, k=2))

        assert w["A"] == pytest.approx(0.5)
        assert w["C"] == pytest.approx(0.5)
        assert w.drop(["A", "C"]).abs().sum() == 0.0
        assert w.sum() == pytest.approx(1.0)

    def test_k_larger_than_universe(self, scores):
        """k is capped at the number of scored names."""
        w = construct_positions(scores, PositionConstruction("long_only_top_k", k=50))
        assert np.allclose(w[w > 0], 0.2)
        assert (w > 0).sum() == 5
        assert w["F"] == 0.0

    def test_gross_exposure(self, scores):
        """Weights scale with gross exposure."""
        w = construct_positions(scores, PositionConstruction("long_only_top_k", k=4, gross_exposure=2.0))
        assert w.sum() == pytest.approx(2.0)


class TestLongShortEqualWeight:
    """Tests for long_short_equal_weight."""

    def test_dollar_neutral(self, scores):
        """Top k long and bottom k short, gross/2 per side."""
        w = construct_positions(scores, PositionConstruction("long_short_equal_weight", k=2))

        assert w["A"] == pytest.approx(0.25)
        assert w["C"] == pytest.approx(0.25)
        assert w["D"] == pytest.approx(-0.25)
        assert w["B"] == pytest.approx(-0.25)
        assert w.sum() == pytest.approx(0.0)
        assert w.abs().sum() == pytest.approx(1.0)

    def test_default_half_universe(self, scores):
        """k=None uses floor(n/2) names per side."""
        w = construct_positions(scores, PositionConstruction("long_short_equal_weight", k=None))
        assert (w > 0).sum() == 2
        assert (w < 0).sum() == 2

    def test_k_capped(self):
        """k above floor(n/2) is capped so no name is both long and short."""
        s = pd.Series({"A": 3.0, "B": 2.0, "C": 1.0})
        w = construct_positions(s, PositionConstruction("long_short_equal_weight", k=5))
        assert w.tolist() == pytest.approx([0.5, 0.0, -0.5])


class TestScoreProportional:
    """Tests for score_proportional."""

    def test_proportional_to_score(self):
        """Weights follow scores and sum to gross in absolute value."""
        s = pd.Series({"A": 2.0, "B": -1.0, "C": 1.0})
        w = construct_positions(s, PositionConstruction("score_proportional"))
        assert w.tolist() == pytest.approx([0.5, -0.25, 0.25])
        assert w.abs().sum() == pytest.approx(1.0)

    def test_threshold(self):
        """Scores below the threshold in magnitude are zeroed."""
        s = pd.Series({"A": 2.0, "B": -0.1, "C": 1.0})
        w = construct_positions(s, PositionConstruction("score_proportional", threshold=0.5))
        assert w["B"] == 0.0
        assert w["A"] == pytest.approx(2.0 / 3.0)

    def test_all_below_threshold(self):
        """Nothing passes the threshold: flat book."""
        s = pd.Series({"A": 0.1, "B": -0.1})
        w = construct_positions(s, PositionConstruction("score_proportional", threshold=1.0))
        assert (w == 0.0).all()


class TestPositionConstruction:
    """Tests for construction parameters."""

    def test_deterministic(self, scores):
        """Same input, same weights."""
        c = PositionConstruction("long_short_equal_weight", k=2)
        pd.testing.assert_series_equal(construct_positions(scores, c), construct_positions(scores.copy(), c))

    @pytest.mark.parametrize("kwargs", [{"k": 0}, {"threshold": -1.0}, {"gross_exposure": 0.0}])
    def test_invalid(self, kwargs):
        """Out-of-range parameters are rejected."""
        with pytest.raises(ValueError):
            PositionConstruction(**kwargs)

    def test_unknown_policy(self):
        """Unknown policy names are rejected."""
        with pytest.raises(ValueError):
            PositionConstruction("market_cap")
