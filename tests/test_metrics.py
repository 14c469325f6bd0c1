"""
Tests for loss, classification metrics, trading metrics and the backtest.

Verifies math against hand-computed values.
"""

import numpy as np
import pytest

from obtrainer.config import BacktestConfig
from obtrainer.training import (
    Portfolio,
    compute_classification_metrics,
    compute_regression_metrics,
    compute_trading_metrics,
    count_correct,
    cross_entropy_loss,
    max_drawdown,
    one_hot,
    run_backtest,
    sharpe_ratio,
    simulate_trading_returns,
    win_rate,
)
from obtrainer.training.metrics import DAILY_RISK_FREE_RATE


# =============================================================================
# Loss
# =============================================================================


class TestLoss:

    def test_perfect_prediction(self):
        targets = one_hot([0, 1, 2])
        assert cross_entropy_loss(targets, targets) == pytest.approx(0.0, abs=1e-6)

    def test_uniform_prediction(self):
        predictions = np.full((4, 3), 1 / 3)
        assert cross_entropy_loss(predictions, one_hot([0, 1, 2, 0])) == pytest.approx(np.log(3))

    def test_zero_probability_is_clipped(self):
        predictions = np.array([[0.0, 1.0, 0.0]])
        loss = cross_entropy_loss(predictions, one_hot([0]))
        assert loss == pytest.approx(-np.log(1e-7))
        assert np.isfinite(loss)

    def test_shape_mismatch(self):
        with pytest.raises(ValueError, match="shape"):
            cross_entropy_loss(np.zeros((2, 3)), np.zeros((3, 3)))

    def test_empty_batch(self):
        assert cross_entropy_loss(np.zeros((0, 3)), np.zeros((0, 3))) == 0.0

    def test_count_correct(self):
        predictions = np.array([[0.7, 0.2, 0.1], [0.1, 0.1, 0.8], [0.3, 0.4, 0.3]])
        assert count_correct(predictions, one_hot([0, 2, 0])) == 2


# =============================================================================
# Classification
# =============================================================================


class TestClassificationMetrics:

    def test_all_class_zero(self):
        labels = np.zeros(5, dtype=int)
        metrics = compute_classification_metrics(labels, labels)
        assert metrics.accuracy == 1.0
        assert metrics.precision == 1.0
        assert metrics.recall == 1.0
        assert metrics.f1 == 1.0

    def test_disjoint_classes(self):
        metrics = compute_classification_metrics(np.zeros(4, dtype=int), np.full(4, 2))
        assert metrics.accuracy == 0.0
        assert metrics.precision == 0.0
        assert metrics.recall == 0.0
        assert metrics.f1 == 0.0

    def test_macro_skips_undefined_classes(self):
        # class 1 is never predicted: no precision term for it
        y_true = np.array([0, 0, 1, 2])
        y_pred = np.array([0, 0, 0, 2])
        metrics = compute_classification_metrics(y_pred, y_true)

        per_class = {pc.name: pc for pc in metrics.per_class}
        assert per_class["Flat"].precision is None
        assert per_class["Flat"].recall == 0.0
        assert metrics.precision == pytest.approx((2 / 3 + 1.0) / 2)
        assert metrics.recall == pytest.approx((1.0 + 0.0 + 1.0) / 3)
        p, r = metrics.precision, metrics.recall
        assert metrics.f1 == pytest.approx(2 * p * r / (p + r))

    def test_accepts_probabilities(self):
        probabilities = np.array([[0.8, 0.1, 0.1], [0.1, 0.1, 0.8]])
        metrics = compute_classification_metrics(probabilities, one_hot([0, 2]))
        assert metrics.accuracy == 1.0
        assert metrics.confusion_matrix.tolist() == [[1, 0, 0], [0, 0, 0], [0, 0, 1]]

    def test_empty(self):
        metrics = compute_classification_metrics(np.zeros(0, dtype=int), np.zeros(0, dtype=int))
        assert metrics.accuracy == 0.0
        assert metrics.n_samples == 0

    def test_to_dict(self):
        labels = np.array([0, 1, 2])
        data = compute_classification_metrics(labels, labels).to_dict()
        assert data["per_class"]["Up"]["support"] == 1
        assert data["confusion_matrix"][1][1] == 1

    def test_regression_diagnostics(self):
        targets = one_hot([0, 1])
        metrics = compute_regression_metrics(targets, targets)
        assert metrics.mse == 0.0
        assert metrics.r_squared == 1.0


# =============================================================================
# Trading metrics
# =============================================================================


class TestTradingMetrics:

    def test_sharpe_zero_volatility(self):
        assert sharpe_ratio([0.01, 0.01, 0.01]) == 0.0
        assert sharpe_ratio([0.05]) == 0.0

    def test_sharpe_formula(self):
        returns = np.array([0.01, -0.02, 0.03, 0.0])
        expected = (returns.mean() - DAILY_RISK_FREE_RATE) / returns.std()
        assert sharpe_ratio(returns) == pytest.approx(expected)

    def test_max_drawdown(self):
        # curve: 1.0, 1.1, 0.88, 0.968
        assert max_drawdown([0.1, -0.2, 0.1]) == pytest.approx(0.2)
        assert max_drawdown([0.01, 0.02]) == 0.0
        assert max_drawdown([]) == 0.0

    def test_win_rate(self):
        assert win_rate([0.1, -0.1, 0.0, 0.2]) == 0.5
        assert win_rate([]) == 0.0

    def test_simulated_returns(self):
        predictions = one_hot([2, 0, 1, 2])
        targets = one_hot([2, 2, 0, 0])
        np.testing.assert_allclose(
            simulate_trading_returns(predictions, targets),
            [0.001, -0.001, 0.0, -0.001],
        )

    def test_compute_trading_metrics(self):
        metrics = compute_trading_metrics([0.001, -0.001, 0.001])
        assert metrics.number_of_trades == 3
        assert metrics.total_return == pytest.approx(0.001)
        assert metrics.win_rate == pytest.approx(2 / 3)
        assert metrics.volatility > 0


# =============================================================================
# Backtest
# =============================================================================


class FixedModel:
    """Model stub returning a scripted probability row per call."""

    name = "Fixed"

    def __init__(self, rows):
        self.rows = [np.asarray(r, dtype=np.float64) for r in rows]
        self.calls = 0

    def predict(self, features):
        row = self.rows[min(self.calls, len(self.rows) - 1)]
        self.calls += 1
        return row[None, :]


UP = [0.1, 0.1, 0.8]
DOWN = [0.8, 0.1, 0.1]
FLAT = [0.1, 0.8, 0.1]
UNSURE = [0.35, 0.3, 0.35]


class TestPortfolio:

    def test_rebalance_accounting(self):
        portfolio = Portfolio(initial_capital=1000.0, transaction_cost=0.01)
        trade = portfolio.rebalance(10.0, price=10.0, index=0)
        assert trade.side == "buy"
        assert trade.cost == pytest.approx(1.0)
        assert trade.pnl == 0.0
        assert portfolio.cash == pytest.approx(1000.0 - 100.0 - 1.0)
        assert portfolio.value(10.0) == pytest.approx(999.0)

        trade = portfolio.rebalance(0.0, price=12.0, index=1)
        assert trade.side == "sell"
        assert trade.pnl == pytest.approx(20.0)
        assert portfolio.value_history == pytest.approx([1000.0, 999.0, 1000.0 - 101.0 + 120.0 - 1.2])


class TestRunBacktest:

    def test_trades_on_confident_direction_changes(self):
        model = FixedModel([UP, UP, DOWN, FLAT])
        prices = [100.0, 101.0, 102.0, 101.0]
        config = BacktestConfig(
            initial_capital=10_000.0,
            position_size=10.0,
            confidence_threshold=0.6,
            lookback=0,
            transaction_cost=0.0,
        )
        result = run_backtest(model, np.zeros((4, 2)), prices, config=config)

        # buy 10 @100, hold, sell 20 @102 (to -10), buy back 10 @101
        assert result.number_of_trades == 3
        assert [t.quantity for t in result.trades] == [10.0, -20.0, 10.0]
        assert result.winning_trades == 2
        assert result.losing_trades == 0
        assert result.final_value == pytest.approx(10_000.0 + 20.0 + 10.0)
        assert len(result.value_history) == 4
        assert result.win_rate == 1.0

    def test_low_confidence_never_trades(self):
        model = FixedModel([UNSURE])
        config = BacktestConfig(lookback=0)
        result = run_backtest(model, np.zeros((5, 2)), [1.0] * 5, config=config)
        assert result.number_of_trades == 0
        assert result.final_value == config.initial_capital
        assert result.total_return == 0.0
        assert result.sharpe_ratio == 0.0

    def test_lookback_skips_warm_up(self):
        model = FixedModel([UP])
        config = BacktestConfig(lookback=3, transaction_cost=0.0)
        result = run_backtest(model, np.zeros((5, 2)), [1.0] * 5, config=config)
        assert model.calls == 2
        assert result.trades[0].index == 3

    def test_transaction_costs(self):
        model = FixedModel([UP, DOWN])
        config = BacktestConfig(initial_capital=1000.0, position_size=1.0, lookback=0, transaction_cost=0.01)
        result = run_backtest(model, np.zeros((2, 1)), [100.0, 100.0], config=config)
        assert result.total_costs == pytest.approx(1.0 + 2.0)
        assert result.final_value == pytest.approx(997.0)

    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="differ in length"):
            run_backtest(FixedModel([UP]), np.zeros((3, 2)), [1.0, 2.0])

    def test_to_dict(self):
        result = run_backtest(
            FixedModel([UP]), np.zeros((2, 1)), [1.0, 1.0], config=BacktestConfig(lookback=0)
        )
        data = result.to_dict(include_trades=True)
        assert data["number_of_trades"] == 1
        assert data["trades"][0]["side"] == "buy"
        assert "trades" not in result.to_dict()
