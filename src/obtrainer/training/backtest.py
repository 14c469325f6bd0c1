"""
Backtest: replay model predictions as a trading strategy.

Strategy:
    After `lookback` warm-up steps, each step asks the model for one
    prediction. The target position is the predicted direction (-1, 0, +1)
    in units of `position_size`. A trade happens only when the prediction's
    confidence exceeds `confidence_threshold` AND the position change
    exceeds `position_change_threshold` units.

Accounting:
    cash     -= quantity * price + cost      (cost = |quantity| * price * rate)
    value     = cash + position * price      (marked at the latest trade price)
    trade P&L = previous position * (price - previous trade price)

The value history starts at the initial capital and gains one point per
trade. Winning/losing trades are counted by the sign of their P&L.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
import logging

import numpy as np

from obtrainer.config import BacktestConfig
from obtrainer.constants import class_to_direction
from obtrainer.models import TrainableModel
from obtrainer.training.metrics import max_drawdown, sharpe_ratio

logger = logging.getLogger(__name__)


@dataclass
class Trade:
    """One executed position change."""

    index: int
    """Position of the step in the replayed sequence."""

    timestamp: Optional[datetime]
    side: str
    """'buy' or 'sell'."""

    quantity: float
    """Signed traded quantity (positive = buy)."""

    price: float
    position_before: float
    position_after: float
    confidence: float
    cost: float
    pnl: float
    """Realized P&L of the previous position since the previous trade."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "side": self.side,
            "quantity": self.quantity,
            "price": self.price,
            "position_before": self.position_before,
            "position_after": self.position_after,
            "confidence": self.confidence,
            "cost": self.cost,
            "pnl": self.pnl,
        }


class Portfolio:
    """
    Cash and position bookkeeping.

    Args:
        initial_capital: Starting cash.
        transaction_cost: Cost as a fraction of traded notional.
    """

    def __init__(self, initial_capital: float, transaction_cost: float = 0.0):
        self.initial_capital = initial_capital
        self.transaction_cost = transaction_cost
        self.cash = initial_capital
        self.position = 0.0
        self.last_trade_price: Optional[float] = None
        self.value_history: List[float] = [initial_capital]
        self.trades: List[Trade] = []

    def value(self, price: Optional[float] = None) -> float:
        """Portfolio value at `price` (default: the latest trade price)."""
        mark = price if price is not None else self.last_trade_price
        if mark is None:
            return self.cash
        return self.cash + self.position * mark

    def rebalance(
        self,
        target_position: float,
        price: float,
        index: int,
        timestamp: Optional[datetime] = None,
        confidence: float = 0.0,
    ) -> Trade:
        """Trade to `target_position` at `price` and record the trade."""
        quantity = target_position - self.position
        cost = abs(quantity) * price * self.transaction_cost
        pnl = 0.0
        if self.last_trade_price is not None:
            pnl = self.position * (price - self.last_trade_price)

        trade = Trade(
            index=index,
            timestamp=timestamp,
            side="buy" if quantity > 0 else "sell",
            quantity=quantity,
            price=price,
            position_before=self.position,
            position_after=target_position,
            confidence=confidence,
            cost=cost,
            pnl=pnl,
        )

        self.cash -= quantity * price + cost
        self.position = target_position
        self.last_trade_price = price
        self.trades.append(trade)
        self.value_history.append(self.value(price))
        logger.debug(
            f"Trade {trade.side} {abs(quantity):g} @ {price:.4f} (cost={cost:.4f}, pnl={pnl:.4f}), "
            f"value={self.value_history[-1]:.2f}"
        )
        return trade


@dataclass
class BacktestResult:
    """Outcome of one backtest."""

    initial_capital: float
    final_value: float
    total_return: float
    sharpe_ratio: float
    max_drawdown: float
    number_of_trades: int
    winning_trades: int
    losing_trades: int
    total_costs: float
    value_history: List[float] = field(default_factory=list)
    trades: List[Trade] = field(default_factory=list)

    @property
    def win_rate(self) -> float:
        decided = self.winning_trades + self.losing_trades
        return self.winning_trades / decided if decided else 0.0

    def to_dict(self, include_trades: bool = False) -> Dict[str, Any]:
        data = {
            "initial_capital": self.initial_capital,
            "final_value": self.final_value,
            "total_return": self.total_return,
            "sharpe_ratio": self.sharpe_ratio,
            "max_drawdown": self.max_drawdown,
            "number_of_trades": self.number_of_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": self.win_rate,
            "total_costs": self.total_costs,
            "value_history": list(self.value_history),
        }
        if include_trades:
            data["trades"] = [t.to_dict() for t in self.trades]
        return data


def value_returns(values: Sequence[float]) -> np.ndarray:
    """Fractional change between consecutive portfolio values."""
    arr = np.asarray(values, dtype=np.float64)
    if arr.size < 2:
        return np.zeros(0)
    previous = arr[:-1]
    return np.where(previous != 0, np.diff(arr) / np.where(previous != 0, previous, 1.0), 0.0)


def summarize_portfolio(portfolio: Portfolio) -> BacktestResult:
    returns = value_returns(portfolio.value_history)
    final_value = portfolio.value_history[-1]
    return BacktestResult(
        initial_capital=portfolio.initial_capital,
        final_value=final_value,
        total_return=(final_value - portfolio.initial_capital) / portfolio.initial_capital,
        sharpe_ratio=sharpe_ratio(returns),
        max_drawdown=max_drawdown(returns),
        number_of_trades=len(portfolio.trades),
        winning_trades=sum(1 for t in portfolio.trades if t.pnl > 0),
        losing_trades=sum(1 for t in portfolio.trades if t.pnl < 0),
        total_costs=sum(t.cost for t in portfolio.trades),
        value_history=list(portfolio.value_history),
        trades=list(portfolio.trades),
    )


def run_backtest(
    model: TrainableModel,
    features: np.ndarray,
    prices: Sequence[float],
    timestamps: Optional[Sequence[datetime]] = None,
    config: Optional[BacktestConfig] = None,
) -> BacktestResult:
    """
    Replay `features` in order and trade on confident predictions.

    Args:
        model: Built model.
        features: [N, F] features in time order.
        prices: [N] execution price of each step.
        timestamps: Optional [N] timestamps stamped on trades.
        config: BacktestConfig (defaults if None).

    Returns:
        BacktestResult

    Raises:
        ValueError: If features and prices have different lengths.
    """
    config = config or BacktestConfig()
    features = np.asarray(features)
    if features.shape[0] != len(prices):
        raise ValueError(f"features ({features.shape[0]}) and prices ({len(prices)}) differ in length")

    portfolio = Portfolio(config.initial_capital, config.transaction_cost)
    current_units = 0

    for i in range(config.lookback, features.shape[0]):
        probabilities = model.predict(features[i:i + 1])[0]
        predicted_class = int(np.argmax(probabilities))
        confidence = float(probabilities[predicted_class])
        if confidence <= config.confidence_threshold:
            continue

        target_units = class_to_direction(predicted_class)
        if abs(target_units - current_units) <= config.position_change_threshold:
            continue

        portfolio.rebalance(
            target_units * config.position_size,
            float(prices[i]),
            index=i,
            timestamp=timestamps[i] if timestamps is not None else None,
            confidence=confidence,
        )
        current_units = target_units

    result = summarize_portfolio(portfolio)
    logger.info(
        f"Backtest: {result.number_of_trades} trades over {max(features.shape[0] - config.lookback, 0)} steps, "
        f"final value={result.final_value:.2f}, return={result.total_return:.4%}, "
        f"sharpe={result.sharpe_ratio:.4f}, max_drawdown={result.max_drawdown:.4f}"
    )
    return result
