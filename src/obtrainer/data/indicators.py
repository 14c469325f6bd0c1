"""
Technical indicators over a mid-price path.

All functions take a 1-D sequence of prices ordered oldest first and return
plain floats. Undefined cases return a documented neutral value instead of
NaN so a feature vector never carries non-finite entries.
"""

from typing import Sequence

import numpy as np


def moving_average(prices: Sequence[float], period: int) -> float:
    """Simple mean of the last `period` prices."""
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")
    if len(prices) < period:
        raise ValueError(f"need at least {period} prices, got {len(prices)}")
    return float(np.mean(np.asarray(prices[-period:], dtype=np.float64)))


def compute_rsi(prices: Sequence[float], period: int = 14) -> float:
    """
    Relative Strength Index over the last `period` price changes.

    Average gain and average loss are simple means of the last `period`
    changes (losses as positive magnitudes).

    Returns:
        RSI in [0, 100]. 50 when fewer than period + 1 prices are available,
        100 when the average loss is exactly zero.
    """
    if period < 1:
        raise ValueError(f"period must be >= 1, got {period}")
    if len(prices) < period + 1:
        return 50.0

    changes = np.diff(np.asarray(prices[-(period + 1):], dtype=np.float64))
    avg_gain = float(np.mean(np.clip(changes, 0.0, None)))
    avg_loss = float(np.mean(np.clip(-changes, 0.0, None)))

    if avg_loss == 0.0:
        return 100.0
    rs = avg_gain / avg_loss
    rsi = 100.0 - 100.0 / (1.0 + rs)
    return float(min(max(rsi, 0.0), 100.0))


def log_returns(prices: Sequence[float]) -> np.ndarray:
    """Per-step log returns ln(p[t] / p[t-1])."""
    arr = np.asarray(prices, dtype=np.float64)
    if arr.size < 2:
        return np.empty(0, dtype=np.float64)
    return np.log(arr[1:] / arr[:-1])


def log_return_volatility(prices: Sequence[float]) -> float:
    """
    Sample standard deviation (ddof=1) of log returns.

    Returns 0.0 when fewer than 2 returns exist.
    """
    returns = log_returns(prices)
    if returns.size < 2:
        return 0.0
    return float(np.std(returns, ddof=1))


def price_change(prices: Sequence[float]) -> float:
    """Last price minus the one before it."""
    if len(prices) < 2:
        raise ValueError("need at least 2 prices")
    return float(prices[-1] - prices[-2])


def price_change_percentage(prices: Sequence[float]) -> float:
    """Last one-step change as a percentage of the previous price."""
    if len(prices) < 2:
        raise ValueError("need at least 2 prices")
    previous = prices[-2]
    if previous == 0:
        return 0.0
    return float((prices[-1] - previous) / previous * 100.0)
