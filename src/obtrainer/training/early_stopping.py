"""
Early stopping monitor.

A small state machine over one monitored scalar:

    Improving --(no improvement)--> Waiting --(wait == patience)--> Stopped
        ^                               |
        +--------(improvement)----------+

Polarity is resolved once from the metric name: names containing "acc",
"f1", "precision" or "recall" are maximized, everything else is minimized.

Usage:
    >>> monitor = EarlyStopping(patience=3, min_delta=0.001, monitor="val_loss")
    >>> for epoch, val_loss in enumerate(losses):
    ...     if monitor.should_stop(val_loss):
    ...         break
"""

from dataclasses import dataclass
from enum import Enum
import logging

logger = logging.getLogger(__name__)

_MAXIMIZED_TOKENS = ("acc", "f1", "precision", "recall")


class StoppingState(str, Enum):
    """State of the early stopping monitor."""

    IMPROVING = "improving"
    WAITING = "waiting"
    STOPPED = "stopped"


def is_maximized_metric(name: str) -> bool:
    """True if a larger value of `name` is better."""
    lowered = name.lower()
    return any(token in lowered for token in _MAXIMIZED_TOKENS)


@dataclass
class EarlyStoppingState:
    """Internal state for EarlyStopping."""
    best_value: float = float('inf')
    best_epoch: int = -1
    wait_count: int = 0
    calls: int = 0
    state: StoppingState = StoppingState.IMPROVING


class EarlyStopping:
    """
    Signal termination after `patience` calls without sufficient improvement.

    Args:
        patience: Non-improving calls tolerated before stopping (>= 1).
        min_delta: Improvement must exceed this margin (>= 0).
        monitor: Monitored metric name; decides the polarity.

    Example:
        >>> monitor = EarlyStopping(patience=3, min_delta=0.0, monitor="val_loss")
        >>> [monitor.should_stop(v) for v in [1.0, 1.0, 1.0, 1.0]]
        [False, False, False, True]
    """

    def __init__(
        self,
        patience: int = 10,
        min_delta: float = 0.001,
        monitor: str = 'val_loss',
    ):
        if patience < 1:
            raise ValueError(f"patience must be >= 1, got {patience}")
        if min_delta < 0:
            raise ValueError(f"min_delta must be >= 0, got {min_delta}")

        self.patience = patience
        self.min_delta = min_delta
        self.monitor = monitor
        self.maximize = is_maximized_metric(monitor)

        self._state = EarlyStoppingState()
        self.reset()

    def _is_better(self, value: float) -> bool:
        if self.maximize:
            return value > self._state.best_value + self.min_delta
        return value < self._state.best_value - self.min_delta

    def should_stop(self, value: float) -> bool:
        """
        Feed the current epoch's monitored value.

        Returns:
            True once the wait counter reaches `patience`, False otherwise.
        """
        state = self._state
        epoch = state.calls
        state.calls += 1

        if state.state is StoppingState.STOPPED:
            return True

        if self._is_better(value):
            state.best_value = value
            state.best_epoch = epoch
            state.wait_count = 0
            state.state = StoppingState.IMPROVING
            logger.debug(f"EarlyStopping: {self.monitor} improved to {value:.6f}")
            return False

        state.wait_count += 1
        logger.debug(
            f"EarlyStopping: {self.monitor}={value:.6f}, "
            f"no improvement for {state.wait_count}/{self.patience} epochs"
        )
        if state.wait_count >= self.patience:
            state.state = StoppingState.STOPPED
            logger.info(
                f"EarlyStopping: stopping after {state.calls} epochs. "
                f"Best {self.monitor}={state.best_value:.6f} at epoch {state.best_epoch}"
            )
            return True

        state.state = StoppingState.WAITING
        return False

    def reset(self) -> None:
        """Clear the wait counter and set the best value to the worst extreme."""
        self._state = EarlyStoppingState(
            best_value=float('-inf') if self.maximize else float('inf'),
        )

    @property
    def state(self) -> StoppingState:
        return self._state.state

    @property
    def stopped(self) -> bool:
        return self._state.state is StoppingState.STOPPED

    @property
    def wait_count(self) -> int:
        return self._state.wait_count

    @property
    def best_value(self) -> float:
        """Best monitored value observed."""
        return self._state.best_value

    @property
    def best_epoch(self) -> int:
        """Call index (epoch) of the best value, -1 before the first call."""
        return self._state.best_epoch
