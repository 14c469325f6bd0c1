"""
Learning-rate controllers.

An Optimizer here owns the learning rate of a run and its epoch-based decay
policy. The numeric update of model parameters belongs to the model backend,
which reads `learning_rate` and `kind` from the optimizer on every batch.

Variants:
    | kind    | decay                                   |
    |---------|-----------------------------------------|
    | sgd     | x0.5  when epoch > 0 and epoch % 30 == 0 |
    | adagrad | x0.95 when epoch > 0 and epoch % 25 == 0 |
    | rmsprop | x0.8  when epoch > 10 and epoch % 15 == 0 |
    | adam    | x0.9  when epoch > 0 and epoch % 20 == 0 |

Usage:
    >>> optimizer = create_optimizer(OptimizerType.ADAGRAD, learning_rate=0.01)
    >>> optimizer.step()
    >>> optimizer.update_learning_rate(epoch=25, validation_loss=0.4)
    >>> optimizer.learning_rate  # 0.01 * 0.95
"""

from abc import ABC
from typing import Dict, Optional, Type, Union
import logging

from obtrainer.config import OptimizerType

logger = logging.getLogger(__name__)


class Optimizer(ABC):
    """
    Stateful learning-rate controller.

    Subclasses set `kind`, `decay_factor`, `decay_interval` and optionally
    `min_epoch`, and may carry extra hyperparameters for the backend.
    """

    kind: OptimizerType
    decay_factor: float = 1.0
    decay_interval: int = 1
    min_epoch: int = 0
    """Decay only applies when epoch > min_epoch."""

    default_learning_rate: float = 0.001

    def __init__(self, learning_rate: Optional[float] = None):
        lr = self.default_learning_rate if learning_rate is None else learning_rate
        if lr <= 0:
            raise ValueError(f"learning_rate must be > 0, got {lr}")
        self.learning_rate = float(lr)
        self.initial_learning_rate = float(lr)
        self.step_count = 0

    def step(self) -> None:
        """Advance internal bookkeeping by one batch."""
        self.step_count += 1

    def should_decay(self, epoch: int) -> bool:
        return epoch > self.min_epoch and epoch % self.decay_interval == 0

    def update_learning_rate(self, epoch: int, validation_loss: float) -> float:
        """
        Apply this variant's decay for `epoch`.

        Args:
            epoch: 0-indexed epoch that just finished.
            validation_loss: Validation loss of that epoch (logged only).

        Returns:
            The learning rate after the update.
        """
        if self.should_decay(epoch):
            old = self.learning_rate
            self.learning_rate = old * self.decay_factor
            logger.info(
                f"{self.kind.value}: learning rate {old:.6g} -> {self.learning_rate:.6g} "
                f"at epoch {epoch} (val_loss={validation_loss:.6f})"
            )
        return self.learning_rate

    def fast_forward(self, epochs: int) -> float:
        """
        Apply the decays of epochs 0..epochs-1 without training them, so a
        run resumed at `epochs` continues on the uninterrupted schedule.
        """
        for epoch in range(epochs):
            if self.should_decay(epoch):
                self.learning_rate *= self.decay_factor
        logger.info(
            f"{self.kind.value}: learning rate fast-forwarded to {self.learning_rate:.6g} "
            f"for epoch {epochs}"
        )
        return self.learning_rate

    def reset(self) -> None:
        """Zero the step counter; the learning rate is left unchanged."""
        self.step_count = 0

    def hyperparameters(self) -> Dict[str, float]:
        """Backend-facing hyperparameters (learning rate plus variant extras)."""
        return {"learning_rate": self.learning_rate}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(learning_rate={self.learning_rate:.6g}, "
            f"step_count={self.step_count})"
        )


class SGDOptimizer(Optimizer):
    """Constant momentum variant."""

    kind = OptimizerType.SGD
    decay_factor = 0.5
    decay_interval = 30
    default_learning_rate = 0.01

    def __init__(self, learning_rate: Optional[float] = None, momentum: float = 0.9):
        super().__init__(learning_rate)
        if not 0 <= momentum < 1:
            raise ValueError(f"momentum must be in [0, 1), got {momentum}")
        self.momentum = momentum

    def hyperparameters(self) -> Dict[str, float]:
        return {"learning_rate": self.learning_rate, "momentum": self.momentum}


class AdaGradOptimizer(Optimizer):
    """Adaptive per-parameter variant (default)."""

    kind = OptimizerType.ADAGRAD
    decay_factor = 0.95
    decay_interval = 25
    default_learning_rate = 0.01

    def __init__(self, learning_rate: Optional[float] = None, epsilon: float = 1e-8):
        super().__init__(learning_rate)
        self.epsilon = epsilon

    def hyperparameters(self) -> Dict[str, float]:
        return {"learning_rate": self.learning_rate, "epsilon": self.epsilon}


class RMSpropOptimizer(Optimizer):
    """RMS-based variant. Decay starts after epoch 10."""

    kind = OptimizerType.RMSPROP
    decay_factor = 0.8
    decay_interval = 15
    min_epoch = 10
    default_learning_rate = 0.001

    def __init__(
        self,
        learning_rate: Optional[float] = None,
        alpha: float = 0.99,
        epsilon: float = 1e-8,
    ):
        super().__init__(learning_rate)
        if not 0 < alpha < 1:
            raise ValueError(f"alpha must be in (0, 1), got {alpha}")
        self.alpha = alpha
        self.epsilon = epsilon

    def hyperparameters(self) -> Dict[str, float]:
        return {
            "learning_rate": self.learning_rate,
            "alpha": self.alpha,
            "epsilon": self.epsilon,
        }


class AdamOptimizer(Optimizer):
    """Step-decay variant."""

    kind = OptimizerType.ADAM
    decay_factor = 0.9
    decay_interval = 20
    default_learning_rate = 0.001

    def __init__(
        self,
        learning_rate: Optional[float] = None,
        beta1: float = 0.9,
        beta2: float = 0.999,
        epsilon: float = 1e-8,
    ):
        super().__init__(learning_rate)
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon

    def hyperparameters(self) -> Dict[str, float]:
        return {
            "learning_rate": self.learning_rate,
            "beta1": self.beta1,
            "beta2": self.beta2,
            "epsilon": self.epsilon,
        }


_OPTIMIZERS: Dict[OptimizerType, Type[Optimizer]] = {
    OptimizerType.SGD: SGDOptimizer,
    OptimizerType.ADAGRAD: AdaGradOptimizer,
    OptimizerType.RMSPROP: RMSpropOptimizer,
    OptimizerType.ADAM: AdamOptimizer,
}


def create_optimizer(
    kind: Union[OptimizerType, str, None] = None,
    learning_rate: Optional[float] = None,
) -> Optimizer:
    """
    Create an optimizer variant.

    Args:
        kind: Variant name. None selects the adaptive per-parameter variant.
        learning_rate: Initial learning rate (variant default if None).

    Raises:
        ValueError: If `kind` is not a known variant.
    """
    if kind is None:
        kind = OptimizerType.ADAGRAD
    elif not isinstance(kind, OptimizerType):
        kind = OptimizerType(str(kind).lower())
    optimizer = _OPTIMIZERS[kind](learning_rate)
    logger.debug(f"Created optimizer: {optimizer!r}")
    return optimizer
