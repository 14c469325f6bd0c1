"""
Trainable model interface.

The training orchestrator never looks inside a model. Any backend that
implements this interface can be trained, checkpointed, resumed and
evaluated:

    build(num_features, reference)  - allocate state for the input width
    predict(features)               - (N, C) class probabilities
    train_batch(features, targets, optimizer)
                                    - one update; returns the probabilities
                                      the update was computed from
    train_one_epoch(batches, optimizer)
    save(path) / load(path)         - opaque persisted state
    summary()                       - JSON-serializable description
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

import numpy as np

from obtrainer.training.loss import count_correct, cross_entropy_loss


class TrainableModel(ABC):
    """
    Abstract base class for all model backends.

    Probabilities are float64 arrays of shape (n_samples, n_classes) whose
    rows sum to 1.
    """

    num_classes: int = 3

    @property
    @abstractmethod
    def name(self) -> str:
        """Model name for logging and reporting."""
        pass

    @property
    @abstractmethod
    def is_built(self) -> bool:
        """True once build() (or load()) has allocated the model state."""
        pass

    @abstractmethod
    def build(self, num_features: int, reference: Optional[np.ndarray] = None) -> None:
        """
        Allocate model state for `num_features` inputs.

        Args:
            num_features: Input width.
            reference: Optional training features [N, F] for input scaling.
        """
        pass

    @abstractmethod
    def predict(self, features: np.ndarray) -> np.ndarray:
        """
        Class probabilities for a batch.

        Args:
            features: [N, F] feature matrix.

        Returns:
            [N, C] probabilities.
        """
        pass

    @abstractmethod
    def train_batch(self, features: np.ndarray, targets: np.ndarray, optimizer) -> np.ndarray:
        """
        Update the model on one batch.

        Args:
            features: [N, F] feature matrix.
            targets: [N, C] one-hot targets.
            optimizer: Learning-rate controller supplying `learning_rate`,
                `kind` and `hyperparameters()`.

        Returns:
            [N, C] probabilities the update was computed from.
        """
        pass

    @abstractmethod
    def save(self, path: Union[str, Path]) -> None:
        """Persist the model state to `path`."""
        pass

    @abstractmethod
    def load(self, path: Union[str, Path]) -> None:
        """Restore the model state from `path`."""
        pass

    @abstractmethod
    def summary(self) -> Dict[str, Any]:
        """JSON-serializable description of the model."""
        pass

    def train_one_epoch(
        self,
        batches: Iterable[Tuple[np.ndarray, np.ndarray]],
        optimizer,
        on_batch_end: Optional[Callable[[int, Dict[str, float]], None]] = None,
    ) -> Dict[str, float]:
        """
        Run train_batch over every batch and advance the optimizer.

        Args:
            batches: Iterable of (features, one-hot targets). Exceptions raised
                while iterating (e.g. cancellation) propagate unchanged.
            optimizer: Learning-rate controller.
            on_batch_end: Called with (batch_idx, {'loss', 'accuracy'}).

        Returns:
            Dict with 'loss' (mean of batch losses) and 'accuracy'.
        """
        batch_losses = []
        correct = 0
        total = 0
        for batch_idx, (features, targets) in enumerate(batches):
            predictions = self.train_batch(features, targets, optimizer)
            batch_loss = cross_entropy_loss(predictions, targets)
            batch_correct = count_correct(predictions, targets)
            batch_losses.append(batch_loss)
            correct += batch_correct
            total += len(targets)
            optimizer.step()
            if on_batch_end is not None:
                on_batch_end(batch_idx, {
                    "loss": batch_loss,
                    "accuracy": batch_correct / len(targets) if len(targets) else 0.0,
                })
        return {
            "loss": float(np.mean(batch_losses)) if batch_losses else 0.0,
            "accuracy": correct / total if total else 0.0,
        }

    def _require_built(self) -> None:
        if not self.is_built:
            raise RuntimeError(f"{self.name} is not built. Call build() or load() first.")
