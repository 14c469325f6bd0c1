"""
Baseline model for order-book direction prediction.

The class-prior baseline establishes the floor any learned model must beat:
it ignores features and predicts the class frequencies it has seen during
training.

Design principles:
- Deterministic: same training batches produce the same probabilities
- Cheap: no numeric optimization, so full runs finish instantly in tests
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

import numpy as np
import torch

from obtrainer.models.base import TrainableModel

logger = logging.getLogger(__name__)


class ClassPriorModel(TrainableModel):
    """
    Baseline: predict the running training class frequencies.

    Counts start at a Laplace pseudo-count of 1 per class, so an untrained
    model predicts the uniform distribution and no probability is ever 0.

    Example:
        >>> model = ClassPriorModel()
        >>> model.build(num_features=20)
        >>> model.train_batch(X, one_hot_y, optimizer)
        >>> model.predict(X[:2])  # rows equal to the class frequencies
    """

    def __init__(self, num_classes: int = 3, pseudo_count: float = 1.0):
        if pseudo_count <= 0:
            raise ValueError(f"pseudo_count must be > 0, got {pseudo_count}")
        self.num_classes = num_classes
        self.pseudo_count = pseudo_count
        self.num_features: Optional[int] = None
        self._counts = np.full(num_classes, pseudo_count, dtype=np.float64)

    @property
    def name(self) -> str:
        return "ClassPrior"

    @property
    def is_built(self) -> bool:
        return self.num_features is not None

    @property
    def class_probabilities(self) -> np.ndarray:
        return self._counts / self._counts.sum()

    def build(self, num_features: int, reference: Optional[np.ndarray] = None) -> None:
        if num_features < 1:
            raise ValueError(f"num_features must be >= 1, got {num_features}")
        self.num_features = num_features
        self._counts = np.full(self.num_classes, self.pseudo_count, dtype=np.float64)

    def predict(self, features: np.ndarray) -> np.ndarray:
        self._require_built()
        n_samples = np.asarray(features).shape[0]
        return np.tile(self.class_probabilities, (n_samples, 1))

    def train_batch(self, features: np.ndarray, targets: np.ndarray, optimizer) -> np.ndarray:
        predictions = self.predict(features)
        self._counts += np.asarray(targets, dtype=np.float64).sum(axis=0)
        return predictions

    def save(self, path: Union[str, Path]) -> None:
        self._require_built()
        torch.save(
            {
                "model_type": "class_prior",
                "num_features": self.num_features,
                "num_classes": self.num_classes,
                "counts": self._counts.tolist(),
            },
            path,
        )

    def load(self, path: Union[str, Path]) -> None:
        state = torch.load(path, map_location="cpu", weights_only=True)
        self.num_classes = int(state["num_classes"])
        self.num_features = int(state["num_features"])
        self._counts = np.asarray(state["counts"], dtype=np.float64)
        logger.debug(f"ClassPrior: loaded {path}, probs={self.class_probabilities.round(4)}")

    def summary(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "model_type": "class_prior",
            "num_features": self.num_features,
            "num_classes": self.num_classes,
            "class_probabilities": self.class_probabilities.tolist(),
            "trainable_parameters": self.num_classes,
        }
