"""
Loss and accuracy over probability matrices.

The orchestrator scores any backend the same way, from the (N, C) class
probabilities it returns and the (N, C) one-hot targets:

    loss = -sum_{n,c} target[n,c] * log(max(pred[n,c], eps)) / N

with eps = 1e-7 so a zero probability never produces log(0).
"""

from typing import Sequence

import numpy as np

EPSILON = 1e-7


def cross_entropy_loss(
    predictions: np.ndarray,
    targets: np.ndarray,
    eps: float = EPSILON,
) -> float:
    """
    Mean categorical cross-entropy of a batch.

    Args:
        predictions: Class probabilities [N, C].
        targets: One-hot targets [N, C].
        eps: Probability floor.

    Returns:
        Loss averaged over the N samples (0.0 for an empty batch).

    Raises:
        ValueError: If shapes differ.
    """
    predictions = np.asarray(predictions, dtype=np.float64)
    targets = np.asarray(targets, dtype=np.float64)
    if predictions.shape != targets.shape:
        raise ValueError(
            f"predictions shape {predictions.shape} != targets shape {targets.shape}"
        )
    n = predictions.shape[0]
    if n == 0:
        return 0.0
    return float(-np.sum(targets * np.log(np.maximum(predictions, eps))) / n)


def count_correct(predictions: np.ndarray, targets: np.ndarray) -> int:
    """Number of rows whose argmax matches the target argmax."""
    predictions = np.asarray(predictions)
    targets = np.asarray(targets)
    if predictions.shape[0] == 0:
        return 0
    return int(np.sum(predictions.argmax(axis=1) == targets.argmax(axis=1)))


def one_hot(class_indices: Sequence[int], num_classes: int = 3) -> np.ndarray:
    """One-hot encode class indices into a float32 matrix."""
    indices = np.asarray(class_indices, dtype=np.int64)
    matrix = np.zeros((indices.shape[0], num_classes), dtype=np.float32)
    if indices.size:
        matrix[np.arange(indices.shape[0]), indices] = 1.0
    return matrix
