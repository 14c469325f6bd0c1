"""
Evaluation metrics for order-book direction prediction.

Metrics are designed for 3-class classification (Down, Flat, Up) over
(N, 3) probability and one-hot matrices.

Label encoding:
    class 0 = Down, 1 = Flat, 2 = Up   (direction = class - 1)

Design principles:
- Consistent metric computation across all backends
- Handle edge cases (empty predictions, missing classes)
- Macro averages only over classes where the metric is defined: a class
  that is never predicted contributes no precision term, a class that never
  occurs contributes no recall term
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
import math

import numpy as np
from sklearn.metrics import (
    accuracy_score,
    confusion_matrix as sklearn_confusion_matrix,
    mean_absolute_error,
    mean_squared_error,
)

from obtrainer.constants import CLASS_NAMES, NUM_CLASSES

TRADING_DAYS_PER_YEAR = 252
ANNUAL_RISK_FREE_RATE = 0.02
DAILY_RISK_FREE_RATE = ANNUAL_RISK_FREE_RATE / TRADING_DAYS_PER_YEAR
BASE_RETURN = 0.001


# =============================================================================
# Dataclasses for structured results
# =============================================================================


@dataclass
class PerClassMetrics:
    """Metrics for a single class. None marks an undefined value."""

    label: int
    """Class index (0, 1, 2)."""

    name: str
    """Class name (Down, Flat, Up)."""

    precision: Optional[float]
    """TP / (TP + FP); None if the class was never predicted."""

    recall: Optional[float]
    """TP / (TP + FN); None if the class never occurs."""

    support: int
    """Number of true instances of this class."""


@dataclass
class ClassificationMetrics:
    """
    Argmax-based classification metrics.

    F1 is the harmonic mean of the macro precision and macro recall.
    """

    accuracy: float
    """Overall accuracy (correct / total)."""

    precision: float
    """Macro precision over classes with at least one prediction."""

    recall: float
    """Macro recall over classes with at least one true instance."""

    f1: float
    """Harmonic mean of precision and recall (0 if both are 0)."""

    per_class: List[PerClassMetrics] = field(default_factory=list)
    """Metrics for each class."""

    confusion_matrix: np.ndarray = field(
        default_factory=lambda: np.zeros((NUM_CLASSES, NUM_CLASSES), dtype=np.int64)
    )
    """Row i = true class i, column j = predicted class j."""

    n_samples: int = 0
    """Total number of samples evaluated."""

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "accuracy": self.accuracy,
            "precision": self.precision,
            "recall": self.recall,
            "f1": self.f1,
            "per_class": {
                pc.name: {
                    "precision": pc.precision,
                    "recall": pc.recall,
                    "support": pc.support,
                }
                for pc in self.per_class
            },
            "confusion_matrix": self.confusion_matrix.tolist(),
            "n_samples": self.n_samples,
        }

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            f"Accuracy: {self.accuracy:.4f} ({self.n_samples} samples)",
            f"Precision: {self.precision:.4f}",
            f"Recall: {self.recall:.4f}",
            f"F1: {self.f1:.4f}",
            "",
            "Per-class metrics:",
        ]
        for pc in self.per_class:
            p = "n/a" if pc.precision is None else f"{pc.precision:.3f}"
            r = "n/a" if pc.recall is None else f"{pc.recall:.3f}"
            lines.append(f"  {pc.name:>5}: P={p} R={r} (n={pc.support})")
        return "\n".join(lines)


@dataclass
class RegressionMetrics:
    """
    Elementwise error of the probability matrix against the one-hot targets.

    A class-distribution-sensitive diagnostic, not a calibration measure.
    """

    mse: float = 0.0
    mae: float = 0.0
    rmse: float = 0.0
    r_squared: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "mse": self.mse,
            "mae": self.mae,
            "rmse": self.rmse,
            "r_squared": self.r_squared,
        }


@dataclass
class TradingMetrics:
    """Metrics of a simulated return series."""

    total_return: float = 0.0
    average_return: float = 0.0
    volatility: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    win_rate: float = 0.0
    number_of_trades: int = 0

    def to_dict(self) -> Dict[str, float]:
        return {
            "total_return": self.total_return,
            "average_return": self.average_return,
            "volatility": self.volatility,
            "sharpe_ratio": self.sharpe_ratio,
            "max_drawdown": self.max_drawdown,
            "win_rate": self.win_rate,
            "number_of_trades": self.number_of_trades,
        }


# =============================================================================
# Classification
# =============================================================================


def _to_classes(values: np.ndarray) -> np.ndarray:
    values = np.asarray(values)
    if values.ndim == 2:
        return values.argmax(axis=1)
    return values.astype(np.int64)


def _macro(values: Sequence[Optional[float]]) -> float:
    defined = [v for v in values if v is not None]
    return float(np.mean(defined)) if defined else 0.0


def harmonic_mean(precision: float, recall: float) -> float:
    if precision + recall == 0:
        return 0.0
    return 2.0 * precision * recall / (precision + recall)


def compute_classification_metrics(
    predictions: np.ndarray,
    targets: np.ndarray,
    num_classes: int = NUM_CLASSES,
) -> ClassificationMetrics:
    """
    Compute accuracy and macro precision/recall/F1.

    Args:
        predictions: Probabilities [N, C] or predicted class indices [N].
        targets: One-hot targets [N, C] or true class indices [N].
        num_classes: Number of classes.

    Returns:
        ClassificationMetrics. All zeros for empty input.

    Example:
        >>> y = np.array([0, 0, 0])
        >>> compute_classification_metrics(y, y).f1
        1.0
    """
    y_pred = _to_classes(predictions)
    y_true = _to_classes(targets)
    if y_pred.shape != y_true.shape:
        raise ValueError(f"predictions {y_pred.shape} and targets {y_true.shape} differ")

    labels = list(range(num_classes))
    if y_true.size == 0:
        return ClassificationMetrics(
            accuracy=0.0,
            precision=0.0,
            recall=0.0,
            f1=0.0,
            confusion_matrix=np.zeros((num_classes, num_classes), dtype=np.int64),
        )

    cm = sklearn_confusion_matrix(y_true, y_pred, labels=labels)
    true_positives = np.diag(cm)
    predicted_counts = cm.sum(axis=0)
    actual_counts = cm.sum(axis=1)

    per_class = []
    for c in labels:
        precision = (
            float(true_positives[c] / predicted_counts[c]) if predicted_counts[c] > 0 else None
        )
        recall = float(true_positives[c] / actual_counts[c]) if actual_counts[c] > 0 else None
        name = CLASS_NAMES[c] if c < len(CLASS_NAMES) else f"class_{c}"
        per_class.append(PerClassMetrics(
            label=c,
            name=name,
            precision=precision,
            recall=recall,
            support=int(actual_counts[c]),
        ))

    precision = _macro([pc.precision for pc in per_class])
    recall = _macro([pc.recall for pc in per_class])
    return ClassificationMetrics(
        accuracy=float(accuracy_score(y_true, y_pred)),
        precision=precision,
        recall=recall,
        f1=harmonic_mean(precision, recall),
        per_class=per_class,
        confusion_matrix=cm,
        n_samples=int(y_true.size),
    )


# =============================================================================
# Regression diagnostics
# =============================================================================


def compute_regression_metrics(
    predictions: np.ndarray,
    targets: np.ndarray,
) -> RegressionMetrics:
    """
    MSE, MAE, RMSE and R^2 over all matrix elements.

    R^2 = 1 - RSS / TSS with TSS around the overall target mean; 0 when TSS
    is 0.
    """
    y_pred = np.asarray(predictions, dtype=np.float64).ravel()
    y_true = np.asarray(targets, dtype=np.float64).ravel()
    if y_true.size == 0:
        return RegressionMetrics()

    mse = float(mean_squared_error(y_true, y_pred))
    mae = float(mean_absolute_error(y_true, y_pred))
    rss = float(np.sum((y_true - y_pred) ** 2))
    tss = float(np.sum((y_true - y_true.mean()) ** 2))
    r_squared = 1.0 - rss / tss if tss > 0 else 0.0
    return RegressionMetrics(mse=mse, mae=mae, rmse=math.sqrt(mse), r_squared=r_squared)


# =============================================================================
# Trading metrics
# =============================================================================


def simulate_trading_returns(
    predictions: np.ndarray,
    targets: np.ndarray,
    base_return: float = BASE_RETURN,
) -> np.ndarray:
    """
    Per-sample return of trading every prediction.

    return = base_return * predicted_direction * actual_direction, with
    directions in {-1, 0, +1}: correct calls earn, wrong calls lose and
    neutral calls are flat.
    """
    predicted_direction = _to_classes(predictions) - 1
    actual_direction = _to_classes(targets) - 1
    return base_return * predicted_direction * actual_direction


def return_volatility(returns: Sequence[float]) -> float:
    """Population standard deviation of returns; 0 for fewer than 2."""
    arr = np.asarray(returns, dtype=np.float64)
    if arr.size < 2:
        return 0.0
    return float(np.std(arr))


def sharpe_ratio(
    returns: Sequence[float],
    risk_free_rate: float = DAILY_RISK_FREE_RATE,
) -> float:
    """(mean return - risk_free_rate) / volatility; 0 when volatility is 0."""
    arr = np.asarray(returns, dtype=np.float64)
    volatility = return_volatility(arr)
    if volatility == 0.0:
        return 0.0
    return float((arr.mean() - risk_free_rate) / volatility)


def max_drawdown(returns: Sequence[float]) -> float:
    """
    Largest peak-to-trough fractional decline of the compounded curve.

    The curve starts at 1.0 and multiplies by (1 + r) for each return.
    """
    arr = np.asarray(returns, dtype=np.float64)
    if arr.size == 0:
        return 0.0
    curve = np.concatenate([[1.0], np.cumprod(1.0 + arr)])
    peaks = np.maximum.accumulate(curve)
    drawdowns = np.where(peaks > 0, (peaks - curve) / peaks, 0.0)
    return float(drawdowns.max())


def win_rate(returns: Sequence[float]) -> float:
    """Fraction of returns strictly greater than zero."""
    arr = np.asarray(returns, dtype=np.float64)
    if arr.size == 0:
        return 0.0
    return float(np.mean(arr > 0))


def compute_trading_metrics(returns: Sequence[float]) -> TradingMetrics:
    """Summarize a return series."""
    arr = np.asarray(returns, dtype=np.float64)
    if arr.size == 0:
        return TradingMetrics()
    return TradingMetrics(
        total_return=float(arr.sum()),
        average_return=float(arr.mean()),
        volatility=return_volatility(arr),
        sharpe_ratio=sharpe_ratio(arr),
        max_drawdown=max_drawdown(arr),
        win_rate=win_rate(arr),
        number_of_trades=int(arr.size),
    )
