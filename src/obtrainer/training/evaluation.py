"""
Model evaluation framework for order-book direction prediction.

Provides:
- make_predictions: direction, confidence and probabilities per sample
- evaluate_model: classification, regression-diagnostic and trading metrics
- cross_validate: contiguous k-fold cross-validation with fresh models
- ModelEvaluator: run-id entry points (evaluate, compare, report, validate,
  cross-validate, backtest) on top of a TrainingService

Design principles:
- Consistent evaluation across all backends
- Temporal order preserved: folds are contiguous blocks
- Structured results serializable to JSON for experiment tracking
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import logging

import numpy as np

from obtrainer.config import OptimizerType
from obtrainer.constants import class_to_direction
from obtrainer.data import Sample, SplitTag, sort_snapshots, FeatureWindowExtractor
from obtrainer.errors import NotFoundError
from obtrainer.experiments import MetricKind, RunStatus
from obtrainer.models import TrainableModel
from obtrainer.training.backtest import BacktestResult, run_backtest
from obtrainer.training.loss import cross_entropy_loss
from obtrainer.training.metrics import (
    ClassificationMetrics,
    RegressionMetrics,
    TradingMetrics,
    compute_classification_metrics,
    compute_regression_metrics,
    compute_trading_metrics,
    simulate_trading_returns,
)
from obtrainer.training.optimizers import create_optimizer
from obtrainer.training.trainer import TrainingService, iterate_batches
from obtrainer.utils.reproducibility import derive_seed, set_seed

logger = logging.getLogger(__name__)


# =============================================================================
# Predictions
# =============================================================================


@dataclass
class Predictions:
    """Per-sample model outputs."""

    probabilities: np.ndarray
    """[N, C] class probabilities."""

    classes: np.ndarray
    """[N] argmax class index."""

    directions: np.ndarray
    """[N] predicted direction in {-1, 0, +1}."""

    confidences: np.ndarray
    """[N] probability of the predicted class."""

    def __len__(self) -> int:
        return int(self.classes.shape[0])

    def to_records(self) -> List[Dict[str, Any]]:
        return [
            {
                "direction": int(self.directions[i]),
                "confidence": float(self.confidences[i]),
                "class_probabilities": self.probabilities[i].tolist(),
            }
            for i in range(len(self))
        ]


def make_predictions(model: TrainableModel, features: np.ndarray) -> Predictions:
    """
    Predict direction and confidence for every row of `features`.

    Example:
        >>> preds = make_predictions(model, X_test)
        >>> preds.directions[:3], preds.confidences[:3]
    """
    probabilities = np.asarray(model.predict(features), dtype=np.float64)
    if probabilities.shape[0] == 0:
        empty = np.zeros(0, dtype=np.int64)
        return Predictions(probabilities, empty, empty, np.zeros(0))
    classes = probabilities.argmax(axis=1)
    return Predictions(
        probabilities=probabilities,
        classes=classes,
        directions=np.array([class_to_direction(c) for c in classes], dtype=np.int64),
        confidences=probabilities[np.arange(len(classes)), classes],
    )


# =============================================================================
# Evaluation
# =============================================================================


@dataclass
class EvaluationMetrics:
    """Everything computed from one evaluation pass."""

    loss: float
    classification: ClassificationMetrics
    regression: RegressionMetrics
    trading: TradingMetrics

    @property
    def accuracy(self) -> float:
        return self.classification.accuracy

    @property
    def f1(self) -> float:
        return self.classification.f1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loss": self.loss,
            **self.classification.to_dict(),
            "regression": self.regression.to_dict(),
            "trading": self.trading.to_dict(),
        }

    def summary(self) -> str:
        t = self.trading
        return "\n".join([
            f"Loss: {self.loss:.4f}",
            self.classification.summary(),
            "",
            f"MSE={self.regression.mse:.4f} MAE={self.regression.mae:.4f} "
            f"RMSE={self.regression.rmse:.4f} R2={self.regression.r_squared:.4f}",
            f"Trading: total_return={t.total_return:.4f} sharpe={t.sharpe_ratio:.4f} "
            f"max_drawdown={t.max_drawdown:.4f} win_rate={t.win_rate:.4f} "
            f"trades={t.number_of_trades}",
        ])


def evaluate_model(
    model: TrainableModel,
    features: np.ndarray,
    targets: np.ndarray,
    name: Optional[str] = None,
) -> EvaluationMetrics:
    """
    Evaluate a model on given data.

    Args:
        model: Built model.
        features: [N, F] features.
        targets: [N, C] one-hot targets.
        name: Optional name for logging.

    Returns:
        EvaluationMetrics
    """
    probabilities = model.predict(features) if len(features) else np.zeros_like(targets, dtype=np.float64)
    metrics = EvaluationMetrics(
        loss=cross_entropy_loss(probabilities, targets),
        classification=compute_classification_metrics(probabilities, targets),
        regression=compute_regression_metrics(probabilities, targets),
        trading=compute_trading_metrics(simulate_trading_returns(probabilities, targets)),
    )
    logger.info(
        f"{name or model.name}: accuracy={metrics.accuracy:.4f}, f1={metrics.f1:.4f}, "
        f"loss={metrics.loss:.4f} ({metrics.classification.n_samples} samples)"
    )
    return metrics


# =============================================================================
# Cross-validation
# =============================================================================


@dataclass
class CrossValidationResult:
    """Per-fold accuracies of contiguous k-fold cross-validation."""

    folds: List[Tuple[int, int]]
    """[start, end) sample range of each validation fold."""

    fold_accuracies: List[float]
    mean_accuracy: float
    std_accuracy: float
    """Sample standard deviation (ddof=1); 0 for a single fold."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "k": len(self.folds),
            "folds": [list(f) for f in self.folds],
            "fold_accuracies": self.fold_accuracies,
            "mean_accuracy": self.mean_accuracy,
            "std_accuracy": self.std_accuracy,
        }


def kfold_ranges(n_samples: int, k: int) -> List[Tuple[int, int]]:
    """
    Contiguous, order-preserving fold ranges.

    fold_size = n // k; the last fold also takes the remainder.

    Raises:
        ValueError: If k < 2 or k > n_samples.

    Example:
        >>> kfold_ranges(10, 3)
        [(0, 3), (3, 6), (6, 10)]
    """
    if k < 2:
        raise ValueError(f"k must be >= 2, got {k}")
    if k > n_samples:
        raise ValueError(f"k={k} exceeds number of samples {n_samples}")
    fold_size = n_samples // k
    return [
        (i * fold_size, n_samples if i == k - 1 else (i + 1) * fold_size)
        for i in range(k)
    ]


def cross_validate(
    model_factory: Callable[[], TrainableModel],
    features: np.ndarray,
    targets: np.ndarray,
    k: int = 5,
    epochs: int = 1,
    batch_size: int = 32,
    optimizer: OptimizerType = OptimizerType.ADAGRAD,
    learning_rate: Optional[float] = None,
    seed: int = 42,
) -> CrossValidationResult:
    """
    Train a fresh model per fold on the other k-1 folds and score the
    held-out fold.

    Args:
        model_factory: Returns a new, unbuilt model.
        features: [N, F] features in temporal order.
        targets: [N, C] one-hot targets.
        k: Number of folds.
        epochs: Training epochs per fold.
        batch_size: Batch size.
        optimizer: Learning-rate controller variant.
        learning_rate: Initial learning rate (variant default if None).
        seed: Base seed; fold i trains with derive_seed(seed, i).

    Returns:
        CrossValidationResult
    """
    features = np.asarray(features)
    targets = np.asarray(targets)
    folds = kfold_ranges(features.shape[0], k)
    accuracies: List[float] = []

    for i, (start, end) in enumerate(folds):
        set_seed(derive_seed(seed, i))
        train_x = np.concatenate([features[:start], features[end:]])
        train_y = np.concatenate([targets[:start], targets[end:]])
        val_x, val_y = features[start:end], targets[start:end]

        model = model_factory()
        model.build(features.shape[1], reference=train_x)
        fold_optimizer = create_optimizer(optimizer, learning_rate)
        for _ in range(epochs):
            model.train_one_epoch(iterate_batches(train_x, train_y, batch_size), fold_optimizer)

        accuracy = compute_classification_metrics(model.predict(val_x), val_y).accuracy
        accuracies.append(accuracy)
        logger.info(f"Fold {i + 1}/{k} [{start}, {end}): accuracy={accuracy:.4f}")

    std = float(np.std(accuracies, ddof=1)) if len(accuracies) > 1 else 0.0
    result = CrossValidationResult(
        folds=folds,
        fold_accuracies=accuracies,
        mean_accuracy=float(np.mean(accuracies)),
        std_accuracy=std,
    )
    logger.info(
        f"Cross-validation (k={k}): accuracy={result.mean_accuracy:.4f} "
        f"± {result.std_accuracy:.4f}"
    )
    return result


# =============================================================================
# Reports
# =============================================================================


@dataclass
class ModelComparisonEntry:
    run_id: str
    model_name: str
    accuracy: float
    f1: float
    rank: int = 0


@dataclass
class PerformanceReport:
    """Latest epoch metrics, test metrics and a text summary of a run."""

    run_id: str
    status: str
    latest_training: Optional[Dict[str, Any]]
    latest_validation: Optional[Dict[str, Any]]
    test_metrics: Optional[Dict[str, Any]]
    summary: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "latest_training": self.latest_training,
            "latest_validation": self.latest_validation,
            "test_metrics": self.test_metrics,
            "summary": self.summary,
        }


@dataclass
class ModelValidationReport:
    """Whether a run's stored model exists and loads."""

    run_id: str
    is_valid: bool
    model_exists: bool = False
    loads: bool = False
    size_bytes: int = 0
    errors: List[str] = field(default_factory=list)


def sample_matrix(samples: Sequence[Sample], feature_keys: List[str]) -> np.ndarray:
    """Stack samples (labelled or not) into a [N, F] float32 matrix."""
    matrix = np.zeros((len(samples), len(feature_keys)), dtype=np.float32)
    for row, sample in enumerate(samples):
        matrix[row] = [sample.features[key] for key in feature_keys]
    return matrix


class ModelEvaluator:
    """
    Run-id entry points for evaluation, comparison, reporting, validation,
    cross-validation and backtesting.

    Args:
        service: TrainingService whose runs are evaluated.
    """

    def __init__(self, service: TrainingService):
        self.service = service

    def _completed_run(self, run_id: str):
        run = self.service.get_result(run_id)
        if run.status != RunStatus.COMPLETED:
            raise ValueError(f"Run {run_id} is {run.status.value}, not completed")
        return run

    def evaluate(self, run_id: str, split: SplitTag = SplitTag.TEST) -> EvaluationMetrics:
        """Evaluate a completed run's final model on one split."""
        run = self._completed_run(run_id)
        _, data = self.service.prepare_run_data(run)
        model = self.service.load_model(run_id)
        features, targets = data.split(split)
        return evaluate_model(model, features, targets, name=f"{model.name}[{run_id[:8]}]")

    def compare_models(self, run_ids: Sequence[str]) -> List[ModelComparisonEntry]:
        """
        Rank runs by test accuracy, descending (rank 1 is best).

        Runs that cannot be evaluated are skipped with a warning.
        """
        entries = []
        for run_id in run_ids:
            try:
                metrics = self.evaluate(run_id)
                summary = self.service.get_result(run_id).artifacts.get("model_summary") or {}
            except (NotFoundError, ValueError, OSError) as e:
                logger.warning(f"Skipping run {run_id} in comparison: {e}")
                continue
            entries.append(ModelComparisonEntry(
                run_id=run_id,
                model_name=summary.get("name", ""),
                accuracy=metrics.accuracy,
                f1=metrics.f1,
            ))

        entries.sort(key=lambda e: e.accuracy, reverse=True)
        for rank, entry in enumerate(entries, start=1):
            entry.rank = rank
        return entries

    def generate_performance_report(self, run_id: str) -> PerformanceReport:
        run = self.service.get_result(run_id)
        training = self.service.get_metrics(run_id, MetricKind.TRAINING)
        validation = self.service.get_metrics(run_id, MetricKind.VALIDATION)
        latest_training = training[-1].to_dict() if training else None
        latest_validation = validation[-1].to_dict() if validation else None
        test_metrics = run.artifacts.get("test_metrics")

        lines = [
            f"Run {run.id} ({run.status.value})",
            f"Epochs completed: {run.epochs_completed}",
            f"Best epoch: {run.best_epoch}, best val_loss: {run.best_validation_loss}",
        ]
        if latest_training:
            lines.append(
                f"Last training epoch {latest_training['epoch']}: "
                f"loss={latest_training['loss']:.4f}, accuracy={latest_training['accuracy']:.4f}"
            )
        if latest_validation:
            lines.append(
                f"Last validation epoch {latest_validation['epoch']}: "
                f"loss={latest_validation['loss']:.4f}, accuracy={latest_validation['accuracy']:.4f}"
            )
        if test_metrics:
            lines.append(
                "Test: " + ", ".join(
                    f"{k}={v:.4f}" for k, v in test_metrics.items() if isinstance(v, (int, float))
                )
            )
        if run.error_message:
            lines.append(f"Error: {run.error_message}")

        return PerformanceReport(
            run_id=run.id,
            status=run.status.value,
            latest_training=latest_training,
            latest_validation=latest_validation,
            test_metrics=test_metrics,
            summary="\n".join(lines),
        )

    def validate_model(self, run_id: str) -> ModelValidationReport:
        """Check that the run's stored model exists and loads."""
        run = self.service.get_result(run_id)
        report = ModelValidationReport(run_id=run_id, is_valid=False)
        store = self.service.model_store

        report.model_exists = store.exists(run.model_path)
        if not report.model_exists:
            report.errors.append(f"Model file not found: {run.model_path}")
            return report
        report.size_bytes = store.size(run.model_path)

        try:
            model = self.service.load_model(run_id)
            report.loads = model.is_built
        except (NotFoundError, ValueError, KeyError, OSError, RuntimeError) as e:
            report.errors.append(f"Model failed to load: {e}")
        report.is_valid = report.model_exists and report.loads
        return report

    def cross_validate(self, run_id: str, k: int = 5, epochs: Optional[int] = None) -> CrossValidationResult:
        """
        Cross-validate a run's configuration over its labelled samples.

        Args:
            run_id: Run whose configuration and dataset are used.
            k: Number of folds.
            epochs: Epochs per fold (default: the run's epochs_completed, at least 1).
        """
        run = self.service.get_result(run_id)
        config, data = self.service.prepare_run_data(run)
        features = np.concatenate([data.split(tag)[0] for tag in SplitTag])
        targets = np.concatenate([data.split(tag)[1] for tag in SplitTag])
        return cross_validate(
            lambda: self.service.model_factory(config.model),
            features,
            targets,
            k=k,
            epochs=epochs if epochs is not None else max(run.epochs_completed, 1),
            batch_size=config.train.batch_size,
            optimizer=config.train.optimizer,
            learning_rate=config.train.learning_rate,
            seed=config.train.seed,
        )

    def backtest(self, run_id: str, split: Optional[SplitTag] = None) -> BacktestResult:
        """
        Replay a completed run's predictions as a trading strategy.

        Args:
            run_id: Completed run.
            split: Restrict the replay to one split (default: every sample).
        """
        run = self._completed_run(run_id)
        config = self.service.run_config(run)
        dataset = self.service.get_dataset(run.dataset_id)
        ordered = sort_snapshots(self.service.snapshot_provider(dataset))
        samples = FeatureWindowExtractor(config.features).extract(ordered)
        if split is not None:
            samples = [s for s in samples if s.split == split]

        feature_keys = run.artifacts.get("feature_keys") or []
        model = self.service.load_model(run_id)
        return run_backtest(
            model,
            sample_matrix(samples, feature_keys),
            prices=[ordered[s.index].mid_price for s in samples],
            timestamps=[s.timestamp for s in samples],
            config=config.backtest,
        )
