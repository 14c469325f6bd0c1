"""
Training and evaluation infrastructure for order-book direction models.

Provides:
- Optimizers: learning-rate controllers with epoch-based decay
- EarlyStopping: patience-based stopping state machine
- CheckpointManager: periodic and best-so-far model states
- TrainingService: run orchestration (start/stop/resume/export)
- Metrics / evaluation: classification, trading metrics, cross-validation
- Backtest: replay predictions as a trading strategy

Design principles:
- Configuration-driven training
- Deterministic with seed management
- Extensible via callbacks
- Structured reporting for experiment tracking

Usage:
    >>> from obtrainer.training import TrainingService, ModelEvaluator
    >>>
    >>> service = TrainingService(uow, model_store)
    >>> run = service.start_run(config_id, dataset_id)
    >>> ModelEvaluator(service).evaluate(run.id).summary()
"""

# Loss first: model backends import it while this package initializes.
from obtrainer.training.loss import (
    EPSILON,
    count_correct,
    cross_entropy_loss,
    one_hot,
)

from obtrainer.training.metrics import (
    ClassificationMetrics,
    PerClassMetrics,
    RegressionMetrics,
    TradingMetrics,
    compute_classification_metrics,
    compute_regression_metrics,
    compute_trading_metrics,
    max_drawdown,
    sharpe_ratio,
    simulate_trading_returns,
    win_rate,
)

from obtrainer.training.optimizers import (
    Optimizer,
    SGDOptimizer,
    AdaGradOptimizer,
    RMSpropOptimizer,
    AdamOptimizer,
    create_optimizer,
)

from obtrainer.training.early_stopping import (
    EarlyStopping,
    StoppingState,
)

from obtrainer.training.checkpoint import (
    CheckpointInfo,
    CheckpointManager,
)

from obtrainer.training.callbacks import (
    Callback,
    CallbackList,
    MetricLogger,
    ProgressCallback,
)

from obtrainer.training.registry import RunRegistry

from obtrainer.training.backtest import (
    BacktestResult,
    Portfolio,
    Trade,
    run_backtest,
)

from obtrainer.training.trainer import (
    TrainingService,
    TrainingState,
    PreparedData,
    prepare_data,
    iterate_batches,
)

from obtrainer.training.evaluation import (
    CrossValidationResult,
    EvaluationMetrics,
    ModelEvaluator,
    Predictions,
    cross_validate,
    evaluate_model,
    kfold_ranges,
    make_predictions,
)

__all__ = [
    # Loss
    "EPSILON",
    "count_correct",
    "cross_entropy_loss",
    "one_hot",
    # Metrics
    "ClassificationMetrics",
    "PerClassMetrics",
    "RegressionMetrics",
    "TradingMetrics",
    "compute_classification_metrics",
    "compute_regression_metrics",
    "compute_trading_metrics",
    "max_drawdown",
    "sharpe_ratio",
    "simulate_trading_returns",
    "win_rate",
    # Optimizers
    "Optimizer",
    "SGDOptimizer",
    "AdaGradOptimizer",
    "RMSpropOptimizer",
    "AdamOptimizer",
    "create_optimizer",
    # Control
    "EarlyStopping",
    "StoppingState",
    "CheckpointInfo",
    "CheckpointManager",
    "Callback",
    "CallbackList",
    "MetricLogger",
    "ProgressCallback",
    "RunRegistry",
    # Backtest
    "BacktestResult",
    "Portfolio",
    "Trade",
    "run_backtest",
    # Orchestration
    "TrainingService",
    "TrainingState",
    "PreparedData",
    "prepare_data",
    "iterate_batches",
    # Evaluation
    "CrossValidationResult",
    "EvaluationMetrics",
    "ModelEvaluator",
    "Predictions",
    "cross_validate",
    "evaluate_model",
    "kfold_ranges",
    "make_predictions",
]
