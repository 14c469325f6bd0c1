"""
Order-book Model Trainer: direction classifiers over order-book snapshots.

Pipeline:
    snapshots -> FeatureWindowExtractor -> Samples (Train/Validation/Test)
    -> TrainingService (Optimizer, EarlyStopping, CheckpointManager)
    -> trained model + TrainingRun -> ModelEvaluator / run_backtest

Label Contract:
    - Direction: -1 (Down), 0 (Flat), +1 (Up) by comparing mid price h steps
      ahead with mid * (1 ± threshold)
    - Class index = direction + 1 (0=Down, 1=Flat, 2=Up)

Quick Start:
    >>> from obtrainer import TrainingService, UnitOfWork, ModelStore
    >>> from obtrainer.experiments import ModelConfiguration, DatasetRecord
    >>>
    >>> uow = UnitOfWork.json_store("outputs/store")
    >>> config = uow.configurations.add(ModelConfiguration("mlp", {"epochs": 20}))
    >>> dataset = uow.datasets.add(DatasetRecord("btc", file_path="data/btc.csv"))
    >>> uow.commit()
    >>> run = TrainingService(uow, ModelStore("outputs/models")).start_run(config.id, dataset.id)
    >>> print(run.status, run.artifacts["test_metrics"])
"""

__version__ = "0.1.0"

# Constants
from obtrainer.constants import CLASS_NAMES, NUM_CLASSES, FeatureGroup

# Configuration
from obtrainer.config import (
    FeatureConfig,
    ModelConfig,
    TrainConfig,
    BacktestConfig,
    ExperimentConfig,
    load_config,
    save_config,
    parse_hyperparameters,
)

# Errors
from obtrainer.errors import (
    ObTrainerError,
    NotFoundError,
    InvalidConfigurationError,
    TrainingCancelled,
    TrainingFailure,
)

# Data
from obtrainer.data import (
    Snapshot,
    Sample,
    SplitTag,
    FeatureWindowExtractor,
    load_snapshots,
    simulate_snapshots,
)

# Training (before models: model backends import the training loss helpers)
from obtrainer.training import (
    TrainingService,
    ModelEvaluator,
    CheckpointManager,
    EarlyStopping,
    RunRegistry,
    create_optimizer,
    run_backtest,
)

# Models
from obtrainer.models import (
    create_model,
    TrainableModel,
    MLPModel,
    ClassPriorModel,
)

# Persistence
from obtrainer.experiments import (
    ModelStore,
    UnitOfWork,
    RunStatus,
)

# Utilities
from obtrainer.utils import set_seed, setup_logging

__all__ = [
    # Version
    "__version__",
    # Constants
    "CLASS_NAMES",
    "NUM_CLASSES",
    "FeatureGroup",
    # Configuration
    "FeatureConfig",
    "ModelConfig",
    "TrainConfig",
    "BacktestConfig",
    "ExperimentConfig",
    "load_config",
    "save_config",
    "parse_hyperparameters",
    # Errors
    "ObTrainerError",
    "NotFoundError",
    "InvalidConfigurationError",
    "TrainingCancelled",
    "TrainingFailure",
    # Data
    "Snapshot",
    "Sample",
    "SplitTag",
    "FeatureWindowExtractor",
    "load_snapshots",
    "simulate_snapshots",
    # Training
    "TrainingService",
    "ModelEvaluator",
    "CheckpointManager",
    "EarlyStopping",
    "RunRegistry",
    "create_optimizer",
    "run_backtest",
    # Models
    "create_model",
    "TrainableModel",
    "MLPModel",
    "ClassPriorModel",
    # Persistence
    "ModelStore",
    "UnitOfWork",
    "RunStatus",
    # Utilities
    "set_seed",
    "setup_logging",
]
