"""
Configuration module for the order-book trainer.

Provides type-safe, serializable configuration dataclasses for:
- Feature extraction and labelling
- Model backend
- Training hyperparameters
- Backtest parameters
"""

from obtrainer.config.schema import (
    # Configuration classes
    FeatureConfig,
    ModelConfig,
    TrainConfig,
    BacktestConfig,
    ExperimentConfig,
    # Enums
    OptimizerType,
    ModelType,
    # Functions
    load_config,
    save_config,
    parse_hyperparameters,
)

__all__ = [
    # Configuration classes
    "FeatureConfig",
    "ModelConfig",
    "TrainConfig",
    "BacktestConfig",
    "ExperimentConfig",
    # Enums
    "OptimizerType",
    "ModelType",
    # Functions
    "load_config",
    "save_config",
    "parse_hyperparameters",
]
