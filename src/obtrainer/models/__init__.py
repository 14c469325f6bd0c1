"""
Model backends for order-book direction prediction.

Available models:
- Baselines: ClassPriorModel
- Neural: MLPModel (torch MLPClassifier behind TrainableModel)

Design principles:
- Every backend implements TrainableModel, so the orchestrator stays opaque
- Configuration-driven hyperparameters
- Factory function for creating models from config

Usage:
    >>> from obtrainer.models import create_model
    >>> from obtrainer.config import ModelConfig, ModelType
    >>>
    >>> model = create_model(ModelConfig(model_type=ModelType.MLP, hidden_size=128))
"""

import logging
from typing import Union

from obtrainer.config import ModelConfig, ModelType
from obtrainer.models.base import TrainableModel
from obtrainer.models.baselines import ClassPriorModel
from obtrainer.models.mlp import MLPClassifier, MLPConfig, MLPModel

logger = logging.getLogger(__name__)


__all__ = [
    "TrainableModel",
    "ClassPriorModel",
    "MLPClassifier",
    "MLPConfig",
    "MLPModel",
    "create_model",
]


def create_model(config: Union[ModelConfig, dict, None] = None) -> TrainableModel:
    """
    Create an (unbuilt) model backend from configuration.

    Args:
        config: ModelConfig or dict with model settings

    Returns:
        TrainableModel instance; call build() before training

    Raises:
        ValueError: If the model type is unknown
    """
    if config is None:
        config = ModelConfig()
    elif isinstance(config, dict):
        config = ModelConfig(**config)

    model_type = ModelType(config.model_type)
    if model_type == ModelType.MLP:
        model = MLPModel(
            hidden_size=config.hidden_size,
            num_classes=config.num_classes,
            dropout=config.dropout,
        )
    elif model_type == ModelType.CLASS_PRIOR:
        model = ClassPriorModel(num_classes=config.num_classes)
    else:
        raise ValueError(f"Unknown model type: {config.model_type}")

    logger.debug(f"Created model backend: {model.name}")
    return model
