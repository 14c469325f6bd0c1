"""
Constants module for the order-book trainer.

Provides the feature catalogue and the direction label encoding shared by
feature extraction, models and evaluation.
"""

from obtrainer.constants.features import (
    # Label encoding
    DIRECTION_DOWN,
    DIRECTION_FLAT,
    DIRECTION_UP,
    NUM_CLASSES,
    CLASS_NAMES,
    DIRECTION_LABEL_KEY,
    FUTURE_PRICE_KEY,
    direction_to_class,
    class_to_direction,
    # Feature groups
    FeatureGroup,
    BASIC_FEATURES,
    TECHNICAL_FEATURES,
    ADVANCED_FEATURES,
    FEATURE_GROUPS,
    MOVING_AVERAGE_PERIODS,
    RSI_PERIOD,
    available_features,
)

__all__ = [
    "DIRECTION_DOWN",
    "DIRECTION_FLAT",
    "DIRECTION_UP",
    "NUM_CLASSES",
    "CLASS_NAMES",
    "DIRECTION_LABEL_KEY",
    "FUTURE_PRICE_KEY",
    "direction_to_class",
    "class_to_direction",
    "FeatureGroup",
    "BASIC_FEATURES",
    "TECHNICAL_FEATURES",
    "ADVANCED_FEATURES",
    "FEATURE_GROUPS",
    "MOVING_AVERAGE_PERIODS",
    "RSI_PERIOD",
    "available_features",
]
