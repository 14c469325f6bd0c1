"""
Feature catalogue and label encoding for order-book direction models.

This module is the DATA CONTRACT between the feature extractor, the models
and the evaluation code. Feature keys are stable across a configuration; the
set of keys present on a sample depends on the enabled feature groups.

Feature Groups Overview:
    | Group     | Source                        | Requires window |
    |-----------|-------------------------------|-----------------|
    | basic     | current snapshot fields       | no              |
    | technical | mid-price path of the window  | yes             |
    | advanced  | current + previous snapshot   | partially       |

Label Encoding:
    Directions are stored as -1 (Down), 0 (Flat), +1 (Up). Models work on
    class indices 0/1/2, obtained with ``direction_to_class``.
"""

from enum import Enum
from typing import Dict, Final, List, Tuple


# =============================================================================
# Label Encoding
# =============================================================================

DIRECTION_DOWN: Final[int] = -1
"""Mid-price moved down by more than the threshold."""

DIRECTION_FLAT: Final[int] = 0
"""Mid-price stayed within the threshold band."""

DIRECTION_UP: Final[int] = 1
"""Mid-price moved up by more than the threshold."""

NUM_CLASSES: Final[int] = 3

CLASS_NAMES: Final[Tuple[str, ...]] = ("Down", "Flat", "Up")
"""Class names indexed by class index (0=Down, 1=Flat, 2=Up)."""

DIRECTION_LABEL_KEY: Final[str] = "price_direction"
"""Label key holding the 3-way direction."""

FUTURE_PRICE_KEY: Final[str] = "future_price"
"""Label key holding the next-step mid-price regression target."""


def direction_to_class(direction: int) -> int:
    """
    Map a direction in {-1, 0, +1} to a class index in {0, 1, 2}.

    Out-of-range values are clamped, so any positive value maps to Up.
    """
    return min(max(int(direction) + 1, 0), NUM_CLASSES - 1)


def class_to_direction(class_index: int) -> int:
    """Map a class index in {0, 1, 2} back to a direction in {-1, 0, +1}."""
    return int(class_index) - 1


# =============================================================================
# Feature Groups
# =============================================================================


class FeatureGroup(str, Enum):
    """Feature group that can be enabled per configuration."""

    BASIC = "basic"
    """Direct snapshot fields and calendar fields."""

    TECHNICAL = "technical"
    """Indicators computed over the window's mid-price path."""

    ADVANCED = "advanced"
    """Microstructure features (microprice, order flow, impact)."""


BASIC_FEATURES: Final[List[str]] = [
    "best_bid_price",
    "best_ask_price",
    "mid_price",
    "spread",
    "spread_percentage",
    "best_bid_quantity",
    "best_ask_quantity",
    "total_bid_volume",
    "total_ask_volume",
    "volume_imbalance",
    "volume_ratio",
    "bid_levels",
    "ask_levels",
    "depth_imbalance",
    "hour_of_day",
    "day_of_week",
    "minute_of_hour",
]

TECHNICAL_FEATURES: Final[List[str]] = [
    "moving_average_5",
    "moving_average_10",
    "moving_average_20",
    "rsi",
    "volatility",
    "price_change",
    "price_change_percentage",
]

ADVANCED_FEATURES: Final[List[str]] = [
    "microprice",
    "order_flow_imbalance",
    "effective_spread",
    "market_impact",
]

FEATURE_GROUPS: Final[Dict[FeatureGroup, List[str]]] = {
    FeatureGroup.BASIC: BASIC_FEATURES,
    FeatureGroup.TECHNICAL: TECHNICAL_FEATURES,
    FeatureGroup.ADVANCED: ADVANCED_FEATURES,
}


def available_features(groups=None) -> List[str]:
    """
    List the feature keys the extractor can produce.

    Args:
        groups: Iterable of FeatureGroup (or their string values).
            None lists every group.

    Returns:
        Feature keys in catalogue order.
    """
    if groups is None:
        groups = list(FeatureGroup)
    selected = {FeatureGroup(g) for g in groups}
    return [
        name
        for group, names in FEATURE_GROUPS.items()
        if group in selected
        for name in names
    ]


# =============================================================================
# Moving average / indicator lookbacks
# =============================================================================

MOVING_AVERAGE_PERIODS: Final[Tuple[int, ...]] = (5, 10, 20)
RSI_PERIOD: Final[int] = 14
