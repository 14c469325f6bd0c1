"""
Windowed feature extraction over a time-ordered snapshot stream.

For every index i >= window_size the extractor builds a window made of the
window_size preceding snapshots plus snapshot i, derives a FeatureVector from
it, labels it from snapshots strictly after i, and tags it with a temporal
split by its position ratio i / len(snapshots).

    snapshots:  s0 s1 ... s(i-w) ... s(i-1) s(i) s(i+1) ... s(i+h) ... s(n-1)
                          |<------ window ------>|      |          |
                                                  future_price    direction

Invariants:
    - No sample is emitted for i < window_size.
    - Labels only read snapshots with index > i.
    - The last `horizon` samples carry no direction label.
    - Split tags are monotonic in i (Train, then Validation, then Test).
    - Same snapshots + same config => identical samples.

Usage:
    >>> extractor = FeatureWindowExtractor(FeatureConfig(window_size=10))
    >>> samples = extractor.extract(snapshots)
    >>> train = [s for s in samples if s.split is SplitTag.TRAIN]
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple
import logging
import math
import threading

import numpy as np
from scipy.stats import pearsonr

from obtrainer.config import FeatureConfig
from obtrainer.constants import (
    DIRECTION_DOWN,
    DIRECTION_FLAT,
    DIRECTION_UP,
    DIRECTION_LABEL_KEY,
    FUTURE_PRICE_KEY,
    FeatureGroup,
    MOVING_AVERAGE_PERIODS,
    NUM_CLASSES,
    RSI_PERIOD,
    direction_to_class,
)
from obtrainer.data.indicators import (
    compute_rsi,
    log_return_volatility,
    moving_average,
    price_change,
    price_change_percentage,
)
from obtrainer.data.snapshots import Snapshot, sort_snapshots

logger = logging.getLogger(__name__)


# =============================================================================
# Sample types
# =============================================================================


class SplitTag(str, Enum):
    """Temporal split a sample belongs to."""

    TRAIN = "train"
    VALIDATION = "validation"
    TEST = "test"


@dataclass(frozen=True)
class Sample:
    """
    One (FeatureVector, Label, split-tag) triple.

    `index` is the position of the current snapshot in the ordered input and
    `window_start` the position of the first snapshot of its window, so
    `index - window_start` is always the configured window size.
    """

    index: int
    window_start: int
    symbol: str
    timestamp: object
    features: Dict[str, float]
    labels: Dict[str, float]
    split: SplitTag

    @property
    def window_length(self) -> int:
        """Number of prior snapshots in this sample's window."""
        return self.index - self.window_start

    @property
    def direction(self) -> Optional[int]:
        """Direction label in {-1, 0, +1}, or None near the end of the stream."""
        value = self.labels.get(DIRECTION_LABEL_KEY)
        return None if value is None else int(value)

    @property
    def has_direction(self) -> bool:
        return DIRECTION_LABEL_KEY in self.labels

    @property
    def class_index(self) -> int:
        """Direction as class index 0/1/2."""
        direction = self.direction
        if direction is None:
            raise ValueError(f"Sample {self.index} has no direction label")
        return direction_to_class(direction)

    def with_features(self, features: Dict[str, float]) -> "Sample":
        """Copy of this sample with a different feature vector."""
        return Sample(
            index=self.index,
            window_start=self.window_start,
            symbol=self.symbol,
            timestamp=self.timestamp,
            features=dict(features),
            labels=dict(self.labels),
            split=self.split,
        )

    def to_dict(self) -> Dict:
        timestamp = self.timestamp
        return {
            "index": self.index,
            "window_start": self.window_start,
            "symbol": self.symbol,
            "timestamp": timestamp.isoformat() if hasattr(timestamp, "isoformat") else timestamp,
            "features": dict(self.features),
            "labels": dict(self.labels),
            "split": self.split.value,
        }


# =============================================================================
# Split assignment
# =============================================================================


def assign_split(
    index: int,
    total_length: int,
    train_split: float = 0.70,
    validation_split: float = 0.85,
) -> SplitTag:
    """
    Tag an index by its position ratio index / total_length.

    ratio < train_split -> Train, ratio < validation_split -> Validation,
    otherwise Test.
    """
    if total_length <= 0:
        raise ValueError(f"total_length must be > 0, got {total_length}")
    ratio = index / total_length
    if ratio < train_split:
        return SplitTag.TRAIN
    if ratio < validation_split:
        return SplitTag.VALIDATION
    return SplitTag.TEST


# =============================================================================
# Feature groups
# =============================================================================


def _safe_ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator != 0 else 0.0


def basic_features(snapshot: Snapshot) -> Dict[str, float]:
    """Direct snapshot fields, imbalance ratios and calendar fields."""
    mid = snapshot.mid_price
    bid_volume = snapshot.total_bid_volume
    ask_volume = snapshot.total_ask_volume
    timestamp = snapshot.timestamp
    return {
        "best_bid_price": snapshot.best_bid_price,
        "best_ask_price": snapshot.best_ask_price,
        "mid_price": mid,
        "spread": snapshot.spread,
        "spread_percentage": _safe_ratio(snapshot.spread, mid) * 100.0,
        "best_bid_quantity": snapshot.best_bid_quantity,
        "best_ask_quantity": snapshot.best_ask_quantity,
        "total_bid_volume": bid_volume,
        "total_ask_volume": ask_volume,
        "volume_imbalance": _safe_ratio(bid_volume - ask_volume, bid_volume + ask_volume),
        "volume_ratio": bid_volume / max(ask_volume, 1.0),
        "bid_levels": float(snapshot.bid_levels),
        "ask_levels": float(snapshot.ask_levels),
        "depth_imbalance": _safe_ratio(
            snapshot.bid_levels - snapshot.ask_levels,
            snapshot.bid_levels + snapshot.ask_levels,
        ),
        "hour_of_day": float(timestamp.hour),
        # Sunday = 0
        "day_of_week": float((timestamp.weekday() + 1) % 7),
        "minute_of_hour": float(timestamp.minute),
    }


def technical_features(prices: Sequence[float]) -> Dict[str, float]:
    """
    Indicators over the window's mid-price path.

    Each indicator is omitted when the path is too short for it.
    """
    features: Dict[str, float] = {}
    for period in MOVING_AVERAGE_PERIODS:
        if len(prices) >= period:
            features[f"moving_average_{period}"] = moving_average(prices, period)
    if len(prices) >= RSI_PERIOD:
        features["rsi"] = compute_rsi(prices, RSI_PERIOD)
    if len(prices) >= 2:
        features["volatility"] = log_return_volatility(prices)
        features["price_change"] = price_change(prices)
        features["price_change_percentage"] = price_change_percentage(prices)
    return features


def advanced_features(
    current: Snapshot,
    previous: Optional[Snapshot],
) -> Dict[str, float]:
    """Microprice, order-flow imbalance, effective spread and market impact."""
    features: Dict[str, float] = {}
    bid_qty = current.best_bid_quantity
    ask_qty = current.best_ask_quantity
    total_qty = bid_qty + ask_qty

    if total_qty > 0:
        features["microprice"] = (
            current.best_bid_price * ask_qty + current.best_ask_price * bid_qty
        ) / total_qty
    features["order_flow_imbalance"] = _safe_ratio(bid_qty - ask_qty, total_qty)
    features["effective_spread"] = _safe_ratio(current.spread, current.mid_price)
    if previous is not None and previous.mid_price != 0:
        features["market_impact"] = (
            abs(current.mid_price - previous.mid_price) / previous.mid_price
        )
    return features


def direction_label(current_price: float, future_price: float, threshold: float) -> int:
    """Classify future_price against current_price * (1 +/- threshold)."""
    if future_price > current_price * (1.0 + threshold):
        return DIRECTION_UP
    if future_price < current_price * (1.0 - threshold):
        return DIRECTION_DOWN
    return DIRECTION_FLAT


# =============================================================================
# Extractor
# =============================================================================


class FeatureWindowExtractor:
    """
    Turn an ordered snapshot sequence into windowed, labelled, split Samples.

    Args:
        config: FeatureConfig with window size, horizon, threshold, enabled
            feature groups and split breakpoints.

    Example:
        >>> extractor = FeatureWindowExtractor(FeatureConfig(window_size=10, horizon=5))
        >>> samples = extractor.extract(simulate_snapshots(count=200))
        >>> len(samples)
        190
    """

    def __init__(self, config: Optional[FeatureConfig] = None):
        self.config = config or FeatureConfig()
        self._groups = set(self.config.feature_types)

    def iter_samples(
        self,
        snapshots: Sequence[Snapshot],
        cancel_token: Optional[threading.Event] = None,
    ) -> Iterator[Sample]:
        """
        Lazily yield samples in index order.

        Stops (without raising) as soon as `cancel_token` is set; samples
        already yielded stay valid. Input snapshots are never mutated.
        """
        cfg = self.config
        ordered = sort_snapshots(snapshots)
        total = len(ordered)
        mids = [s.mid_price for s in ordered]

        for i in range(cfg.window_size, total):
            if cancel_token is not None and cancel_token.is_set():
                logger.info(f"Feature extraction cancelled at index {i}/{total}")
                return

            current = ordered[i]
            window_start = i - cfg.window_size
            window_prices = mids[window_start:i + 1]

            features: Dict[str, float] = {}
            if FeatureGroup.BASIC in self._groups:
                features.update(basic_features(current))
            if FeatureGroup.TECHNICAL in self._groups:
                features.update(technical_features(window_prices))
            if FeatureGroup.ADVANCED in self._groups:
                features.update(advanced_features(current, ordered[i - 1]))

            labels: Dict[str, float] = {}
            if i + cfg.horizon < total:
                labels[DIRECTION_LABEL_KEY] = direction_label(
                    mids[i], mids[i + cfg.horizon], cfg.threshold
                )
            if i + 1 < total:
                labels[FUTURE_PRICE_KEY] = mids[i + 1]

            yield Sample(
                index=i,
                window_start=window_start,
                symbol=current.symbol,
                timestamp=current.timestamp,
                features=features,
                labels=labels,
                split=assign_split(i, total, cfg.train_split, cfg.validation_split),
            )

    def extract(
        self,
        snapshots: Sequence[Snapshot],
        cancel_token: Optional[threading.Event] = None,
    ) -> List[Sample]:
        """
        Extract every sample from `snapshots`.

        Returns an empty list when there are no more snapshots than the window
        size. When cancelled, returns the samples produced so far.
        """
        samples = list(self.iter_samples(snapshots, cancel_token))
        labelled = sum(1 for s in samples if s.has_direction)
        logger.info(
            f"Extracted {len(samples)} samples ({labelled} with direction label) "
            f"from {len(snapshots)} snapshots, window={self.config.window_size}, "
            f"horizon={self.config.horizon}"
        )
        return samples


# =============================================================================
# Sample utilities
# =============================================================================


def split_samples(samples: Iterable[Sample]) -> Dict[SplitTag, List[Sample]]:
    """Group samples by split tag, preserving order."""
    groups: Dict[SplitTag, List[Sample]] = {tag: [] for tag in SplitTag}
    for sample in samples:
        groups[sample.split].append(sample)
    return groups


def common_feature_keys(samples: Sequence[Sample]) -> List[str]:
    """Feature keys present on every sample, in the first sample's order."""
    if not samples:
        return []
    shared = set(samples[0].features)
    for sample in samples[1:]:
        shared &= set(sample.features)
    return [key for key in samples[0].features if key in shared]


def samples_to_arrays(
    samples: Sequence[Sample],
    feature_keys: Optional[List[str]] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Stack labelled samples into model inputs.

    Samples without a direction label are skipped.

    Args:
        samples: Samples to convert.
        feature_keys: Column order. Defaults to the keys shared by all samples.

    Returns:
        (features [N, F] float32, one-hot targets [N, 3] float32)

    Raises:
        KeyError: If a sample lacks a requested feature key.
    """
    labelled = [s for s in samples if s.has_direction]
    if feature_keys is None:
        feature_keys = common_feature_keys(labelled)

    features = np.zeros((len(labelled), len(feature_keys)), dtype=np.float32)
    targets = np.zeros((len(labelled), NUM_CLASSES), dtype=np.float32)
    for row, sample in enumerate(labelled):
        features[row] = [sample.features[key] for key in feature_keys]
        targets[row, sample.class_index] = 1.0
    return features, targets


# =============================================================================
# Feature importance and selection
# =============================================================================


@dataclass
class FeatureImportanceResult:
    """Correlation-based feature importance."""

    importances: Dict[str, float] = field(default_factory=dict)
    """|Pearson r| of each eligible feature against the direction label."""

    top_features: List[str] = field(default_factory=list)
    """Keys ranked by importance, descending."""

    total_importance: float = 0.0
    """Sum of all importances."""

    def to_dict(self) -> Dict:
        return {
            "importances": dict(self.importances),
            "top_features": list(self.top_features),
            "total_importance": self.total_importance,
        }


def _abs_pearson(values: np.ndarray, labels: np.ndarray) -> float:
    if values.size < 2 or np.std(values) == 0 or np.std(labels) == 0:
        return 0.0
    r, _ = pearsonr(values, labels)
    return 0.0 if math.isnan(r) else abs(float(r))


def compute_feature_importance(
    samples: Sequence[Sample],
    top_n: int = 10,
) -> FeatureImportanceResult:
    """
    Rank features by |Pearson correlation| with the direction label.

    Only features whose value count equals the label count (present on every
    labelled sample) are scored. Constant features score 0.

    Args:
        samples: Samples to analyze; unlabelled samples are ignored.
        top_n: Number of keys to return in `top_features`.
    """
    labelled = [s for s in samples if s.has_direction]
    labels = np.array([s.direction for s in labelled], dtype=np.float64)

    values: Dict[str, List[float]] = {}
    for sample in labelled:
        for key, value in sample.features.items():
            values.setdefault(key, []).append(float(value))

    importances = {
        key: _abs_pearson(np.asarray(column, dtype=np.float64), labels)
        for key, column in values.items()
        if len(column) == len(labels)
    }
    ranked = sorted(importances.items(), key=lambda kv: (-kv[1], kv[0]))
    result = FeatureImportanceResult(
        importances=importances,
        top_features=[key for key, _ in ranked[:top_n]],
        total_importance=float(sum(importances.values())),
    )
    logger.info(
        f"Feature importance over {len(labelled)} samples: "
        f"top={result.top_features[:3]}, total={result.total_importance:.4f}"
    )
    return result


def select_features(
    samples: Iterable[Sample],
    selected: Iterable[str],
    cancel_token: Optional[threading.Event] = None,
) -> List[Sample]:
    """
    Keep only the requested feature keys on each sample.

    Labels and split tags are preserved. Requested keys a sample does not
    have are simply absent from its filtered vector.
    """
    keep = set(selected)
    filtered = []
    for sample in samples:
        if cancel_token is not None and cancel_token.is_set():
            logger.info(f"Feature selection cancelled after {len(filtered)} samples")
            break
        filtered.append(
            sample.with_features({k: v for k, v in sample.features.items() if k in keep})
        )
    return filtered


# =============================================================================
# Validation
# =============================================================================


@dataclass
class ExtractionReport:
    """Outcome of validate_extraction."""

    is_valid: bool
    sample_count: int
    labelled_count: int
    feature_keys: List[str]
    issues: List[str] = field(default_factory=list)


def validate_extraction(samples: Sequence[Sample]) -> ExtractionReport:
    """
    Check extracted samples before training.

    Flags an empty result, samples without a direction label only,
    non-finite feature values and inconsistent feature key sets.
    """
    issues: List[str] = []
    labelled = [s for s in samples if s.has_direction]
    if not samples:
        issues.append("no samples were extracted")
    elif not labelled:
        issues.append("no sample carries a direction label")

    for sample in samples:
        bad = [k for k, v in sample.features.items() if not math.isfinite(v)]
        if bad:
            issues.append(f"sample {sample.index} has non-finite features: {bad}")

    key_sets = {frozenset(s.features) for s in samples}
    if len(key_sets) > 1:
        issues.append(f"feature key sets differ across samples ({len(key_sets)} variants)")

    return ExtractionReport(
        is_valid=not issues,
        sample_count=len(samples),
        labelled_count=len(labelled),
        feature_keys=common_feature_keys(list(samples)),
        issues=issues,
    )
