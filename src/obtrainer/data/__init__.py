"""
Data module: order-book snapshots and windowed feature extraction.

Data flow:
    snapshot file -> load_snapshots -> FeatureWindowExtractor.extract
    -> Samples tagged Train/Validation/Test -> samples_to_arrays -> model
"""

from obtrainer.data.snapshots import (
    Snapshot,
    load_snapshots,
    save_snapshots,
    filter_snapshots,
    simulate_snapshots,
    snapshots_from_frame,
    sort_snapshots,
)
from obtrainer.data.indicators import (
    compute_rsi,
    log_return_volatility,
    moving_average,
)
from obtrainer.data.features import (
    Sample,
    SplitTag,
    FeatureWindowExtractor,
    FeatureImportanceResult,
    ExtractionReport,
    assign_split,
    split_samples,
    samples_to_arrays,
    common_feature_keys,
    compute_feature_importance,
    select_features,
    validate_extraction,
)

__all__ = [
    # Snapshots
    "Snapshot",
    "load_snapshots",
    "save_snapshots",
    "filter_snapshots",
    "simulate_snapshots",
    "snapshots_from_frame",
    "sort_snapshots",
    # Indicators
    "compute_rsi",
    "log_return_volatility",
    "moving_average",
    # Features
    "Sample",
    "SplitTag",
    "FeatureWindowExtractor",
    "FeatureImportanceResult",
    "ExtractionReport",
    "assign_split",
    "split_samples",
    "samples_to_arrays",
    "common_feature_keys",
    "compute_feature_importance",
    "select_features",
    "validate_extraction",
]
