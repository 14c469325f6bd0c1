"""
Experiment records and their persistence.

Provides:
- Records: ModelConfiguration, DatasetRecord, TrainingRun, EpochMetric
- Repository / UnitOfWork: record storage (in-memory or JSON files)
- ModelStore: model state files and exports
"""

from obtrainer.experiments.records import (
    DatasetRecord,
    EpochMetric,
    MetricKind,
    ModelConfiguration,
    RunStatus,
    TrainingRun,
    new_id,
)
from obtrainer.experiments.repository import (
    InMemoryRepository,
    JsonRepository,
    Repository,
    UnitOfWork,
)
from obtrainer.experiments.model_store import EXPORT_FORMATS, ModelStore

__all__ = [
    "DatasetRecord",
    "EpochMetric",
    "MetricKind",
    "ModelConfiguration",
    "RunStatus",
    "TrainingRun",
    "new_id",
    "InMemoryRepository",
    "JsonRepository",
    "Repository",
    "UnitOfWork",
    "EXPORT_FORMATS",
    "ModelStore",
]
