"""
Persistent records of configurations, datasets, training runs and metrics.

Relationships are foreign-key identifiers (TrainingRun.configuration_id,
EpochMetric.run_id, ...) resolved through a repository, never in-memory
back-references.

Design principles:
- Serializable to JSON for persistence
- Timestamps stored as ISO-8601 strings
- Self-contained: every record round-trips through to_dict/from_dict
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
import uuid


def new_id() -> str:
    """Fresh record identifier."""
    return uuid.uuid4().hex


def now_iso() -> str:
    return datetime.now().isoformat()


class RunStatus(str, Enum):
    """
    Training run lifecycle.

    PENDING -> IN_PROGRESS -> (COMPLETED | FAILED | CANCELLED)
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


class MetricKind(str, Enum):
    """Data split a metric record was computed on."""

    TRAINING = "training"
    VALIDATION = "validation"
    TEST = "test"


@dataclass
class ModelConfiguration:
    """A named set of stored hyperparameters."""

    name: str
    hyperparameters: Dict[str, Any] = field(default_factory=dict)
    """Raw hyperparameters, parsed tolerantly when a run starts."""

    description: str = ""
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "hyperparameters": dict(self.hyperparameters),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelConfiguration":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            hyperparameters=data.get("hyperparameters", {}),
            created_at=data.get("created_at", ""),
        )


@dataclass
class DatasetRecord:
    """
    A snapshot source: a file, optionally narrowed to one symbol and an
    inclusive time range.
    """

    name: str
    file_path: Optional[str] = None
    symbol: Optional[str] = None
    start: Optional[str] = None
    """ISO-8601 lower timestamp bound."""

    end: Optional[str] = None
    """ISO-8601 upper timestamp bound."""

    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=now_iso)

    @property
    def start_time(self) -> Optional[datetime]:
        return datetime.fromisoformat(self.start) if self.start else None

    @property
    def end_time(self) -> Optional[datetime]:
        return datetime.fromisoformat(self.end) if self.end else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "file_path": self.file_path,
            "symbol": self.symbol,
            "start": self.start,
            "end": self.end,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatasetRecord":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            file_path=data.get("file_path"),
            symbol=data.get("symbol"),
            start=data.get("start"),
            end=data.get("end"),
            created_at=data.get("created_at", ""),
        )


@dataclass
class TrainingRun:
    """
    One invocation of the training orchestrator.

    Attributes:
        configuration_id: ModelConfiguration used.
        dataset_id: DatasetRecord trained on.
        status: Lifecycle state; terminal states are final.
        epochs_completed: Epochs that ran to completion.
        model_path: Storage handle of the final model state.
        error_message: Failure or cancellation message.
        artifacts: Consolidated results (best epoch, best validation loss,
            test metrics, model summary, configuration snapshot).
    """

    configuration_id: str
    dataset_id: str
    status: RunStatus = RunStatus.PENDING
    id: str = field(default_factory=new_id)
    started_at: str = field(default_factory=now_iso)
    completed_at: Optional[str] = None
    epochs_completed: int = 0
    best_epoch: Optional[int] = None
    best_validation_loss: Optional[float] = None
    model_path: Optional[str] = None
    checkpoint_dir: Optional[str] = None
    error_message: Optional[str] = None
    artifacts: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "configuration_id": self.configuration_id,
            "dataset_id": self.dataset_id,
            "status": self.status.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "epochs_completed": self.epochs_completed,
            "best_epoch": self.best_epoch,
            "best_validation_loss": self.best_validation_loss,
            "model_path": self.model_path,
            "checkpoint_dir": self.checkpoint_dir,
            "error_message": self.error_message,
            "artifacts": dict(self.artifacts),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrainingRun":
        return cls(
            id=data["id"],
            configuration_id=data["configuration_id"],
            dataset_id=data["dataset_id"],
            status=RunStatus(data.get("status", RunStatus.PENDING.value)),
            started_at=data.get("started_at", ""),
            completed_at=data.get("completed_at"),
            epochs_completed=int(data.get("epochs_completed", 0)),
            best_epoch=data.get("best_epoch"),
            best_validation_loss=data.get("best_validation_loss"),
            model_path=data.get("model_path"),
            checkpoint_dir=data.get("checkpoint_dir"),
            error_message=data.get("error_message"),
            artifacts=data.get("artifacts", {}),
        )


@dataclass
class EpochMetric:
    """Metrics of one split at one epoch of a run."""

    run_id: str
    epoch: int
    kind: MetricKind
    loss: float
    accuracy: float
    precision: Optional[float] = None
    recall: Optional[float] = None
    f1: Optional[float] = None
    learning_rate: Optional[float] = None
    id: str = field(default_factory=new_id)
    recorded_at: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "epoch": self.epoch,
            "kind": self.kind.value,
            "loss": self.loss,
            "accuracy": self.accuracy,
            "precision": self.precision,
            "recall": self.recall,
            "f1": self.f1,
            "learning_rate": self.learning_rate,
            "recorded_at": self.recorded_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EpochMetric":
        return cls(
            id=data["id"],
            run_id=data["run_id"],
            epoch=int(data["epoch"]),
            kind=MetricKind(data["kind"]),
            loss=float(data["loss"]),
            accuracy=float(data["accuracy"]),
            precision=data.get("precision"),
            recall=data.get("recall"),
            f1=data.get("f1"),
            learning_rate=data.get("learning_rate"),
            recorded_at=data.get("recorded_at", ""),
        )
