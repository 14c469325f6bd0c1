"""
Checkpoint persistence for training runs.

Directory layout:
    checkpoint_dir/
    ├── checkpoint_epoch_000.pt             # model state (written by the model)
    ├── checkpoint_epoch_000_metadata.json  # epoch, score, metrics, timestamp
    ├── ...
    ├── best_checkpoint.pt                  # copy of the best numbered state
    └── best_checkpoint_metadata.json

The score is loss-like: lower is better. With save_best_only a numbered
checkpoint is written only for a strictly lower score; otherwise every call
writes one. Every new best also overwrites the "best" checkpoint.

Usage:
    >>> manager = CheckpointManager("outputs/run1/checkpoints")
    >>> manager.save_checkpoint(model, epoch, val_loss, train_metrics, val_metrics)
    >>> manager.load_best_checkpoint(model)
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import json
import logging
import shutil

logger = logging.getLogger(__name__)

BEST_NAME = "best_checkpoint"
METADATA_SUFFIX = "_metadata.json"


@dataclass
class CheckpointInfo:
    """Metadata persisted next to every checkpoint."""

    epoch: int
    score: float
    path: str
    """Storage handle of the model state."""

    is_best: bool = False
    saved_at: str = field(default_factory=lambda: datetime.now().isoformat())
    train_metrics: Dict[str, float] = field(default_factory=dict)
    validation_metrics: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "epoch": self.epoch,
            "score": self.score,
            "path": self.path,
            "is_best": self.is_best,
            "saved_at": self.saved_at,
            "train_metrics": dict(self.train_metrics),
            "validation_metrics": dict(self.validation_metrics),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckpointInfo":
        return cls(
            epoch=int(data["epoch"]),
            score=float(data["score"]),
            path=data["path"],
            is_best=bool(data.get("is_best", False)),
            saved_at=data.get("saved_at", ""),
            train_metrics=data.get("train_metrics", {}),
            validation_metrics=data.get("validation_metrics", {}),
        )


class CheckpointManager:
    """
    Persist periodic and best-so-far model states and restore the best one.

    Args:
        checkpoint_dir: Directory for checkpoint files (created if missing).
        save_best_only: Only write numbered checkpoints on a new best score.
        file_extension: Extension of model state files.

    An existing best checkpoint in `checkpoint_dir` seeds the best score, so a
    resumed run keeps comparing against it.
    """

    def __init__(
        self,
        checkpoint_dir: Union[str, Path],
        save_best_only: bool = True,
        file_extension: str = ".pt",
    ):
        self.checkpoint_dir = Path(checkpoint_dir)
        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
        self.save_best_only = save_best_only
        self.file_extension = file_extension

        self.best_score = float('inf')
        self.best_epoch: Optional[int] = None
        self.saved_checkpoints: List[CheckpointInfo] = []
        self.best_updates = 0

        best = self._read_metadata(self._best_metadata_path)
        if best is not None:
            self.best_score = best.score
            self.best_epoch = best.epoch
            logger.info(
                f"CheckpointManager: found best checkpoint from epoch {best.epoch} "
                f"(score={best.score:.6f})"
            )

    # =========================================================================
    # Paths
    # =========================================================================

    def _state_path(self, stem: str) -> Path:
        return self.checkpoint_dir / f"{stem}{self.file_extension}"

    def _metadata_path(self, stem: str) -> Path:
        return self.checkpoint_dir / f"{stem}{METADATA_SUFFIX}"

    @property
    def best_checkpoint_path(self) -> Path:
        return self._state_path(BEST_NAME)

    @property
    def _best_metadata_path(self) -> Path:
        return self._metadata_path(BEST_NAME)

    @staticmethod
    def checkpoint_stem(epoch: int) -> str:
        return f"checkpoint_epoch_{epoch:03d}"

    # =========================================================================
    # Save / load
    # =========================================================================

    def save_checkpoint(
        self,
        model,
        epoch: int,
        score: float,
        train_metrics: Optional[Dict[str, float]] = None,
        val_metrics: Optional[Dict[str, float]] = None,
    ) -> Optional[CheckpointInfo]:
        """
        Persist a checkpoint if the policy calls for it.

        Args:
            model: Object with `save(path)`.
            epoch: Epoch number.
            score: Loss-like score, lower is better.
            train_metrics: Training metrics of the epoch.
            val_metrics: Validation metrics of the epoch.

        Returns:
            CheckpointInfo of the numbered checkpoint, or None if nothing was
            written.
        """
        is_best = score < self.best_score
        if self.save_best_only and not is_best:
            logger.debug(
                f"CheckpointManager: epoch {epoch} score {score:.6f} does not beat "
                f"{self.best_score:.6f}, skipping"
            )
            return None

        stem = self.checkpoint_stem(epoch)
        state_path = self._state_path(stem)
        model.save(state_path)

        info = CheckpointInfo(
            epoch=epoch,
            score=float(score),
            path=str(state_path),
            is_best=is_best,
            train_metrics=dict(train_metrics or {}),
            validation_metrics=dict(val_metrics or {}),
        )
        self._write_metadata(self._metadata_path(stem), info)
        self.saved_checkpoints.append(info)
        logger.info(f"CheckpointManager: saved {state_path} (score={score:.6f})")

        if is_best:
            self.best_score = float(score)
            self.best_epoch = epoch
            shutil.copy(state_path, self.best_checkpoint_path)
            best_info = CheckpointInfo(
                epoch=epoch,
                score=float(score),
                path=str(self.best_checkpoint_path),
                is_best=True,
                saved_at=info.saved_at,
                train_metrics=info.train_metrics,
                validation_metrics=info.validation_metrics,
            )
            self._write_metadata(self._best_metadata_path, best_info)
            self.best_updates += 1
            logger.info(
                f"CheckpointManager: updated {BEST_NAME} (epoch {epoch}, score={score:.6f})"
            )

        return info

    def load_best_checkpoint(self, model) -> bool:
        """
        Restore `model` from the best checkpoint.

        Returns:
            True if a best checkpoint existed and was loaded, False otherwise.
        """
        if not self.best_checkpoint_path.exists():
            logger.info("CheckpointManager: no best checkpoint to restore")
            return False
        model.load(self.best_checkpoint_path)
        logger.info(
            f"CheckpointManager: restored best checkpoint "
            f"(epoch {self.best_epoch}, score={self.best_score:.6f})"
        )
        return True

    def get_best_checkpoint(self) -> Optional[CheckpointInfo]:
        """Metadata of the best checkpoint, or None."""
        return self._read_metadata(self._best_metadata_path)

    def get_last_checkpoint(self) -> Optional[CheckpointInfo]:
        """
        Most recently created numbered checkpoint, or None if there is none.
        """
        candidates = self.list_checkpoints()
        if not candidates:
            return None
        return max(candidates, key=lambda c: (c.saved_at, c.epoch))

    def list_checkpoints(self) -> List[CheckpointInfo]:
        """All numbered checkpoints on disk, ordered by epoch."""
        infos = []
        for path in self.checkpoint_dir.glob(f"checkpoint_epoch_*{METADATA_SUFFIX}"):
            info = self._read_metadata(path)
            if info is not None:
                infos.append(info)
        return sorted(infos, key=lambda c: c.epoch)

    # =========================================================================
    # Metadata I/O
    # =========================================================================

    @staticmethod
    def _write_metadata(path: Path, info: CheckpointInfo) -> None:
        with open(path, "w") as f:
            json.dump(info.to_dict(), f, indent=2)

    @staticmethod
    def _read_metadata(path: Path) -> Optional[CheckpointInfo]:
        if not path.exists():
            return None
        try:
            with open(path) as f:
                return CheckpointInfo.from_dict(json.load(f))
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"CheckpointManager: unreadable metadata {path}: {e}")
            return None
