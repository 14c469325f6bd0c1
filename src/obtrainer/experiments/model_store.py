"""
Local filesystem storage for model states and exported artifacts.

Directory structure:
    base_dir/
    ├── {run_id}/
    │   ├── model.pt          # final model state
    │   └── checkpoints/      # CheckpointManager directory
    └── exports/
        ├── {run_id}.pt       # format 'torch'
        └── {run_id}.json     # format 'json'
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union
import json
import logging
import shutil

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("torch", "json")
MODEL_FILENAME = "model.pt"


class ModelStore:
    """
    Resolve, inspect and export persisted model states.

    Args:
        base_dir: Root directory (created if missing).
    """

    def __init__(self, base_dir: Union[str, Path]):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def run_dir(self, run_id: str) -> Path:
        path = self.base_dir / run_id
        path.mkdir(parents=True, exist_ok=True)
        return path

    def path_for(self, run_id: str, filename: str = MODEL_FILENAME) -> Path:
        """Storage handle for a run's model state."""
        return self.run_dir(run_id) / filename

    def checkpoint_dir(self, run_id: str) -> Path:
        return self.run_dir(run_id) / "checkpoints"

    @staticmethod
    def exists(path: Union[str, Path, None]) -> bool:
        return path is not None and Path(path).is_file()

    @staticmethod
    def size(path: Union[str, Path]) -> int:
        """Size in bytes; 0 if the file does not exist."""
        path = Path(path)
        return path.stat().st_size if path.is_file() else 0

    def delete(self, run_id: str) -> bool:
        """Remove every stored file of a run. Returns whether anything existed."""
        path = self.base_dir / run_id
        removed = False
        if path.exists():
            shutil.rmtree(path)
            removed = True
        for export in (self.base_dir / "exports").glob(f"{run_id}.*"):
            export.unlink()
            removed = True
        if removed:
            logger.info(f"ModelStore: deleted stored files of run {run_id}")
        return removed

    def export(
        self,
        run_id: str,
        model_path: Union[str, Path],
        fmt: str = "torch",
        summary: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Path:
        """
        Export a run's model.

        Args:
            run_id: Run identifier (names the exported file).
            model_path: Stored model state.
            fmt: 'torch' copies the state file; 'json' writes the model
                summary plus metadata.
            summary: Model summary for the 'json' format.
            metadata: Extra run metadata for the 'json' format.

        Returns:
            Path of the exported artifact.

        Raises:
            ValueError: If the format is unsupported.
            FileNotFoundError: If the model state does not exist.
        """
        fmt = fmt.lower()
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format: {fmt}. Use one of {EXPORT_FORMATS}")
        if not self.exists(model_path):
            raise FileNotFoundError(f"Model state not found: {model_path}")

        export_dir = self.base_dir / "exports"
        export_dir.mkdir(parents=True, exist_ok=True)

        if fmt == "torch":
            destination = export_dir / f"{run_id}.pt"
            shutil.copy(model_path, destination)
        else:
            destination = export_dir / f"{run_id}.json"
            payload = {
                "run_id": run_id,
                "model_path": str(model_path),
                "size_bytes": self.size(model_path),
                "summary": summary or {},
                "metadata": metadata or {},
            }
            with open(destination, "w") as f:
                json.dump(payload, f, indent=2, default=str)

        logger.info(f"ModelStore: exported run {run_id} as {fmt} to {destination}")
        return destination
