"""
Callback system for training run hooks.

Callbacks add reporting around the training loop without modifying the
orchestrator. Early stopping and checkpointing are not callbacks here: they
are explicit components the orchestrator consults at fixed points of every
epoch.

Callback lifecycle:
    on_train_start(run_id, total_epochs) - once before the first epoch
    on_epoch_start(epoch)                - at the start of each epoch
    on_batch_end(batch_idx, logs)        - after each training batch
    on_epoch_end(epoch, logs)            - after validation of each epoch
    on_train_end(status)                 - once with the terminal status

Design principles:
- Callbacks are optional and composable
- Each callback has a single responsibility
- Callbacks never change training behavior

Usage:
    >>> service = TrainingService(
    ...     uow, store,
    ...     callbacks=[ProgressCallback()],
    ...     callback_factory=lambda: [MetricLogger(log_file='outputs/{run_id}/history.json')],
    ... )
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from tqdm import tqdm

logger = logging.getLogger(__name__)


# =============================================================================
# Base Callback Interface
# =============================================================================


class Callback:
    """
    Base class for all callbacks.

    Default implementations are no-ops to allow selective overriding.
    """

    def on_train_start(self, run_id: str, total_epochs: int) -> None:
        """Called before the first epoch of a run."""
        pass

    def on_train_end(self, status: str) -> None:
        """Called once with the terminal run status."""
        pass

    def on_epoch_start(self, epoch: int) -> None:
        """Called at the start of each epoch."""
        pass

    def on_epoch_end(self, epoch: int, logs: Dict[str, float]) -> None:
        """
        Called at the end of each epoch.

        Args:
            epoch: Current epoch number (0-indexed)
            logs: Dict with metrics ('train_loss', 'train_accuracy',
                'val_loss', 'val_accuracy', 'learning_rate')
        """
        pass

    def on_batch_end(self, batch_idx: int, logs: Dict[str, float]) -> None:
        """
        Called after processing each training batch.

        Args:
            batch_idx: Batch index within the epoch
            logs: Dict with batch metrics ('loss', 'accuracy')
        """
        pass


class CallbackList:
    """
    Container for managing multiple callbacks.

    Dispatches callback events to all contained callbacks in order.
    """

    def __init__(self, callbacks: Optional[List[Callback]] = None):
        self.callbacks = list(callbacks or [])

    def on_train_start(self, run_id: str, total_epochs: int) -> None:
        for callback in self.callbacks:
            callback.on_train_start(run_id, total_epochs)

    def on_train_end(self, status: str) -> None:
        for callback in self.callbacks:
            callback.on_train_end(status)

    def on_epoch_start(self, epoch: int) -> None:
        for callback in self.callbacks:
            callback.on_epoch_start(epoch)

    def on_epoch_end(self, epoch: int, logs: Dict[str, float]) -> None:
        for callback in self.callbacks:
            callback.on_epoch_end(epoch, logs)

    def on_batch_end(self, batch_idx: int, logs: Dict[str, float]) -> None:
        for callback in self.callbacks:
            callback.on_batch_end(batch_idx, logs)

    def append(self, callback: Callback) -> None:
        self.callbacks.append(callback)

    def __len__(self) -> int:
        return len(self.callbacks)


# =============================================================================
# Logging Callbacks
# =============================================================================


class _RunScoped:
    """
    Per-run state holder for callbacks shared between concurrent runs.

    A run executes on a single worker thread from on_train_start to
    on_train_end, so the current run id is tracked thread-locally and
    every piece of state is keyed by it.
    """

    def __init__(self):
        self._local = threading.local()
        self._lock = threading.Lock()
        self._last_run_id: Optional[str] = None

    @property
    def run_id(self) -> Optional[str]:
        """Run bound to the calling thread, else the most recently started run."""
        return getattr(self._local, 'run_id', None) or self._last_run_id

    def _bind(self, run_id: str) -> None:
        self._local.run_id = run_id
        with self._lock:
            self._last_run_id = run_id


class MetricLogger(Callback, _RunScoped):
    """
    Log epoch metrics and optionally write the history to a JSON file.

    One logger may observe several concurrent runs; histories are kept
    per run. A `{run_id}` placeholder in `log_file` gives each run its own
    file, otherwise the last run to finish owns the file.

    Args:
        log_every_n_batches: Log batch metrics every N batches (None = only epoch end)
        log_file: Path for the JSON history (None = keep in memory only)

    Example:
        >>> metric_logger = MetricLogger(log_file='outputs/{run_id}/history.json')
    """

    def __init__(
        self,
        log_every_n_batches: Optional[int] = None,
        log_file: Optional[Union[str, Path]] = None,
    ):
        _RunScoped.__init__(self)
        self.log_every_n_batches = log_every_n_batches
        self.log_file = str(log_file) if log_file else None
        self._histories: Dict[str, List[Dict[str, Any]]] = {}

    def on_train_start(self, run_id: str, total_epochs: int) -> None:
        """Clear history at start of a run."""
        self._bind(run_id)
        with self._lock:
            self._histories[run_id] = []

    def on_batch_end(self, batch_idx: int, logs: Dict[str, float]) -> None:
        if self.log_every_n_batches is not None:
            if (batch_idx + 1) % self.log_every_n_batches == 0:
                metrics_str = ', '.join(f'{k}={v:.4f}' for k, v in logs.items())
                logger.info(f"Batch {batch_idx + 1}: {metrics_str}")

    def on_epoch_end(self, epoch: int, logs: Dict[str, float]) -> None:
        metrics_str = ', '.join(f'{k}={v:.4f}' for k, v in sorted(logs.items()))
        logger.info(f"Epoch {epoch + 1}: {metrics_str}")
        with self._lock:
            self._histories.setdefault(self.run_id, []).append({'epoch': epoch, **logs})

    def on_train_end(self, status: str) -> None:
        """Save history to file."""
        if self.log_file is None:
            return
        run_id = self.run_id
        path = self.log_path(run_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(
                {'run_id': run_id, 'status': status, 'epochs': self.history_for(run_id)},
                f,
                indent=2,
            )
        logger.info(f"MetricLogger: saved history to {path}")

    def log_path(self, run_id: str) -> Optional[Path]:
        if self.log_file is None:
            return None
        return Path(self.log_file.replace('{run_id}', run_id or ''))

    def history_for(self, run_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._histories.get(run_id, []))

    @property
    def history(self) -> List[Dict[str, Any]]:
        """Epoch history of the current run as list of dicts."""
        return self.history_for(self.run_id)


class ProgressCallback(Callback, _RunScoped):
    """
    Display a per-run epoch progress bar.

    Args:
        disable: Turn the bar off (e.g. in non-interactive jobs)
    """

    def __init__(self, disable: bool = False):
        _RunScoped.__init__(self)
        self.disable = disable
        self._bars: Dict[str, tqdm] = {}

    @property
    def active_bars(self) -> int:
        with self._lock:
            return len(self._bars)

    def _bar(self) -> Optional[tqdm]:
        with self._lock:
            return self._bars.get(self.run_id)

    def on_train_start(self, run_id: str, total_epochs: int) -> None:
        self._bind(run_id)
        bar = tqdm(
            total=total_epochs,
            desc=f"Run {run_id[:8]}",
            unit="epoch",
            disable=self.disable,
        )
        with self._lock:
            self._bars[run_id] = bar

    def on_epoch_end(self, epoch: int, logs: Dict[str, float]) -> None:
        bar = self._bar()
        if bar is not None:
            postfix = {k: f'{v:.4f}' for k, v in logs.items() if 'loss' in k or 'acc' in k}
            bar.set_postfix(postfix)
            bar.update(1)

    def on_train_end(self, status: str) -> None:
        with self._lock:
            bar = self._bars.pop(self.run_id, None)
        if bar is not None:
            bar.set_postfix_str(status)
            bar.close()
