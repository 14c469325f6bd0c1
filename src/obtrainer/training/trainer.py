"""
Training orchestrator for order-book direction models.

TrainingService drives one run per start_run() call:

    Created -> InProgress -> (Completed | Failed | Cancelled)

Per epoch:
    1. cancellation check (also between batches)
    2. fixed-size batches over the training split (last batch may be smaller)
    3. one full-batch validation pass
    4. Training/Validation EpochMetric records
    5. checkpoint when val_loss improved by more than min_delta
    6. early-stopping check
    7. learning-rate schedule

After the loop the best checkpoint is restored, the test split evaluated,
the final model saved and a consolidated artifact record written.

Design principles:
- Configuration-driven: hyperparameters parsed tolerantly from the stored
  ModelConfiguration
- Deterministic: every run seeds its random number generators
- Opaque model: only the TrainableModel interface is used
- Runs never raise for training errors: the run record carries the outcome

Usage:
    >>> uow = UnitOfWork.in_memory()
    >>> service = TrainingService(uow, ModelStore("outputs/models"))
    >>> run = service.start_run(config.id, dataset.id)
    >>> run.status
    <RunStatus.COMPLETED: 'completed'>
"""

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
import logging
import threading
import time

import numpy as np

from obtrainer.config import ExperimentConfig, parse_hyperparameters
from obtrainer.data import (
    FeatureWindowExtractor,
    Sample,
    Snapshot,
    SplitTag,
    common_feature_keys,
    load_snapshots,
    samples_to_arrays,
    split_samples,
)
from obtrainer.errors import NotFoundError, TrainingCancelled, TrainingFailure
from obtrainer.experiments import (
    DatasetRecord,
    EpochMetric,
    MetricKind,
    ModelConfiguration,
    ModelStore,
    RunStatus,
    TrainingRun,
    UnitOfWork,
)
from obtrainer.experiments.records import now_iso
from obtrainer.models import TrainableModel, create_model
from obtrainer.training.callbacks import Callback, CallbackList
from obtrainer.training.checkpoint import CheckpointManager
from obtrainer.training.early_stopping import EarlyStopping
from obtrainer.training.loss import count_correct, cross_entropy_loss
from obtrainer.training.metrics import compute_classification_metrics
from obtrainer.training.optimizers import Optimizer, create_optimizer
from obtrainer.training.registry import RunRegistry
from obtrainer.utils.reproducibility import set_seed

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Training was cancelled by user"
RESUMABLE_STATES = (RunStatus.CANCELLED, RunStatus.FAILED)

SnapshotProvider = Callable[[DatasetRecord], List[Snapshot]]


def load_dataset_snapshots(dataset: DatasetRecord) -> List[Snapshot]:
    """Default snapshot provider: read the dataset's file."""
    if not dataset.file_path:
        raise ValueError(f"Dataset {dataset.id} has no file_path")
    return load_snapshots(
        dataset.file_path,
        symbol=dataset.symbol,
        start=dataset.start_time,
        end=dataset.end_time,
    )


# =============================================================================
# Data preparation
# =============================================================================


@dataclass
class PreparedData:
    """Model-ready arrays of one dataset under one feature configuration."""

    feature_keys: List[str]
    samples: List[Sample]
    arrays: Dict[SplitTag, Tuple[np.ndarray, np.ndarray]]

    def split(self, tag: SplitTag) -> Tuple[np.ndarray, np.ndarray]:
        return self.arrays[tag]

    @property
    def num_features(self) -> int:
        return len(self.feature_keys)


def prepare_data(samples: List[Sample]) -> PreparedData:
    """
    Convert extracted samples into per-split (features, one-hot targets).

    Raises:
        ValueError: If there are no labelled training samples.
    """
    labelled = [s for s in samples if s.has_direction]
    feature_keys = common_feature_keys(labelled)
    groups = split_samples(labelled)
    arrays = {tag: samples_to_arrays(groups[tag], feature_keys) for tag in SplitTag}

    n_train = arrays[SplitTag.TRAIN][0].shape[0]
    if n_train == 0:
        raise ValueError(
            f"No labelled training samples ({len(samples)} samples extracted); "
            f"provide more snapshots or a smaller window/horizon"
        )
    if not feature_keys:
        raise ValueError("Extracted samples share no feature keys")

    logger.info(
        f"Prepared data: {len(feature_keys)} features, "
        + ", ".join(f"{tag.value}={arrays[tag][0].shape[0]}" for tag in SplitTag)
    )
    return PreparedData(feature_keys=feature_keys, samples=samples, arrays=arrays)


def iterate_batches(
    features: np.ndarray,
    targets: np.ndarray,
    batch_size: int,
) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
    """Fixed-size batches in order; the last batch may be smaller."""
    for start in range(0, features.shape[0], batch_size):
        yield features[start:start + batch_size], targets[start:start + batch_size]


def evaluate_arrays(model: TrainableModel, features: np.ndarray, targets: np.ndarray) -> Dict[str, float]:
    """Single full-batch pass: loss and accuracy."""
    if features.shape[0] == 0:
        return {"loss": 0.0, "accuracy": 0.0}
    predictions = model.predict(features)
    return {
        "loss": cross_entropy_loss(predictions, targets),
        "accuracy": count_correct(predictions, targets) / features.shape[0],
    }


# =============================================================================
# Training State
# =============================================================================


@dataclass
class TrainingState:
    """
    Mutable state of one run, owned by the thread executing it.
    """

    run_id: str
    best_val_loss: float = float('inf')
    best_epoch: Optional[int] = None
    epochs_without_improvement: int = 0
    stopped_early: bool = False
    history: List[Dict[str, float]] = field(default_factory=list)


# =============================================================================
# Training Service
# =============================================================================


class TrainingService:
    """
    Start, stop, resume and inspect training runs.

    Args:
        uow: Repositories for configurations, datasets, runs and metrics.
        model_store: Storage for model states and checkpoints.
        registry: Cancellation tokens of in-flight runs.
        callbacks: Reporting hooks shared by every run. MetricLogger and
            ProgressCallback keep per-run state; custom stateful callbacks
            should come from callback_factory instead.
        callback_factory: Builds fresh callbacks for each run.
        snapshot_provider: Resolves a DatasetRecord to snapshots.
        model_factory: Builds an unbuilt model from ModelConfig.
        max_workers: Worker threads for start_run_async.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        model_store: ModelStore,
        registry: Optional[RunRegistry] = None,
        callbacks: Optional[List[Callback]] = None,
        callback_factory: Optional[Callable[[], List[Callback]]] = None,
        snapshot_provider: Optional[SnapshotProvider] = None,
        model_factory: Callable[..., TrainableModel] = create_model,
        max_workers: int = 2,
    ):
        self.uow = uow
        self.model_store = model_store
        self.registry = registry if registry is not None else RunRegistry()
        self.callbacks = CallbackList(callbacks)
        self.callback_factory = callback_factory
        self.snapshot_provider = snapshot_provider or load_dataset_snapshots
        self.model_factory = model_factory
        self.max_workers = max_workers

        self._executor: Optional[ThreadPoolExecutor] = None
        self._futures: Dict[str, Future] = {}
        self._resumed: Dict[str, Tuple[TrainableModel, int]] = {}
        self._lock = threading.Lock()

    # =========================================================================
    # Lookups
    # =========================================================================

    def get_configuration(self, config_id: str) -> ModelConfiguration:
        configuration = self.uow.configurations.get(config_id)
        if configuration is None:
            raise NotFoundError("ModelConfiguration", config_id)
        return configuration

    def get_dataset(self, dataset_id: str) -> DatasetRecord:
        dataset = self.uow.datasets.get(dataset_id)
        if dataset is None:
            raise NotFoundError("Dataset", dataset_id)
        return dataset

    def get_result(self, run_id: str) -> TrainingRun:
        """
        Run record.

        Raises:
            NotFoundError: If the run does not exist.
        """
        run = self.uow.runs.get(run_id)
        if run is None:
            raise NotFoundError("TrainingRun", run_id)
        return run

    def get_history(self, config_id: str) -> List[TrainingRun]:
        """Runs of a configuration, newest first."""
        runs = self.uow.runs.find(lambda r: r.configuration_id == config_id)
        return sorted(runs, key=lambda r: r.started_at, reverse=True)

    def get_metrics(self, run_id: str, kind: Optional[MetricKind] = None) -> List[EpochMetric]:
        """Epoch metrics of a run ordered by (epoch, kind)."""
        metrics = self.uow.metrics.find(
            lambda m: m.run_id == run_id and (kind is None or m.kind == kind)
        )
        return sorted(metrics, key=lambda m: (m.epoch, m.kind.value, m.recorded_at))

    def run_config(self, run: TrainingRun) -> ExperimentConfig:
        """
        Configuration a run trained with: the stored snapshot if the run
        completed, otherwise the (re-parsed) ModelConfiguration.
        """
        snapshot = run.artifacts.get("configuration")
        if snapshot:
            return ExperimentConfig.from_dict(snapshot)
        return parse_hyperparameters(
            self.get_configuration(run.configuration_id).hyperparameters
        )

    def prepare_run_data(
        self,
        run: TrainingRun,
        cancel_token: Optional[threading.Event] = None,
    ) -> Tuple[ExperimentConfig, PreparedData]:
        """Re-extract the samples a run trained on (extraction is deterministic)."""
        config = self.run_config(run)
        dataset = self.get_dataset(run.dataset_id)
        snapshots = self.snapshot_provider(dataset)
        samples = FeatureWindowExtractor(config.features).extract(snapshots, cancel_token)
        return config, prepare_data(samples)

    def load_model(self, run_id: str) -> TrainableModel:
        """
        Final model of a completed run.

        Raises:
            NotFoundError: If the run or its stored model does not exist.
        """
        run = self.get_result(run_id)
        if not self.model_store.exists(run.model_path):
            raise NotFoundError("Model", run_id)
        model = self.model_factory(self.run_config(run).model)
        model.load(run.model_path)
        return model

    # =========================================================================
    # Run lifecycle
    # =========================================================================

    def _create_run(self, config_id: str, dataset_id: str) -> Tuple[TrainingRun, ModelConfiguration, DatasetRecord]:
        configuration = self.get_configuration(config_id)
        dataset = self.get_dataset(dataset_id)

        run = TrainingRun(configuration_id=config_id, dataset_id=dataset_id)
        run.checkpoint_dir = str(self.model_store.checkpoint_dir(run.id))
        run.status = RunStatus.IN_PROGRESS
        self.uow.runs.add(run)
        self.uow.commit()
        self.registry.register(run.id)
        logger.info(
            f"Created run {run.id} (configuration={configuration.name}, dataset={dataset.name})"
        )
        return run, configuration, dataset

    def start_run(self, config_id: str, dataset_id: str, raise_on_failure: bool = False) -> TrainingRun:
        """
        Train synchronously.

        Args:
            config_id: ModelConfiguration id.
            dataset_id: DatasetRecord id.
            raise_on_failure: Raise TrainingFailure if the run ends Failed.

        Returns:
            The terminal run record (Completed, Failed or Cancelled).

        Raises:
            NotFoundError: If the configuration or dataset does not exist.
                Raised before any run record is created.
        """
        run, configuration, dataset = self._create_run(config_id, dataset_id)
        run = self._execute(run, configuration, dataset)
        if raise_on_failure and run.status == RunStatus.FAILED:
            raise TrainingFailure(run.id, run.error_message or "")
        return run

    def start_run_async(self, config_id: str, dataset_id: str) -> str:
        """
        Train on a worker thread and return the run id immediately.

        Raises:
            NotFoundError: If the configuration or dataset does not exist.
        """
        run, configuration, dataset = self._create_run(config_id, dataset_id)
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="obtrainer-run"
                )
            self._futures[run.id] = self._executor.submit(
                self._execute, run, configuration, dataset
            )
        return run.id

    def wait(self, run_id: str, timeout: Optional[float] = None) -> TrainingRun:
        """Block until an async run reaches its terminal state."""
        with self._lock:
            future = self._futures.get(run_id)
        if future is not None:
            future.result(timeout=timeout)
            with self._lock:
                self._futures.pop(run_id, None)
        return self.get_result(run_id)

    def stop(self, run_id: str) -> bool:
        """
        Signal cancellation. Returns whether an in-flight run matched.

        A run that was resumed but never continued is cancelled directly:
        it is marked Cancelled again and its registry entry is released.
        """
        with self._lock:
            pending = self._resumed.pop(run_id, None)
        if pending is not None:
            run = self.get_result(run_id)
            run.status = RunStatus.CANCELLED
            run.error_message = CANCELLED_MESSAGE
            run.completed_at = now_iso()
            self.uow.runs.update(run)
            self.uow.commit()
            self.registry.remove(run_id)
            logger.info(f"Run {run_id} cancelled before its resumed epochs started")
            return True
        return self.registry.cancel(run_id)

    def resume(self, run_id: str, run_remaining_epochs: bool = False) -> str:
        """
        Resume a Cancelled or Failed run from its last checkpoint.

        Re-establishes InProgress status and loads the last model state. With
        run_remaining_epochs the epoch loop continues (synchronously) after the
        checkpoint's epoch until the run reaches a terminal state again.
        Without it the run stays InProgress, holding a registry entry, until
        continue_run or stop is called; there is no timeout.

        Returns:
            The run id.

        Raises:
            NotFoundError: If the run or a checkpoint of it does not exist.
            ValueError: If the run is not Cancelled or Failed.
        """
        run = self.get_result(run_id)
        if run.status not in RESUMABLE_STATES:
            raise ValueError(
                f"Run {run_id} is {run.status.value}; only "
                f"{[s.value for s in RESUMABLE_STATES]} runs can be resumed"
            )

        checkpoints = CheckpointManager(run.checkpoint_dir or self.model_store.checkpoint_dir(run_id))
        last = checkpoints.get_last_checkpoint()
        if last is None:
            raise NotFoundError("Checkpoint", run_id)

        config = self.run_config(run)
        model = self.model_factory(config.model)
        model.load(last.path)

        run.status = RunStatus.IN_PROGRESS
        run.error_message = None
        run.completed_at = None
        self.uow.runs.update(run)
        self.uow.commit()
        self.registry.register(run_id)
        logger.info(f"Resumed run {run_id} from checkpoint epoch {last.epoch} ({last.path})")

        with self._lock:
            self._resumed[run_id] = (model, last.epoch + 1)
        if run_remaining_epochs:
            self.continue_run(run_id)
        return run_id

    def continue_run(self, run_id: str) -> TrainingRun:
        """
        Run the remaining epochs of a resumed run.

        Until this is called a resumed run remains InProgress with a live
        registry entry, so delete_run refuses it. Call stop to abandon it
        instead; the run then returns to Cancelled.

        Raises:
            NotFoundError: If the run was not resumed.
        """
        with self._lock:
            resumed = self._resumed.pop(run_id, None)
        if resumed is None:
            raise NotFoundError("ResumedRun", run_id)
        model, start_epoch = resumed
        run = self.get_result(run_id)
        return self._execute(
            run,
            self.get_configuration(run.configuration_id),
            self.get_dataset(run.dataset_id),
            start_epoch=start_epoch,
            initial_model=model,
        )

    def delete_run(self, run_id: str) -> bool:
        """
        Remove a run record, its metrics and its stored model files.

        Raises:
            ValueError: If the run is still in flight.
        """
        run = self.uow.runs.get(run_id)
        if run is None:
            return False
        if run_id in self.registry:
            raise ValueError(f"Run {run_id} is in flight; stop it before deleting")

        for metric in self.uow.metrics.find(lambda m: m.run_id == run_id):
            self.uow.metrics.delete(metric.id)
        self.uow.runs.delete(run_id)
        self.uow.commit()
        self.model_store.delete(run_id)
        logger.info(f"Deleted run {run_id}")
        return True

    def export(self, run_id: str, fmt: str = "torch") -> Path:
        """
        Export a completed run's model.

        Raises:
            NotFoundError: If the run or its stored model does not exist.
            ValueError: If the format is unsupported.
        """
        run = self.get_result(run_id)
        if not self.model_store.exists(run.model_path):
            raise NotFoundError("Model", run_id)
        return self.model_store.export(
            run_id,
            run.model_path,
            fmt,
            summary=run.artifacts.get("model_summary"),
            metadata={
                "configuration_id": run.configuration_id,
                "dataset_id": run.dataset_id,
                "status": run.status.value,
                "best_epoch": run.best_epoch,
                "best_validation_loss": run.best_validation_loss,
                "test_metrics": run.artifacts.get("test_metrics"),
            },
        )

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None

    # =========================================================================
    # Execution
    # =========================================================================

    def _execute(
        self,
        run: TrainingRun,
        configuration: ModelConfiguration,
        dataset: DatasetRecord,
        start_epoch: int = 0,
        initial_model: Optional[TrainableModel] = None,
    ) -> TrainingRun:
        """Run the loop and record exactly one terminal outcome."""
        config = parse_hyperparameters(configuration.hyperparameters)
        token = self.registry.register(run.id)
        callbacks = CallbackList()
        start_time = time.time()

        try:
            callbacks = self._run_callbacks()
            callbacks.on_train_start(run.id, config.train.epochs)
            self._train(run, config, dataset, token, callbacks, start_epoch, initial_model)
            run.status = RunStatus.COMPLETED
            logger.info(
                f"Run {run.id} completed in {time.time() - start_time:.1f}s: "
                f"{run.epochs_completed} epochs, best val_loss={run.best_validation_loss} "
                f"at epoch {run.best_epoch}"
            )
        except TrainingCancelled:
            run.status = RunStatus.CANCELLED
            run.error_message = CANCELLED_MESSAGE
            logger.info(f"Run {run.id} cancelled after {run.epochs_completed} epochs")
        except Exception as e:
            run.status = RunStatus.FAILED
            run.error_message = str(e) or type(e).__name__
            logger.error(f"Run {run.id} failed: {run.error_message}", exc_info=True)
        finally:
            run.completed_at = now_iso()
            self.uow.runs.update(run)
            self.uow.commit()
            self.registry.remove(run.id)
            try:
                callbacks.on_train_end(run.status.value)
            except Exception:
                logger.exception(f"Run {run.id}: on_train_end callback failed")

        return run

    def _run_callbacks(self) -> CallbackList:
        """Shared callbacks plus a fresh set from callback_factory."""
        callbacks = list(self.callbacks.callbacks)
        if self.callback_factory is not None:
            callbacks.extend(self.callback_factory())
        return CallbackList(callbacks)

    @staticmethod
    def _check_cancelled(run_id: str, token: threading.Event) -> None:
        if token.is_set():
            raise TrainingCancelled(run_id)

    def _cancellable_batches(
        self,
        run_id: str,
        token: threading.Event,
        features: np.ndarray,
        targets: np.ndarray,
        batch_size: int,
    ) -> Iterator[Tuple[np.ndarray, np.ndarray]]:
        for batch in iterate_batches(features, targets, batch_size):
            self._check_cancelled(run_id, token)
            yield batch

    def _record_metric(self, run_id: str, epoch: int, kind: MetricKind, values: Dict[str, Any], learning_rate: Optional[float]) -> None:
        self.uow.metrics.add(EpochMetric(
            run_id=run_id,
            epoch=epoch,
            kind=kind,
            loss=float(values["loss"]),
            accuracy=float(values["accuracy"]),
            precision=values.get("precision"),
            recall=values.get("recall"),
            f1=values.get("f1"),
            learning_rate=learning_rate,
        ))

    def _train(
        self,
        run: TrainingRun,
        config: ExperimentConfig,
        dataset: DatasetRecord,
        token: threading.Event,
        callbacks: CallbackList,
        start_epoch: int = 0,
        initial_model: Optional[TrainableModel] = None,
    ) -> None:
        cfg = config.train
        set_seed(cfg.seed)

        snapshots = self.snapshot_provider(dataset)
        samples = FeatureWindowExtractor(config.features).extract(snapshots, token)
        self._check_cancelled(run.id, token)
        data = prepare_data(samples)

        train_x, train_y = data.split(SplitTag.TRAIN)
        val_x, val_y = data.split(SplitTag.VALIDATION)
        test_x, test_y = data.split(SplitTag.TEST)
        if val_x.shape[0] == 0:
            logger.warning(f"Run {run.id}: empty validation split, validating on training data")
            val_x, val_y = train_x, train_y

        if initial_model is not None:
            model = initial_model
        else:
            model = self.model_factory(config.model)
            model.build(data.num_features, reference=train_x)

        optimizer: Optimizer = create_optimizer(cfg.optimizer, cfg.learning_rate)
        if cfg.use_lr_scheduling and start_epoch > 0:
            optimizer.fast_forward(start_epoch)
        early_stopping = EarlyStopping(
            patience=cfg.early_stopping_patience,
            min_delta=cfg.min_delta,
            monitor=cfg.monitor,
        )
        checkpoints = CheckpointManager(run.checkpoint_dir, save_best_only=cfg.save_best_only)
        state = TrainingState(run_id=run.id)
        if checkpoints.best_epoch is not None:
            state.best_val_loss = checkpoints.best_score
            state.best_epoch = checkpoints.best_epoch

        logger.info(
            f"Run {run.id}: training {model.name} for epochs {start_epoch}..{cfg.epochs - 1}, "
            f"optimizer={optimizer.kind.value}, lr={optimizer.learning_rate}"
        )

        for epoch in range(start_epoch, cfg.epochs):
            self._check_cancelled(run.id, token)
            callbacks.on_epoch_start(epoch)
            learning_rate = optimizer.learning_rate

            batches = self._cancellable_batches(run.id, token, train_x, train_y, cfg.batch_size)
            train_metrics = model.train_one_epoch(batches, optimizer, callbacks.on_batch_end)
            val_metrics = evaluate_arrays(model, val_x, val_y)

            self._record_metric(run.id, epoch, MetricKind.TRAINING, train_metrics, learning_rate)
            self._record_metric(run.id, epoch, MetricKind.VALIDATION, val_metrics, learning_rate)
            run.epochs_completed = epoch + 1

            val_loss = val_metrics["loss"]
            if val_loss < state.best_val_loss - cfg.min_delta:
                checkpoints.save_checkpoint(model, epoch, val_loss, train_metrics, val_metrics)
                state.best_val_loss = val_loss
                state.best_epoch = epoch
                state.epochs_without_improvement = 0
            else:
                state.epochs_without_improvement += 1
                if (epoch + 1) % cfg.checkpoint_frequency == 0:
                    checkpoints.save_checkpoint(model, epoch, val_loss, train_metrics, val_metrics)

            run.best_epoch = state.best_epoch
            run.best_validation_loss = state.best_val_loss if state.best_epoch is not None else None
            self.uow.runs.update(run)
            self.uow.commit()

            logs = {
                "train_loss": train_metrics["loss"],
                "train_accuracy": train_metrics["accuracy"],
                "val_loss": val_metrics["loss"],
                "val_accuracy": val_metrics["accuracy"],
                "learning_rate": learning_rate,
            }
            state.history.append({"epoch": epoch, **logs})
            callbacks.on_epoch_end(epoch, logs)

            monitored = logs.get(cfg.monitor)
            if monitored is None:
                monitored = val_loss
            if early_stopping.should_stop(monitored):
                state.stopped_early = True
                logger.info(
                    f"Run {run.id}: early stopping at epoch {epoch} "
                    f"(best {cfg.monitor}={early_stopping.best_value:.6f})"
                )
                break

            if cfg.use_lr_scheduling:
                optimizer.update_learning_rate(epoch, val_loss)

        self._finalize(run, config, model, checkpoints, state, data, test_x, test_y)

    def _finalize(
        self,
        run: TrainingRun,
        config: ExperimentConfig,
        model: TrainableModel,
        checkpoints: CheckpointManager,
        state: TrainingState,
        data: PreparedData,
        test_x: np.ndarray,
        test_y: np.ndarray,
    ) -> None:
        checkpoints.load_best_checkpoint(model)

        test_metrics: Dict[str, Any] = evaluate_arrays(model, test_x, test_y)
        if test_x.shape[0] > 0:
            classification = compute_classification_metrics(model.predict(test_x), test_y)
            test_metrics.update(
                precision=classification.precision,
                recall=classification.recall,
                f1=classification.f1,
            )
        final_epoch = state.best_epoch if state.best_epoch is not None else max(run.epochs_completed - 1, 0)
        self._record_metric(run.id, final_epoch, MetricKind.TEST, test_metrics, None)

        model_path = self.model_store.path_for(run.id)
        model.save(model_path)
        run.model_path = str(model_path)
        run.best_epoch = state.best_epoch
        run.best_validation_loss = state.best_val_loss if state.best_epoch is not None else None
        run.artifacts = {
            "best_epoch": run.best_epoch,
            "best_validation_loss": run.best_validation_loss,
            "test_metrics": test_metrics,
            "model_summary": model.summary(),
            "configuration": config.to_dict(),
            "feature_keys": data.feature_keys,
            "stopped_early": state.stopped_early,
            "epochs_without_improvement": state.epochs_without_improvement,
            "model_size_bytes": self.model_store.size(model_path),
        }
        logger.info(
            f"Run {run.id}: test loss={test_metrics['loss']:.4f}, "
            f"accuracy={test_metrics['accuracy']:.4f}"
        )
