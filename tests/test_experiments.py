"""
Tests for experiment records, repositories, the model store, the run
registry and callbacks.
"""

import json
import threading
from unittest.mock import MagicMock

import pytest

from obtrainer.experiments import (
    DatasetRecord,
    EpochMetric,
    InMemoryRepository,
    JsonRepository,
    MetricKind,
    ModelConfiguration,
    ModelStore,
    RunStatus,
    TrainingRun,
    UnitOfWork,
)
from obtrainer.training import Callback, CallbackList, MetricLogger, ProgressCallback, RunRegistry


# =============================================================================
# Records
# =============================================================================


class TestRecords:

    def test_run_round_trip(self):
        run = TrainingRun(configuration_id="c", dataset_id="d", status=RunStatus.FAILED)
        run.error_message = "boom"
        run.artifacts = {"best_epoch": 3}
        restored = TrainingRun.from_dict(run.to_dict())
        assert restored == run

    def test_metric_round_trip(self):
        metric = EpochMetric(run_id="r", epoch=2, kind=MetricKind.VALIDATION, loss=0.5, accuracy=0.7)
        assert EpochMetric.from_dict(metric.to_dict()) == metric

    def test_dataset_time_bounds(self):
        dataset = DatasetRecord(name="d", start="2024-01-01T00:00:00")
        assert dataset.start_time.year == 2024
        assert dataset.end_time is None

    def test_terminal_states(self):
        assert RunStatus.COMPLETED.is_terminal
        assert RunStatus.CANCELLED.is_terminal
        assert not RunStatus.IN_PROGRESS.is_terminal

    def test_ids_are_unique(self):
        assert ModelConfiguration(name="a").id != ModelConfiguration(name="a").id


# =============================================================================
# Repositories
# =============================================================================


class TestInMemoryRepository:

    def test_crud(self):
        repo = InMemoryRepository()
        config = repo.add(ModelConfiguration(name="a"))
        assert repo.get(config.id) is config
        config.description = "changed"
        repo.update(config)
        assert repo.find(lambda c: c.description == "changed") == [config]
        assert repo.delete(config.id)
        assert not repo.delete(config.id)
        assert repo.get(config.id) is None

    def test_duplicate_add(self):
        repo = InMemoryRepository()
        config = repo.add(ModelConfiguration(name="a"))
        with pytest.raises(ValueError, match="already exists"):
            repo.add(config)

    def test_update_missing(self):
        with pytest.raises(KeyError):
            InMemoryRepository().update(ModelConfiguration(name="a"))

    def test_concurrent_adds(self):
        repo = InMemoryRepository()

        def add_many():
            for _ in range(100):
                repo.add(ModelConfiguration(name="x"))

        threads = [threading.Thread(target=add_many) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(repo) == 400


class TestJsonRepository:

    def test_writes_buffered_until_commit(self, tmp_path):
        repo = JsonRepository(tmp_path, ModelConfiguration)
        config = repo.add(ModelConfiguration(name="a", hyperparameters={"epochs": 3}))
        assert not (tmp_path / f"{config.id}.json").exists()

        repo.commit()
        assert (tmp_path / f"{config.id}.json").exists()
        with open(tmp_path / "index.json") as f:
            assert json.load(f)[config.id]["name"] == "a"

    def test_reload(self, tmp_path):
        repo = JsonRepository(tmp_path, TrainingRun)
        run = repo.add(TrainingRun(configuration_id="c", dataset_id="d"))
        repo.commit()

        reloaded = JsonRepository(tmp_path, TrainingRun)
        assert reloaded.get(run.id) == run

    def test_delete_removes_file(self, tmp_path):
        repo = JsonRepository(tmp_path, ModelConfiguration)
        config = repo.add(ModelConfiguration(name="a"))
        repo.commit()
        repo.delete(config.id)
        repo.commit()
        assert not (tmp_path / f"{config.id}.json").exists()
        assert JsonRepository(tmp_path, ModelConfiguration).get(config.id) is None

    def test_commit_without_changes_writes_nothing(self, tmp_path):
        repo = JsonRepository(tmp_path, ModelConfiguration)
        repo.add(ModelConfiguration(name="a"))
        repo.commit()

        (tmp_path / "index.json").unlink()
        repo.commit()
        assert not (tmp_path / "index.json").exists()

    def test_commit_serializes_only_changed_records(self, tmp_path):
        repo = JsonRepository(tmp_path, TrainingRun)
        untouched = repo.add(TrainingRun(configuration_id="c", dataset_id="d"))
        changed = repo.add(TrainingRun(configuration_id="c", dataset_id="d"))
        repo.commit()

        untouched.to_dict = MagicMock(side_effect=AssertionError("re-serialized"))
        changed.status = RunStatus.COMPLETED
        repo.update(changed)
        repo.commit()

        untouched.to_dict.assert_not_called()
        with open(tmp_path / "index.json") as f:
            index = json.load(f)
        assert index[changed.id]["status"] == "completed"
        assert untouched.id in index

    def test_corrupt_index_starts_fresh(self, tmp_path):
        (tmp_path / "index.json").write_text("{broken")
        assert len(JsonRepository(tmp_path, ModelConfiguration)) == 0


class TestUnitOfWork:

    def test_commit_reaches_every_repository(self):
        repos = [MagicMock() for _ in range(4)]
        UnitOfWork(*repos).commit()
        for repo in repos:
            repo.commit.assert_called_once()

    def test_json_store_layout(self, tmp_path):
        uow = UnitOfWork.json_store(tmp_path)
        uow.datasets.add(DatasetRecord(name="d"))
        uow.commit()
        assert (tmp_path / "datasets" / "index.json").exists()
        assert (tmp_path / "runs").is_dir()


# =============================================================================
# Model store
# =============================================================================


class TestModelStore:

    @pytest.fixture
    def store(self, tmp_path):
        return ModelStore(tmp_path / "models")

    def test_paths(self, store):
        assert store.path_for("r1").name == "model.pt"
        assert store.checkpoint_dir("r1").parent == store.run_dir("r1")

    def test_exists_and_size(self, store):
        path = store.path_for("r1")
        assert not store.exists(path)
        assert store.size(path) == 0
        assert not store.exists(None)
        path.write_bytes(b"12345")
        assert store.exists(path)
        assert store.size(path) == 5

    def test_export_formats(self, store):
        path = store.path_for("r1")
        path.write_bytes(b"state")

        torch_export = store.export("r1", path, "torch")
        assert torch_export.suffix == ".pt"
        assert torch_export.read_bytes() == b"state"

        json_export = store.export("r1", path, "JSON", summary={"name": "MLP"}, metadata={"k": 1})
        payload = json.loads(json_export.read_text())
        assert payload["summary"] == {"name": "MLP"}
        assert payload["size_bytes"] == 5

    def test_export_errors(self, store):
        path = store.path_for("r1")
        with pytest.raises(FileNotFoundError):
            store.export("r1", path, "torch")
        path.write_bytes(b"x")
        with pytest.raises(ValueError, match="Unsupported export format"):
            store.export("r1", path, "onnx")

    def test_delete(self, store):
        path = store.path_for("r1")
        path.write_bytes(b"x")
        store.export("r1", path, "torch")
        assert store.delete("r1")
        assert not path.exists()
        assert not list((store.base_dir / "exports").glob("r1.*"))
        assert not store.delete("r1")


# =============================================================================
# Registry
# =============================================================================


class TestRunRegistry:

    def test_register_cancel_remove(self):
        registry = RunRegistry()
        token = registry.register("r1")
        assert registry.register("r1") is token
        assert "r1" in registry
        assert registry.cancel("r1")
        assert token.is_set()
        assert registry.is_cancelled("r1")
        registry.remove("r1")
        assert "r1" not in registry
        assert len(registry) == 0

    def test_cancel_unknown(self):
        assert not RunRegistry().cancel("missing")

    def test_active_runs(self):
        registry = RunRegistry()
        registry.register("b")
        registry.register("a")
        assert registry.active_runs() == ["a", "b"]


# =============================================================================
# Callbacks
# =============================================================================


class TestCallbacks:

    def test_callback_list_dispatch(self):
        first, second = MagicMock(spec=Callback), MagicMock(spec=Callback)
        callbacks = CallbackList([first])
        callbacks.append(second)
        callbacks.on_train_start("r", 3)
        callbacks.on_epoch_end(0, {"val_loss": 1.0})
        callbacks.on_train_end("completed")

        for cb in (first, second):
            cb.on_train_start.assert_called_once_with("r", 3)
            cb.on_epoch_end.assert_called_once_with(0, {"val_loss": 1.0})
            cb.on_train_end.assert_called_once_with("completed")
        assert len(callbacks) == 2

    def test_metric_logger_writes_history(self, tmp_path):
        log_file = tmp_path / "history.json"
        metric_logger = MetricLogger(log_file=log_file)
        metric_logger.on_train_start("run-1", 2)
        metric_logger.on_epoch_end(0, {"val_loss": 0.9})
        metric_logger.on_epoch_end(1, {"val_loss": 0.8})
        metric_logger.on_train_end("completed")

        data = json.loads(log_file.read_text())
        assert data["run_id"] == "run-1"
        assert data["status"] == "completed"
        assert [e["val_loss"] for e in data["epochs"]] == [0.9, 0.8]
        assert len(metric_logger.history) == 2

    def test_progress_callback_closes_bar(self):
        progress = ProgressCallback(disable=True)
        progress.on_train_start("run-12345678", 2)
        assert progress.active_bars == 1
        progress.on_epoch_end(0, {"train_loss": 1.0, "learning_rate": 0.01})
        progress.on_train_end("completed")
        assert progress.active_bars == 0

    def test_progress_callback_end_without_start(self):
        ProgressCallback(disable=True).on_train_end("failed")

    def test_metric_logger_separates_threads(self):
        metric_logger = MetricLogger()
        barrier = threading.Barrier(2)

        def run(run_id):
            metric_logger.on_train_start(run_id, 3)
            for epoch in range(3):
                barrier.wait(timeout=10)
                metric_logger.on_epoch_end(epoch, {"val_loss": 1.0})
            metric_logger.on_train_end("completed")

        threads = [threading.Thread(target=run, args=(f"run-{i}",)) for i in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        for run_id in ("run-0", "run-1"):
            assert [e["epoch"] for e in metric_logger.history_for(run_id)] == [0, 1, 2]

    def test_metric_logger_file_per_run(self, tmp_path):
        metric_logger = MetricLogger(log_file=tmp_path / "{run_id}" / "history.json")
        for run_id in ("a", "b"):
            metric_logger.on_train_start(run_id, 1)
            metric_logger.on_epoch_end(0, {"val_loss": 0.5})
            metric_logger.on_train_end("completed")

        for run_id in ("a", "b"):
            data = json.loads((tmp_path / run_id / "history.json").read_text())
            assert data["run_id"] == run_id
            assert len(data["epochs"]) == 1
