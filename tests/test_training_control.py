"""
Tests for optimizers, early stopping and checkpoint management.

Design principles:
- Tests document the decay schedules and stopping/saving policies
- Edge cases: first calls, boundaries, resumed state
"""

import json

import pytest

from obtrainer.config import OptimizerType
from obtrainer.models import ClassPriorModel
from obtrainer.training import (
    AdaGradOptimizer,
    AdamOptimizer,
    CheckpointManager,
    EarlyStopping,
    RMSpropOptimizer,
    SGDOptimizer,
    StoppingState,
    create_optimizer,
)


# =============================================================================
# Optimizers
# =============================================================================


class TestOptimizers:

    def test_default_variant_is_adagrad(self):
        optimizer = create_optimizer()
        assert isinstance(optimizer, AdaGradOptimizer)
        assert optimizer.kind == OptimizerType.ADAGRAD

    def test_create_from_string(self):
        assert isinstance(create_optimizer("RMSPROP", 0.01), RMSpropOptimizer)

    def test_unknown_variant(self):
        with pytest.raises(ValueError):
            create_optimizer("lbfgs")

    def test_invalid_learning_rate(self):
        with pytest.raises(ValueError, match="learning_rate must be > 0"):
            SGDOptimizer(learning_rate=0.0)

    def test_step_counts_batches(self):
        optimizer = AdamOptimizer(0.01)
        for _ in range(3):
            optimizer.step()
        assert optimizer.step_count == 3
        optimizer.reset()
        assert optimizer.step_count == 0
        assert optimizer.learning_rate == 0.01

    @pytest.mark.parametrize("cls,interval,factor", [
        (SGDOptimizer, 30, 0.5),
        (AdaGradOptimizer, 25, 0.95),
        (AdamOptimizer, 20, 0.9),
    ])
    def test_decay_schedule(self, cls, interval, factor):
        optimizer = cls(learning_rate=0.1)
        assert optimizer.update_learning_rate(0, 1.0) == pytest.approx(0.1)
        assert optimizer.update_learning_rate(interval - 1, 1.0) == pytest.approx(0.1)
        assert optimizer.update_learning_rate(interval, 1.0) == pytest.approx(0.1 * factor)
        assert optimizer.update_learning_rate(2 * interval, 1.0) == pytest.approx(0.1 * factor ** 2)

    def test_rmsprop_waits_past_epoch_10(self):
        optimizer = RMSpropOptimizer(learning_rate=0.1)
        assert optimizer.should_decay(15)
        assert not optimizer.should_decay(10)
        assert not optimizer.should_decay(0)
        optimizer.update_learning_rate(15, 0.5)
        assert optimizer.learning_rate == pytest.approx(0.08)

    @pytest.mark.parametrize("kind", list(OptimizerType))
    def test_fast_forward_matches_epoch_by_epoch(self, kind):
        stepped = create_optimizer(kind, 0.1)
        for epoch in range(40):
            stepped.update_learning_rate(epoch, 1.0)

        replayed = create_optimizer(kind, 0.1)
        assert replayed.fast_forward(40) == pytest.approx(stepped.learning_rate)

    def test_fast_forward_sgd_at_epoch_40(self):
        assert create_optimizer("sgd", 0.1).fast_forward(40) == pytest.approx(0.05)
        assert create_optimizer("sgd", 0.1).fast_forward(30) == pytest.approx(0.1)

    def test_hyperparameters_include_variant_extras(self):
        assert SGDOptimizer().hyperparameters()["momentum"] == 0.9
        assert set(AdamOptimizer().hyperparameters()) == {"learning_rate", "beta1", "beta2", "epsilon"}


# =============================================================================
# Early stopping
# =============================================================================


class TestEarlyStopping:

    def test_patience_three_constant_values(self):
        monitor = EarlyStopping(patience=3, min_delta=0.0, monitor="val_loss")
        assert [monitor.should_stop(1.0) for _ in range(4)] == [False, False, False, True]

    def test_non_improving_sequence_of_five(self):
        monitor = EarlyStopping(patience=3, min_delta=0.0)
        results = [monitor.should_stop(v) for v in [0.5, 0.6, 0.7, 0.8, 0.9]]
        assert results == [False, False, False, True, True]

    def test_improvement_resets_wait(self):
        monitor = EarlyStopping(patience=2, min_delta=0.0)
        assert not monitor.should_stop(1.0)
        assert not monitor.should_stop(1.1)
        assert monitor.state == StoppingState.WAITING
        assert not monitor.should_stop(0.9)
        assert monitor.wait_count == 0
        assert monitor.state == StoppingState.IMPROVING
        assert monitor.best_epoch == 2

    def test_min_delta_required(self):
        monitor = EarlyStopping(patience=1, min_delta=0.1)
        assert not monitor.should_stop(1.0)
        assert monitor.should_stop(0.95)

    def test_accuracy_is_maximized(self):
        monitor = EarlyStopping(patience=1, min_delta=0.0, monitor="val_accuracy")
        assert monitor.maximize
        assert not monitor.should_stop(0.5)
        assert not monitor.should_stop(0.6)
        assert monitor.should_stop(0.55)
        assert monitor.best_value == 0.6

    @pytest.mark.parametrize("name", ["val_f1", "precision", "macro_recall", "acc"])
    def test_maximized_names(self, name):
        assert EarlyStopping(monitor=name).maximize

    def test_loss_is_minimized(self):
        assert not EarlyStopping(monitor="val_loss").maximize

    def test_reset(self):
        monitor = EarlyStopping(patience=1, min_delta=0.0)
        monitor.should_stop(1.0)
        monitor.should_stop(2.0)
        assert monitor.stopped
        monitor.reset()
        assert not monitor.stopped
        assert monitor.best_value == float("inf")
        assert monitor.best_epoch == -1

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            EarlyStopping(patience=0)
        with pytest.raises(ValueError):
            EarlyStopping(min_delta=-1.0)


# =============================================================================
# Checkpoints
# =============================================================================


@pytest.fixture
def prior_model():
    model = ClassPriorModel()
    model.build(num_features=4)
    return model


class TestCheckpointManager:

    def test_best_only_sequence(self, tmp_path, prior_model):
        manager = CheckpointManager(tmp_path, save_best_only=True)
        saved = [
            manager.save_checkpoint(prior_model, epoch, score)
            for epoch, score in enumerate([0.9, 0.5, 0.7, 0.3])
        ]

        assert [info.epoch for info in saved if info is not None] == [0, 1, 3]
        assert saved[2] is None
        assert not (tmp_path / "checkpoint_epoch_002.pt").exists()
        assert manager.best_updates == 3
        assert manager.best_epoch == 3
        assert manager.best_score == pytest.approx(0.3)

        best = manager.get_best_checkpoint()
        assert best.epoch == 3
        assert best.score == pytest.approx(0.3)
        assert manager.best_checkpoint_path.exists()

    def test_save_all(self, tmp_path, prior_model):
        manager = CheckpointManager(tmp_path, save_best_only=False)
        for epoch, score in enumerate([0.9, 0.5, 0.7, 0.3]):
            manager.save_checkpoint(prior_model, epoch, score)
        assert [c.epoch for c in manager.list_checkpoints()] == [0, 1, 2, 3]
        assert [c.is_best for c in manager.list_checkpoints()] == [True, True, False, True]

    def test_metadata_file(self, tmp_path, prior_model):
        manager = CheckpointManager(tmp_path)
        manager.save_checkpoint(prior_model, 0, 0.8, {"loss": 0.9}, {"loss": 0.8})
        with open(tmp_path / "checkpoint_epoch_000_metadata.json") as f:
            metadata = json.load(f)
        assert metadata["epoch"] == 0
        assert metadata["score"] == 0.8
        assert metadata["validation_metrics"] == {"loss": 0.8}

    def test_load_best_restores_state(self, tmp_path, prior_model):
        manager = CheckpointManager(tmp_path)
        manager.save_checkpoint(prior_model, 0, 0.5)
        expected = prior_model.class_probabilities.copy()

        prior_model.train_batch([[0.0] * 4], [[0.0, 0.0, 1.0]], optimizer=None)
        assert manager.load_best_checkpoint(prior_model)
        assert prior_model.class_probabilities.tolist() == pytest.approx(expected.tolist())

    def test_load_best_without_checkpoint(self, tmp_path, prior_model):
        assert not CheckpointManager(tmp_path).load_best_checkpoint(prior_model)

    def test_last_checkpoint(self, tmp_path, prior_model):
        manager = CheckpointManager(tmp_path, save_best_only=False)
        assert manager.get_last_checkpoint() is None
        for epoch, score in enumerate([0.9, 0.95]):
            manager.save_checkpoint(prior_model, epoch, score)
        assert manager.get_last_checkpoint().epoch == 1

    def test_best_score_survives_restart(self, tmp_path, prior_model):
        CheckpointManager(tmp_path).save_checkpoint(prior_model, 2, 0.4)
        reopened = CheckpointManager(tmp_path)
        assert reopened.best_score == pytest.approx(0.4)
        assert reopened.best_epoch == 2
        assert reopened.save_checkpoint(prior_model, 3, 0.6) is None
