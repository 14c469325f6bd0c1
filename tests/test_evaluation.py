"""
Tests for the evaluation framework.

Tests cover:
- Contiguous k-fold ranges and cross-validation
- Prediction records and evaluate_model
- ModelEvaluator run-id entry points
"""

import numpy as np
import pytest

from obtrainer.data import SplitTag
from obtrainer.errors import NotFoundError
from obtrainer.models import ClassPriorModel
from obtrainer.training import (
    Callback,
    ModelEvaluator,
    cross_validate,
    evaluate_model,
    kfold_ranges,
    make_predictions,
    one_hot,
)


class ConstantModel:
    """Always predicts the same class with probability 0.8."""

    name = "Constant"

    def __init__(self, class_index=2):
        self.class_index = class_index

    def predict(self, features):
        probabilities = np.full((len(features), 3), 0.1)
        probabilities[:, self.class_index] = 0.8
        return probabilities


# =============================================================================
# K-fold
# =============================================================================


class TestKFold:

    def test_even_split(self):
        folds = kfold_ranges(100, 5)
        assert len(folds) == 5
        assert all(end - start == 20 for start, end in folds)

    def test_last_fold_takes_remainder(self):
        assert kfold_ranges(10, 3) == [(0, 3), (3, 6), (6, 10)]

    def test_folds_cover_everything_once(self):
        folds = kfold_ranges(37, 4)
        covered = [i for start, end in folds for i in range(start, end)]
        assert covered == list(range(37))

    @pytest.mark.parametrize("n,k", [(10, 1), (10, 0), (3, 4)])
    def test_invalid_k(self, n, k):
        with pytest.raises(ValueError):
            kfold_ranges(n, k)


class TestCrossValidate:

    def test_single_class_data(self):
        features = np.zeros((20, 2), dtype=np.float32)
        targets = one_hot([2] * 20)
        result = cross_validate(ClassPriorModel, features, targets, k=4, epochs=1, batch_size=8)

        assert result.fold_accuracies == [1.0, 1.0, 1.0, 1.0]
        assert result.mean_accuracy == 1.0
        assert result.std_accuracy == 0.0
        assert result.to_dict()["k"] == 4

    def test_fresh_model_per_fold(self):
        created = []

        def factory():
            model = ClassPriorModel()
            created.append(model)
            return model

        features = np.zeros((30, 1), dtype=np.float32)
        targets = one_hot([0] * 15 + [2] * 15)
        result = cross_validate(factory, features, targets, k=3)

        assert len({id(m) for m in created}) == 3
        assert result.folds == [(0, 10), (10, 20), (20, 30)]
        # middle fold straddles the class change; std uses ddof=1
        assert result.std_accuracy == pytest.approx(np.std(result.fold_accuracies, ddof=1))


# =============================================================================
# Predictions and metrics
# =============================================================================


class TestPredictions:

    def test_directions_and_confidence(self):
        predictions = make_predictions(ConstantModel(0), np.zeros((3, 2)))
        assert predictions.directions.tolist() == [-1, -1, -1]
        assert predictions.confidences.tolist() == pytest.approx([0.8] * 3)
        assert len(predictions) == 3

        record = predictions.to_records()[0]
        assert record["direction"] == -1
        assert record["class_probabilities"] == pytest.approx([0.8, 0.1, 0.1])

    def test_up_maps_to_positive_direction(self):
        assert make_predictions(ConstantModel(2), np.zeros((1, 2))).directions.tolist() == [1]

    def test_empty(self):
        assert len(make_predictions(ConstantModel(), np.zeros((0, 2)))) == 0


class TestEvaluateModel:

    def test_metrics(self):
        targets = one_hot([2, 2, 0, 1])
        metrics = evaluate_model(ConstantModel(2), np.zeros((4, 2)), targets)

        assert metrics.accuracy == pytest.approx(0.5)
        assert metrics.loss == pytest.approx(-np.mean(np.log([0.8, 0.8, 0.1, 0.1])))
        # always long: +0.001 on the two up moves, -0.001 on the down move
        assert metrics.trading.number_of_trades == 4
        assert metrics.trading.win_rate == pytest.approx(0.5)

        data = metrics.to_dict()
        assert "trading" in data
        assert "regression" in data
        assert "Loss:" in metrics.summary()


# =============================================================================
# ModelEvaluator
# =============================================================================


@pytest.fixture
def evaluator(service):
    return ModelEvaluator(service)


@pytest.fixture
def completed_run(service, registered):
    return service.start_run(*registered)


class TestModelEvaluator:

    def test_evaluate_matches_stored_test_metrics(self, evaluator, completed_run):
        metrics = evaluator.evaluate(completed_run.id)
        stored = completed_run.artifacts["test_metrics"]
        assert metrics.classification.n_samples == 25
        assert metrics.accuracy == pytest.approx(stored["accuracy"])
        assert metrics.loss == pytest.approx(stored["loss"])

    def test_evaluate_other_split(self, evaluator, completed_run):
        metrics = evaluator.evaluate(completed_run.id, SplitTag.VALIDATION)
        assert metrics.classification.n_samples == 30

    def test_evaluate_unknown_run(self, evaluator):
        with pytest.raises(NotFoundError):
            evaluator.evaluate("missing")

    def test_compare_models(self, service, evaluator, registered):
        first = service.start_run(*registered)
        second = service.start_run(*registered)
        entries = evaluator.compare_models([first.id, "missing", second.id])

        assert [e.rank for e in entries] == [1, 2]
        assert {e.run_id for e in entries} == {first.id, second.id}
        assert entries[0].accuracy >= entries[1].accuracy
        assert entries[0].model_name == "ClassPrior"

    def test_performance_report(self, evaluator, completed_run):
        report = evaluator.generate_performance_report(completed_run.id)
        assert report.status == "completed"
        assert report.latest_training["epoch"] == 3
        assert report.latest_validation["kind"] == "validation"
        assert report.test_metrics == completed_run.artifacts["test_metrics"]
        assert "Epochs completed: 4" in report.summary
        assert report.to_dict()["run_id"] == completed_run.id

    def test_validate_model(self, evaluator, completed_run):
        report = evaluator.validate_model(completed_run.id)
        assert report.is_valid
        assert report.loads
        assert report.size_bytes > 0
        assert report.errors == []

    def test_validate_missing_model(self, evaluator, completed_run, model_store):
        model_store.delete(completed_run.id)
        report = evaluator.validate_model(completed_run.id)
        assert not report.is_valid
        assert not report.model_exists
        assert "not found" in report.errors[0]

    def test_cross_validate(self, evaluator, completed_run):
        result = evaluator.cross_validate(completed_run.id, k=5, epochs=1)
        assert len(result.fold_accuracies) == 5
        assert result.folds[-1][1] == 185
        assert 0.0 <= result.mean_accuracy <= 1.0

    def test_backtest(self, evaluator, completed_run):
        result = evaluator.backtest(completed_run.id)
        assert len(result.value_history) == result.number_of_trades + 1
        assert result.value_history[0] == result.initial_capital
        assert result.final_value > 0

    def test_backtest_single_split(self, evaluator, completed_run):
        full = evaluator.backtest(completed_run.id)
        test_only = evaluator.backtest(completed_run.id, SplitTag.TEST)
        assert test_only.number_of_trades <= full.number_of_trades

    def test_incomplete_run_rejected(self, service, evaluator, registered):
        class StopImmediately(Callback):
            def on_train_start(self, run_id, total_epochs):
                service.stop(run_id)

        service.callbacks.append(StopImmediately())
        run = service.start_run(*registered)
        with pytest.raises(ValueError, match="not completed"):
            evaluator.evaluate(run.id)
