"""
Tests for configuration schema and tolerant hyperparameter parsing.
"""

import json
import logging

import pytest

from obtrainer.config import (
    BacktestConfig,
    ExperimentConfig,
    FeatureConfig,
    ModelConfig,
    TrainConfig,
    load_config,
    parse_hyperparameters,
    save_config,
)
from obtrainer.config.schema import ModelType, OptimizerType
from obtrainer.constants import FeatureGroup
from obtrainer.errors import InvalidConfigurationError


class TestFeatureConfig:
    """Test FeatureConfig validation."""

    def test_default_values(self):
        config = FeatureConfig()
        assert config.window_size == 50
        assert config.horizon == 5
        assert config.threshold == 0.001
        assert config.train_split == 0.70
        assert config.validation_split == 0.85
        assert set(config.feature_types) == set(FeatureGroup)

    def test_invalid_window_size(self):
        with pytest.raises(ValueError, match="window_size must be >= 1"):
            FeatureConfig(window_size=0)

    def test_invalid_horizon(self):
        with pytest.raises(ValueError, match="horizon must be >= 1"):
            FeatureConfig(horizon=0)

    def test_splits_must_be_ordered(self):
        with pytest.raises(ValueError, match="splits must satisfy"):
            FeatureConfig(train_split=0.9, validation_split=0.8)

    def test_feature_types_from_strings(self):
        config = FeatureConfig(feature_types=["basic", "advanced"])
        assert config.feature_types == [FeatureGroup.BASIC, FeatureGroup.ADVANCED]

    def test_empty_feature_types(self):
        with pytest.raises(ValueError, match="at least one group"):
            FeatureConfig(feature_types=[])


class TestTrainConfig:
    """Test TrainConfig defaults and validation."""

    def test_default_values(self):
        config = TrainConfig()
        assert config.epochs == 100
        assert config.batch_size == 32
        assert config.learning_rate == 0.001
        assert config.optimizer == OptimizerType.ADAGRAD
        assert config.use_lr_scheduling is True
        assert config.early_stopping_patience == 10
        assert config.min_delta == 0.001
        assert config.monitor == "val_loss"
        assert config.save_best_only is True
        assert config.checkpoint_frequency == 5
        assert config.seed == 42

    def test_invalid_learning_rate(self):
        with pytest.raises(ValueError, match="learning_rate must be > 0"):
            TrainConfig(learning_rate=0.0)

    def test_invalid_patience(self):
        with pytest.raises(ValueError, match="early_stopping_patience"):
            TrainConfig(early_stopping_patience=0)

    @pytest.mark.parametrize("kwargs", [
        {"learning_rate": float("nan")},
        {"learning_rate": float("inf")},
        {"min_delta": float("nan")},
    ])
    def test_non_finite_values_rejected(self, kwargs):
        with pytest.raises(ValueError, match="must be finite"):
            TrainConfig(**kwargs)

    def test_optimizer_from_string(self):
        assert TrainConfig(optimizer="rmsprop").optimizer == OptimizerType.RMSPROP


class TestModelAndBacktestConfig:

    def test_model_defaults(self):
        config = ModelConfig()
        assert config.model_type == ModelType.MLP
        assert config.num_classes == 3

    def test_invalid_dropout(self):
        with pytest.raises(ValueError, match="dropout"):
            ModelConfig(dropout=1.0)

    def test_backtest_defaults(self):
        config = BacktestConfig()
        assert config.initial_capital == 100_000.0
        assert config.position_size == 1_000.0
        assert config.confidence_threshold == 0.6
        assert config.lookback == 100
        assert config.transaction_cost == 0.001
        assert config.position_change_threshold == 0.5

    def test_invalid_confidence_threshold(self):
        with pytest.raises(ValueError, match="confidence_threshold"):
            BacktestConfig(confidence_threshold=1.5)


class TestExperimentConfigSerialization:
    """YAML/JSON round trips through dacite."""

    def test_yaml_round_trip(self, tmp_path):
        config = ExperimentConfig(
            name="yaml_test",
            features=FeatureConfig(window_size=20, feature_types=["basic"]),
            train=TrainConfig(epochs=7, optimizer="adam"),
            tags=["a", "b"],
        )
        path = tmp_path / "config.yaml"
        save_config(config, str(path))
        loaded = load_config(str(path))

        assert loaded.name == "yaml_test"
        assert loaded.features.window_size == 20
        assert loaded.features.feature_types == [FeatureGroup.BASIC]
        assert loaded.train.optimizer == OptimizerType.ADAM
        assert loaded.tags == ["a", "b"]

    def test_json_round_trip(self, tmp_path):
        config = ExperimentConfig(model=ModelConfig(model_type="class_prior"))
        path = tmp_path / "config.json"
        save_config(config, str(path))
        assert load_config(str(path)).model.model_type == ModelType.CLASS_PRIOR

    def test_to_dict_uses_enum_values(self):
        data = ExperimentConfig().to_dict()
        assert data["train"]["optimizer"] == "adagrad"
        assert data["features"]["feature_types"] == ["basic", "technical", "advanced"]

    def test_unsupported_format(self, tmp_path):
        with pytest.raises(InvalidConfigurationError, match="Unsupported config format"):
            load_config(str(tmp_path / "config.toml"))

    def test_invalid_value_raises(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"train": {"epochs": 0}}))
        with pytest.raises(InvalidConfigurationError):
            load_config(str(path))

    def test_save_unsupported_format(self, tmp_path):
        with pytest.raises(ValueError, match="Unsupported config format"):
            save_config(ExperimentConfig(), str(tmp_path / "config.txt"))


class TestParseHyperparameters:
    """Tolerant parse: bad fields fall back to defaults, never raise."""

    def test_none_gives_defaults(self):
        config = parse_hyperparameters(None)
        assert config.train.epochs == 100
        assert config.features.window_size == 50

    def test_flat_camel_case_keys(self):
        config = parse_hyperparameters('{"batchSize": 64, "windowSize": 20, "learningRate": 0.01}')
        assert config.train.batch_size == 64
        assert config.features.window_size == 20
        assert config.train.learning_rate == 0.01

    def test_grouped_sections(self):
        config = parse_hyperparameters({
            "train": {"epochs": 3, "optimizer": "SGD"},
            "model": {"modelType": "class_prior"},
        })
        assert config.train.epochs == 3
        assert config.train.optimizer == OptimizerType.SGD
        assert config.model.model_type == ModelType.CLASS_PRIOR

    def test_split_pair_applied_together(self):
        config = parse_hyperparameters('{"trainSplit": 0.9, "validationSplit": 0.95}')
        assert config.features.train_split == 0.9
        assert config.features.validation_split == 0.95

    def test_invalid_split_pair_keeps_valid_field(self):
        config = parse_hyperparameters({"trainSplit": 0.9, "validationSplit": 0.8})
        assert config.features.train_split == 0.7
        assert config.features.validation_split == 0.8

    def test_non_finite_numbers_fall_back(self):
        config = parse_hyperparameters(
            '{"learningRate": NaN, "threshold": NaN, "positionSize": Infinity, "minDelta": -Infinity}'
        )
        assert config.train.learning_rate == 0.001
        assert config.train.min_delta == 0.001
        assert config.features.threshold == 0.001
        assert config.backtest.position_size == 1_000.0

    def test_aliases(self):
        config = parse_hyperparameters({"patience": 4, "lr": 0.05})
        assert config.train.early_stopping_patience == 4
        assert config.train.learning_rate == 0.05

    def test_bad_field_falls_back(self, caplog):
        with caplog.at_level(logging.WARNING):
            config = parse_hyperparameters({"epochs": "many", "batch_size": 8})
        assert config.train.epochs == 100
        assert config.train.batch_size == 8
        assert "Invalid hyperparameter epochs" in caplog.text

    def test_out_of_range_falls_back(self):
        config = parse_hyperparameters({"epochs": -5, "threshold": -1})
        assert config.train.epochs == 100
        assert config.features.threshold == 0.001

    def test_unknown_optimizer_falls_back(self):
        assert parse_hyperparameters({"optimizer": "lbfgs"}).train.optimizer == OptimizerType.ADAGRAD

    def test_malformed_json(self, caplog):
        with caplog.at_level(logging.WARNING):
            config = parse_hyperparameters("{not json")
        assert config.train.epochs == 100
        assert "Malformed hyperparameter JSON" in caplog.text

    def test_non_mapping_payload(self):
        assert parse_hyperparameters("[1, 2, 3]").train.batch_size == 32

    def test_booleans_from_strings(self):
        config = parse_hyperparameters({"use_lr_scheduling": "false", "save_best_only": "true"})
        assert config.train.use_lr_scheduling is False
        assert config.train.save_best_only is True

    def test_integer_rejects_fraction(self):
        assert parse_hyperparameters({"batch_size": 12.5}).train.batch_size == 32

    def test_round_trip_of_to_dict(self):
        original = ExperimentConfig(
            name="exp",
            features=FeatureConfig(window_size=12, feature_types=["technical"]),
            train=TrainConfig(epochs=9, optimizer="rmsprop"),
        )
        parsed = parse_hyperparameters(original.to_dict())
        assert parsed.name == "exp"
        assert parsed.features.window_size == 12
        assert parsed.features.feature_types == [FeatureGroup.TECHNICAL]
        assert parsed.train.epochs == 9
        assert parsed.train.optimizer == OptimizerType.RMSPROP
