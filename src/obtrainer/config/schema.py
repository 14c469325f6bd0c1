"""
Configuration schema for the order-book trainer.

All configuration is done via type-safe dataclasses that can be serialized
to YAML/JSON for experiment tracking and reproducibility.

Design principles:
- All thresholds, behaviors, and hyperparameters via configuration
- Sensible defaults with full override capability
- Configs are serializable for experiment tracking
- Stored hyperparameters are parsed tolerantly: a bad field falls back to its
  documented default with a warning, it never aborts a run

Usage:
    >>> config = ExperimentConfig.from_yaml("configs/baseline.yaml")
    >>> config.features.window_size  # 50
    >>> config.train.optimizer  # OptimizerType.ADAGRAD
"""

from dataclasses import dataclass, field, asdict, fields, replace
from enum import Enum
from pathlib import Path
from typing import Optional, List, Any, Dict, Mapping, Union
import json
import logging
import math
import re

import yaml
from dacite import DaciteError

from obtrainer.constants import FeatureGroup
from obtrainer.errors import InvalidConfigurationError

logger = logging.getLogger(__name__)


def _require_finite(**values: float) -> None:
    for name, value in values.items():
        if not math.isfinite(value):
            raise ValueError(f"{name} must be finite, got {value}")


# =============================================================================
# Enums for configuration options
# =============================================================================


class OptimizerType(str, Enum):
    """Learning-rate controller variant used for a run."""

    SGD = "sgd"
    """Constant momentum. Halves the learning rate every 30 epochs."""

    ADAGRAD = "adagrad"
    """Adaptive per-parameter. Multiplies by 0.95 every 25 epochs."""

    RMSPROP = "rmsprop"
    """RMS-based. Multiplies by 0.8 every 15 epochs once past epoch 10."""

    ADAM = "adam"
    """Step decay. Multiplies by 0.9 every 20 epochs."""


class ModelType(str, Enum):
    """Model backend type."""

    MLP = "mlp"
    """Feed-forward torch classifier with softmax output."""

    CLASS_PRIOR = "class_prior"
    """Baseline that predicts the training class frequencies."""


# =============================================================================
# Feature Configuration
# =============================================================================


@dataclass
class FeatureConfig:
    """
    Configuration for windowed feature extraction and labelling.

    For every index i >= window_size the extractor looks at the window_size
    preceding snapshots plus snapshot i. The direction label compares the mid
    price `horizon` steps ahead against mid_price[i] * (1 +/- threshold).

    Example:
        window_size=10, horizon=5, 200 snapshots:
        - samples for i in [10, 200) -> 190 samples
        - i in [195, 200) have no direction label
    """

    window_size: int = 50
    """Number of preceding snapshots per sample."""

    horizon: int = 5
    """Steps ahead used for the direction label."""

    threshold: float = 0.001
    """Relative move that separates Up/Down from Flat."""

    feature_types: List[FeatureGroup] = field(
        default_factory=lambda: [
            FeatureGroup.BASIC,
            FeatureGroup.TECHNICAL,
            FeatureGroup.ADVANCED,
        ]
    )
    """Enabled feature groups."""

    train_split: float = 0.70
    """Position ratio below which samples are tagged Train."""

    validation_split: float = 0.85
    """Position ratio below which samples are tagged Validation (rest: Test)."""

    def __post_init__(self) -> None:
        _require_finite(
            threshold=self.threshold,
            train_split=self.train_split,
            validation_split=self.validation_split,
        )
        if self.window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {self.window_size}")
        if self.horizon < 1:
            raise ValueError(f"horizon must be >= 1, got {self.horizon}")
        if self.threshold < 0:
            raise ValueError(f"threshold must be >= 0, got {self.threshold}")
        if not self.feature_types:
            raise ValueError("feature_types must enable at least one group")
        self.feature_types = [FeatureGroup(g) for g in self.feature_types]
        if not 0 < self.train_split < self.validation_split <= 1:
            raise ValueError(
                f"splits must satisfy 0 < train_split < validation_split <= 1, "
                f"got {self.train_split}, {self.validation_split}"
            )


# =============================================================================
# Model Configuration
# =============================================================================


@dataclass
class ModelConfig:
    """
    Configuration for the model backend.

    The orchestrator treats the model as opaque; these fields only reach the
    backend factory.
    """

    model_type: ModelType = ModelType.MLP
    """Model backend type."""

    hidden_size: int = 64
    """Hidden layer width for the MLP backend."""

    num_classes: int = 3
    """Number of output classes (Down, Flat, Up)."""

    dropout: float = 0.1
    """Dropout probability. Range: [0, 1)."""

    def __post_init__(self) -> None:
        if self.hidden_size < 1:
            raise ValueError(f"hidden_size must be >= 1, got {self.hidden_size}")
        if self.num_classes < 2:
            raise ValueError(f"num_classes must be >= 2, got {self.num_classes}")
        if not 0 <= self.dropout < 1:
            raise ValueError(f"dropout must be in [0, 1), got {self.dropout}")


# =============================================================================
# Training Configuration
# =============================================================================


@dataclass
class TrainConfig:
    """
    Configuration for training hyperparameters.
    """

    epochs: int = 100
    """Maximum number of training epochs."""

    batch_size: int = 32
    """Batch size for training. The last batch may be smaller."""

    learning_rate: float = 0.001
    """Initial learning rate."""

    optimizer: OptimizerType = OptimizerType.ADAGRAD
    """Learning-rate controller variant."""

    use_lr_scheduling: bool = True
    """Apply the optimizer's epoch-based decay after every epoch."""

    early_stopping_patience: int = 10
    """Stop after this many epochs without sufficient improvement."""

    min_delta: float = 0.001
    """Minimum change of the monitored value that counts as improvement."""

    monitor: str = "val_loss"
    """
    Monitored metric name. Names containing acc/f1/precision/recall are
    maximized, anything else is minimized.
    """

    save_best_only: bool = True
    """Only persist checkpoints that improve the best validation loss."""

    checkpoint_frequency: int = 5
    """
    Interval (epochs) of periodic checkpoints written between improvements
    when save_best_only is off.
    """

    seed: int = 42
    """Random seed for reproducibility."""

    def __post_init__(self) -> None:
        _require_finite(learning_rate=self.learning_rate, min_delta=self.min_delta)
        if self.epochs < 1:
            raise ValueError(f"epochs must be >= 1, got {self.epochs}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.learning_rate <= 0:
            raise ValueError(f"learning_rate must be > 0, got {self.learning_rate}")
        if self.early_stopping_patience < 1:
            raise ValueError(
                f"early_stopping_patience must be >= 1, got {self.early_stopping_patience}"
            )
        if self.min_delta < 0:
            raise ValueError(f"min_delta must be >= 0, got {self.min_delta}")
        if self.checkpoint_frequency < 1:
            raise ValueError(
                f"checkpoint_frequency must be >= 1, got {self.checkpoint_frequency}"
            )
        if self.seed < 0:
            raise ValueError(f"seed must be >= 0, got {self.seed}")
        self.optimizer = OptimizerType(self.optimizer)


# =============================================================================
# Backtest Configuration
# =============================================================================


@dataclass
class BacktestConfig:
    """
    Configuration for replaying predictions as a trading strategy.
    """

    initial_capital: float = 100_000.0
    """Starting portfolio value."""

    position_size: float = 1_000.0
    """Quantity traded per unit of position change."""

    confidence_threshold: float = 0.6
    """Minimum prediction confidence required to act."""

    lookback: int = 100
    """Warm-up steps skipped before the first decision."""

    transaction_cost: float = 0.001
    """Cost charged as a fraction of traded notional."""

    position_change_threshold: float = 0.5
    """Minimum position change (in unit positions) that triggers a trade."""

    def __post_init__(self) -> None:
        _require_finite(
            initial_capital=self.initial_capital,
            position_size=self.position_size,
            confidence_threshold=self.confidence_threshold,
            transaction_cost=self.transaction_cost,
            position_change_threshold=self.position_change_threshold,
        )
        if self.initial_capital <= 0:
            raise ValueError(f"initial_capital must be > 0, got {self.initial_capital}")
        if self.position_size <= 0:
            raise ValueError(f"position_size must be > 0, got {self.position_size}")
        if not 0 <= self.confidence_threshold <= 1:
            raise ValueError(
                f"confidence_threshold must be in [0, 1], got {self.confidence_threshold}"
            )
        if self.lookback < 0:
            raise ValueError(f"lookback must be >= 0, got {self.lookback}")
        if self.transaction_cost < 0:
            raise ValueError(f"transaction_cost must be >= 0, got {self.transaction_cost}")
        if self.position_change_threshold < 0:
            raise ValueError(
                f"position_change_threshold must be >= 0, got {self.position_change_threshold}"
            )


# =============================================================================
# Experiment Configuration (Top-Level)
# =============================================================================


@dataclass
class ExperimentConfig:
    """
    Top-level configuration combining all sub-configs.

    Usage:
        >>> config = ExperimentConfig.from_yaml("configs/baseline.yaml")
        >>> service = TrainingService(uow, model_store)
        >>> run = service.start_run(config_id, dataset_id)
    """

    name: str = "default"
    """Experiment name for tracking."""

    description: str = ""
    """Experiment description."""

    features: FeatureConfig = field(default_factory=FeatureConfig)
    """Feature extraction configuration."""

    model: ModelConfig = field(default_factory=ModelConfig)
    """Model backend configuration."""

    train: TrainConfig = field(default_factory=TrainConfig)
    """Training hyperparameters."""

    backtest: BacktestConfig = field(default_factory=BacktestConfig)
    """Backtest parameters."""

    output_dir: str = "outputs"
    """Directory for checkpoints, models and logs."""

    log_level: str = "INFO"
    """Logging level: DEBUG, INFO, WARNING, ERROR."""

    tags: List[str] = field(default_factory=list)
    """Tags for experiment tracking."""

    def to_dict(self) -> dict:
        """Convert config to dictionary for serialization."""
        def _convert(obj: Any) -> Any:
            if isinstance(obj, Enum):
                return obj.value
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: _convert(v) for k, v in asdict(obj).items()}
            elif isinstance(obj, list):
                return [_convert(item) for item in obj]
            elif isinstance(obj, dict):
                return {k: _convert(v) for k, v in obj.items()}
            else:
                return obj
        return _convert(self)

    def to_yaml(self, path: str) -> None:
        """Save configuration to YAML file."""
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def to_json(self, path: str) -> None:
        """Save configuration to JSON file."""
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def from_dict(cls, data: dict) -> "ExperimentConfig":
        """Create config from dictionary (strict: invalid values raise)."""
        from dacite import from_dict, Config as DaciteConfig
        return from_dict(
            data_class=cls,
            data=data,
            config=DaciteConfig(cast=[Enum, Path]),
        )

    @classmethod
    def from_yaml(cls, path: str) -> "ExperimentConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_json(cls, path: str) -> "ExperimentConfig":
        """Load configuration from JSON file."""
        with open(path) as f:
            data = json.load(f)
        return cls.from_dict(data)


# =============================================================================
# Tolerant hyperparameter parsing
# =============================================================================

_KEY_ALIASES: Dict[str, str] = {
    "patience": "early_stopping_patience",
    "monitor_metric": "monitor",
    "optimizer_type": "optimizer",
    "lr": "learning_rate",
    "use_learning_rate_scheduling": "use_lr_scheduling",
    "transaction_cost_rate": "transaction_cost",
}


def _snake_case(key: str) -> str:
    key = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", key.strip())
    key = key.replace("-", "_").replace(" ", "_").lower()
    return _KEY_ALIASES.get(key, key)


def _coerce(value: Any, default: Any) -> Any:
    """
    Coerce a raw JSON value to the type of the field default.

    Raises:
        TypeError/ValueError: If the value cannot represent that type.
    """
    if isinstance(default, Enum):
        return type(default)(str(value).strip().lower())
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise TypeError(f"expected a boolean, got {value!r}")
    if isinstance(default, int):
        if isinstance(value, bool):
            raise TypeError(f"expected an integer, got {value!r}")
        number = float(value)
        if not number.is_integer():
            raise ValueError(f"expected an integer, got {value!r}")
        return int(number)
    if isinstance(default, float):
        if isinstance(value, bool):
            raise TypeError(f"expected a number, got {value!r}")
        number = float(value)
        if not math.isfinite(number):
            raise ValueError(f"expected a finite number, got {value!r}")
        return number
    if isinstance(default, list):
        if isinstance(value, str):
            value = [part.strip() for part in value.split(",") if part.strip()]
        if not isinstance(value, (list, tuple)):
            raise TypeError(f"expected a list, got {value!r}")
        return list(value)
    if isinstance(default, str):
        if not isinstance(value, str):
            raise TypeError(f"expected a string, got {value!r}")
        return value
    return value


def _parse_section(section: Any, values: Mapping[str, Any]) -> Any:
    """
    Apply the recognised fields to a config section.

    All fields are coerced first and applied together, so cross-field
    checks (e.g. train_split < validation_split) see the new values. If the
    combination is rejected, fields are applied one at a time and each
    rejected field keeps its default.
    """
    coerced: Dict[str, Any] = {}
    for f in fields(section):
        if f.name not in values:
            continue
        raw = values[f.name]
        default = getattr(section, f.name)
        try:
            coerced[f.name] = _coerce(raw, default)
        except (TypeError, ValueError) as e:
            logger.warning(
                f"Invalid hyperparameter {f.name}={raw!r} ({e}); "
                f"using default {default!r}"
            )
    if not coerced:
        return section

    try:
        return replace(section, **coerced)
    except (TypeError, ValueError) as e:
        logger.debug(f"{type(section).__name__} rejected {sorted(coerced)} together ({e})")

    for name, value in coerced.items():
        default = getattr(section, name)
        try:
            section = replace(section, **{name: value})
        except (TypeError, ValueError) as e:
            logger.warning(
                f"Invalid hyperparameter {name}={value!r} ({e}); "
                f"using default {default!r}"
            )
    return section


def parse_hyperparameters(
    raw: Union[str, Mapping[str, Any], None],
    base: Optional[ExperimentConfig] = None,
) -> ExperimentConfig:
    """
    Parse stored hyperparameters into an ExperimentConfig, tolerantly.

    Accepts a JSON string or a mapping. Keys may be camelCase or snake_case and
    may be flat ({"batchSize": 64}) or grouped by section
    ({"train": {"batch_size": 64}}). Every field is parsed independently:
    a malformed payload or a bad field falls back to the documented default
    and logs a warning. This function never raises.

    Args:
        raw: Hyperparameter JSON text or mapping. None/empty means defaults.
        base: Config supplying the defaults (ExperimentConfig() if None).

    Returns:
        ExperimentConfig populated from the recognised fields.

    Example:
        >>> cfg = parse_hyperparameters('{"batchSize": 64, "epochs": "x"}')
        >>> cfg.train.batch_size, cfg.train.epochs
        (64, 100)
    """
    config = base if base is not None else ExperimentConfig()

    data: Any = raw
    if isinstance(raw, str):
        if not raw.strip():
            return config
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Malformed hyperparameter JSON ({e}); using defaults")
            return config
    if data is None:
        return config
    if not isinstance(data, Mapping):
        logger.warning(
            f"Hyperparameters must be a JSON object, got {type(data).__name__}; "
            f"using defaults"
        )
        return config

    flat: Dict[str, Any] = {}
    grouped: Dict[str, Dict[str, Any]] = {}
    for key, value in data.items():
        name = _snake_case(str(key))
        if isinstance(value, Mapping):
            grouped[name] = {_snake_case(str(k)): v for k, v in value.items()}
        else:
            flat[name] = value

    sections = {}
    for section_name in ("features", "model", "train", "backtest"):
        values = {**flat, **grouped.get(section_name, {})}
        sections[section_name] = _parse_section(getattr(config, section_name), values)

    top_level = {
        k: v for k, v in flat.items() if k in ("name", "description", "output_dir", "log_level")
    }
    config = _parse_section(replace(config, **sections), top_level)

    unknown = set(flat) - {
        f.name
        for section in sections.values()
        for f in fields(section)
    } - set(top_level)
    if unknown:
        logger.debug(f"Ignoring unknown hyperparameters: {sorted(unknown)}")
    return config


# =============================================================================
# Convenience Functions
# =============================================================================


def load_config(path: str) -> ExperimentConfig:
    """
    Load configuration from file (auto-detect format), strictly.

    Args:
        path: Path to configuration file (.yaml, .yml, or .json)

    Returns:
        ExperimentConfig instance

    Raises:
        InvalidConfigurationError: If the format is not supported or a value
            is invalid
    """
    path_lower = str(path).lower()
    try:
        if path_lower.endswith((".yaml", ".yml")):
            return ExperimentConfig.from_yaml(path)
        elif path_lower.endswith(".json"):
            return ExperimentConfig.from_json(path)
    except (DaciteError, ValueError, TypeError, yaml.YAMLError) as e:
        raise InvalidConfigurationError(f"Invalid configuration {path}: {e}") from e
    raise InvalidConfigurationError(
        f"Unsupported config format: {path}. Use .yaml, .yml, or .json"
    )


def save_config(config: ExperimentConfig, path: str) -> None:
    """
    Save configuration to file (auto-detect format).

    Raises:
        ValueError: If file format is not supported
    """
    path_lower = str(path).lower()
    if path_lower.endswith((".yaml", ".yml")):
        config.to_yaml(path)
    elif path_lower.endswith(".json"):
        config.to_json(path)
    else:
        raise ValueError(f"Unsupported config format: {path}. Use .yaml, .yml, or .json")
