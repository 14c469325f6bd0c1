"""
Feed-forward classifier over windowed order-book features.

Architecture:
    Input: [batch, n_features]
    -> standardization with training-set mean/std (stored as buffers)
    -> Linear -> ReLU -> Dropout -> Linear
    Output: [batch, n_classes] logits (softmax applied by MLPModel)

MLPModel wraps the network behind the TrainableModel interface. The torch
optimizer mirrors the configured learning-rate controller variant and its
learning rate is re-synced from the controller before every batch, so
the controller's epoch decay is what the parameters actually see.

Design principles:
- Configuration-driven hyperparameters
- Deterministic given same seed
- Checkpoints hold only tensors and primitives (safe weights-only loading)
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

import numpy as np
import torch
import torch.nn as nn
import torch.nn.functional as F

from obtrainer.config import OptimizerType
from obtrainer.models.base import TrainableModel

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class MLPConfig:
    """
    Configuration for the MLP classifier.
    """

    input_size: int = 31
    """Number of input features. Set from the extracted feature width."""

    hidden_size: int = 64
    """Hidden layer width. Range: [8, 1024]."""

    num_classes: int = 3
    """Number of output classes (Down=0, Flat=1, Up=2)."""

    dropout: float = 0.1
    """Dropout before the output layer. Range: [0, 1)."""

    def __post_init__(self):
        """Validate configuration."""
        if self.input_size < 1:
            raise ValueError(f"input_size must be >= 1, got {self.input_size}")
        if self.hidden_size < 1:
            raise ValueError(f"hidden_size must be >= 1, got {self.hidden_size}")
        if not 0 <= self.dropout < 1:
            raise ValueError(f"dropout must be in [0, 1), got {self.dropout}")


# =============================================================================
# Network
# =============================================================================


class MLPClassifier(nn.Module):
    """
    Two-layer perceptron with input standardization.

    Example:
        >>> net = MLPClassifier(MLPConfig(input_size=31))
        >>> logits = net(torch.randn(32, 31))  # [32, 3]
    """

    def __init__(self, config: Optional[MLPConfig] = None):
        super().__init__()
        self.config = config or MLPConfig()
        cfg = self.config

        self.register_buffer("input_mean", torch.zeros(cfg.input_size))
        self.register_buffer("input_std", torch.ones(cfg.input_size))

        self.hidden = nn.Linear(cfg.input_size, cfg.hidden_size)
        self.dropout = nn.Dropout(cfg.dropout)
        self.output = nn.Linear(cfg.hidden_size, cfg.num_classes)

    def set_normalization(self, features: np.ndarray) -> None:
        """Fit the standardization buffers on training features [N, F]."""
        data = torch.as_tensor(np.asarray(features), dtype=torch.float32)
        if data.shape[0] == 0:
            return
        std = data.std(dim=0, unbiased=False)
        self.input_mean.copy_(data.mean(dim=0))
        self.input_std.copy_(torch.where(std > 0, std, torch.ones_like(std)))

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        x = (x - self.input_mean) / self.input_std
        x = F.relu(self.hidden(x))
        return self.output(self.dropout(x))


# =============================================================================
# TrainableModel adapter
# =============================================================================


def _make_torch_optimizer(parameters, optimizer) -> torch.optim.Optimizer:
    """Torch optimizer matching a learning-rate controller variant."""
    params = optimizer.hyperparameters()
    lr = optimizer.learning_rate
    kind = optimizer.kind
    if kind == OptimizerType.SGD:
        return torch.optim.SGD(parameters, lr=lr, momentum=params.get("momentum", 0.9))
    if kind == OptimizerType.ADAGRAD:
        return torch.optim.Adagrad(parameters, lr=lr, eps=params.get("epsilon", 1e-10))
    if kind == OptimizerType.RMSPROP:
        return torch.optim.RMSprop(
            parameters,
            lr=lr,
            alpha=params.get("alpha", 0.99),
            eps=params.get("epsilon", 1e-8),
        )
    if kind == OptimizerType.ADAM:
        return torch.optim.Adam(
            parameters,
            lr=lr,
            betas=(params.get("beta1", 0.9), params.get("beta2", 0.999)),
            eps=params.get("epsilon", 1e-8),
        )
    raise ValueError(f"Unsupported optimizer kind: {kind}")


class MLPModel(TrainableModel):
    """
    MLPClassifier behind the TrainableModel interface.

    Args:
        hidden_size: Hidden layer width.
        num_classes: Number of classes.
        dropout: Dropout probability.
        device: Torch device (CPU by default).
    """

    def __init__(
        self,
        hidden_size: int = 64,
        num_classes: int = 3,
        dropout: float = 0.1,
        device: Optional[torch.device] = None,
    ):
        self.hidden_size = hidden_size
        self.num_classes = num_classes
        self.dropout = dropout
        self.device = device or torch.device("cpu")

        self.network: Optional[MLPClassifier] = None
        self._torch_optimizer: Optional[torch.optim.Optimizer] = None
        self._optimizer_kind: Optional[OptimizerType] = None

    @property
    def name(self) -> str:
        return "MLP"

    @property
    def is_built(self) -> bool:
        return self.network is not None

    def build(self, num_features: int, reference: Optional[np.ndarray] = None) -> None:
        config = MLPConfig(
            input_size=num_features,
            hidden_size=self.hidden_size,
            num_classes=self.num_classes,
            dropout=self.dropout,
        )
        self.network = MLPClassifier(config).to(self.device)
        if reference is not None:
            self.network.set_normalization(reference)
        self._torch_optimizer = None
        self._optimizer_kind = None

        num_params = sum(p.numel() for p in self.network.parameters())
        logger.info(f"Built MLP: {num_features} -> {self.hidden_size} -> {self.num_classes}, {num_params:,} params")

    def _to_tensor(self, features: np.ndarray) -> torch.Tensor:
        return torch.as_tensor(np.asarray(features), dtype=torch.float32, device=self.device)

    def predict(self, features: np.ndarray) -> np.ndarray:
        self._require_built()
        self.network.eval()
        with torch.no_grad():
            logits = self.network(self._to_tensor(features))
            return torch.softmax(logits, dim=1).cpu().numpy().astype(np.float64)

    def _sync_optimizer(self, optimizer) -> torch.optim.Optimizer:
        if self._torch_optimizer is None or self._optimizer_kind != optimizer.kind:
            self._torch_optimizer = _make_torch_optimizer(self.network.parameters(), optimizer)
            self._optimizer_kind = optimizer.kind
            logger.debug(f"MLP: created torch optimizer for {optimizer.kind.value}")
        for group in self._torch_optimizer.param_groups:
            group["lr"] = optimizer.learning_rate
        return self._torch_optimizer

    def train_batch(self, features: np.ndarray, targets: np.ndarray, optimizer) -> np.ndarray:
        self._require_built()
        torch_optimizer = self._sync_optimizer(optimizer)
        self.network.train()

        x = self._to_tensor(features)
        y = self._to_tensor(targets)

        torch_optimizer.zero_grad()
        logits = self.network(x)
        loss = -(y * F.log_softmax(logits, dim=1)).sum(dim=1).mean()
        loss.backward()
        torch_optimizer.step()

        return torch.softmax(logits.detach(), dim=1).cpu().numpy().astype(np.float64)

    def save(self, path: Union[str, Path]) -> None:
        self._require_built()
        cfg = self.network.config
        torch.save(
            {
                "model_type": "mlp",
                "input_size": cfg.input_size,
                "hidden_size": cfg.hidden_size,
                "num_classes": cfg.num_classes,
                "dropout": cfg.dropout,
                "model_state_dict": self.network.state_dict(),
            },
            path,
        )

    def load(self, path: Union[str, Path]) -> None:
        checkpoint = torch.load(path, map_location=self.device, weights_only=True)
        self.hidden_size = int(checkpoint["hidden_size"])
        self.num_classes = int(checkpoint["num_classes"])
        self.dropout = float(checkpoint["dropout"])
        input_size = int(checkpoint["input_size"])
        if not self.is_built or self.network.config.input_size != input_size \
                or self.network.config.hidden_size != self.hidden_size:
            self.build(input_size)
        self.network.load_state_dict(checkpoint["model_state_dict"])
        logger.debug(f"MLP: loaded state from {path}")

    def summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {
            "name": self.name,
            "model_type": "mlp",
            "hidden_size": self.hidden_size,
            "num_classes": self.num_classes,
            "dropout": self.dropout,
            "num_features": None,
            "trainable_parameters": 0,
        }
        if self.network is not None:
            summary["num_features"] = self.network.config.input_size
            summary["trainable_parameters"] = sum(
                p.numel() for p in self.network.parameters() if p.requires_grad
            )
        return summary
