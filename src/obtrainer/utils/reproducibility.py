"""
Reproducibility utilities for deterministic training runs.

Seeds every random number generator a run touches:
- Python random module
- NumPy global random state
- PyTorch (CPU, and CUDA when present)

Usage:
    >>> from obtrainer.utils import set_seed
    >>> set_seed(42)  # Call before model creation
"""

import random
import logging

import numpy as np
import torch

logger = logging.getLogger(__name__)


def set_seed(seed: int = 42) -> None:
    """
    Set random seeds for all random number generators.

    Args:
        seed: Non-negative random seed (default: 42)

    Raises:
        TypeError: If seed is not an int
        ValueError: If seed is negative
    """
    if not isinstance(seed, int) or isinstance(seed, bool):
        raise TypeError(f"seed must be an int, got {type(seed)}")
    if seed < 0:
        raise ValueError(f"seed must be non-negative, got {seed}")

    random.seed(seed)
    np.random.seed(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed_all(seed)

    logger.debug(f"Set seed={seed}, cuda_available={torch.cuda.is_available()}")


def derive_seed(seed: int, offset: int) -> int:
    """
    Deterministic child seed, e.g. one per cross-validation fold.

    Example:
        >>> derive_seed(42, 3)
        45
    """
    return (seed + offset) % (2 ** 32)
