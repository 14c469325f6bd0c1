"""Utility functions for reproducibility and logging."""

from obtrainer.utils.reproducibility import derive_seed, set_seed
from obtrainer.utils.logging import setup_logging

__all__ = [
    "derive_seed",
    "set_seed",
    "setup_logging",
]
