"""
Exception hierarchy for the order-book trainer.

Error kinds:
    NotFoundError             - referenced configuration, dataset, run or
                                checkpoint does not exist. Surfaced to callers.
    InvalidConfigurationError - raised only by strict loaders; the tolerant
                                hyperparameter parse falls back to defaults.
    TrainingCancelled         - cooperative cancellation observed mid-run.
                                Converted to the Cancelled run state.
    TrainingFailure           - unexpected error inside a run, for callers that
                                ask for raising behaviour.
"""

from typing import Optional


class ObTrainerError(Exception):
    """Base class for all package errors."""


class NotFoundError(ObTrainerError, LookupError):
    """A referenced entity does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found")


class InvalidConfigurationError(ObTrainerError, ValueError):
    """Configuration payload cannot be interpreted."""


class TrainingCancelled(ObTrainerError):
    """Cancellation was requested for a run."""

    def __init__(self, run_id: Optional[str] = None):
        self.run_id = run_id
        super().__init__(
            f"Training run {run_id} was cancelled" if run_id else "Training was cancelled"
        )


class TrainingFailure(ObTrainerError, RuntimeError):
    """A training run ended in the Failed state."""

    def __init__(self, run_id: str, message: str):
        self.run_id = run_id
        self.message = message
        super().__init__(f"Training run {run_id} failed: {message}")
