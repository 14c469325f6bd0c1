"""
Registry of in-flight training runs and their cancellation tokens.

Each run owns one threading.Event. The orchestrator registers it when a run
enters InProgress and removes it on the terminal state, so handles never
outlive their run.
"""

import logging
import threading
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class RunRegistry:
    """
    Thread-safe map from run id to cancellation token.

    Example:
        >>> registry = RunRegistry()
        >>> token = registry.register("run-1")
        >>> registry.cancel("run-1")
        True
        >>> token.is_set()
        True
    """

    def __init__(self):
        self._tokens: Dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def register(self, run_id: str) -> threading.Event:
        """Create (or return the existing) token for `run_id`."""
        with self._lock:
            token = self._tokens.get(run_id)
            if token is None:
                token = threading.Event()
                self._tokens[run_id] = token
                logger.debug(f"RunRegistry: registered {run_id}")
            return token

    def get(self, run_id: str) -> Optional[threading.Event]:
        with self._lock:
            return self._tokens.get(run_id)

    def cancel(self, run_id: str) -> bool:
        """
        Signal cancellation to an in-flight run.

        Returns:
            True if a matching run was registered.
        """
        with self._lock:
            token = self._tokens.get(run_id)
        if token is None:
            return False
        token.set()
        logger.info(f"RunRegistry: cancellation requested for {run_id}")
        return True

    def is_cancelled(self, run_id: str) -> bool:
        token = self.get(run_id)
        return token is not None and token.is_set()

    def remove(self, run_id: str) -> None:
        with self._lock:
            if self._tokens.pop(run_id, None) is not None:
                logger.debug(f"RunRegistry: removed {run_id}")

    def active_runs(self) -> List[str]:
        with self._lock:
            return sorted(self._tokens)

    def __contains__(self, run_id: str) -> bool:
        with self._lock:
            return run_id in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
