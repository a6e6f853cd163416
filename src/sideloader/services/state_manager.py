"""State manager for the current install attempt and its user-visible log."""

from collections import deque
from typing import Optional
import logging

from sideloader.api.models import ProgressData
from sideloader.models.status import StageEnum


class StateManager:
    """Singleton state manager for install attempts.

    Manages:
    - In-memory status of the current attempt (for GET /progress)
    - Bounded attempt log shown to the user (for GET /log)
    """

    _instance: Optional["StateManager"] = None

    def __new__(cls, *args, **kwargs):
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, history: int = 500):
        """Initialize state manager (only once due to singleton)."""
        if self._initialized:
            return

        self.logger = logging.getLogger("sideloader.state_manager")

        self._current_stage: StageEnum = StageEnum.IDLE
        self._current_progress: int = 0
        self._current_message: str = "Sideloader ready"
        self._current_error: Optional[str] = None

        self._log: deque[str] = deque(maxlen=history)

        self._initialized = True
        self.logger.info("StateManager initialized")

    def get_status(self) -> ProgressData:
        """Get current status for GET /progress endpoint."""
        return ProgressData(
            stage=self._current_stage,
            progress=self._current_progress,
            message=self._current_message,
            error=self._current_error,
        )

    def update_status(
        self,
        stage: StageEnum,
        progress: int,
        message: str,
        error: Optional[str] = None,
    ) -> None:
        """Update in-memory status state.

        Args:
            stage: Current attempt stage
            progress: Percentage completion (0-100)
            message: Human-readable description
            error: ``KIND: message`` if stage == failed
        """
        self._current_stage = stage
        self._current_progress = max(0, min(progress, 100))
        self._current_message = message
        self._current_error = error
        self.logger.debug(
            f"Status updated: stage={stage.value}, progress={progress}%, message={message}"
        )

    def log(self, line: str) -> None:
        """Append a line to the user-visible attempt log and the service log."""
        self._log.append(line)
        self.logger.info(line)

    def get_log(self) -> list[str]:
        return list(self._log)

    def is_busy(self) -> bool:
        return self._current_stage.is_active

    def reset(self) -> None:
        """Reset to idle state."""
        self._current_stage = StageEnum.IDLE
        self._current_progress = 0
        self._current_message = "Sideloader ready"
        self._current_error = None
        self.logger.info("State reset to idle")
