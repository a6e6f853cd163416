"""Unit tests for StateManager."""

import pytest

from sideloader.services.state_manager import StateManager
from sideloader.models.status import StageEnum


@pytest.mark.unit
class TestStateManager:
    """Test StateManager in isolation."""

    def test_singleton_pattern(self):
        """Test that StateManager follows singleton pattern."""
        manager1 = StateManager()
        manager2 = StateManager()
        assert manager1 is manager2

    def test_initial_state(self):
        manager = StateManager()
        status = manager.get_status()

        assert status.stage == StageEnum.IDLE
        assert status.progress == 0
        assert status.message == "Sideloader ready"
        assert status.error is None
        assert not manager.is_busy()

    def test_update_status(self):
        manager = StateManager()

        manager.update_status(
            stage=StageEnum.TRANSFERRING,
            progress=50,
            message="Pushing game.apk…",
        )

        status = manager.get_status()
        assert status.stage == StageEnum.TRANSFERRING
        assert status.progress == 50
        assert manager.is_busy()

    def test_update_status_with_error(self):
        manager = StateManager()

        manager.update_status(
            stage=StageEnum.FAILED,
            progress=0,
            message="Install failed",
            error="TRANSFER_FAILED: pipe closed",
        )

        status = manager.get_status()
        assert status.error == "TRANSFER_FAILED: pipe closed"
        assert not manager.is_busy()

    def test_progress_is_clamped(self):
        manager = StateManager()

        manager.update_status(stage=StageEnum.TRANSFERRING, progress=140, message="x")

        assert manager.get_status().progress == 100

    def test_log_history_is_bounded(self):
        manager = StateManager(history=3)

        for i in range(5):
            manager.log(f"line {i}")

        assert manager.get_log() == ["line 2", "line 3", "line 4"]

    def test_reset(self):
        manager = StateManager()
        manager.update_status(stage=StageEnum.DONE, progress=100, message="done")

        manager.reset()

        assert manager.get_status().stage == StageEnum.IDLE
