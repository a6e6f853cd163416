"""Status enums for install attempts."""

from enum import Enum


class StageEnum(str, Enum):
    """Install attempt stages.

    State transitions:
    idle → preparingSource → transferring → installing → cleaningUp → done
                  ↓               ↓              ↓            ↓
                failed ←──────────────────────────────────────
    """

    IDLE = "idle"
    PREPARING_SOURCE = "preparingSource"
    TRANSFERRING = "transferring"
    INSTALLING = "installing"
    CLEANING_UP = "cleaningUp"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self not in (StageEnum.IDLE, StageEnum.DONE, StageEnum.FAILED)
