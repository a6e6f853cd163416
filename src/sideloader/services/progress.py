"""Throttled progress-to-log adapter for file transfers."""

import logging
from typing import Callable, Optional

ProgressCallback = Callable[[int, int], None]

logger = logging.getLogger("sideloader.progress")


class ProgressReporter:
    """Turns byte counts into at most ~20 percentage log lines per transfer.

    A line is emitted when the percentage reaches 100 or has advanced by at
    least 5 points since the last line. Unknown totals (``total <= 0``) are
    ignored.
    """

    STEP = 5

    def __init__(self, label: str, emit: Optional[Callable[[str], None]] = None):
        self.label = label
        self.emit = emit or logger.info
        self.last = -1

    def __call__(self, sent: int, total: int) -> None:
        if total <= 0:
            return
        pct = (100 * sent) // total
        if self.last >= 100:
            return
        if pct >= 100 or pct >= self.last + self.STEP:
            self.last = pct
            self.emit(f"{self.label}: {min(pct, 100)}%")


def make_reporter(label: str, emit: Optional[Callable[[str], None]] = None) -> ProgressCallback:
    return ProgressReporter(label, emit)
