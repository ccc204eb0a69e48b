"""
Activity monitoring for a tracked page.
Keeps a liveness timestamp refreshed by user interaction signals.
"""

import time
from dataclasses import dataclass
from typing import Optional

POINTER_MOVE = "pointermove"
KEY_DOWN = "keydown"
CLICK = "click"
SCROLL = "scroll"
TOUCH_START = "touchstart"
VISIBLE = "visible"

ACTIVITY_SIGNALS = frozenset(
    [POINTER_MOVE, KEY_DOWN, CLICK, SCROLL, TOUCH_START, VISIBLE]
)


@dataclass
class MonitorConfig:
    """Configuration for ActivityMonitor."""

    idle_threshold: int = 120


class ActivityMonitor:
    """Tracks when the user last interacted with the page.

    Signals only overwrite ``last_activity_at``; nothing is debounced or
    queued, so recording never blocks the caller.
    """

    def __init__(self, idle_threshold: int = 120, started_at: Optional[float] = None):
        self.config = MonitorConfig(idle_threshold=idle_threshold)
        # Page load counts as activity
        self.last_activity_at = started_at if started_at is not None else time.time()
        self.signal_count = 0

    @property
    def idle_threshold(self) -> int:
        return self.config.idle_threshold

    def record(self, signal: str) -> bool:
        """Record an interaction signal. Unknown signals are ignored."""
        if signal not in ACTIVITY_SIGNALS:
            return False
        self.last_activity_at = time.time()
        self.signal_count += 1
        return True

    def record_visibility(self, visible: bool) -> bool:
        """Record a visibility change; only becoming visible counts."""
        if not visible:
            return False
        return self.record(VISIBLE)

    def ms_since_last_activity(self) -> float:
        """Milliseconds since the last recorded interaction."""
        return max(0.0, (time.time() - self.last_activity_at) * 1000)

    def is_idle(self) -> bool:
        """Check whether idle time exceeds the threshold."""
        return self.ms_since_last_activity() > self.config.idle_threshold * 1000
