"""Stream budget - wall-clock deadline and heartbeat pacing for one search

Timeline of a live search:
- poll every ``poll_interval_s``
- heartbeat when nothing was sent for ``heartbeat_s``
- hard stop at ``max_duration_s`` (partial results, timeout=true)
"""

from dataclasses import dataclass
from time import monotonic
from typing import Dict, Optional

from src.core.config import settings


@dataclass
class StreamBudgetConfig:
    max_duration_s: float = 60.0
    heartbeat_s: float = 10.0
    poll_interval_s: float = 2.0

    def __post_init__(self):
        if self.poll_interval_s > self.max_duration_s:
            raise ValueError(
                f"poll interval ({self.poll_interval_s}s) exceeds max duration ({self.max_duration_s}s)"
            )

    @classmethod
    def from_settings(cls) -> "StreamBudgetConfig":
        return cls(
            max_duration_s=settings.stream_max_duration_s,
            heartbeat_s=settings.stream_heartbeat_s,
            poll_interval_s=settings.stream_poll_interval_s,
        )


class StreamBudget:
    """Deadline tracker for one stream

    Usage:
        budget = StreamBudget(StreamBudgetConfig(max_duration_s=60))
        budget.start()
        while not budget.is_exhausted():
            ...
            await asyncio.sleep(budget.next_sleep())
    """

    def __init__(self, config: Optional[StreamBudgetConfig] = None):
        self.config = config or StreamBudgetConfig.from_settings()
        self.start_time: Optional[float] = None
        self._last_sent: Optional[float] = None
        self._checkpoints: Dict[str, float] = {}

    def start(self) -> None:
        self.start_time = monotonic()
        self._last_sent = self.start_time
        self._checkpoints.clear()

    def checkpoint(self, name: str) -> None:
        """Record elapsed time at a named point

        Raises:
            RuntimeError: start() was not called
        """
        if self.start_time is None:
            raise RuntimeError("Budget not started. Call start() first.")
        self._checkpoints[name] = monotonic() - self.start_time

    def elapsed(self) -> float:
        if self.start_time is None:
            return 0.0
        return monotonic() - self.start_time

    def remaining(self) -> float:
        return max(0.0, self.config.max_duration_s - self.elapsed())

    def is_exhausted(self) -> bool:
        return self.start_time is not None and self.remaining() <= 0.0

    def mark_sent(self) -> None:
        self._last_sent = monotonic()

    def heartbeat_due(self) -> bool:
        if self._last_sent is None:
            return False
        return monotonic() - self._last_sent >= self.config.heartbeat_s

    def next_sleep(self) -> float:
        """Poll interval, clipped so the loop wakes up at the deadline"""
        return max(0.0, min(self.config.poll_interval_s, self.remaining()))

    def get_report(self) -> dict:
        return {
            "max_duration_s": self.config.max_duration_s,
            "elapsed": round(self.elapsed(), 3),
            "remaining": round(self.remaining(), 3),
            "checkpoints": self._checkpoints.copy(),
            "is_exhausted": self.is_exhausted(),
        }
