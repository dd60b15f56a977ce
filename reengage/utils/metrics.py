"""
Run metrics - timing and the per-run report returned by the trigger surface.
"""
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional


class Timer:
    """Simple timer for measuring operation latency."""

    def __init__(self):
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def start(self) -> "Timer":
        self._start = time.monotonic()
        return self

    def stop(self) -> int:
        """Stop timer and return elapsed milliseconds."""
        self._end = time.monotonic()
        return self.elapsed_ms

    @property
    def elapsed_ms(self) -> int:
        if self._start is None:
            return 0
        end = self._end or time.monotonic()
        return int((end - self._start) * 1000)


@dataclass
class RunReport:
    """Counters for one scheduler run. Only sent_count is part of the trigger contract."""
    sent_count: int = 0
    rules_processed: int = 0
    rules_skipped: int = 0
    candidates: int = 0
    failed: int = 0
    unrecorded: int = 0
    skipped: Counter = field(default_factory=Counter)
    duration_ms: int = 0

    def skip(self, reason: str) -> None:
        self.skipped[reason] += 1

    def as_dict(self) -> dict:
        return {
            "sent_count": self.sent_count,
            "rules_processed": self.rules_processed,
            "rules_skipped": self.rules_skipped,
            "candidates": self.candidates,
            "failed": self.failed,
            "unrecorded": self.unrecorded,
            "skipped": dict(self.skipped),
            "duration_ms": self.duration_ms,
        }
