"""Run control: wall-clock budget for one invocation."""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class RunControl:
    """Tracks elapsed time against the invocation's wall-clock budget."""

    max_wall_seconds: float
    deadline_fraction: float = 0.8
    clock: Callable[[], float] = time.monotonic

    # Internal state
    start_time: Optional[float] = None
    stop_reason: Optional[str] = field(default=None)

    def __post_init__(self) -> None:
        if self.start_time is None:
            self.start_time = self.clock()

    @property
    def elapsed(self) -> float:
        return self.clock() - self.start_time

    @property
    def soft_deadline(self) -> float:
        return self.max_wall_seconds * self.deadline_fraction

    def remaining(self) -> float:
        """Seconds left before the soft deadline (never negative)."""
        return max(0.0, self.soft_deadline - self.elapsed)

    def should_stop(self) -> tuple[bool, Optional[str]]:
        """Check if no new work should start. Returns (should_stop, reason)."""
        if self.elapsed >= self.soft_deadline:
            return True, (
                f"Elapsed {self.elapsed:.2f}s exceeds {self.deadline_fraction:.0%} "
                f"of {self.max_wall_seconds}s budget"
            )
        return False, None

    def record_stop(self, reason: str) -> None:
        if self.stop_reason is None:
            self.stop_reason = reason
            logger.warning(f"Stop condition met: {reason}")
