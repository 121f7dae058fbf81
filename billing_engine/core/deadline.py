"""Wall-clock budget for the external calls made while handling one webhook."""

from dataclasses import dataclass, field
import time


@dataclass
class ProcessingDeadline:
    budget_seconds: float
    started_at: float = field(default_factory=time.monotonic)

    @property
    def remaining(self) -> float:
        return max(self.budget_seconds - (time.monotonic() - self.started_at), 0.0)

    @property
    def expired(self) -> bool:
        return self.remaining <= 0.0
