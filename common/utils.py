from __future__ import annotations

from typing import Deque
from dataclasses import dataclass, field
from collections import deque
import time

@dataclass(slots=True)
class RateTimer:
    """
    Simple rate tracker for loop diagnostics.

    Usage:
        rt = RateTimer(window=50)
        while True:
            # work...
            hz = rt.tick()
    """
    window: int = 50
    _times: Deque[float] = field(default_factory=deque, repr=False)

    def __post_init__(self) -> None:
        self._times = deque(maxlen=self.window)

    def tick(self) -> float:
        t = time.perf_counter()
        self._times.append(t)
        if len(self._times) < 2:
            return 0.0
        dt = (self._times[-1] - self._times[0]) / (len(self._times) - 1)
        return 0.0 if dt <= 0 else 1.0 / dt

def clamp_int(v: int, lo: int, hi: int) -> int:
    return int(min(hi, max(lo, int(v))))
