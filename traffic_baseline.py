# traffic_baseline.py
"""
EWMA baseline of per-window entropy: the adaptive expectation of "normal".

Warm-up windows are folded with an exact running mean/variance so the EWMA
starts from a sound estimate; after warm-up each window moves the center by
alpha. O(1) per window, no stored history.
"""
from __future__ import annotations

import math
import threading
from dataclasses import dataclass, asdict
from typing import Any, Dict

from entropy_estimator import EntropyReading


@dataclass(frozen=True)
class BaselineState:
    center: float
    variance: float
    windows_seen: int
    warmup_windows: int
    alpha: float

    @property
    def spread(self) -> float:
        return math.sqrt(self.variance)

    @property
    def ready(self) -> bool:
        return self.windows_seen >= self.warmup_windows

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["spread"] = self.spread
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BaselineState":
        state = cls(
            center=float(data["center"]),
            variance=float(data["variance"]),
            windows_seen=int(data["windows_seen"]),
            warmup_windows=int(data["warmup_windows"]),
            alpha=float(data["alpha"]),
        )
        _check_state(state)
        return state


def _check_state(state: BaselineState) -> None:
    if not math.isfinite(state.center) or not math.isfinite(state.variance) or state.variance < 0:
        raise ValueError("baseline state has invalid center/variance")
    if state.windows_seen < 0:
        raise ValueError("baseline state has negative windows_seen")


class BaselineTracker:
    def __init__(self, alpha: float = 0.1, warmup_windows: int = 30) -> None:
        if not 0.0 < alpha < 1.0:
            raise ValueError("alpha must be in (0, 1)")
        if warmup_windows < 0:
            raise ValueError("warmup_windows must be >= 0")
        self.alpha = alpha
        self.warmup_windows = warmup_windows
        self._lock = threading.Lock()
        self._center = 0.0
        self._var = 0.0
        self._seen = 0

    def is_ready(self) -> bool:
        with self._lock:
            return self._seen >= self.warmup_windows

    def update(self, reading: EntropyReading) -> BaselineState:
        """Fold one window's entropy in. All-or-nothing: a bad reading leaves state untouched."""
        x = float(reading.entropy)
        if not math.isfinite(x) or x < 0.0:
            raise ValueError(f"invalid entropy reading: {reading.entropy!r}")

        with self._lock:
            seen = self._seen + 1
            if self._seen < self.warmup_windows or self._seen == 0:
                # Welford running mean / population variance
                delta = x - self._center
                center = self._center + delta / seen
                var = self._var + (delta * (x - center) - self._var) / seen
            else:
                # EWMA mean
                center = (1 - self.alpha) * self._center + self.alpha * x
                # EWMA variance
                diff = x - center
                var = (1 - self.alpha) * self._var + self.alpha * (diff * diff)
            var = max(0.0, var)

            self._center, self._var, self._seen = center, var, seen
            return self._state()

    def snapshot(self) -> BaselineState:
        with self._lock:
            return self._state()

    def restore(self, state: BaselineState) -> None:
        _check_state(state)
        with self._lock:
            self._center, self._var, self._seen = state.center, state.variance, state.windows_seen

    def _state(self) -> BaselineState:
        return BaselineState(
            center=self._center,
            variance=self._var,
            windows_seen=self._seen,
            warmup_windows=self.warmup_windows,
            alpha=self.alpha,
        )
