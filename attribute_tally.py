# attribute_tally.py
"""
Exact per-window counts of attribute values (source address, packet size, ...).

Memory is bounded by the number of distinct values seen in one window, not by
sample volume. With `max_distinct` set, the least frequent values are folded
into a single "other" bucket so totals stay correct under cardinality floods.
"""
from __future__ import annotations

import heapq
import logging
import math
import threading
from dataclasses import dataclass
from operator import itemgetter
from types import MappingProxyType
from typing import Callable, Dict, Generic, Hashable, Mapping, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V", bound=Hashable)


class OutOfWindowError(ValueError):
    """Sample timestamp precedes the open window (late or out-of-order)."""

    def __init__(self, timestamp: float, window_start: float) -> None:
        super().__init__(f"timestamp {timestamp} precedes open window start {window_start}")
        self.timestamp = timestamp
        self.window_start = window_start


class MalformedSampleError(ValueError):
    """Rejected at the ingestion boundary: bad value or timestamp."""


@dataclass(frozen=True)
class CardinalityLimitReached:
    limit: int
    evicted_values: int
    evicted_samples: int


@dataclass(frozen=True)
class Sample(Generic[V]):
    value: V
    timestamp: float


@dataclass(frozen=True)
class Window(Generic[V]):
    start: float
    end: float
    counts: Mapping[V, int]
    other_count: int = 0
    late_rollover: int = 0
    cardinality: Optional[CardinalityLimitReached] = None

    @property
    def total(self) -> int:
        return sum(self.counts.values()) + self.other_count

    @property
    def distinct(self) -> int:
        return len(self.counts) + (1 if self.other_count else 0)


def _validate_value(value) -> None:
    if value is None:
        raise MalformedSampleError("attribute value is None")
    try:
        hash(value)
    except TypeError:
        raise MalformedSampleError(f"attribute value is not hashable: {type(value).__name__}") from None


def _validate_timestamp(timestamp) -> float:
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        raise MalformedSampleError(f"timestamp must be a number, got {type(timestamp).__name__}")
    ts = float(timestamp)
    if not math.isfinite(ts):
        raise MalformedSampleError(f"timestamp is not finite: {timestamp}")
    return ts


class AttributeTally(Generic[V]):
    def __init__(self, start: float, duration: float, max_distinct: Optional[int] = None,
                 eviction_fraction: float = 0.1, clock: Optional[Callable[[], float]] = None) -> None:
        if duration <= 0:
            raise ValueError("window duration must be positive")
        self.duration = float(duration)
        self.max_distinct = max_distinct
        self.eviction_fraction = eviction_fraction
        self._clock = clock
        self._lock = threading.Lock()
        self._open(float(start))

    def _open(self, start: float) -> None:
        self._start = start
        self._end = start + self.duration
        self._counts: Dict[V, int] = {}
        self._other = 0
        self._late = 0
        self._evicted_values = 0
        self._evicted_samples = 0

    @property
    def window_bounds(self) -> Tuple[float, float]:
        with self._lock:
            return self._start, self._end

    def record(self, value: V, timestamp: Optional[float] = None) -> None:
        """
        Admit one sample. Without a timestamp the sample is stamped from the
        tally clock inside the lock, so it always lands in the open window.
        """
        _validate_value(value)
        if timestamp is None:
            if self._clock is None:
                raise MalformedSampleError("timestamp required: tally has no clock")
            ts = None
        else:
            ts = _validate_timestamp(timestamp)
        with self._lock:
            if ts is None:
                ts = max(self._clock(), self._start)
            elif ts < self._start:
                raise OutOfWindowError(ts, self._start)
            if ts >= self._end:
                # rollover timer has not fired yet; keep it in the open window
                self._late += 1
            count = self._counts.get(value)
            if count is not None:
                self._counts[value] = count + 1
                return
            if self.max_distinct is not None and len(self._counts) >= self.max_distinct:
                self._evict()
            self._counts[value] = 1

    def record_sample(self, sample: Sample[V]) -> None:
        self.record(sample.value, sample.timestamp)

    def _evict(self) -> None:
        n = max(1, int(self.max_distinct * self.eviction_fraction))
        victims = heapq.nsmallest(n, self._counts.items(), key=itemgetter(1))
        for value, count in victims:
            del self._counts[value]
            self._other += count
            self._evicted_samples += count
        if not self._evicted_values:
            logger.warning("cardinality limit %d reached in window starting %s", self.max_distinct, self._start)
        self._evicted_values += len(victims)

    def close_window(self) -> Window[V]:
        """Freeze the open window and open the next one at its end, atomically."""
        with self._lock:
            cardinality = None
            if self._evicted_values:
                cardinality = CardinalityLimitReached(
                    limit=self.max_distinct,
                    evicted_values=self._evicted_values,
                    evicted_samples=self._evicted_samples,
                )
            window = Window(
                start=self._start,
                end=self._end,
                counts=MappingProxyType(self._counts),
                other_count=self._other,
                late_rollover=self._late,
                cardinality=cardinality,
            )
            self._open(self._end)
        return window
