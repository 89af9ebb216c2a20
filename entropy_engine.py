# entropy_engine.py
"""
Entropy detection engine for one monitored attribute class.

- record() is the ingestion path: a short locked update of the open window
- a wall-clock timer closes windows; a single worker scores them
- per window: entropy -> classification against the baseline -> contributors
  (Anomalous only) -> baseline update (optionally frozen during alerts) -> event
- engine state follows an explicit transition table with hysteresis on the
  way out of Mitigating
"""
from __future__ import annotations

import enum
import json
import logging
import math
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Hashable, List, Mapping, Optional, Tuple, TypeVar

from attribute_tally import AttributeTally, Sample, Window
from contributor_ranker import Contributor, rank
from deviation_detector import Alert, Classification, DeviationDetector, Verdict
from entropy_estimator import EntropyReading, estimate
from profiles_loader import DetectionConfig
from traffic_baseline import BaselineState, BaselineTracker

logger = logging.getLogger(__name__)

V = TypeVar("V", bound=Hashable)


class EngineState(str, enum.Enum):
    WARMING_UP = "warming_up"
    MONITORING = "monitoring"
    MITIGATING = "mitigating"
    STOPPED = "stopped"


class Signal(str, enum.Enum):
    WARMUP = "warmup"
    NORMAL = "normal"
    SUSPICIOUS = "suspicious"
    ANOMALOUS = "anomalous"
    CLEAR = "clear"
    STOP = "stop"


TRANSITIONS: Dict[Tuple[EngineState, Signal], EngineState] = {
    (EngineState.WARMING_UP, Signal.WARMUP): EngineState.WARMING_UP,
    (EngineState.WARMING_UP, Signal.NORMAL): EngineState.MONITORING,
    (EngineState.WARMING_UP, Signal.SUSPICIOUS): EngineState.MONITORING,
    (EngineState.WARMING_UP, Signal.ANOMALOUS): EngineState.MITIGATING,
    (EngineState.MONITORING, Signal.WARMUP): EngineState.WARMING_UP,
    (EngineState.MONITORING, Signal.NORMAL): EngineState.MONITORING,
    (EngineState.MONITORING, Signal.SUSPICIOUS): EngineState.MONITORING,
    (EngineState.MONITORING, Signal.ANOMALOUS): EngineState.MITIGATING,
    (EngineState.MITIGATING, Signal.WARMUP): EngineState.WARMING_UP,
    (EngineState.MITIGATING, Signal.NORMAL): EngineState.MITIGATING,
    (EngineState.MITIGATING, Signal.SUSPICIOUS): EngineState.MITIGATING,
    (EngineState.MITIGATING, Signal.ANOMALOUS): EngineState.MITIGATING,
    (EngineState.MITIGATING, Signal.CLEAR): EngineState.MONITORING,
    (EngineState.WARMING_UP, Signal.STOP): EngineState.STOPPED,
    (EngineState.MONITORING, Signal.STOP): EngineState.STOPPED,
    (EngineState.MITIGATING, Signal.STOP): EngineState.STOPPED,
}


def build_transitions(sticky_mitigation: bool) -> Dict[Tuple[EngineState, Signal], EngineState]:
    table = dict(TRANSITIONS)
    if not sticky_mitigation:
        table[(EngineState.WARMING_UP, Signal.ANOMALOUS)] = EngineState.MONITORING
        table[(EngineState.MONITORING, Signal.ANOMALOUS)] = EngineState.MONITORING
    return table


@dataclass(frozen=True)
class WindowEvent:
    attribute: str
    window_start: float
    window_end: float
    reading: EntropyReading
    classification: Classification
    score: float
    direction: str
    reason: str
    baseline: BaselineState
    state: EngineState
    contributors: Tuple[Contributor, ...] = ()
    alert: Optional[Alert] = None
    cleared: bool = False
    baseline_updated: bool = False
    profile_hash: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def entropy(self) -> float:
        return self.reading.entropy

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attribute": self.attribute,
            "window_start": self.window_start,
            "window_end": self.window_end,
            "entropy": round(self.reading.entropy, 6),
            "total": self.reading.total,
            "distinct": self.reading.distinct,
            "classification": self.classification.value,
            "score": round(self.score, 4) if math.isfinite(self.score) else str(self.score),
            "direction": self.direction,
            "reason": self.reason,
            "baseline": self.baseline.to_dict(),
            "state": self.state.value,
            "contributors": [c.to_dict() for c in self.contributors],
            "cleared": self.cleared,
            "baseline_updated": self.baseline_updated,
            "profile_hash": self.profile_hash,
            "metadata": dict(self.metadata),
        }


EventSink = Callable[[WindowEvent], None]

_LOG_LEVELS = {
    Classification.NORMAL: logging.DEBUG,
    Classification.SUSPICIOUS: logging.INFO,
    Classification.ANOMALOUS: logging.WARNING,
}


def log_sink(event: WindowEvent) -> None:
    meta = {"event": "entropy_window", **event.to_dict()}
    meta.pop("baseline")
    meta["baseline_center"] = round(event.baseline.center, 6)
    meta["baseline_spread"] = round(event.baseline.spread, 6)
    if event.cleared:
        meta["event"] = "entropy_clear"
    level = logging.INFO if event.cleared else _LOG_LEVELS[event.classification]
    logger.log(level, json.dumps(meta))


class DetectionEngine(Generic[V]):
    def __init__(self, config: DetectionConfig, sinks: Optional[List[EventSink]] = None,
                 clock: Callable[[], float] = time.time, profile_hash: Optional[str] = None,
                 tracker: Optional[BaselineTracker] = None) -> None:
        self.config = config
        self.profile_hash = profile_hash
        self._clock = clock
        w = config.window_seconds
        self.tally: AttributeTally[V] = AttributeTally(
            start=math.floor(clock() / w) * w,
            duration=w,
            max_distinct=config.max_distinct_values,
            eviction_fraction=config.eviction_fraction,
            clock=clock,
        )
        self.tracker = tracker or BaselineTracker(alpha=config.alpha, warmup_windows=config.warmup_windows)
        self.detector = DeviationDetector(
            suspicious_z=config.suspicious_z,
            anomalous_z=config.anomalous_z,
            min_spread=config.min_spread,
            min_samples=config.min_window_samples,
            detect_rises=config.detect_rises,
        )
        self._sinks: List[EventSink] = list(sinks or [])
        self._transitions = build_transitions(config.sticky_mitigation)
        self._state = EngineState.MONITORING if self.tracker.is_ready() else EngineState.WARMING_UP
        self._normal_streak = 0
        self._process_lock = threading.Lock()
        self._queue: "queue.Queue[Optional[Window[V]]]" = queue.Queue()
        self._stop = threading.Event()
        self._discard = threading.Event()
        self._timer: Optional[threading.Thread] = None
        self._worker: Optional[threading.Thread] = None
        self.windows_processed = 0
        self.windows_discarded = 0

    # -------------------------- Ingestion -------------------------- #
    @property
    def attribute(self) -> str:
        return self.config.attribute

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def running(self) -> bool:
        return self._timer is not None and self._timer.is_alive()

    def record(self, value: V, timestamp: Optional[float] = None) -> None:
        if self._state is EngineState.STOPPED:
            raise RuntimeError(f"engine for {self.attribute} is stopped")
        self.tally.record(value, timestamp)

    def record_sample(self, sample: Sample[V]) -> None:
        self.record(sample.value, sample.timestamp)

    def register_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    # -------------------------- Window processing -------------------------- #
    def close_window(self) -> WindowEvent:
        """Close the open window and score it on the calling thread."""
        return self.process_window(self.tally.close_window())

    def process_window(self, window: Window[V]) -> WindowEvent:
        with self._process_lock:
            if self._state is EngineState.STOPPED:
                raise RuntimeError(f"engine for {self.attribute} is stopped")
            event = self._evaluate(window)
        self._emit(event)
        return event

    def _evaluate(self, window: Window[V]) -> WindowEvent:
        cfg = self.config
        reading = estimate(window)
        baseline = self.tracker.snapshot()
        verdict: Verdict = self.detector.classify(reading, baseline)
        cls = verdict.classification

        contributors: Tuple[Contributor, ...] = ()
        if cls is Classification.ANOMALOUS:
            contributors = tuple(rank(window, top_k=cfg.top_k, min_share=cfg.min_share))

        frozen = cfg.freeze_baseline_during_alert and cls is not Classification.NORMAL
        sparse = reading.total < cfg.min_window_samples
        updated = False
        if not frozen and not sparse:
            self.tracker.update(reading)
            updated = True

        previous = self._state
        self._state = self._transitions[(previous, self._signal(cls))]
        cleared = previous is EngineState.MITIGATING and self._state is EngineState.MONITORING
        if self._state is not previous:
            logger.info("%s engine %s -> %s", self.attribute, previous.value, self._state.value)

        metadata: Dict[str, Any] = {
            "late_rollover": window.late_rollover,
            "other_count": window.other_count,
            "baseline_ready": self.tracker.is_ready(),
        }
        if window.cardinality is not None:
            c = window.cardinality
            metadata["cardinality"] = {
                "limit": c.limit,
                "evicted_values": c.evicted_values,
                "evicted_samples": c.evicted_samples,
            }

        alert = None
        if cls is not Classification.NORMAL:
            alert = Alert(
                classification=cls,
                reading=reading,
                baseline=baseline,
                score=verdict.score,
                contributors=contributors,
            )

        self.windows_processed += 1
        return WindowEvent(
            attribute=self.attribute,
            window_start=window.start,
            window_end=window.end,
            reading=reading,
            classification=cls,
            score=verdict.score,
            direction=verdict.direction,
            reason=verdict.reason,
            baseline=baseline,
            state=self._state,
            contributors=contributors,
            alert=alert,
            cleared=cleared,
            baseline_updated=updated,
            profile_hash=self.profile_hash,
            metadata=metadata,
        )

    def _signal(self, cls: Classification) -> Signal:
        if not self.tracker.is_ready():
            return Signal.WARMUP
        if self._state is EngineState.MITIGATING:
            if cls is Classification.NORMAL:
                self._normal_streak += 1
                if self._normal_streak >= self.config.hysteresis_windows:
                    self._normal_streak = 0
                    return Signal.CLEAR
            else:
                self._normal_streak = 0
        return Signal(cls.value)

    def _emit(self, event: WindowEvent) -> None:
        for sink in list(self._sinks):
            try:
                sink(event)
            except Exception:
                logger.exception("event sink %r failed for %s window %s", sink, self.attribute, event.window_start)

    # -------------------------- Baseline persistence -------------------------- #
    def baseline_snapshot(self) -> BaselineState:
        return self.tracker.snapshot()

    def restore_baseline(self, state: BaselineState) -> None:
        with self._process_lock:
            if self._state is EngineState.STOPPED:
                raise RuntimeError(f"engine for {self.attribute} is stopped")
            self.tracker.restore(state)
            self._normal_streak = 0
            self._state = EngineState.MONITORING if self.tracker.is_ready() else EngineState.WARMING_UP
        logger.info("%s baseline restored (center=%.4f, windows=%d)", self.attribute, state.center, state.windows_seen)

    # -------------------------- Lifecycle -------------------------- #
    def start(self) -> None:
        if self.running:
            raise RuntimeError(f"engine for {self.attribute} already running")
        if self._state is EngineState.STOPPED:
            raise RuntimeError(f"engine for {self.attribute} is stopped")
        self._stop.clear()
        self._discard.clear()
        self._worker = threading.Thread(target=self._run_worker, name=f"entropy-worker-{self.attribute}", daemon=True)
        self._timer = threading.Thread(target=self._run_timer, name=f"entropy-timer-{self.attribute}", daemon=True)
        self._worker.start()
        self._timer.start()
        logger.info("%s engine started (window=%.1fs)", self.attribute, self.config.window_seconds)

    def stop(self, drain: Optional[bool] = None) -> None:
        """
        Stop the timer and worker. Closed windows still queued are processed when
        `drain` (default: config.drain_on_stop), otherwise discarded. The open,
        partial window is always discarded. The baseline is never left half-updated:
        a window in progress when stop is called completes first.
        """
        drain = self.config.drain_on_stop if drain is None else drain
        self._stop.set()
        if self._timer is not None:
            self._timer.join()
        if not drain:
            self._discard.set()
        if self._worker is not None:
            self._queue.put(None)
            self._worker.join()
        self._timer = self._worker = None

        partial = self.tally.close_window()
        with self._process_lock:
            self._state = self._transitions.get((self._state, Signal.STOP), EngineState.STOPPED)
        logger.info("%s engine stopped (processed=%d, discarded=%d, open window samples dropped=%d)",
                    self.attribute, self.windows_processed, self.windows_discarded, partial.total)

    def _run_timer(self) -> None:
        while True:
            _start, end = self.tally.window_bounds
            if self._stop.wait(max(0.0, end - self._clock())):
                return
            self._queue.put(self.tally.close_window())

    def _run_worker(self) -> None:
        while True:
            window = self._queue.get()
            if window is None:
                return
            if self._discard.is_set():
                self.windows_discarded += 1
                continue
            try:
                self.process_window(window)
            except Exception:
                logger.exception("%s window %s failed", self.attribute, window.start)

    def status(self) -> Dict[str, Any]:
        start, end = self.tally.window_bounds
        return {
            "attribute": self.attribute,
            "state": self._state.value,
            "running": self.running,
            "window_start": start,
            "window_end": end,
            "baseline": self.tracker.snapshot().to_dict(),
            "windows_processed": self.windows_processed,
            "windows_discarded": self.windows_discarded,
            "profile_hash": self.profile_hash,
        }
