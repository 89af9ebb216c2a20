# deviation_detector.py
"""
Classify a window's entropy against the baseline.

An entropy drop is the flooding signal: a few sources dominating collapse the
distribution. Rises are scored and reported but classified Normal unless the
two-sided policy (`detect_rises`) is switched on.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from contributor_ranker import Contributor
from entropy_estimator import EntropyReading
from traffic_baseline import BaselineState


class Classification(str, enum.Enum):
    NORMAL = "normal"
    SUSPICIOUS = "suspicious"
    ANOMALOUS = "anomalous"


@dataclass(frozen=True)
class Verdict:
    classification: Classification
    score: float
    direction: str  # drop / rise / flat
    reason: str


@dataclass(frozen=True)
class Alert:
    classification: Classification
    reading: EntropyReading
    baseline: BaselineState
    score: float
    contributors: Tuple[Contributor, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "classification": self.classification.value,
            "entropy": self.reading.entropy,
            "total": self.reading.total,
            "distinct": self.reading.distinct,
            "baseline": self.baseline.to_dict(),
            "score": self.score,
            "contributors": [c.to_dict() for c in self.contributors],
        }


class DeviationDetector:
    def __init__(self, suspicious_z: float = 2.0, anomalous_z: float = 4.0, min_spread: float = 0.05,
                 min_samples: int = 0, detect_rises: bool = False) -> None:
        if not anomalous_z > suspicious_z > 0:
            raise ValueError("thresholds must satisfy anomalous_z > suspicious_z > 0")
        if min_spread < 0:
            raise ValueError("min_spread must be >= 0")
        self.suspicious_z = suspicious_z
        self.anomalous_z = anomalous_z
        self.min_spread = min_spread
        self.min_samples = min_samples
        self.detect_rises = detect_rises

    def score(self, reading: EntropyReading, baseline: BaselineState) -> float:
        """Positive for a drop below the center, negative for a rise."""
        spread = max(baseline.spread, self.min_spread)
        if spread <= 0:
            gap = baseline.center - reading.entropy
            if gap == 0:
                return 0.0
            return float("inf") if gap > 0 else float("-inf")
        return (baseline.center - reading.entropy) / spread

    def classify(self, reading: EntropyReading, baseline: BaselineState) -> Verdict:
        if not baseline.ready:
            return Verdict(Classification.NORMAL, 0.0, "flat", "warming_up")
        z = self.score(reading, baseline)
        direction = "drop" if z > 0 else "rise" if z < 0 else "flat"
        if reading.total < self.min_samples:
            return Verdict(Classification.NORMAL, z, direction, "insufficient_samples")

        if direction == "rise" and not self.detect_rises:
            return Verdict(Classification.NORMAL, z, direction, "entropy_rise")
        magnitude = abs(z)
        if magnitude >= self.anomalous_z:
            return Verdict(Classification.ANOMALOUS, z, direction, f"entropy_{direction}")
        if magnitude >= self.suspicious_z:
            return Verdict(Classification.SUSPICIOUS, z, direction, f"entropy_{direction}")
        return Verdict(Classification.NORMAL, z, direction, "within_baseline")
