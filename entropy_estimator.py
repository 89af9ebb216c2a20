# entropy_estimator.py
"""
Shannon entropy (bits per observation) of a closed window's value distribution.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

from attribute_tally import Window


@dataclass(frozen=True)
class EntropyReading:
    entropy: float
    total: int
    distinct: int

    @property
    def max_entropy(self) -> float:
        return math.log2(self.distinct) if self.distinct > 1 else 0.0

    @property
    def normalized(self) -> float:
        """Entropy as a fraction of log2(distinct); 0.0 for fewer than two values."""
        top = self.max_entropy
        return self.entropy / top if top > 0 else 0.0


def shannon_entropy(counts: Iterable[int]) -> float:
    positive = [c for c in counts if c > 0]
    n = sum(positive)
    if n == 0:
        return 0.0
    h = 0.0
    for c in positive:
        p = c / n
        h -= p * math.log2(p)
    # float error can leave a single-value window at -0.0 or a hair above log2(k)
    return min(max(h, 0.0), math.log2(len(positive)))


def estimate(window: Window) -> EntropyReading:
    # the eviction bucket counts as one more value
    counts = list(window.counts.values())
    if window.other_count:
        counts.append(window.other_count)
    distinct = sum(1 for c in counts if c > 0)
    return EntropyReading(entropy=shannon_entropy(counts), total=sum(counts), distinct=distinct)
