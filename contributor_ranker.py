# contributor_ranker.py
"""
Rank the attribute values that dominate an anomalous window.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Hashable, List

from attribute_tally import Window


@dataclass(frozen=True)
class Contributor:
    value: Hashable
    count: int
    share: float

    def to_dict(self) -> Dict[str, Any]:
        value = self.value if isinstance(self.value, (str, int, float)) else str(self.value)
        return {"value": value, "count": self.count, "share": round(self.share, 6)}


def _natural_key(value: Hashable):
    # mixed value types have no common ordering
    return (type(value).__name__, repr(value))


def rank(window: Window, top_k: int = 5, min_share: float = 0.05) -> List[Contributor]:
    """
    Values whose share of the window exceeds `min_share`, largest first.
    Ties are broken by the value's natural ordering so the output is deterministic.
    The eviction bucket is never a contributor.
    """
    total = window.total
    if total == 0 or top_k <= 0:
        return []
    floor = min_share * total
    heavy = [(value, count) for value, count in window.counts.items() if count > floor]
    try:
        heavy.sort(key=lambda vc: (-vc[1], vc[0]))
    except TypeError:
        heavy.sort(key=lambda vc: (-vc[1], _natural_key(vc[0])))
    return [Contributor(value=v, count=c, share=c / total) for v, c in heavy[:top_k]]
