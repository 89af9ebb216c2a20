# baseline_store.py
"""
Snapshot/restore of baseline state across restarts.

One JSON document keyed by attribute class; fields are stored verbatim.
Writes go through a temp file and os.replace so a crash never leaves a torn
snapshot behind.
"""
from __future__ import annotations

import json
import os
import tempfile
from typing import Dict

from traffic_baseline import BaselineState

SNAPSHOT_VERSION = 1


def save_snapshot(path: str, states: Dict[str, BaselineState]) -> None:
    doc = {
        "version": SNAPSHOT_VERSION,
        "baselines": {attribute: state.to_dict() for attribute, state in sorted(states.items())},
    }
    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=".baseline-", suffix=".json", dir=parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(doc, f, indent=2, sort_keys=True)
        os.replace(tmp, path)
    except BaseException:
        os.unlink(tmp)
        raise


def load_snapshot(path: str) -> Dict[str, BaselineState]:
    with open(path, "r", encoding="utf-8") as f:
        doc = json.load(f)
    if doc.get("version") != SNAPSHOT_VERSION:
        raise ValueError(f"unsupported baseline snapshot version: {doc.get('version')}")
    return {attribute: BaselineState.from_dict(raw) for attribute, raw in doc.get("baselines", {}).items()}
