# profiles_loader.py
"""
Load YAML detection profiles (one per monitored attribute class) and provide
deterministic profile hashing.
"""
from __future__ import annotations

import hashlib
import json
import math
import os
from dataclasses import dataclass, fields
from typing import Dict, Any, Optional

import yaml


class ConfigurationError(ValueError):
    pass


_INT_FIELDS = ("warmup_windows", "top_k", "hysteresis_windows", "max_distinct_values", "min_window_samples")
_FLOAT_FIELDS = ("window_seconds", "alpha", "suspicious_z", "anomalous_z", "min_spread", "min_share",
                 "eviction_fraction")
_BOOL_FIELDS = ("freeze_baseline_during_alert", "sticky_mitigation", "detect_rises", "drain_on_stop")


@dataclass(frozen=True)
class DetectionConfig:
    attribute: str = "source_address"
    window_seconds: float = 10.0
    warmup_windows: int = 30
    alpha: float = 0.1
    suspicious_z: float = 2.0
    anomalous_z: float = 4.0
    min_spread: float = 0.05
    freeze_baseline_during_alert: bool = True
    top_k: int = 5
    min_share: float = 0.05
    sticky_mitigation: bool = True
    hysteresis_windows: int = 3
    max_distinct_values: Optional[int] = None
    eviction_fraction: float = 0.1
    min_window_samples: int = 10
    detect_rises: bool = False
    drain_on_stop: bool = True

    def __post_init__(self) -> None:
        for name in _INT_FIELDS:
            value = getattr(self, name)
            if value is None and name == "max_distinct_values":
                continue
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
        for name in _FLOAT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ConfigurationError(f"{name} must be a finite number, got {value!r}")
        for name in _BOOL_FIELDS:
            value = getattr(self, name)
            if not isinstance(value, bool):
                raise ConfigurationError(f"{name} must be true or false, got {value!r}")
        if not isinstance(self.attribute, str) or not self.attribute:
            raise ConfigurationError("attribute name is required")
        if self.window_seconds <= 0:
            raise ConfigurationError(f"window_seconds must be positive, got {self.window_seconds}")
        if self.warmup_windows < 0:
            raise ConfigurationError("warmup_windows must be >= 0")
        if not 0.0 < self.alpha < 1.0:
            raise ConfigurationError(f"alpha must be in (0, 1), got {self.alpha}")
        if not self.suspicious_z > 0:
            raise ConfigurationError("suspicious_z must be positive")
        if not self.anomalous_z > self.suspicious_z:
            raise ConfigurationError(
                f"anomalous_z ({self.anomalous_z}) must exceed suspicious_z ({self.suspicious_z})"
            )
        if self.min_spread < 0:
            raise ConfigurationError("min_spread must be >= 0")
        if self.top_k < 1:
            raise ConfigurationError("top_k must be >= 1")
        if not 0.0 <= self.min_share < 1.0:
            raise ConfigurationError("min_share must be in [0, 1)")
        if self.hysteresis_windows < 1:
            raise ConfigurationError("hysteresis_windows must be >= 1")
        if self.max_distinct_values is not None and self.max_distinct_values < 1:
            raise ConfigurationError("max_distinct_values must be >= 1 when set")
        if not 0.0 < self.eviction_fraction <= 1.0:
            raise ConfigurationError("eviction_fraction must be in (0, 1]")
        if self.min_window_samples < 0:
            raise ConfigurationError("min_window_samples must be >= 0")

    @classmethod
    def from_mapping(cls, raw: Dict[str, Any]) -> "DetectionConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ConfigurationError(f"unknown detection keys: {', '.join(unknown)}")
        try:
            return cls(**raw)
        except TypeError as e:
            raise ConfigurationError(str(e)) from e


@dataclass(frozen=True)
class Profile:
    profile_id: str
    raw: Dict[str, Any]
    policy_hash: str
    config: DetectionConfig


def _canonical_json(obj: Dict[str, Any]) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"))


def build_profile(raw: Dict[str, Any], profile_id: str) -> Profile:
    detection = raw.get("detection", {}) or {}
    if not isinstance(detection, dict):
        raise ConfigurationError(f"profile {profile_id}: 'detection' must be a mapping")
    detection = dict(detection)
    detection.setdefault("attribute", str(raw.get("attribute") or profile_id))
    policy_hash = hashlib.sha256(_canonical_json(raw).encode("utf-8")).hexdigest()
    return Profile(
        profile_id=profile_id,
        raw=raw,
        policy_hash=policy_hash,
        config=DetectionConfig.from_mapping(detection),
    )


def load_profiles(profiles_dir: str) -> Dict[str, Profile]:
    profiles: Dict[str, Profile] = {}
    if not os.path.isdir(profiles_dir):
        raise FileNotFoundError(f"profiles directory not found: {profiles_dir}")

    for name in sorted(os.listdir(profiles_dir)):
        if not name.endswith((".yaml", ".yml")):
            continue
        path = os.path.join(profiles_dir, name)
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        profile_id = str(raw.get("profile_id") or os.path.splitext(name)[0])
        profiles[profile_id] = build_profile(raw, profile_id)

    if not profiles:
        raise ValueError("no profiles loaded")
    return profiles
