import os

import pytest

from profiles_loader import ConfigurationError, DetectionConfig, build_profile, load_profiles

PROFILES_DIR = os.path.join(os.path.dirname(__file__), "..", "profiles")


def _write(path, text):
    path.write_text(text, encoding="utf-8")


def test_shipped_profiles_load():
    profiles = load_profiles(PROFILES_DIR)
    assert {"source_address", "destination_port", "packet_size"} <= set(profiles)
    src = profiles["source_address"]
    assert src.config.attribute == "source_address"
    assert src.config.warmup_windows == 30
    assert len(src.policy_hash) == 64


def test_profile_hash_is_deterministic(tmp_path):
    _write(tmp_path / "a.yaml", "attribute: source_address\ndetection:\n  alpha: 0.2\n  top_k: 3\n")
    _write(tmp_path / "b.yaml", "detection:\n  top_k: 3\n  alpha: 0.2\nattribute: source_address\n")
    profiles = load_profiles(str(tmp_path))
    assert profiles["a"].policy_hash == profiles["b"].policy_hash
    assert profiles["a"].config.alpha == 0.2


def test_attribute_defaults_to_profile_id(tmp_path):
    _write(tmp_path / "destination_port.yml", "detection:\n  window_seconds: 5\n")
    profile = load_profiles(str(tmp_path))["destination_port"]
    assert profile.config.attribute == "destination_port"
    assert profile.config.window_seconds == 5


def test_missing_dir_and_empty_dir(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_profiles(str(tmp_path / "nope"))
    with pytest.raises(ValueError):
        load_profiles(str(tmp_path))


@pytest.mark.parametrize("overrides", [
    {"window_seconds": 0},
    {"window_seconds": -5},
    {"alpha": 0.0},
    {"alpha": 1.0},
    {"suspicious_z": 4.0, "anomalous_z": 4.0},
    {"suspicious_z": 5.0, "anomalous_z": 4.0},
    {"suspicious_z": 0.0},
    {"warmup_windows": -1},
    {"top_k": 0},
    {"min_share": 1.0},
    {"hysteresis_windows": 0},
    {"max_distinct_values": 0},
    {"eviction_fraction": 0.0},
    {"min_spread": -0.1},
    {"top_k": 2.5},
    {"top_k": True},
    {"warmup_windows": 3.0},
    {"hysteresis_windows": "3"},
    {"min_window_samples": 1.5},
    {"max_distinct_values": 100.0},
    {"window_seconds": "10"},
    {"window_seconds": float("inf")},
    {"alpha": float("nan")},
    {"freeze_baseline_during_alert": "false"},
    {"sticky_mitigation": 0},
    {"detect_rises": "yes"},
    {"drain_on_stop": None},
])
def test_invalid_config_fails_fast(overrides):
    with pytest.raises(ConfigurationError):
        DetectionConfig(**overrides)


def test_unknown_detection_key_rejected():
    with pytest.raises(ConfigurationError):
        build_profile({"detection": {"window": 10}}, "source_address")


def test_config_is_immutable():
    cfg = DetectionConfig()
    with pytest.raises(Exception):
        cfg.alpha = 0.5


def test_quoted_yaml_values_rejected_at_load(tmp_path):
    _write(tmp_path / "source_address.yaml",
           "detection:\n  freeze_baseline_during_alert: \"false\"\n")
    with pytest.raises(ConfigurationError):
        load_profiles(str(tmp_path))
    with pytest.raises(ConfigurationError):
        build_profile({"detection": {"top_k": 2.5}}, "source_address")


def test_yaml_booleans_and_integers_accepted(tmp_path):
    _write(tmp_path / "source_address.yaml",
           "detection:\n  freeze_baseline_during_alert: false\n  top_k: 2\n  max_distinct_values: 1000\n")
    cfg = load_profiles(str(tmp_path))["source_address"].config
    assert cfg.freeze_baseline_during_alert is False
    assert cfg.top_k == 2
    assert cfg.max_distinct_values == 1000
