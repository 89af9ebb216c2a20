import os

from entropy_engine import DetectionEngine
from event_log import EventLogger, iter_records
from event_replay import main as replay_main, verify_log
from profiles_loader import DetectionConfig


def _engine_with_log(log):
    return DetectionEngine(DetectionConfig(window_seconds=10.0, warmup_windows=2, min_window_samples=1),
                           sinks=[log], clock=lambda: 500.0)


def _close(engine, values):
    start, _ = engine.tally.window_bounds
    for v in values:
        engine.record(v, start)
    return engine.close_window()


def test_event_log_sealed_and_verifiable(tmp_path):
    key = os.urandom(32)
    log_path = tmp_path / "logs" / "entropy_events.log"
    log = EventLogger(str(log_path), key)
    engine = _engine_with_log(log)
    for _ in range(3):
        _close(engine, ["a", "b", "c", "d"])

    raw = log_path.read_bytes()
    assert b"classification" not in raw
    ok, records, reason = verify_log(str(log_path), key)
    assert ok, reason
    assert [r["seq"] for r in records] == [1, 2, 3]
    assert records[0]["event"]["attribute"] == "source_address"


def test_chain_resumes_after_reopen(tmp_path):
    key = os.urandom(32)
    log_path = str(tmp_path / "events.log")
    first = EventLogger(log_path, key)
    first.write({"attribute": "packet_size", "classification": "normal", "window_start": 0.0})
    second = EventLogger(log_path, key)
    rec = second.write({"attribute": "packet_size", "classification": "anomalous", "window_start": 10.0})
    assert rec.seq == 2
    assert rec.classification == "anomalous"
    assert [r["seq"] for r, _ in iter_records(log_path, key)] == [1, 2]


def test_tampered_log_fails_verification(tmp_path):
    key = os.urandom(32)
    log_path = tmp_path / "events.log"
    log = EventLogger(str(log_path), key)
    for i in range(3):
        log.write({"attribute": "source_address", "classification": "normal", "window_start": float(i)})

    lines = log_path.read_bytes().splitlines()
    del lines[1]
    log_path.write_bytes(b"\n".join(lines) + b"\n")

    ok, records, reason = verify_log(str(log_path), key)
    assert not ok
    assert len(records) == 1
    assert "record 2" in reason


def test_wrong_key_fails(tmp_path):
    log_path = tmp_path / "events.log"
    EventLogger(str(log_path), os.urandom(32)).write({"attribute": "x"})
    ok, records, _ = verify_log(str(log_path), os.urandom(32))
    assert not ok
    assert records == []


def test_replay_cli(tmp_path, capsys):
    key = os.urandom(32)
    log_path = tmp_path / "events.log"
    log = EventLogger(str(log_path), key)
    log.write({"attribute": "source_address", "classification": "normal", "window_start": 0.0})
    log.write({"attribute": "source_address", "classification": "anomalous", "window_start": 10.0})

    assert replay_main(["--log", str(log_path), "--log-key-hex", key.hex(), "--alerts-only"]) == 0
    out = capsys.readouterr().out
    assert '"anomalous"' in out
    assert '"normal"' not in out
    assert "[OK] verified 2 records" in out

    assert replay_main(["--log", str(log_path), "--log-key-hex", os.urandom(32).hex()]) == 1
