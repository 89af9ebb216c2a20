#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Entropy Guard
- Scapy capture feeding one entropy engine per monitored attribute class
- YAML detection profiles (profiles/*.yaml)
- Structured JSON window events to the log, optional sealed event log
- UNIX domain socket control API (status / snapshot_baseline / restore_baseline)
- Baseline snapshot restored at start and written at shutdown
"""
import argparse
import json
import logging
import os
import socket
import threading
import time
from typing import Callable, Dict, Optional

from scapy.all import sniff  # type: ignore

from baseline_store import load_snapshot, save_snapshot
from entropy_engine import DetectionEngine, log_sink
from event_log import EventLogger
from packet_ingest import PacketIngestor
from profiles_loader import ConfigurationError, Profile, load_profiles
from traffic_baseline import BaselineState

CONTROL_SOCK = os.environ.get("ENTROPY_GUARD_CONTROL_SOCK", "/var/run/entropy_guard.sock")  # override for tests
PROFILES_DIR = os.environ.get("ENTROPY_GUARD_PROFILES", "profiles")
SNAPSHOT_PATH = os.environ.get("ENTROPY_GUARD_SNAPSHOT", "state/baselines.json")
LOG_KEY_HEX = os.environ.get("ENTROPY_GUARD_LOG_KEY", "")

logger = logging.getLogger("entropy_guard")


class GuardService:
    def __init__(self, profiles: Dict[str, Profile], snapshot_path: Optional[str] = None,
                 event_logger: Optional[EventLogger] = None,
                 clock: Callable[[], float] = time.time) -> None:
        self.snapshot_path = snapshot_path
        self.engines: Dict[str, DetectionEngine] = {}
        for profile in profiles.values():
            cfg = profile.config
            if cfg.attribute in self.engines:
                raise ConfigurationError(f"attribute {cfg.attribute} is monitored by more than one profile")
            sinks = [log_sink]
            if event_logger is not None:
                sinks.append(event_logger)
            self.engines[cfg.attribute] = DetectionEngine(
                cfg, sinks=sinks, clock=clock, profile_hash=profile.policy_hash,
            )
        self.ingestor = PacketIngestor(self.engines)

    def start(self) -> None:
        if self.snapshot_path and os.path.exists(self.snapshot_path):
            try:
                self.restore()
            except (OSError, ValueError, KeyError) as e:
                logger.error("Baseline snapshot %s not restored: %s", self.snapshot_path, e)
        for engine in self.engines.values():
            engine.start()

    def stop(self) -> None:
        for engine in self.engines.values():
            engine.stop()
        if self.snapshot_path:
            self.snapshot()

    def snapshot(self) -> Dict[str, BaselineState]:
        states = {attribute: engine.baseline_snapshot() for attribute, engine in self.engines.items()}
        if self.snapshot_path:
            save_snapshot(self.snapshot_path, states)
            logger.info("Baseline snapshot written to %s", self.snapshot_path)
        return states

    def restore(self) -> int:
        if not self.snapshot_path:
            raise ValueError("no snapshot path configured")
        restored = 0
        for attribute, state in load_snapshot(self.snapshot_path).items():
            engine = self.engines.get(attribute)
            if engine is None:
                logger.warning("Snapshot has baseline for unmonitored attribute %s", attribute)
                continue
            engine.restore_baseline(state)
            restored += 1
        return restored

    def status(self) -> Dict[str, object]:
        return {
            "engines": {attribute: engine.status() for attribute, engine in sorted(self.engines.items())},
            "ingest": self.ingestor.stats(),
            "snapshot_path": self.snapshot_path,
        }

    # --- Control plane ---------------------------------------------------------
    def handle_command(self, data: bytes) -> bytes:
        try:
            cmd = json.loads(data.decode("utf-8"))
            kind = cmd.get("cmd")
        except (UnicodeDecodeError, ValueError, AttributeError):
            return b'{"ok":false,"err":"bad_json"}\n'
        try:
            if kind == "status":
                return (json.dumps(self.status()) + "\n").encode("utf-8")
            if kind == "snapshot_baseline":
                states = self.snapshot()
                resp = {"ok": True, "baselines": {a: s.to_dict() for a, s in sorted(states.items())}}
                return (json.dumps(resp) + "\n").encode("utf-8")
            if kind == "restore_baseline":
                restored = self.restore()
                return (json.dumps({"ok": True, "restored": restored}) + "\n").encode("utf-8")
            return b'{"ok":false,"err":"unknown_cmd"}\n'
        except (OSError, ValueError, KeyError, RuntimeError) as e:
            logger.error("Control command %s failed: %s", kind, e)
            return (json.dumps({"ok": False, "err": f"{kind}_failed"}) + "\n").encode("utf-8")


def control_server(service: GuardService, sock_path: Optional[str] = None) -> None:
    try:
        sock_path = sock_path or CONTROL_SOCK
        if os.path.exists(sock_path):
            os.remove(sock_path)
        srv = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        srv.bind(sock_path)
        os.chmod(sock_path, 0o660)
        srv.listen(5)
        logger.info("Control socket listening at %s", sock_path)
        while True:
            conn, _ = srv.accept()
            with conn:
                data = conn.recv(8192)
                conn.sendall(service.handle_command(data))
    except OSError as e:
        logger.error("Control server error: %s", e)


def build_service(profiles_dir: str, snapshot_path: Optional[str], log_key_hex: str,
                  event_log_path: str) -> GuardService:
    profiles = load_profiles(profiles_dir)
    event_logger = None
    if log_key_hex:
        event_logger = EventLogger(event_log_path, bytes.fromhex(log_key_hex))
    return GuardService(profiles, snapshot_path=snapshot_path, event_logger=event_logger)


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--profiles", default=PROFILES_DIR)
    ap.add_argument("--iface", default=None, help="capture interface (default: scapy's choice)")
    ap.add_argument("--bpf", default="ip or ip6", help="BPF capture filter")
    ap.add_argument("--snapshot", default=SNAPSHOT_PATH, help="baseline snapshot file ('' to disable)")
    ap.add_argument("--event-log", default="logs/entropy_events.log")
    ap.add_argument("--control-sock", default=CONTROL_SOCK)
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s [%(levelname)s] %(message)s")

    service = build_service(args.profiles, args.snapshot or None, LOG_KEY_HEX, args.event_log)
    t = threading.Thread(target=control_server, args=(service, args.control_sock), daemon=True)
    t.start()

    service.start()
    logger.info("Entropy Guard monitoring %s (Ctrl+C to stop)", ", ".join(sorted(service.engines)))
    try:
        sniff(iface=args.iface, filter=args.bpf, prn=service.ingestor, store=False)
    except KeyboardInterrupt:
        logger.info("Shutting down")
    finally:
        service.stop()
        logger.info("Ingest stats: %s", json.dumps(service.ingestor.stats()))


if __name__ == "__main__":
    main()
