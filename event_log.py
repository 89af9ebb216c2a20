# event_log.py
"""
Sealed, hash-chained log of detection window events for audit trails.

Each line is base64(ChaCha20-Poly1305(record)). The nonce is derived from the
log key, the previous chain hash and the sequence number, so a replay has to
walk the chain in order to open anything.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import threading
import time
from dataclasses import dataclass
from typing import Dict, Any, Iterator, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from entropy_engine import WindowEvent

GENESIS = b"\x00" * 32
AAD = b"entropy-guard-events"


@dataclass
class EventRecord:
    ts: float
    seq: int
    attribute: str
    classification: str
    window_start: float
    chain_hash: str


def nonce_for(log_key: bytes, chain: bytes, seq: int) -> bytes:
    return hmac.new(log_key, chain + seq.to_bytes(8, "big"), hashlib.sha256).digest()[:12]


def canonical_json(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")


class LogIntegrityError(ValueError):
    def __init__(self, seq: int, reason: str) -> None:
        super().__init__(f"record {seq}: {reason}")
        self.seq = seq
        self.reason = reason


def iter_records(log_path: str, log_key: bytes) -> Iterator[Tuple[Dict[str, Any], bytes]]:
    """Open and verify records in order, yielding (record, chain_hash)."""
    aead = ChaCha20Poly1305(log_key)
    chain = GENESIS
    seq = 0
    with open(log_path, "rb") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            seq += 1
            try:
                sealed = base64.b64decode(line, validate=True)
                record_bytes = aead.decrypt(nonce_for(log_key, chain, seq), sealed, AAD)
            except (ValueError, InvalidTag) as e:
                raise LogIntegrityError(seq, "AEAD decrypt failed") from e

            record = json.loads(record_bytes.decode("utf-8"))
            if record.get("seq") != seq:
                raise LogIntegrityError(seq, "sequence mismatch")
            if record.get("chain_prev") != chain.hex():
                raise LogIntegrityError(seq, "chain_prev mismatch")
            # recompute chain hash from the record sans chain_hash
            record_for_hash = dict(record)
            record_for_hash.pop("chain_hash", None)
            chain = hashlib.sha256(chain + canonical_json(record_for_hash)).digest()
            if record.get("chain_hash") != chain.hex():
                raise LogIntegrityError(seq, "chain_hash mismatch")
            yield record, chain


class EventLogger:
    """Append-only sealed log; an instance is directly usable as an engine sink."""

    def __init__(self, log_path: str, log_key: bytes) -> None:
        if len(log_key) != 32:
            raise ValueError("log key must be 32 bytes")
        self.log_path = log_path
        self._log_key = log_key
        self._aead = ChaCha20Poly1305(log_key)
        self._lock = threading.Lock()
        self._seq = 0
        self._chain = GENESIS
        parent = os.path.dirname(log_path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        if os.path.exists(log_path):
            # continue the existing chain
            for record, chain in iter_records(log_path, log_key):
                self._seq, self._chain = record["seq"], chain

    def __call__(self, event: WindowEvent) -> None:
        self.write(event.to_dict())

    def write(self, event: Dict[str, Any]) -> EventRecord:
        # engines for different attribute classes may share one log
        with self._lock:
            seq = self._seq + 1
            chain_prev = self._chain
            record = {
                "ts": time.time(),
                "seq": seq,
                "event": event,
                "chain_prev": chain_prev.hex(),
            }
            chain = hashlib.sha256(chain_prev + canonical_json(record)).digest()
            record["chain_hash"] = chain.hex()

            sealed = self._aead.encrypt(nonce_for(self._log_key, chain_prev, seq), canonical_json(record), AAD)
            with open(self.log_path, "ab") as f:
                f.write(base64.b64encode(sealed) + b"\n")
            self._seq, self._chain = seq, chain

        return EventRecord(
            ts=record["ts"],
            seq=seq,
            attribute=str(event.get("attribute", "")),
            classification=str(event.get("classification", "")),
            window_start=float(event.get("window_start", 0.0)),
            chain_hash=record["chain_hash"],
        )
