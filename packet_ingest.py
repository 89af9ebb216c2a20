# packet_ingest.py
"""
Capture-side adapter: turn scapy packets into attribute samples and feed them
into the per-attribute engines. Packets without an IP layer never reach an engine.
"""
from __future__ import annotations

import logging
from typing import Dict, Hashable

from scapy.all import IP, IPv6, TCP, UDP  # type: ignore

from attribute_tally import MalformedSampleError, OutOfWindowError
from entropy_engine import DetectionEngine

logger = logging.getLogger(__name__)

ATTRIBUTES = ("source_address", "destination_address", "packet_size", "destination_port")


def extract_attributes(pkt) -> Dict[str, Hashable]:
    if IP in pkt:
        ip = pkt[IP]
    elif IPv6 in pkt:
        ip = pkt[IPv6]
    else:
        return {}

    attrs: Dict[str, Hashable] = {
        "source_address": str(ip.src),
        "destination_address": str(ip.dst),
        "packet_size": len(pkt),
    }
    if TCP in pkt:
        attrs["destination_port"] = int(pkt[TCP].dport)
    elif UDP in pkt:
        attrs["destination_port"] = int(pkt[UDP].dport)
    return attrs


class PacketIngestor:
    """Callable usable as `scapy.sniff(prn=...)`."""

    def __init__(self, engines: Dict[str, DetectionEngine]) -> None:
        self.engines = engines
        self.accepted = 0
        self.skipped = 0
        self.late = 0
        self.malformed = 0

    def __call__(self, pkt) -> None:
        # sniff prints whatever prn returns
        self.ingest(pkt)

    def ingest(self, pkt) -> int:
        attrs = extract_attributes(pkt)
        if not attrs:
            self.skipped += 1
            return 0
        try:
            ts = float(pkt.time)
        except (TypeError, ValueError):
            self.malformed += 1
            return 0

        recorded = 0
        for attribute, engine in self.engines.items():
            value = attrs.get(attribute)
            if value is None:
                continue
            try:
                engine.record(value, ts)
            except OutOfWindowError:
                self.late += 1
            except MalformedSampleError as e:
                self.malformed += 1
                logger.debug("rejected %s sample: %s", attribute, e)
            else:
                recorded += 1
        self.accepted += recorded
        return recorded

    def stats(self) -> Dict[str, int]:
        return {
            "accepted": self.accepted,
            "skipped": self.skipped,
            "late": self.late,
            "malformed": self.malformed,
        }
