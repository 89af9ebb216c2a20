from scapy.all import ARP, Ether, IP, IPv6, TCP, UDP

from entropy_engine import DetectionEngine
from packet_ingest import PacketIngestor, extract_attributes
from profiles_loader import DetectionConfig


def _pkt(layered, ts):
    layered.time = ts
    return layered


def _engines():
    clock = lambda: 1000.0
    return {
        attribute: DetectionEngine(DetectionConfig(attribute=attribute, warmup_windows=2, min_window_samples=1),
                                   clock=clock)
        for attribute in ("source_address", "destination_port", "packet_size")
    }


def test_extract_ipv4_tcp():
    pkt = IP(src="198.51.100.7", dst="192.0.2.10") / TCP(dport=443)
    attrs = extract_attributes(pkt)
    assert attrs["source_address"] == "198.51.100.7"
    assert attrs["destination_address"] == "192.0.2.10"
    assert attrs["destination_port"] == 443
    assert attrs["packet_size"] == len(pkt)


def test_extract_ipv6_udp():
    attrs = extract_attributes(IPv6(src="2001:db8::1", dst="2001:db8::2") / UDP(dport=53))
    assert attrs["source_address"] == "2001:db8::1"
    assert attrs["destination_port"] == 53


def test_non_ip_packet_has_no_attributes():
    assert extract_attributes(Ether() / ARP()) == {}


def test_ingestor_routes_to_engines_and_counts():
    engines = _engines()
    ingestor = PacketIngestor(engines)

    for i in range(5):
        ingestor(_pkt(IP(src=f"198.51.100.{i}", dst="192.0.2.10") / TCP(dport=80), 1001.0))
    ingestor(_pkt(IP(src="198.51.100.9", dst="192.0.2.10") / UDP(dport=53), 1002.0))
    ingestor(_pkt(IP(src="198.51.100.9", dst="192.0.2.10"), 1003.0))
    ingestor(_pkt(Ether() / ARP(), 1004.0))
    # precedes the open window
    ingestor(_pkt(IP(src="198.51.100.1", dst="192.0.2.10") / TCP(dport=80), 990.0))

    stats = ingestor.stats()
    assert stats["skipped"] == 1
    assert stats["late"] == 3

    src = engines["source_address"].close_window()
    assert src.reading.total == 7
    assert src.reading.distinct == 6
    port = engines["destination_port"].close_window()
    assert port.reading.total == 6
    assert engines["packet_size"].close_window().reading.total == 7


def test_ingest_returns_samples_recorded():
    ingestor = PacketIngestor(_engines())
    assert ingestor.ingest(_pkt(IP(src="198.51.100.1", dst="192.0.2.1") / TCP(dport=22), 1001.0)) == 3
    assert ingestor.ingest(_pkt(Ether() / ARP(), 1001.0)) == 0
