import pytest
from scapy.all import ARP, ICMP, IP, TCP, UDP, AsyncSniffer, Ether, IPv6, Raw

import packetflow.live_capture as live_capture_module
from packetflow import TransportProtocol
from packetflow.live_capture import LiveCapture, LiveCaptureError, descriptor_from_scapy

ETHER = dict(src="aa:aa:aa:aa:aa:aa", dst="bb:bb:bb:bb:bb:bb")


def _tcp(src, dst, sport, dport, load=b"hello", time=1.5):
    packet = Ether(**ETHER) / IP(src=src, dst=dst) / TCP(sport=sport, dport=dport, flags="S") / Raw(load=load)
    packet.time = time
    return packet


def test_descriptor_from_tcp_ipv4_packet():
    packet = _tcp("10.0.0.1", "10.0.0.2", 1234, 80)

    descriptor = descriptor_from_scapy(packet)

    assert descriptor is not None
    assert descriptor.source_ip == "10.0.0.1"
    assert descriptor.destination_ip == "10.0.0.2"
    assert descriptor.protocol is TransportProtocol.TCP
    assert descriptor.tcp.source_port == 1234
    assert descriptor.tcp.destination_port == 80
    assert descriptor.tcp.header_length == 20
    assert descriptor.ip_header_length == 20
    assert descriptor.total_length == 14 + 20 + 20 + len(b"hello")
    assert descriptor.timestamp_millis == 1_500


def test_descriptor_from_udp_and_icmp_packets():
    udp = Ether(**ETHER) / IP(src="10.0.0.2", dst="10.0.0.1") / UDP(sport=53, dport=5353) / Raw(load=b"abc")
    udp.time = 2.0
    icmp = Ether(**ETHER) / IP(src="10.0.0.2", dst="10.0.0.1") / ICMP()
    icmp.time = 2.25

    udp_descriptor = descriptor_from_scapy(udp)
    icmp_descriptor = descriptor_from_scapy(icmp)

    assert udp_descriptor.protocol is TransportProtocol.UDP
    assert udp_descriptor.udp.header_length == 8
    assert udp_descriptor.timestamp_millis == 2_000
    assert icmp_descriptor.protocol is TransportProtocol.UNKNOWN
    assert icmp_descriptor.transport is None
    assert icmp_descriptor.ip_header_length == 20


def test_non_ipv4_packets_are_ignored():
    arp = Ether(**ETHER) / ARP(psrc="10.0.0.1", pdst="10.0.0.2")
    arp.time = 1.0
    v6 = Ether(**ETHER) / IPv6(src="2001:db8::1", dst="2001:db8::2") / UDP(sport=1, dport=2)
    v6.time = 1.0

    assert descriptor_from_scapy(arp) is None
    assert descriptor_from_scapy(v6) is None


def test_handle_packet_aggregates_both_directions():
    capture = LiveCapture("lo", "10.0.0.1", packet_count=10)

    capture._handle_packet(_tcp("10.0.0.1", "10.0.0.2", 1234, 80, time=1.0))
    capture._handle_packet(_tcp("10.0.0.2", "10.0.0.1", 80, 1234, load=b"hi", time=1.25))

    (flow,) = capture.records()
    assert capture.packets_captured == 2
    assert flow.source_ip == "10.0.0.1"
    assert flow.duration == 250
    assert flow.outgoing_data_size == 14 + len(b"hello")
    assert flow.incoming_data_size == 14 + len(b"hi")
    assert flow.forward_header_bytes == 40


@pytest.mark.parametrize("count", [0, -1, 100_001])
def test_packet_count_must_be_in_range(count):
    with pytest.raises(ValueError):
        LiveCapture("lo", "10.0.0.1", packet_count=count)


class _FakeSniffer:
    packets = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.running = False

    def start(self):
        self.running = True
        for packet in self.packets:
            if self.kwargs["lfilter"](packet):
                self.kwargs["prn"](packet)
        self.running = False

    def join(self, timeout=None):
        self.join_timeout = timeout

    def stop(self):
        raise AssertionError("stop() must not be called on a finished sniffer")


def test_run_feeds_sniffed_packets_into_flows(monkeypatch):
    _FakeSniffer.packets = [
        _tcp("10.0.0.1", "10.0.0.2", 1234, 80, time=1.0),
        Ether(**ETHER) / ARP(),
        _tcp("10.0.0.2", "10.0.0.1", 80, 1234, time=1.5),
    ]
    monkeypatch.setattr(live_capture_module, "AsyncSniffer", _FakeSniffer)
    statuses = []
    capture = LiveCapture("eth0", "10.0.0.1", packet_count=2, status_handler=statuses.append)

    flows = capture.run()

    assert len(flows) == 1
    assert flows[0].duration == 500
    assert capture.packets_captured == 2
    assert not capture.is_running()
    assert statuses == ["listening: eth0", "stopped: eth0"]


def test_start_twice_raises(monkeypatch):
    _FakeSniffer.packets = []
    monkeypatch.setattr(live_capture_module, "AsyncSniffer", _FakeSniffer)
    capture = LiveCapture("eth0", "10.0.0.1", packet_count=1)

    capture.start()
    with pytest.raises(LiveCaptureError):
        capture.start()
    capture.stop()


def test_start_builds_a_real_async_sniffer(monkeypatch):
    started = []
    monkeypatch.setattr(AsyncSniffer, "start", lambda self: started.append(self))
    capture = LiveCapture("lo", "127.0.0.1", packet_count=3, bpf_filter="tcp", timeout=2.5)

    capture.start()

    (sniffer,) = started
    assert isinstance(sniffer, AsyncSniffer)
    assert "timeout" not in sniffer.kwargs
    assert sniffer.kwargs["count"] == 3
    assert sniffer.kwargs["filter"] == "tcp"
    assert capture.is_running()
    capture.stop()
    assert not capture.is_running()


def test_sniffer_construction_failure_raises_live_capture_error(monkeypatch):
    def _broken(**kwargs):
        raise ValueError("unsupported option")

    monkeypatch.setattr(live_capture_module, "AsyncSniffer", _broken)
    capture = LiveCapture("eth0", "10.0.0.1", packet_count=1)

    with pytest.raises(LiveCaptureError):
        capture.start()
    assert not capture.is_running()


class _SlowSniffer(_FakeSniffer):
    instances = []

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.stopped = False
        _SlowSniffer.instances.append(self)

    def start(self):
        self.running = True

    def stop(self):
        self.stopped = True
        self.running = False


def test_timeout_bounds_the_wait_and_stops_the_sniffer(monkeypatch):
    _SlowSniffer.instances = []
    monkeypatch.setattr(live_capture_module, "AsyncSniffer", _SlowSniffer)
    capture = LiveCapture("eth0", "10.0.0.1", packet_count=5, timeout=0.5)

    flows = capture.run()

    (sniffer,) = _SlowSniffer.instances
    assert flows == []
    assert sniffer.join_timeout == 0.5
    assert sniffer.stopped
    assert not capture.is_running()
