"""Real-time packet capture bridging Scapy sniffing with the flow aggregator."""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from scapy.all import IP, TCP, UDP, AsyncSniffer  # type: ignore
from scapy.packet import Packet  # type: ignore

from .flow_aggregator import FlowAggregator
from .packet_descriptor import PacketDescriptor, TransportHeader
from .packet_flow import PacketFlow
from .utils import MAX_PACKET_COUNT, PROGRESS_INTERVAL, seconds_to_millis

logger = logging.getLogger(__name__)


class LiveCaptureError(RuntimeError):
    """Raised when live capture cannot be started or operated."""


def _header_length(layer) -> int:
    return max(len(layer) - len(layer.payload), 0)


def descriptor_from_scapy(packet: Packet) -> Optional[PacketDescriptor]:
    """Build a PacketDescriptor from a Scapy packet, or None if it is not IPv4."""
    if not hasattr(packet, "time") or not packet.haslayer(IP):
        return None

    ip_layer = packet.getlayer(IP)
    transport = ip_layer.payload
    tcp: Optional[TransportHeader] = None
    udp: Optional[TransportHeader] = None

    if isinstance(transport, TCP):
        tcp = TransportHeader(
            source_port=int(transport.sport),
            destination_port=int(transport.dport),
            header_length=_header_length(transport),
        )
    elif isinstance(transport, UDP):
        udp = TransportHeader(
            source_port=int(transport.sport),
            destination_port=int(transport.dport),
            header_length=_header_length(transport),
        )

    return PacketDescriptor(
        source_ip=str(ip_layer.src),
        destination_ip=str(ip_layer.dst),
        ip_header_length=_header_length(ip_layer),
        total_length=len(packet),
        timestamp_millis=seconds_to_millis(packet.time),
        tcp=tcp,
        udp=udp,
    )


def _is_ipv4(packet: Packet) -> bool:
    return packet.haslayer(IP)


class LiveCapture:
    """Capture a fixed number of IPv4 packets and aggregate them into flows."""

    def __init__(
        self,
        interface: str,
        device_ip: str,
        *,
        packet_count: int,
        bpf_filter: Optional[str] = None,
        status_handler: Optional[Callable[[str], None]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        if not 0 < packet_count <= MAX_PACKET_COUNT:
            raise ValueError(
                f"packet_count must be between 1 and {MAX_PACKET_COUNT}, got {packet_count}"
            )

        self.interface = interface
        self.device_ip = device_ip
        self.packet_count = packet_count
        self.bpf_filter = bpf_filter
        self.status_handler = status_handler
        self.timeout = timeout

        self.aggregator = FlowAggregator(device_ip)
        self.packets_captured = 0

        self._lock = threading.RLock()
        self._sniffer: Optional[AsyncSniffer] = None  # type: ignore[type-var]

    # ------------------------------------------------------------------
    def start(self) -> None:
        """Start sniffing packets on the configured interface."""
        with self._lock:
            if self._sniffer is not None:
                raise LiveCaptureError("Capture already running")

            try:
                sniffer = AsyncSniffer(
                    iface=self.interface,
                    prn=self._handle_packet,
                    lfilter=_is_ipv4,
                    count=self.packet_count,
                    store=False,
                    filter=self.bpf_filter,
                )
                sniffer.start()
            except Exception as exc:
                raise LiveCaptureError(
                    f"Failed to start capture on interface '{self.interface}'"
                ) from exc

            self._sniffer = sniffer

        self._notify_status(f"listening: {self.interface}")
        logger.info(
            "Capturing %d packets on %s (device %s)",
            self.packet_count,
            self.interface,
            self.device_ip,
        )

    # ------------------------------------------------------------------
    def wait(self) -> None:
        """Block until the sniffer has captured its packets.

        With a ``timeout`` the wait gives up after that many seconds and the
        sniffer is left running until ``stop()``.
        """
        with self._lock:
            sniffer = self._sniffer
        if sniffer is not None:
            sniffer.join(timeout=self.timeout)

    def stop(self) -> None:
        """Stop sniffing packets if the capture is running."""
        with self._lock:
            sniffer = self._sniffer
            self._sniffer = None

        if sniffer is None:
            return

        if getattr(sniffer, "running", False):
            try:
                sniffer.stop()
            except Exception:  # pragma: no cover - stop failures depend on system
                logger.exception("Failed to stop live capture")

        self._notify_status(f"stopped: {self.interface}")
        logger.info(
            "Live capture stopped on %s after %d packets",
            self.interface,
            self.packets_captured,
        )

    def run(self) -> List[PacketFlow]:
        """Capture until the packet count is reached and return the flows."""
        self.start()
        try:
            self.wait()
        finally:
            self.stop()
        return self.records()

    # ------------------------------------------------------------------
    def is_running(self) -> bool:
        with self._lock:
            return self._sniffer is not None

    def records(self) -> List[PacketFlow]:
        return self.aggregator.records()

    # ------------------------------------------------------------------
    def _handle_packet(self, packet: Packet) -> None:
        try:
            descriptor = descriptor_from_scapy(packet)
        except Exception:  # pragma: no cover - conversion errors get logged for diagnosis
            logger.exception("Failed to convert captured packet")
            return

        if descriptor is None:
            return

        self.aggregator.add_packet(descriptor)
        self.packets_captured += 1
        if self.packets_captured % PROGRESS_INTERVAL == 0:
            logger.info("Captured packet number %d.", self.packets_captured)

    # ------------------------------------------------------------------
    def _notify_status(self, message: str) -> None:
        if self.status_handler is not None:
            try:
                self.status_handler(message)
            except Exception:  # pragma: no cover - user supplied handler
                logger.exception("Status handler raised an exception")


__all__ = ["LiveCapture", "LiveCaptureError", "descriptor_from_scapy"]
