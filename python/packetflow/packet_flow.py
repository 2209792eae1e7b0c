"""Bidirectional flow record and the packet to flow extraction step."""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Tuple

from .packet_descriptor import PacketDescriptor, TransportProtocol

Endpoint = Tuple[str, int]

SIZE_FIELDS = (
    "incoming_ip_header_size",
    "outgoing_ip_header_size",
    "incoming_transport_header_size",
    "outgoing_transport_header_size",
    "incoming_data_size",
    "outgoing_data_size",
)


class FlowKey(NamedTuple):
    """Order independent identity of a flow.

    Both orientations of the same conversation map to the same key.
    """

    protocol: TransportProtocol
    endpoints: Tuple[Endpoint, Endpoint]


@dataclass
class PacketFlow:
    """A flow fragment built from one packet, or a record merged from many.

    Identity fields (addresses, ports, protocol) keep the orientation of the
    first packet seen. Size fields are split by direction relative to the
    capturing device.
    """

    source_ip: str
    destination_ip: str
    source_port: int = 0
    destination_port: int = 0
    protocol: TransportProtocol = TransportProtocol.UNKNOWN
    min_time: int = 0
    max_time: int = 0
    incoming_ip_header_size: int = 0
    outgoing_ip_header_size: int = 0
    incoming_transport_header_size: int = 0
    outgoing_transport_header_size: int = 0
    incoming_data_size: int = 0
    outgoing_data_size: int = 0

    @classmethod
    def from_packet(cls, packet: PacketDescriptor, device_ip: str) -> "PacketFlow":
        return extract_flow(packet, device_ip)

    # Identity ------------------------------------------------------------
    def flow_key(self) -> FlowKey:
        forward = (self.source_ip, self.source_port)
        backward = (self.destination_ip, self.destination_port)
        if backward < forward:
            forward, backward = backward, forward
        return FlowKey(self.protocol, (forward, backward))

    def is_same_flow(self, other: "PacketFlow") -> bool:
        """True when both describe the same conversation in either direction."""
        if self.protocol != other.protocol:
            return False

        if (
            self.source_ip == other.source_ip
            and self.destination_ip == other.destination_ip
            and self.source_port == other.source_port
            and self.destination_port == other.destination_port
        ):
            return True

        return (
            self.source_ip == other.destination_ip
            and self.destination_ip == other.source_ip
            and self.source_port == other.destination_port
            and self.destination_port == other.source_port
        )

    # Aggregation ---------------------------------------------------------
    def merge(self, other: "PacketFlow") -> None:
        """Fold ``other`` into this record in place."""
        self.min_time = min(self.min_time, other.min_time)
        self.max_time = max(self.max_time, other.max_time)
        for name in SIZE_FIELDS:
            setattr(self, name, getattr(self, name) + getattr(other, name))

    # Derived values ------------------------------------------------------
    @property
    def duration(self) -> int:
        return self.max_time - self.min_time

    @property
    def bytes_sent(self) -> int:
        return self.outgoing_data_size

    @property
    def bytes_received(self) -> int:
        return self.incoming_data_size

    @property
    def forward_header_bytes(self) -> int:
        return self.outgoing_ip_header_size + self.outgoing_transport_header_size

    @property
    def total_data_size(self) -> int:
        return self.incoming_data_size + self.outgoing_data_size


def extract_flow(packet: PacketDescriptor, device_ip: str) -> PacketFlow:
    """Reduce one IPv4 packet to a single-packet flow fragment.

    A packet is outgoing when its source address is ``device_ip``. All of its
    header and data bytes are then booked on the outgoing side, otherwise on
    the incoming side.
    """
    flow = PacketFlow(
        source_ip=packet.source_ip,
        destination_ip=packet.destination_ip,
        min_time=packet.timestamp_millis,
        max_time=packet.timestamp_millis,
    )
    outgoing = packet.source_ip == device_ip

    ip_header = packet.ip_header_length
    transport_header = 0
    transport = packet.transport
    if transport is not None:
        flow.protocol = packet.protocol
        flow.source_port = transport.source_port
        flow.destination_port = transport.destination_port
        transport_header = transport.header_length

    data_size = packet.total_length - ip_header - transport_header

    if outgoing:
        flow.outgoing_ip_header_size = ip_header
        flow.outgoing_transport_header_size = transport_header
        flow.outgoing_data_size = data_size
    else:
        flow.incoming_ip_header_size = ip_header
        flow.incoming_transport_header_size = transport_header
        flow.incoming_data_size = data_size

    return flow


__all__ = ["FlowKey", "PacketFlow", "extract_flow", "SIZE_FIELDS"]
