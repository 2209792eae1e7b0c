"""Decoded view of a single captured IPv4 packet."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class TransportProtocol(str, Enum):
    TCP = "TCP"
    UDP = "UDP"
    UNKNOWN = "UNKNOWN"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TransportHeader:
    """Ports and header size of a TCP or UDP header."""

    source_port: int
    destination_port: int
    header_length: int


@dataclass(frozen=True)
class PacketDescriptor:
    """What the flow extractor needs to know about one captured packet.

    ``total_length`` is the size of the whole captured frame, so any bytes
    below the IP layer are accounted as data. Capture collaborators only
    build descriptors for IPv4 packets.
    """

    source_ip: str
    destination_ip: str
    ip_header_length: int
    total_length: int
    timestamp_millis: int
    tcp: Optional[TransportHeader] = None
    udp: Optional[TransportHeader] = None

    @property
    def transport(self) -> Optional[TransportHeader]:
        if self.tcp is not None:
            return self.tcp
        return self.udp

    @property
    def protocol(self) -> TransportProtocol:
        if self.tcp is not None:
            return TransportProtocol.TCP
        if self.udp is not None:
            return TransportProtocol.UDP
        return TransportProtocol.UNKNOWN


__all__ = ["TransportProtocol", "TransportHeader", "PacketDescriptor"]
