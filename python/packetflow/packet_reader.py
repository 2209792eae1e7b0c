"""PCAP ingestion layer producing packet descriptors for the flow extractor."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import IO, Iterator, Optional, Tuple, Union

import dpkt
from dpkt.ethernet import VLANtag8021Q

from .packet_descriptor import PacketDescriptor, TransportHeader
from .utils import format_ip, seconds_to_millis

logger = logging.getLogger(__name__)

UDP_HEADER_LENGTH = 8

LINKTYPE_ETHERNET = 1
LINKTYPE_LINUX_SLL = 113
# DLT_RAW, LINKTYPE_RAW and LINKTYPE_IPV4
LINKTYPES_RAW_IP = (12, 101, 228)


class PacketReader:
    """Iterates over the IPv4 packets of a PCAP capture as PacketDescriptors."""

    def __init__(
        self,
        pcap_path: Union[str, Path],
        *,
        limit: Optional[int] = None,
    ) -> None:
        path = Path(pcap_path)
        if not path.is_file():
            raise FileNotFoundError(f"PCAP file does not exist: {path}")
        if limit is not None and limit <= 0:
            raise ValueError("limit must be a positive packet count")

        self.path = path
        self.limit = limit

        self._file: Optional[IO[bytes]] = None
        self._pcap: Optional[dpkt.pcap.Reader] = None
        self._packet_iter: Optional[Iterator[Tuple[float, bytes]]] = None
        self.linktype: Optional[int] = None

        self._packets_read = 0
        self._first_packet_ts: Optional[int] = None
        self._last_packet_ts: Optional[int] = None

    # ------------------------------------------------------------------
    def __enter__(self) -> "PacketReader":
        self._open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    # ------------------------------------------------------------------
    def close(self) -> None:
        if self._pcap is not None:
            self._pcap = None
        if self._file is not None:
            try:
                self._file.close()
            except OSError:
                logger.debug("Failed to close PCAP file", exc_info=True)
            finally:
                self._file = None
        self._packet_iter = None

    # ------------------------------------------------------------------
    def __iter__(self) -> Iterator[PacketDescriptor]:
        while True:
            packet = self.next_packet()
            if packet is None:
                break
            yield packet

    def next_packet(self) -> Optional[PacketDescriptor]:
        if self.limit is not None and self._packets_read >= self.limit:
            return None

        self._ensure_iter()
        assert self._packet_iter is not None

        for ts, buf in self._packet_iter:
            packet = self._decode_packet(ts, buf)
            if packet is not None:
                self._register(packet)
                return packet
        return None

    # ------------------------------------------------------------------
    @property
    def packets_read(self) -> int:
        return self._packets_read

    @property
    def first_packet_timestamp(self) -> Optional[int]:
        return self._first_packet_ts

    @property
    def last_packet_timestamp(self) -> Optional[int]:
        return self._last_packet_ts

    # ------------------------------------------------------------------
    def _ensure_iter(self) -> None:
        if self._pcap is None or self._packet_iter is None:
            self._open()
            assert self._pcap is not None
            self._packet_iter = iter(self._pcap)

    def _open(self) -> None:
        if self._pcap is not None:
            return
        try:
            self._file = self.path.open("rb")
            self._pcap = dpkt.pcap.Reader(self._file)
        except (OSError, ValueError, dpkt.dpkt.NeedData) as exc:
            self.close()
            raise RuntimeError(f"Failed to open PCAP file: {self.path}") from exc

        self.linktype = self._pcap.datalink()
        if not self.supports_linktype(self.linktype):
            logger.warning(
                "Unsupported link type %d in %s; no packets will be read",
                self.linktype,
                self.path,
            )

    @staticmethod
    def supports_linktype(linktype: int) -> bool:
        return linktype in (LINKTYPE_ETHERNET, LINKTYPE_LINUX_SLL) or linktype in LINKTYPES_RAW_IP

    # ------------------------------------------------------------------
    def _decode_packet(self, timestamp: float, frame: bytes) -> Optional[PacketDescriptor]:
        try:
            payload = self._decode_link_layer(frame)
        except (dpkt.UnpackError, ValueError):
            logger.debug("Skipping undecodable frame", exc_info=True)
            return None

        if not isinstance(payload, dpkt.ip.IP):
            return None
        return self._decode_ipv4_packet(timestamp, len(frame), payload)

    def _decode_link_layer(self, frame: bytes):
        if self.linktype == LINKTYPE_ETHERNET:
            payload = dpkt.ethernet.Ethernet(frame).data
            if isinstance(payload, VLANtag8021Q):
                payload = payload.data
            return payload
        if self.linktype == LINKTYPE_LINUX_SLL:
            return dpkt.sll.SLL(frame).data
        if self.linktype in LINKTYPES_RAW_IP:
            if frame and frame[0] >> 4 == 4:
                return dpkt.ip.IP(frame)
            return None
        return None

    def _decode_ipv4_packet(
        self,
        timestamp: float,
        frame_length: int,
        packet: dpkt.ip.IP,
    ) -> PacketDescriptor:
        transport = packet.data
        tcp: Optional[TransportHeader] = None
        udp: Optional[TransportHeader] = None

        if isinstance(transport, dpkt.tcp.TCP):
            tcp = TransportHeader(
                source_port=transport.sport,
                destination_port=transport.dport,
                header_length=transport.off << 2,
            )
        elif isinstance(transport, dpkt.udp.UDP):
            udp = TransportHeader(
                source_port=transport.sport,
                destination_port=transport.dport,
                header_length=UDP_HEADER_LENGTH,
            )

        return PacketDescriptor(
            source_ip=format_ip(packet.src),
            destination_ip=format_ip(packet.dst),
            ip_header_length=packet.hl << 2,
            total_length=frame_length,
            timestamp_millis=seconds_to_millis(timestamp),
            tcp=tcp,
            udp=udp,
        )

    def _register(self, packet: PacketDescriptor) -> None:
        self._packets_read += 1
        if self._first_packet_ts is None:
            self._first_packet_ts = packet.timestamp_millis
        self._last_packet_ts = packet.timestamp_millis


__all__ = ["PacketReader"]
