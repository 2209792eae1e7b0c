"""Capture device helpers and factories for the two capture collaborators."""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

import psutil

from .live_capture import LiveCapture
from .packet_reader import PacketReader

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InterfaceAddress:
    """Network layer addressing for a capture device."""

    address: str
    netmask: Optional[str] = None
    broadcast: Optional[str] = None
    family: int = socket.AF_INET


@dataclass(frozen=True)
class PcapDevice:
    """Metadata describing a capture-capable network interface."""

    name: str
    addresses: Sequence[InterfaceAddress]
    hardware_address: Optional[str] = None
    is_loopback: bool = False

    @property
    def ipv4_address(self) -> Optional[str]:
        for entry in self.addresses:
            if entry.family == socket.AF_INET:
                return entry.address
        return None


def list_devices(*, include_loopback: bool = True) -> List[PcapDevice]:
    """Return the host's interfaces with their IP and hardware addresses."""

    devices: List[PcapDevice] = []
    for name, addr_list in psutil.net_if_addrs().items():
        ip_addrs: List[InterfaceAddress] = []
        hardware: Optional[str] = None
        for entry in addr_list:
            family = getattr(entry, "family", None)
            address = getattr(entry, "address", "")
            if not address:
                continue
            if family in _link_families():
                hardware = address
                continue
            if family not in (socket.AF_INET, getattr(socket, "AF_INET6", None)):
                continue
            ip_addrs.append(
                InterfaceAddress(
                    address=address,
                    netmask=getattr(entry, "netmask", None),
                    broadcast=getattr(entry, "broadcast", None),
                    family=family,
                )
            )
        is_loop = _is_loopback(name, ip_addrs)
        if not include_loopback and is_loop:
            continue
        devices.append(
            PcapDevice(
                name=name,
                addresses=tuple(ip_addrs),
                hardware_address=hardware,
                is_loopback=is_loop,
            )
        )

    devices.sort(key=lambda dev: dev.name)
    return devices


def device_ipv4_address(interface: str) -> Optional[str]:
    """Return the first IPv4 address bound to *interface*, if any."""

    for device in list_devices():
        if device.name == interface:
            address = device.ipv4_address
            logger.debug("Interface %s has IPv4 address %s", interface, address)
            return address
    logger.debug("Interface %s not found", interface)
    return None


def open_live(
    interface: str,
    device_ip: Optional[str] = None,
    *,
    packet_count: int,
    **kwargs,
) -> LiveCapture:
    """Return a LiveCapture, looking up the device address when not given."""

    if device_ip is None:
        device_ip = device_ipv4_address(interface)
        if device_ip is None:
            raise LookupError(f"No IPv4 address found for interface '{interface}'")
    return LiveCapture(interface, device_ip, packet_count=packet_count, **kwargs)


def open_offline(path: Union[str, Path], *, limit: Optional[int] = None) -> PacketReader:
    return PacketReader(path, limit=limit)


def _link_families() -> tuple:
    fams: List[int] = []
    if hasattr(socket, "AF_PACKET"):
        fams.append(socket.AF_PACKET)  # type: ignore[attr-defined]
    if hasattr(socket, "AF_LINK"):
        fams.append(socket.AF_LINK)  # type: ignore[attr-defined]
    if hasattr(psutil, "AF_LINK"):
        fams.append(psutil.AF_LINK)
    return tuple(fams)


def _is_loopback(name: str, addresses: Sequence[InterfaceAddress]) -> bool:
    if any(addr.address.startswith("127.") for addr in addresses if addr.family == socket.AF_INET):
        return True
    if any(addr.address == "::1" for addr in addresses):
        return True
    return name.lower().startswith(("lo", "loopback"))


__all__ = [
    "InterfaceAddress",
    "PcapDevice",
    "list_devices",
    "device_ipv4_address",
    "open_live",
    "open_offline",
]
