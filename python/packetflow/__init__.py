"""Bidirectional IPv4 TCP/UDP flow aggregation from captured packets."""

from .packet_descriptor import PacketDescriptor, TransportHeader, TransportProtocol
from .packet_flow import FlowKey, PacketFlow, extract_flow
from .flow_aggregator import FlowAggregator, aggregate
from .flow_table import FlowColumn, FlowTableWriter
from .packet_reader import PacketReader
from .live_capture import LiveCapture, LiveCaptureError, descriptor_from_scapy
from .pcap_compat import (
    InterfaceAddress,
    PcapDevice,
    device_ipv4_address,
    list_devices,
    open_live,
    open_offline,
)

__all__ = [
    "PacketDescriptor",
    "TransportHeader",
    "TransportProtocol",
    "FlowKey",
    "PacketFlow",
    "extract_flow",
    "FlowAggregator",
    "aggregate",
    "FlowColumn",
    "FlowTableWriter",
    "PacketReader",
    "LiveCapture",
    "LiveCaptureError",
    "descriptor_from_scapy",
    "InterfaceAddress",
    "PcapDevice",
    "list_devices",
    "device_ipv4_address",
    "open_live",
    "open_offline",
]
