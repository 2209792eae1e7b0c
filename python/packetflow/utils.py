"""Utility helpers shared by the capture collaborators."""

from __future__ import annotations

from typing import Union

LINE_SEP = "\n"
MILLIS_PER_SECOND = 1_000
MAX_PACKET_COUNT = 100_000
PROGRESS_INTERVAL = 100


def format_ip(value: Union[bytes, bytearray, str]) -> str:
    """Convert a raw IPv4 buffer into dotted-quad notation."""
    if isinstance(value, (bytes, bytearray)) and len(value) == 4:
        return ".".join(str(b & 0xFF) for b in value)
    return str(value)


def seconds_to_millis(timestamp: float) -> int:
    return int(round(float(timestamp) * MILLIS_PER_SECOND))


__all__ = [
    "LINE_SEP",
    "MILLIS_PER_SECOND",
    "MAX_PACKET_COUNT",
    "PROGRESS_INTERVAL",
    "format_ip",
    "seconds_to_millis",
]
