"""Serialises flow records into a comma separated table."""

from __future__ import annotations

import logging
from enum import Enum, unique
from pathlib import Path
from typing import Callable, Iterable, List, TextIO, Union

from .packet_flow import PacketFlow
from .utils import LINE_SEP

logger = logging.getLogger(__name__)


@unique
class FlowColumn(Enum):
    source_ip = ("SourceIP", lambda flow: flow.source_ip)
    destination_ip = ("DestinationIP", lambda flow: flow.destination_ip)
    source_port = ("SourcePort", lambda flow: flow.source_port)
    destination_port = ("DestinationPort", lambda flow: flow.destination_port)
    protocol = ("Protocol", lambda flow: flow.protocol)
    duration = ("Duration", lambda flow: flow.duration)
    bytes_sent = ("BytesSent", lambda flow: flow.bytes_sent)
    bytes_received = ("BytesReceived", lambda flow: flow.bytes_received)
    forward_header_bytes = ("ForwardHeaderBytes", lambda flow: flow.forward_header_bytes)

    def __init__(self, display_name: str, getter: Callable[[PacketFlow], object]) -> None:
        self.display_name = display_name
        self.getter = getter

    @classmethod
    def get_header(cls, separator: str = ",") -> str:
        return separator.join(column.display_name for column in cls)

    def value(self, flow: PacketFlow) -> str:
        return str(self.getter(flow))

    def __str__(self) -> str:  # pragma: no cover - human readable repr
        return self.display_name


Destination = Union[str, Path, TextIO]


class FlowTableWriter:
    """Writes a header row followed by one row per flow record.

    Fields are joined without quoting; addresses, ports and numbers never
    contain the separator.
    """

    def __init__(self, separator: str = ",") -> None:
        self.separator = separator

    def header(self) -> str:
        return FlowColumn.get_header(self.separator)

    def format_row(self, flow: PacketFlow) -> str:
        return self.separator.join(column.value(flow) for column in FlowColumn)

    def rows(self, flows: Iterable[PacketFlow]) -> List[str]:
        return [self.format_row(flow) for flow in flows]

    def write(self, flows: Iterable[PacketFlow], destination: Destination) -> int:
        """Write the table and return the number of data rows.

        Raises ``OSError`` when the destination cannot be opened or written.
        Rows already written stay in place.
        """
        if isinstance(destination, (str, Path)):
            path = Path(destination)
            with path.open("w", encoding="utf-8", newline="") as handle:
                total = self._write_to(flows, handle)
            logger.info("Wrote %d flows to %s", total, path)
            return total
        return self._write_to(flows, destination)

    def _write_to(self, flows: Iterable[PacketFlow], handle: TextIO) -> int:
        total = 0
        handle.write(self.header() + LINE_SEP)
        for flow in flows:
            handle.write(self.format_row(flow) + LINE_SEP)
            total += 1
        return total


__all__ = ["FlowColumn", "FlowTableWriter"]
