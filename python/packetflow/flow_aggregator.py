"""Merges single-packet flow fragments into bidirectional flow records."""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .packet_descriptor import PacketDescriptor
from .packet_flow import FlowKey, PacketFlow, extract_flow

logger = logging.getLogger(__name__)


class FlowAggregator:
    """Keeps one record per distinct flow, indexed by its canonical key.

    Records are created from the first fragment of a flow and updated in
    place by later fragments, in either direction. Iteration order is the
    order in which flows were first seen.
    """

    def __init__(self, device_ip: Optional[str] = None) -> None:
        self.device_ip = device_ip
        self._lock = threading.Lock()
        self._init_state()

    # ------------------------------------------------------------------
    def _init_state(self) -> None:
        self.flows: Dict[FlowKey, PacketFlow] = {}
        self.fragment_count = 0

    def reset(self) -> None:
        with self._lock:
            self._init_state()

    # ------------------------------------------------------------------
    def add_packet(self, packet: PacketDescriptor) -> PacketFlow:
        if self.device_ip is None:
            raise ValueError("device_ip is required to classify packet direction")
        return self.add_fragment(extract_flow(packet, self.device_ip))

    def add_fragment(self, fragment: PacketFlow) -> PacketFlow:
        key = fragment.flow_key()
        with self._lock:
            self.fragment_count += 1
            record = self.flows.get(key)
            if record is None:
                record = replace(fragment)
                self.flows[key] = record
                logger.debug(
                    "New %s flow %s:%s <-> %s:%s",
                    record.protocol,
                    record.source_ip,
                    record.source_port,
                    record.destination_ip,
                    record.destination_port,
                )
            else:
                record.merge(fragment)
        return record

    def extend(self, fragments: Iterable[PacketFlow]) -> None:
        for fragment in fragments:
            self.add_fragment(fragment)

    # ------------------------------------------------------------------
    def records(self) -> List[PacketFlow]:
        with self._lock:
            return list(self.flows.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self.flows)


def aggregate(fragments: Iterable[PacketFlow]) -> List[PacketFlow]:
    """Collapse fragments into flow records, in first-seen order."""
    aggregator = FlowAggregator()
    aggregator.extend(fragments)
    logger.debug(
        "Aggregated %d fragments into %d flows",
        aggregator.fragment_count,
        len(aggregator),
    )
    return aggregator.records()


__all__ = ["FlowAggregator", "aggregate"]
