"""Command-line entry point: capture packets and write a flow summary table."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .flow_aggregator import FlowAggregator
from .flow_table import FlowTableWriter
from .packet_flow import PacketFlow
from .pcap_compat import open_live, open_offline
from .utils import MAX_PACKET_COUNT, PROGRESS_INTERVAL

logger = logging.getLogger(__name__)

DEFAULT_LIVE_COUNT = 1_000


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Aggregate captured IPv4 packets into bidirectional TCP/UDP flows.",
    )
    parser.add_argument(
        "output",
        type=Path,
        help="Path of the CSV flow table to write.",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "-i",
        "--interface",
        help="Network interface to capture live packets from.",
    )
    source.add_argument(
        "-r",
        "--pcap",
        type=Path,
        help="Read packets from a PCAP file instead of a live interface.",
    )
    parser.add_argument(
        "--device-ip",
        help=(
            "IPv4 address of the capturing device, used to tell outgoing from "
            "incoming packets (default: first address of --interface)."
        ),
    )
    parser.add_argument(
        "-c",
        "--count",
        type=int,
        metavar="PACKETS",
        help=(
            f"Number of IPv4 packets to capture (1-{MAX_PACKET_COUNT}, live default: "
            f"{DEFAULT_LIVE_COUNT}; offline default: whole file)."
        ),
    )
    parser.add_argument(
        "--filter",
        dest="bpf_filter",
        metavar="BPF",
        help="BPF filter applied to live capture.",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        metavar="SECONDS",
        help="Stop live capture after this many seconds even if fewer packets arrived.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Log level for diagnostic output.",
    )
    return parser


def capture_live(
    interface: str,
    device_ip: Optional[str],
    packet_count: int,
    *,
    bpf_filter: Optional[str] = None,
    timeout: Optional[float] = None,
) -> List[PacketFlow]:
    capture = open_live(
        interface,
        device_ip,
        packet_count=packet_count,
        bpf_filter=bpf_filter,
        timeout=timeout,
    )
    return capture.run()


def read_pcap(pcap_path: Path, device_ip: str, limit: Optional[int] = None) -> List[PacketFlow]:
    aggregator = FlowAggregator(device_ip)
    with open_offline(pcap_path, limit=limit) as reader:
        for packet in reader:
            aggregator.add_packet(packet)
            if reader.packets_read % PROGRESS_INTERVAL == 0:
                logger.debug("Read packet number %d.", reader.packets_read)
    logger.info(
        "Read %d IPv4 packets from %s into %d flows",
        aggregator.fragment_count,
        pcap_path,
        len(aggregator),
    )
    return aggregator.records()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level))

    if args.count is not None and not 0 < args.count <= MAX_PACKET_COUNT:
        parser.error(f"--count must be between 1 and {MAX_PACKET_COUNT}.")
    if args.timeout is not None and args.timeout <= 0:
        parser.error("--timeout must be greater than 0 seconds.")
    if args.pcap is not None and not args.device_ip:
        parser.error("--device-ip is required when reading a PCAP file.")
    if args.pcap is not None and (args.bpf_filter is not None or args.timeout is not None):
        parser.error("--filter and --timeout only apply to live capture with --interface.")

    try:
        if args.pcap is not None:
            flows = read_pcap(args.pcap, args.device_ip, args.count)
        else:
            flows = capture_live(
                args.interface,
                args.device_ip,
                args.count or DEFAULT_LIVE_COUNT,
                bpf_filter=args.bpf_filter,
                timeout=args.timeout,
            )
    except (FileNotFoundError, LookupError, RuntimeError) as exc:
        logger.error("%s", exc)
        return 1
    except Exception:  # pragma: no cover - unexpected runtime failures
        logger.exception("Packet capture failed")
        return 1

    try:
        written = FlowTableWriter().write(flows, args.output)
    except OSError as exc:
        logger.error("Failed to write flow table %s: %s", args.output, exc)
        return 1

    logger.info("Finished: flows=%d, output=%s", written, args.output)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
