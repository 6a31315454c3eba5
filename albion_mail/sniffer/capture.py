"""
Albion Mail — Packet Sniffer

Captures UDP traffic with scapy and hands each datagram to callbacks as a
RawDatagram. Works live on an interface or offline from a pcap file.
Requires libpcap/Npcap + root/admin privileges for live capture.
"""

from __future__ import annotations

import logging
import struct
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable

from scapy.all import IP, UDP, Ether, get_if_list, sniff
from scapy.error import Scapy_Exception

log = logging.getLogger(__name__)

DEFAULT_BPF_FILTER = "udp"

SLL_HEADER_SIZE = 16
SLL_PROTOCOL_OFFSET = 14
ETHERTYPE_IPV4 = 0x0800
UDP_HEADER_SIZE = 8


class LinkType(IntEnum):
    """pcap DLT values for the link layers we can unwrap."""
    ETHERNET = 1
    LINUX_SLL = 113


class CaptureError(Exception):
    """Capture could not be started (no interfaces, no privileges, ...)."""


@dataclass(frozen=True)
class RawDatagram:
    """A captured UDP datagram with its addressing metadata."""
    timestamp: float
    src_ip: str
    dst_ip: str
    src_port: int
    dst_port: int
    payload: bytes

    @property
    def size(self) -> int:
        return len(self.payload)

    @property
    def hex_dump(self) -> str:
        return self.payload.hex()

    @property
    def readable_ascii(self) -> str:
        """Payload with non-printable bytes shown as '.'."""
        return "".join(chr(b) if 32 <= b <= 126 else "." for b in self.payload)

    @property
    def pretty_hex(self) -> str:
        """16-byte wide hex dump with ASCII."""
        lines = []
        data = self.payload
        for i in range(0, len(data), 16):
            chunk = data[i:i+16]
            hex_part = " ".join(f"{b:02x}" for b in chunk)
            ascii_part = "".join(chr(b) if 32 <= b < 127 else "." for b in chunk)
            lines.append(f"  {i:04x}  {hex_part:<48s}  {ascii_part}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "src": f"{self.src_ip}:{self.src_port}",
            "dst": f"{self.dst_ip}:{self.dst_port}",
            "size": self.size,
            "payload_hex": self.hex_dump,
        }

    @classmethod
    def from_dict(cls, data: dict) -> RawDatagram:
        src_ip, src_port = data["src"].rsplit(":", 1)
        dst_ip, dst_port = data["dst"].rsplit(":", 1)
        payload_hex = data.get("payload_hex") or ""
        return cls(
            timestamp=data.get("timestamp", 0.0),
            src_ip=src_ip,
            dst_ip=dst_ip,
            src_port=int(src_port),
            dst_port=int(dst_port),
            payload=bytes.fromhex(payload_hex),
        )

    def __repr__(self) -> str:
        return (
            f"[UDP] {self.src_ip}:{self.src_port} "
            f"→ {self.dst_ip}:{self.dst_port} "
            f"({self.size} bytes)"
        )


def _datagram_from_ip(ip_layer, timestamp: float) -> RawDatagram | None:
    if not ip_layer.haslayer(UDP):
        return None
    udp_layer = ip_layer[UDP]
    payload = bytes(udp_layer.payload)
    # Trim link-layer padding past the UDP length field.
    if udp_layer.len is not None and udp_layer.len >= UDP_HEADER_SIZE:
        payload = payload[:udp_layer.len - UDP_HEADER_SIZE]
    if not payload:
        return None
    return RawDatagram(
        timestamp=timestamp,
        src_ip=ip_layer.src,
        dst_ip=ip_layer.dst,
        src_port=udp_layer.sport,
        dst_port=udp_layer.dport,
        payload=payload,
    )


def extract_datagram(
    frame: bytes,
    link_type: int,
    timestamp: float | None = None,
) -> RawDatagram | None:
    """Unwrap an Ethernet or Linux cooked-capture frame down to its UDP payload.

    Returns None for anything that is not IPv4/UDP with a non-empty payload.
    """
    ts = time.time() if timestamp is None else timestamp
    try:
        if link_type == LinkType.ETHERNET:
            pkt = Ether(bytes(frame))
            if not pkt.haslayer(IP):
                return None
            return _datagram_from_ip(pkt[IP], ts)

        if link_type == LinkType.LINUX_SLL:
            if len(frame) < SLL_HEADER_SIZE:
                return None
            (protocol,) = struct.unpack_from(">H", frame, SLL_PROTOCOL_OFFSET)
            if protocol != ETHERTYPE_IPV4:
                return None
            return _datagram_from_ip(IP(bytes(frame[SLL_HEADER_SIZE:])), ts)
    except (struct.error, Scapy_Exception, ValueError, TypeError, IndexError) as e:
        log.debug("Dropping undecodable frame (%d bytes): %s", len(frame), e)
        return None

    log.debug("Unsupported link type %s", link_type)
    return None


def list_interfaces() -> list[str]:
    """Names of the interfaces scapy can capture on."""
    try:
        ifaces = get_if_list()
    except (OSError, Scapy_Exception) as e:
        raise CaptureError(f"Cannot enumerate network interfaces: {e}") from e
    if not ifaces:
        raise CaptureError(
            "No network devices found. Make sure libpcap/Npcap is installed "
            "and run with root/admin privileges."
        )
    return ifaces


DatagramCallback = Callable[[RawDatagram], None]


class MailSniffer:
    """Capture UDP datagrams and dispatch them to callbacks."""

    def __init__(
        self,
        iface: str | None = None,
        bpf_filter: str = DEFAULT_BPF_FILTER,
        offline: str | None = None,
    ):
        self.iface = iface
        self.bpf_filter = bpf_filter
        self.offline = offline
        self.callbacks: list[DatagramCallback] = []
        self.packet_count = 0
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def on_packet(self, callback: DatagramCallback) -> None:
        """Register a callback for each captured UDP datagram."""
        self.callbacks.append(callback)

    def _process_packet(self, raw_pkt) -> None:
        """Convert scapy packet to RawDatagram and dispatch."""
        self.packet_count += 1
        if not raw_pkt.haslayer(IP):
            return

        ts = float(getattr(raw_pkt, "time", 0) or time.time())
        datagram = _datagram_from_ip(raw_pkt[IP], ts)
        if datagram is None:
            return

        for cb in self.callbacks:
            try:
                cb(datagram)
            except Exception:
                log.exception("Callback error")

    def _should_stop(self, _pkt) -> bool:
        return not self._running

    def start(self, count: int = 0, timeout: int | None = None) -> None:
        """Start capturing. count=0 means infinite. Blocks until done."""
        source = f"file {self.offline}" if self.offline else f"interface {self.iface or 'auto'}"
        log.info("Sniffer starting on %s (filter: %s)", source, self.bpf_filter)

        kwargs = dict(
            prn=self._process_packet,
            count=count,
            timeout=timeout,
            store=False,
            stop_filter=self._should_stop,
        )
        if self.offline:
            # BPF on offline captures needs tcpdump; layer checks do the filtering.
            kwargs["offline"] = self.offline
        else:
            kwargs["iface"] = self.iface
            kwargs["filter"] = self.bpf_filter

        self._running = True
        try:
            sniff(**kwargs)
        except KeyboardInterrupt:
            log.info("Stopped by user")
        except PermissionError as e:
            raise CaptureError(
                f"Insufficient privileges to capture on {source}: {e}"
            ) from e
        except (OSError, Scapy_Exception) as e:
            raise CaptureError(f"Capture failed on {source}: {e}") from e
        finally:
            self._running = False

    def stop(self) -> None:
        """Ask a running capture to stop after the next packet."""
        self._running = False
