"""
Albion Mail — Frame Classifier

Decides whether a UDP datagram belongs to Albion Online.

A game port on either side is enough. A known server address is not: it
must also carry a Photon-looking header, since other UDP traffic can share
the server's address block.
"""

from __future__ import annotations

from typing import Iterable

# Photon game/lobby ports
DEFAULT_PORTS = (5055, 5056, 5057)
# Known server address prefixes (string prefix match, not CIDR)
DEFAULT_SERVER_PREFIXES = (
    "5.45.187",
    "5.188.125",
    "162.252.172",
    "54.93.199",
)

MIN_PHOTON_SIZE = 12
MAX_COMMAND_COUNT = 20


def looks_like_photon(payload: bytes) -> bool:
    """Header sanity check: crc flag is 0/1 and command count in (0, 20)."""
    if len(payload) < MIN_PHOTON_SIZE:
        return False
    crc_flag = payload[2]
    command_count = payload[3]
    return crc_flag in (0, 1) and 0 < command_count < MAX_COMMAND_COUNT


class FrameClassifier:
    """Admit/reject datagrams by port, server address and header shape."""

    def __init__(
        self,
        ports: Iterable[int] | None = None,
        server_prefixes: Iterable[str] | None = None,
    ):
        self.ports = frozenset(DEFAULT_PORTS if ports is None else ports)
        self.server_prefixes = tuple(
            DEFAULT_SERVER_PREFIXES if server_prefixes is None else server_prefixes
        )

    def port_match(self, src_port: int, dst_port: int) -> bool:
        return src_port in self.ports or dst_port in self.ports

    def ip_match(self, src_ip: str, dst_ip: str) -> bool:
        return any(
            src_ip.startswith(prefix) or dst_ip.startswith(prefix)
            for prefix in self.server_prefixes
        )

    def classify(
        self,
        src_ip: str,
        dst_ip: str,
        src_port: int,
        dst_port: int,
        payload: bytes,
    ) -> bool:
        """True if the datagram plausibly carries Albion Photon traffic."""
        try:
            if self.port_match(src_port, dst_port):
                return True
            return self.ip_match(src_ip, dst_ip) and looks_like_photon(payload)
        except (TypeError, AttributeError, IndexError):
            return False
