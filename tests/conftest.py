"""Shared fixtures for Albion Mail tests."""

import struct

import pytest
from albion_mail.sniffer.capture import RawDatagram


def _datagram(payload: bytes, src_port: int = 5055, src_ip: str = "5.45.187.20",
              timestamp: float = 1700000000.0) -> RawDatagram:
    return RawDatagram(
        timestamp=timestamp,
        src_ip=src_ip,
        dst_ip="192.168.1.100",
        src_port=src_port,
        dst_port=54321,
        payload=payload,
    )


@pytest.fixture
def mail_datagram() -> RawDatagram:
    """Server→client datagram with one regular-market listing (has location)."""
    return _datagram(b"\x00\x01\x00\x01" + b"3|T4_PLANKS|250|80|200" + b"\x00\x00")


@pytest.fixture
def black_market_datagram() -> RawDatagram:
    """Datagram with two black-market listings (no location field)."""
    return _datagram(
        b"\x12\x00mail\x00" + b"5|T4_BAG|100|50" + b"\x00" + b"2|T5_MAIN_SWORD@2|900|450" + b"\x00",
        timestamp=1700000010.0,
    )


@pytest.fixture
def generic_datagram() -> RawDatagram:
    """Photon frame carrying an event with a small parameter dictionary."""
    # event 4, code 1, dict<byte, int> {1: 42}
    message = bytes([4, 1, 68, 3, 8]) + struct.pack(">H", 1) + bytes([1]) + struct.pack(">i", 42)
    command = struct.pack(">BBBBII", 6, 0, 0, 0, 12 + len(message), 1) + message
    frame = struct.pack(">HBBII", 7, 0, 1, 123456, 0xDEADBEEF) + command
    return _datagram(frame, timestamp=1700000020.0)


@pytest.fixture
def noise_datagram() -> RawDatagram:
    """Unrelated UDP traffic (DNS-like), not from a game port or server."""
    return RawDatagram(
        timestamp=1700000030.0,
        src_ip="8.8.8.8",
        dst_ip="192.168.1.100",
        src_port=53,
        dst_port=40000,
        payload=b"\xab\xcd\x81\x80\x00\x01\x00\x01\x00\x00\x00\x00" + b"1|A|2|3",
    )
