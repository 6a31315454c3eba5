"""
Albion Mail — Photon Decoder

Decodes Albion Online UDP payloads into mail listings or generic Photon
messages. Two strategies are tried in order:

1. Raw text scan: mail bodies are embedded as plain text
   (``amount|ITEM|price|single[|location]``), so a regex over the whole
   payload finds them regardless of framing.
2. Structured frame walk: Photon header -> reliable/fragment commands ->
   message -> parameter dictionary.

The first strategy that returns a result wins. Nothing here raises on bad
input: truncated or malformed payloads decode to ``None``.
"""

from __future__ import annotations

import logging
import re
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Iterable, Union

from albion_mail.data.mail import MailItem

log = logging.getLogger(__name__)


# ---- Wire layout ----

# [peer_id:2][crc_enabled:1][command_count:1][timestamp:4][challenge:4]
PHOTON_HEADER = struct.Struct(">HBBII")
# [type:1][channel:1][flags:1][reserved:1][length:4][reliable_seq:4]
COMMAND_HEADER = struct.Struct(">BBBBII")

HEADER_SIZE = PHOTON_HEADER.size    # 12
COMMAND_SIZE = COMMAND_HEADER.size  # 12

MAIL_PATTERN = re.compile(
    r"(\d+)\|([A-Z0-9_]+(?:@\d+)?)\|(\d+)\|(\d+)(?:\|(\d+))?",
    re.ASCII,
)


class CommandType(IntEnum):
    SEND_RELIABLE = 6
    SEND_UNRELIABLE = 7


class MessageType(IntEnum):
    OPERATION_REQUEST = 2
    OPERATION_RESPONSE = 3
    EVENT = 4
    INTERNAL_OPERATION_REQUEST = 7
    INTERNAL_OPERATION_RESPONSE = 8


class TypeCode(IntEnum):
    BYTE = 3
    INTEGER = 8
    SHORT = 9
    LONG = 10
    BOOLEAN = 12
    STRING = 18
    DICTIONARY = 68


PAYLOAD_COMMANDS = frozenset({CommandType.SEND_RELIABLE, CommandType.SEND_UNRELIABLE})
DECODED_MESSAGES = frozenset({
    MessageType.OPERATION_REQUEST,
    MessageType.OPERATION_RESPONSE,
    MessageType.EVENT,
})

_MESSAGE_NAMES = {
    MessageType.OPERATION_REQUEST: "OperationRequest",
    MessageType.OPERATION_RESPONSE: "OperationResponse",
    MessageType.EVENT: "Event",
    MessageType.INTERNAL_OPERATION_REQUEST: "InternalOperationRequest",
    MessageType.INTERNAL_OPERATION_RESPONSE: "InternalOperationResponse",
}


def message_type_name(message_type: int) -> str:
    return _MESSAGE_NAMES.get(message_type, "Unknown")


# ---- Results ----

# A decoded parameter value. 64-bit integers are kept as decimal text.
Value = Union[int, str, bool, None]
Parameters = dict[str, Value]


class DecodeError(Exception):
    """Raised inside the decoder when a read runs past the buffer."""


@dataclass(frozen=True)
class MailResult:
    """A payload carrying one or more mail item listings."""
    items: list[MailItem]
    raw_matches: list[str]
    item_count: int
    parameters: Parameters = field(default_factory=dict)

    def describe(self) -> list[str]:
        """One line per item, numbered from 1."""
        return [f"[{i}] {item.describe()}" for i, item in enumerate(self.items, 1)]


@dataclass(frozen=True)
class GenericResult:
    """A structured Photon message that is not mail."""
    message_type: int
    code: int
    parameters: Parameters

    @property
    def type_name(self) -> str:
        return message_type_name(self.message_type)


DecodedResult = Union[MailResult, GenericResult, None]
Strategy = Callable[[bytes], DecodedResult]
MailPredicate = Callable[[Parameters], bool]


def never_mail(parameters: Parameters) -> bool:
    """Default mail predicate for structured messages: always rejects.

    Mail is currently detected by the raw text scan only. Pass a real
    predicate to ``PhotonDecoder(mail_predicate=...)`` to classify
    structured messages as mail.
    """
    return False


# ---- Typed value reader ----

def _unpack(fmt: str, buffer: bytes, offset: int) -> int:
    try:
        return struct.unpack_from(fmt, buffer, offset)[0]
    except struct.error as e:
        raise DecodeError(f"read {fmt} at {offset}: {e}") from None


def read_value(buffer: bytes, type_code: int, offset: int) -> tuple[Value, int]:
    """Read one typed value. Returns (value, next_offset).

    Unknown type codes yield ``None`` and skip a single byte.
    """
    if type_code == TypeCode.BYTE:
        return _unpack(">B", buffer, offset), offset + 1
    if type_code == TypeCode.INTEGER:
        return _unpack(">i", buffer, offset), offset + 4
    if type_code == TypeCode.SHORT:
        return _unpack(">h", buffer, offset), offset + 2
    if type_code == TypeCode.LONG:
        return str(_unpack(">q", buffer, offset)), offset + 8
    if type_code == TypeCode.BOOLEAN:
        return _unpack(">B", buffer, offset) != 0, offset + 1
    if type_code == TypeCode.STRING:
        length = _unpack(">H", buffer, offset)
        start = offset + 2
        text = bytes(buffer[start:start + length]).decode("utf-8", errors="replace")
        return text, start + length
    return None, offset + 1


def _key_text(value: Value) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def parse_parameters(buffer: bytes, offset: int) -> Parameters:
    """Parse a parameter set. Only dictionaries (type 68) are understood."""
    params: Parameters = {}
    if offset >= len(buffer):
        return params

    type_code = buffer[offset]
    offset += 1
    if type_code != TypeCode.DICTIONARY:
        return params

    try:
        key_type = _unpack(">B", buffer, offset)
        value_type = _unpack(">B", buffer, offset + 1)
        size = _unpack(">H", buffer, offset + 2)
    except DecodeError:
        return params
    offset += 4

    for _ in range(size):
        if offset >= len(buffer):
            break
        try:
            key, offset = read_value(buffer, key_type, offset)
            value, offset = read_value(buffer, value_type, offset)
        except DecodeError:
            break
        params[_key_text(key)] = value

    return params


# ---- Decoder ----

class PhotonDecoder:
    """Stateless decoder for Albion Online Photon payloads."""

    def __init__(
        self,
        mail_predicate: MailPredicate | None = None,
        strategies: Iterable[Strategy] | None = None,
    ):
        self.mail_predicate = mail_predicate or never_mail
        if strategies is None:
            strategies = (self.decode_raw_buffer, self.decode_frame)
        self.strategies: tuple[Strategy, ...] = tuple(strategies)

    def decode(self, payload: bytes) -> DecodedResult:
        """Run each strategy in order; the first non-None result wins."""
        for strategy in self.strategies:
            try:
                result = strategy(payload)
            except Exception as e:
                log.debug("%s failed on %d-byte payload: %s",
                          getattr(strategy, "__name__", strategy), len(payload), e)
                continue
            if result is not None:
                return result
        return None

    def decode_raw_buffer(self, payload: bytes) -> MailResult | None:
        """Scan the payload as text for ``amount|ITEM|price|single[|location]``."""
        text = bytes(payload).decode("utf-8", errors="replace")
        matches = list(MAIL_PATTERN.finditer(text))
        if not matches:
            return None

        items = [
            MailItem(
                amount=int(m.group(1)),
                item=m.group(2),
                price=int(m.group(3)),
                single=int(m.group(4)),
                black_market=m.group(5) is None,
            )
            for m in matches
        ]
        return MailResult(
            items=items,
            raw_matches=[m.group(0) for m in matches],
            item_count=len(items),
        )

    def decode_frame(self, payload: bytes) -> DecodedResult:
        """Walk the Photon header and its commands looking for a message."""
        if len(payload) < HEADER_SIZE:
            return None

        try:
            _peer_id, _crc_enabled, command_count, _timestamp, _challenge = (
                PHOTON_HEADER.unpack_from(payload, 0)
            )
        except struct.error:
            return None

        offset = HEADER_SIZE
        for _ in range(command_count):
            if offset >= len(payload) or offset + COMMAND_SIZE > len(payload):
                break

            command_type, _channel, _flags, _reserved, length, _seq = (
                COMMAND_HEADER.unpack_from(payload, offset)
            )

            if command_type in PAYLOAD_COMMANDS:
                start = offset + COMMAND_SIZE
                end = start + length - COMMAND_SIZE
                if end <= len(payload):
                    result = self.decode_photon_message(payload[start:end])
                    if result is not None:
                        return result

            offset += length

        return None

    def decode_photon_message(self, buffer: bytes) -> DecodedResult:
        """Decode ``[message_type:1][code:1][parameters...]``."""
        if len(buffer) < 3:
            return None

        message_type = buffer[0]
        if message_type not in DECODED_MESSAGES:
            return None

        code = buffer[1]
        parameters = parse_parameters(buffer, 2)

        if self.mail_predicate(parameters):
            return MailResult(items=[], raw_matches=[], item_count=0, parameters=parameters)

        return GenericResult(message_type=message_type, code=code, parameters=parameters)
