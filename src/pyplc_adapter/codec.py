"""
FrameCodec: the per-protocol strategy shared by TransactionClient and DeviceServer.

A codec turns an AddressSpec plus an operation into one or more request frames,
decodes replies, and in the server direction decodes requests and encodes
replies. Codecs hold configuration only and are safe to share between
connections.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Sequence

from .address import AddressResolver, DeviceTable
from .errors import AddressParseError, FrameFormatError, LengthExceededError
from .types import (
    AddressSpec,
    CommandFrame,
    DeviceType,
    FrameLimits,
    Function,
    ParseFailure,
    Reply,
    ResponseFrame,
    ServerFault,
    ServerRequest,
    Session,
)

logger = logging.getLogger(__name__)


class Encoding(str, Enum):
    BINARY = "binary"
    ASCII = "ascii"


# ============================================================================
# Packing helpers
# ============================================================================


def split_points(length: int, ceiling: int) -> list[int]:
    """Split ``length`` into the fewest chunks no larger than ``ceiling``."""
    chunks: list[int] = []
    remaining = length
    while remaining > 0:
        n = min(remaining, ceiling)
        chunks.append(n)
        remaining -= n
    return chunks


def pack_nibbles(values: Sequence[bool]) -> bytes:
    """Two points per byte: even point in the high nibble (0x10), odd point in the low (0x01)."""
    out = bytearray((len(values) + 1) // 2)
    for i, v in enumerate(values):
        if v:
            out[i // 2] |= 0x10 if i % 2 == 0 else 0x01
    return bytes(out)


def unpack_nibbles(data: bytes, count: int) -> list[bool]:
    values: list[bool] = []
    for i in range(count):
        b = data[i // 2]
        values.append(bool(b & 0x10) if i % 2 == 0 else bool(b & 0x01))
    return values


def pack_bits(values: Sequence[bool]) -> bytes:
    """One bit per point, least significant bit first."""
    out = bytearray((len(values) + 7) // 8)
    for i, v in enumerate(values):
        if v:
            out[i // 8] |= 1 << (i % 8)
    return bytes(out)


def unpack_bits(data: bytes, count: int) -> list[bool]:
    return [bool(data[i // 8] & (1 << (i % 8))) for i in range(count)]


def bools_to_ascii(values: Sequence[bool], pad_even: bool = False) -> bytes:
    text = bytes(0x31 if v else 0x30 for v in values)
    if pad_even and len(text) % 2:
        text += b"0"
    return text


def ascii_to_bools(text: bytes, count: int) -> list[bool]:
    if len(text) < count:
        raise FrameFormatError(f"Expected {count} bit characters, got {len(text)}", raw=text)
    out: list[bool] = []
    for c in text[:count]:
        if c not in (0x30, 0x31):
            raise FrameFormatError(f"Invalid bit character {chr(c)!r}", raw=text)
        out.append(c == 0x31)
    return out


def words_to_ascii(data: bytes) -> bytes:
    """Little-endian 16-bit words -> 4 uppercase hex characters each, most significant first."""
    return "".join(f"{data[i + 1]:02X}{data[i]:02X}" for i in range(0, len(data) - 1, 2)).encode("ascii")


def ascii_to_words(text: bytes) -> bytes:
    if len(text) % 4:
        raise FrameFormatError(f"Word text length {len(text)} is not a multiple of 4", raw=text)
    out = bytearray()
    try:
        for i in range(0, len(text), 4):
            out += int(text[i:i + 4], 16).to_bytes(2, "little")
    except ValueError:
        raise FrameFormatError("Word text is not hexadecimal", raw=text) from None
    return bytes(out)


def hex_field(text: bytes, start: int, width: int) -> int:
    """Integer from a fixed-width hex text field."""
    field = text[start:start + width]
    if len(field) != width:
        raise FrameFormatError(f"Missing hex field at {start}", raw=text)
    try:
        return int(field, 16)
    except ValueError:
        raise FrameFormatError(f"Field {field!r} at {start} is not hexadecimal", raw=text) from None


def render_frame(data: bytes, encoding: Encoding) -> str:
    """Hex dump for binary frames, escaped text for ASCII frames."""
    if encoding == Encoding.BINARY:
        return data.hex(" ").upper()
    return "".join(chr(b) if 0x20 <= b < 0x7F else f"\\x{b:02X}" for b in data)


# ============================================================================
# Codec base
# ============================================================================


class FrameCodec(ABC):
    """Base class for protocol codecs. Subclasses fill in the class attributes and frame layouts."""

    name: str = ""
    profile: str = ""
    encoding: Encoding = Encoding.BINARY
    limits: FrameLimits = FrameLimits(read_words=1, read_bits=1, write_words=1, write_bits=1)
    server_limits: FrameLimits | None = None
    default_port: int = 0
    max_offset: int = 0xFFFFFF
    allow_bit_index: bool = False

    # 32-bit values: byte order of each word, and whether the low word comes first
    word_order: str = "little"

    # response framing: terminator scan, or a fixed head whose fields give the rest
    terminator: bytes | None = None
    response_head_length: int = 0
    request_head_length: int = 0
    datagram: bool = False

    requires_handshake: bool = False
    checks_station: bool = False
    supports_server: bool = True
    server_devices: tuple[str, ...] = ()
    fault_status: dict[ServerFault, int] = {}

    def __init__(self, table: DeviceTable | None = None) -> None:
        self.table = table if table is not None else DeviceTable(self.profile)
        self.resolver = AddressResolver(
            self.table, max_offset=self.max_offset, allow_bit_index=self.allow_bit_index
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    # ------------------------------------------------------------------ client

    def parse_address(self, address: str) -> AddressSpec:
        spec = self.resolver.parse(address)
        limit = self.offset_limit(spec.device)
        if spec.offset > limit:
            raise AddressParseError(
                address, ParseFailure.OUT_OF_RANGE, f"Offset {spec.offset} exceeds maximum {limit}"
            )
        return spec

    def offset_limit(self, device: DeviceType) -> int:
        """Highest device number the frame's address field can carry for ``device``."""
        return self.max_offset

    def last_offset(self, spec: AddressSpec, length: int, is_bit: bool) -> int:
        """Device number of the last point touched by ``length`` points from ``spec``."""
        if spec.device.is_bit and not is_bit:
            return spec.offset + length * 16 - 1
        return self.advance(spec, length - 1, is_bit).offset

    def check_span(self, spec: AddressSpec, length: int, is_bit: bool, ceiling: int) -> None:
        limit = self.offset_limit(spec.device)
        last = self.last_offset(spec, length, is_bit)
        if last > limit:
            raise LengthExceededError(
                length,
                ceiling,
                f"{length} points from {spec.device.prefix}{spec.offset} run past maximum offset {limit}",
            )

    def station_of(self, spec: AddressSpec, session: Session) -> int:
        """Station from an ``s=`` parameter, falling back to the session default."""
        station = spec.param("s")
        return session.station if station is None else station

    def encode_read(self, spec: AddressSpec, length: int, *, is_bit: bool, session: Session) -> list[CommandFrame]:
        """Build the ordered request frames for a read, splitting at the protocol ceiling."""
        ceiling = self.limits.read_ceiling(is_bit)
        if length < 1:
            raise LengthExceededError(length, ceiling, "Point count must be at least 1")
        self.check_span(spec, length, is_bit, ceiling)
        frames: list[CommandFrame] = []
        done = 0
        for count in split_points(length, ceiling):
            sub = self.advance(spec, done, is_bit)
            data = self.build_read(sub, count, is_bit, session)
            frames.append(CommandFrame(Function.READ, sub, count, is_bit, data))
            done += count
        if len(frames) > 1:
            logger.debug("%s read of %d points split into %d frames", self.name, length, len(frames))
        return frames

    def encode_write(self, spec: AddressSpec, values: bytes | Sequence[bool], *, session: Session) -> CommandFrame:
        """Build the single request frame for a write; bytes mean words, a bool sequence means bits."""
        is_bit = not isinstance(values, (bytes, bytearray))
        if is_bit:
            count = len(values)
        else:
            if len(values) % 2:
                raise FrameFormatError("Word payload must contain an even number of bytes")
            count = len(values) // 2
        ceiling = self.limits.write_ceiling(is_bit)
        if count < 1 or count > ceiling:
            raise LengthExceededError(count, ceiling)
        self.check_span(spec, count, is_bit, ceiling)
        data = self.build_write(spec, values, is_bit, session)
        return CommandFrame(Function.WRITE, spec, count, is_bit, data)

    def advance(self, spec: AddressSpec, points: int, is_bit: bool) -> AddressSpec:
        """Start address of a sub-frame ``points`` into a split read."""
        if points == 0:
            return spec
        step = points * 16 if (spec.device.is_bit and not is_bit) else points
        return spec.advanced(spec.offset + step, spec.bit_index)

    @abstractmethod
    def build_read(self, spec: AddressSpec, length: int, is_bit: bool, session: Session) -> bytes: ...

    @abstractmethod
    def build_write(
        self, spec: AddressSpec, values: bytes | Sequence[bool], is_bit: bool, session: Session
    ) -> bytes: ...

    @abstractmethod
    def decode_response(self, raw: bytes, frame: CommandFrame) -> ResponseFrame:
        """Validate and strip a reply; raise a PlcAdapterError on any problem."""

    def content_length(self, head: bytes, sent: bytes) -> int:
        """Bytes still to read after a ``response_head_length`` head."""
        return 0

    def handshake_request(self, session: Session) -> bytes | None:
        return None

    def apply_handshake(self, reply: bytes, session: Session) -> None:
        pass

    def describe_status(self, code: int) -> str:
        return "Unknown error"

    # ------------------------------------------------------------------ server

    def request_content_length(self, head: bytes) -> int:
        """Bytes still to read after a ``request_head_length`` request head."""
        return 0

    def server_handshake(self, raw: bytes) -> bytes | None:
        """Reply to a connection-level handshake frame, or None if ``raw`` is a normal request."""
        return None

    def decode_request(self, raw: bytes) -> ServerRequest:
        raise NotImplementedError(f"{self.name} has no server direction")

    def encode_response(self, request: ServerRequest, reply: Reply) -> bytes:
        raise NotImplementedError(f"{self.name} has no server direction")

    def server_ceiling(self, function: Function, is_bit: bool) -> int:
        limits = self.server_limits or self.limits
        if function == Function.WRITE:
            return limits.write_ceiling(is_bit)
        return limits.read_ceiling(is_bit)

    def fault(self, fault: ServerFault) -> Reply:
        return Reply(status=self.fault_status[fault])

    def render(self, data: bytes) -> str:
        return render_frame(data, self.encoding)
