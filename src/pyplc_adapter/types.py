"""Core data model: device types, parsed addresses, frames, server requests and session state."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class DataMode(str, Enum):
    """Whether a device family or a request addresses single bits or 16-bit words."""

    BIT = "bit"
    WORD = "word"


class Function(str, Enum):
    """Logical operation carried by a frame, independent of its wire encoding."""

    READ = "read"
    WRITE = "write"
    RUN = "run"
    STOP = "stop"
    UNKNOWN = "unknown"


class ServerFault(str, Enum):
    """Well-formed but unserviceable request; mapped to a protocol status by each codec."""

    OUT_OF_RANGE = "out_of_range"
    TOO_MANY_POINTS = "too_many_points"
    UNSUPPORTED_DEVICE = "unsupported_device"
    WRITE_DISABLED = "write_disabled"
    UNSUPPORTED_COMMAND = "unsupported_command"
    STATION_MISMATCH = "station_mismatch"


class ParseFailure(str, Enum):
    """Why an address string was rejected."""

    UNKNOWN_PREFIX = "unknown_prefix"
    MALFORMED_NUMERAL = "malformed_numeral"
    OUT_OF_RANGE = "out_of_range"
    BAD_BIT_INDEX = "bad_bit_index"


@dataclass(frozen=True)
class DeviceType:
    """One register family of a controller: prefix, numeric code(s) and numeral base."""

    prefix: str
    code: int
    mode: DataMode
    base: int = 10
    ascii_code: str | None = None
    bit_code: int | None = None
    octal_hint: bool = False

    def __post_init__(self) -> None:
        if not self.prefix:
            raise ValueError("prefix must not be empty")
        if self.base not in (8, 10, 16, 100):
            raise ValueError(f"base must be 8, 10, 16 or 100, got {self.base}")
        if self.code < 0:
            raise ValueError(f"code must be >= 0, got {self.code}")

    @property
    def is_bit(self) -> bool:
        return self.mode == DataMode.BIT


@dataclass(frozen=True)
class AddressSpec:
    """A parsed device address. Built per call and discarded once the frame exists."""

    device: DeviceType
    offset: int
    bit_index: int | None = None
    params: dict[str, int] = field(default_factory=dict)

    def param(self, name: str, default: int | None = None) -> int | None:
        return self.params.get(name, default)

    def advanced(self, offset: int, bit_index: int | None = None) -> "AddressSpec":
        return replace(self, offset=offset, bit_index=bit_index)


@dataclass(frozen=True)
class FrameLimits:
    """Maximum points per frame, per operation and data mode."""

    read_words: int
    read_bits: int
    write_words: int
    write_bits: int

    def read_ceiling(self, is_bit: bool) -> int:
        return self.read_bits if is_bit else self.read_words

    def write_ceiling(self, is_bit: bool) -> int:
        return self.write_bits if is_bit else self.write_words


@dataclass(frozen=True)
class CommandFrame:
    """One encoded request ready to go on the wire, plus what is needed to decode its reply."""

    function: Function
    spec: AddressSpec
    length: int
    is_bit: bool
    data: bytes


@dataclass(frozen=True)
class ResponseFrame:
    """Decoded reply: status, raw payload bytes and, for bit reads, the unpacked values."""

    status: int
    payload: bytes
    raw_length: int
    values: list[bool] | None = None


@dataclass
class ServerRequest:
    """Inbound request as seen by the server after decoding."""

    function: Function
    device_code: int = 0
    is_bit: bool = False
    start: int = 0
    length: int = 0
    payload: bytes = b""
    values: list[bool] | None = None
    station: int | None = None
    context: dict[str, Any] = field(default_factory=dict)


@dataclass
class Reply:
    """Outcome of a dispatch handler, turned into a response frame by the codec."""

    status: int = 0
    payload: bytes = b""
    values: list[bool] | None = None


@dataclass
class Session:
    """
    Per-connection protocol state owned by one client.

    Defaults match the usual out-of-the-box controller settings; handshake
    replies may overwrite the node addresses.
    """

    station: int = 0
    network: int = 0
    plc_number: int = 0xFF
    dna: int = 0x00
    da1: int = 0x00
    da2: int = 0x00
    sna: int = 0x00
    sa1: int = 0x00
    sa2: int = 0x00
    sequence: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def next_sequence(self) -> int:
        """Advance and return the 8-bit message counter."""
        self.sequence = (self.sequence + 1) & 0xFF
        return self.sequence
