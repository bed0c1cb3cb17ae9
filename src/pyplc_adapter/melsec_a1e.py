"""MELSEC A1E frame codecs (binary and ASCII) for A-series compatible Ethernet modules."""

import logging
from typing import Sequence

from .codec import (
    Encoding,
    FrameCodec,
    ascii_to_bools,
    ascii_to_words,
    bools_to_ascii,
    hex_field,
    pack_nibbles,
    unpack_nibbles,
    words_to_ascii,
)
from .errors import FrameFormatError, ProtocolStatusError, ShortResponse
from .melsec_mc import describe_melsec_status
from .types import (
    AddressSpec,
    CommandFrame,
    FrameLimits,
    Function,
    Reply,
    ResponseFrame,
    ServerFault,
    ServerRequest,
    Session,
)

logger = logging.getLogger(__name__)

BIT_READ = 0x00
WORD_READ = 0x01
BIT_WRITE = 0x02
WORD_WRITE = 0x03

# end code followed by an abnormal code byte
ABNORMAL_END = 0x5B

_SUBTITLES = {
    BIT_READ: (Function.READ, True),
    WORD_READ: (Function.READ, False),
    BIT_WRITE: (Function.WRITE, True),
    WORD_WRITE: (Function.WRITE, False),
}


def _subtitle(function: Function, is_bit: bool) -> int:
    if function == Function.READ:
        return BIT_READ if is_bit else WORD_READ
    return BIT_WRITE if is_bit else WORD_WRITE


def _points(low: int, high: int = 0) -> int:
    """Point count from the length field; a zero low byte means 256."""
    n = low | (high << 8)
    return n if n else 256


class _MelsecA1EBase(FrameCodec):
    profile = "melsec_a1e"
    limits = FrameLimits(read_words=256, read_bits=256, write_words=256, write_bits=160)
    default_port = 5000
    max_offset = 0x7FFFFFFF
    server_devices = ("X", "Y", "M", "S", "B", "D", "W", "R")
    fault_status = {
        ServerFault.UNSUPPORTED_DEVICE: 0x10,
        ServerFault.UNSUPPORTED_COMMAND: 0x10,
        ServerFault.OUT_OF_RANGE: 0x12,
        ServerFault.TOO_MANY_POINTS: 0x12,
        ServerFault.WRITE_DISABLED: 0x18,
        ServerFault.STATION_MISMATCH: 0x10,
    }

    def plc_number(self, spec: AddressSpec, session: Session) -> int:
        value = spec.param("s")
        return session.plc_number if value is None else value

    def describe_status(self, code: int) -> str:
        return describe_melsec_status(code)


class MelsecA1EBinaryCodec(_MelsecA1EBase):
    """
    A1E binary frames: 12-byte request head (subtitle, PLC number, watchdog,
    start address, device code, point count) and a 2-byte response head.
    """

    name = "melsec-a1e"
    encoding = Encoding.BINARY
    response_head_length = 2
    request_head_length = 12

    def _head(self, subtitle: int, spec: AddressSpec, length: int, session: Session) -> bytes:
        return (
            bytes([subtitle, self.plc_number(spec, session) & 0xFF, 0x0A, 0x00])
            + spec.offset.to_bytes(4, "little")
            + spec.device.code.to_bytes(2, "little")
            + bytes([length % 256, 0x00])
        )

    def build_read(self, spec: AddressSpec, length: int, is_bit: bool, session: Session) -> bytes:
        return self._head(_subtitle(Function.READ, is_bit), spec, length, session)

    def build_write(self, spec: AddressSpec, values: bytes | Sequence[bool], is_bit: bool, session: Session) -> bytes:
        if is_bit:
            return self._head(BIT_WRITE, spec, len(values), session) + pack_nibbles(values)
        return self._head(WORD_WRITE, spec, len(values) // 2, session) + bytes(values)

    def content_length(self, head: bytes, sent: bytes) -> int:
        if head[1] == ABNORMAL_END:
            return 2
        if head[1] != 0:
            return 0
        n = _points(sent[10], sent[11])
        if sent[0] == BIT_READ:
            return (n + 1) // 2
        if sent[0] == WORD_READ:
            return n * 2
        return 0

    def decode_response(self, raw: bytes, frame: CommandFrame) -> ResponseFrame:
        if len(raw) < 2:
            raise ShortResponse(2, len(raw))
        if raw[0] != frame.data[0] + 0x80:
            raise FrameFormatError(f"Unexpected subtitle 0x{raw[0]:02X}", raw=raw)
        end = raw[1]
        if end == ABNORMAL_END:
            code = raw[2] if len(raw) > 2 else end
            raise ProtocolStatusError(code, self.describe_status(code))
        if end != 0:
            raise ProtocolStatusError(end, self.describe_status(end))
        payload = raw[2:]
        if frame.function == Function.WRITE:
            return ResponseFrame(status=0, payload=b"", raw_length=len(raw))
        if frame.is_bit:
            need = (frame.length + 1) // 2
            if len(payload) < need:
                raise ShortResponse(need + 2, len(raw))
            return ResponseFrame(0, payload[:need], len(raw), unpack_nibbles(payload, frame.length))
        need = frame.length * 2
        if len(payload) < need:
            raise ShortResponse(need + 2, len(raw))
        return ResponseFrame(status=0, payload=payload[:need], raw_length=len(raw))

    # ------------------------------------------------------------------ server

    def request_content_length(self, head: bytes) -> int:
        n = _points(head[10], head[11])
        if head[0] == BIT_WRITE:
            return (n + 1) // 2
        if head[0] == WORD_WRITE:
            return n * 2
        return 0

    def decode_request(self, raw: bytes) -> ServerRequest:
        if len(raw) < 12:
            raise ShortResponse(12, len(raw))
        if raw[0] not in _SUBTITLES:
            raise FrameFormatError(f"Unknown A1E subtitle 0x{raw[0]:02X}", raw=raw)
        function, is_bit = _SUBTITLES[raw[0]]
        length = _points(raw[10], raw[11])
        request = ServerRequest(
            function=function,
            device_code=int.from_bytes(raw[8:10], "little"),
            is_bit=is_bit,
            start=int.from_bytes(raw[4:8], "little"),
            length=length,
            station=raw[1],
            context={"subtitle": raw[0]},
        )
        if function == Function.WRITE:
            body = raw[12:]
            if is_bit:
                if len(body) < (length + 1) // 2:
                    raise ShortResponse(12 + (length + 1) // 2, len(raw))
                request.values = unpack_nibbles(body, length)
            else:
                if len(body) < length * 2:
                    raise ShortResponse(12 + length * 2, len(raw))
                request.payload = body[: length * 2]
        return request

    def encode_response(self, request: ServerRequest, reply: Reply) -> bytes:
        sub = request.context["subtitle"] + 0x80
        if reply.status:
            return bytes([sub, ABNORMAL_END, reply.status & 0xFF, 0x00])
        if request.function == Function.READ and request.is_bit:
            return bytes([sub, 0x00]) + pack_nibbles(reply.values or [])
        return bytes([sub, 0x00]) + reply.payload


class MelsecA1EAsciiCodec(_MelsecA1EBase):
    """A1E ASCII frames: every binary field rendered as hex text, doubling the head to 24 characters."""

    name = "melsec-a1e-ascii"
    encoding = Encoding.ASCII
    response_head_length = 4
    request_head_length = 24

    def _head(self, subtitle: int, spec: AddressSpec, length: int, session: Session) -> bytes:
        text = (
            f"{subtitle:02X}{self.plc_number(spec, session) & 0xFF:02X}000A"
            f"{spec.device.code:04X}{spec.offset:08X}{length % 256:02X}00"
        )
        return text.encode("ascii")

    def build_read(self, spec: AddressSpec, length: int, is_bit: bool, session: Session) -> bytes:
        return self._head(_subtitle(Function.READ, is_bit), spec, length, session)

    def build_write(self, spec: AddressSpec, values: bytes | Sequence[bool], is_bit: bool, session: Session) -> bytes:
        if is_bit:
            return self._head(BIT_WRITE, spec, len(values), session) + bools_to_ascii(values, pad_even=True)
        return self._head(WORD_WRITE, spec, len(values) // 2, session) + words_to_ascii(bytes(values))

    def content_length(self, head: bytes, sent: bytes) -> int:
        status = head[2:4].upper()
        if status == b"5B":
            return 4
        if status != b"00":
            return 0
        sub = hex_field(sent, 0, 2)
        n = _points(hex_field(sent, 20, 2))
        if sub == BIT_READ:
            return n + n % 2
        if sub == WORD_READ:
            return n * 4
        return 0

    def decode_response(self, raw: bytes, frame: CommandFrame) -> ResponseFrame:
        if len(raw) < 4:
            raise ShortResponse(4, len(raw))
        if hex_field(raw, 0, 2) != hex_field(frame.data, 0, 2) + 0x80:
            raise FrameFormatError(f"Unexpected subtitle {raw[:2]!r}", raw=raw)
        end = hex_field(raw, 2, 2)
        if end == ABNORMAL_END:
            code = hex_field(raw, 4, 2) if len(raw) >= 6 else end
            raise ProtocolStatusError(code, self.describe_status(code))
        if end != 0:
            raise ProtocolStatusError(end, self.describe_status(end))
        body = raw[4:]
        if frame.function == Function.WRITE:
            return ResponseFrame(status=0, payload=b"", raw_length=len(raw))
        if frame.is_bit:
            values = ascii_to_bools(body, frame.length)
            return ResponseFrame(0, body[: frame.length], len(raw), values)
        need = frame.length * 4
        if len(body) < need:
            raise ShortResponse(need + 4, len(raw))
        return ResponseFrame(status=0, payload=ascii_to_words(body[:need]), raw_length=len(raw))

    # ------------------------------------------------------------------ server

    def request_content_length(self, head: bytes) -> int:
        sub = hex_field(head, 0, 2)
        n = _points(hex_field(head, 20, 2))
        if sub == BIT_WRITE:
            return n + n % 2
        if sub == WORD_WRITE:
            return n * 4
        return 0

    def decode_request(self, raw: bytes) -> ServerRequest:
        if len(raw) < 24:
            raise ShortResponse(24, len(raw))
        sub = hex_field(raw, 0, 2)
        if sub not in _SUBTITLES:
            raise FrameFormatError(f"Unknown A1E subtitle 0x{sub:02X}", raw=raw)
        function, is_bit = _SUBTITLES[sub]
        length = _points(hex_field(raw, 20, 2))
        request = ServerRequest(
            function=function,
            device_code=hex_field(raw, 8, 4),
            is_bit=is_bit,
            start=hex_field(raw, 12, 8),
            length=length,
            station=hex_field(raw, 2, 2),
            context={"subtitle": sub},
        )
        if function == Function.WRITE:
            body = raw[24:]
            if is_bit:
                request.values = ascii_to_bools(body, length)
            else:
                if len(body) < length * 4:
                    raise ShortResponse(24 + length * 4, len(raw))
                request.payload = ascii_to_words(body[: length * 4])
        return request

    def encode_response(self, request: ServerRequest, reply: Reply) -> bytes:
        sub = request.context["subtitle"] + 0x80
        if reply.status:
            return f"{sub:02X}5B{reply.status & 0xFF:02X}00".encode("ascii")
        head = f"{sub:02X}00".encode("ascii")
        if request.function == Function.READ and request.is_bit:
            return head + bools_to_ascii(reply.values or [], pad_even=True)
        return head + words_to_ascii(reply.payload)
