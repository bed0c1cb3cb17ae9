"""MELSEC MC protocol (QnA-compatible 3E frame) codecs, binary and ASCII, plus end-code descriptions."""

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
from .types import (
    AddressSpec,
    CommandFrame,
    DeviceType,
    FrameLimits,
    Function,
    Reply,
    ResponseFrame,
    ServerFault,
    ServerRequest,
    Session,
)

logger = logging.getLogger(__name__)

CMD_READ = 0x0401
CMD_WRITE = 0x1401
CMD_REMOTE_RUN = 0x1001
CMD_REMOTE_STOP = 0x1002
SUB_WORD = 0x0000
SUB_BIT = 0x0001

_COMMANDS = {
    CMD_READ: Function.READ,
    CMD_WRITE: Function.WRITE,
    CMD_REMOTE_RUN: Function.RUN,
    CMD_REMOTE_STOP: Function.STOP,
}

_MELSEC_ERRORS: dict[int, str] = {
    0x0002: 'The specified range of the "read/write" (in/out) device is incorrect.',
    0x0051: "The start address specified for random access buffer memory is outside the range of 0-6143.",
    0x0052: "The start address plus word count for random access buffer memory is outside 0-6143, "
    "or the specified word count cannot be sent in one frame.",
    0x0054: "ASCII codes that cannot be converted to binary were received while ASCII communication is selected.",
    0x0055: "A write was requested while the CPU is running and writing in RUN is not permitted.",
    0x0056: "The device specified from the outside is incorrect.",
    0x0058: "The command start address is outside the allowed range, or the device range is wrong.",
    0x0059: "The register of the extension file cannot be specified.",
    0xC04D: "The data length specified in the application domain is incorrect.",
    0xC050: "ASCII data that cannot be converted to binary was received.",
    0xC051: "The number of read/write points is outside the allowable range.",
    0xC052: "The number of read/write points is outside the allowable range.",
    0xC053: "The number of read/write points is outside the allowable range.",
    0xC054: "The number of read/write points is outside the allowable range.",
    0xC055: "The number of file data read/write points is outside the allowable range.",
    0xC056: "The read/write request exceeded the maximum address.",
    0xC057: "The length of the requested data does not match the data count of the character area.",
    0xC058: "After ASCII to binary conversion, the requested data length does not match the data count.",
    0xC059: "The designation of commands and subcommands is incorrect.",
    0xC05A: "The Ethernet module cannot read and write to the specified device.",
    0xC05B: "The Ethernet module cannot read and write to the specified device.",
    0xC05C: "The requested content is incorrect. (Request to read/write to word device in bits.)",
    0xC05D: "Monitoring registration is not performed.",
    0xC05E: "The communication time between the Ethernet module and the CPU exceeded the watchdog timer.",
    0xC05F: "The request cannot be executed on the target PLC.",
    0xC060: "The requested content is incorrect. (Incorrect data is specified for the bit device.)",
    0xC061: "The length of the requested data does not match the number of data in the character area.",
    0xC062: "Online correction is prohibited; the write request was refused.",
    0xC070: "Cannot specify the range of device memory for the target station.",
    0xC072: "The requested content is incorrect. (Request to write to word device in bit units.)",
    0xC074: "The target PLC does not execute the request. Correct the network number and PC number.",
}


def describe_melsec_status(code: int) -> str:
    """Human-readable text for a MELSEC end code."""
    return _MELSEC_ERRORS.get(code, "Unknown error, please refer to the manual for this end code.")


class _MelsecMcBase(FrameCodec):
    profile = "melsec_mc"
    default_port = 6000
    server_devices = ("X", "Y", "M", "L", "B", "D", "W", "R", "ZR")
    fault_status = {
        ServerFault.TOO_MANY_POINTS: 0xC051,
        ServerFault.OUT_OF_RANGE: 0xC056,
        ServerFault.UNSUPPORTED_DEVICE: 0xC05A,
        ServerFault.WRITE_DISABLED: 0xC062,
        ServerFault.UNSUPPORTED_COMMAND: 0xC059,
        ServerFault.STATION_MISMATCH: 0xC074,
    }

    def describe_status(self, code: int) -> str:
        return describe_melsec_status(code)

    @staticmethod
    def _function(command: int) -> Function:
        return _COMMANDS.get(command, Function.UNKNOWN)


class MelsecMcBinaryCodec(_MelsecMcBase):
    """
    3E binary frames. Request head: subheader 50 00, network, PLC number FF,
    I/O number 03FF, station, data length, watchdog. Response head D0 00 with the
    data length at offset 7 and the end code at offset 9.
    """

    name = "melsec-mc"
    encoding = Encoding.BINARY
    limits = FrameLimits(read_words=950, read_bits=7168, write_words=960, write_bits=7168)
    server_limits = FrameLimits(read_words=960, read_bits=7168, write_words=960, write_bits=7168)
    response_head_length = 9
    request_head_length = 9

    def _wrap(self, core: bytes, spec: AddressSpec, session: Session) -> bytes:
        station = self.station_of(spec, session)
        return (
            bytes([0x50, 0x00, session.network & 0xFF, 0xFF, 0xFF, 0x03, station & 0xFF])
            + (len(core) + 2).to_bytes(2, "little")
            + b"\x0a\x00"
            + core
        )

    def _core(self, command: int, spec: AddressSpec, length: int, is_bit: bool) -> bytes:
        return (
            command.to_bytes(2, "little")
            + (SUB_BIT if is_bit else SUB_WORD).to_bytes(2, "little")
            + spec.offset.to_bytes(3, "little")
            + bytes([spec.device.code & 0xFF])
            + length.to_bytes(2, "little")
        )

    def build_read(self, spec: AddressSpec, length: int, is_bit: bool, session: Session) -> bytes:
        return self._wrap(self._core(CMD_READ, spec, length, is_bit), spec, session)

    def build_write(self, spec: AddressSpec, values: bytes | Sequence[bool], is_bit: bool, session: Session) -> bytes:
        if is_bit:
            core = self._core(CMD_WRITE, spec, len(values), True) + pack_nibbles(values)
        else:
            core = self._core(CMD_WRITE, spec, len(values) // 2, False) + bytes(values)
        return self._wrap(core, spec, session)

    def content_length(self, head: bytes, sent: bytes) -> int:
        return int.from_bytes(head[7:9], "little")

    def decode_response(self, raw: bytes, frame: CommandFrame) -> ResponseFrame:
        if len(raw) < 11:
            raise ShortResponse(11, len(raw))
        if raw[0:2] != b"\xd0\x00":
            raise FrameFormatError(f"Unexpected subheader {raw[0:2].hex().upper()}", raw=raw)
        status = int.from_bytes(raw[9:11], "little")
        if status:
            raise ProtocolStatusError(status, self.describe_status(status))
        payload = raw[11:]
        if frame.function == Function.WRITE:
            return ResponseFrame(status=0, payload=b"", raw_length=len(raw))
        if frame.is_bit:
            need = (frame.length + 1) // 2
            if len(payload) < need:
                raise ShortResponse(11 + need, len(raw))
            return ResponseFrame(0, payload[:need], len(raw), unpack_nibbles(payload, frame.length))
        need = frame.length * 2
        if len(payload) < need:
            raise ShortResponse(11 + need, len(raw))
        return ResponseFrame(status=0, payload=payload[:need], raw_length=len(raw))

    # ------------------------------------------------------------------ server

    def request_content_length(self, head: bytes) -> int:
        return int.from_bytes(head[7:9], "little")

    def decode_request(self, raw: bytes) -> ServerRequest:
        if len(raw) < 13:
            raise ShortResponse(13, len(raw))
        if raw[0:2] != b"\x50\x00":
            raise FrameFormatError(f"Unexpected subheader {raw[0:2].hex().upper()}", raw=raw)
        command = int.from_bytes(raw[11:13], "little")
        function = self._function(command)
        request = ServerRequest(function=function, station=raw[6], context={"command": command})
        if function not in (Function.READ, Function.WRITE):
            return request
        if len(raw) < 21:
            raise ShortResponse(21, len(raw))
        request.is_bit = int.from_bytes(raw[13:15], "little") == SUB_BIT
        request.start = int.from_bytes(raw[15:18], "little")
        request.device_code = raw[18]
        request.length = int.from_bytes(raw[19:21], "little")
        if function == Function.WRITE:
            body = raw[21:]
            if request.is_bit:
                if len(body) < (request.length + 1) // 2:
                    raise ShortResponse(21 + (request.length + 1) // 2, len(raw))
                request.values = unpack_nibbles(body, request.length)
            else:
                if len(body) < request.length * 2:
                    raise ShortResponse(21 + request.length * 2, len(raw))
                request.payload = body[: request.length * 2]
        return request

    def encode_response(self, request: ServerRequest, reply: Reply) -> bytes:
        data = b""
        if not reply.status and request.function == Function.READ:
            data = pack_nibbles(reply.values or []) if request.is_bit else reply.payload
        return (
            b"\xd0\x00\x00\xff\xff\x03\x00"
            + (len(data) + 2).to_bytes(2, "little")
            + (reply.status & 0xFFFF).to_bytes(2, "little")
            + data
        )


def ascii_address(device: DeviceType, offset: int) -> str:
    """Six-character device number: hexadecimal for base-16 families, decimal otherwise."""
    return f"{offset:06X}" if device.base == 16 else f"{offset:06d}"


def ascii_offset_limit(device: DeviceType) -> int:
    return 0xFFFFFF if device.base == 16 else 999999


def ascii_device_code(device: DeviceType) -> str:
    return (device.ascii_code or f"{device.prefix:*<2}")[:2]


def build_ascii_core(command: int, spec: AddressSpec, length: int, is_bit: bool) -> bytes:
    """Command, subcommand, device, device number and point count as text (no header)."""
    text = (
        f"{command:04X}{SUB_BIT if is_bit else SUB_WORD:04X}"
        f"{ascii_device_code(spec.device)}{ascii_address(spec.device, spec.offset)}{length:04X}"
    )
    return text.encode("ascii")


class MelsecMcAsciiCodec(_MelsecMcBase):
    """3E ASCII frames: the binary fields as fixed-width hex text, devices named by two characters."""

    name = "melsec-mc-ascii"
    encoding = Encoding.ASCII
    limits = FrameLimits(read_words=460, read_bits=3584, write_words=480, write_bits=3584)
    server_limits = FrameLimits(read_words=960, read_bits=3584, write_words=960, write_bits=3584)
    response_head_length = 18
    request_head_length = 18

    def _wrap(self, core: bytes, spec: AddressSpec, session: Session) -> bytes:
        station = self.station_of(spec, session)
        head = f"5000{session.network & 0xFF:02X}FF03FF{station & 0xFF:02X}{len(core) + 4:04X}0010"
        return head.encode("ascii") + core

    def offset_limit(self, device: DeviceType) -> int:
        return ascii_offset_limit(device)

    def _core(self, command: int, spec: AddressSpec, length: int, is_bit: bool) -> bytes:
        return build_ascii_core(command, spec, length, is_bit)

    def build_read(self, spec: AddressSpec, length: int, is_bit: bool, session: Session) -> bytes:
        return self._wrap(self._core(CMD_READ, spec, length, is_bit), spec, session)

    def build_write(self, spec: AddressSpec, values: bytes | Sequence[bool], is_bit: bool, session: Session) -> bytes:
        if is_bit:
            core = self._core(CMD_WRITE, spec, len(values), True) + bools_to_ascii(values)
        else:
            core = self._core(CMD_WRITE, spec, len(values) // 2, False) + words_to_ascii(bytes(values))
        return self._wrap(core, spec, session)

    def content_length(self, head: bytes, sent: bytes) -> int:
        return hex_field(head, 14, 4)

    def decode_response(self, raw: bytes, frame: CommandFrame) -> ResponseFrame:
        if len(raw) < 22:
            raise ShortResponse(22, len(raw))
        if raw[0:4].upper() != b"D000":
            raise FrameFormatError(f"Unexpected subheader {raw[0:4]!r}", raw=raw)
        status = hex_field(raw, 18, 4)
        if status:
            raise ProtocolStatusError(status, self.describe_status(status))
        body = raw[22:]
        if frame.function == Function.WRITE:
            return ResponseFrame(status=0, payload=b"", raw_length=len(raw))
        if frame.is_bit:
            values = ascii_to_bools(body, frame.length)
            return ResponseFrame(0, body[: frame.length], len(raw), values)
        need = frame.length * 4
        if len(body) < need:
            raise ShortResponse(22 + need, len(raw))
        return ResponseFrame(status=0, payload=ascii_to_words(body[:need]), raw_length=len(raw))

    # ------------------------------------------------------------------ server

    def request_content_length(self, head: bytes) -> int:
        return hex_field(head, 14, 4)

    def decode_request(self, raw: bytes) -> ServerRequest:
        if len(raw) < 26:
            raise ShortResponse(26, len(raw))
        if raw[0:4] != b"5000":
            raise FrameFormatError(f"Unexpected subheader {raw[0:4]!r}", raw=raw)
        command = hex_field(raw, 22, 4)
        function = self._function(command)
        request = ServerRequest(function=function, station=hex_field(raw, 12, 2), context={"command": command})
        if function not in (Function.READ, Function.WRITE):
            return request
        if len(raw) < 42:
            raise ShortResponse(42, len(raw))
        request.is_bit = hex_field(raw, 26, 4) == SUB_BIT
        device = self.table.by_ascii(raw[30:32].decode("ascii", errors="replace"))
        # -1 never matches a served region, so the dispatcher reports an unsupported device
        request.device_code = device.code if device is not None else -1
        base = 16 if device is None or device.base == 16 else 10
        try:
            request.start = int(raw[32:38], base)
        except ValueError:
            raise FrameFormatError(f"Malformed device number {raw[32:38]!r}", raw=raw) from None
        request.length = hex_field(raw, 38, 4)
        if function == Function.WRITE:
            body = raw[42:]
            if request.is_bit:
                request.values = ascii_to_bools(body, request.length)
            else:
                if len(body) < request.length * 4:
                    raise ShortResponse(42 + request.length * 4, len(raw))
                request.payload = ascii_to_words(body[: request.length * 4])
        return request

    def encode_response(self, request: ServerRequest, reply: Reply) -> bytes:
        data = b""
        if not reply.status and request.function == Function.READ:
            data = bools_to_ascii(reply.values or []) if request.is_bit else words_to_ascii(reply.payload)
        head = f"D00000FF03FF00{len(data) + 4:04X}{reply.status & 0xFFFF:04X}"
        return head.encode("ascii") + data
