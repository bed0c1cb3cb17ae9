"""MELSEC A3C (computer link, format 4) codec: MC ASCII commands in an ENQ/STX envelope with a sum check."""

import logging
from typing import Sequence

from .address import DeviceTable
from .checksum import ChecksumKind, ChecksumValidator
from .codec import Encoding, FrameCodec, ascii_to_bools, ascii_to_words, bools_to_ascii, hex_field, words_to_ascii
from .errors import FrameFormatError, ProtocolStatusError, ShortResponse
from .melsec_mc import CMD_READ, CMD_WRITE, ascii_offset_limit, build_ascii_core, describe_melsec_status
from .types import AddressSpec, CommandFrame, DeviceType, FrameLimits, Function, ResponseFrame, Session

logger = logging.getLogger(__name__)

STX = 0x02
ETX = 0x03
ENQ = 0x05
ACK = 0x06
NAK = 0x15
CRLF = b"\r\n"

# control byte + "F9" + station + network + PLC number + self-station
_DATA_START = 11


class MelsecA3CCodec(FrameCodec):
    """
    Format 4 frames, terminated by CR LF. The sum check covers everything after
    the leading control byte up to (and, in replies, including) ETX.
    """

    name = "melsec-a3c"
    profile = "melsec_mc"
    encoding = Encoding.ASCII
    limits = FrameLimits(read_words=460, read_bits=3584, write_words=480, write_bits=3584)
    default_port = 2000
    terminator = CRLF
    supports_server = False

    def __init__(self, table: DeviceTable | None = None, *, sum_check: bool = True) -> None:
        super().__init__(table)
        self.sum_check = sum_check
        self.checksum = ChecksumValidator(ChecksumKind.SUM, start=1, trailer=len(CRLF))

    def _wrap(self, core: bytes, spec: AddressSpec, session: Session) -> bytes:
        station = self.station_of(spec, session)
        body = bytes([ENQ]) + f"F9{station & 0xFF:02X}00FF00".encode("ascii") + core
        if self.sum_check:
            return self.checksum.append(body, CRLF)
        return body + CRLF

    def offset_limit(self, device: DeviceType) -> int:
        return ascii_offset_limit(device)

    def build_read(self, spec: AddressSpec, length: int, is_bit: bool, session: Session) -> bytes:
        return self._wrap(build_ascii_core(CMD_READ, spec, length, is_bit), spec, session)

    def build_write(self, spec: AddressSpec, values: bytes | Sequence[bool], is_bit: bool, session: Session) -> bytes:
        if is_bit:
            core = build_ascii_core(CMD_WRITE, spec, len(values), True) + bools_to_ascii(values)
        else:
            core = build_ascii_core(CMD_WRITE, spec, len(values) // 2, False) + words_to_ascii(bytes(values))
        return self._wrap(core, spec, session)

    def describe_status(self, code: int) -> str:
        return describe_melsec_status(code)

    def decode_response(self, raw: bytes, frame: CommandFrame) -> ResponseFrame:
        if len(raw) < _DATA_START + len(CRLF):
            raise ShortResponse(_DATA_START + len(CRLF), len(raw))
        if not raw.endswith(CRLF):
            raise FrameFormatError("Reply is not terminated by CR LF", raw=raw)
        if raw[0] == NAK:
            code = hex_field(raw, _DATA_START, 4)
            raise ProtocolStatusError(code, self.describe_status(code))
        if frame.function == Function.WRITE:
            if raw[0] != ACK:
                raise FrameFormatError(f"Expected ACK, got 0x{raw[0]:02X}", raw=raw)
            return ResponseFrame(status=0, payload=b"", raw_length=len(raw))

        if raw[0] != STX:
            raise FrameFormatError(f"Expected STX, got 0x{raw[0]:02X}", raw=raw)
        end = raw.find(bytes([ETX]), _DATA_START)
        if end < 0:
            raise FrameFormatError("Reply has no ETX", raw=raw)
        if self.sum_check:
            self.checksum.check(raw)
        body = raw[_DATA_START:end]
        if frame.is_bit:
            return ResponseFrame(0, body[: frame.length], len(raw), ascii_to_bools(body, frame.length))
        need = frame.length * 4
        if len(body) < need:
            raise ShortResponse(_DATA_START + need, len(raw))
        return ResponseFrame(status=0, payload=ascii_to_words(body[:need]), raw_length=len(raw))
