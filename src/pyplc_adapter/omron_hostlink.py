"""Omron HostLink codec (FINS commands in FA mode), framed by an XOR FCS, '*' and CR."""

import logging
from typing import Sequence

from .address import DeviceTable
from .checksum import ChecksumKind, ChecksumValidator
from .codec import Encoding, hex_field
from .errors import FrameFormatError, ProtocolStatusError, ShortResponse
from .omron_fins import (
    CMD_MEMORY_READ,
    CMD_MEMORY_WRITE,
    OmronCodecBase,
    decode_command_reply,
    memory_command,
    parse_command,
    reply_body,
    write_payload,
)
from .types import AddressSpec, CommandFrame, FrameLimits, Reply, ResponseFrame, ServerRequest, Session

logger = logging.getLogger(__name__)

TERMINATOR = b"*\r"

# '@' unit(2) "FA" wait(1) ICF(2) DA2(2) SA2(2) SID(2)
_REQUEST_HEAD = 14
# '@' unit(2) "FA" end(2) ICF(2) DA2(2) SA2(2) SID(2)
_REPLY_HEAD = 15
# head + command(4) + end code(4) + FCS(2) + "*" CR
_MIN_REPLY = _REPLY_HEAD + 8 + 4


class OmronHostLinkCodec(OmronCodecBase):
    """
    HostLink FA-mode frames::

        @ unit FA wait ICF DA2 SA2 SID <FINS command as hex> FCS * CR

    The FCS is the XOR of every character before it, as two hex digits.
    """

    name = "omron-hostlink"
    encoding = Encoding.ASCII
    limits = FrameLimits(read_words=260, read_bits=260, write_words=260, write_bits=260)
    terminator = b"\r"
    checks_station = True

    def __init__(self, table: DeviceTable | None = None, *, response_wait: int = 0, icf: int = 0x00) -> None:
        super().__init__(table)
        if not 0 <= response_wait <= 0xF:
            raise ValueError(f"response_wait must be 0-15, got {response_wait}")
        self.response_wait = response_wait
        self.icf = icf
        self.checksum = ChecksumValidator(ChecksumKind.XOR, start=0, trailer=len(TERMINATOR))

    def _frame(self, body: bytes, spec: AddressSpec, session: Session) -> bytes:
        unit = self.station_of(spec, session)
        head = (
            f"@{unit & 0xFF:02X}FA{self.response_wait:X}{self.icf:02X}"
            f"{session.da2:02X}{session.sa2:02X}{session.next_sequence():02X}"
        )
        return self.checksum.append(head.encode("ascii") + body.hex().upper().encode("ascii"), TERMINATOR)

    def build_read(self, spec: AddressSpec, length: int, is_bit: bool, session: Session) -> bytes:
        return self._frame(memory_command(CMD_MEMORY_READ, spec, length, is_bit), spec, session)

    def build_write(self, spec: AddressSpec, values: bytes | Sequence[bool], is_bit: bool, session: Session) -> bytes:
        count = len(values) if is_bit else len(values) // 2
        body = memory_command(CMD_MEMORY_WRITE, spec, count, is_bit) + write_payload(values, is_bit)
        return self._frame(body, spec, session)

    def _check_envelope(self, raw: bytes, minimum: int) -> None:
        if len(raw) < minimum:
            raise ShortResponse(minimum, len(raw))
        if raw[0:1] != b"@" or not raw.endswith(TERMINATOR):
            raise FrameFormatError("Frame is not enclosed in '@' ... '*' CR", raw=raw)
        self.checksum.check(raw)

    @staticmethod
    def _unhex(text: bytes) -> bytes:
        try:
            return bytes.fromhex(text.decode("ascii"))
        except (ValueError, UnicodeDecodeError):
            raise FrameFormatError(f"Frame body {text!r} is not hexadecimal", raw=text) from None

    def decode_response(self, raw: bytes, frame: CommandFrame) -> ResponseFrame:
        self._check_envelope(raw, _MIN_REPLY)
        end = hex_field(raw, 5, 2)
        if end:
            raise ProtocolStatusError(end, f"HostLink end code {end:02X}")
        sent_command = self._unhex(frame.data[_REQUEST_HEAD:_REQUEST_HEAD + 4])
        body = self._unhex(raw[_REPLY_HEAD:-4])
        return decode_command_reply(body, sent_command, frame)

    # ------------------------------------------------------------------ server

    def decode_request(self, raw: bytes) -> ServerRequest:
        self._check_envelope(raw, _REQUEST_HEAD + 4 + 4)
        if raw[3:5] != b"FA":
            raise FrameFormatError(f"Header code {raw[3:5]!r} is not FA", raw=raw)
        request = parse_command(self._unhex(raw[_REQUEST_HEAD:-4]), self.table)
        request.station = hex_field(raw, 1, 2)
        request.context["sid"] = hex_field(raw, 12, 2)
        return request

    def encode_response(self, request: ServerRequest, reply: Reply) -> bytes:
        head = f"@{(request.station or 0) & 0xFF:02X}FA00400000{request.context.get('sid', 0):02X}"
        text = head.encode("ascii") + reply_body(request, reply).hex().upper().encode("ascii")
        return self.checksum.append(text, TERMINATOR)
