"""Omron FINS codecs over TCP (with node-address handshake) and UDP, plus shared FINS command helpers."""

import logging
import re
from typing import Sequence

from .address import DeviceTable, extract_parameters
from .codec import Encoding, FrameCodec
from .errors import AddressParseError, FrameFormatError, ProtocolStatusError, ShortResponse
from .types import (
    AddressSpec,
    CommandFrame,
    DataMode,
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

CMD_MEMORY_READ = 0x0101
CMD_MEMORY_WRITE = 0x0102
CMD_RUN = 0x0401
CMD_STOP = 0x0402

TCP_MAGIC = b"FINS"
TCP_CMD_NODE_REQUEST = 0
TCP_CMD_NODE_REPLY = 1
TCP_CMD_FRAME = 2

# relay error and CPU error flags do not make a reply fail
END_CODE_MASK = 0x7F3F

_COMMANDS = {
    CMD_MEMORY_READ: Function.READ,
    CMD_MEMORY_WRITE: Function.WRITE,
    CMD_RUN: Function.RUN,
    CMD_STOP: Function.STOP,
}

_EM_PATTERN = re.compile(r"^E([0-9A-Fa-f]{1,2})\.(.+)$")

_TCP_STATUS: dict[int, str] = {
    0x00: "Communication is normal.",
    0x01: "The message header is not FINS.",
    0x02: "Data length too long.",
    0x03: "This command is not supported.",
    0x20: "Exceeding connection limit.",
    0x21: "The specified node is already in the connection.",
    0x22: "Attempt to connect to a protected network node that is not yet configured in the PLC.",
    0x23: "The current client's network node exceeds the normal range.",
    0x24: "The current client's network node is already in use.",
    0x25: "All network nodes are already in use.",
}

_END_CODES: dict[int, str] = {
    0x0001: "Service was canceled.",
    0x0101: "Local node is not participating in the network.",
    0x0102: "Token does not arrive.",
    0x0103: "Send was not possible during the specified number of retries.",
    0x0104: "Cannot send because maximum number of event frames exceeded.",
    0x0105: "Node address setting error occurred.",
    0x0106: "The same node address has been set twice in the same network.",
    0x0201: "The destination node is not in the network.",
    0x0202: "There is no Unit with the specified unit address.",
    0x0203: "The third node does not exist.",
    0x0204: "The destination node is busy.",
    0x0205: "The message was destroyed by noise.",
    0x0301: "An error occurred in the communications controller.",
    0x0302: "A CPU error occurred in the destination CPU Unit.",
    0x0303: "A response was not returned because an error occurred in the Board.",
    0x0304: "The unit number was set incorrectly.",
    0x0401: "The Unit/Board does not support the specified command code.",
    0x0402: "The command cannot be executed because the model or version is incorrect.",
    0x0501: "The destination network or node address is not set in the routing tables.",
    0x0502: "Relaying is not possible because there are no routing tables.",
    0x0503: "There is an error in the routing tables.",
    0x0504: "An attempt was made to send to a network that was over 3 networks away.",
    0x1001: "The command is longer than the maximum permissible length.",
    0x1002: "The command is shorter than the minimum permissible length.",
    0x1003: "The designated number of elements differs from the number of write data items.",
    0x1004: "An incorrect format was used.",
    0x1005: "Either the relay table in the local node or the local network table in the relay node is incorrect.",
    0x1101: "The specified word does not exist in the memory area or there is no EM Area.",
    0x1102: "The access size specification is incorrect or an odd word address is specified.",
    0x1103: "The start address in command process is beyond the accessible area.",
    0x1104: "The end address in command process is beyond the accessible area.",
    0x1106: "FFFF hex was not specified.",
    0x1109: "A large-small relationship in the elements in the command data is incorrect.",
    0x110B: "The response format is longer than the maximum permissible length.",
    0x110C: "There is an error in one of the parameter settings.",
    0x2002: "The program area is protected.",
    0x2003: "A table has not been registered.",
    0x2004: "The search data does not exist.",
    0x2005: "A non-existing program number has been specified.",
    0x2006: "The file does not exist at the specified file device.",
    0x2007: "A data being compared is not the same.",
    0x2101: "The specified area is read-only.",
    0x2102: "The program area is protected.",
    0x2103: "The file cannot be created because the limit has been exceeded.",
    0x2105: "A non-existing program number has been specified.",
    0x2106: "The file does not exist at the specified file device.",
    0x2107: "A file with the same name already exists in the specified file device.",
    0x2108: "The change cannot be made because doing so would create a problem.",
    0x2201: "The mode is incorrect.",
    0x2202: "The mode is incorrect.",
    0x2203: "The PLC is in PROGRAM mode.",
    0x2204: "The PLC is in DEBUG mode.",
    0x2205: "The PLC is in MONITOR mode.",
    0x2206: "The PLC is in RUN mode.",
    0x2207: "The specified node is not the polling node.",
    0x2208: "The mode is incorrect.",
    0x2301: "The specified memory does not exist as a file device.",
    0x2302: "There is no file memory.",
    0x2303: "There is no clock.",
    0x2401: "The data link tables have not been registered or they contain an error.",
}


def describe_tcp_status(code: int) -> str:
    return _TCP_STATUS.get(code, "Unknown error")


def describe_end_code(code: int) -> str:
    """Human-readable text for a FINS end code (relay/CPU flag bits ignored)."""
    return _END_CODES.get(code & END_CODE_MASK, "Unknown error")


def em_device(bank: int) -> DeviceType:
    """Device row for extended memory bank ``bank`` (0x00-0x18)."""
    if bank < 16:
        word, bit = 0xA0 + bank, 0x20 + bank
    else:
        word, bit = 0x60 + bank - 16, 0xE0 + bank - 16
    return DeviceType(prefix=f"E{bank:X}", code=word, mode=DataMode.WORD, base=10, bit_code=bit)


# ============================================================================
# FINS command bodies (shared with HostLink)
# ============================================================================


def memory_command(command: int, spec: AddressSpec, length: int, is_bit: bool) -> bytes:
    """Command code, area, word address, bit number and element count."""
    device = spec.device
    area = device.bit_code if is_bit and device.bit_code is not None else device.code
    bit = (spec.bit_index or 0) if is_bit else 0
    return (
        command.to_bytes(2, "big")
        + bytes([area & 0xFF])
        + spec.offset.to_bytes(2, "big")
        + bytes([bit])
        + length.to_bytes(2, "big")
    )


def write_payload(values: bytes | Sequence[bool], is_bit: bool) -> bytes:
    if is_bit:
        return bytes(1 if v else 0 for v in values)
    return bytes(values)


def decode_command_reply(body: bytes, sent_command: bytes, frame: CommandFrame) -> ResponseFrame:
    """Decode ``command(2) end code(2) data`` against the command that was sent."""
    if len(body) < 4:
        raise ShortResponse(4, len(body))
    if body[0:2] != sent_command:
        raise FrameFormatError(
            f"Command echo {body[0:2].hex().upper()} does not match {sent_command.hex().upper()}", raw=body
        )
    end = int.from_bytes(body[2:4], "big")
    if end & END_CODE_MASK:
        raise ProtocolStatusError(end & END_CODE_MASK, describe_end_code(end))
    data = body[4:]
    if frame.function == Function.WRITE:
        return ResponseFrame(status=0, payload=b"", raw_length=len(body))
    if frame.is_bit:
        if len(data) < frame.length:
            raise ShortResponse(4 + frame.length, len(body))
        return ResponseFrame(0, data[: frame.length], len(body), [b != 0 for b in data[: frame.length]])
    need = frame.length * 2
    if len(data) < need:
        raise ShortResponse(4 + need, len(body))
    return ResponseFrame(status=0, payload=data[:need], raw_length=len(body))


def parse_command(body: bytes, table: DeviceTable) -> ServerRequest:
    """Server side: decode a FINS command body (no FINS header) into a request."""
    if len(body) < 2:
        raise ShortResponse(2, len(body))
    command = int.from_bytes(body[0:2], "big")
    function = _COMMANDS.get(command, Function.UNKNOWN)
    request = ServerRequest(function=function, context={"command": command})
    if function not in (Function.READ, Function.WRITE):
        return request
    if len(body) < 8:
        raise ShortResponse(8, len(body))
    area = body[2]
    word = int.from_bytes(body[3:5], "big")
    bit = body[5]
    count = int.from_bytes(body[6:8], "big")
    if bit > 15:
        raise FrameFormatError(f"Bit number {bit} out of range", raw=body)
    device = table.by_code(area)
    is_bit = device is not None and device.bit_code == area
    request.device_code = device.code if device is not None else area
    request.is_bit = is_bit
    request.start = word * 16 + bit if is_bit else word
    request.length = count
    if function == Function.WRITE:
        data = body[8:]
        if is_bit:
            if len(data) < count:
                raise ShortResponse(8 + count, len(body))
            request.values = [b != 0 for b in data[:count]]
        else:
            if len(data) < count * 2:
                raise ShortResponse(8 + count * 2, len(body))
            request.payload = data[: count * 2]
    return request


def reply_body(request: ServerRequest, reply: Reply) -> bytes:
    """Server side: ``command(2) end code(2) data``."""
    data = b""
    if not reply.status and request.function == Function.READ:
        data = write_payload(reply.values or [], True) if request.is_bit else reply.payload
    return request.context["command"].to_bytes(2, "big") + (reply.status & 0xFFFF).to_bytes(2, "big") + data


class OmronCodecBase(FrameCodec):
    """Address handling, ceilings and statuses common to every Omron framing."""

    profile = "omron_fins"
    word_order = "big"
    allow_bit_index = True
    max_offset = 0xFFFF
    default_port = 9600
    server_devices = ("D", "C", "W", "H", "A")
    fault_status = {
        ServerFault.OUT_OF_RANGE: 0x1103,
        ServerFault.TOO_MANY_POINTS: 0x110B,
        ServerFault.UNSUPPORTED_DEVICE: 0x1101,
        ServerFault.WRITE_DISABLED: 0x2101,
        ServerFault.UNSUPPORTED_COMMAND: 0x0401,
        ServerFault.STATION_MISMATCH: 0x0202,
    }

    def parse_address(self, address: str) -> AddressSpec:
        """Adds ``E<bank>.<word>[.<bit>]`` extended memory to the table-driven forms."""
        params, rest = extract_parameters(address.strip())
        m = _EM_PATTERN.match(rest.strip())
        if not m:
            return self.resolver.parse(address)
        bank = int(m.group(1), 16)
        if bank > 0x18:
            raise AddressParseError(address, ParseFailure.OUT_OF_RANGE, f"EM bank {bank:X} does not exist")
        device = em_device(bank)
        numeral, _, bit_text = m.group(2).partition(".")
        offset = self.resolver.parse_numeral(address, device, numeral)
        if offset > self.max_offset:
            raise AddressParseError(address, ParseFailure.OUT_OF_RANGE)
        bit_index = self.resolver.parse_bit_index(address, bit_text) if bit_text else None
        return AddressSpec(device=device, offset=offset, bit_index=bit_index, params=params)

    def advance(self, spec: AddressSpec, points: int, is_bit: bool) -> AddressSpec:
        if points == 0:
            return spec
        if is_bit:
            total = spec.offset * 16 + (spec.bit_index or 0) + points
            return spec.advanced(total // 16, total % 16)
        return spec.advanced(spec.offset + points, spec.bit_index)

    def describe_status(self, code: int) -> str:
        return describe_end_code(code)


class OmronFinsUdpCodec(OmronCodecBase):
    """
    FINS over UDP: a 10-byte FINS header (ICF, RSV, GCT, DNA, DA1, DA2, SNA,
    SA1, SA2, SID) followed by the command body, one frame per datagram.
    """

    name = "omron-fins-udp"
    encoding = Encoding.BINARY
    limits = FrameLimits(read_words=500, read_bits=996, write_words=996, write_bits=996)
    server_limits = FrameLimits(read_words=999, read_bits=999, write_words=999, write_bits=999)
    datagram = True

    def fins_header(self, session: Session) -> bytes:
        sid = session.next_sequence()
        return bytes(
            [0x80, 0x00, 0x02, session.dna, session.da1, session.da2, session.sna, session.sa1, session.sa2, sid]
        )

    def _wrap(self, fins: bytes) -> bytes:
        return fins

    def _unwrap(self, raw: bytes) -> bytes:
        return raw

    def _fins_of(self, frame_data: bytes) -> bytes:
        return frame_data

    def build_read(self, spec: AddressSpec, length: int, is_bit: bool, session: Session) -> bytes:
        return self._wrap(self.fins_header(session) + memory_command(CMD_MEMORY_READ, spec, length, is_bit))

    def build_write(self, spec: AddressSpec, values: bytes | Sequence[bool], is_bit: bool, session: Session) -> bytes:
        body = memory_command(CMD_MEMORY_WRITE, spec, len(values) if is_bit else len(values) // 2, is_bit)
        return self._wrap(self.fins_header(session) + body + write_payload(values, is_bit))

    def decode_response(self, raw: bytes, frame: CommandFrame) -> ResponseFrame:
        fins = self._unwrap(raw)
        sent = self._fins_of(frame.data)
        if len(fins) < 14:
            raise ShortResponse(14, len(fins))
        if fins[9] != sent[9]:
            raise FrameFormatError(f"Reply SID {fins[9]} does not match request SID {sent[9]}", raw=raw)
        return decode_command_reply(fins[10:], sent[10:12], frame)

    # ------------------------------------------------------------------ server

    def decode_request(self, raw: bytes) -> ServerRequest:
        fins = self._unwrap_request(raw)
        if len(fins) < 12:
            raise ShortResponse(12, len(fins))
        request = parse_command(fins[10:], self.table)
        request.station = fins[4]
        request.context["header"] = fins[:10]
        return request

    def _unwrap_request(self, raw: bytes) -> bytes:
        return raw

    def encode_response(self, request: ServerRequest, reply: Reply) -> bytes:
        h = request.context["header"]
        # swap destination and source addresses, echo SID
        header = bytes([0xC0, 0x00, 0x02, h[6], h[7], h[8], h[3], h[4], h[5], h[9]])
        return self._wrap(header + reply_body(request, reply))


class OmronFinsTcpCodec(OmronFinsUdpCodec):
    """
    FINS over TCP: every frame carries a 16-byte ``FINS`` header (length,
    command, error code) and the connection starts with a node-address handshake
    that tells the client its own node (SA1) and the PLC's node (DA1).
    """

    name = "omron-fins"
    datagram = False
    response_head_length = 8
    request_head_length = 8
    requires_handshake = True
    server_node = 0x01

    def _wrap(self, fins: bytes) -> bytes:
        return (
            TCP_MAGIC
            + (len(fins) + 8).to_bytes(4, "big")
            + TCP_CMD_FRAME.to_bytes(4, "big")
            + bytes(4)
            + fins
        )

    def _check_tcp_header(self, raw: bytes) -> None:
        if len(raw) < 16:
            raise ShortResponse(16, len(raw))
        if raw[0:4] != TCP_MAGIC:
            raise FrameFormatError(f"Header {raw[0:4]!r} is not FINS", raw=raw)

    def _unwrap(self, raw: bytes) -> bytes:
        self._check_tcp_header(raw)
        status = int.from_bytes(raw[12:16], "big")
        if status:
            raise ProtocolStatusError(status, describe_tcp_status(status))
        return raw[16:]

    def _fins_of(self, frame_data: bytes) -> bytes:
        return frame_data[16:]

    def content_length(self, head: bytes, sent: bytes) -> int:
        return int.from_bytes(head[4:8], "big")

    def handshake_request(self, session: Session) -> bytes:
        # a zero client node asks the PLC to assign one
        return TCP_MAGIC + (12).to_bytes(4, "big") + bytes(8) + session.sa1.to_bytes(4, "big")

    def apply_handshake(self, reply: bytes, session: Session) -> None:
        self._check_tcp_header(reply)
        status = int.from_bytes(reply[12:16], "big")
        if status:
            raise ProtocolStatusError(status, describe_tcp_status(status))
        if len(reply) >= 20:
            session.sa1 = reply[19]
        if len(reply) >= 24:
            session.da1 = reply[23]
        logger.debug("FINS node handshake: SA1=0x%02X DA1=0x%02X", session.sa1, session.da1)

    # ------------------------------------------------------------------ server

    def request_content_length(self, head: bytes) -> int:
        return int.from_bytes(head[4:8], "big")

    def server_handshake(self, raw: bytes) -> bytes | None:
        if len(raw) < 16 or raw[0:4] != TCP_MAGIC:
            return None
        if int.from_bytes(raw[8:12], "big") != TCP_CMD_NODE_REQUEST:
            return None
        client_node = int.from_bytes(raw[16:20], "big") if len(raw) >= 20 else 0
        return (
            TCP_MAGIC
            + (16).to_bytes(4, "big")
            + TCP_CMD_NODE_REPLY.to_bytes(4, "big")
            + bytes(4)
            + (client_node or 0x01).to_bytes(4, "big")
            + self.server_node.to_bytes(4, "big")
        )

    def _unwrap_request(self, raw: bytes) -> bytes:
        self._check_tcp_header(raw)
        command = int.from_bytes(raw[8:12], "big")
        if command != TCP_CMD_FRAME:
            raise FrameFormatError(f"Unexpected FINS/TCP command {command}", raw=raw)
        return raw[16:]
