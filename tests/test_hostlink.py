"""Tests for the Omron HostLink codec and its station check on the server side."""

import pytest

from pyplc_adapter.checksum import ChecksumKind, ChecksumValidator
from pyplc_adapter.errors import ChecksumMismatch, FrameFormatError, ProtocolStatusError
from pyplc_adapter.omron_hostlink import OmronHostLinkCodec
from pyplc_adapter.server import DeviceServer
from pyplc_adapter.types import Session

FCS = ChecksumValidator(ChecksumKind.XOR, trailer=2)


def hostlink_reply(sid: int, body: str, end: str = "00", unit: str = "00") -> bytes:
    text = f"@{unit}FA{end}400000{sid:02X}{body}".encode("ascii")
    return FCS.append(text, b"*\r")


class TestHostLinkClient:
    """Client-side framing."""

    codec = OmronHostLinkCodec()

    def test_read_frame(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 10, is_bit=False, session=Session())[0]
        body = b"@00FA00000000" + b"01" + b"010182006400000A"
        assert frame.data == FCS.append(body, b"*\r")
        assert frame.data.endswith(b"*\r")

    def test_unit_from_parameter(self) -> None:
        spec = self.codec.parse_address("s=5;D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        assert frame.data[1:3] == b"05"

    def test_response_wait_in_header(self) -> None:
        codec = OmronHostLinkCodec(response_wait=3)
        frame = codec.encode_read(codec.parse_address("D0"), 1, is_bit=False, session=Session())[0]
        assert frame.data[5:6] == b"3"

    def test_bad_response_wait(self) -> None:
        with pytest.raises(ValueError):
            OmronHostLinkCodec(response_wait=16)

    def test_word_reply(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 2, is_bit=False, session=Session())[0]
        result = self.codec.decode_response(hostlink_reply(1, "0101" + "0000" + "12345678"), frame)
        assert result.payload == b"\x12\x34\x56\x78"

    def test_bit_reply(self) -> None:
        spec = self.codec.parse_address("D100.2")
        frame = self.codec.encode_read(spec, 2, is_bit=True, session=Session())[0]
        result = self.codec.decode_response(hostlink_reply(1, "0101" + "0000" + "0100"), frame)
        assert result.values == [True, False]

    def test_end_code_in_fins_body(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        with pytest.raises(ProtocolStatusError) as exc:
            self.codec.decode_response(hostlink_reply(1, "0101" + "1103"), frame)
        assert exc.value.code == 0x1103

    def test_hostlink_end_code(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        with pytest.raises(ProtocolStatusError) as exc:
            self.codec.decode_response(hostlink_reply(1, "0101" + "0000" + "0000", end="14"), frame)
        assert exc.value.code == 0x14

    def test_bad_fcs(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        raw = bytearray(hostlink_reply(1, "0101" + "0000" + "0000"))
        raw[-4:-2] = b"00" if raw[-4:-2] != b"00" else b"11"
        with pytest.raises(ChecksumMismatch):
            self.codec.decode_response(bytes(raw), frame)

    def test_missing_terminator(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        raw = hostlink_reply(1, "0101" + "0000" + "0000")[:-2] + b"#\r"
        with pytest.raises(FrameFormatError):
            self.codec.decode_response(raw, frame)


class TestHostLinkServer:
    """Frames handled by a DeviceServer without opening a socket."""

    def test_write_then_read(self) -> None:
        codec = OmronHostLinkCodec()
        server = DeviceServer(codec)
        session = Session()
        spec = codec.parse_address("D100")

        write = codec.encode_write(spec, b"\x00\x2a", session=session)
        reply = server.handle_frame(write.data)
        codec.decode_response(reply, write)

        read = codec.encode_read(spec, 1, is_bit=False, session=session)[0]
        assert codec.decode_response(server.handle_frame(read.data), read).payload == b"\x00\x2a"

    def test_bit_write_lands_in_word(self) -> None:
        codec = OmronHostLinkCodec()
        server = DeviceServer(codec)
        write = codec.encode_write(codec.parse_address("D100.3"), [True], session=Session())
        server.handle_frame(write.data)
        assert server.memory.by_prefix("D").read_words(100, 1) == b"\x00\x08"

    def test_station_mismatch_rejected(self) -> None:
        codec = OmronHostLinkCodec()
        server = DeviceServer(codec, station=0)
        write = codec.encode_write(codec.parse_address("s=5;D100"), b"\x12\x34", session=Session())
        with pytest.raises(ProtocolStatusError) as exc:
            codec.decode_response(server.handle_frame(write.data), write)
        assert exc.value.code == 0x0202
        assert server.memory.by_prefix("D").read_words(100, 1) == b"\x00\x00"

    def test_bad_fcs_raises(self) -> None:
        codec = OmronHostLinkCodec()
        server = DeviceServer(codec)
        frame = bytearray(codec.encode_read(codec.parse_address("D0"), 1, is_bit=False, session=Session())[0].data)
        frame[-4:-2] = b"00" if frame[-4:-2] != b"00" else b"11"
        with pytest.raises(ChecksumMismatch):
            server.handle_frame(bytes(frame))
