"""Tests for the Omron FINS (UDP and TCP) codecs."""

import pytest

from pyplc_adapter.errors import FrameFormatError, LengthExceededError, ProtocolStatusError, ShortResponse
from pyplc_adapter.omron_fins import (
    OmronFinsTcpCodec,
    OmronFinsUdpCodec,
    describe_end_code,
    describe_tcp_status,
)
from pyplc_adapter.types import Function, Session


def fins_reply(sid: int, command: bytes, end: int = 0, data: bytes = b"") -> bytes:
    header = bytes([0xC0, 0x00, 0x02, 0x00, 0x00, 0x00, 0x00, 0x00, 0x00, sid])
    return header + command + end.to_bytes(2, "big") + data


def tcp_wrap(fins: bytes, status: int = 0) -> bytes:
    return b"FINS" + (len(fins) + 8).to_bytes(4, "big") + (2).to_bytes(4, "big") + status.to_bytes(4, "big") + fins


class TestFinsUdp:
    """Bare FINS frames."""

    codec = OmronFinsUdpCodec()

    def test_word_read_frame(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 10, is_bit=False, session=Session())[0]
        assert frame.data == bytes([0x80, 0x00, 0x02, 0, 0, 0, 0, 0, 0, 1]) + bytes.fromhex("010182006400000A")

    def test_sid_advances_per_frame(self) -> None:
        session = Session()
        spec = self.codec.parse_address("D0")
        frames = self.codec.encode_read(spec, 1200, is_bit=False, session=session)
        assert [f.data[9] for f in frames] == [1, 2, 3]
        assert [f.length for f in frames] == [500, 500, 200]

    def test_node_addresses_from_session(self) -> None:
        session = Session(dna=1, da1=0x0A, sa1=0x22)
        frame = self.codec.encode_read(self.codec.parse_address("D0"), 1, is_bit=False, session=session)[0]
        assert frame.data[3] == 1
        assert frame.data[4] == 0x0A
        assert frame.data[7] == 0x22

    def test_bit_read_frame_uses_bit_area(self) -> None:
        spec = self.codec.parse_address("D100.5")
        frame = self.codec.encode_read(spec, 3, is_bit=True, session=Session())[0]
        assert frame.data[10:] == bytes.fromhex("0101020064050003")

    def test_bit_read_split_carries_into_next_word(self) -> None:
        spec = self.codec.parse_address("D0.0")
        frames = self.codec.encode_read(spec, 1000, is_bit=True, session=Session())
        assert [f.length for f in frames] == [996, 4]
        assert frames[1].spec.offset == 62
        assert frames[1].spec.bit_index == 4

    def test_read_ending_at_last_word(self) -> None:
        spec = self.codec.parse_address("D65035")
        frames = self.codec.encode_read(spec, 501, is_bit=False, session=Session())
        assert [f.spec.offset for f in frames] == [65035, 65535]

    def test_read_running_past_last_word(self) -> None:
        spec = self.codec.parse_address("D65500")
        with pytest.raises(LengthExceededError):
            self.codec.encode_read(spec, 600, is_bit=False, session=Session())

    def test_bit_read_running_past_last_word(self) -> None:
        spec = self.codec.parse_address("D65535.8")
        assert len(self.codec.encode_read(spec, 8, is_bit=True, session=Session())) == 1
        with pytest.raises(LengthExceededError):
            self.codec.encode_read(spec, 9, is_bit=True, session=Session())

    def test_word_reply(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 2, is_bit=False, session=Session())[0]
        result = self.codec.decode_response(fins_reply(1, b"\x01\x01", data=b"\x12\x34\x56\x78"), frame)
        assert result.payload == b"\x12\x34\x56\x78"

    def test_bit_reply(self) -> None:
        spec = self.codec.parse_address("D100.0")
        frame = self.codec.encode_read(spec, 3, is_bit=True, session=Session())[0]
        result = self.codec.decode_response(fins_reply(1, b"\x01\x01", data=b"\x01\x00\x01"), frame)
        assert result.values == [True, False, True]

    def test_write_frame(self) -> None:
        spec = self.codec.parse_address("W10")
        frame = self.codec.encode_write(spec, b"\x00\x01", session=Session())
        assert frame.data[10:] == bytes.fromhex("0102B1000A0000010001")

    def test_sid_mismatch(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        with pytest.raises(FrameFormatError, match="SID"):
            self.codec.decode_response(fins_reply(9, b"\x01\x01", data=b"\x00\x00"), frame)

    def test_command_echo_mismatch(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        with pytest.raises(FrameFormatError, match="echo"):
            self.codec.decode_response(fins_reply(1, b"\x01\x02", data=b"\x00\x00"), frame)

    def test_end_code(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        with pytest.raises(ProtocolStatusError) as exc:
            self.codec.decode_response(fins_reply(1, b"\x01\x01", end=0x1103), frame)
        assert exc.value.code == 0x1103
        assert "beyond" in exc.value.description

    def test_relay_and_cpu_flags_are_ignored(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        result = self.codec.decode_response(fins_reply(1, b"\x01\x01", end=0x8040, data=b"\x00\x07"), frame)
        assert result.payload == b"\x00\x07"

    def test_short_reply(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        with pytest.raises(ShortResponse):
            self.codec.decode_response(b"\xc0\x00", frame)

    def test_decode_request_mirrors_encode(self) -> None:
        spec = self.codec.parse_address("D100.3")
        frame = self.codec.encode_write(spec, [True, True], session=Session())
        request = self.codec.decode_request(frame.data)
        assert request.function == Function.WRITE
        assert request.device_code == 0x82
        assert request.is_bit
        assert request.start == 100 * 16 + 3
        assert request.values == [True, True]


class TestFinsTcp:
    """FINS/TCP wrapping and node-address handshake."""

    codec = OmronFinsTcpCodec()

    def test_handshake_request(self) -> None:
        assert self.codec.handshake_request(Session()) == b"FINS" + bytes.fromhex("0000000C") + bytes(12)

    def test_apply_handshake(self) -> None:
        session = Session()
        reply = b"FINS" + (16).to_bytes(4, "big") + (1).to_bytes(4, "big") + bytes(4)
        reply += (0x22).to_bytes(4, "big") + (0x01).to_bytes(4, "big")
        self.codec.apply_handshake(reply, session)
        assert session.sa1 == 0x22
        assert session.da1 == 0x01

    def test_handshake_refused(self) -> None:
        reply = b"FINS" + (8).to_bytes(4, "big") + (1).to_bytes(4, "big") + (0x21).to_bytes(4, "big")
        with pytest.raises(ProtocolStatusError) as exc:
            self.codec.apply_handshake(reply, Session())
        assert exc.value.code == 0x21

    def test_frame_is_wrapped(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 10, is_bit=False, session=Session())[0]
        assert frame.data[:4] == b"FINS"
        assert int.from_bytes(frame.data[4:8], "big") == len(frame.data) - 8
        assert frame.data[8:12] == b"\x00\x00\x00\x02"
        assert frame.data[26:] == bytes.fromhex("010182006400000A")

    def test_content_length(self) -> None:
        assert self.codec.content_length(b"FINS\x00\x00\x00\x1a", b"") == 26

    def test_word_reply(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        raw = tcp_wrap(fins_reply(1, b"\x01\x01", data=b"\xab\xcd"))
        assert self.codec.decode_response(raw, frame).payload == b"\xab\xcd"

    def test_tcp_error_status(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        with pytest.raises(ProtocolStatusError) as exc:
            self.codec.decode_response(tcp_wrap(b"", status=3), frame)
        assert exc.value.code == 3

    def test_bad_magic(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        with pytest.raises(FrameFormatError):
            self.codec.decode_response(b"XXXX" + bytes(28), frame)

    def test_server_handshake_assigns_node(self) -> None:
        reply = self.codec.server_handshake(self.codec.handshake_request(Session()))
        assert reply is not None
        session = Session()
        self.codec.apply_handshake(reply, session)
        assert session.sa1 == 0x01
        assert session.da1 == self.codec.server_node

    def test_server_handshake_ignores_data_frames(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        assert self.codec.server_handshake(frame.data) is None


def test_status_descriptions() -> None:
    assert "not FINS" in describe_tcp_status(0x01)
    assert describe_end_code(0x2101) == "The specified area is read-only."
    assert describe_end_code(0x8000 | 0x2101) == "The specified area is read-only."
    assert describe_end_code(0x9999) == "Unknown error"
