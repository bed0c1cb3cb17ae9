"""Tests for the MELSEC A1E, MC and A3C frame codecs (no I/O)."""

import pytest

from pyplc_adapter.errors import (
    AddressParseError,
    ChecksumMismatch,
    FrameFormatError,
    LengthExceededError,
    ProtocolStatusError,
    ShortResponse,
)
from pyplc_adapter.melsec_a1e import MelsecA1EAsciiCodec, MelsecA1EBinaryCodec
from pyplc_adapter.melsec_a3c import MelsecA3CCodec
from pyplc_adapter.melsec_mc import MelsecMcAsciiCodec, MelsecMcBinaryCodec, describe_melsec_status
from pyplc_adapter.types import Function, ParseFailure, Session


def mc_reply(payload: bytes = b"", status: int = 0) -> bytes:
    return b"\xd0\x00\x00\xff\xff\x03\x00" + (len(payload) + 2).to_bytes(2, "little") + status.to_bytes(2, "little") + payload


# ============================================================================
# A1E
# ============================================================================


class TestA1EBinary:
    """12-byte A1E requests and 2-byte-head replies."""

    codec = MelsecA1EBinaryCodec()

    def test_word_read_frame(self) -> None:
        spec = self.codec.parse_address("D100")
        frames = self.codec.encode_read(spec, 10, is_bit=False, session=Session())
        assert len(frames) == 1
        assert frames[0].data == bytes([0x01, 0xFF, 0x0A, 0x00, 100, 0, 0, 0, 0x20, 0x44, 10, 0])

    def test_plc_number_parameter(self) -> None:
        spec = self.codec.parse_address("s=3;D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        assert frame.data[1] == 3

    def test_read_ten_words_scenario(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 10, is_bit=False, session=Session())[0]
        payload = bytes(range(20))
        head = b"\x81\x00"
        assert self.codec.content_length(head, frame.data) == 20
        result = self.codec.decode_response(head + payload, frame)
        assert result.status == 0
        assert result.payload == payload

    def test_bit_read_unpacks_nibbles(self) -> None:
        spec = self.codec.parse_address("M0")
        frame = self.codec.encode_read(spec, 3, is_bit=True, session=Session())[0]
        assert frame.data[0] == 0x00
        assert self.codec.content_length(b"\x80\x00", frame.data) == 2
        result = self.codec.decode_response(b"\x80\x00\x11\x00", frame)
        assert result.values == [True, True, False]

    def test_bit_write_packs_nibbles(self) -> None:
        spec = self.codec.parse_address("M10")
        frame = self.codec.encode_write(spec, [True, False, True], session=Session())
        assert frame.data[0] == 0x02
        assert frame.data[12:] == b"\x10\x10"

    def test_split_at_256_points(self) -> None:
        spec = self.codec.parse_address("D100")
        frames = self.codec.encode_read(spec, 300, is_bit=False, session=Session())
        assert [f.length for f in frames] == [256, 44]
        assert frames[1].spec.offset == 356
        # 256 travels as a zero low byte
        assert frames[0].data[10] == 0

    def test_abnormal_end_code(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        assert self.codec.content_length(b"\x81\x5b", frame.data) == 2
        with pytest.raises(ProtocolStatusError) as exc:
            self.codec.decode_response(b"\x81\x5b\x12\x00", frame)
        assert exc.value.code == 0x12

    def test_wrong_subtitle(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        with pytest.raises(FrameFormatError):
            self.codec.decode_response(b"\x83\x00\x00\x00", frame)

    def test_short_payload(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 2, is_bit=False, session=Session())[0]
        with pytest.raises(ShortResponse):
            self.codec.decode_response(b"\x81\x00\x01\x00", frame)

    def test_bit_write_ceiling(self) -> None:
        spec = self.codec.parse_address("M0")
        with pytest.raises(LengthExceededError) as exc:
            self.codec.encode_write(spec, [True] * 161, session=Session())
        assert exc.value.ceiling == 160

    def test_zero_length_read(self) -> None:
        with pytest.raises(LengthExceededError):
            self.codec.encode_read(self.codec.parse_address("D0"), 0, is_bit=False, session=Session())

    def test_odd_word_payload(self) -> None:
        with pytest.raises(FrameFormatError):
            self.codec.encode_write(self.codec.parse_address("D0"), b"\x01", session=Session())


class TestA1EAscii:
    """A1E ASCII doubles every field into hex text."""

    codec = MelsecA1EAsciiCodec()

    def test_word_read_frame(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 10, is_bit=False, session=Session())[0]
        assert frame.data == b"01FF000A4420000000640A00"
        assert len(frame.data) == 24

    def test_word_read_reply(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 2, is_bit=False, session=Session())[0]
        assert self.codec.content_length(b"8100", frame.data) == 8
        result = self.codec.decode_response(b"810012340001", frame)
        assert result.payload == b"\x34\x12\x01\x00"

    def test_bit_write_pads_to_even(self) -> None:
        spec = self.codec.parse_address("M0")
        frame = self.codec.encode_write(spec, [True, False, True], session=Session())
        assert frame.data.endswith(b"1010")

    def test_abnormal_reply(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        with pytest.raises(ProtocolStatusError) as exc:
            self.codec.decode_response(b"815B1000", frame)
        assert exc.value.code == 0x10


# ============================================================================
# MC 3E
# ============================================================================


class TestMcBinary:
    """3E binary frames."""

    codec = MelsecMcBinaryCodec()

    def test_word_read_frame(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 10, is_bit=False, session=Session())[0]
        assert frame.data == (
            b"\x50\x00\x00\xff\xff\x03\x00\x0c\x00\x0a\x00"
            b"\x01\x04\x00\x00\x64\x00\x00\xa8\x0a\x00"
        )

    def test_station_override(self) -> None:
        spec = self.codec.parse_address("s=2;D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session(station=5))[0]
        assert frame.data[6] == 2

    def test_network_from_session(self) -> None:
        spec = self.codec.parse_address("D0")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session(network=3))[0]
        assert frame.data[2] == 3

    def test_split_into_ordered_subframes(self) -> None:
        spec = self.codec.parse_address("D100")
        frames = self.codec.encode_read(spec, 2000, is_bit=False, session=Session())
        assert [f.length for f in frames] == [950, 950, 100]
        assert [f.spec.offset for f in frames] == [100, 1050, 2000]
        assert sum(f.length for f in frames) == 2000

    def test_split_bit_device_read_as_words_advances_by_16(self) -> None:
        spec = self.codec.parse_address("M0")
        frames = self.codec.encode_read(spec, 1000, is_bit=False, session=Session())
        assert [f.spec.offset for f in frames] == [0, 950 * 16]

    def test_read_ending_at_top_offset(self) -> None:
        spec = self.codec.parse_address("D16776216")
        frames = self.codec.encode_read(spec, 1000, is_bit=False, session=Session())
        assert [f.spec.offset for f in frames] == [16776216, 16777166]

    def test_read_running_past_top_offset(self) -> None:
        spec = self.codec.parse_address("D16777000")
        with pytest.raises(LengthExceededError):
            self.codec.encode_read(spec, 1000, is_bit=False, session=Session())

    def test_bit_device_words_past_top_offset(self) -> None:
        spec = self.codec.parse_address("M16776960")
        assert len(self.codec.encode_read(spec, 16, is_bit=False, session=Session())) == 1
        with pytest.raises(LengthExceededError):
            self.codec.encode_read(spec, 17, is_bit=False, session=Session())

    def test_split_responses_concatenate(self) -> None:
        spec = self.codec.parse_address("D0")
        frames = self.codec.encode_read(spec, 1900, is_bit=False, session=Session())
        expected = bytes(i % 251 for i in range(3800))
        chunks = [expected[:1900], expected[1900:]]
        decoded = b"".join(
            self.codec.decode_response(mc_reply(chunk), frame).payload for frame, chunk in zip(frames, chunks)
        )
        assert decoded == expected

    def test_content_length_from_head(self) -> None:
        assert self.codec.content_length(mc_reply(b"\x01\x00")[:9], b"") == 4

    def test_error_status(self) -> None:
        spec = self.codec.parse_address("D0")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        with pytest.raises(ProtocolStatusError) as exc:
            self.codec.decode_response(mc_reply(status=0xC051), frame)
        assert exc.value.code == 0xC051
        assert "points" in exc.value.description

    def test_write_frame_payload(self) -> None:
        spec = self.codec.parse_address("D0")
        frame = self.codec.encode_write(spec, b"\x01\x00\x02\x00", session=Session())
        assert frame.function == Function.WRITE
        assert frame.data[11:13] == b"\x01\x14"
        assert frame.data[-4:] == b"\x01\x00\x02\x00"
        assert int.from_bytes(frame.data[7:9], "little") == len(frame.data) - 9

    def test_bit_read_reply(self) -> None:
        spec = self.codec.parse_address("M0")
        frame = self.codec.encode_read(spec, 4, is_bit=True, session=Session())[0]
        result = self.codec.decode_response(mc_reply(b"\x10\x01"), frame)
        assert result.values == [True, False, False, True]

    def test_bad_subheader(self) -> None:
        spec = self.codec.parse_address("D0")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        with pytest.raises(FrameFormatError):
            self.codec.decode_response(b"\x00" * 13, frame)


class TestMcAscii:
    """3E ASCII frames."""

    codec = MelsecMcAsciiCodec()

    def test_word_read_frame(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 10, is_bit=False, session=Session())[0]
        assert frame.data == b"500000FF03FF000018001004010000D*000100000A"

    def test_hex_device_number(self) -> None:
        spec = self.codec.parse_address("X1A0")
        frame = self.codec.encode_read(spec, 1, is_bit=True, session=Session())[0]
        assert frame.data.endswith(b"04010001X*0001A00001")

    def test_word_reply(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 2, is_bit=False, session=Session())[0]
        raw = b"D00000FF03FF00000C0000" + b"00010002"
        assert self.codec.content_length(raw[:18], frame.data) == 12
        assert self.codec.decode_response(raw, frame).payload == b"\x01\x00\x02\x00"

    def test_error_reply(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        with pytest.raises(ProtocolStatusError) as exc:
            self.codec.decode_response(b"D00000FF03FF000004C056", frame)
        assert exc.value.code == 0xC056

    def test_ascii_ceiling_splits_earlier(self) -> None:
        spec = self.codec.parse_address("D0")
        assert [f.length for f in self.codec.encode_read(spec, 500, is_bit=False, session=Session())] == [460, 40]

    def test_seven_digit_decimal_device_rejected(self) -> None:
        with pytest.raises(AddressParseError) as exc:
            self.codec.parse_address("D1000000")
        assert exc.value.reason == ParseFailure.OUT_OF_RANGE

    def test_six_digit_device_numbers_fill_the_field(self) -> None:
        decimal = self.codec.encode_read(self.codec.parse_address("D999999"), 1, is_bit=False, session=Session())[0]
        hexadecimal = self.codec.encode_read(self.codec.parse_address("XFFFFF0"), 1, is_bit=True, session=Session())[0]
        assert decimal.data.endswith(b"D*9999990001")
        assert hexadecimal.data.endswith(b"X*FFFFF00001")
        assert len(decimal.data) == len(hexadecimal.data)

    def test_read_running_past_six_digits(self) -> None:
        spec = self.codec.parse_address("D999990")
        with pytest.raises(LengthExceededError):
            self.codec.encode_read(spec, 20, is_bit=False, session=Session())


# ============================================================================
# A3C
# ============================================================================


class TestA3C:
    """Format 4: ENQ/STX envelope, sum check, CR LF."""

    codec = MelsecA3CCodec()

    def test_read_frame_envelope(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        assert frame.data.startswith(b"\x05F90000FF0004010000D*0001000001")
        assert frame.data.endswith(b"\r\n")
        assert self.codec.checksum.verify(frame.data)

    def test_read_reply(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        raw = self.codec.checksum.append(b"\x02F90000FF001234\x03", b"\r\n")
        assert self.codec.decode_response(raw, frame).payload == b"\x34\x12"

    def test_reply_with_bad_sum(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        with pytest.raises(ChecksumMismatch):
            self.codec.decode_response(b"\x02F90000FF001234\x0300\r\n", frame)

    def test_write_ack(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_write(spec, b"\x01\x00", session=Session())
        assert self.codec.decode_response(b"\x06F90000FF00\r\n", frame).payload == b""

    def test_nak_carries_code(self) -> None:
        spec = self.codec.parse_address("D100")
        frame = self.codec.encode_read(spec, 1, is_bit=False, session=Session())[0]
        with pytest.raises(ProtocolStatusError) as exc:
            self.codec.decode_response(b"\x15F90000FF00C051\r\n", frame)
        assert exc.value.code == 0xC051

    def test_without_sum_check(self) -> None:
        codec = MelsecA3CCodec(sum_check=False)
        frame = codec.encode_read(codec.parse_address("D100"), 1, is_bit=False, session=Session())[0]
        assert frame.data.endswith(b"0001\r\n")

    def test_seven_digit_decimal_device_rejected(self) -> None:
        with pytest.raises(AddressParseError) as exc:
            self.codec.parse_address("D1000000")
        assert exc.value.reason == ParseFailure.OUT_OF_RANGE

    def test_largest_decimal_device_keeps_frame_width(self) -> None:
        frame = self.codec.encode_read(self.codec.parse_address("D999999"), 1, is_bit=False, session=Session())[0]
        assert frame.data.startswith(b"\x05F90000FF0004010000D*9999990001")


def test_unknown_melsec_status_description() -> None:
    assert "manual" in describe_melsec_status(0x1234)
