"""Tests for ByteTransform typed views in both word orders."""

import pytest

from pyplc_adapter.transform import ByteTransform


class TestLittleEndian:
    """MELSEC register layout."""

    t = ByteTransform("little")

    def test_int16(self) -> None:
        assert self.t.to_values(b"\xff\xff\x01\x00", "int16") == [-1, 1]
        assert self.t.from_int16([-1, 1]) == b"\xff\xff\x01\x00"

    def test_uint16(self) -> None:
        assert self.t.to_uint16(b"\x34\x12") == 0x1234

    def test_int32_low_word_first(self) -> None:
        assert self.t.to_int32(b"\x78\x56\x34\x12") == 0x12345678
        assert self.t.from_int32([0x12345678]) == b"\x78\x56\x34\x12"

    def test_float(self) -> None:
        assert self.t.from_float([1.0]) == b"\x00\x00\x80\x3f"
        assert self.t.to_float(b"\x00\x00\x80\x3f") == 1.0


class TestBigEndianWords:
    """Omron register layout: big-endian words, low word first."""

    t = ByteTransform("big")

    def test_uint16(self) -> None:
        assert self.t.to_uint16(b"\x12\x34") == 0x1234
        assert self.t.from_uint16([0x1234]) == b"\x12\x34"

    def test_int32(self) -> None:
        assert self.t.to_int32(b"\x56\x78\x12\x34") == 0x12345678

    def test_float(self) -> None:
        assert self.t.to_values(b"\x00\x00\x3f\x80", "float") == [1.0]
        assert self.t.from_float([1.0]) == b"\x00\x00\x3f\x80"

    def test_to_values_ignores_trailing_partial_value(self) -> None:
        assert self.t.to_values(b"\x00\x01\x00\x02\x00", "uint16") == [1, 2]


def test_unknown_word_order() -> None:
    with pytest.raises(ValueError):
        ByteTransform("middle")
