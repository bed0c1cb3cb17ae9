"""Tests for device tables, key=value parameters and address resolution."""

import pytest

from pyplc_adapter.address import (
    AddressResolver,
    DeviceTable,
    extract_parameter,
    extract_parameters,
    parse_int_literal,
)
from pyplc_adapter.errors import AddressParseError, UnsupportedDeviceType
from pyplc_adapter.omron_fins import OmronFinsUdpCodec
from pyplc_adapter.types import DataMode, ParseFailure


@pytest.fixture
def a1e() -> AddressResolver:
    return AddressResolver(DeviceTable("melsec_a1e"))


@pytest.fixture
def mc() -> AddressResolver:
    return AddressResolver(DeviceTable("melsec_mc"))


class TestDeviceTable:
    """Packaged and override device tables."""

    def test_packaged_profiles_load(self) -> None:
        assert len(DeviceTable("melsec_a1e")) == 15
        assert len(DeviceTable("melsec_mc")) == 28
        assert len(DeviceTable("omron_fins")) == 10

    def test_unknown_profile_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown device table profile"):
            DeviceTable("nonexistent")

    def test_override_rows(self) -> None:
        table = DeviceTable(map_override=[{"prefix": "q", "code": "0x10", "mode": "word", "base": 16}])
        device = table.lookup("Q")
        assert device.code == 0x10
        assert device.mode == DataMode.WORD
        assert "q" in table
        assert table.profile == "custom"

    def test_duplicate_prefix_rejected(self) -> None:
        rows = [{"prefix": "D", "code": 1, "mode": "word"}, {"prefix": "d", "code": 2, "mode": "word"}]
        with pytest.raises(ValueError, match="Duplicate prefix"):
            DeviceTable(map_override=rows)

    def test_unknown_mode_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown mode"):
            DeviceTable(map_override=[{"prefix": "D", "code": 1, "mode": "dword"}])

    def test_lookup_missing_raises_unsupported(self) -> None:
        with pytest.raises(UnsupportedDeviceType):
            DeviceTable("melsec_mc").lookup("Q")

    def test_by_code_matches_word_and_bit_codes(self) -> None:
        table = DeviceTable("omron_fins")
        assert table.by_code(0x82).prefix == "D"
        assert table.by_code(0x02).prefix == "D"
        assert table.by_code(0x99) is None

    def test_by_ascii(self) -> None:
        table = DeviceTable("melsec_mc")
        assert table.by_ascii("d*").prefix == "D"
        assert table.by_ascii("ZR").prefix == "ZR"


class TestParameters:
    """key=value; address parameters."""

    @pytest.mark.parametrize(("text", "expected"), [("10", 10), ("0x10", 16), ("010", 8), ("0", 0)])
    def test_parse_int_literal(self, text: str, expected: int) -> None:
        assert parse_int_literal(text) == expected

    def test_extract_single_parameter(self) -> None:
        assert extract_parameter("s=0x10;D100", "s") == (16, "D100")
        assert extract_parameter("D100", "s", 3) == (3, "D100")

    def test_extract_all_parameters(self) -> None:
        params, rest = extract_parameters("s=2;net=1;D100")
        assert params == {"s": 2, "net": 1}
        assert rest == "D100"


class TestAddressResolver:
    """Prefix matching, numeral bases and failure reasons."""

    def test_decimal_device(self, a1e: AddressResolver) -> None:
        spec = a1e.parse("D100")
        assert spec.device.prefix == "D"
        assert spec.device.base == 10
        assert spec.offset == 100
        assert spec.bit_index is None

    def test_octal_hint_leading_zero(self, a1e: AddressResolver) -> None:
        assert a1e.parse("X017").offset == 15

    def test_hex_without_leading_zero(self, a1e: AddressResolver) -> None:
        assert a1e.parse("X17").offset == 0x17

    def test_hex_device(self, mc: AddressResolver) -> None:
        assert mc.parse("X1A0").offset == 0x1A0

    def test_case_insensitive(self, mc: AddressResolver) -> None:
        assert mc.parse("d100").device.prefix == "D"

    @pytest.mark.parametrize(("address", "prefix", "offset"), [("ZR100", "ZR", 0x100), ("SB10", "SB", 0x10), ("SM5", "SM", 5)])
    def test_longest_prefix_wins(self, mc: AddressResolver, address: str, prefix: str, offset: int) -> None:
        spec = mc.parse(address)
        assert spec.device.prefix == prefix
        assert spec.offset == offset

    def test_parameters_are_stripped(self, mc: AddressResolver) -> None:
        spec = mc.parse("s=2;D100")
        assert spec.offset == 100
        assert spec.param("s") == 2
        assert spec.param("x", 7) == 7

    def test_base_100_parses_as_decimal(self, mc: AddressResolver) -> None:
        assert mc.parse("SN150").offset == 150

    def test_unknown_prefix(self, a1e: AddressResolver) -> None:
        with pytest.raises(AddressParseError) as exc:
            a1e.parse("Q1")
        assert exc.value.reason == ParseFailure.UNKNOWN_PREFIX
        assert exc.value.address == "Q1"

    @pytest.mark.parametrize("address", ["D12G", "D", "D-1", "D1 2"])
    def test_malformed_numeral(self, a1e: AddressResolver, address: str) -> None:
        with pytest.raises(AddressParseError) as exc:
            a1e.parse(address)
        assert exc.value.reason == ParseFailure.MALFORMED_NUMERAL

    def test_hex_digit_in_decimal_device(self, a1e: AddressResolver) -> None:
        with pytest.raises(AddressParseError) as exc:
            a1e.parse("D1F")
        assert exc.value.reason == ParseFailure.MALFORMED_NUMERAL

    def test_empty_address(self, a1e: AddressResolver) -> None:
        with pytest.raises(AddressParseError):
            a1e.parse("   ")

    def test_out_of_range(self) -> None:
        resolver = AddressResolver(DeviceTable("melsec_mc"), max_offset=0xFFFF)
        with pytest.raises(AddressParseError) as exc:
            resolver.parse("D70000")
        assert exc.value.reason == ParseFailure.OUT_OF_RANGE

    def test_bit_index_not_allowed(self, mc: AddressResolver) -> None:
        with pytest.raises(AddressParseError) as exc:
            mc.parse("M100.5")
        assert exc.value.reason == ParseFailure.BAD_BIT_INDEX


class TestOmronAddresses:
    """Bit indexes and extended memory banks on the Omron table."""

    @pytest.fixture
    def codec(self) -> OmronFinsUdpCodec:
        return OmronFinsUdpCodec()

    def test_bit_index(self, codec: OmronFinsUdpCodec) -> None:
        spec = codec.parse_address("D100.5")
        assert spec.offset == 100
        assert spec.bit_index == 5

    def test_hex_bit_index(self, codec: OmronFinsUdpCodec) -> None:
        assert codec.parse_address("D100.A").bit_index == 10

    @pytest.mark.parametrize("address", ["D100.16", "D100.X"])
    def test_bad_bit_index(self, codec: OmronFinsUdpCodec, address: str) -> None:
        with pytest.raises(AddressParseError) as exc:
            codec.parse_address(address)
        assert exc.value.reason == ParseFailure.BAD_BIT_INDEX

    def test_long_prefix_alias(self, codec: OmronFinsUdpCodec) -> None:
        spec = codec.parse_address("CIO10")
        assert spec.device.code == 0xB0
        assert spec.offset == 10

    def test_extended_memory_bank(self, codec: OmronFinsUdpCodec) -> None:
        spec = codec.parse_address("E1.100")
        assert spec.device.code == 0xA1
        assert spec.device.bit_code == 0x21
        assert spec.offset == 100

    def test_high_extended_memory_bank(self, codec: OmronFinsUdpCodec) -> None:
        assert codec.parse_address("E10.0").device.code == 0x60

    def test_missing_extended_memory_bank(self, codec: OmronFinsUdpCodec) -> None:
        with pytest.raises(AddressParseError) as exc:
            codec.parse_address("E19.0")
        assert exc.value.reason == ParseFailure.OUT_OF_RANGE

    def test_word_offset_ceiling(self, codec: OmronFinsUdpCodec) -> None:
        with pytest.raises(AddressParseError) as exc:
            codec.parse_address("D65536")
        assert exc.value.reason == ParseFailure.OUT_OF_RANGE
