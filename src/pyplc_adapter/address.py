"""Device tables and textual address resolution: prefix lookup, numeral bases, key=value; parameters."""

import json
import logging
import re
from importlib import resources
from typing import Any, Iterator

from .errors import AddressParseError, UnsupportedDeviceType
from .types import AddressSpec, DataMode, DeviceType, ParseFailure

logger = logging.getLogger(__name__)

_PROFILE_RESOURCE: dict[str, str] = {
    "melsec_a1e": "pyplc_adapter.data.melsec_a1e",
    "melsec_mc": "pyplc_adapter.data.melsec_mc",
    "omron_fins": "pyplc_adapter.data.omron_fins",
}

# key=value; with a hex (0x..), octal (leading 0) or decimal value
_PARAM_PATTERN = re.compile(r"([A-Za-z_]+)=(0[xX][0-9A-Fa-f]+|[0-9]+);")
_NUMERAL_PATTERN = re.compile(r"^[0-9A-Fa-f]+$")


def parse_int_literal(text: str) -> int:
    """Parse 0x-prefixed hex, leading-zero octal, or plain decimal."""
    v = text.strip()
    if v.lower().startswith("0x"):
        return int(v, 16)
    if len(v) > 1 and v.startswith("0"):
        return int(v, 8)
    return int(v)


def extract_parameter(address: str, name: str, default: int | None = None) -> tuple[int | None, str]:
    """
    Pull one ``name=value;`` parameter out of an address.

    Returns (value or default, address with the parameter text removed).
    """
    pattern = re.compile(rf"{re.escape(name)}=(0[xX][0-9A-Fa-f]+|[0-9]+);", re.IGNORECASE)
    m = pattern.search(address)
    if not m:
        return default, address
    return parse_int_literal(m.group(1)), address[: m.start()] + address[m.end():]


def extract_parameters(address: str) -> tuple[dict[str, int], str]:
    """Pull every ``key=value;`` parameter out of an address; keys are lower-cased."""
    params: dict[str, int] = {}
    for m in _PARAM_PATTERN.finditer(address):
        params[m.group(1).lower()] = parse_int_literal(m.group(2))
    return params, _PARAM_PATTERN.sub("", address)


def _parse_code(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 0)
    return int(value)


def _parse_entry(raw: dict[str, Any]) -> DeviceType:
    """Build a DeviceType from a JSON row (prefix, code, mode, base, ...)."""
    prefix = raw["prefix"]
    mode_str = raw["mode"]
    try:
        mode = DataMode(mode_str)
    except ValueError:
        raise ValueError(f"Unknown mode {mode_str!r} for device {prefix!r}")
    bit_code = raw.get("bit_code")
    return DeviceType(
        prefix=prefix.upper(),
        code=_parse_code(raw["code"]),
        mode=mode,
        base=int(raw.get("base", 10)),
        ascii_code=raw.get("ascii_code"),
        bit_code=_parse_code(bit_code) if bit_code is not None else None,
        octal_hint=bool(raw.get("octal_hint", False)),
    )


class DeviceTable:
    """
    Prefix -> DeviceType lookup for one controller family. Loaded from packaged
    JSON by profile name, or built from override rows.
    """

    def __init__(self, profile: str | None = None, map_override: list[dict[str, Any]] | None = None) -> None:
        self._profile = (profile or "custom").lower()
        self._by_prefix: dict[str, DeviceType] = {}

        if map_override is not None:
            entries = map_override
        else:
            resource_name = _PROFILE_RESOURCE.get(self._profile)
            if not resource_name:
                raise ValueError(f"Unknown device table profile: {profile!r}")
            pkg, name = resource_name.rsplit(".", 1)
            try:
                with resources.files(pkg).joinpath(f"{name}.json").open("r", encoding="utf-8") as f:
                    data = json.load(f)
            except FileNotFoundError:
                raise FileNotFoundError(f"Device table resource not found: {pkg}/{name}.json") from None
            entries = data["entries"] if isinstance(data, dict) else data

        for entry in entries:
            device = entry if isinstance(entry, DeviceType) else _parse_entry(entry)
            if device.prefix in self._by_prefix:
                raise ValueError(f"Duplicate prefix in device table: {device.prefix}")
            self._by_prefix[device.prefix] = device
        # longest first so "SB" wins over "S"
        self._prefixes = sorted(self._by_prefix, key=len, reverse=True)
        logger.debug("DeviceTable %s loaded: %d entries", self._profile, len(self._by_prefix))

    def lookup(self, prefix: str) -> DeviceType:
        """Return the DeviceType for an exact prefix; raise UnsupportedDeviceType if absent."""
        key = prefix.upper()
        if key not in self._by_prefix:
            raise UnsupportedDeviceType(prefix)
        return self._by_prefix[key]

    def by_code(self, code: int) -> DeviceType | None:
        """First device whose word or bit code equals ``code``."""
        for device in self._by_prefix.values():
            if device.code == code or device.bit_code == code:
                return device
        return None

    def by_ascii(self, ascii_code: str) -> DeviceType | None:
        for device in self._by_prefix.values():
            if device.ascii_code is not None and device.ascii_code.upper() == ascii_code.upper():
                return device
        return None

    def match(self, address: str) -> tuple[DeviceType, str]:
        """Split ``address`` into (device, numeral) using the longest matching prefix."""
        upper = address.upper()
        for prefix in self._prefixes:
            if upper.startswith(prefix):
                return self._by_prefix[prefix], address[len(prefix):]
        raise AddressParseError(address, ParseFailure.UNKNOWN_PREFIX)

    def __len__(self) -> int:
        return len(self._by_prefix)

    def __iter__(self) -> Iterator[DeviceType]:
        return iter(self._by_prefix.values())

    def __contains__(self, prefix: object) -> bool:
        return isinstance(prefix, str) and prefix.upper() in self._by_prefix

    @property
    def profile(self) -> str:
        return self._profile


class AddressResolver:
    """
    Parse address strings such as ``D100``, ``X1A0``, ``s=2;D100`` or ``D100.5``
    into an AddressSpec. Pure: no I/O and no state beyond configuration.
    """

    def __init__(
        self,
        table: DeviceTable,
        *,
        max_offset: int = 0xFFFFFF,
        allow_bit_index: bool = False,
        bit_separator: str = ".",
    ) -> None:
        self.table = table
        self.max_offset = max_offset
        self.allow_bit_index = allow_bit_index
        self.bit_separator = bit_separator

    def parse(self, address: str) -> AddressSpec:
        """Resolve ``address``; raise AddressParseError describing the first problem found."""
        try:
            params, rest = extract_parameters(address.strip())
        except ValueError:
            raise AddressParseError(address, ParseFailure.MALFORMED_NUMERAL, f"Malformed parameter in {address!r}")
        rest = rest.strip()
        if not rest:
            raise AddressParseError(address, ParseFailure.UNKNOWN_PREFIX, "Address cannot be empty")

        try:
            device, numeral = self.table.match(rest)
        except AddressParseError:
            raise AddressParseError(
                address, ParseFailure.UNKNOWN_PREFIX, f"Unknown device prefix in {address!r}"
            ) from None
        bit_index = None
        if self.bit_separator in numeral:
            if not self.allow_bit_index:
                raise AddressParseError(
                    address, ParseFailure.BAD_BIT_INDEX, f"Bit index not supported for {address!r}"
                )
            numeral, bit_text = numeral.split(self.bit_separator, 1)
            bit_index = self.parse_bit_index(address, bit_text)

        offset = self.parse_numeral(address, device, numeral)
        if offset > self.max_offset:
            raise AddressParseError(
                address, ParseFailure.OUT_OF_RANGE, f"Offset {offset} exceeds maximum {self.max_offset}"
            )
        return AddressSpec(device=device, offset=offset, bit_index=bit_index, params=params)

    def parse_numeral(self, address: str, device: DeviceType, numeral: str) -> int:
        if not _NUMERAL_PATTERN.match(numeral):
            raise AddressParseError(address, ParseFailure.MALFORMED_NUMERAL, f"Malformed numeral in {address!r}")
        base = device.base
        if device.octal_hint and len(numeral) > 1 and numeral.startswith("0"):
            base = 8
        if base == 100:
            base = 10
        try:
            return int(numeral, base)
        except ValueError:
            raise AddressParseError(
                address, ParseFailure.MALFORMED_NUMERAL, f"{numeral!r} is not a base-{base} number"
            ) from None

    def parse_bit_index(self, address: str, text: str) -> int:
        """Bit index within a word: decimal, or hexadecimal when it contains A-F."""
        if not _NUMERAL_PATTERN.match(text):
            raise AddressParseError(address, ParseFailure.BAD_BIT_INDEX, f"Malformed bit index in {address!r}")
        base = 16 if re.search(r"[A-Fa-f]", text) else 10
        index = int(text, base)
        if not 0 <= index <= 15:
            raise AddressParseError(
                address, ParseFailure.BAD_BIT_INDEX, f"Bit index must be between 0 and 15, got {index}"
            )
        return index
