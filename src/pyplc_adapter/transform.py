"""ByteTransform: 16/32-bit integer and float views over register bytes in a codec's byte order."""

import struct


class ByteTransform:
    """
    MELSEC stores words little-endian with the low word first ("little").
    Omron stores each word big-endian, still low word first for 32-bit values ("big").
    """

    def __init__(self, word_order: str = "little") -> None:
        if word_order not in ("little", "big"):
            raise ValueError(f"word_order must be 'little' or 'big', got {word_order!r}")
        self.word_order = word_order

    def _to_little(self, data: bytes) -> bytes:
        """Reorder register bytes to plain little-endian."""
        if self.word_order == "little":
            return bytes(data)
        out = bytearray(len(data))
        out[0::2] = data[1::2]
        out[1::2] = data[0::2]
        return bytes(out)

    # the conversion is its own inverse
    _from_little = _to_little

    def to_uint16(self, data: bytes, index: int = 0) -> int:
        return struct.unpack("<H", self._to_little(data[index:index + 2]))[0]

    def to_int16(self, data: bytes, index: int = 0) -> int:
        return struct.unpack("<h", self._to_little(data[index:index + 2]))[0]

    def to_int32(self, data: bytes, index: int = 0) -> int:
        return struct.unpack("<i", self._to_little(data[index:index + 4]))[0]

    def to_uint32(self, data: bytes, index: int = 0) -> int:
        return struct.unpack("<I", self._to_little(data[index:index + 4]))[0]

    def to_float(self, data: bytes, index: int = 0) -> float:
        return struct.unpack("<f", self._to_little(data[index:index + 4]))[0]

    def from_int16(self, values: list[int]) -> bytes:
        return self._from_little(struct.pack(f"<{len(values)}h", *values))

    def from_uint16(self, values: list[int]) -> bytes:
        return self._from_little(struct.pack(f"<{len(values)}H", *values))

    def from_int32(self, values: list[int]) -> bytes:
        return self._from_little(struct.pack(f"<{len(values)}i", *values))

    def from_float(self, values: list[float]) -> bytes:
        return self._from_little(struct.pack(f"<{len(values)}f", *values))

    def to_values(self, data: bytes, kind: str) -> list[int] | list[float]:
        """Split ``data`` into values of ``kind`` (int16, uint16, int32, uint32, float)."""
        size, fn = {
            "int16": (2, self.to_int16),
            "uint16": (2, self.to_uint16),
            "int32": (4, self.to_int32),
            "uint32": (4, self.to_uint32),
            "float": (4, self.to_float),
        }[kind]
        return [fn(data, i) for i in range(0, len(data) - size + 1, size)]
