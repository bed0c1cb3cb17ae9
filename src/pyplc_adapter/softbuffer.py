"""
In-memory register store backing the device server.

SoftBuffer is a fixed-capacity byte array guarded by one lock. MemoryRegion
maps one device family onto a SoftBuffer: bit families keep one byte per
point, word families two bytes per word. DeviceMemory groups the regions a
server exposes, keyed by device code.
"""

import logging
import struct
import threading
from typing import TYPE_CHECKING, Iterator, Sequence

from .codec import pack_bits, unpack_bits
from .types import DeviceType

if TYPE_CHECKING:
    from .codec import FrameCodec

logger = logging.getLogger(__name__)

DEFAULT_POINTS = 65536

_SNAPSHOT_MAGIC = b"PLCM"
_REGION_HEAD = struct.Struct(">iI")


class SoftBuffer:
    """
    Fixed-capacity byte store, safe for concurrent use.

    Reads past the end are zero-filled and writes past the end are clipped.
    Bit offsets address packed bits, least significant bit first; with
    ``reverse_bytes_by_word`` the two bytes of each word swap places, so bit 0
    of a big-endian word lands in its second byte.
    """

    def __init__(self, capacity: int = DEFAULT_POINTS, *, reverse_bytes_by_word: bool = False) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._data = bytearray(capacity)
        self._lock = threading.Lock()
        self.reverse_bytes_by_word = reverse_bytes_by_word

    @property
    def capacity(self) -> int:
        return len(self._data)

    def get_bytes(self, offset: int, length: int) -> bytes:
        if offset < 0 or length < 0:
            raise ValueError("offset and length must be non-negative")
        with self._lock:
            chunk = bytes(self._data[offset:offset + length])
        return chunk + bytes(length - len(chunk))

    def set_bytes(self, data: bytes, offset: int) -> None:
        if offset < 0:
            raise ValueError("offset must be non-negative")
        with self._lock:
            end = min(offset + len(data), len(self._data))
            if end > offset:
                self._data[offset:end] = data[: end - offset]

    def get_byte(self, offset: int) -> int:
        return self.get_bytes(offset, 1)[0]

    def set_byte(self, value: int, offset: int) -> None:
        self.set_bytes(bytes([value & 0xFF]), offset)

    def _bit_position(self, bit: int) -> tuple[int, int]:
        index = bit // 8
        if self.reverse_bytes_by_word:
            index ^= 1
        return index, bit % 8

    def get_bool(self, offset: int, count: int = 1) -> list[bool]:
        """Read ``count`` packed bits starting at bit ``offset``."""
        if offset < 0 or count < 0:
            raise ValueError("offset and count must be non-negative")
        values: list[bool] = []
        with self._lock:
            for bit in range(offset, offset + count):
                index, shift = self._bit_position(bit)
                values.append(index < len(self._data) and bool(self._data[index] & (1 << shift)))
        return values

    def set_bool(self, values: bool | Sequence[bool], offset: int) -> None:
        """Write packed bits starting at bit ``offset``; bits past the end are dropped."""
        if offset < 0:
            raise ValueError("offset must be non-negative")
        if isinstance(values, bool):
            values = [values]
        with self._lock:
            for i, value in enumerate(values):
                index, shift = self._bit_position(offset + i)
                if index >= len(self._data):
                    continue
                if value:
                    self._data[index] |= 1 << shift
                else:
                    self._data[index] &= ~(1 << shift) & 0xFF

    def save_to_bytes(self) -> bytes:
        with self._lock:
            return bytes(self._data)

    def load_from_bytes(self, blob: bytes) -> None:
        """Replace the contents with ``blob``, truncated or zero-padded to the capacity."""
        with self._lock:
            size = len(self._data)
            self._data[:] = bytes(blob[:size]) + bytes(max(0, size - len(blob)))


class MemoryRegion:
    """One device family's register space, addressed in points of that family."""

    def __init__(
        self, device: DeviceType, *, points: int = DEFAULT_POINTS, reverse_bytes_by_word: bool = False
    ) -> None:
        self.device = device
        self.points = points
        width = 1 if device.is_bit else 2
        self.buffer = SoftBuffer(points * width, reverse_bytes_by_word=reverse_bytes_by_word)

    def __repr__(self) -> str:
        return f"<MemoryRegion {self.device.prefix} points={self.points}>"

    @property
    def is_bit(self) -> bool:
        return self.device.is_bit

    def contains(self, start: int, length: int, is_bit: bool) -> bool:
        """True if ``length`` points from ``start`` fit inside the region."""
        if start < 0 or length < 0:
            return False
        if self.is_bit:
            needed = length if is_bit else length * 16
            return start + needed <= self.points
        limit = self.points * 16 if is_bit else self.points
        return start + length <= limit

    def read_words(self, start: int, length: int) -> bytes:
        """``length`` words from ``start``; a bit family packs 16 points per word."""
        if self.is_bit:
            raw = self.buffer.get_bytes(start, length * 16)
            return pack_bits([b != 0 for b in raw])
        return self.buffer.get_bytes(start * 2, length * 2)

    def write_words(self, start: int, data: bytes) -> None:
        if self.is_bit:
            bits = unpack_bits(data, (len(data) // 2) * 16)
            self.buffer.set_bytes(bytes(1 if b else 0 for b in bits), start)
        else:
            self.buffer.set_bytes(data, start * 2)

    def read_bits(self, start: int, length: int) -> list[bool]:
        """``length`` points from ``start``; a word family is read bit by bit from word ``start // 16``."""
        if self.is_bit:
            return [b != 0 for b in self.buffer.get_bytes(start, length)]
        return self.buffer.get_bool(start, length)

    def write_bits(self, start: int, values: Sequence[bool]) -> None:
        if self.is_bit:
            self.buffer.set_bytes(bytes(1 if v else 0 for v in values), start)
        else:
            self.buffer.set_bool(list(values), start)


class DeviceMemory:
    """The set of regions a server exposes, keyed by device code."""

    def __init__(self) -> None:
        self._regions: dict[int, MemoryRegion] = {}

    @classmethod
    def for_codec(cls, codec: "FrameCodec", points: int = DEFAULT_POINTS) -> "DeviceMemory":
        """One region per device family the codec serves."""
        memory = cls()
        reverse = codec.word_order == "big"
        for prefix in codec.server_devices:
            device = codec.table.lookup(prefix)
            memory.add_region(MemoryRegion(device, points=points, reverse_bytes_by_word=reverse))
        return memory

    def add_region(self, region: MemoryRegion) -> None:
        code = region.device.code
        if code in self._regions:
            raise ValueError(f"Region for device code 0x{code:X} already exists")
        self._regions[code] = region

    def region(self, code: int) -> MemoryRegion | None:
        return self._regions.get(code)

    def by_prefix(self, prefix: str) -> MemoryRegion | None:
        for region in self._regions.values():
            if region.device.prefix == prefix.upper():
                return region
        return None

    def __iter__(self) -> Iterator[MemoryRegion]:
        return iter(self._regions.values())

    def __len__(self) -> int:
        return len(self._regions)

    def save_to_bytes(self) -> bytes:
        """Opaque snapshot of every region."""
        parts = [_SNAPSHOT_MAGIC]
        for code in sorted(self._regions):
            data = self._regions[code].buffer.save_to_bytes()
            parts.append(_REGION_HEAD.pack(code, len(data)))
            parts.append(data)
        return b"".join(parts)

    def load_from_bytes(self, blob: bytes) -> None:
        """Restore a snapshot produced by save_to_bytes; unknown regions are skipped."""
        if blob[:4] != _SNAPSHOT_MAGIC:
            raise ValueError("Not a device memory snapshot")
        pos = 4
        while pos < len(blob):
            if pos + _REGION_HEAD.size > len(blob):
                raise ValueError("Truncated device memory snapshot")
            code, size = _REGION_HEAD.unpack_from(blob, pos)
            pos += _REGION_HEAD.size
            if pos + size > len(blob):
                raise ValueError("Truncated device memory snapshot")
            region = self._regions.get(code)
            if region is None:
                logger.warning("Snapshot region 0x%X has no matching device, skipped", code)
            else:
                region.buffer.load_from_bytes(blob[pos:pos + size])
            pos += size
