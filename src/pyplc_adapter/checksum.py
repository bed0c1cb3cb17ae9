"""8-bit additive and XOR checksums rendered as two ASCII hex characters."""

from dataclasses import dataclass
from enum import Enum

from .errors import ChecksumMismatch, ShortResponse


class ChecksumKind(str, Enum):
    SUM = "sum"
    XOR = "xor"


def checksum8(data: bytes, kind: ChecksumKind) -> int:
    """Low byte of the sum, or the XOR, of ``data``."""
    if kind == ChecksumKind.SUM:
        return sum(data) & 0xFF
    value = 0
    for b in data:
        value ^= b
    return value


def render_hex(value: int) -> bytes:
    return f"{value & 0xFF:02X}".encode("ascii")


@dataclass(frozen=True)
class ChecksumValidator:
    """
    Checksum over ``frame[start : len(frame) - trailer - 2]``, stored in the two
    bytes just before the ``trailer`` bytes (for example ``*`` CR, or CR LF).
    """

    kind: ChecksumKind
    start: int = 0
    trailer: int = 0

    def _field(self, frame: bytes) -> tuple[int, int]:
        end = len(frame) - self.trailer
        if end - 2 < self.start:
            raise ShortResponse(self.start + 2 + self.trailer, len(frame))
        return end - 2, end

    def calculate(self, frame: bytes) -> bytes:
        """Checksum for a frame that already reserves its two checksum bytes."""
        pos, _ = self._field(frame)
        return render_hex(checksum8(frame[self.start:pos], self.kind))

    def append(self, body: bytes, trailer: bytes = b"") -> bytes:
        """Return ``body`` + checksum over ``body[start:]`` + ``trailer``."""
        return body + render_hex(checksum8(body[self.start:], self.kind)) + trailer

    def build(self, frame: bytes) -> bytes:
        """Overwrite the checksum slot of ``frame`` in place of whatever it holds."""
        pos, end = self._field(frame)
        return frame[:pos] + self.calculate(frame) + frame[end:]

    def verify(self, frame: bytes) -> bool:
        pos, end = self._field(frame)
        return frame[pos:end].upper() == self.calculate(frame)

    def check(self, frame: bytes) -> None:
        """Like verify, but raise ChecksumMismatch."""
        pos, end = self._field(frame)
        expected = self.calculate(frame)
        if frame[pos:end].upper() != expected:
            raise ChecksumMismatch(expected, frame[pos:end])
