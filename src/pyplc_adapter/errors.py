"""Exception taxonomy for pyplc-adapter: address, framing, protocol status and transport failures."""

from .types import ParseFailure


class PlcAdapterError(Exception):
    """Base exception for pyplc-adapter."""

    pass


class AddressParseError(PlcAdapterError):
    """Raised when an address string cannot be resolved against a device table."""

    def __init__(self, address: str, reason: ParseFailure, message: str | None = None) -> None:
        self.address = address
        self.reason = reason
        super().__init__(message or f"Invalid address {address!r}: {reason.value}")


class UnsupportedDeviceType(PlcAdapterError):
    """Raised when a device family exists in no table the codec knows about."""

    def __init__(self, device: str, message: str | None = None) -> None:
        self.device = device
        super().__init__(message or f"Unsupported device type: {device!r}")


class LengthExceededError(PlcAdapterError):
    """Raised when a single-frame operation asks for more points than the protocol allows."""

    def __init__(self, requested: int, ceiling: int, message: str | None = None) -> None:
        self.requested = requested
        self.ceiling = ceiling
        super().__init__(message or f"Requested {requested} points, frame ceiling is {ceiling}")


class ChecksumMismatch(PlcAdapterError):
    """Raised when a frame's checksum field disagrees with the recomputed value."""

    def __init__(self, expected: bytes, actual: bytes) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Checksum mismatch: expected {expected!r}, got {actual!r}")


class ShortResponse(PlcAdapterError):
    """Raised when a frame is shorter than its minimum valid length."""

    def __init__(self, expected: int, actual: int, message: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(message or f"Frame too short: need {expected} bytes, got {actual}")


class FrameFormatError(PlcAdapterError):
    """Raised when a frame's envelope, header or command echo is not what the protocol requires."""

    def __init__(self, message: str, *, raw: bytes | None = None) -> None:
        self.raw = raw
        super().__init__(message)


class ProtocolStatusError(PlcAdapterError):
    """Raised when the remote end answered with a non-zero status or end code."""

    def __init__(self, code: int, description: str | None = None) -> None:
        self.code = code
        self.description = description or "Unknown error"
        super().__init__(f"Status 0x{code:04X}: {self.description}")


class TransportError(PlcAdapterError):
    """Raised when connecting, sending or receiving fails at the socket layer."""

    def __init__(
        self,
        message: str,
        *,
        host: str | None = None,
        port: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.cause = cause
        super().__init__(message)


class TransportTimeout(TransportError):
    """Raised when a connect or receive did not complete within the timeout."""

    pass
