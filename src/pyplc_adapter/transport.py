"""
Stream and datagram transports, blocking and asyncio.

A frame is complete either when a terminator has been read, or when a fixed
head has been read and the codec has computed, from that head, how many bytes
remain.
"""

import asyncio
import logging
import socket
from typing import Any, Callable

from .errors import FrameFormatError, TransportError, TransportTimeout

logger = logging.getLogger(__name__)

ContentLength = Callable[[bytes], int]

_MAX_DATAGRAM = 65535
_MAX_TERMINATED_FRAME = 1 << 16


# ============================================================================
# Blocking transports
# ============================================================================


class TcpTransport:
    """Blocking TCP connection with frame-aware receive."""

    def __init__(self, host: str, port: int, timeout: float = 3.0) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self._sock: socket.socket | None = None
        self._buffer = bytearray()

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def _error(self, message: str, exc: BaseException) -> TransportError:
        cls = TransportTimeout if isinstance(exc, (socket.timeout, TimeoutError)) else TransportError
        return cls(f"{message} {self.host}:{self.port}: {exc}", host=self.host, port=self.port, cause=exc)

    def open(self) -> None:
        try:
            self._sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        except OSError as e:
            raise self._error("Failed to connect to", e) from e
        self._buffer.clear()

    def close(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError as e:
                logger.warning("Error closing socket to %s:%s: %s", self.host, self.port, e)
            self._sock = None
        self._buffer.clear()

    def send(self, data: bytes) -> None:
        if self._sock is None:
            raise TransportError("Not connected", host=self.host, port=self.port)
        try:
            self._sock.sendall(data)
        except OSError as e:
            raise self._error("Send failed to", e) from e

    def _fill(self) -> None:
        if self._sock is None:
            raise TransportError("Not connected", host=self.host, port=self.port)
        try:
            chunk = self._sock.recv(4096)
        except OSError as e:
            raise self._error("Receive failed from", e) from e
        if not chunk:
            raise TransportError(
                f"Connection closed by {self.host}:{self.port}", host=self.host, port=self.port
            )
        self._buffer += chunk

    def read_exact(self, n: int) -> bytes:
        while len(self._buffer) < n:
            self._fill()
        data = bytes(self._buffer[:n])
        del self._buffer[:n]
        return data

    def read_until(self, terminator: bytes) -> bytes:
        while True:
            pos = self._buffer.find(terminator)
            if pos >= 0:
                end = pos + len(terminator)
                data = bytes(self._buffer[:end])
                del self._buffer[:end]
                return data
            if len(self._buffer) > _MAX_TERMINATED_FRAME:
                raise FrameFormatError("No terminator found in received data")
            self._fill()

    def receive(self, head_length: int, content_length: ContentLength, terminator: bytes | None) -> bytes:
        if self._sock is None:
            raise TransportError("Not connected", host=self.host, port=self.port)
        if terminator:
            return self.read_until(terminator)
        head = self.read_exact(head_length)
        rest = content_length(head)
        return head + self.read_exact(rest) if rest > 0 else head


class UdpTransport:
    """Blocking UDP socket; every datagram is one frame."""

    def __init__(self, host: str, port: int, timeout: float = 3.0) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self._sock: socket.socket | None = None

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def open(self) -> None:
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            sock.settimeout(self.timeout)
            sock.connect((self.host, self.port))
        except OSError as e:
            raise TransportError(f"Failed to open UDP socket to {self.host}:{self.port}: {e}", cause=e) from e
        self._sock = sock

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def send(self, data: bytes) -> None:
        if self._sock is None:
            raise TransportError("Not connected", host=self.host, port=self.port)
        try:
            self._sock.send(data)
        except OSError as e:
            raise TransportError(f"Send failed to {self.host}:{self.port}: {e}", cause=e) from e

    def receive(self, head_length: int, content_length: ContentLength, terminator: bytes | None) -> bytes:
        if self._sock is None:
            raise TransportError("Not connected", host=self.host, port=self.port)
        try:
            return self._sock.recv(_MAX_DATAGRAM)
        except (socket.timeout, TimeoutError) as e:
            raise TransportTimeout(
                f"Receive timed out from {self.host}:{self.port}", host=self.host, port=self.port, cause=e
            ) from e
        except OSError as e:
            raise TransportError(f"Receive failed from {self.host}:{self.port}: {e}", cause=e) from e


# ============================================================================
# asyncio transports
# ============================================================================


async def read_frame(
    reader: asyncio.StreamReader,
    head_length: int,
    content_length: ContentLength,
    terminator: bytes | None,
) -> bytes:
    """Read one frame from a stream; raises asyncio.IncompleteReadError on EOF."""
    if terminator:
        try:
            return await reader.readuntil(terminator)
        except asyncio.LimitOverrunError:
            raise FrameFormatError("No terminator found in received data") from None
    head = await reader.readexactly(head_length)
    rest = content_length(head)
    return head + await reader.readexactly(rest) if rest > 0 else head


class AsyncTcpTransport:
    """asyncio TCP connection with the same framing rules as TcpTransport."""

    def __init__(self, host: str, port: int, timeout: float = 3.0) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    @property
    def is_open(self) -> bool:
        return self._writer is not None

    async def open(self) -> None:
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise TransportTimeout(
                f"Connect timed out to {self.host}:{self.port}", host=self.host, port=self.port, cause=e
            ) from e
        except OSError as e:
            raise TransportError(f"Failed to connect to {self.host}:{self.port}: {e}", cause=e) from e

    async def close(self) -> None:
        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except OSError as e:
                logger.warning("Error closing connection to %s:%s: %s", self.host, self.port, e)
        self._reader = None
        self._writer = None

    async def send(self, data: bytes) -> None:
        if self._writer is None:
            raise TransportError("Not connected", host=self.host, port=self.port)
        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as e:
            raise TransportError(f"Send failed to {self.host}:{self.port}: {e}", cause=e) from e

    async def receive(self, head_length: int, content_length: ContentLength, terminator: bytes | None) -> bytes:
        if self._reader is None:
            raise TransportError("Not connected", host=self.host, port=self.port)
        try:
            return await asyncio.wait_for(
                read_frame(self._reader, head_length, content_length, terminator), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise TransportTimeout(
                f"Receive timed out from {self.host}:{self.port}", host=self.host, port=self.port, cause=e
            ) from e
        except asyncio.IncompleteReadError as e:
            raise TransportError(
                f"Connection closed by {self.host}:{self.port}", host=self.host, port=self.port, cause=e
            ) from e
        except OSError as e:
            raise TransportError(f"Receive failed from {self.host}:{self.port}: {e}", cause=e) from e


class _DatagramQueue(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.queue: asyncio.Queue[bytes] = asyncio.Queue()
        self.error: Exception | None = None

    def datagram_received(self, data: bytes, addr: Any) -> None:
        self.queue.put_nowait(data)

    def error_received(self, exc: Exception) -> None:
        self.error = exc


class AsyncUdpTransport:
    """asyncio UDP endpoint; every datagram is one frame."""

    def __init__(self, host: str, port: int, timeout: float = 3.0) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self._transport: asyncio.DatagramTransport | None = None
        self._protocol: _DatagramQueue | None = None

    @property
    def is_open(self) -> bool:
        return self._transport is not None

    async def open(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            self._transport, self._protocol = await loop.create_datagram_endpoint(
                _DatagramQueue, remote_addr=(self.host, self.port)
            )
        except OSError as e:
            raise TransportError(f"Failed to open UDP endpoint to {self.host}:{self.port}: {e}", cause=e) from e

    async def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
        self._transport = None
        self._protocol = None

    async def send(self, data: bytes) -> None:
        if self._transport is None:
            raise TransportError("Not connected", host=self.host, port=self.port)
        self._transport.sendto(data)

    async def receive(self, head_length: int, content_length: ContentLength, terminator: bytes | None) -> bytes:
        if self._protocol is None:
            raise TransportError("Not connected", host=self.host, port=self.port)
        if self._protocol.error is not None:
            raise TransportError(f"UDP error from {self.host}:{self.port}: {self._protocol.error}")
        try:
            return await asyncio.wait_for(self._protocol.queue.get(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise TransportTimeout(
                f"Receive timed out from {self.host}:{self.port}", host=self.host, port=self.port, cause=e
            ) from e
