"""
TransactionClient: drives one connection through connect, handshake and
send/receive/decode transactions using an injected FrameCodec.

Every public operation returns a Result; expected failures never raise.
"""

import asyncio
import logging
import threading
from enum import Enum, auto
from typing import Any, Callable, Sequence

from .codec import FrameCodec
from .errors import FrameFormatError, PlcAdapterError, ProtocolStatusError, TransportError
from .result import Result
from .transform import ByteTransform
from .transport import AsyncTcpTransport, AsyncUdpTransport, TcpTransport, UdpTransport
from .types import CommandFrame, ResponseFrame, Session

logger = logging.getLogger(__name__)

_VALUE_WORDS = {"int16": 1, "uint16": 1, "int32": 2, "uint32": 2, "float": 2}


class ConnectionState(Enum):
    DISCONNECTED = auto()
    CONNECTING = auto()
    HANDSHAKING = auto()
    READY = auto()
    SENDING = auto()
    RECEIVING = auto()


_TRANSITIONS: dict[ConnectionState, set[ConnectionState]] = {
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING},
    ConnectionState.CONNECTING: {ConnectionState.HANDSHAKING, ConnectionState.READY},
    ConnectionState.HANDSHAKING: {ConnectionState.READY},
    ConnectionState.READY: {ConnectionState.SENDING},
    ConnectionState.SENDING: {ConnectionState.RECEIVING},
    ConnectionState.RECEIVING: {ConnectionState.READY},
}


def _join_payloads(responses: list[ResponseFrame]) -> bytes:
    return b"".join(r.payload for r in responses)


def _join_values(responses: list[ResponseFrame]) -> list[bool]:
    values: list[bool] = []
    for r in responses:
        values.extend(r.values or [])
    return values


class _TransactionCore:
    """Configuration, state machine and the I/O-free steps shared by both clients."""

    def __init__(
        self,
        codec: FrameCodec,
        host: str,
        port: int | None = None,
        *,
        timeout: float = 3.0,
        station: int | None = None,
        session: Session | None = None,
    ) -> None:
        self.codec = codec
        self.host = host
        self.port = port if port is not None else codec.default_port
        self.timeout = timeout
        self.session = session if session is not None else Session()
        if station is not None:
            self.session.station = station
        self.transform = ByteTransform(codec.word_order)
        self._state = ConnectionState.DISCONNECTED

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.codec.name} {self.host}:{self.port} {self._state.name}>"

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == ConnectionState.READY

    def _set_state(self, new: ConnectionState) -> None:
        # any state may fall back to DISCONNECTED
        if new != ConnectionState.DISCONNECTED and new not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Illegal connection state change {self._state.name} -> {new.name}")
        if new != self._state:
            logger.debug("%s:%s %s -> %s", self.host, self.port, self._state.name, new.name)
        self._state = new

    def _not_ready(self) -> TransportError:
        return TransportError(
            f"Not connected to {self.host}:{self.port}; call connect() first", host=self.host, port=self.port
        )

    def _content_length(self, sent: bytes) -> Callable[[bytes], int]:
        return lambda head: self.codec.content_length(head, sent)

    def _log_send(self, data: bytes) -> None:
        logger.debug("%s send: %s", self.codec.name, self.codec.render(data))

    def _log_receive(self, data: bytes) -> None:
        logger.debug("%s recv: %s", self.codec.name, self.codec.render(data))

    def _plan(self, plan: Callable[[], list[CommandFrame]]) -> list[CommandFrame]:
        """Encode a request; a field that will not fit its wire width is a format error."""
        try:
            return plan()
        except (OverflowError, ValueError) as e:
            raise FrameFormatError(f"Request cannot be encoded: {e}") from e

    def _plan_read(self, address: str, length: int, is_bit: bool) -> list[CommandFrame]:
        spec = self.codec.parse_address(address)
        return self.codec.encode_read(spec, length, is_bit=is_bit, session=self.session)

    def _plan_write(self, address: str, values: bytes | Sequence[bool]) -> list[CommandFrame]:
        spec = self.codec.parse_address(address)
        return [self.codec.encode_write(spec, values, session=self.session)]

    def _values(self, result: Result[bytes], kind: str) -> Result[list[Any]]:
        if not result.is_success:
            return Result.fail(result.error)  # type: ignore[arg-type]
        return Result.ok(self.transform.to_values(result.content or b"", kind))

    def _encode_values(self, values: Any, kind: str) -> bytes:
        items = list(values) if isinstance(values, (list, tuple)) else [values]
        return {
            "int16": self.transform.from_int16,
            "uint16": self.transform.from_uint16,
            "int32": self.transform.from_int32,
            "float": self.transform.from_float,
        }[kind](items)


class TransactionClient(_TransactionCore):
    """
    Blocking client. One request is in flight at a time; concurrent callers
    are serialized on an internal lock.

    Example::

        client = TransactionClient(MelsecMcBinaryCodec(), "192.168.0.10", 6000)
        if client.connect():
            result = client.read("D100", 10)
            if result.is_success:
                print(result.content.hex())
    """

    def __init__(self, codec: FrameCodec, host: str, port: int | None = None, **kwargs: Any) -> None:
        super().__init__(codec, host, port, **kwargs)
        transport_cls = UdpTransport if codec.datagram else TcpTransport
        self._transport = transport_cls(self.host, self.port, self.timeout)
        self._lock = threading.Lock()

    def connect(self) -> Result[None]:
        """Open the transport and run the codec's handshake, if it has one."""
        with self._lock:
            if self._state == ConnectionState.READY:
                return Result.ok()
            self._set_state(ConnectionState.CONNECTING)
            try:
                self._transport.open()
                hello = self.codec.handshake_request(self.session)
                if hello is not None:
                    self._set_state(ConnectionState.HANDSHAKING)
                    self._log_send(hello)
                    self._transport.send(hello)
                    reply = self._transport.receive(
                        self.codec.response_head_length, self._content_length(hello), self.codec.terminator
                    )
                    self._log_receive(reply)
                    self.codec.apply_handshake(reply, self.session)
                self._set_state(ConnectionState.READY)
            except PlcAdapterError as e:
                logger.warning("Connect to %s:%s failed: %s", self.host, self.port, e)
                self._drop()
                return Result.fail(e)
            logger.info("Connected to %s:%s (%s)", self.host, self.port, self.codec.name)
            return Result.ok()

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        with self._lock:
            self._drop()

    def _drop(self) -> None:
        self._transport.close()
        self._set_state(ConnectionState.DISCONNECTED)

    def __enter__(self) -> "TransactionClient":
        self.connect()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _exchange(self, frame: CommandFrame) -> ResponseFrame:
        self._set_state(ConnectionState.SENDING)
        self._log_send(frame.data)
        self._transport.send(frame.data)
        self._set_state(ConnectionState.RECEIVING)
        raw = self._transport.receive(
            self.codec.response_head_length, self._content_length(frame.data), self.codec.terminator
        )
        self._log_receive(raw)
        self._set_state(ConnectionState.READY)
        return self.codec.decode_response(raw, frame)

    def _run(self, plan: Callable[[], list[CommandFrame]]) -> Result[list[ResponseFrame]]:
        with self._lock:
            try:
                frames = self._plan(plan)
            except PlcAdapterError as e:
                return Result.fail(e)
            if self._state != ConnectionState.READY:
                return Result.fail(self._not_ready())
            try:
                return Result.ok([self._exchange(frame) for frame in frames])
            except ProtocolStatusError as e:
                # a well-formed error reply leaves the stream in sync
                self._state = ConnectionState.READY
                return Result.fail(e)
            except PlcAdapterError as e:
                logger.warning("Transaction with %s:%s failed, disconnecting: %s", self.host, self.port, e)
                self._drop()
                return Result.fail(e)

    def read(self, address: str, length: int = 1) -> Result[bytes]:
        """Read ``length`` words starting at ``address``; content is the raw register bytes."""
        result = self._run(lambda: self._plan_read(address, length, False))
        if not result.is_success:
            return Result.fail(result.error)  # type: ignore[arg-type]
        return Result.ok(_join_payloads(result.content or []))

    def read_bool(self, address: str, length: int = 1) -> Result[list[bool]]:
        """Read ``length`` bits starting at ``address``."""
        result = self._run(lambda: self._plan_read(address, length, True))
        if not result.is_success:
            return Result.fail(result.error)  # type: ignore[arg-type]
        return Result.ok(_join_values(result.content or []))

    def write(self, address: str, data: bytes) -> Result[None]:
        """Write raw register bytes (two per word) starting at ``address``."""
        result = self._run(lambda: self._plan_write(address, bytes(data)))
        return Result.ok() if result.is_success else Result.fail(result.error)  # type: ignore[arg-type]

    def write_bool(self, address: str, values: bool | Sequence[bool]) -> Result[None]:
        bits = [values] if isinstance(values, bool) else [bool(v) for v in values]
        result = self._run(lambda: self._plan_write(address, bits))
        return Result.ok() if result.is_success else Result.fail(result.error)  # type: ignore[arg-type]

    def read_int16(self, address: str, length: int = 1) -> Result[list[int]]:
        return self._values(self.read(address, length), "int16")

    def read_uint16(self, address: str, length: int = 1) -> Result[list[int]]:
        return self._values(self.read(address, length), "uint16")

    def read_int32(self, address: str, length: int = 1) -> Result[list[int]]:
        return self._values(self.read(address, length * 2), "int32")

    def read_float(self, address: str, length: int = 1) -> Result[list[float]]:
        return self._values(self.read(address, length * 2), "float")

    def write_int16(self, address: str, values: int | list[int]) -> Result[None]:
        return self.write(address, self._encode_values(values, "int16"))

    def write_int32(self, address: str, values: int | list[int]) -> Result[None]:
        return self.write(address, self._encode_values(values, "int32"))

    def write_float(self, address: str, values: float | list[float]) -> Result[None]:
        return self.write(address, self._encode_values(values, "float"))


class AsyncTransactionClient(_TransactionCore):
    """asyncio counterpart of TransactionClient with the same decisions at each step."""

    def __init__(self, codec: FrameCodec, host: str, port: int | None = None, **kwargs: Any) -> None:
        super().__init__(codec, host, port, **kwargs)
        transport_cls = AsyncUdpTransport if codec.datagram else AsyncTcpTransport
        self._transport = transport_cls(self.host, self.port, self.timeout)
        self._lock: asyncio.Lock | None = None

    def _get_lock(self) -> asyncio.Lock:
        # created lazily so the lock binds to the loop that uses it
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def connect(self) -> Result[None]:
        async with self._get_lock():
            if self._state == ConnectionState.READY:
                return Result.ok()
            self._set_state(ConnectionState.CONNECTING)
            try:
                await self._transport.open()
                hello = self.codec.handshake_request(self.session)
                if hello is not None:
                    self._set_state(ConnectionState.HANDSHAKING)
                    self._log_send(hello)
                    await self._transport.send(hello)
                    reply = await self._transport.receive(
                        self.codec.response_head_length, self._content_length(hello), self.codec.terminator
                    )
                    self._log_receive(reply)
                    self.codec.apply_handshake(reply, self.session)
                self._set_state(ConnectionState.READY)
            except PlcAdapterError as e:
                logger.warning("Connect to %s:%s failed: %s", self.host, self.port, e)
                await self._drop()
                return Result.fail(e)
            logger.info("Connected to %s:%s (%s)", self.host, self.port, self.codec.name)
            return Result.ok()

    async def close(self) -> None:
        async with self._get_lock():
            await self._drop()

    async def _drop(self) -> None:
        await self._transport.close()
        self._set_state(ConnectionState.DISCONNECTED)

    async def __aenter__(self) -> "AsyncTransactionClient":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def _exchange(self, frame: CommandFrame) -> ResponseFrame:
        self._set_state(ConnectionState.SENDING)
        self._log_send(frame.data)
        await self._transport.send(frame.data)
        self._set_state(ConnectionState.RECEIVING)
        raw = await self._transport.receive(
            self.codec.response_head_length, self._content_length(frame.data), self.codec.terminator
        )
        self._log_receive(raw)
        self._set_state(ConnectionState.READY)
        return self.codec.decode_response(raw, frame)

    async def _run(self, plan: Callable[[], list[CommandFrame]]) -> Result[list[ResponseFrame]]:
        async with self._get_lock():
            try:
                frames = self._plan(plan)
            except PlcAdapterError as e:
                return Result.fail(e)
            if self._state != ConnectionState.READY:
                return Result.fail(self._not_ready())
            try:
                return Result.ok([await self._exchange(frame) for frame in frames])
            except ProtocolStatusError as e:
                self._state = ConnectionState.READY
                return Result.fail(e)
            except PlcAdapterError as e:
                logger.warning("Transaction with %s:%s failed, disconnecting: %s", self.host, self.port, e)
                await self._drop()
                return Result.fail(e)

    async def read(self, address: str, length: int = 1) -> Result[bytes]:
        result = await self._run(lambda: self._plan_read(address, length, False))
        if not result.is_success:
            return Result.fail(result.error)  # type: ignore[arg-type]
        return Result.ok(_join_payloads(result.content or []))

    async def read_bool(self, address: str, length: int = 1) -> Result[list[bool]]:
        result = await self._run(lambda: self._plan_read(address, length, True))
        if not result.is_success:
            return Result.fail(result.error)  # type: ignore[arg-type]
        return Result.ok(_join_values(result.content or []))

    async def write(self, address: str, data: bytes) -> Result[None]:
        result = await self._run(lambda: self._plan_write(address, bytes(data)))
        return Result.ok() if result.is_success else Result.fail(result.error)  # type: ignore[arg-type]

    async def write_bool(self, address: str, values: bool | Sequence[bool]) -> Result[None]:
        bits = [values] if isinstance(values, bool) else [bool(v) for v in values]
        result = await self._run(lambda: self._plan_write(address, bits))
        return Result.ok() if result.is_success else Result.fail(result.error)  # type: ignore[arg-type]

    async def read_int16(self, address: str, length: int = 1) -> Result[list[int]]:
        return self._values(await self.read(address, length), "int16")

    async def read_float(self, address: str, length: int = 1) -> Result[list[float]]:
        return self._values(await self.read(address, length * 2), "float")

    async def write_int16(self, address: str, values: int | list[int]) -> Result[None]:
        return await self.write(address, self._encode_values(values, "int16"))

    async def write_float(self, address: str, values: float | list[float]) -> Result[None]:
        return await self.write(address, self._encode_values(values, "float"))
