"""
DeviceServer: the virtual-controller side of a protocol.

Inbound frames are decoded with the same FrameCodec a client uses, routed
through a dispatch table keyed by (function, device code) to DeviceMemory
regions, and answered through the codec's response encoder. The asyncio
loop runs in a background thread so the server can be driven from
ordinary blocking code and tests.
"""

import asyncio
import logging
import threading
from collections import OrderedDict
from contextlib import suppress
from typing import Any, Callable

from .codec import FrameCodec
from .errors import PlcAdapterError
from .softbuffer import DeviceMemory, MemoryRegion
from .transport import read_frame
from .types import Function, Reply, ServerFault, ServerRequest

logger = logging.getLogger(__name__)

Handler = Callable[[ServerRequest], Reply]
Authorizer = Callable[[Any], bool]


class _DatagramEndpoint(asyncio.DatagramProtocol):
    """One packet in, one packet out."""

    def __init__(self, server: "DeviceServer", max_peers: int = 256) -> None:
        self.server = server
        self.max_peers = max_peers
        self.transport: asyncio.DatagramTransport | None = None
        # most recently seen peers last
        self._authorized: OrderedDict[Any, bool] = OrderedDict()

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: Any) -> None:
        if not self._is_authorized(addr):
            return
        try:
            response = self.server.handle_frame(data)
        except PlcAdapterError as e:
            logger.warning("Dropped malformed datagram from %s: %s", addr, e)
            return
        if self.transport is not None:
            self.transport.sendto(response, addr)

    def _is_authorized(self, addr: Any) -> bool:
        if addr in self._authorized:
            self._authorized.move_to_end(addr)
            return self._authorized[addr]
        allowed = self.server.authorize(addr)
        self._authorized[addr] = allowed
        if len(self._authorized) > self.max_peers:
            self._authorized.popitem(last=False)
        return allowed


class DeviceServer:
    """
    Serve a codec's protocol from in-memory device regions.

    Example::

        server = DeviceServer(MelsecMcBinaryCodec(), port=0)
        with server:
            client = TransactionClient(MelsecMcBinaryCodec(), "127.0.0.1", server.port)
            ...

    ``authorizer`` is called once per accepted connection (once per peer for
    datagram codecs) with the peer address; returning False closes the
    connection before any frame is read.
    """

    def __init__(
        self,
        codec: FrameCodec,
        memory: DeviceMemory | None = None,
        *,
        host: str = "127.0.0.1",
        port: int = 0,
        authorizer: Authorizer | None = None,
        enable_write: bool = True,
        station: int = 0,
        startup_timeout: float = 5.0,
        shutdown_timeout: float = 3.0,
    ) -> None:
        if not codec.supports_server:
            raise ValueError(f"Protocol {codec.name} has no server direction")
        self.codec = codec
        self.memory = memory if memory is not None else DeviceMemory.for_codec(codec)
        self.host = host
        self.port = port
        self.authorizer = authorizer
        self.enable_write = enable_write
        self.station = station
        self.running = True
        self.startup_timeout = startup_timeout
        self.shutdown_timeout = shutdown_timeout

        self._handlers: dict[tuple[Function, int | None], Handler] = {}
        for region in self.memory:
            self._register_region(region)
        self.register(Function.RUN, None, self._set_running(True))
        self.register(Function.STOP, None, self._set_running(False))

        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_event: asyncio.Event | None = None
        self._sessions: set[asyncio.Task[Any]] = set()
        self._ready = threading.Event()
        self._active = threading.Event()
        self._error: BaseException | None = None

    def __repr__(self) -> str:
        return f"<DeviceServer {self.codec.name} {self.host}:{self.port}>"

    # ------------------------------------------------------------------ dispatch

    def register(self, function: Function, device_code: int | None, handler: Handler) -> None:
        """Route ``function`` on ``device_code`` to ``handler``; replaces any existing route."""
        self._handlers[(function, device_code)] = handler

    def _register_region(self, region: MemoryRegion) -> None:
        def read(request: ServerRequest) -> Reply:
            if request.is_bit:
                return Reply(values=region.read_bits(request.start, request.length))
            return Reply(payload=region.read_words(request.start, request.length))

        def write(request: ServerRequest) -> Reply:
            if request.is_bit:
                region.write_bits(request.start, request.values or [])
            else:
                region.write_words(request.start, request.payload)
            return Reply()

        self.register(Function.READ, region.device.code, read)
        self.register(Function.WRITE, region.device.code, write)

    def _set_running(self, state: bool) -> Handler:
        def handler(request: ServerRequest) -> Reply:
            self.running = state
            logger.info("Virtual controller %s", "running" if state else "stopped")
            return Reply()

        return handler

    def handle_request(self, request: ServerRequest) -> Reply:
        """Validate a decoded request and run its handler; faults come back as status replies."""
        if self.codec.checks_station and request.station is not None and request.station != self.station:
            logger.warning("Station %s does not match server station %s", request.station, self.station)
            return self.codec.fault(ServerFault.STATION_MISMATCH)

        if request.function in (Function.READ, Function.WRITE):
            handler = self._handlers.get((request.function, request.device_code))
            if handler is None:
                return self.codec.fault(ServerFault.UNSUPPORTED_DEVICE)
            ceiling = self.codec.server_ceiling(request.function, request.is_bit)
            if request.length < 1 or request.length > ceiling:
                return self.codec.fault(ServerFault.TOO_MANY_POINTS)
            if request.function == Function.WRITE and not self.enable_write:
                return self.codec.fault(ServerFault.WRITE_DISABLED)
            region = self.memory.region(request.device_code)
            if region is not None and not region.contains(request.start, request.length, request.is_bit):
                return self.codec.fault(ServerFault.OUT_OF_RANGE)
            return handler(request)

        handler = self._handlers.get((request.function, None))
        if handler is None:
            return self.codec.fault(ServerFault.UNSUPPORTED_COMMAND)
        return handler(request)

    def handle_frame(self, raw: bytes) -> bytes:
        """
        Answer one complete inbound frame.

        Raises a PlcAdapterError if the frame cannot be decoded; the caller
        closes the session.
        """
        logger.debug("%s server recv: %s", self.codec.name, self.codec.render(raw))
        response = self.codec.server_handshake(raw)
        if response is None:
            request = self.codec.decode_request(raw)
            response = self.codec.encode_response(request, self.handle_request(request))
        logger.debug("%s server send: %s", self.codec.name, self.codec.render(response))
        return response

    def authorize(self, peer: Any) -> bool:
        if self.authorizer is None:
            return True
        allowed = bool(self.authorizer(peer))
        if not allowed:
            logger.warning("Connection from %s refused by authorizer", peer)
        return allowed

    # ------------------------------------------------------------------ sessions

    async def _handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        task = asyncio.current_task()
        if task is not None:
            self._sessions.add(task)
        logger.info("Session opened: %s", peer)
        try:
            if not self.authorize(peer):
                return
            while True:
                try:
                    raw = await read_frame(
                        reader,
                        self.codec.request_head_length,
                        self.codec.request_content_length,
                        self.codec.terminator,
                    )
                    response = self.handle_frame(raw)
                except asyncio.IncompleteReadError:
                    break
                except PlcAdapterError as e:
                    logger.warning("Closing session %s after bad frame: %s", peer, e)
                    break
                writer.write(response)
                await writer.drain()
        except ConnectionError as e:
            logger.info("Session %s dropped: %s", peer, e)
        finally:
            if task is not None:
                self._sessions.discard(task)
            writer.close()
            with suppress(ConnectionError):
                await writer.wait_closed()
            logger.info("Session closed: %s", peer)

    # ------------------------------------------------------------------ lifecycle

    @property
    def is_running(self) -> bool:
        return self._active.is_set()

    def start(self) -> None:
        """Start serving in a background thread; returns once the socket is bound."""
        if self._active.is_set():
            logger.warning("Device server already running")
            return
        self._ready.clear()
        self._error = None
        self._active.set()
        self._thread = threading.Thread(target=self._run, daemon=True, name=f"DeviceServer-{self.codec.name}")
        self._thread.start()
        if not self._ready.wait(timeout=self.startup_timeout):
            self._active.clear()
            raise RuntimeError("Device server startup timeout")
        if self._error is not None:
            raise RuntimeError(f"Device server failed to start: {self._error}") from self._error

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop
        try:
            loop.run_until_complete(self._serve())
        except Exception as e:
            logger.error("Device server error: %s", e)
            self._error = e
        finally:
            self._active.clear()
            self._ready.set()
            pending = asyncio.all_tasks(loop)
            for t in pending:
                t.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.close()
            self._loop = None

    async def _serve(self) -> None:
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        if self.codec.datagram:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _DatagramEndpoint(self), local_addr=(self.host, self.port)
            )
            self.port = transport.get_extra_info("sockname")[1]
            self._ready.set()
            logger.info("Device server (%s, udp) listening on %s:%s", self.codec.name, self.host, self.port)
            try:
                await self._stop_event.wait()
            finally:
                transport.close()
            return

        server = await asyncio.start_server(self._handle_connection, self.host, self.port)
        self.port = server.sockets[0].getsockname()[1]
        self._ready.set()
        logger.info("Device server (%s, tcp) listening on %s:%s", self.codec.name, self.host, self.port)
        try:
            await self._stop_event.wait()
        finally:
            server.close()
            sessions = list(self._sessions)
            for t in sessions:
                t.cancel()
            await asyncio.gather(*sessions, return_exceptions=True)
            await server.wait_closed()

    def stop(self) -> None:
        """Stop serving and wait for the background thread to exit."""
        if not self._active.is_set():
            return
        loop, event = self._loop, self._stop_event
        if loop is not None and event is not None and not loop.is_closed():
            loop.call_soon_threadsafe(event.set)
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=self.shutdown_timeout)
            if self._thread.is_alive():
                logger.warning("Device server thread did not terminate cleanly")
        logger.info("Device server stopped")

    def __enter__(self) -> "DeviceServer":
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()

    # ------------------------------------------------------------------ snapshots

    def save_to_bytes(self) -> bytes:
        return self.memory.save_to_bytes()

    def load_from_bytes(self, blob: bytes) -> None:
        self.memory.load_from_bytes(blob)
