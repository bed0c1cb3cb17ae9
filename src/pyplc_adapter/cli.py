#!/usr/bin/env python3
"""Command-line front end for pyplc-adapter using Typer."""

import json
import logging
import time
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from . import __version__  # type: ignore
from .client import TransactionClient
from .errors import (
    AddressParseError,
    LengthExceededError,
    PlcAdapterError,
    ProtocolStatusError,
    TransportError,
    UnsupportedDeviceType,
)
from .protocols import PROTOCOLS, get_codec
from .server import DeviceServer
from .types import Session

app = typer.Typer(
    name="pyplc",
    help="Read, write and simulate MELSEC and Omron controllers.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

VALUE_TYPES = ("raw", "int16", "uint16", "int32", "float")

# ============================================================================
# Shared options and helpers
# ============================================================================

HostOption = Annotated[
    Optional[str],
    typer.Option("--host", "-h", help="Controller hostname or IP address", envvar="PYPLC_HOST"),
]
PortOption = Annotated[
    Optional[int],
    typer.Option("--port", "-p", help="TCP/UDP port (default: the protocol's usual port)", envvar="PYPLC_PORT"),
]
ProtocolOption = Annotated[
    str,
    typer.Option("--protocol", "-P", help="Protocol name (see `pyplc protocols`)", envvar="PYPLC_PROTOCOL"),
]
TimeoutOption = Annotated[
    float,
    typer.Option("--timeout", "-t", help="Connect/receive timeout in seconds", envvar="PYPLC_TIMEOUT"),
]
StationOption = Annotated[
    int,
    typer.Option("--station", "-s", help="Station / unit number", envvar="PYPLC_STATION"),
]
LengthOption = Annotated[
    int,
    typer.Option("--length", "-n", help="Number of points (words, bits or values) to read"),
]
BitOption = Annotated[
    bool,
    typer.Option("--bit", "-b", help="Access individual bits instead of words"),
]
TypeOption = Annotated[
    str,
    typer.Option("--type", help="Value type: raw, int16, uint16, int32, float"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging (includes raw frame dumps)"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbose flag."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if not verbose else "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def create_client(host: Optional[str], port: Optional[int], protocol: str, timeout: float, station: int) -> TransactionClient:
    """Create a client for ``protocol``; exits with code 2 on missing host or unknown protocol."""
    if not host:
        typer.echo("Error: --host is required for this command", err=True)
        raise typer.Exit(2)
    try:
        codec = get_codec(protocol)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)
    return TransactionClient(codec, host, port, timeout=timeout, station=station)


def parse_bool(value: str) -> bool:
    """Parse boolean value from string."""
    v = value.lower().strip()
    if v in ("true", "1", "on", "yes"):
        return True
    if v in ("false", "0", "off", "no"):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def parse_int(value: str, bits: int = 16, signed: bool = False) -> int:
    """Parse decimal or 0x-hex integer and check it fits in ``bits``."""
    v = value.strip()
    num = int(v, 16) if v.lower().startswith("0x") else int(v)
    if signed:
        low, high = -(1 << (bits - 1)), (1 << (bits - 1)) - 1
    else:
        low, high = 0, (1 << bits) - 1
    if not low <= num <= high:
        raise ValueError(f"{'Signed' if signed else 'Unsigned'} {bits}-bit integer out of range: {num}")
    return num


def check_type(value_type: str) -> None:
    if value_type not in VALUE_TYPES:
        typer.echo(f"Error: Invalid type '{value_type}'. Must be one of {', '.join(VALUE_TYPES)}.", err=True)
        raise typer.Exit(2)


def encode_values(client: TransactionClient, values: list[str], value_type: str) -> bytes:
    """Turn command-line values into register bytes in the codec's byte order."""
    t = client.transform
    if value_type == "int16":
        return t.from_int16([parse_int(v, 16, signed=True) for v in values])
    if value_type == "int32":
        return t.from_int32([parse_int(v, 32, signed=True) for v in values])
    if value_type == "float":
        return t.from_float([float(v) for v in values])
    return t.from_uint16([parse_int(v, 16) for v in values])


def fail(e: Exception, verbose: bool) -> None:
    """Report ``e`` and exit with the code for its kind."""
    if isinstance(e, (AddressParseError, UnsupportedDeviceType, LengthExceededError, ValueError)):
        typer.echo(f"Error: Invalid input: {e}", err=True)
        raise typer.Exit(2)
    if isinstance(e, ProtocolStatusError):
        typer.echo(f"Error: Controller returned {e}", err=True)
        raise typer.Exit(3)
    if isinstance(e, (TransportError, PlcAdapterError)):
        typer.echo(f"Error: Communication error: {e}", err=True)
        raise typer.Exit(3)
    typer.echo(f"Error: Unexpected error: {e}", err=True)
    if verbose:
        import traceback
        traceback.print_exc()
    raise typer.Exit(4)


# ============================================================================
# Commands
# ============================================================================

@app.command()
def protocols(json_output: JsonOption = False) -> None:
    """List the supported protocols with their default port and per-frame ceilings."""
    rows = []
    for name, cls in PROTOCOLS.items():
        rows.append(
            {
                "name": name,
                "encoding": cls.encoding.value,
                "transport": "udp" if cls.datagram else "tcp",
                "default_port": cls.default_port,
                "read_words": cls.limits.read_words,
                "read_bits": cls.limits.read_bits,
                "write_words": cls.limits.write_words,
                "write_bits": cls.limits.write_bits,
                "server": cls.supports_server,
            }
        )
    if json_output:
        typer.echo(json.dumps(rows, indent=2))
        return
    for r in rows:
        typer.echo(
            f"{r['name']:<18} {r['encoding']:<6} {r['transport']:<4} port {r['default_port']:<5} "
            f"read {r['read_words']}w/{r['read_bits']}b  write {r['write_words']}w/{r['write_bits']}b"
            f"{'  server' if r['server'] else ''}"
        )


@app.command()
def explain(
    address: Annotated[str, typer.Argument(help="Address to explain (e.g., D100, X017, s=2;D100, D100.5)")],
    protocol: ProtocolOption = "melsec-mc",
    station: StationOption = 0,
    length: LengthOption = 1,
    bit: BitOption = False,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Show how an address resolves and the request frame(s) a read would send.

    Does not require a connection.
    """
    setup_logging(verbose)

    try:
        codec = get_codec(protocol)
        spec = codec.parse_address(address)
        frames = codec.encode_read(spec, length, is_bit=bit, session=Session(station=station))
        info: dict[str, Any] = {
            "protocol": codec.name,
            "device": spec.device.prefix,
            "device_code": f"0x{spec.device.code:X}",
            "mode": spec.device.mode.value,
            "base": spec.device.base,
            "offset": spec.offset,
            "bit_index": spec.bit_index,
            "params": spec.params,
            "frames": [{"offset": f.spec.offset, "length": f.length, "data": codec.render(f.data)} for f in frames],
        }
    except Exception as e:
        fail(e, verbose)
        return

    if json_output:
        typer.echo(json.dumps(info, indent=2))
    else:
        typer.echo(f"Protocol:     {info['protocol']}")
        typer.echo(f"Device:       {info['device']} ({info['device_code']}, {info['mode']}, base {info['base']})")
        typer.echo(f"Offset:       {info['offset']}")
        if spec.bit_index is not None:
            typer.echo(f"Bit index:    {info['bit_index']}")
        if spec.params:
            typer.echo(f"Parameters:   {', '.join(f'{k}={v}' for k, v in spec.params.items())}")
        for i, f in enumerate(info["frames"], 1):
            typer.echo(f"Frame {i}:      start {f['offset']}, {f['length']} points: {f['data']}")


@app.command()
def read(
    address: Annotated[str, typer.Argument(help="Start address (e.g., D100, M0, X1A0)")],
    host: HostOption = None,
    port: PortOption = None,
    protocol: ProtocolOption = "melsec-mc",
    timeout: TimeoutOption = 3.0,
    station: StationOption = 0,
    length: LengthOption = 1,
    bit: BitOption = False,
    value_type: TypeOption = "uint16",
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Read words, bits or typed values starting at an address.

    Longer reads are split into several frames automatically.
    Use --type raw to print the register bytes as hex.
    """
    setup_logging(verbose)
    check_type(value_type)
    client = create_client(host, port, protocol, timeout, station)

    try:
        client.connect().unwrap()
        value: Any
        if bit:
            value = client.read_bool(address, length).unwrap()
        elif value_type == "raw":
            value = (client.read(address, length).unwrap() or b"").hex()
        elif value_type == "int16":
            value = client.read_int16(address, length).unwrap()
        elif value_type == "int32":
            value = client.read_int32(address, length).unwrap()
        elif value_type == "float":
            value = client.read_float(address, length).unwrap()
        else:
            value = client.read_uint16(address, length).unwrap()
    except Exception as e:
        fail(e, verbose)
        return
    finally:
        client.close()

    if json_output:
        typer.echo(json.dumps({"address": address, "value": value}))
    elif isinstance(value, list):
        typer.echo(" ".join(str(v).lower() if isinstance(v, bool) else str(v) for v in value))
    else:
        typer.echo(value)


@app.command()
def write(
    address: Annotated[str, typer.Argument(help="Start address (e.g., D100, M0)")],
    values: Annotated[list[str], typer.Argument(help="Values (bits: true/false/1/0/on/off; words: decimal or 0x hex)")],
    host: HostOption = None,
    port: PortOption = None,
    protocol: ProtocolOption = "melsec-mc",
    timeout: TimeoutOption = 3.0,
    station: StationOption = 0,
    bit: BitOption = False,
    value_type: TypeOption = "uint16",
    verbose: VerboseOption = False,
) -> None:
    """Write consecutive bits or values starting at an address."""
    setup_logging(verbose)
    check_type(value_type)
    client = create_client(host, port, protocol, timeout, station)

    try:
        if bit:
            bits = [parse_bool(v) for v in values]
        else:
            data = encode_values(client, values, value_type)
    except ValueError as e:
        typer.echo(f"Error: Invalid value: {e}", err=True)
        raise typer.Exit(2)

    try:
        client.connect().unwrap()
        if bit:
            client.write_bool(address, bits).unwrap()
        else:
            client.write(address, data).unwrap()
    except Exception as e:
        fail(e, verbose)
        return
    finally:
        client.close()
    typer.echo(f"OK: Wrote {len(values)} value(s) at {address}")


@app.command()
def serve(
    protocol: ProtocolOption = "melsec-mc",
    host: Annotated[str, typer.Option("--host", "-h", help="Address to listen on")] = "127.0.0.1",
    port: PortOption = None,
    station: StationOption = 0,
    read_only: Annotated[bool, typer.Option("--read-only", help="Reject writes with the protocol's write-disabled status")] = False,
    verbose: VerboseOption = False,
) -> None:
    """
    Run a virtual controller that answers the protocol from in-memory registers.

    Press Ctrl+C to stop.
    """
    setup_logging(verbose)
    logging.getLogger("pyplc_adapter").setLevel(logging.DEBUG if verbose else logging.INFO)

    try:
        codec = get_codec(protocol)
        server = DeviceServer(
            codec,
            host=host,
            port=port if port is not None else codec.default_port,
            enable_write=not read_only,
            station=station,
        )
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)

    try:
        server.start()
    except RuntimeError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(3)

    typer.echo(f"Serving {codec.name} on {server.host}:{server.port}")
    try:
        while server.is_running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        typer.echo("\nStopped by user", err=True)
    finally:
        server.stop()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"pyplc-adapter {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """pyplc - MELSEC and Omron protocol client and virtual controller."""
    pass


if __name__ == "__main__":
    app()
