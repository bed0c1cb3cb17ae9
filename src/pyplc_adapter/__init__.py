"""pyplc-adapter: MELSEC and Omron protocol codecs, a transaction client and a virtual controller server."""

__version__ = "0.1.0"

from .address import AddressResolver, DeviceTable
from .checksum import ChecksumKind, ChecksumValidator
from .client import AsyncTransactionClient, ConnectionState, TransactionClient
from .codec import Encoding, FrameCodec
from .errors import (
    AddressParseError,
    ChecksumMismatch,
    FrameFormatError,
    LengthExceededError,
    PlcAdapterError,
    ProtocolStatusError,
    ShortResponse,
    TransportError,
    TransportTimeout,
    UnsupportedDeviceType,
)
from .melsec_a1e import MelsecA1EAsciiCodec, MelsecA1EBinaryCodec
from .melsec_a3c import MelsecA3CCodec
from .melsec_mc import MelsecMcAsciiCodec, MelsecMcBinaryCodec
from .omron_fins import OmronFinsTcpCodec, OmronFinsUdpCodec
from .omron_hostlink import OmronHostLinkCodec
from .protocols import PROTOCOLS, get_codec
from .result import Result
from .server import DeviceServer
from .softbuffer import DeviceMemory, MemoryRegion, SoftBuffer
from .transform import ByteTransform
from .types import AddressSpec, DataMode, DeviceType, FrameLimits, Function, ParseFailure, ServerFault, Session

__all__ = [
    "__version__",
    "AddressResolver",
    "DeviceTable",
    "ChecksumKind",
    "ChecksumValidator",
    "AsyncTransactionClient",
    "ConnectionState",
    "TransactionClient",
    "Encoding",
    "FrameCodec",
    "AddressParseError",
    "ChecksumMismatch",
    "FrameFormatError",
    "LengthExceededError",
    "PlcAdapterError",
    "ProtocolStatusError",
    "ShortResponse",
    "TransportError",
    "TransportTimeout",
    "UnsupportedDeviceType",
    "MelsecA1EAsciiCodec",
    "MelsecA1EBinaryCodec",
    "MelsecA3CCodec",
    "MelsecMcAsciiCodec",
    "MelsecMcBinaryCodec",
    "OmronFinsTcpCodec",
    "OmronFinsUdpCodec",
    "OmronHostLinkCodec",
    "PROTOCOLS",
    "get_codec",
    "Result",
    "DeviceServer",
    "DeviceMemory",
    "MemoryRegion",
    "SoftBuffer",
    "ByteTransform",
    "AddressSpec",
    "DataMode",
    "DeviceType",
    "FrameLimits",
    "Function",
    "ParseFailure",
    "ServerFault",
    "Session",
]
