"""Protocol name -> codec class registry."""

from .codec import FrameCodec
from .melsec_a1e import MelsecA1EAsciiCodec, MelsecA1EBinaryCodec
from .melsec_a3c import MelsecA3CCodec
from .melsec_mc import MelsecMcAsciiCodec, MelsecMcBinaryCodec
from .omron_fins import OmronFinsTcpCodec, OmronFinsUdpCodec
from .omron_hostlink import OmronHostLinkCodec

PROTOCOLS: dict[str, type[FrameCodec]] = {
    codec.name: codec
    for codec in (
        MelsecA1EBinaryCodec,
        MelsecA1EAsciiCodec,
        MelsecMcBinaryCodec,
        MelsecMcAsciiCodec,
        MelsecA3CCodec,
        OmronFinsTcpCodec,
        OmronFinsUdpCodec,
        OmronHostLinkCodec,
    )
}


def get_codec(name: str) -> FrameCodec:
    """Instantiate the codec registered under ``name`` with its packaged device table."""
    try:
        cls = PROTOCOLS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown protocol {name!r}; choose from {', '.join(sorted(PROTOCOLS))}") from None
    return cls()
