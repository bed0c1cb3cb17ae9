#!/usr/bin/env python3
"""Example: connect to a MELSEC PLC over MC binary and read/write a few registers."""

import sys

from pyplc_adapter import MelsecMcBinaryCodec, TransactionClient


def main() -> None:
    host = "192.168.1.10"  # change to your PLC IP
    port = 6000

    plc = TransactionClient(MelsecMcBinaryCodec(), host, port, timeout=3.0)
    connected = plc.connect()
    if not connected:
        print(f"Connection failed: {connected.message}", file=sys.stderr)
        sys.exit(1)

    try:
        # Ten data registers as signed 16-bit values
        result = plc.read_int16("D100", 10)
        if not result.is_success:
            print(f"Read failed ({result.code}): {result.message}", file=sys.stderr)
            sys.exit(1)
        print(f"D100..D109 = {result.content}")

        # Inputs are numbered in hexadecimal
        bits = plc.read_bool("X1A0", 8)
        print(f"X1A0..X1A7 = {bits.content if bits else bits.message}")

        # Station override for a single call
        print(f"s=2;D0 = {plc.read_uint16('s=2;D0').content}")

        # Write (example; uncomment if your PLC allows)
        # plc.write_float("D200", 12.5)
        # plc.write_bool("M0", [True, False, True])
    finally:
        plc.close()


if __name__ == "__main__":
    main()
