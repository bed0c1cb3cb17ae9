#!/usr/bin/env python3
"""Example: run a virtual Omron FINS controller and poll it with the asyncio client; Ctrl+C to stop."""

import asyncio

from pyplc_adapter import AsyncTransactionClient, DeviceServer, OmronFinsTcpCodec


async def poll(port: int, interval_s: float) -> None:
    async with AsyncTransactionClient(OmronFinsTcpCodec(), "127.0.0.1", port) as plc:
        counter = 0
        while True:
            counter += 1
            await plc.write_int16("D0", counter)
            await plc.write_bool("W0.0", counter % 2 == 1)
            words = await plc.read_int16("D0")
            bit = await plc.read_bool("W0.0")
            print(f"D0={words.content} W0.0={bit.content}")
            await asyncio.sleep(interval_s)


def main() -> None:
    with DeviceServer(OmronFinsTcpCodec(), port=0) as server:
        print(f"Virtual controller on 127.0.0.1:{server.port}")
        try:
            asyncio.run(poll(server.port, 1.0))
        except KeyboardInterrupt:
            print("\nStopped.")


if __name__ == "__main__":
    main()
