"""A minimal echo service run over the simulated network."""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from typing import Optional, Sequence

from distlab.codec import Kind, Message, proto_field
from distlab.network import Network
from distlab.server import ServerBuilder
from distlab.service import Service, ServiceClient, add_service, rpc

__all__ = ["Echo", "EchoService", "run_echo", "main"]

_SERVER_NAME = "echo_server"
_CLIENT_NAME = "client"


@dataclass
class Echo(Message):
    """A message carrying one integer."""

    x: int = proto_field(1, Kind.INT64)


class EchoService(Service, name="echo"):
    """Replies with the value of the request it receives."""

    @rpc(Echo, Echo)
    async def ping(self, request: Echo) -> Echo:
        return Echo(x=request.x)


async def _exchange(value: int) -> Echo:
    async with Network.running() as net:
        builder = ServerBuilder(_SERVER_NAME)
        add_service(EchoService(), builder)
        net.add_server(builder.build())

        client = ServiceClient(net.create_client(_CLIENT_NAME), EchoService)
        net.enable(_CLIENT_NAME, True)
        net.connect(_CLIENT_NAME, _SERVER_NAME)
        return await client.ping(Echo(x=value))


def run_echo(value: int) -> Echo:
    """Send ``value`` to a fresh echo server and return its reply."""
    return asyncio.run(_exchange(value))


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Ping an echo server once and print the reply."""
    parser = argparse.ArgumentParser(prog="echo", description=main.__doc__)
    parser.add_argument("value", nargs="?", type=int, default=777, help="number to send")
    args = parser.parse_args(argv)
    reply = run_echo(args.value)
    if reply != Echo(x=args.value):
        raise RuntimeError(f"unexpected reply {reply!r}")
    print(repr(reply))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())