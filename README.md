# distlab

Building blocks for experimenting with distributed systems in Python.

- **`distlab.codec`** is a compact protobuf-style wire format. You declare
  message dataclasses that derive from `Message` and give each field with
  `proto_field(tag, kind, repeated=False)`. The `Kind` values are `INT32`,
  `INT64`, `UINT32`, `UINT64`, `BOOL`, `ENUM`, `STRING` and `BYTES`.
  - `encode(message)` and `decode(message_type, data)` convert between
    messages and bytes.
  - Scalar fields that hold their default value are not written.
  - Repeated numeric fields are packed.
  - Unknown fields are skipped when decoding.
  - Failures raise `EncodeError` or `DecodeError`.
  - `distlab.fixture` contains a sample message, `Msg`, with its `MsgType`
    enum.
- **`distlab.server`**: `ServerBuilder` registers services under unique
  names, and `build()` returns a `Server`. A `Server` dispatches
  `"service.method"` requests and counts them.
- **`distlab.service`** lets you declare RPC services as `Service`
  subclasses whose async methods are marked with `@rpc(RequestType, ReplyType)`.
  - `add_service(service, builder)` registers a service.
  - `ServiceClient(client, ServiceType)` calls a service's methods by name,
    for example `await client.ping(request)`.
- **`distlab.client`**: `Client` sends encoded requests. `RpcHooks` can
  reject a request before dispatch, or replace a reply after dispatch. You
  install hooks with `Client.set_hooks` and remove them with `clear_hooks`.
- **`distlab.network`** is an in-process, asyncio-based simulated network.
  - `Network.running()` returns a started network and must be called inside
    a running event loop. `Network()` and `Network.create()` return a network
    that is not started. To start it, pass its incoming queue to `start()`.
  - Clients are created disabled and unconnected. Use `enable()` and
    `connect()` to set them up.
  - `set_reliable(False)` drops and delays requests and replies.
  - `set_long_reordering(True)` sometimes holds replies back.
  - `set_long_delays(True)` makes requests on disabled clients wait longer
    before they time out.
  - `delete_server(name)` kills a server, and RPCs still in flight to it fail
    with `StoppedError`.
  - `count(server_name)` and `total_count()` report how many requests were
    handled.
  - `close()` stops the network, and `async with` closes it on exit.
- **`distlab.errors`**: every RPC failure is an `RpcError`. The subclasses are
  `UnimplementedError`, `RpcEncodeError`, `RpcDecodeError`, `CanceledError`,
  `RpcTimeoutError`, `StoppedError` and `OtherError`. Two errors compare
  equal when they have the same type and the same detail text.
- **`distlab.checker`** is a linearizability checker.
  - `check_operations(model, history, timeout=0)` checks timed `Operation`
    records.
  - `check_events(model, history, timeout=0)` checks ordered call/return
    `Event` records.
  - The history is split by the model's partition functions, and each part
    is checked in its own thread.
- **`distlab.model`**: `Model` is the base class for sequential
  specifications. A model must provide `init` and `step`. You can override
  `partition`, `partition_event` and `equal`.
- **`distlab.kvmodel`**: `KvModel` is a get/put/append key-value model that
  is partitioned by key. `parse_kv_log(lines)` reads key-value history logs
  into events.

## Installation

```
pip install distlab
```

## Quick start

```python
from distlab.echo import run_echo

print(run_echo(777))  # Echo(x=777)
```

`run_echo` does the following:

1. Starts a network.
2. Registers `EchoService` on a server.
3. Connects a client.
4. Sends one ping and returns the reply.

The same round trip is available from the command line. The optional argument
is the number to send, and it defaults to 777:

```
distlab-echo
distlab-echo 42
```

## Defining a service

```python
import asyncio
from dataclasses import dataclass

from distlab.codec import Kind, Message, proto_field
from distlab.network import Network
from distlab.server import ServerBuilder
from distlab.service import Service, ServiceClient, add_service, rpc


@dataclass
class Args(Message):
    x: int = proto_field(1, Kind.INT64)


@dataclass
class Reply(Message):
    x: str = proto_field(1, Kind.STRING)


class Junk(Service, name="junk"):
    @rpc(Args, Reply)
    async def handler(self, request):
        return Reply(x=f"handler-{request.x}")


async def demo():
    async with Network.running() as net:
        builder = ServerBuilder("server")
        add_service(Junk(), builder)
        net.add_server(builder.build())
        client = ServiceClient(net.create_client("client"), Junk)
        net.connect("client", "server")
        net.enable("client", True)
        return await client.handler(Args(x=1))


print(asyncio.run(demo()))
```

## Checking a history

```python
from distlab.checker import check_events
from distlab.kvmodel import KvModel, parse_kv_log

with open("history.txt") as fh:
    events = parse_kv_log(fh)
print(check_events(KvModel(), events, 0))
```

The `timeout` argument bounds each wait for a partition's result. It can be
given in seconds or as a `timedelta`, and `0` or `None` waits without a limit.
When the timeout runs out, the result is `True`, which may be a false
positive.

## What it does not do

- The network exists only inside one process and one asyncio event loop. It
  opens no sockets, and servers do not persist any state.
- The package provides no transactional store or timestamp service built on
  top of the RPC layer. You define your own services with `Service`.

## Running the tests

```
pip install -e .[test]
pytest
```