import asyncio
import time
from dataclasses import dataclass

import pytest

from distlab.client import RpcHooks
from distlab.codec import Kind, Message, encode, proto_field
from distlab.errors import (
    CanceledError,
    OtherError,
    RpcError,
    RpcTimeoutError,
    StoppedError,
)
from distlab.network import Network
from distlab.server import ServerBuilder
from distlab.service import Service, ServiceClient, add_service, rpc


@dataclass
class JunkArgs(Message):
    x: int = proto_field(1, Kind.INT64)


@dataclass
class JunkReply(Message):
    x: str = proto_field(1, Kind.STRING)


class JunkService(Service, name="junk"):
    def __init__(self):
        self.log2 = []

    @rpc(JunkArgs, JunkReply)
    async def handler2(self, args):
        self.log2.append(args.x)
        return JunkReply(x=f"handler2-{args.x}")

    @rpc(JunkArgs, JunkReply)
    async def handler3(self, args):
        await asyncio.sleep(20)
        return JunkReply(x=f"handler3-{-args.x}")

    @rpc(JunkArgs, JunkReply)
    async def handler4(self, args):
        return JunkReply(x="pointer")


@dataclass
class BenchArgs(Message):
    x: int = proto_field(1, Kind.INT64)


@dataclass
class BenchReply(Message):
    x: str = proto_field(1, Kind.STRING)


class BenchService(Service, name="bench"):
    def __init__(self):
        self.log2 = []

    @rpc(BenchArgs, BenchReply)
    async def handler(self, args):
        self.log2.append(args.x)
        return BenchReply(x=f"handler-{args.x}")


def junk_suite():
    net = Network.running()
    builder = ServerBuilder("test_server")
    junk = JunkService()
    add_service(junk, builder)
    server = builder.build()
    net.add_server(server)
    return net, server, junk


def junk_client(net, name, server_name="test_server", enabled=True):
    client = ServiceClient(net.create_client(name), JunkService)
    net.connect(name, server_name)
    if enabled:
        net.enable(name, True)
    return client


@pytest.mark.asyncio
async def test_network_client_rpc():
    builder = ServerBuilder("test")
    add_service(JunkService(), builder)
    server = builder.build()

    net, incoming = Network.create()
    net.add_server(server)
    client = ServiceClient(net.create_client("test_client"), JunkService)

    async def call():
        return await client.handler4(JunkArgs(x=777))

    task = client.spawn(call())
    received = await incoming.get()
    reply = JunkReply(x="boom!!!")
    resp = received.take_resp_sender()
    resp.set_result(encode(reply))
    assert received.client_name == "test_client"
    assert received.fq_name == "junk.handler4"
    assert len(received.req) > 0
    assert await task == reply

    task = client.spawn(call())
    received = await incoming.get()
    received.resp.cancel()
    with pytest.raises(CanceledError):
        await task

    incoming.close()
    with pytest.raises(StoppedError):
        await client.handler4(JunkArgs())
    net.close()


@pytest.mark.asyncio
async def test_basic():
    net, _, _ = junk_suite()
    async with net:
        client = junk_client(net, "test_client")
        assert await client.handler4(JunkArgs()) == JunkReply(x="pointer")


@pytest.mark.asyncio
async def test_disconnect():
    net, _, _ = junk_suite()
    async with net:
        client = junk_client(net, "test_client", enabled=False)
        with pytest.raises(RpcTimeoutError):
            await client.handler4(JunkArgs())
        net.enable("test_client", True)
        assert await client.handler4(JunkArgs()) == JunkReply(x="pointer")


@pytest.mark.asyncio
async def test_count():
    net, _, _ = junk_suite()
    async with net:
        client = junk_client(net, "test_client")
        for i in range(17):
            reply = await client.handler2(JunkArgs(x=i))
            assert reply.x == f"handler2-{i}"
        assert net.count("test_server") == 17


@pytest.mark.asyncio
async def test_total_count_includes_undelivered():
    net, _, _ = junk_suite()
    async with net:
        client = junk_client(net, "test_client")
        for i in range(3):
            await client.handler2(JunkArgs(x=i))
        net.enable("test_client", False)
        with pytest.raises(RpcTimeoutError):
            await client.handler2(JunkArgs(x=9))
        assert net.total_count() == 4
        assert net.count("test_server") == 3


@pytest.mark.asyncio
async def test_concurrent_many():
    net, server, _ = junk_suite()
    async with net:
        nclients, nrpcs = 20, 10

        async def run_client(i):
            name = f"client-{i}"
            client = ServiceClient(net.create_client(name), JunkService)
            net.enable(name, True)
            net.connect(name, server.name())
            n = 0
            for j in range(nrpcs):
                x = i * 100 + j
                reply = await client.handler2(JunkArgs(x=x))
                assert reply.x == f"handler2-{x}"
                n += 1
            return n

        counts = await asyncio.gather(*(run_client(i) for i in range(nclients)))
        total = sum(counts)
        assert total == nrpcs * nclients
        assert net.count(server.name()) == total


@pytest.mark.asyncio
async def test_unreliable():
    net, server, _ = junk_suite()
    async with net:
        net.set_reliable(False)
        nclients = 300

        async def run_client(i):
            name = f"client-{i}"
            client = ServiceClient(net.create_client(name), JunkService)
            net.enable(name, True)
            net.connect(name, server.name())
            x = i * 100
            try:
                reply = await asyncio.wait_for(client.handler2(JunkArgs(x=x)), 1.0)
            except (RpcError, asyncio.TimeoutError):
                return 0
            assert reply.x == f"handler2-{x}"
            return 1

        total = sum(await asyncio.gather(*(run_client(i) for i in range(nclients))))
        assert 0 < total < nclients
        delivered = net.count(server.name())
        assert delivered >= total
        assert net.total_count() >= delivered


@pytest.mark.asyncio
async def test_concurrent_one():
    net, server, junk = junk_suite()
    async with net:
        nrpcs = 20

        async def run(i, client):
            x = i + 100
            reply = await client.handler2(JunkArgs(x=x))
            assert reply.x == f"handler2-{x}"
            return 1

        calls = []
        for i in range(nrpcs):
            client = junk_client(net, f"client-{i}", server.name())
            calls.append(run(i, client))
        total = sum(await asyncio.gather(*calls))
        assert total == nrpcs
        assert len(junk.log2) == nrpcs
        assert net.count(server.name()) == total


@pytest.mark.asyncio
async def test_regression1():
    net, server, junk = junk_suite()
    async with net:
        client = junk_client(net, "client", server.name(), enabled=False)
        net.enable("client", False)

        delayed = [client.handler2(JunkArgs(x=i + 100)) for i in range(20)]
        await asyncio.sleep(0.3)

        t0 = time.monotonic()
        net.enable("client", True)
        reply = await client.handler2(JunkArgs(x=99))
        assert reply.x == "handler2-99"
        assert time.monotonic() - t0 < 0.2

        results = await asyncio.gather(*delayed, return_exceptions=True)
        assert all(isinstance(r, RpcTimeoutError) for r in results)
        assert len(junk.log2) == 1
        assert net.count(server.name()) == 1


@pytest.mark.asyncio
async def test_killed():
    net, server, _ = junk_suite()
    async with net:
        client = junk_client(net, "client", server.name())
        pending = client.handler3(JunkArgs(x=99))
        await asyncio.sleep(0.3)
        assert not pending.done()

        net.delete_server(server.name())
        with pytest.raises(StoppedError):
            await asyncio.wait_for(pending, 0.5)


@pytest.mark.asyncio
async def test_deleted_server_times_out_and_has_no_count():
    net, server, _ = junk_suite()
    async with net:
        client = junk_client(net, "client", server.name())
        net.delete_server(server.name())
        with pytest.raises(RpcTimeoutError):
            await client.handler4(JunkArgs())
        with pytest.raises(KeyError):
            net.count(server.name())
        with pytest.raises(KeyError):
            net.count("missing")


class Hooks(RpcHooks):
    def __init__(self):
        self.drop_req = False
        self.drop_resp = False

    def before_dispatch(self, fq_name, req):
        if self.drop_req:
            raise OtherError("reqhook")

    def after_dispatch(self, fq_name, resp):
        if self.drop_resp:
            raise OtherError("resphook")
        return super().after_dispatch(fq_name, resp)


@pytest.mark.asyncio
async def test_rpc_hooks():
    net, _, _ = junk_suite()
    async with net:
        raw = net.create_client("test_client")
        hook = Hooks()
        raw.set_hooks(hook)
        client = ServiceClient(raw, JunkService)
        net.connect("test_client", "test_server")
        net.enable("test_client", True)

        reply = await client.handler2(JunkArgs(x=100))
        assert reply.x == "handler2-100"

        hook.drop_req = True
        with pytest.raises(OtherError) as info:
            await client.handler2(JunkArgs(x=100))
        assert info.value == OtherError("reqhook")

        hook.drop_req = False
        hook.drop_resp = True
        with pytest.raises(OtherError) as info:
            await client.handler2(JunkArgs(x=100))
        assert info.value == OtherError("resphook")

        hook.drop_resp = False
        reply = await client.handler2(JunkArgs(x=100))
        assert reply.x == "handler2-100"

        hook.drop_req = True
        raw.clear_hooks()
        reply = await client.handler2(JunkArgs(x=5))
        assert reply.x == "handler2-5"


@pytest.mark.asyncio
async def test_long_reordering_still_delivers():
    net, _, _ = junk_suite()
    async with net:
        net.set_long_reordering(True)
        client = junk_client(net, "test_client")
        replies = await asyncio.gather(*(client.handler2(JunkArgs(x=i)) for i in range(3)))
        assert [r.x for r in replies] == ["handler2-0", "handler2-1", "handler2-2"]


@pytest.mark.asyncio
async def test_close_stops_clients():
    net, _, _ = junk_suite()
    client = junk_client(net, "test_client")
    assert await client.handler4(JunkArgs()) == JunkReply(x="pointer")
    net.close()
    with pytest.raises(StoppedError):
        await client.handler4(JunkArgs())


@pytest.mark.asyncio
async def test_spawn_runs_coroutine():
    net, _, _ = junk_suite()
    async with net:
        client = junk_client(net, "test_client")

        async def job():
            reply = await client.handler2(JunkArgs(x=7))
            return reply.x

        task = net.spawn(job())
        assert await task == "handler2-7"


@pytest.mark.asyncio
async def test_bench_rpc():
    net = Network.running()
    async with net:
        builder = ServerBuilder("test_server")
        bench = BenchService()
        add_service(bench, builder)
        server = builder.build()
        net.add_server(server)
        client = ServiceClient(net.create_client("client"), BenchService)
        net.connect("client", server.name())
        net.enable("client", True)
        for _ in range(50):
            reply = await client.handler(BenchArgs(x=111))
            assert reply.x == "handler-111"
        assert len(bench.log2) == 50
        assert net.count(server.name()) == 50