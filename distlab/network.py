"""A simulated network that carries RPCs between named clients and servers.

Clients can be enabled or disabled, connected to a server, and the network
can be made unreliable (dropping and delaying requests and replies) or made
to reorder replies by holding them back for a long time. Everything runs on
one asyncio event loop.
"""

from __future__ import annotations

import asyncio
import logging
import random
import threading
from dataclasses import dataclass
from typing import Any, Coroutine, Optional, Union

from distlab.client import Client, Rpc
from distlab.errors import RpcError, RpcTimeoutError, StoppedError
from distlab.server import Server

__all__ = ["Network"]

log = logging.getLogger(__name__)

_SERVER_WATCH_INTERVAL = 0.1


class _Incoming:
    """Queue of requests sent by clients, closed when nobody will read it."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Optional[Rpc]] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, rpc: Rpc) -> None:
        """Queue ``rpc``; raises StoppedError once the queue is closed."""
        if self._closed:
            raise StoppedError()
        self._queue.put_nowait(rpc)

    def close(self) -> None:
        """Stop accepting requests and cancel the replies of queued ones."""
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            rpc = self._queue.get_nowait()
            if rpc is not None and rpc.resp is not None and not rpc.resp.done():
                rpc.resp.cancel()
        self._queue.put_nowait(None)

    async def get(self) -> Optional[Rpc]:
        """The next request, or None once the queue is closed."""
        if self._closed and self._queue.empty():
            return None
        item = await self._queue.get()
        if item is None:
            self._queue.put_nowait(None)
        return item

    def __aiter__(self) -> "_Incoming":
        return self

    async def __anext__(self) -> Rpc:
        item = await self.get()
        if item is None:
            raise StopAsyncIteration
        return item


@dataclass(frozen=True)
class _EndInfo:
    enabled: bool
    reliable: bool
    long_reordering: bool
    long_delays: bool
    server: Optional[Server]


class Network:
    """Routes requests from clients to servers with configurable faults.

    A network made with ``Network()`` or :meth:`create` does nothing until
    :meth:`start` is given its incoming queue; :meth:`running` makes one
    that is already started.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reliable = True
        self._long_delays = False
        self._long_reordering = False
        self._enabled: dict[str, bool] = {}
        self._servers: dict[str, Optional[Server]] = {}
        self._connections: dict[str, Optional[str]] = {}
        self._count = 0
        self._incoming = _Incoming()
        self._tasks: set[asyncio.Task] = set()
        self._rng = random.Random()

    @classmethod
    def create(cls) -> tuple["Network", _Incoming]:
        """A network that is not started, with the queue its clients send to."""
        net = cls()
        return net, net._incoming

    @classmethod
    def running(cls) -> "Network":
        """A started network; must be called with an event loop running."""
        net, incoming = cls.create()
        net.start(incoming)
        return net

    def start(self, incoming: _Incoming) -> None:
        """Serve every request arriving on ``incoming`` in the background."""
        self._track(self._poll(incoming))

    async def _poll(self, incoming: _Incoming) -> None:
        async for rpc in incoming:
            resp = rpc.take_resp_sender()
            if resp is None:
                continue
            self._track(self._serve(rpc, resp))

    async def _serve(self, rpc: Rpc, resp: asyncio.Future) -> None:
        try:
            reply = await self._process_rpc(rpc)
        except asyncio.CancelledError:
            if not resp.done():
                resp.cancel()
            raise
        except Exception as exc:  # delivered to the caller through its future
            if resp.done():
                log.error("fail to send resp: %r", exc)
            else:
                resp.set_exception(exc)
        else:
            if resp.done():
                log.error("fail to send resp for %r", rpc)
            else:
                resp.set_result(reply)

    def _track(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def add_server(self, server: Server) -> None:
        """Register ``server`` under its name, replacing any earlier one."""
        with self._lock:
            self._servers[server.name()] = server

    def delete_server(self, name: str) -> None:
        """Kill the named server; requests in flight to it fail as stopped."""
        with self._lock:
            if name in self._servers:
                self._servers[name] = None

    def create_client(self, name: str) -> Client:
        """A new client end-point, disabled and not connected."""
        with self._lock:
            self._enabled[name] = False
            self._connections[name] = None
        return Client(name, self._incoming.send, spawner=self.spawn)

    def connect(self, client_name: str, server_name: str) -> None:
        """Connect a client to a server."""
        with self._lock:
            self._connections[client_name] = server_name

    def enable(self, client_name: str, enabled: bool) -> None:
        """Enable or disable a client."""
        log.debug("client %s is %s", client_name, "enabled" if enabled else "disabled")
        with self._lock:
            self._enabled[client_name] = enabled

    def set_reliable(self, yes: bool) -> None:
        """Whether requests and replies are delivered without loss or delay."""
        with self._lock:
            self._reliable = yes

    def set_long_reordering(self, yes: bool) -> None:
        """Whether replies are sometimes held back for a long time."""
        with self._lock:
            self._long_reordering = yes

    def set_long_delays(self, yes: bool) -> None:
        """Whether requests on disabled clients wait long before timing out."""
        with self._lock:
            self._long_delays = yes

    def count(self, server_name: str) -> int:
        """Requests dispatched by the named server; KeyError if it is gone."""
        with self._lock:
            server = self._servers[server_name]
        if server is None:
            raise KeyError(f"server {server_name!r} has been deleted")
        return server.count()

    def total_count(self) -> int:
        """Requests the network has processed in total."""
        with self._lock:
            return self._count

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run ``coro`` in the background; it is cancelled on :meth:`close`."""
        return self._track(coro)

    def close(self) -> None:
        """Stop accepting requests and cancel everything running."""
        self._incoming.close()
        current = asyncio.current_task() if _loop_running() else None
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

    async def __aenter__(self) -> "Network":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()
        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _end_info(self, client_name: str) -> _EndInfo:
        with self._lock:
            server = None
            server_name = self._connections.get(client_name)
            if server_name is not None:
                server = self._servers.get(server_name)
            return _EndInfo(
                enabled=self._enabled[client_name],
                reliable=self._reliable,
                long_reordering=self._long_reordering,
                long_delays=self._long_delays,
                server=server,
            )

    def _is_server_dead(self, client_name: str, server_name: str, server_id: int) -> bool:
        with self._lock:
            if not self._enabled[client_name]:
                return True
            server = self._servers.get(server_name)
            return server is None or server.id != server_id

    async def _process_rpc(self, rpc: Rpc) -> bytes:
        with self._lock:
            self._count += 1
        info = self._end_info(rpc.client_name)
        log.debug("%r process with %r", rpc, info)
        rng = self._rng

        if not info.enabled or info.server is None:
            # Simulate no reply and an eventual timeout.
            ms = rng.randrange(7000) if info.long_delays else rng.randrange(100)
            log.debug("%r delay %dms then timeout", rpc, ms)
            await asyncio.sleep(ms / 1000)
            raise RpcTimeoutError()

        short_delay = None if info.reliable else rng.randrange(27)
        if not info.reliable and rng.randrange(1000) < 100:
            # Drop the request; the caller sees a timeout after whole seconds.
            await asyncio.sleep(short_delay)
            raise RpcTimeoutError()

        drop_reply = not info.reliable and rng.randrange(1000) < 100
        reordering = None
        if info.long_reordering and rng.randrange(900) < 600:
            upper_bound = 1 + rng.randrange(2000)
            reordering = 200 + rng.randrange(upper_bound)

        return await self._deliver(rpc, info.server, short_delay, drop_reply, reordering)

    async def _deliver(
        self,
        rpc: Rpc,
        server: Server,
        short_delay: Optional[int],
        drop_reply: bool,
        reordering: Optional[int],
    ) -> bytes:
        if short_delay is not None:
            await asyncio.sleep(short_delay / 1000)

        fq_name = rpc.fq_name
        req, rpc.req = rpc.req or b"", None
        hooks = rpc.hooks
        if hooks is not None:
            hooks.before_dispatch(fq_name, req)

        # Watch the server while the handler runs: a killed server must not
        # answer, so the request fails as stopped instead.
        dispatch = asyncio.ensure_future(server.dispatch(fq_name, req))
        watch = asyncio.ensure_future(
            self._server_dead(rpc.client_name, server.name(), server.id)
        )
        try:
            done, _ = await asyncio.wait({dispatch, watch}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (dispatch, watch):
                if not task.done():
                    task.cancel()

        resp: Union[bytes, RpcError]
        if dispatch in done:
            try:
                resp = dispatch.result()
            except RpcError as exc:
                resp = exc
        else:
            resp = StoppedError()

        hooks = rpc.hooks
        if hooks is not None:
            reply = hooks.after_dispatch(fq_name, resp)
        elif isinstance(resp, RpcError):
            raise resp
        else:
            reply = resp

        if self._is_server_dead(rpc.client_name, server.name(), server.id):
            raise StoppedError()
        if drop_reply:
            raise RpcTimeoutError()
        if reordering is not None:
            log.debug("%r next long reordering %dms", rpc, reordering)
            await asyncio.sleep(reordering / 1000)
        return reply

    async def _server_dead(self, client_name: str, server_name: str, server_id: int) -> None:
        while True:
            await asyncio.sleep(_SERVER_WATCH_INTERVAL)
            if self._is_server_dead(client_name, server_name, server_id):
                log.debug("%r is dead", server_name)
                return


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True