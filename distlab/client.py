"""RPC client end-points and the requests they put on the network."""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Optional, Union

from distlab.codec import DecodeError, EncodeError, Message, decode, encode
from distlab.errors import (
    CanceledError,
    RpcDecodeError,
    RpcEncodeError,
    RpcError,
    StoppedError,
)

__all__ = ["Rpc", "RpcHooks", "Client"]


class RpcHooks:
    """Intercepts requests of a client around dispatch on the server.

    The defaults let every well-formed request through unchanged.
    """

    def before_dispatch(self, fq_name: str, req: bytes) -> None:
        """Inspect a request before dispatch; raise to reject it."""
        if not isinstance(req, (bytes, bytearray, memoryview)):
            raise TypeError(f"request for {fq_name} must be bytes, not {type(req).__name__}")

    def after_dispatch(self, fq_name: str, resp: Union[bytes, RpcError]) -> bytes:
        """Inspect a reply, or the error in its place; return reply bytes or raise."""
        if isinstance(resp, BaseException):
            raise resp
        return resp


class _HookSlot:
    """Hooks shared between a client and the requests it sends."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hooks: Optional[RpcHooks] = None

    def get(self) -> Optional[RpcHooks]:
        with self._lock:
            return self._hooks

    def put(self, hooks: Optional[RpcHooks]) -> None:
        with self._lock:
            self._hooks = hooks


@dataclass(eq=False)
class Rpc:
    """A request in flight, with the future its reply is delivered through."""

    client_name: str
    fq_name: str
    req: Optional[bytes] = field(repr=False)
    resp: Optional[asyncio.Future] = field(repr=False)
    hook_slot: _HookSlot = field(repr=False, default_factory=_HookSlot)

    @property
    def hooks(self) -> Optional[RpcHooks]:
        """The sending client's current hooks, if any."""
        return self.hook_slot.get()

    def take_resp_sender(self) -> Optional[asyncio.Future]:
        """Remove and return the reply future; later calls return None."""
        resp, self.resp = self.resp, None
        return resp


class Client:
    """A named end-point that sends encoded requests through ``send``.

    ``send`` receives each :class:`Rpc` and raises :class:`StoppedError`
    when nothing is listening any more.
    """

    def __init__(
        self,
        name: str,
        send: Callable[[Rpc], None],
        *,
        spawner: Optional[Callable[[Coroutine[Any, Any, Any]], Any]] = None,
    ) -> None:
        self.name = name
        self._send = send
        self._spawner = spawner
        self._hooks = _HookSlot()
        self._tasks: set[asyncio.Task] = set()

    def call(self, fq_name: str, request: Message, reply_type: type[Message]) -> asyncio.Future:
        """Send ``request`` now and return a future of the decoded reply.

        Must be called with an event loop running. Failures are delivered
        through the returned future as :class:`RpcError` subclasses.
        """
        loop = asyncio.get_running_loop()
        result: asyncio.Future = loop.create_future()
        try:
            buf = encode(request)
        except EncodeError as exc:
            result.set_exception(RpcEncodeError(exc))
            return result

        sender: asyncio.Future = loop.create_future()
        rpc = Rpc(self.name, fq_name, buf, sender, self._hooks)
        try:
            self._send(rpc)
        except StoppedError:
            result.set_exception(StoppedError())
            return result

        def settle(done: asyncio.Future) -> None:
            if result.done():
                return
            if done.cancelled():
                result.set_exception(CanceledError())
                return
            error = done.exception()
            if error is not None:
                result.set_exception(error)
                return
            try:
                reply = decode(reply_type, done.result())
            except DecodeError as exc:
                result.set_exception(RpcDecodeError(exc))
            else:
                result.set_result(reply)

        sender.add_done_callback(settle)
        return result

    def set_hooks(self, hooks: RpcHooks) -> None:
        """Install hooks for this client's requests, including ones in flight."""
        self._hooks.put(hooks)

    def clear_hooks(self) -> None:
        """Remove any installed hooks."""
        self._hooks.put(None)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> Any:
        """Run ``coro`` in the background and return its task."""
        if self._spawner is not None:
            return self._spawner(coro)
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def __repr__(self) -> str:
        return f"Client(name={self.name!r})"