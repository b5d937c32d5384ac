"""Declarative RPC services and typed clients for them.

A service is a :class:`Service` subclass whose async methods are marked
with :func:`rpc`, giving the request and reply message types::

    class Echo(Service, name="echo"):
        @rpc(EchoArgs, EchoArgs)
        async def ping(self, request):
            return request
"""

from __future__ import annotations

import functools
import inspect
from typing import Any, Callable, ClassVar, Coroutine, NamedTuple, Optional

from distlab.client import Client
from distlab.codec import DecodeError, EncodeError, Message, encode
from distlab.errors import RpcDecodeError, RpcEncodeError, UnimplementedError
from distlab.server import Handler, HandlerFactory, ServerBuilder

__all__ = [
    "rpc",
    "Service",
    "ServiceHandlerFactory",
    "add_service",
    "ServiceClient",
]

_MARKER = "_rpc_signature"


class _Signature(NamedTuple):
    request: type[Message]
    reply: type[Message]


def rpc(request_type: type[Message], reply_type: type[Message]) -> Callable:
    """Mark a service method as an RPC taking and returning these messages."""

    def mark(method: Callable) -> Callable:
        setattr(method, _MARKER, _Signature(request_type, reply_type))
        return method

    return mark


class Service:
    """Base of RPC services; the class keyword ``name`` sets the service name."""

    service_name: ClassVar[str] = ""

    def __init_subclass__(cls, *, name: Optional[str] = None, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if name is not None:
            if not name or "." in name:
                raise ValueError(f"invalid service name {name!r}")
            cls.service_name = name
        elif not cls.service_name:
            cls.service_name = cls.__name__.lower()

    @classmethod
    def methods(cls) -> dict[str, _Signature]:
        """RPC methods in declaration order, with their message types."""
        found: dict[str, _Signature] = {}
        for klass in reversed(cls.__mro__):
            for attr, value in vars(klass).items():
                signature = getattr(value, _MARKER, None)
                if isinstance(signature, _Signature):
                    found[attr] = signature
        return found


class ServiceHandlerFactory(HandlerFactory):
    """Builds handlers that decode requests, call the service and encode replies."""

    def __init__(self, service: Service) -> None:
        self._service = service
        self._methods = type(service).methods()
        self._name = type(service).service_name

    def handler(self, name: str) -> Handler:
        signature = self._methods.get(name)
        service = self._service
        service_name = self._name

        async def handle(req: bytes) -> bytes:
            if signature is None:
                raise UnimplementedError(f"unknown {name} in {service_name}")
            try:
                request = signature.request.decode(req)
            except DecodeError as exc:
                raise RpcDecodeError(exc) from exc
            reply = getattr(service, name)(request)
            if inspect.isawaitable(reply):
                reply = await reply
            try:
                return encode(reply)
            except EncodeError as exc:
                raise RpcEncodeError(exc) from exc

        return handle


def add_service(service: Service, builder: ServerBuilder) -> None:
    """Register ``service`` with ``builder`` under its service name."""
    if not type(service).methods():
        raise ValueError("empty service is not allowed")
    builder.add_service(type(service).service_name, ServiceHandlerFactory(service))


class ServiceClient:
    """Calls the RPC methods of one service type through a :class:`Client`.

    Methods are reachable by name: ``client.ping(request)`` is
    ``client.call("ping", request)``.
    """

    def __init__(self, client: Client, service_type: type[Service]) -> None:
        self._client = client
        self._service_type = service_type
        self._methods = service_type.methods()

    def call(self, method: str, request: Message) -> Any:
        """Send ``request`` to ``method``; returns a future of the reply."""
        signature = self._methods.get(method)
        if signature is None:
            raise ValueError(f"{self._service_type.service_name} has no method {method!r}")
        if not isinstance(request, signature.request):
            raise TypeError(
                f"{method} expects {signature.request.__name__}, got {type(request).__name__}"
            )
        fq_name = f"{self._service_type.service_name}.{method}"
        return self._client.call(fq_name, request, signature.reply)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> Any:
        """Run ``coro`` in the background on the underlying client."""
        return self._client.spawn(coro)

    def __getattr__(self, name: str) -> Callable[[Message], Any]:
        methods = self.__dict__.get("_methods", {})
        if name in methods:
            return functools.partial(self.call, name)
        raise AttributeError(name)