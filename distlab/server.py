"""RPC servers: a named set of services dispatched by ``service.method``."""

from __future__ import annotations

import abc
import itertools
import threading
from typing import Awaitable, Callable

from distlab.errors import OtherError, UnimplementedError

__all__ = ["Handler", "HandlerFactory", "ServerBuilder", "Server"]

Handler = Callable[[bytes], Awaitable[bytes]]

_ids = itertools.count()
_ids_lock = threading.Lock()


class HandlerFactory(abc.ABC):
    """Produces the request handler for a method of one service."""

    @abc.abstractmethod
    def handler(self, name: str) -> Handler:
        """Return an async handler taking request bytes and returning reply bytes."""


class ServerBuilder:
    """Collects services under unique names, then builds a :class:`Server`."""

    def __init__(self, name: str) -> None:
        self._name = name
        self.services: dict[str, HandlerFactory] = {}

    def add_service(self, service_name: str, factory: HandlerFactory) -> None:
        """Register ``factory`` under ``service_name``; names must be unique."""
        if service_name in self.services:
            raise OtherError(f"{service_name} has already registered")
        self.services[service_name] = factory

    def build(self) -> "Server":
        """Create a server with a fresh process-wide id."""
        with _ids_lock:
            server_id = next(_ids)
        return Server(self._name, dict(self.services), server_id)


class Server:
    """Dispatches encoded requests to registered services and counts them."""

    def __init__(self, name: str, services: dict[str, HandlerFactory], server_id: int) -> None:
        self._name = name
        self._services = services
        self._id = server_id
        self._count = 0
        self._lock = threading.Lock()

    @property
    def id(self) -> int:
        """Unique id assigned when the server was built."""
        return self._id

    def count(self) -> int:
        """Number of requests dispatched so far."""
        with self._lock:
            return self._count

    def name(self) -> str:
        """The server's name."""
        return self._name

    async def dispatch(self, fq_name: str, req: bytes) -> bytes:
        """Run the handler for ``fq_name`` (``service.method``) on ``req``."""
        with self._lock:
            self._count += 1
        parts = fq_name.split(".")
        if len(parts) < 2:
            raise UnimplementedError(f"unknown {fq_name}")
        service_name, method_name = parts[0], parts[1]
        factory = self._services.get(service_name)
        if factory is None:
            raise UnimplementedError(f"unknown {fq_name}")
        return await factory.handler(method_name)(req)

    def __repr__(self) -> str:
        return f"Server(name={self._name!r}, id={self._id})"