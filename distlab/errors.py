"""Errors raised by RPC clients, servers and the simulated network."""

from __future__ import annotations

from typing import ClassVar, Union

__all__ = [
    "RpcError",
    "UnimplementedError",
    "RpcEncodeError",
    "RpcDecodeError",
    "CanceledError",
    "RpcTimeoutError",
    "StoppedError",
    "OtherError",
]


class RpcError(Exception):
    """Base of every RPC failure.

    Two errors are equal when they are of the same type and carry the same
    detail text, so they can be compared with expected values.
    """

    description: ClassVar[str] = "rpc error"

    def __init__(self, detail: str = "") -> None:
        if detail:
            super().__init__(detail)
        else:
            super().__init__()
        self.detail = detail

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RpcError):
            return NotImplemented
        return type(self) is type(other) and self.detail == other.detail

    def __hash__(self) -> int:
        return hash((type(self).__qualname__, self.detail))

    def __str__(self) -> str:
        return self.detail or self.description

    def __repr__(self) -> str:
        if self.detail:
            return f"{type(self).__name__}({self.detail!r})"
        return f"{type(self).__name__}()"


class UnimplementedError(RpcError):
    """The requested service or method does not exist."""

    description = "unimplemented"


class _WrappedError(RpcError):
    """An RPC error caused by a lower-level exception."""

    def __init__(self, error: Union[BaseException, str]) -> None:
        super().__init__(str(error))
        if isinstance(error, BaseException):
            self.__cause__ = error


class RpcEncodeError(_WrappedError):
    """A request or reply could not be encoded."""

    description = "encode error"


class RpcDecodeError(_WrappedError):
    """A request or reply could not be decoded."""

    description = "decode error"


class CanceledError(RpcError):
    """The reply channel was dropped before a reply was sent."""

    description = "canceled"

    def __init__(self) -> None:
        super().__init__()


class RpcTimeoutError(RpcError):
    """No reply arrived; the request or its reply was lost."""

    description = "timeout"

    def __init__(self) -> None:
        super().__init__()


class StoppedError(RpcError):
    """The network or the target server has stopped."""

    description = "stopped"

    def __init__(self) -> None:
        super().__init__()


class OtherError(RpcError):
    """Any other failure, described by its detail text."""

    description = "other error"