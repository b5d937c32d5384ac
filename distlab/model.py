"""Histories of operations and the models they are checked against.

A history is either a list of :class:`Operation` records, each with its
invocation and response times, or a list of :class:`Event` records in the
order they happened, where a call event and its return event share an id.
A call event carries the operation's input as its value and a return event
carries its output.
"""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

__all__ = ["Operation", "EventKind", "Event", "Model"]

S = TypeVar("S")
I = TypeVar("I")
O = TypeVar("O")


@dataclass(frozen=True)
class Operation(Generic[I, O]):
    """A completed operation with its invocation and response times."""

    input: I
    call: int
    output: O
    finish: int


class EventKind(enum.Enum):
    """Whether an event starts or completes an operation."""

    CALL = "call"
    RETURN = "return"


@dataclass(frozen=True)
class Event(Generic[I, O]):
    """One end of an operation; call and return events share ``id``.

    ``value`` is the operation's input for a call event and its output for
    a return event.
    """

    kind: EventKind
    value: Any
    id: int


class Model(abc.ABC, Generic[S, I, O]):
    """Sequential specification of a system that histories are checked against."""

    def partition(self, history: list[Operation[I, O]]) -> list[list[Operation[I, O]]]:
        """Split a history into parts that are linearizable exactly when it is.

        By default the history is not split.
        """
        return [history]

    def partition_event(self, history: list[Event[I, O]]) -> list[list[Event[I, O]]]:
        """Split an event history like :meth:`partition`; by default not at all."""
        return [history]

    @abc.abstractmethod
    def init(self) -> S:
        """The initial state of the system."""

    @abc.abstractmethod
    def step(self, state: S, input: I, output: O) -> tuple[bool, S]:
        """Whether the system in ``state`` can turn ``input`` into ``output``.

        Returns that verdict and the state afterwards, without changing
        ``state`` itself.
        """

    def equal(self, state1: S, state2: S) -> bool:
        """Whether two states are the same; by default plain equality."""
        return state1 == state2