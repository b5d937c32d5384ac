"""A key-value store model and a parser for its recorded histories."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Iterable

from distlab.model import Event, EventKind, Model, Operation

__all__ = ["Op", "KvInput", "KvOutput", "KvModel", "parse_kv_log"]


class Op(enum.Enum):
    """Operations a key-value store accepts."""

    GET = "get"
    PUT = "put"
    APPEND = "append"


@dataclass(frozen=True)
class KvInput:
    """A request to the store."""

    op: Op
    key: str
    value: str = ""


@dataclass(frozen=True)
class KvOutput:
    """A reply from the store; the value read, or empty."""

    value: str = ""


class KvModel(Model[str, KvInput, KvOutput]):
    """A store of string values, checked one key at a time."""

    def partition(self, history: list[Operation[KvInput, KvOutput]]) -> list[list[Operation[KvInput, KvOutput]]]:
        """Group operations by key."""
        groups: dict[str, list[Operation[KvInput, KvOutput]]] = {}
        for op in history:
            groups.setdefault(op.input.key, []).append(op)
        return list(groups.values())

    def partition_event(self, history: list[Event[KvInput, KvOutput]]) -> list[list[Event[KvInput, KvOutput]]]:
        """Group events by the key of the call they belong to.

        A return event whose call has not been seen raises KeyError.
        """
        groups: dict[str, list[Event[KvInput, KvOutput]]] = {}
        keys: dict[int, str] = {}
        for event in history:
            if event.kind is EventKind.CALL:
                key = event.value.key
                keys[event.id] = key
            else:
                key = keys[event.id]
            groups.setdefault(key, []).append(event)
        return list(groups.values())

    def init(self) -> str:
        # A single key's value: histories are partitioned by key.
        return ""

    def step(self, state: str, input: KvInput, output: KvOutput) -> tuple[bool, str]:
        if input.op is Op.GET:
            return output.value == state, state
        if input.op is Op.PUT:
            return True, input.value
        return True, state + input.value


_INVOKE_GET = re.compile(r'\{:process (\d+), :type :invoke, :f :get, :key "(.*)", :value nil\}')
_INVOKE_PUT = re.compile(r'\{:process (\d+), :type :invoke, :f :put, :key "(.*)", :value "(.*)"\}')
_INVOKE_APPEND = re.compile(r'\{:process (\d+), :type :invoke, :f :append, :key "(.*)", :value "(.*)"\}')
_RETURN_GET = re.compile(r'\{:process (\d+), :type :ok, :f :get, :key ".*", :value "(.*)"\}')
_RETURN_PUT = re.compile(r'\{:process (\d+), :type :ok, :f :put, :key ".*", :value ".*"\}')
_RETURN_APPEND = re.compile(r'\{:process (\d+), :type :ok, :f :append, :key ".*", :value ".*"\}')


def parse_kv_log(lines: Iterable[str]) -> list[Event[KvInput, KvOutput]]:
    """Read a key-value history log into events.

    Each line records a process invoking or completing a get, put or append.
    Operations still pending at the end get a return event with an empty
    value. An unrecognised line, or a completion with no pending invocation,
    raises ValueError.
    """
    events: list[Event[KvInput, KvOutput]] = []
    pending: dict[int, int] = {}
    next_id = 0

    def invoke(process: str, request: KvInput) -> None:
        nonlocal next_id
        events.append(Event(EventKind.CALL, request, next_id))
        pending[int(process)] = next_id
        next_id += 1

    def complete(process: str, value: str, line: str) -> None:
        try:
            match_id = pending.pop(int(process))
        except KeyError:
            raise ValueError(f"completion without invocation: {line!r}") from None
        events.append(Event(EventKind.RETURN, KvOutput(value), match_id))

    for raw in lines:
        line = raw.rstrip("\r\n")
        if found := _INVOKE_GET.search(line):
            invoke(found[1], KvInput(Op.GET, found[2]))
        elif found := _INVOKE_PUT.search(line):
            invoke(found[1], KvInput(Op.PUT, found[2], found[3]))
        elif found := _INVOKE_APPEND.search(line):
            invoke(found[1], KvInput(Op.APPEND, found[2], found[3]))
        elif found := _RETURN_GET.search(line):
            complete(found[1], found[2], line)
        elif found := _RETURN_PUT.search(line):
            complete(found[1], "", line)
        elif found := _RETURN_APPEND.search(line):
            complete(found[1], "", line)
        else:
            raise ValueError(f"unrecognised log line: {line!r}")

    for match_id in pending.values():
        events.append(Event(EventKind.RETURN, KvOutput(""), match_id))
    return events