"""Linearizability checking of operation and event histories against a model.

A history is split by the model's partition functions and each part is
searched in its own thread for an order of operations that the model
accepts. The search backtracks over a linked list of call and return
entries and remembers visited (linearized set, state) pairs so that no
configuration is explored twice.
"""

from __future__ import annotations

import datetime
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from distlab.bitset import Bitset
from distlab.model import Event, EventKind, Model, Operation

__all__ = ["check_operations", "check_events"]

Timeout = Union[None, float, int, datetime.timedelta]


@dataclass(frozen=True)
class _Entry:
    is_call: bool
    value: Any
    id: int
    time: int


class _Node:
    """One call or return in the doubly linked history list."""

    __slots__ = ("value", "id", "matched", "prev", "next")

    def __init__(self, value: Any, node_id: int, matched: Optional["_Node"]) -> None:
        self.value = value
        self.id = node_id
        # Set on call nodes only: the node of the matching return.
        self.matched = matched
        self.prev: Optional[_Node] = None
        self.next: Optional[_Node] = None


def _entries_from_operations(history: list[Operation]) -> list[_Entry]:
    entries: list[_Entry] = []
    for op_id, op in enumerate(history):
        entries.append(_Entry(True, op.input, op_id, op.call))
        entries.append(_Entry(False, op.output, op_id, op.finish))
    return sorted(entries, key=lambda entry: entry.time)


def _entries_from_events(history: list[Event]) -> list[_Entry]:
    numbering: dict[int, int] = {}
    entries: list[_Entry] = []
    for event in history:
        event_id = numbering.setdefault(event.id, len(numbering))
        entries.append(_Entry(event.kind is EventKind.CALL, event.value, event_id, -1))
    return entries


def _link(entries: list[_Entry]) -> tuple[_Node, int]:
    """Build the linked list behind a sentinel head; returns it and its length."""
    returns: dict[int, _Node] = {}
    nodes: list[_Node] = []
    for entry in reversed(entries):
        if entry.is_call:
            matched = returns.get(entry.id)
            if matched is None:
                raise ValueError(f"operation {entry.id} has no return after its call")
            node = _Node(entry.value, entry.id, matched)
        else:
            node = _Node(entry.value, entry.id, None)
            returns[entry.id] = node
        nodes.append(node)
    nodes.reverse()

    head = _Node(None, -1, None)
    previous = head
    for node in nodes:
        previous.next = node
        node.prev = previous
        previous = node
    return head, len(nodes)


def _lift(entry: _Node) -> None:
    entry.prev.next = entry.next
    entry.next.prev = entry.prev
    matched = entry.matched
    matched.prev.next = matched.next
    if matched.next is not None:
        matched.next.prev = matched.prev


def _unlift(entry: _Node) -> None:
    matched = entry.matched
    matched.prev.next = matched
    if matched.next is not None:
        matched.next.prev = matched
    entry.prev.next = entry
    entry.next.prev = entry


def _check_single(model: Model, head: _Node, length: int, kill: threading.Event) -> bool:
    linearized = Bitset(length // 2)
    cache: dict[int, list[tuple[Bitset, Any]]] = {}
    calls: list[tuple[_Node, Any]] = []

    def seen(bits: Bitset, state: Any) -> bool:
        return any(
            bits == other_bits and model.equal(state, other_state)
            for other_bits, other_state in cache.get(bits.digest(), ())
        )

    state = model.init()
    entry = head.next
    while head.next is not None:
        if kill.is_set():
            return False
        if entry.matched is not None:
            accepted, new_state = model.step(state, entry.value, entry.matched.value)
            if accepted:
                new_linearized = linearized.copy()
                new_linearized.set(entry.id)
                if not seen(new_linearized, new_state):
                    cache.setdefault(new_linearized.digest(), []).append(
                        (new_linearized, new_state)
                    )
                    calls.append((entry, state))
                    state = new_state
                    linearized.set(entry.id)
                    _lift(entry)
                    entry = head.next
                    continue
            entry = entry.next
        else:
            if not calls:
                return False
            entry, state = calls.pop()
            linearized.clear(entry.id)
            _unlift(entry)
            entry = entry.next
    return True


def _seconds(timeout: Timeout) -> Optional[float]:
    if timeout is None:
        return None
    if isinstance(timeout, datetime.timedelta):
        seconds = timeout.total_seconds()
    else:
        seconds = float(timeout)
    if seconds < 0:
        raise ValueError("timeout must not be negative")
    return seconds or None


def _run(
    model: Model,
    partitions: list[list[Any]],
    to_entries: Callable[[list[Any]], list[_Entry]],
    timeout: Timeout,
) -> bool:
    seconds = _seconds(timeout)
    if not partitions:
        return True

    results: queue.Queue[tuple[bool, Any]] = queue.Queue()
    kill = threading.Event()

    def work(part: list[Any]) -> None:
        try:
            head, length = _link(to_entries(part))
            results.put((True, _check_single(model, head, length, kill)))
        except BaseException as exc:  # handed to the caller's thread
            results.put((False, exc))

    threads = [threading.Thread(target=work, args=(part,), daemon=True) for part in partitions]
    for thread in threads:
        thread.start()

    ok = True
    error: Optional[BaseException] = None
    remaining = len(threads)
    while remaining:
        try:
            finished, payload = results.get(timeout=seconds)
        except queue.Empty:
            # Timed out: whatever has been seen so far stands.
            break
        if not finished:
            error = payload
            break
        remaining -= 1
        if not payload:
            ok = False
            break
    kill.set()
    for thread in threads:
        thread.join()
    if error is not None:
        raise error
    return ok


def check_operations(model: Model, history: list[Operation], timeout: Timeout = 0) -> bool:
    """Whether a history of timed operations is linearizable under ``model``.

    ``timeout`` (seconds or a timedelta) bounds each wait for a partition's
    verdict; zero or None waits without limit. When it runs out the answer
    is True, which may be a false positive.
    """
    return _run(model, model.partition(list(history)), _entries_from_operations, timeout)


def check_events(model: Model, history: list[Event], timeout: Timeout = 0) -> bool:
    """Whether an ordered history of call and return events is linearizable.

    Every call event must be followed by a return event with the same id;
    otherwise ValueError is raised. ``timeout`` works as in
    :func:`check_operations`.
    """
    return _run(model, model.partition_event(list(history)), _entries_from_events, timeout)