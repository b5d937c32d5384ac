import dataclasses

import pytest

from distlab.model import Event, EventKind, Model, Operation


class Register(Model):
    """A single integer register: inputs are ("w", v) or ("r",)."""

    def init(self):
        return 0

    def step(self, state, input, output):
        if input[0] == "w":
            return True, input[1]
        return output == state, state


class Tolerant(Register):
    def equal(self, state1, state2):
        return abs(state1 - state2) <= 1


def test_model_is_abstract():
    with pytest.raises(TypeError):
        Model()


def test_subclass_missing_step_is_abstract():
    class Partial(Model):
        def init(self):
            return 0

    with pytest.raises(TypeError):
        Partial()
    assert Model.partition(Register(), ["op"]) == [["op"]]


def test_default_partition_keeps_history_whole():
    history = [Operation(("w", 1), 0, None, 2), Operation(("r",), 1, 1, 3)]
    parts = Register().partition(history)
    assert parts == [history]
    assert parts[0] is history


def test_default_partition_event_keeps_history_whole():
    history = [
        Event(EventKind.CALL, ("w", 5), 0),
        Event(EventKind.RETURN, None, 0),
    ]
    parts = Register().partition_event(history)
    assert parts == [history]


def test_default_partition_of_empty_history():
    assert Model.partition(Register(), []) == [[]]
    assert Model.partition_event(Register(), []) == [[]]


def test_default_equal_uses_equality():
    model = Register()
    assert Model.equal(model, 3, 3) is True
    assert Model.equal(model, 3, 4) is False


def test_equal_can_be_overridden():
    model = Tolerant()
    assert model.equal(3, 4) is True
    assert model.equal(3, 5) is False
    assert Model.equal(model, 3, 4) is False


def test_step_through_subclass():
    model = Register()
    state = model.init()
    ok, state = model.step(state, ("w", 7), None)
    assert ok is True
    assert Model.equal(model, state, 7) is True
    assert model.step(state, ("r",), 7) == (True, 7)
    assert model.step(state, ("r",), 8)[0] is False


def test_operation_fields():
    op = Operation(input="in", call=1, output="out", finish=2)
    assert (op.input, op.call, op.output, op.finish) == ("in", 1, "out", 2)


def test_operation_is_immutable():
    op = Operation("in", 1, "out", 2)
    with pytest.raises(dataclasses.FrozenInstanceError):
        op.call = 5
    assert op.call == 1


def test_event_equality_and_kinds():
    call = Event(EventKind.CALL, "x", 4)
    assert call == Event(EventKind.CALL, "x", 4)
    assert call != Event(EventKind.RETURN, "x", 4)
    assert EventKind.CALL is not EventKind.RETURN
    assert len(list(EventKind)) == 2