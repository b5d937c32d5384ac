"""A small sample message exercising the codec."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from distlab.codec import Kind, Message, proto_field

__all__ = ["MsgType", "Msg"]


class MsgType(enum.IntEnum):
    """Kind of operation a :class:`Msg` carries."""

    UNKNOWN = 0
    PUT = 1
    GET = 2
    DEL = 3

    @classmethod
    def is_valid(cls, value: int) -> bool:
        """Whether ``value`` names a member."""
        return value in cls._value2member_map_

    @classmethod
    def from_int(cls, value: int) -> Optional["MsgType"]:
        """The member for ``value``, or None if there is none."""
        return cls._value2member_map_.get(value)


@dataclass
class Msg(Message):
    """A simple protobuf message."""

    type: int = proto_field(1, Kind.ENUM)
    id: int = proto_field(2, Kind.UINT64)
    name: str = proto_field(3, Kind.STRING)
    paylad: list[bytes] = proto_field(4, Kind.BYTES, repeated=True)

    def message_type(self) -> MsgType:
        """The operation type, or UNKNOWN if the stored value is not valid."""
        found = MsgType.from_int(self.type)
        return found if found is not None else MsgType.UNKNOWN

    def set_type(self, value: MsgType) -> None:
        """Store ``value`` as the operation type."""
        self.type = int(value)