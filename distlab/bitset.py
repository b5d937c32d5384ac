"""Fixed-size bit set backed by 64-bit words."""

from __future__ import annotations

__all__ = ["Bitset"]

_WORD_BITS = 64
_WORD_MASK = (1 << _WORD_BITS) - 1


class Bitset:
    """A fixed number of bits, addressable by position."""

    __slots__ = ("_words",)

    def __init__(self, bits: int) -> None:
        if bits < 0:
            raise ValueError("bit count must not be negative")
        words, extra = divmod(bits, _WORD_BITS)
        self._words = [0] * (words + (1 if extra else 0))

    def _locate(self, pos: int) -> tuple[int, int]:
        if pos < 0:
            raise IndexError(f"bit position {pos} out of range")
        major, minor = divmod(pos, _WORD_BITS)
        if major >= len(self._words):
            raise IndexError(f"bit position {pos} out of range")
        return major, minor

    def set(self, pos: int) -> None:
        """Turn on the bit at ``pos``."""
        major, minor = self._locate(pos)
        self._words[major] |= 1 << minor

    def clear(self, pos: int) -> None:
        """Turn off the bit at ``pos``."""
        major, minor = self._locate(pos)
        self._words[major] &= ~(1 << minor) & _WORD_MASK

    def copy(self) -> "Bitset":
        """An independent copy of this set."""
        other = Bitset(0)
        other._words = list(self._words)
        return other

    def popcount(self) -> int:
        """Number of bits turned on."""
        return sum(bin(word).count("1") for word in self._words)

    def digest(self) -> int:
        """A 64-bit hash combining the bit count with every word."""
        result = self.popcount()
        for word in self._words:
            result ^= word
        return result

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Bitset):
            return NotImplemented
        return self._words == other._words

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Bitset({[hex(w) for w in self._words]})"