"""Key orderings used to sort keys in the database."""

from __future__ import annotations

from abc import ABC, abstractmethod

__all__ = ["Comparer", "BytesComparer", "DEFAULT_COMPARER"]


class Comparer(ABC):
    """A total ordering over byte-string keys."""

    @abstractmethod
    def name(self) -> str:
        """Return the comparer's name.

        The name is stored with the database, and opening it with a comparer
        of another name is an error. Names starting with ``leveldb.`` are
        reserved.
        """

    @abstractmethod
    def compare(self, a: bytes, b: bytes) -> int:
        """Return -1, 0 or +1 as ``a`` is less than, equal to or greater than ``b``.

        Two keys are equal only when their contents are equal, and the empty
        key is less than any other key.
        """

    @abstractmethod
    def separator(self, a: bytes, b: bytes) -> bytes | None:
        """Return a short key ``x`` with ``a <= x < b``, or None if ``x`` would equal ``a``."""

    @abstractmethod
    def successor(self, b: bytes) -> bytes | None:
        """Return a short key ``x`` with ``x >= b``, or None if ``x`` would equal ``b``."""


class BytesComparer(Comparer):
    """Orders keys bytewise, in their natural lexicographic order."""

    def name(self) -> str:
        return "leveldb.BytewiseComparator"

    def compare(self, a: bytes, b: bytes) -> int:
        a, b = bytes(a), bytes(b)
        return (a > b) - (a < b)

    def separator(self, a: bytes, b: bytes) -> bytes | None:
        a, b = bytes(a), bytes(b)
        common = 0
        for x, y in zip(a, b):
            if x != y:
                break
            common += 1
        if common >= min(len(a), len(b)):
            # One key is a prefix of the other: do not shorten.
            return None
        c = a[common]
        if c < 0xFF and c + 1 < b[common]:
            return a[:common] + bytes((c + 1,))
        return None

    def successor(self, b: bytes) -> bytes | None:
        b = bytes(b)
        for i, c in enumerate(b):
            if c != 0xFF:
                return b[:i] + bytes((c + 1,))
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


DEFAULT_COMPARER = BytesComparer()