"""Write batches: ordered put and delete records in the on-disk batch format."""

from __future__ import annotations

import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, Iterator, Protocol

__all__ = [
    "BATCH_HEADER_LEN",
    "BATCH_GROW_LIMIT",
    "KeyType",
    "BatchCorruptedError",
    "BatchReplay",
    "BatchConfig",
    "BatchRecord",
    "Batch",
    "make_batch",
    "make_batch_with_config",
    "decode_batch",
    "encode_batch_header",
    "decode_batch_header",
    "batches_len",
    "write_batches_with_header",
]

BATCH_HEADER_LEN = 8 + 4
BATCH_GROW_LIMIT = 3000

_HEADER = struct.Struct("<QI")
_MAX_VARINT_LEN64 = 10
_INTERNAL_KEY_OVERHEAD = 8


class KeyType(IntEnum):
    """Kind of a batch record."""

    DEL = 0
    VAL = 1


class BatchCorruptedError(Exception):
    """Raised when encoded batch data is malformed."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"leveldb: batch corrupted: {reason}")
        self.reason = reason


class BatchReplay(ABC):
    """Receiver of the operations stored in a batch."""

    @abstractmethod
    def put(self, key: bytes, value: bytes) -> None:
        """Handle a put of ``key`` to ``value``."""

    @abstractmethod
    def delete(self, key: bytes) -> None:
        """Handle a deletion of ``key``."""


class _Writer(Protocol):
    def write(self, data: bytes) -> object: ...


@dataclass
class BatchConfig:
    """Options for creating a batch.

    ``initial_capacity`` is the number of bytes to expect; ``grow_limit`` is the
    entry count after which buffer growth slows down (0 means the default).
    """

    initial_capacity: int = 0
    grow_limit: int = 0


@dataclass(frozen=True)
class BatchRecord:
    """One operation of a batch. Deletions carry an empty value."""

    key_type: KeyType
    key: bytes
    value: bytes = b""

    @property
    def internal_len(self) -> int:
        """Length of key and value plus the 8-byte internal key trailer."""
        return len(self.key) + len(self.value) + _INTERNAL_KEY_OVERHEAD


def _put_uvarint(out: bytearray, x: int) -> None:
    while x >= 0x80:
        out.append((x & 0x7F) | 0x80)
        x >>= 7
    out.append(x)


def _read_uvarint(data: bytes, pos: int) -> tuple[int, int] | None:
    """Return ``(value, next_pos)``, or None if no valid varint starts at ``pos``."""
    x = 0
    shift = 0
    for i, b in enumerate(data[pos : pos + _MAX_VARINT_LEN64]):
        if b < 0x80:
            if i == _MAX_VARINT_LEN64 - 1 and b > 1:
                return None
            return x | (b << shift), pos + i + 1
        x |= (b & 0x7F) << shift
        shift += 7
    return None


def _iter_records(data: bytes) -> Iterator[BatchRecord]:
    pos = 0
    end = len(data)
    while pos < end:
        raw = data[pos]
        if raw > KeyType.VAL:
            raise BatchCorruptedError(f"bad record: invalid type {raw:#x}")
        key_type = KeyType(raw)
        pos += 1

        parsed = _read_uvarint(data, pos)
        if parsed is None or parsed[1] + parsed[0] > end:
            raise BatchCorruptedError("bad record: invalid key length")
        key_len, pos = parsed
        key = data[pos : pos + key_len]
        pos += key_len

        value = b""
        if key_type is KeyType.VAL:
            parsed = _read_uvarint(data, pos)
            if parsed is None or parsed[1] + parsed[0] > end:
                raise BatchCorruptedError("bad record: invalid value length")
            value_len, pos = parsed
            value = data[pos : pos + value_len]
            pos += value_len

        yield BatchRecord(key_type, key, value)


def decode_batch(data: bytes) -> list[BatchRecord]:
    """Decode batch record data (without header) into its records."""
    return list(_iter_records(bytes(data)))


class Batch(BatchReplay):
    """An ordered collection of put and delete operations.

    Python manages the buffer's growth itself; ``capacity`` and ``grow_limit``
    are kept as the batch's configuration.
    """

    def __init__(self, capacity: int = 0, grow_limit: int = 0) -> None:
        self.capacity = max(capacity, 0)
        self.grow_limit = grow_limit if grow_limit > 0 else BATCH_GROW_LIMIT
        self._data = bytearray()
        self._records: list[BatchRecord] = []
        self._internal_len = 0

    def _append(self, key_type: KeyType, key: bytes, value: bytes) -> None:
        key = bytes(key)
        value = bytes(value) if key_type is KeyType.VAL else b""
        data = self._data
        data.append(key_type)
        _put_uvarint(data, len(key))
        data += key
        if key_type is KeyType.VAL:
            _put_uvarint(data, len(value))
            data += value
        record = BatchRecord(key_type, key, value)
        self._records.append(record)
        self._internal_len += record.internal_len

    def put(self, key: bytes, value: bytes) -> None:
        """Append a put of ``key`` to ``value``."""
        self._append(KeyType.VAL, key, value)

    def delete(self, key: bytes) -> None:
        """Append a deletion of ``key``."""
        self._append(KeyType.DEL, key, b"")

    def dump(self) -> bytes:
        """Return the encoded records; :meth:`load` accepts the result."""
        return bytes(self._data)

    def load(self, data: bytes) -> None:
        """Replace the batch's contents with encoded record data."""
        data = bytes(data)
        records = decode_batch(data)
        self._data = bytearray(data)
        self._records = records
        self._internal_len = sum(r.internal_len for r in records)

    def replay(self, replayer: BatchReplay) -> None:
        """Feed every operation, in order, to ``replayer``."""
        for record in self._records:
            if record.key_type is KeyType.VAL:
                replayer.put(record.key, record.value)
            else:
                replayer.delete(record.key)

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[BatchRecord]:
        return iter(list(self._records))

    def reset(self) -> None:
        """Remove every record."""
        self._data.clear()
        self._records.clear()
        self._internal_len = 0

    def internal_len(self) -> int:
        """Sum of key and value lengths plus 8 bytes per record."""
        return self._internal_len

    def extend(self, other: Batch) -> None:
        """Append every record of ``other`` to this batch."""
        data = bytes(other._data)
        records = list(other._records)
        added = other._internal_len
        self._data += data
        self._records.extend(records)
        self._internal_len += added

    def __repr__(self) -> str:
        return f"{type(self).__name__}(records={len(self)}, bytes={len(self._data)})"


def make_batch(n: int) -> Batch:
    """Return an empty batch expecting about ``n`` bytes of records."""
    return Batch(capacity=n)


def make_batch_with_config(config: BatchConfig | None) -> Batch:
    """Return an empty batch configured by ``config`` (None for defaults)."""
    if config is None:
        return Batch()
    return Batch(capacity=config.initial_capacity, grow_limit=config.grow_limit)


def encode_batch_header(seq: int, batch_len: int) -> bytes:
    """Encode the 12-byte header: sequence number and record count, little-endian."""
    if not 0 <= seq < 1 << 64:
        raise ValueError(f"sequence number out of range: {seq}")
    return _HEADER.pack(seq, batch_len & 0xFFFFFFFF)


def decode_batch_header(data: bytes) -> tuple[int, int]:
    """Decode a batch header into ``(seq, batch_len)``."""
    if len(data) < BATCH_HEADER_LEN:
        raise BatchCorruptedError("too short")
    seq, batch_len = _HEADER.unpack_from(bytes(data[:BATCH_HEADER_LEN]))
    return seq, batch_len


def batches_len(batches: Iterable[Batch]) -> int:
    """Total number of records in ``batches``."""
    return sum(len(batch) for batch in batches)


def write_batches_with_header(writer: _Writer, batches: Iterable[Batch], seq: int) -> None:
    """Write one header followed by the records of every batch."""
    batches = list(batches)
    writer.write(encode_batch_header(seq, batches_len(batches)))
    for batch in batches:
        writer.write(batch.dump())