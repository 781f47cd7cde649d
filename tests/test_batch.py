import io
import random

import pytest
from hypothesis import given
from hypothesis import strategies as st

from lvldb.batch import (
    BATCH_GROW_LIMIT,
    BATCH_HEADER_LEN,
    Batch,
    BatchConfig,
    BatchCorruptedError,
    BatchRecord,
    BatchReplay,
    KeyType,
    batches_len,
    decode_batch,
    decode_batch_header,
    encode_batch_header,
    make_batch,
    make_batch_with_config,
    write_batches_with_header,
)


class Recorder(BatchReplay):
    def __init__(self):
        self.ops = []

    def put(self, key, value):
        self.ops.append(("put", key, value))

    def delete(self, key):
        self.ops.append(("del", key))


@given(st.integers(0, 2**64 - 1), st.integers(0, 2**32 - 1))
def test_batch_header_round_trip(seq, length):
    encoded = encode_batch_header(seq, length)
    assert len(encoded) == BATCH_HEADER_LEN
    assert decode_batch_header(encoded) == (seq, length)


def test_batch_header_wire_bytes():
    assert encode_batch_header(1, 2) == b"\x01" + b"\x00" * 7 + b"\x02\x00\x00\x00"


def test_batch_header_too_short():
    with pytest.raises(BatchCorruptedError) as info:
        decode_batch_header(b"\x00" * 11)
    assert info.value.reason == "too short"
    assert str(info.value) == "leveldb: batch corrupted: too short"


def test_batch_header_negative_seq():
    with pytest.raises(ValueError):
        encode_batch_header(-1, 0)


def _check_records(batch, kvs):
    assert [(r.key_type, r.key, r.value) for r in batch] == kvs


def test_batch_random_operations():
    rng = random.Random(0x5EED)
    kvs = []
    internal_len = 0
    batch = Batch()
    rbatch = Batch()
    abatch = Batch()
    for n in range(1, 3001):
        kt = KeyType(rng.randrange(256) % 2)
        k = rng.randbytes(rng.randrange(0, 24))
        v = rng.randbytes(rng.randrange(0, 24))
        if kt is KeyType.VAL:
            batch.put(k, v)
            rbatch.put(k, v)
            kvs.append((kt, k, v))
            internal_len += len(k) + len(v) + 8
        else:
            batch.delete(k)
            rbatch.delete(k)
            kvs.append((kt, k, b""))
            internal_len += len(k) + 8
        assert len(batch) == len(kvs)
        assert batch.internal_len() == internal_len

        if n % 1000 == 0:
            _check_records(batch, kvs)

            abatch.extend(rbatch)
            rbatch.reset()
            assert len(abatch) == len(kvs)
            assert abatch.internal_len() == internal_len
            _check_records(abatch, kvs)

            nbatch = Batch()
            nbatch.load(batch.dump())
            assert len(nbatch) == len(kvs)
            assert nbatch.internal_len() == internal_len
            _check_records(nbatch, kvs)

    nbatch = Batch()
    batch.replay(nbatch)
    assert len(nbatch) == len(kvs)
    assert nbatch.internal_len() == internal_len
    _check_records(nbatch, kvs)
    assert nbatch.dump() == batch.dump()


ops = st.lists(
    st.tuples(st.sampled_from([KeyType.DEL, KeyType.VAL]), st.binary(max_size=300), st.binary(max_size=300)),
    max_size=30,
)


@given(ops)
def test_dump_load_round_trip(operations):
    batch = Batch()
    for kt, k, v in operations:
        if kt is KeyType.VAL:
            batch.put(k, v)
        else:
            batch.delete(k)
    loaded = Batch()
    loaded.load(batch.dump())
    expected = [BatchRecord(kt, k, v if kt is KeyType.VAL else b"") for kt, k, v in operations]
    assert list(loaded) == expected
    assert decode_batch(batch.dump()) == expected
    assert loaded.internal_len() == batch.internal_len()


def test_wire_bytes():
    batch = Batch()
    batch.put(b"k", b"v")
    batch.delete(b"k")
    assert batch.dump() == b"\x01\x01k\x01v\x00\x01k"


def test_long_key_uses_multibyte_length():
    batch = Batch()
    batch.delete(b"x" * 200)
    assert batch.dump()[:3] == b"\x00\xc8\x01"
    assert decode_batch(batch.dump()) == [BatchRecord(KeyType.DEL, b"x" * 200)]


def test_replay_calls_in_order():
    batch = Batch()
    batch.put(b"a", b"1")
    batch.delete(b"b")
    batch.put(b"c", b"")
    recorder = Recorder()
    batch.replay(recorder)
    assert recorder.ops == [("put", b"a", b"1"), ("del", b"b"), ("put", b"c", b"")]


def test_put_copies_arguments():
    key = bytearray(b"key")
    value = bytearray(b"value")
    batch = Batch()
    batch.put(key, value)
    key[0] = ord("X")
    value[0] = ord("X")
    assert list(batch) == [BatchRecord(KeyType.VAL, b"key", b"value")]


def test_reset():
    batch = Batch()
    batch.put(b"a", b"b")
    batch.reset()
    assert len(batch) == 0
    assert batch.dump() == b""
    assert batch.internal_len() == 0


def test_extend_with_itself():
    batch = Batch()
    batch.put(b"a", b"b")
    batch.extend(batch)
    assert len(batch) == 2
    assert batch.internal_len() == 2 * (1 + 1 + 8)
    assert decode_batch(batch.dump()) == list(batch)


def test_decode_invalid_type():
    with pytest.raises(BatchCorruptedError) as info:
        decode_batch(b"\x02\x01k")
    assert info.value.reason == "bad record: invalid type 0x2"


@pytest.mark.parametrize("data", [b"\x01\x05ab", b"\x01\x80", b"\x00"])
def test_decode_invalid_key_length(data):
    with pytest.raises(BatchCorruptedError) as info:
        decode_batch(data)
    assert info.value.reason == "bad record: invalid key length"


@pytest.mark.parametrize("data", [b"\x01\x01k\x05v", b"\x01\x01k"])
def test_decode_invalid_value_length(data):
    with pytest.raises(BatchCorruptedError) as info:
        decode_batch(data)
    assert info.value.reason == "bad record: invalid value length"


def test_decode_varint_overflow():
    with pytest.raises(BatchCorruptedError) as info:
        decode_batch(b"\x00" + b"\xff" * 10 + b"\x01")
    assert info.value.reason == "bad record: invalid key length"


def test_load_failure_keeps_previous_contents():
    batch = Batch()
    batch.put(b"a", b"b")
    with pytest.raises(BatchCorruptedError):
        batch.load(b"\x07")
    assert list(batch) == [BatchRecord(KeyType.VAL, b"a", b"b")]


def test_make_batch_with_config():
    assert make_batch_with_config(None).grow_limit == BATCH_GROW_LIMIT
    batch = make_batch_with_config(BatchConfig(initial_capacity=64, grow_limit=10 * BATCH_GROW_LIMIT))
    assert batch.grow_limit == 10 * BATCH_GROW_LIMIT
    assert batch.capacity == 64
    assert make_batch(128).capacity == 128
    assert len(make_batch(128)) == 0


def test_write_batches_with_header():
    first = Batch()
    first.put(b"a", b"1")
    second = Batch()
    second.delete(b"b")
    second.put(b"c", b"3")
    assert batches_len([first, second]) == 3

    out = io.BytesIO()
    write_batches_with_header(out, [first, second], 42)
    data = out.getvalue()
    assert decode_batch_header(data) == (42, 3)
    assert decode_batch(data[BATCH_HEADER_LEN:]) == list(first) + list(second)