# lvldb

Core pieces of a LevelDB-style storage engine, in pure Python with no
third-party dependencies:

- `lvldb.batch`: write batches, with the record and header encoding used
  for journal entries.
- `lvldb.comparer`: the key ordering interface (`Comparer`) and the default
  bytewise comparer (`BytesComparer`, also available as `DEFAULT_COMPARER`),
  including the separator and successor helpers used to keep index keys short.
- `lvldb.cache`: a namespaced, reference-counted cache map (`Cache`) with a
  pluggable eviction policy (`Cacher`) and an LRU implementation (`LRU`).

## What it does not do

This package is not a database. It has no storage layer, no journal or
table files, no memtable, no compaction and no `open`/`get`/`put` API on a
database; it provides only the batch format, the comparers and the cache
described here.

## Installation

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## Write batches

```python
from lvldb.batch import Batch, decode_batch_header, encode_batch_header

batch = Batch()
batch.put(b"alpha", b"1")
batch.put(b"beta", b"2")
batch.delete(b"alpha")
print(len(batch))            # 3

for record in batch:         # BatchRecord(key_type, key, value)
    print(record.key_type.name, record.key, record.value)

data = batch.dump()          # the encoded records, without a header
copy = Batch()
copy.load(data)              # raises BatchCorruptedError on malformed data

header = encode_batch_header(42, len(batch))
print(decode_batch_header(header))   # (42, 3)
```

- `batch.replay(replayer)` feeds each operation, in order, to any
  `BatchReplay` (an object with `put(key, value)` and `delete(key)`); a
  `Batch` is itself one.
- `batch.extend(other)` appends the records of another batch;
  `batch.reset()` empties it; `batch.internal_len()` is the sum of key and
  value lengths plus 8 bytes per record.
- `decode_batch(data)` returns the list of records in encoded data.
- `make_batch(n)` and `make_batch_with_config(BatchConfig(...))` create
  empty batches.
- `batches_len(batches)` counts the records of several batches, and
  `write_batches_with_header(writer, batches, seq)` writes one 12-byte
  header followed by the records of every batch to any object with a
  `write` method.

## Comparers

```python
from lvldb.comparer import BytesComparer

cmp = BytesComparer()
cmp.name()                          # "leveldb.BytewiseComparator"
cmp.compare(b"abc", b"abd")         # -1
cmp.separator(b"abcdefg", b"abzz")  # b"abd"
cmp.successor(b"abc")               # b"b"
```

`separator` and `successor` return `None` when they cannot give a shorter
key.

## Cache

```python
from lvldb.cache import Cache, LRU

cache = Cache(LRU(100))

handle = cache.get(0, 1, lambda: (10, "value"))   # setter returns (size, value)
print(handle.value())                             # "value"
handle.release()

print(cache.get(0, 2))         # None: missing, and no setter was given

cache.delete(0, 1, lambda: print("gone"))   # prints "gone" once the node is freed
print(cache.get_stats())
cache.close(force=True)
```

- Nodes are addressed by a namespace and a key, both integers. `get` with a
  setter creates a missing node; a setter that returns a `None` value
  creates nothing.
- Handles must be released; `Handle` is also a context manager, and
  releasing twice is harmless.
- `delete` removes and bans a node, `evict`, `evict_ns` and `evict_all`
  drop nodes from the policy, and `close` ends the cache (`force=True`
  finalizes nodes that are still referenced). `Cache` is a context manager
  that closes without forcing.
- Values that have a `release()` method (see `Releaser`) are released once
  their node leaves the cache.
- `nodes()`, `size()`, `capacity()` and `set_capacity()` report and adjust
  the cache; `LRU.used()` gives the total size the LRU holds.
- A `NamespaceGetter(cache, ns)` looks keys up in one namespace.
- `murmur32`, `sort_nodes` and `search_nodes` are the hashing and ordering
  helpers the map uses.