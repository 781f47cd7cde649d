"""A reference-counted cache map keyed by namespace and key, with an LRU policy."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from bisect import bisect_left
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Tuple, runtime_checkable

__all__ = [
    "Releaser",
    "Cacher",
    "Stats",
    "Node",
    "Handle",
    "NamespaceGetter",
    "Cache",
    "LRU",
    "sort_nodes",
    "search_nodes",
    "murmur32",
]

_INITIAL_SIZE = 1 << 4
_OVERFLOW_THRESHOLD = 1 << 5
_OVERFLOW_GROW_THRESHOLD = 1 << 7
_HASH_SEED = 0xF00
_MASK32 = 0xFFFFFFFF

SetFunc = Callable[[], Tuple[int, Any]]


@runtime_checkable
class Releaser(Protocol):
    """A cached value that wants to be told when it leaves the cache."""

    def release(self) -> None:
        """Release the resources held by the value."""


class Cacher(ABC):
    """A caching policy deciding which nodes the cache keeps alive."""

    @abstractmethod
    def capacity(self) -> int:
        """Return the cache capacity."""

    @abstractmethod
    def set_capacity(self, capacity: int) -> None:
        """Set the cache capacity."""

    @abstractmethod
    def promote(self, node: Node) -> None:
        """Mark ``node`` as recently used."""

    @abstractmethod
    def ban(self, node: Node) -> None:
        """Evict ``node`` and keep it from being promoted again."""

    @abstractmethod
    def evict(self, node: Node) -> None:
        """Evict ``node``."""


@dataclass(frozen=True)
class Stats:
    """Counters describing the state and history of a cache."""

    buckets: int = 0
    nodes: int = 0
    size: int = 0
    grow_count: int = 0
    shrink_count: int = 0
    hit_count: int = 0
    miss_count: int = 0
    set_count: int = 0
    del_count: int = 0


def _order(node: Node) -> tuple[int, int]:
    return node._ns, node._key


def sort_nodes(nodes: list[Node]) -> None:
    """Sort ``nodes`` in place by namespace, then key."""
    nodes.sort(key=_order)


def search_nodes(nodes: list[Node], ns: int, key: int) -> int:
    """Return the first position in sorted ``nodes`` not ordered before ``(ns, key)``."""
    return bisect_left(nodes, (ns, key), key=_order)


def murmur32(ns: int, key: int, seed: int) -> int:
    """Hash a namespace and key into 32 bits."""
    m = 0x5BD1E995
    r = 24

    def mix(k: int) -> int:
        k = (k * m) & _MASK32
        k ^= k >> r
        return (k * m) & _MASK32

    k1 = mix((ns >> 32) & _MASK32)
    k2 = mix(ns & _MASK32)
    k3 = mix((key >> 32) & _MASK32)
    k4 = mix(key & _MASK32)

    h = seed & _MASK32
    for k in (k1, k2, k3, k4):
        h = (h * m) & _MASK32
        h ^= k
    h ^= h >> 13
    h = (h * m) & _MASK32
    h ^= h >> 15
    return h


class Node:
    """An entry of the cache map."""

    def __init__(
        self,
        ns: int = 0,
        key: int = 0,
        *,
        cache: Optional[Cache] = None,
        hash_value: int = 0,
    ) -> None:
        self._cache = cache
        self._hash = hash_value
        self._ns = ns
        self._key = key
        self._mu = threading.Lock()
        self._ref_lock = cache._lock if cache is not None else threading.RLock()
        self._size = 0
        self._value: Any = None
        self._ref = 0
        self._del_funcs: list[Callable[[], None]] = []
        self.cache_data: Any = None

    def ns(self) -> int:
        """Return the node's namespace."""
        return self._ns

    def key(self) -> int:
        """Return the node's key."""
        return self._key

    def size(self) -> int:
        """Return the size charged for the node."""
        return self._size

    def value(self) -> Any:
        """Return the cached value."""
        return self._value

    def ref(self) -> int:
        """Return the node's reference count."""
        return self._ref

    def get_handle(self) -> Handle:
        """Return a new handle on a node that is already referenced."""
        with self._ref_lock:
            self._ref += 1
            if self._ref <= 1:
                self._ref -= 1
                raise RuntimeError("get_handle on a node with no references")
        return Handle(self)

    def _run_del_funcs(self) -> None:
        with self._mu:
            funcs = list(self._del_funcs)
        for func in funcs:
            func()

    def _call_finalizer(self) -> None:
        value = self._value
        if value is not None:
            if isinstance(value, Releaser):
                value.release()
            self._value = None
        funcs, self._del_funcs = self._del_funcs, []
        for func in funcs:
            func()

    def _unref_external(self) -> None:
        if self._cache is not None:
            self._cache._unref_external(self)

    def __repr__(self) -> str:
        return f"Node(ns={self._ns}, key={self._key}, size={self._size}, ref={self._ref})"


class Handle:
    """A reference to a cache node; release it when done."""

    _swap_lock = threading.Lock()

    def __init__(self, node: Node) -> None:
        self._node: Optional[Node] = node

    def value(self) -> Any:
        """Return the node's value, or None once released."""
        node = self._node
        return node._value if node is not None else None

    def release(self) -> None:
        """Release the handle. Releasing more than once is harmless."""
        with Handle._swap_lock:
            node, self._node = self._node, None
        if node is not None:
            node._unref_external()

    def __enter__(self) -> Handle:
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()


@dataclass
class NamespaceGetter:
    """Looks keys up in one namespace of a cache."""

    cache: Cache
    ns: int

    def get(self, key: int, set_func: Optional[SetFunc] = None) -> Optional[Handle]:
        """Same as :meth:`Cache.get` in this getter's namespace."""
        return self.cache.get(self.ns, key, set_func)


class Cache:
    """A hash map of reference-counted nodes with an optional caching policy."""

    def __init__(self, cacher: Optional[Cacher] = None) -> None:
        self._cacher = cacher
        self._lock = threading.RLock()
        self._buckets: list[list[Node]] = [[] for _ in range(_INITIAL_SIZE)]
        self._overflow = 0
        self._closed = False
        self._stat_nodes = 0
        self._stat_size = 0
        self._stat_grow = 0
        self._stat_shrink = 0
        self._stat_hit = 0
        self._stat_miss = 0
        self._stat_set = 0
        self._stat_del = 0

    # Map internals; all of them run with the lock held.

    def _bucket(self, hash_value: int) -> list[Node]:
        return self._buckets[hash_value & (len(self._buckets) - 1)]

    def _find(self, ns: int, key: int, hash_value: int) -> tuple[list[Node], int, Optional[Node]]:
        bucket = self._bucket(hash_value)
        i = search_nodes(bucket, ns, key)
        if i < len(bucket) and bucket[i]._ns == ns and bucket[i]._key == key:
            return bucket, i, bucket[i]
        return bucket, i, None

    def _resize(self, n: int) -> None:
        buckets: list[list[Node]] = [[] for _ in range(n)]
        mask = n - 1
        for bucket in self._buckets:
            for node in bucket:
                buckets[node._hash & mask].append(node)
        for bucket in buckets:
            sort_nodes(bucket)
        self._buckets = buckets
        self._overflow = 0

    def _insert(self, bucket: list[Node], i: int, node: Node) -> None:
        bucket.insert(i, node)
        self._stat_nodes += 1
        grow = self._stat_nodes >= len(self._buckets) * _OVERFLOW_THRESHOLD
        if len(bucket) > _OVERFLOW_THRESHOLD and not grow:
            self._overflow += 1
            grow = self._overflow >= _OVERFLOW_GROW_THRESHOLD
        if grow:
            self._resize(len(self._buckets) << 1)
            self._stat_grow += 1

    def _remove(self, node: Node) -> bool:
        if self._closed:
            return False
        bucket, i, found = self._find(node._ns, node._key, node._hash)
        if found is not node or node._ref != 0:
            return False
        value = node._value
        if value is not None:
            if isinstance(value, Releaser):
                value.release()
            node._value = None
        del bucket[i]
        self._stat_size -= node._size
        self._stat_nodes -= 1
        if len(bucket) >= _OVERFLOW_THRESHOLD:
            self._overflow -= 1
        n_buckets = len(self._buckets)
        if self._stat_nodes < (n_buckets >> 1) and n_buckets > _INITIAL_SIZE:
            self._resize(n_buckets >> 1)
            self._stat_shrink += 1
        return True

    def _lookup(self, ns: int, key: int) -> Optional[Node]:
        """Return the node for ``(ns, key)`` with an extra reference, or None."""
        _, _, node = self._find(ns, key, murmur32(ns, key, _HASH_SEED))
        if node is not None:
            node._ref += 1
        return node

    def _unref_internal(self, node: Node, update_stat: bool) -> None:
        deleted = False
        with self._lock:
            node._ref -= 1
            if node._ref == 0:
                deleted = self._remove(node)
                if update_stat:
                    self._stat_del += 1
        if deleted:
            node._run_del_funcs()

    def _unref_external(self, node: Node) -> None:
        deleted = False
        with self._lock:
            node._ref -= 1
            if node._ref != 0:
                return
            closed = self._closed
            if not closed:
                deleted = self._remove(node)
                self._stat_del += 1
        if closed:
            node._call_finalizer()
        elif deleted:
            node._run_del_funcs()

    # Public interface.

    def get_stats(self) -> Stats:
        """Return a snapshot of the cache counters."""
        with self._lock:
            return Stats(
                buckets=len(self._buckets),
                nodes=self._stat_nodes,
                size=self._stat_size,
                grow_count=self._stat_grow,
                shrink_count=self._stat_shrink,
                hit_count=self._stat_hit,
                miss_count=self._stat_miss,
                set_count=self._stat_set,
                del_count=self._stat_del,
            )

    def nodes(self) -> int:
        """Return the number of nodes in the map."""
        return self._stat_nodes

    def size(self) -> int:
        """Return the sum of node sizes in the map."""
        return self._stat_size

    def capacity(self) -> int:
        """Return the cacher's capacity, or 0 without a cacher."""
        return self._cacher.capacity() if self._cacher is not None else 0

    def set_capacity(self, capacity: int) -> None:
        """Set the cacher's capacity."""
        if self._cacher is not None:
            self._cacher.set_capacity(capacity)

    def get(self, ns: int, key: int, set_func: Optional[SetFunc] = None) -> Optional[Handle]:
        """Return a handle on the node ``(ns, key)``.

        A missing node is created by calling ``set_func``, which returns
        ``(size, value)``. Returns None if the node is missing and there is no
        ``set_func``, if ``set_func`` gives a None value, or once closed.
        """
        with self._lock:
            if self._closed:
                return None
            hash_value = murmur32(ns, key, _HASH_SEED)
            bucket, i, node = self._find(ns, key, hash_value)
            if node is not None:
                node._ref += 1
                self._stat_hit += 1
            elif set_func is None:
                self._stat_miss += 1
                return None
            else:
                node = Node(ns, key, cache=self, hash_value=hash_value)
                node._ref = 1
                self._insert(bucket, i, node)
                self._stat_miss += 1

        with node._mu:
            missing = node._value is None
            if missing and set_func is not None:
                size, value = set_func()
                node._size, node._value = (size if value is not None else 0), value
                if value is not None:
                    missing = False
                    with self._lock:
                        self._stat_set += 1
                        self._stat_size += size
        if missing:
            self._unref_internal(node, False)
            return None

        if self._cacher is not None:
            self._cacher.promote(node)
        return Handle(node)

    def delete(self, ns: int, key: int, del_func: Optional[Callable[[], None]] = None) -> bool:
        """Remove and ban the node ``(ns, key)``.

        ``del_func`` runs once the node is released, or at once if there is no
        such node. Returns whether the node existed.
        """
        with self._lock:
            if self._closed:
                return False
            node = self._lookup(ns, key)
        if node is not None:
            if del_func is not None:
                with node._mu:
                    node._del_funcs.append(del_func)
            if self._cacher is not None:
                self._cacher.ban(node)
            self._unref_internal(node, True)
            return True
        if del_func is not None:
            del_func()
        return False

    def evict(self, ns: int, key: int) -> bool:
        """Evict the node ``(ns, key)`` from the cacher. Returns whether it existed."""
        with self._lock:
            if self._closed:
                return False
            node = self._lookup(ns, key)
        if node is None:
            return False
        if self._cacher is not None:
            self._cacher.evict(node)
        self._unref_internal(node, True)
        return True

    def evict_ns(self, ns: int) -> None:
        """Evict every node of namespace ``ns`` from the cacher."""
        with self._lock:
            if self._closed or self._cacher is None:
                return
            nodes = []
            for bucket in self._buckets:
                for node in bucket[search_nodes(bucket, ns, 0):]:
                    if node._ns != ns:
                        break
                    nodes.append(node)
        for node in nodes:
            self._cacher.evict(node)

    def evict_all(self) -> None:
        """Evict every node from the cacher."""
        with self._lock:
            if self._closed or self._cacher is None:
                return
            nodes = [node for bucket in self._buckets for node in bucket]
        for node in nodes:
            self._cacher.evict(node)

    def close(self, force: bool = False) -> None:
        """Close the cache; later operations do nothing.

        Every node is evicted from the cacher. With ``force`` every node is
        finalized at once, even if still referenced.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            nodes = [node for bucket in self._buckets for node in bucket]
            self._buckets = []
        for node in nodes:
            if force:
                with self._lock:
                    node._ref = 0
            if self._cacher is not None:
                self._cacher.evict(node)
            if force:
                node._call_finalizer()

    def __enter__(self) -> Cache:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


@dataclass
class _LRUEntry:
    node: Node
    handle: Optional[Handle]
    ban: bool = False


class LRU(Cacher):
    """Least-recently-used policy bounded by the sum of node sizes."""

    def __init__(self, capacity: int) -> None:
        self._mu = threading.Lock()
        self._capacity = capacity
        self._used = 0
        # Least recently used first.
        self._recent: OrderedDict[Node, _LRUEntry] = OrderedDict()

    def used(self) -> int:
        """Return the sum of sizes of the nodes held."""
        with self._mu:
            return self._used

    def capacity(self) -> int:
        with self._mu:
            return self._capacity

    def _shrink(self) -> list[_LRUEntry]:
        evicted = []
        while self._used > self._capacity:
            if not self._recent:
                raise RuntimeError("invalid LRU used or capacity counter")
            node, entry = self._recent.popitem(last=False)
            node.cache_data = None
            self._used -= node.size()
            evicted.append(entry)
        return evicted

    @staticmethod
    def _release(entries: list[_LRUEntry]) -> None:
        for entry in entries:
            if entry.handle is not None:
                entry.handle.release()

    def set_capacity(self, capacity: int) -> None:
        with self._mu:
            self._capacity = capacity
            evicted = self._shrink()
        self._release(evicted)

    def promote(self, node: Node) -> None:
        evicted: list[_LRUEntry] = []
        with self._mu:
            entry = node.cache_data
            if entry is None:
                if node.size() <= self._capacity:
                    entry = _LRUEntry(node, node.get_handle())
                    self._recent[node] = entry
                    node.cache_data = entry
                    self._used += node.size()
                    evicted = self._shrink()
            elif not entry.ban:
                self._recent.move_to_end(node)
        self._release(evicted)

    def ban(self, node: Node) -> None:
        with self._mu:
            entry = node.cache_data
            if entry is None:
                node.cache_data = _LRUEntry(node, None, ban=True)
                return
            if entry.ban:
                return
            del self._recent[node]
            entry.ban = True
            self._used -= node.size()
            handle, entry.handle = entry.handle, None
        if handle is not None:
            handle.release()

    def evict(self, node: Node) -> None:
        with self._mu:
            entry = node.cache_data
            if entry is None or entry.ban:
                return
            del self._recent[node]
            self._used -= node.size()
            node.cache_data = None
        if entry.handle is not None:
            entry.handle.release()