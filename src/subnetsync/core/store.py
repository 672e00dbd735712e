"""
In-memory mirror of the remote VpcSubnets owned by this cluster.

Objects are keyed by id and reachable through tag-derived secondary indexes.
Writes go through :meth:`SubnetStore.apply` with an explicit intent:

    store.apply(Upsert(subnet))
    store.apply(Remove(subnet))
    store.apply(intent_for(RemoteSubnet.from_dict(payload)))  # routed on marked_for_delete

A per-path lock map serializes writers that target the same remote path:

    with store.locked(subnet.path):
        ...
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Union

from .constants import (
    TAG_SCOPE_NAMESPACE,
    TAG_SCOPE_SUBNET_CR_TYPE,
    TAG_SCOPE_SUBNET_CR_UID,
    TAG_SCOPE_SUBNETSET_CR_UID,
    TAG_SCOPE_VM_NAMESPACE,
)
from .model import RemoteSubnet, vpc_path_of

__all__ = [
    "INDEX_SUBNET_UID",
    "INDEX_SUBNETSET_UID",
    "INDEX_CR_TYPE",
    "INDEX_NAMESPACE",
    "INDEX_VM_NAMESPACE",
    "INDEX_VPC_PATH",
    "Upsert",
    "Remove",
    "intent_for",
    "SubnetStore",
]

INDEX_SUBNET_UID = TAG_SCOPE_SUBNET_CR_UID
INDEX_SUBNETSET_UID = TAG_SCOPE_SUBNETSET_CR_UID
INDEX_CR_TYPE = TAG_SCOPE_SUBNET_CR_TYPE
INDEX_NAMESPACE = TAG_SCOPE_NAMESPACE
INDEX_VM_NAMESPACE = TAG_SCOPE_VM_NAMESPACE
INDEX_VPC_PATH = "vpc_path"

IndexFunc = Callable[[RemoteSubnet], List[str]]


class _PathLock:
    """Lock for one remote path plus the number of threads holding or waiting on it."""

    __slots__ = ("lock", "users", "retired")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0
        self.retired = False


def _tag_index(scope: str) -> IndexFunc:
    def index(obj: RemoteSubnet) -> List[str]:
        return obj.tag_values(scope)
    return index


def _vpc_index(obj: RemoteSubnet) -> List[str]:
    path = vpc_path_of(obj)
    return [path] if path else []


DEFAULT_INDEXERS: Dict[str, IndexFunc] = {
    INDEX_SUBNET_UID: _tag_index(TAG_SCOPE_SUBNET_CR_UID),
    INDEX_SUBNETSET_UID: _tag_index(TAG_SCOPE_SUBNETSET_CR_UID),
    INDEX_CR_TYPE: _tag_index(TAG_SCOPE_SUBNET_CR_TYPE),
    INDEX_NAMESPACE: _tag_index(TAG_SCOPE_NAMESPACE),
    INDEX_VM_NAMESPACE: _tag_index(TAG_SCOPE_VM_NAMESPACE),
    INDEX_VPC_PATH: _vpc_index,
}


@dataclass(frozen=True)
class Upsert:
    subnet: RemoteSubnet


@dataclass(frozen=True)
class Remove:
    subnet: RemoteSubnet


Intent = Union[Upsert, Remove]


def intent_for(subnet: Optional[RemoteSubnet]) -> Optional[Intent]:
    """Map a decoded remote object to the matching store intent."""
    if subnet is None:
        return None
    if subnet.marked_for_delete:
        return Remove(subnet)
    return Upsert(subnet)


class SubnetStore:
    """Thread-safe indexed store of :class:`RemoteSubnet` values."""

    def __init__(
        self,
        indexers: Optional[Dict[str, IndexFunc]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._indexers: Dict[str, IndexFunc] = dict(indexers or DEFAULT_INDEXERS)
        self._items: Dict[str, RemoteSubnet] = {}
        self._indices: Dict[str, Dict[str, Set[str]]] = {name: {} for name in self._indexers}
        self._lock = threading.RLock()
        self._path_locks: Dict[str, _PathLock] = {}
        self._path_locks_guard = threading.Lock()
        self.log = logger or logging.getLogger("subnetsync.store")

    # ------------- Public API -------------

    def add(self, obj: RemoteSubnet) -> None:
        with self._lock:
            old = self._items.get(obj.id)
            if old is not None:
                self._unindex(old)
            self._items[obj.id] = obj
            self._index(obj)
        if obj.path:
            with self._path_locks_guard:
                self._path_locks.setdefault(obj.path, _PathLock()).retired = False

    def delete(self, obj: RemoteSubnet) -> None:
        with self._lock:
            old = self._items.pop(obj.id, None)
            if old is not None:
                self._unindex(old)
        path = obj.path or (old.path if old is not None else None)
        if path:
            self._retire_path_lock(path)

    def apply(self, intent: Optional[Intent]) -> None:
        """Commit one write intent; ``None`` is a no-op."""
        if intent is None:
            return
        if isinstance(intent, Upsert):
            self.add(intent.subnet)
        elif isinstance(intent, Remove):
            self.delete(intent.subnet)
        else:
            raise TypeError(f"unsupported store intent: {type(intent).__name__}")
        self.log.debug("store %s id=%s", type(intent).__name__.lower(), intent.subnet.id)

    def get_by_key(self, key: str) -> Optional[RemoteSubnet]:
        with self._lock:
            return self._items.get(key)

    def get_by_index(self, index: str, value: str) -> List[RemoteSubnet]:
        with self._lock:
            keys = self._indices.get(index, {}).get(value, set())
            return [self._items[k] for k in sorted(keys)]

    def list_index_func_values(self, index: str) -> Set[str]:
        with self._lock:
            return {v for v, keys in self._indices.get(index, {}).items() if keys}

    def list_keys(self) -> List[str]:
        with self._lock:
            return sorted(self._items)

    def list_objects(self) -> List[RemoteSubnet]:
        with self._lock:
            return [self._items[k] for k in sorted(self._items)]

    def delete_multiple_objects(self, objs: Iterable[RemoteSubnet]) -> None:
        """Remove many objects at once (bulk tombstone after a batched delete)."""
        objs = list(objs)
        with self._lock:
            for obj in objs:
                self.delete(obj)
        self.log.debug("store bulk delete count=%d", len(objs))

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    # ------------- Path locks -------------

    @contextmanager
    def locked(self, path: Optional[str]) -> Iterator[None]:
        """Hold the lock for ``path`` (no-op when path is empty)."""
        if not path:
            yield
            return
        with self._path_locks_guard:
            entry = self._path_locks.setdefault(path, _PathLock())
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._path_locks_guard:
                entry.users -= 1
                if entry.retired and not entry.users and self._path_locks.get(path) is entry:
                    del self._path_locks[path]

    def _retire_path_lock(self, path: str) -> None:
        # a lock still held (delete under locked()) is dropped by its last user
        with self._path_locks_guard:
            entry = self._path_locks.get(path)
            if entry is None:
                return
            if entry.users:
                entry.retired = True
            else:
                del self._path_locks[path]

    # ------------- Internal -------------

    def _index(self, obj: RemoteSubnet) -> None:
        for name, func in self._indexers.items():
            bucket = self._indices[name]
            for value in func(obj):
                bucket.setdefault(value, set()).add(obj.id)

    def _unindex(self, obj: RemoteSubnet) -> None:
        for name, func in self._indexers.items():
            bucket = self._indices[name]
            for value in func(obj):
                keys = bucket.get(value)
                if keys is None:
                    continue
                keys.discard(obj.id)
                if not keys:
                    del bucket[value]
