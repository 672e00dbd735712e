"""
Read-through cache for shared subnets (subnets created outside this cluster
and referenced by the ``nsx.vmware.com/associated-resource`` annotation).

Keys are associated-resource strings ``projectID:vpcID:subnetID``. Entries
never expire; they change only through :meth:`update`, a forced refresh, or
:meth:`invalidate`. Remote fetches run outside the lock; a fetch overtaken by
one of those three is not written back.

    cache = SharedSubnetCache(fetch_subnet=..., fetch_status=...)
    subnet = cache.get_or_fetch("proj:vpc:shared-1")
    subnet = cache.get_or_fetch("proj:vpc:shared-1", force_refresh=True)
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from .model import RemoteSubnet, SubnetStatusInfo


class ReadWriteLock:
    """Many readers or one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class SharedSubnetCacheEntry:
    subnet: Optional[RemoteSubnet] = None
    status: List[SubnetStatusInfo] = field(default_factory=list)


class SharedSubnetCache:
    def __init__(
        self,
        fetch_subnet: Callable[[str], RemoteSubnet],
        fetch_status: Callable[[RemoteSubnet], List[SubnetStatusInfo]],
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._fetch_subnet = fetch_subnet
        self._fetch_status = fetch_status
        self._entries: Dict[str, SharedSubnetCacheEntry] = {}
        # bumped by forced refresh, update and invalidate; a fetch that started
        # under an older generation is not written back
        self._generations: Dict[str, int] = {}
        self._lock = ReadWriteLock()
        self.log = logger or logging.getLogger("subnetsync.shared_cache")

    def get_or_fetch(self, associated_resource: str, force_refresh: bool = False) -> RemoteSubnet:
        """
        Cached subnet, or fetch it. A forced refresh also drops the cached
        status so gateway and DHCP server addresses are read again.
        """
        if force_refresh:
            with self._lock.write():
                generation = self._bump(associated_resource)
                entry = self._entries.get(associated_resource)
                if entry is not None:
                    entry.status = []
        else:
            with self._lock.read():
                entry = self._entries.get(associated_resource)
                if entry is not None and entry.subnet is not None:
                    return entry.subnet
                generation = self._generations.get(associated_resource, 0)

        subnet = self._fetch_subnet(associated_resource)
        with self._lock.write():
            if self._generations.get(associated_resource, 0) != generation:
                self.log.debug("shared subnet fetch superseded key=%s", associated_resource)
                entry = self._entries.get(associated_resource)
                return entry.subnet if entry is not None and entry.subnet is not None else subnet
            entry = self._entries.setdefault(associated_resource, SharedSubnetCacheEntry())
            entry.subnet = subnet
        self.log.debug("shared subnet fetched key=%s force=%s", associated_resource, force_refresh)
        return subnet

    def get_status_or_fetch(self, subnet: RemoteSubnet, associated_resource: str) -> List[SubnetStatusInfo]:
        with self._lock.read():
            entry = self._entries.get(associated_resource)
            if entry is not None and entry.status:
                return list(entry.status)
            generation = self._generations.get(associated_resource, 0)

        status = list(self._fetch_status(subnet))
        with self._lock.write():
            if self._generations.get(associated_resource, 0) != generation:
                self.log.debug("shared subnet status fetch superseded key=%s", associated_resource)
                return list(status)
            entry = self._entries.setdefault(associated_resource, SharedSubnetCacheEntry())
            entry.status = status
            if entry.subnet is None:
                entry.subnet = subnet
        return list(status)

    def update(
        self,
        associated_resource: str,
        subnet: Optional[RemoteSubnet],
        status: Optional[List[SubnetStatusInfo]],
    ) -> None:
        """Overwrite the entry; ``None`` leaves that half unchanged."""
        with self._lock.write():
            self._bump(associated_resource)
            entry = self._entries.setdefault(associated_resource, SharedSubnetCacheEntry())
            if subnet is not None:
                entry.subnet = subnet
            if status is not None:
                entry.status = list(status)

    def invalidate(self, associated_resource: str, reason: str) -> bool:
        with self._lock.write():
            self._bump(associated_resource)
            removed = self._entries.pop(associated_resource, None) is not None
        if removed:
            self.log.info("shared subnet removed from cache key=%s reason=%s", associated_resource, reason)
        return removed

    def peek(self, associated_resource: str) -> Tuple[Optional[RemoteSubnet], List[SubnetStatusInfo]]:
        with self._lock.read():
            entry = self._entries.get(associated_resource)
            if entry is None:
                return None, []
            return entry.subnet, list(entry.status)

    def keys(self) -> List[str]:
        with self._lock.read():
            return sorted(self._entries)

    def _bump(self, associated_resource: str) -> int:
        # caller holds the write lock
        generation = self._generations.get(associated_resource, 0) + 1
        self._generations[associated_resource] = generation
        return generation
