"""
Startup inventory: fill a store with every VpcSubnet this cluster owns.

Usage:
    client = NsxClient(base_url, token)
    inv = SearchInventory(client, cluster="c1")
    count = inv.load(store)

Several stores can be loaded in parallel; the first failure aborts startup:

    initialize_stores([lambda: inv.load(store), lambda: other.load(other_store)])
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional, Sequence

from .constants import RESOURCE_TYPE_SUBNET, TAG_SCOPE_CLUSTER
from .errors import NsxApiError, PageMaxError, StoreInitError
from .model import RemoteSubnet
from .store import SubnetStore, intent_for

__all__ = ["SearchInventory", "build_query", "escape_query", "initialize_stores"]

PAGE_SIZE_STEP = 100
MIN_PAGE_SIZE = 10


def escape_query(value: str) -> str:
    """Escape path separators; NSX search reads a bare ``/`` as a regex delimiter."""
    return value.replace("/", "\\/")


def build_query(resource_type: str, cluster: str, extra: Optional[Dict[str, str]] = None) -> str:
    parts = [
        f"resource_type:{resource_type}",
        f"tags.scope:{escape_query(TAG_SCOPE_CLUSTER)}",
        f"tags.tag:{escape_query(cluster)}",
    ]
    for scope, tag in (extra or {}).items():
        parts.append(f"tags.scope:{escape_query(scope)}")
        parts.append(f"tags.tag:{escape_query(tag)}")
    parts.append("marked_for_delete:false")
    return " AND ".join(parts)


class SearchInventory:
    """Cursor-paginated search loader backed by :class:`NsxClient`."""

    def __init__(
        self,
        client: Any,
        *,
        cluster: str,
        page_size: int = 1000,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.cluster = cluster
        self.page_size = int(page_size)
        self.logger = logger or logging.getLogger("subnetsync.inventory")

    def fetch(self, resource_type: str = RESOURCE_TYPE_SUBNET, extra_tags: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        """Return every matching search result (raw dicts)."""
        query = build_query(resource_type, self.cluster, extra_tags)
        page_size = self.page_size
        cursor: Optional[str] = None
        items: List[Dict[str, Any]] = []
        while True:
            try:
                page = self.client.search_query(query, cursor=cursor, page_size=page_size)
            except PageMaxError:
                if page_size <= MIN_PAGE_SIZE:
                    raise
                page_size = max(MIN_PAGE_SIZE, page_size - PAGE_SIZE_STEP)
                self.logger.info("search page too large; retrying with page_size=%d", page_size)
                continue
            results = page.get("results") or []
            items.extend(results)
            cursor = page.get("cursor")
            total = int(page.get("result_count") or 0)
            if not cursor or not results or _cursor_pos(cursor) >= total:
                break
        self.logger.debug("search loaded type=%s count=%d", resource_type, len(items))
        return items

    def load(self, store: SubnetStore, resource_type: str = RESOURCE_TYPE_SUBNET) -> int:
        try:
            items = self.fetch(resource_type)
        except NsxApiError as e:
            self.logger.warning("Inventory search failed: type=%s status=%s url=%s", resource_type, e.status, e.url)
            raise StoreInitError(f"Failed to load {resource_type} inventory: {e}") from e
        for raw in items:
            store.apply(intent_for(RemoteSubnet.from_dict(raw)))
        self.logger.info("Inventory loaded: type=%s count=%d", resource_type, len(items))
        return len(items)


def _cursor_pos(cursor: str) -> int:
    try:
        return int(cursor)
    except (TypeError, ValueError):
        # opaque cursor: keep paging until the server stops returning one
        return -1


def initialize_stores(loaders: Sequence[Callable[[], Any]], concurrency: int = 4) -> List[Any]:
    """
    Run store loaders concurrently; return their results in order.

    Raises StoreInitError on the first failing loader without waiting for the
    loaders still running; queued loaders never start.
    """
    if not loaders:
        return []
    pool = ThreadPoolExecutor(max_workers=max(1, min(concurrency, len(loaders))))
    try:
        futures = [pool.submit(fn) for fn in loaders]
        done, _ = wait(futures, return_when=FIRST_EXCEPTION)
        for fut in futures:
            if fut in done and fut.exception() is not None:
                exc = fut.exception()
                if isinstance(exc, StoreInitError):
                    raise exc
                raise StoreInitError(f"store initialization failed: {exc}") from exc
        return [f.result() for f in futures]
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
