import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

import pytest

from subnetsync.core.errors import StoreInitError
from subnetsync.core.inventory import SearchInventory, build_query, escape_query, initialize_stores
from subnetsync.core.nsx_client import ClientOptions, NsxClient
from subnetsync.core.store import INDEX_SUBNET_UID, SubnetStore

SERVER_MAX_PAGE = 300
SERVER_PAGE = 3


def _item(i):
    return {
        "resource_type": "VpcSubnet",
        "id": f"s{i}",
        "path": f"/orgs/default/projects/p1/vpcs/v1/subnets/s{i}",
        "parent_path": "/orgs/default/projects/p1/vpcs/v1",
        "tags": [
            {"scope": "nsx-op/cluster", "tag": "c1"},
            {"scope": "nsx-op/subnet_uid", "tag": f"u{i}"},
        ],
    }


class _SearchHandler(BaseHTTPRequestHandler):
    items = [_item(i) for i in range(7)]
    page_sizes = []
    queries = []
    fail = False

    protocol_version = "HTTP/1.1"

    def _send_json(self, status, obj):
        raw = json.dumps(obj).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def do_GET(self):  # noqa: N802
        url = urlparse(self.path)
        if url.path != "/policy/api/v1/search/query":
            self._send_json(404, {"error_message": "not found"})
            return
        if _SearchHandler.fail:
            self._send_json(500, {"error_message": "search unavailable"})
            return
        q = parse_qs(url.query)
        page_size = int(q.get("page_size", ["1000"])[0])
        _SearchHandler.page_sizes.append(page_size)
        _SearchHandler.queries.append(q["query"][0])
        if page_size > SERVER_MAX_PAGE:
            self._send_json(400, {"error_code": 60576, "error_message": "page size too large"})
            return
        start = int(q.get("cursor", ["0"])[0])
        end = min(start + min(page_size, SERVER_PAGE), len(_SearchHandler.items))
        self._send_json(200, {
            "results": _SearchHandler.items[start:end],
            "cursor": str(end),
            "result_count": len(_SearchHandler.items),
        })

    def log_message(self, fmt, *args):  # silence server logs during tests
        return


@pytest.fixture()
def client():
    _SearchHandler.page_sizes = []
    _SearchHandler.queries = []
    _SearchHandler.fail = False
    server = ThreadingHTTPServer(("127.0.0.1", 0), _SearchHandler)
    host, port = server.server_address
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield NsxClient(f"http://{host}:{port}", "TEST", options=ClientOptions(timeout_sec=2))
    server.shutdown()
    thread.join(timeout=1.0)


def test_escape_only_touches_slashes():
    assert escape_query("nsx-op/cluster") == "nsx-op\\/cluster"
    assert escape_query("a:b c") == "a:b c"


def test_build_query():
    q = build_query("VpcSubnet", "c1", {"nsx-op/subnet_uid": "u1"})
    assert q == (
        "resource_type:VpcSubnet AND tags.scope:nsx-op\\/cluster AND tags.tag:c1"
        " AND tags.scope:nsx-op\\/subnet_uid AND tags.tag:u1 AND marked_for_delete:false"
    )


def test_load_pages_with_cursor(client):
    store = SubnetStore()
    count = SearchInventory(client, cluster="c1", page_size=100).load(store)
    assert count == 7
    assert len(store) == 7
    assert store.get_by_index(INDEX_SUBNET_UID, "u3")[0].id == "s3"
    # 0-3, 3-6, 6-7
    assert len(_SearchHandler.page_sizes) == 3
    assert _SearchHandler.queries[0] == build_query("VpcSubnet", "c1")


def test_page_size_shrinks_on_page_max(client):
    store = SubnetStore()
    assert SearchInventory(client, cluster="c1", page_size=500).load(store) == 7
    assert _SearchHandler.page_sizes[:3] == [500, 400, 300]
    assert set(_SearchHandler.page_sizes[3:]) == {300}


def test_search_failure_becomes_store_init_error(client):
    _SearchHandler.fail = True
    store = SubnetStore()
    with pytest.raises(StoreInitError):
        SearchInventory(client, cluster="c1").load(store)
    assert len(store) == 0


def test_initialize_stores_returns_results_in_order():
    assert initialize_stores([lambda: 1, lambda: 2, lambda: 3], concurrency=2) == [1, 2, 3]
    assert initialize_stores([]) == []


def test_initialize_stores_fails_fast():
    def slow():
        time.sleep(0.05)
        return "ok"

    def broken():
        raise RuntimeError("vpc store unavailable")

    with pytest.raises(StoreInitError) as ei:
        initialize_stores([slow, broken])
    assert "vpc store unavailable" in str(ei.value)
    assert isinstance(ei.value.__cause__, RuntimeError)


def test_initialize_stores_does_not_wait_for_running_loaders():
    release = threading.Event()
    started = threading.Event()

    def blocked():
        started.set()
        release.wait(timeout=5.0)
        return "late"

    def broken():
        started.wait(timeout=5.0)
        raise RuntimeError("vpc store unavailable")

    try:
        t0 = time.monotonic()
        with pytest.raises(StoreInitError):
            initialize_stores([blocked, broken], concurrency=2)
        assert time.monotonic() - t0 < 2.0
        assert not release.is_set()
    finally:
        release.set()
