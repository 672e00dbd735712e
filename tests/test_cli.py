import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlparse

import pytest

import subnetsync.cli as cli
from subnetsync.cli import main

VPC = "/orgs/default/projects/p1/vpcs/v1"


def _subnet(i, cr_type):
    return {
        "resource_type": "VpcSubnet",
        "id": f"s{i}",
        "path": f"{VPC}/subnets/s{i}",
        "parent_path": VPC,
        "tags": [
            {"scope": "nsx-op/cluster", "tag": "c1"},
            {"scope": "nsx-op/subnet_cr_type", "tag": cr_type},
        ],
    }


class _Srv(BaseHTTPRequestHandler):
    subnets = {}
    deletes = []
    delete_delay = 0.0
    search_fails = False

    protocol_version = "HTTP/1.1"

    def _send_json(self, status, obj):
        raw = json.dumps(obj).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def do_GET(self):  # noqa: N802
        path = urlparse(self.path).path
        if path == "/policy/api/v1/search/query":
            if _Srv.search_fails:
                self._send_json(503, {"error_message": "search unavailable"})
                return
            items = list(_Srv.subnets.values())
            self._send_json(200, {"results": items, "cursor": str(len(items)), "result_count": len(items)})
        else:
            self._send_json(404, {"error_message": "not found"})

    def do_DELETE(self):  # noqa: N802
        path = urlparse(self.path).path
        sid = path.rsplit("/", 1)[-1]
        time.sleep(_Srv.delete_delay)
        _Srv.deletes.append(sid)
        if _Srv.subnets.pop(sid, None) is None:
            self._send_json(404, {"error_message": "not found"})
        else:
            self._send_json(200, {})

    def log_message(self, fmt, *args):
        return


class _NoKube:
    """Cleanup never reaches Kubernetes for plain Subnet-owned objects."""

    def list_subnetsets(self):
        return []


@pytest.fixture()
def nsx_url(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "_kube_client", lambda cfg: _NoKube())
    _Srv.subnets = {
        "s1": _subnet(1, "subnet"),
        "s2": _subnet(2, "subnet"),
        "s3": _subnet(3, "subnetset"),
    }
    _Srv.deletes = []
    _Srv.delete_delay = 0.0
    _Srv.search_fails = False
    srv = ThreadingHTTPServer(("127.0.0.1", 0), _Srv)
    t = threading.Thread(target=srv.serve_forever, daemon=True)
    t.start()
    yield f"http://{srv.server_address[0]}:{srv.server_address[1]}"
    srv.shutdown()
    t.join(timeout=1.0)


def _common(url, tmp_path):
    return ["--base-url", url, "--token", "T", "--cluster", "c1", "--logs-dir", str(tmp_path / "logs")]


def test_cli_inventory_prints_counts(nsx_url, tmp_path, capsys):
    rc = main(["inventory"] + _common(nsx_url, tmp_path))
    assert rc == 0
    out = capsys.readouterr().out.strip().splitlines()[-1]
    assert out == "subnet=2 | subnetset=1 | total=3"
    assert (tmp_path / "logs" / "app.log").exists()


def test_cli_inventory_failure_returns_1(nsx_url, tmp_path, capsys):
    _Srv.search_fails = True
    rc = main(["inventory"] + _common(nsx_url, tmp_path))
    assert rc == 1
    assert "error:" in capsys.readouterr().err


def test_cli_cleanup_deletes_all(nsx_url, tmp_path, capsys):
    rc = main(["cleanup"] + _common(nsx_url, tmp_path))
    assert rc == 0
    assert capsys.readouterr().out.strip().splitlines()[-1] == "deleted=3"
    assert sorted(_Srv.deletes) == ["s1", "s2", "s3"]
    assert _Srv.subnets == {}


def test_cli_cleanup_timeout_cancels(nsx_url, tmp_path, capsys):
    _Srv.delete_delay = 0.3
    rc = main(["cleanup", "--timeout-sec", "0.05"] + _common(nsx_url, tmp_path))
    assert rc == 2
    assert capsys.readouterr().out.strip().splitlines()[-1] == "deleted=1 | remaining=2 | cancelled"
    assert len(_Srv.subnets) == 2


def test_cli_requires_base_url_and_cluster(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(ValueError):
        main(["inventory", "--logs-dir", str(tmp_path / "logs")])
