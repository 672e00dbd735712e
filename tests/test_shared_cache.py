import threading

from subnetsync.core.model import RemoteSubnet, SubnetStatusInfo
from subnetsync.core.shared_cache import SharedSubnetCache

KEY = "proj:vpc:shared-1"


class _Remote:
    def __init__(self):
        self.subnet_calls = 0
        self.status_calls = 0
        self.revision = 0

    def fetch_subnet(self, key):
        self.subnet_calls += 1
        self.revision += 1
        return RemoteSubnet(id=key.split(":")[-1], display_name=f"rev{self.revision}")

    def fetch_status(self, subnet):
        self.status_calls += 1
        return [SubnetStatusInfo(network_address="10.0.0.0/28")]


def test_get_or_fetch_caches():
    remote = _Remote()
    cache = SharedSubnetCache(remote.fetch_subnet, remote.fetch_status)
    a = cache.get_or_fetch(KEY)
    b = cache.get_or_fetch(KEY)
    assert a is b
    assert remote.subnet_calls == 1


def test_force_refresh_always_fetches_and_overwrites():
    remote = _Remote()
    cache = SharedSubnetCache(remote.fetch_subnet, remote.fetch_status)
    cache.get_or_fetch(KEY)
    fresh = cache.get_or_fetch(KEY, force_refresh=True)
    assert remote.subnet_calls == 2
    assert fresh.display_name == "rev2"
    assert cache.get_or_fetch(KEY).display_name == "rev2"


def test_status_cached_separately():
    remote = _Remote()
    cache = SharedSubnetCache(remote.fetch_subnet, remote.fetch_status)
    subnet = cache.get_or_fetch(KEY)
    st1 = cache.get_status_or_fetch(subnet, KEY)
    st2 = cache.get_status_or_fetch(subnet, KEY)
    assert st1 == st2
    assert remote.status_calls == 1


def test_update_and_invalidate():
    remote = _Remote()
    cache = SharedSubnetCache(remote.fetch_subnet, remote.fetch_status)
    cache.update(KEY, RemoteSubnet(id="shared-1", display_name="pushed"), [SubnetStatusInfo(network_address="1.1.1.0/28")])
    assert cache.get_or_fetch(KEY).display_name == "pushed"
    assert remote.subnet_calls == 0
    assert cache.keys() == [KEY]

    assert cache.invalidate(KEY, "no longer referenced") is True
    assert cache.invalidate(KEY, "again") is False
    assert cache.peek(KEY) == (None, [])
    cache.get_or_fetch(KEY)
    assert remote.subnet_calls == 1


def test_concurrent_readers():
    remote = _Remote()
    cache = SharedSubnetCache(remote.fetch_subnet, remote.fetch_status)
    cache.get_or_fetch(KEY)
    seen = []

    def reader():
        for _ in range(100):
            seen.append(cache.get_or_fetch(KEY).id)

    threads = [threading.Thread(target=reader) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5.0)
    assert len(seen) == 400 and set(seen) == {"shared-1"}
    assert remote.subnet_calls == 1


class _MovingGateway:
    def __init__(self):
        self.gateway = "10.0.0.1/28"

    def fetch_subnet(self, key):
        return RemoteSubnet(id=key.split(":")[-1])

    def fetch_status(self, subnet):
        return [SubnetStatusInfo(network_address="10.0.0.0/28", gateway_address=self.gateway)]


def test_force_refresh_also_refetches_status():
    remote = _MovingGateway()
    cache = SharedSubnetCache(remote.fetch_subnet, remote.fetch_status)
    subnet = cache.get_or_fetch(KEY)
    assert cache.get_status_or_fetch(subnet, KEY)[0].gateway_address == "10.0.0.1/28"

    remote.gateway = "10.0.9.1/28"
    subnet = cache.get_or_fetch(KEY, force_refresh=True)
    assert cache.get_status_or_fetch(subnet, KEY)[0].gateway_address == "10.0.9.1/28"


class _SlowFirstFetch:
    """First subnet fetch blocks until released; later ones return at once."""

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def fetch_subnet(self, key):
        self.calls += 1
        if self.calls == 1:
            self.entered.set()
            self.release.wait(timeout=5.0)
            return RemoteSubnet(id="shared-1", display_name="old")
        return RemoteSubnet(id="shared-1", display_name="new")

    def fetch_status(self, subnet):
        return []


def _start(target):
    t = threading.Thread(target=target)
    t.start()
    return t


def test_in_flight_fetch_does_not_undo_invalidate():
    remote = _SlowFirstFetch()
    cache = SharedSubnetCache(remote.fetch_subnet, remote.fetch_status)
    t = _start(lambda: cache.get_or_fetch(KEY))
    assert remote.entered.wait(timeout=5.0)

    cache.invalidate(KEY, "no longer referenced")
    remote.release.set()
    t.join(timeout=5.0)

    assert cache.peek(KEY) == (None, [])
    assert cache.keys() == []


def test_stale_fetch_does_not_overwrite_forced_refresh():
    remote = _SlowFirstFetch()
    cache = SharedSubnetCache(remote.fetch_subnet, remote.fetch_status)
    results = []
    t = _start(lambda: results.append(cache.get_or_fetch(KEY)))
    assert remote.entered.wait(timeout=5.0)

    assert cache.get_or_fetch(KEY, force_refresh=True).display_name == "new"
    remote.release.set()
    t.join(timeout=5.0)

    # the slow caller gets the newer cached value, and so does everyone after it
    assert results[0].display_name == "new"
    assert cache.get_or_fetch(KEY).display_name == "new"
    assert remote.calls == 2
