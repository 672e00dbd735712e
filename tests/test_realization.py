import pytest

from subnetsync.core.errors import (
    CompensationError,
    NsxConnectionError,
    RealizationStateError,
    RealizationTimeoutError,
)
from subnetsync.core.realization import BackoffPolicy, RealizationTracker

PATH = "/orgs/default/projects/p1/vpcs/v1/subnets/s1"


class _Entities:
    """Scripted realized-entity responses (last one repeats)."""

    def __init__(self, states):
        self.states = list(states)
        self.calls = 0

    def list_realized_entities(self, org, project, intent_path):
        assert (org, project, intent_path) == ("default", "p1", PATH)
        i = min(self.calls, len(self.states) - 1)
        self.calls += 1
        state = self.states[i]
        if isinstance(state, Exception):
            raise state
        if state is None:
            return []
        return [{"entity_type": "RealizedLogicalSwitch", "state": state}]


def _tracker(client, steps=4):
    sleeps = []
    tr = RealizationTracker(client, BackoffPolicy(steps=steps, duration_sec=0.5, factor=2.0), sleep=sleeps.append)
    return tr, sleeps


def test_realized_after_a_few_polls():
    client = _Entities(["UNREALIZED", None, "REALIZED"])
    tr, sleeps = _tracker(client)
    tr.ensure_realized(PATH)
    assert client.calls == 3
    assert sleeps == [0.5, 1.0]


def test_error_state_is_not_retried():
    client = _Entities(["ERROR"])
    tr, sleeps = _tracker(client)
    with pytest.raises(RealizationStateError):
        tr.ensure_realized(PATH)
    assert client.calls == 1
    assert sleeps == []


def test_timeout_after_steps():
    client = _Entities(["IN_PROGRESS"])
    tr, sleeps = _tracker(client, steps=3)
    with pytest.raises(RealizationTimeoutError) as ei:
        tr.ensure_realized(PATH)
    assert client.calls == 3
    assert len(sleeps) == 2
    assert ei.value.last_state == "IN_PROGRESS"


def test_transient_poll_errors_are_retried():
    client = _Entities([NsxConnectionError(status=0, url="x", message="reset"), "REALIZED"])
    tr, _ = _tracker(client)
    tr.ensure_realized(PATH)
    assert client.calls == 2


def test_compensation_runs_and_original_error_is_raised():
    client = _Entities(["ERROR"])
    tr, _ = _tracker(client)
    deleted = []
    with pytest.raises(RealizationStateError):
        tr.ensure_realized(PATH, compensate=lambda: deleted.append(PATH))
    assert deleted == [PATH]


def test_compensation_failure_joins_both_errors():
    client = _Entities(["IN_PROGRESS"])
    tr, _ = _tracker(client, steps=2)

    def boom():
        raise RuntimeError("delete refused")

    with pytest.raises(CompensationError) as ei:
        tr.ensure_realized(PATH, compensate=boom)
    err = ei.value
    assert isinstance(err.original, RealizationTimeoutError)
    assert isinstance(err.cleanup_error, RuntimeError)
    assert "not realized" in str(err) and "delete refused" in str(err)


def test_backoff_is_capped():
    pol = BackoffPolicy(steps=10, duration_sec=1.0, factor=10.0, cap_sec=5.0)
    assert pol.delay(0) == 1.0
    assert pol.delay(3) == 5.0
    with pytest.raises(ValueError):
        BackoffPolicy(steps=0)
