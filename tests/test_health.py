import pytest
import requests

from odoosupervisor.health import HEALTHY, UNHEALTHY, HealthReporter, http_probe
from odoosupervisor.models import LifecycleState
from odoosupervisor.services.state import FileStateStore, MemoryStateStore


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None


def _reporter(state_store, process=True, endpoint=True):
    return HealthReporter(state_store, process_alive=lambda: process, endpoint_alive=lambda: endpoint)


@pytest.mark.parametrize(
    "state",
    [
        LifecycleState.STARTING,
        LifecycleState.INITIALIZING,
        LifecycleState.UPGRADING,
        LifecycleState.UPGRADE_RETRY,
    ],
)
def test_transitional_states_are_healthy_without_process(state):
    token, code = _reporter(MemoryStateStore(state), process=False, endpoint=False).check()

    assert (token, code) == (state.value, HEALTHY)


@pytest.mark.parametrize(
    "process,endpoint,expected",
    [
        (True, True, ("RUNNING", HEALTHY)),
        (True, False, ("RUNNING_LOADING", HEALTHY)),
        (False, True, ("RUNNING_NO_PROCESS", UNHEALTHY)),
        (False, False, ("RUNNING_NO_PROCESS", UNHEALTHY)),
    ],
)
def test_running_state_uses_live_probes(process, endpoint, expected):
    reporter = _reporter(MemoryStateStore(LifecycleState.RUNNING), process, endpoint)

    assert reporter.check() == expected


def test_upgrade_failed_and_unknown_are_unhealthy():
    assert _reporter(MemoryStateStore(LifecycleState.UPGRADE_FAILED)).check() == (
        "UPGRADE_FAILED",
        UNHEALTHY,
    )
    assert _reporter(MemoryStateStore()).check() == ("UNKNOWN", UNHEALTHY)


def test_state_file_scenarios(tmp_path):
    state_file = tmp_path / ".container-state"
    store = FileStateStore(str(state_file), logger=DummyLogger())

    assert _reporter(store).check() == ("UNKNOWN", UNHEALTHY)

    state_file.write_text("garbage\n", encoding="utf-8")
    assert _reporter(store).check() == ("UNKNOWN", UNHEALTHY)

    store.set(LifecycleState.UPGRADING)
    assert _reporter(store, process=False).check() == ("UPGRADING", HEALTHY)

    store.set(LifecycleState.RUNNING)
    assert _reporter(store, endpoint=False).check() == ("RUNNING_LOADING", HEALTHY)


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code
        self.closed = False

    def close(self):
        self.closed = True


class FakeRequests:
    RequestException = requests.RequestException

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, timeout, allow_redirects):
        self.calls.append((url, timeout, allow_redirects))
        if self.error is not None:
            raise self.error
        return self.response


def test_http_probe_accepts_success_and_redirect_statuses():
    ok = FakeRequests(FakeResponse(200))
    redirect = FakeRequests(FakeResponse(303))

    assert http_probe("http://localhost:8069/web/login", requests_module=ok) is True
    assert http_probe("http://localhost:8069/web/login", requests_module=redirect) is True
    assert ok.response.closed is True
    assert ok.calls == [("http://localhost:8069/web/login", 5.0, True)]


def test_http_probe_rejects_errors_and_connection_failures():
    server_error = FakeRequests(FakeResponse(502))
    refused = FakeRequests(error=requests.ConnectionError("refused"))

    assert http_probe("http://localhost:8069/web/login", requests_module=server_error) is False
    assert http_probe("http://localhost:8069/web/login", requests_module=refused) is False
