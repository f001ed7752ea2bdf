import signal
import subprocess
import threading

import pytest

import odoosupervisor.services.processes as processes_module
from odoosupervisor.services.processes import ManagedProcess, ProcessController, ProcessFinder


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class FakeProc:
    def __init__(self, pid, cmdline):
        self.info = {"pid": pid, "cmdline": cmdline}


class FakePopen:
    """Child process double whose exit is driven by the test."""

    instances = []

    def __init__(self, command, cwd=None):
        self.command = command
        self.cwd = cwd
        self.pid = 1000 + len(FakePopen.instances)
        self.returncode = None
        self.terminated = False
        self._exited = threading.Event()
        FakePopen.instances.append(self)

    def poll(self):
        return self.returncode

    def terminate(self):
        self.terminated = True
        self.exit(-signal.SIGTERM)

    def kill(self):
        self.exit(-signal.SIGKILL)

    def exit(self, code):
        self.returncode = code
        self._exited.set()

    def wait(self, timeout=None):
        if not self._exited.wait(timeout if timeout is not None else 5):
            raise subprocess.TimeoutExpired(self.command, timeout)
        return self.returncode


@pytest.fixture(autouse=True)
def _reset_fake_popen():
    FakePopen.instances = []


def test_process_finder_matches_binary_and_skips_self(monkeypatch):
    own_pid = processes_module.os.getpid()
    procs = [
        FakeProc(42, ["python", "odoo-bin", "-c", "/etc/odoo/erp.conf"]),
        FakeProc(7, ["/usr/bin/python3", "/opt/odoo/odoo-bin", "gevent"]),
        FakeProc(8, ["postgres"]),
        FakeProc(9, None),
        FakeProc(own_pid, ["odoo-supervisor", "upgrade", "odoo-bin"]),
    ]
    monkeypatch.setattr(processes_module.psutil, "process_iter", lambda _attrs: iter(procs))

    finder = ProcessFinder()

    assert finder.find() == [7, 42]
    assert finder.is_alive() is True


def test_process_finder_reports_no_process(monkeypatch):
    monkeypatch.setattr(processes_module.psutil, "process_iter", lambda _attrs: iter([]))

    assert ProcessFinder().is_alive() is False


def test_process_controller_sends_stop_and_continue():
    sent = []
    controller = ProcessController(DummyLogger(), kill=lambda pid, sig: sent.append((pid, sig)))

    assert controller.suspend(1) is True
    assert controller.resume(1) is True
    assert sent == [(1, signal.SIGSTOP), (1, signal.SIGCONT)]


@pytest.mark.parametrize("error", [ProcessLookupError(), PermissionError(), OSError("boom")])
def test_process_controller_tolerates_signal_errors(error):
    def kill(_pid, _sig):
        raise error

    controller = ProcessController(DummyLogger(), kill=kill)

    assert controller.suspend(123) is False
    assert controller.resume(123) is False


def test_managed_process_wait_returns_exit_code():
    child = ManagedProcess(["odoo-bin"], logger=DummyLogger(), cwd="/opt/odoo", popen=FakePopen)
    child.start()
    FakePopen.instances[0].exit(0)

    assert child.wait() == 0
    assert FakePopen.instances[0].cwd == "/opt/odoo"


def test_managed_process_wait_follows_restart():
    child = ManagedProcess(["odoo-bin"], logger=DummyLogger(), popen=FakePopen)
    child.start()
    result = {}

    waiter = threading.Thread(target=lambda: result.setdefault("code", child.wait()))
    waiter.start()

    assert child.restart() is True
    assert FakePopen.instances[0].terminated is True
    assert child.pid == FakePopen.instances[1].pid

    FakePopen.instances[1].exit(3)
    waiter.join(timeout=5)

    assert result["code"] == 3
    assert child.restarts == 1


def test_managed_process_skips_restart_while_stopping():
    child = ManagedProcess(["odoo-bin"], logger=DummyLogger(), popen=FakePopen)
    child.start()

    child.terminate()

    assert child.restart() is False
    assert len(FakePopen.instances) == 1
    assert child.wait() == -signal.SIGTERM


def test_managed_process_refuses_restart_after_wait_returned():
    child = ManagedProcess(["odoo-bin"], logger=DummyLogger(), popen=FakePopen)
    child.start()
    FakePopen.instances[0].exit(0)

    assert child.wait() == 0
    assert child.restart() is False
    assert len(FakePopen.instances) == 1


def test_managed_process_kills_child_that_ignores_terminate():
    class StubbornPopen(FakePopen):
        def terminate(self):
            self.terminated = True

    child = ManagedProcess(["odoo-bin"], logger=DummyLogger(), popen=StubbornPopen, stop_timeout=0.01)
    child.start()

    child.restart()

    assert FakePopen.instances[0].returncode == -signal.SIGKILL
    assert len(FakePopen.instances) == 2
