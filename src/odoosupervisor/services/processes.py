"""Process discovery, pause/resume and managed child process handling."""

import os
import signal
import subprocess
import threading
from typing import Callable, List, Optional, Sequence

import psutil

from odoosupervisor.constants import APPLICATION_BINARY


class ProcessFinder:
    """Finds live processes running the supervised application binary."""

    def __init__(self, binary: str = APPLICATION_BINARY, exclude_self: bool = True):
        self.binary = binary
        self.exclude_self = exclude_self

    def find(self) -> List[int]:
        own_pid = os.getpid()
        pids = set()
        for proc in psutil.process_iter(["pid", "cmdline"]):
            try:
                pid = proc.info["pid"]
                cmdline = proc.info.get("cmdline") or []
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            if self.exclude_self and pid == own_pid:
                continue
            if any(self.binary in (arg or "") for arg in cmdline):
                pids.add(pid)
        return sorted(pids)

    def is_alive(self) -> bool:
        return bool(self.find())


class ProcessController:
    """Freezes and unfreezes processes without terminating them."""

    def __init__(self, logger, kill: Callable[[int, int], None] = os.kill):
        self.logger = logger
        self.kill = kill

    def suspend(self, pid: int) -> bool:
        # PID 1 is fine: a stopped init keeps the container alive.
        return self._signal(pid, signal.SIGSTOP, "pause")

    def resume(self, pid: int) -> bool:
        return self._signal(pid, signal.SIGCONT, "resume")

    def _signal(self, pid: int, signum: int, action: str) -> bool:
        try:
            self.kill(pid, signum)
            return True
        except ProcessLookupError:
            self.logger.debug("Process %s exited before %s", pid, action)
            return False
        except PermissionError:
            self.logger.warning("Permission denied trying to %s PID %s", action, pid)
            return False
        except OSError as exc:
            self.logger.warning("Could not %s PID %s: %s", action, pid, exc)
            return False


class ManagedProcess:
    """Child application process that can be restarted in place.

    ``wait`` follows restarts: it only returns once the current child exits
    without having been replaced by ``restart``, and no restart is accepted
    after it has returned.
    """

    def __init__(
        self,
        command: Sequence[str],
        logger,
        cwd: Optional[str] = None,
        popen=subprocess.Popen,
        stop_timeout: float = 60.0,
    ):
        self.command = list(command)
        self.logger = logger
        self.cwd = cwd
        self.popen = popen
        self.stop_timeout = stop_timeout
        self.process = None
        self.restarts = 0
        self._stopping = False
        # Re-entrant: signal handlers run on the main thread, which may hold it.
        self._lock = threading.RLock()

    @property
    def pid(self) -> Optional[int]:
        process = self.process
        return process.pid if process is not None else None

    def start(self):
        with self._lock:
            self.process = self.popen(self.command, cwd=self.cwd)
            self.logger.info("Odoo started with PID %s", self.process.pid)
            return self.process

    def restart(self) -> bool:
        with self._lock:
            if self._stopping:
                self.logger.info("Shutdown in progress, skipping restart.")
                return False
            self.logger.info("Restarting Odoo with new configuration...")
            self._terminate_and_wait(self.process)
            self.start()
            self.restarts += 1
            return True

    def terminate(self):
        with self._lock:
            self._stopping = True
            process = self.process
            if process is not None and process.poll() is None:
                self.logger.info("Forwarding termination to PID %s", process.pid)
                process.terminate()

    def wait(self) -> int:
        while True:
            process = self.process
            returncode = process.wait()
            with self._lock:
                if self.process is process:
                    # Nobody waits on a later child, so no restart may launch one.
                    self._stopping = True
                    return returncode

    def _terminate_and_wait(self, process):
        if process is None or process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=self.stop_timeout)
        except subprocess.TimeoutExpired:
            self.logger.warning(
                "PID %s did not stop within %.0fs, killing it.", process.pid, self.stop_timeout
            )
            process.kill()
            process.wait()
