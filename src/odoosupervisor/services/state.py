"""Lifecycle state persistence shared by the supervisor, upgrades and health checks."""

import os
import tempfile
import threading
from typing import Optional

from odoosupervisor.errors import SupervisorError
from odoosupervisor.models import LifecycleState


class StateStore:
    """Holds the single current lifecycle state value."""

    def get(self) -> Optional[LifecycleState]:
        raise NotImplementedError

    def set(self, value: LifecycleState):
        raise NotImplementedError


class FileStateStore(StateStore):
    """Single-token state file replaced atomically on every write."""

    def __init__(self, state_file: str, logger):
        self.state_file = state_file
        self.logger = logger

    def read_raw(self) -> str:
        try:
            with open(self.state_file, "r", encoding="utf-8") as file_obj:
                return file_obj.read().strip()
        except OSError:
            return ""

    def get(self) -> Optional[LifecycleState]:
        return LifecycleState.parse(self.read_raw())

    def set(self, value: LifecycleState):
        directory = os.path.dirname(self.state_file) or "."
        # Same directory as the target so os.replace stays on one filesystem.
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix=".container-state-", dir=directory)
        except OSError as exc:
            raise SupervisorError(f"Could not write state file '{self.state_file}': {exc}") from exc

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                file_obj.write(f"{value.value}\n")
            os.chmod(temp_path, 0o644)
            os.replace(temp_path, self.state_file)
        except OSError as exc:
            raise SupervisorError(f"Could not write state file '{self.state_file}': {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

        self.logger.info("Container state: %s", value.value)


class MemoryStateStore(StateStore):
    """In-process state cell guarded by a mutex."""

    def __init__(self, initial: Optional[LifecycleState] = None):
        self._value = initial
        self._lock = threading.Lock()
        self.history = [] if initial is None else [initial]

    def get(self) -> Optional[LifecycleState]:
        with self._lock:
            return self._value

    def set(self, value: LifecycleState):
        with self._lock:
            self._value = value
            self.history.append(value)
