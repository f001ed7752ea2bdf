"""Upgrade run history: one directory per run with a JSON result summary."""

import json
import os
import shutil
import tempfile
from datetime import datetime, timezone
from typing import Callable, List, Optional

from odoosupervisor.constants import (
    DEFAULT_UPGRADE_KEEP,
    UPGRADE_LATEST_LINK,
    UPGRADE_RESULT_FILE,
    UPGRADE_RUN_PREFIX,
)
from odoosupervisor.errors import SupervisorError
from odoosupervisor.models import UpgradeRun


class UpgradeRunRecorder:
    """Creates run directories, writes results and evicts the oldest runs."""

    def __init__(
        self,
        log_dir: str,
        logger,
        keep: int = DEFAULT_UPGRADE_KEEP,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.log_dir = log_dir
        self.logger = logger
        self.keep = max(1, keep)
        self.clock = clock

    def start_run(self, dry_run: bool = False) -> UpgradeRun:
        stamp = self.clock().strftime("%Y%m%d-%H%M%S-%f")
        run_id = f"{UPGRADE_RUN_PREFIX}{stamp}"
        run_dir = os.path.join(self.log_dir, run_id)
        try:
            os.makedirs(self.log_dir, exist_ok=True)
            suffix = 1
            while os.path.exists(run_dir):
                run_dir = os.path.join(self.log_dir, f"{run_id}-{suffix}")
                suffix += 1
            os.makedirs(run_dir)
        except OSError as exc:
            raise SupervisorError(f"Could not create upgrade run directory '{run_dir}': {exc}") from exc
        return UpgradeRun(run_id=os.path.basename(run_dir), dry_run=dry_run, run_dir=run_dir)

    def log_path(self, run: UpgradeRun, database: str, suffix: str = ".log") -> str:
        safe_name = database.replace(os.sep, "_")
        return os.path.join(run.run_dir or self.log_dir, f"{safe_name}{suffix}")

    def list_runs(self) -> List[str]:
        if not os.path.isdir(self.log_dir):
            return []
        runs = [
            name
            for name in os.listdir(self.log_dir)
            if name.startswith(UPGRADE_RUN_PREFIX)
            and os.path.isdir(os.path.join(self.log_dir, name))
            and not os.path.islink(os.path.join(self.log_dir, name))
        ]
        return sorted(runs)

    def latest(self) -> Optional[str]:
        link = os.path.join(self.log_dir, UPGRADE_LATEST_LINK)
        if not os.path.islink(link):
            return None
        return os.path.basename(os.readlink(link))

    def finish_run(self, run: UpgradeRun):
        payload = run.to_dict()
        payload["timestamp"] = self.clock().isoformat()
        self._write_json(os.path.join(run.run_dir, UPGRADE_RESULT_FILE), payload)
        self._point_latest(run.run_dir)
        self.prune()

    def load_result(self, run_id: str) -> dict:
        with open(
            os.path.join(self.log_dir, run_id, UPGRADE_RESULT_FILE), "r", encoding="utf-8"
        ) as file_obj:
            return json.load(file_obj)

    def prune(self) -> List[str]:
        runs = self.list_runs()
        evicted = runs[: max(0, len(runs) - self.keep)]
        for name in evicted:
            shutil.rmtree(os.path.join(self.log_dir, name), ignore_errors=True)
            self.logger.debug("Removed old upgrade run %s", name)
        return evicted

    def _point_latest(self, run_dir: str):
        link = os.path.join(self.log_dir, UPGRADE_LATEST_LINK)
        temp_link = f"{link}.tmp-{os.getpid()}"
        try:
            if os.path.lexists(temp_link):
                os.remove(temp_link)
            os.symlink(os.path.basename(run_dir), temp_link)
            os.replace(temp_link, link)
        except OSError as exc:
            self.logger.warning("Could not update latest upgrade link: %s", exc)

    def _write_json(self, path: str, payload: dict):
        fd, temp_path = tempfile.mkstemp(prefix=".result-", suffix=".json", dir=os.path.dirname(path))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(payload, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, path)
        except OSError as exc:
            self.logger.warning("Could not write upgrade result '%s': %s", path, exc)
            try:
                os.remove(temp_path)
            except OSError:
                pass
