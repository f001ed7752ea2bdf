"""click-odoo-update wrapper used by upgrade runs."""

import os
from typing import Callable, List, Optional, Sequence

from odoosupervisor.errors import SupervisorError

PENDING_MARKERS = ("Updating addons for their hash changed", "to update")
HIGHLIGHT_MARKERS = ("Updating addons", "modules loaded", "Registry loaded", "error", "Error", "FAIL")


def read_log_tail(log_path: str, lines: int = 20) -> List[str]:
    try:
        with open(log_path, "r", encoding="utf-8", errors="replace") as file_obj:
            content = [line.rstrip() for line in file_obj if line.strip()]
    except OSError:
        return []
    return content[-lines:]


class ModuleUpdateService:
    """Checks and applies module updates for one database at a time."""

    def __init__(
        self,
        conf_path: str,
        run_cmd: Callable,
        logger,
        run_as: Sequence[str] = (),
        ignore_core_addons: bool = True,
        timeout: Optional[float] = None,
    ):
        self.conf_path = conf_path
        self.run_cmd = run_cmd
        self.logger = logger
        self.run_as = list(run_as)
        self.ignore_core_addons = ignore_core_addons
        self.timeout = timeout

    def _base_cmd(self, database: str) -> List[str]:
        cmd = self.run_as + [
            "click-odoo-update",
            "-c",
            self.conf_path,
            "-d",
            database,
            "--if-exists",
        ]
        if self.ignore_core_addons:
            cmd.append("--ignore-core-addons")
        return cmd

    def has_pending_updates(self, database: str, log_path: str) -> bool:
        """Runs the non-mutating listing; raises SupervisorError if it cannot run."""
        if os.path.exists(log_path):
            os.remove(log_path)

        cmd = self._base_cmd(database) + ["--list-only", "--logfile", log_path]
        result = self.run_cmd(cmd, check=False, capture_output=True, timeout=self.timeout)
        if result.returncode != 0:
            raise SupervisorError(
                f"Could not check {database} for updates (exit code {result.returncode})."
            )

        evidence = "\n".join(read_log_tail(log_path, lines=500))
        evidence = f"{evidence}\n{result.stdout or ''}"
        pending = [line for line in evidence.splitlines() if any(m in line for m in PENDING_MARKERS)]
        for line in pending:
            self.logger.info("  %s", line.strip())
        return bool(pending)

    def apply_updates(self, database: str, log_path: str) -> bool:
        cmd = self._base_cmd(database) + ["--i18n-overwrite", "--logfile", log_path]
        result = self.run_cmd(cmd, check=False, capture_output=True, timeout=self.timeout)

        if result.returncode == 0:
            for line in read_log_tail(log_path, lines=200):
                if any(marker in line for marker in HIGHLIGHT_MARKERS):
                    self.logger.info("  %s", line)
            return True

        self.logger.error("Upgrade of %s exited with code %s.", database, result.returncode)
        return False
