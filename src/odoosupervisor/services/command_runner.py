"""External command execution for odoo-supervisor services."""

import os
import subprocess
import time
from typing import Dict, Iterable, List, Mapping, Optional

from odoosupervisor.errors import SupervisorError


def _merged_env(env: Optional[Mapping[str, str]]) -> Optional[Dict[str, str]]:
    if not env:
        return None
    merged = dict(os.environ)
    merged.update(env)
    return merged


def _failure_message(cmd_str: str, result: subprocess.CompletedProcess, captured: bool) -> str:
    message = f"Command failed ({result.returncode}): {cmd_str}"
    stderr = (result.stderr or "").strip() if captured else ""
    return f"{message}\n{stderr}" if stderr else message


class CommandRunner:
    """Runs commands such as psql, click-odoo-* and pip on behalf of the services.

    Extra ``env`` entries are layered over the current environment, so secrets
    like ``PGPASSWORD`` never appear on the command line or in the logs.
    """

    def __init__(self, logger, default_timeout: Optional[float] = None):
        self.logger = logger
        self.default_timeout = default_timeout

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
        retry_count: int = 0,
        retry_backoff_seconds: float = 0.0,
        retry_on_returncodes: Optional[Iterable[int]] = None,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        cmd_str = " ".join(cmd)
        effective_timeout = self.default_timeout if timeout is None else timeout
        attempts = max(1, retry_count + 1)
        retry_codes = set(retry_on_returncodes or ())
        run_env = _merged_env(env)

        attempt = 0
        while True:
            attempt += 1
            started = time.monotonic()
            self.logger.debug("Executing (%s/%s): %s", attempt, attempts, cmd_str)
            try:
                result = subprocess.run(
                    cmd,
                    text=True,
                    capture_output=capture_output,
                    timeout=effective_timeout,
                    env=run_env,
                    cwd=cwd,
                )
            except FileNotFoundError as exc:
                raise SupervisorError(
                    f"Required command not found: {cmd[0]}. Is it installed in the image?"
                ) from exc
            except subprocess.TimeoutExpired as exc:
                if attempt < attempts:
                    self._wait_before_retry("timed out", attempt, attempts, retry_backoff_seconds, cmd_str)
                    continue
                raise SupervisorError(
                    f"Command timed out after {effective_timeout}s: {cmd_str}"
                ) from exc
            except OSError as exc:
                raise SupervisorError(f"Could not execute {cmd_str}: {exc}") from exc

            self.logger.debug(
                "Exit code %s after %.1fs: %s", result.returncode, time.monotonic() - started, cmd[0]
            )
            if capture_output and result.stdout:
                self.logger.debug("Command output: %s", result.stdout.strip())

            if result.returncode == 0:
                return result

            message = _failure_message(cmd_str, result, capture_output)
            retryable = not retry_codes or result.returncode in retry_codes
            if attempt < attempts and retryable:
                self._wait_before_retry(message, attempt, attempts, retry_backoff_seconds, cmd_str)
                continue

            if check:
                raise SupervisorError(message)
            self.logger.debug(message)
            return result

    def _wait_before_retry(self, reason: str, attempt: int, attempts: int, backoff: float, cmd_str: str):
        self.logger.warning(
            "Attempt %s/%s of `%s` failed (%s); retrying in %.1fs.",
            attempt,
            attempts,
            cmd_str,
            reason,
            backoff,
        )
        time.sleep(backoff)
