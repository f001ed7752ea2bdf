"""Out-of-band module upgrade with pause/resume of the running application."""

import fcntl
import logging
import os
import signal
import time
from contextlib import contextmanager
from typing import Callable, List, Optional, Sequence

from rich.console import Console

from .errors import SupervisorError, UpgradeInterrupted, UpgradeLockedError
from .errors_catalog import actionable_error
from .models import DatabaseUpgradeResult, LifecycleState, UpgradeOutcome, UpgradeRun, UpgradeStatus
from .services.module_update import read_log_tail

logger = logging.getLogger("odoosupervisor")

INTERRUPT_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGHUP)


@contextmanager
def signals_deferred(signals: Sequence[int] = INTERRUPT_SIGNALS):
    """Holds back ``signals`` for the calling thread; pending ones fire on exit."""
    previous = signal.pthread_sigmask(signal.SIG_BLOCK, signals)
    try:
        yield
    finally:
        signal.pthread_sigmask(signal.SIG_SETMASK, previous)


class UpgradeLock:
    """Non-blocking exclusive lock serialising upgrade runs."""

    def __init__(self, path: str):
        self.path = path
        self._file = None

    def __enter__(self):
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            self._file = open(self.path, "a+", encoding="utf-8")
        except OSError as exc:
            raise SupervisorError(f"Could not open upgrade lock '{self.path}': {exc}") from exc
        try:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except (BlockingIOError, PermissionError) as exc:
            self._file.close()
            self._file = None
            raise UpgradeLockedError(actionable_error("upgrade_locked", path=self.path)) from exc
        self._file.seek(0)
        self._file.truncate()
        self._file.write(f"{os.getpid()}\n")
        self._file.flush()
        return self

    def __exit__(self, exc_type, exc, tb):
        if self._file is not None:
            try:
                fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
            finally:
                self._file.close()
                self._file = None
        return False


class UpgradeCoordinator:
    """Pauses Odoo, upgrades each database in turn and always resumes Odoo.

    The coordinator never restarts the application: a run with upgraded
    databases reports ``restart_required`` and the caller decides.
    """

    def __init__(
        self,
        state_store,
        process_finder,
        process_controller,
        database_service,
        module_update_service,
        run_recorder,
        console: Optional[Console] = None,
        lock: Optional[UpgradeLock] = None,
        preflight_retries: int = 0,
        preflight_backoff_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        defer_signals=signals_deferred,
    ):
        self.state_store = state_store
        self.process_finder = process_finder
        self.process_controller = process_controller
        self.database_service = database_service
        self.module_update_service = module_update_service
        self.run_recorder = run_recorder
        self.console = console or Console(stderr=True)
        self.lock = lock
        self.preflight_retries = preflight_retries
        self.preflight_backoff_seconds = preflight_backoff_seconds
        self.sleep = sleep
        self.defer_signals = defer_signals

    def run(self, target_database: Optional[str] = None, dry_run: bool = False) -> UpgradeRun:
        if self.lock is None:
            return self._run_unlocked(target_database, dry_run)
        with self.lock:
            return self._run_unlocked(target_database, dry_run)

    def _run_unlocked(self, target_database: Optional[str], dry_run: bool) -> UpgradeRun:
        if dry_run:
            run = self.run_recorder.start_run(dry_run=True)
            self._preflight(write_state=False)
            self._process_databases(run, self._discover(target_database))
            self.run_recorder.finish_run(run)
            self._report(run)
            return run

        previous_state = self.state_store.get()
        paused: List[int] = []
        run: Optional[UpgradeRun] = None
        finished = False
        try:
            self._set_state(LifecycleState.UPGRADING)
            self._pause(paused)
            self._preflight(write_state=True)
            databases = self._discover(target_database)
            run = self.run_recorder.start_run(dry_run=False)
            self._process_databases(run, databases)
            self.run_recorder.finish_run(run)
            with self.defer_signals():
                resume_error = self._resume(paused)
                if run.overall_status == UpgradeStatus.FAILED:
                    self._set_state(LifecycleState.UPGRADE_FAILED)
                else:
                    self._set_state(self._restored_state(previous_state))
                finished = True
        except BaseException:
            if not finished:
                with self.defer_signals():
                    self._resume(paused)
                    self._set_state(self._restored_state(previous_state))
            raise

        if resume_error is not None:
            raise resume_error

        self._report(run)
        return run

    @staticmethod
    def _restored_state(previous: Optional[LifecycleState]) -> LifecycleState:
        if previous is None or previous == LifecycleState.UPGRADE_FAILED:
            return LifecycleState.RUNNING
        return previous

    def _set_state(self, state: LifecycleState):
        try:
            self.state_store.set(state)
        except SupervisorError as exc:
            logger.warning("Could not record state %s: %s", state.value, exc)

    def _pause(self, paused: List[int]):
        pids = self.process_finder.find()
        if not pids:
            logger.info("No Odoo process found (already stopped).")
            return

        logger.info("Pausing Odoo processes: %s", " ".join(str(pid) for pid in pids))
        with self.defer_signals():
            for pid in pids:
                # Recorded first: a pid stopped just before an error must still be resumed.
                paused.append(pid)
                if not self.process_controller.suspend(pid):
                    paused.remove(pid)
        logger.info("Odoo paused.")

    def _resume(self, paused: List[int]) -> Optional[BaseException]:
        """Resumes every paused pid; returns the first error instead of stopping early."""
        if not paused:
            return None

        logger.info("Resuming Odoo processes: %s", " ".join(str(pid) for pid in paused))
        error: Optional[BaseException] = None
        retry = []
        for pid in paused:
            try:
                self.process_controller.resume(pid)
            except BaseException as exc:
                error = error or exc
                retry.append(pid)
        for pid in retry:
            try:
                self.process_controller.resume(pid)
            except BaseException as exc:
                logger.error("Could not resume PID %s: %s", pid, exc)
        logger.info("Odoo resumed.")
        return error

    def _preflight(self, write_state: bool):
        if self.preflight_retries <= 0:
            return

        retried = False
        for attempt in range(1, self.preflight_retries + 1):
            if self.database_service.ping():
                break
            if attempt == self.preflight_retries:
                logger.warning(
                    "Database still unreachable after %s attempt(s); continuing.", attempt
                )
                break
            if write_state and not retried:
                self._set_state(LifecycleState.UPGRADE_RETRY)
            retried = True
            logger.warning(
                "Database not ready (attempt %s/%s). Retrying in %.1fs.",
                attempt,
                self.preflight_retries,
                self.preflight_backoff_seconds,
            )
            self.sleep(self.preflight_backoff_seconds)

        if write_state and retried:
            self._set_state(LifecycleState.UPGRADING)

    def _discover(self, target_database: Optional[str]) -> List[str]:
        if target_database:
            return [name for name in target_database.replace(",", " ").split() if name]

        databases = self.database_service.list_databases()
        if databases:
            logger.info("Databases to process: %s (%s)", len(databases), " ".join(databases))
        else:
            logger.info("No databases found.")
        return databases

    def _process_databases(self, run: UpgradeRun, databases: List[str]):
        total = len(databases)
        for index, database in enumerate(databases, start=1):
            logger.info("=== [%s/%s] %s ===", index, total, database)
            run.results.append(self._upgrade_database(run, database))

    def _upgrade_database(self, run: UpgradeRun, database: str) -> DatabaseUpgradeResult:
        check_log = self.run_recorder.log_path(run, database, suffix=".check.log")
        try:
            pending = self.module_update_service.has_pending_updates(database, check_log)
        except UpgradeInterrupted:
            raise
        except (SupervisorError, OSError) as exc:
            logger.error("[FAIL] %s: could not check for updates.", database)
            self._log_tail(database, check_log, lines=10)
            return DatabaseUpgradeResult(database, UpgradeOutcome.FAILED, check_log, str(exc))

        if not pending:
            logger.info("[SKIP] %s: up-to-date.", database)
            return DatabaseUpgradeResult(database, UpgradeOutcome.SKIPPED_UP_TO_DATE, check_log)

        if run.dry_run:
            logger.info("[CHECK] %s: upgrades available.", database)
            return DatabaseUpgradeResult(database, UpgradeOutcome.PENDING, check_log)

        log_path = self.run_recorder.log_path(run, database)
        logger.info("Upgrading %s...", database)
        detail = None
        try:
            succeeded = self.module_update_service.apply_updates(database, log_path)
        except UpgradeInterrupted:
            raise
        except (SupervisorError, OSError) as exc:
            succeeded = False
            detail = str(exc)

        if succeeded:
            logger.info("[OK] %s: upgraded successfully.", database)
            return DatabaseUpgradeResult(database, UpgradeOutcome.SUCCEEDED, log_path)

        logger.error("[FAIL] %s: upgrade failed.", database)
        self._log_tail(database, log_path, lines=20)
        return DatabaseUpgradeResult(database, UpgradeOutcome.FAILED, log_path, detail)

    @staticmethod
    def _log_tail(database: str, log_path: str, lines: int):
        tail = read_log_tail(log_path, lines=lines)
        if not tail:
            return
        logger.error("--- Last %s lines from %s ---\n%s", len(tail), database, "\n".join(tail))
        logger.error("--- Full log: %s ---", log_path)

    def _report(self, run: UpgradeRun):
        self.console.print(f"[bold]Upgrade Summary:[/bold] {len(run.results)} database(s)")
        self.console.print(f"  Succeeded: {run.count(UpgradeOutcome.SUCCEEDED)}")
        self.console.print(f"  Skipped:   {run.count(UpgradeOutcome.SKIPPED_UP_TO_DATE)} (up-to-date)")
        if run.dry_run:
            self.console.print(f"  Pending:   {run.count(UpgradeOutcome.PENDING)}")
        self.console.print(f"  Failed:    {run.count(UpgradeOutcome.FAILED)}")

        if run.overall_status == UpgradeStatus.FAILED:
            self.console.print(
                "[bold red]Upgrade completed with failures. Odoo resumed with old code.[/bold red]"
            )
            logger.error(
                actionable_error(
                    "upgrade_failed",
                    databases=", ".join(run.failed_databases),
                    run_dir=run.run_dir or "",
                )
            )
        elif run.restart_required:
            self.console.print(
                "[green]All upgrades succeeded. Restart the container to load new code.[/green]"
            )
