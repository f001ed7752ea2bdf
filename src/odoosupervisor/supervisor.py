"""Startup phase sequencer and supervised Odoo process management."""

import logging
import os
import signal
import subprocess
import threading
from typing import Callable, List, Optional, Sequence, Tuple

from rich.console import Console

from .constants import APPLICATION_BINARY, DIR_MODE, EXTRA_ADDONS_DIR, RUN_AS_USER
from .errors import FatalStartupError, SupervisorError
from .errors_catalog import actionable_error
from .models import LifecycleState, ResourceProfile, ResourceReading, UpgradeStatus
from .services.processes import ManagedProcess
from .watcher import ResourceWatcher

logger = logging.getLogger("odoosupervisor")

ODOO_COMMANDS = ("odoo", APPLICATION_BINARY)
FORWARDED_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGQUIT)


def normalize_exit_code(returncode: int) -> int:
    """Maps a Popen return code to a shell-style exit status."""
    if returncode < 0:
        return 128 - returncode
    return returncode


class ProcessSupervisor:
    """Runs the startup phases and then hands over to, or supervises, Odoo.

    Phases: STARTING (permissions, resources, configuration, packages),
    INITIALIZING (database initialization), UPGRADING (automatic module
    upgrade, report.url fix) and RUNNING (application launch). Every phase is
    safe to re-enter after a crash; only a failed launch is fatal.
    """

    def __init__(
        self,
        settings,
        state_store,
        option_source,
        detector,
        tuner,
        config_generator,
        filesystem_service,
        package_service,
        database_service,
        upgrade_coordinator=None,
        console: Optional[Console] = None,
        is_root: Optional[bool] = None,
        execvp: Callable = os.execvp,
        popen=subprocess.Popen,
        python_executable: str = "python",
    ):
        self.settings = settings
        self.state_store = state_store
        self.option_source = option_source
        self.detector = detector
        self.tuner = tuner
        self.config_generator = config_generator
        self.filesystem_service = filesystem_service
        self.package_service = package_service
        self.database_service = database_service
        self.upgrade_coordinator = upgrade_coordinator
        self.console = console or Console(stderr=True)
        self.is_root = os.geteuid() == 0 if is_root is None else is_root
        self.execvp = execvp
        self.popen = popen
        self.python_executable = python_executable

        self.profile: Optional[ResourceProfile] = None
        self.last_reading: Optional[ResourceReading] = None
        self.child: Optional[ManagedProcess] = None
        self.watcher: Optional[ResourceWatcher] = None

    @property
    def run_as(self) -> List[str]:
        return ["gosu", RUN_AS_USER] if self.is_root else []

    def set_state(self, state: LifecycleState):
        try:
            self.state_store.set(state)
        except SupervisorError as exc:
            logger.warning("Could not record state %s: %s", state.value, exc)

    def _recoverable(self, description: str, callback, *args, **kwargs):
        try:
            return callback(*args, **kwargs)
        except (SupervisorError, OSError) as exc:
            logger.warning("%s failed, continuing: %s", description, exc)
            return None

    # STARTING

    def setup_user_permissions(self):
        if not self.is_root:
            logger.warning("Not running as root, skipping user and permission setup.")
            return

        logger.info(
            "Setting up user permissions (PUID=%s, PGID=%s)...",
            self.settings.puid,
            self.settings.pgid,
        )
        self.filesystem_service.align_user_ids(RUN_AS_USER, self.settings.puid, self.settings.pgid)
        os.makedirs(self.settings.odoo_data_dir, exist_ok=True)
        self.filesystem_service.set_permissions(self.settings.odoo_data_dir, DIR_MODE)
        self.filesystem_service.fix_ownership(
            [
                self.settings.odoo_data_dir,
                os.path.dirname(self.settings.erp_conf_path),
                EXTRA_ADDONS_DIR,
            ],
            RUN_AS_USER,
        )

    def reconfigure(self, reading: Optional[ResourceReading] = None) -> ResourceProfile:
        """Recomputes resources and regenerates the configuration file."""
        logger.info("Computing resource allocation...")
        reading = reading or self.detector.detect()
        declared = self.option_source.options()
        profile = self.tuner.compute(reading, self.settings.overrides, declared)

        logger.info("Generating Odoo configuration at %s...", self.settings.erp_conf_path)
        document = self.config_generator.generate(declared, profile)
        try:
            self.config_generator.write(document, self.settings.erp_conf_path)
        except SupervisorError as exc:
            raise FatalStartupError(str(exc)) from exc
        if self.is_root:
            self.filesystem_service.fix_ownership([self.settings.erp_conf_path], RUN_AS_USER)

        self.last_reading = reading
        self.profile = profile
        return profile

    def install_packages(self):
        self._recoverable(
            "Python package installation",
            self.package_service.ensure_python_packages,
            self.settings.py_install,
        )
        self._recoverable(
            "NPM package installation",
            self.package_service.ensure_npm_packages,
            self.settings.npm_install,
        )

    def starting_phase(self):
        self.set_state(LifecycleState.STARTING)
        self._recoverable("User and permission setup", self.setup_user_permissions)
        self.reconfigure()
        self.install_packages()

    # INITIALIZING

    def initializing_phase(self):
        self.set_state(LifecycleState.INITIALIZING)
        self._recoverable(
            "Database initialization",
            self.database_service.initialize_database,
            self.settings.erp_conf_path,
            self.settings.initdb_options,
        )

    # UPGRADING

    def run_auto_upgrade(self):
        if not self.settings.auto_upgrade:
            logger.info("AUTO_UPGRADE is not TRUE, skipping automatic upgrade.")
            return None
        if self.upgrade_coordinator is None:
            logger.warning("AUTO_UPGRADE is set but no upgrade coordinator is configured.")
            return None

        run = self.upgrade_coordinator.run(target_database=self.settings.odoo_db_name)
        if run.overall_status == UpgradeStatus.FAILED:
            logger.warning(
                "Automatic upgrade failed for %s. Starting with the installed code; see %s.",
                ", ".join(run.failed_databases),
                run.run_dir,
            )
        return run

    def fix_report_url(self):
        if not self.settings.fix_report_url:
            logger.info("FIX_REPORT_URL is not TRUE, skipping report.url fix.")
            return None
        return self.database_service.fix_report_url(self.settings.odoo_port)

    def upgrading_phase(self):
        self.set_state(LifecycleState.UPGRADING)
        self._recoverable("Automatic upgrade", self.run_auto_upgrade)
        self._recoverable("report.url fix", self.fix_report_url)

    # RUNNING

    def build_command(self, args: Sequence[str]) -> Tuple[List[str], bool]:
        """Returns the command to run and whether it is the Odoo server."""
        args = list(args)
        if not args or args[0] in ODOO_COMMANDS:
            extra = args[1:]
        elif args[0].startswith("-"):
            extra = args
        else:
            return self.run_as + args, False

        command = self.run_as + [
            self.python_executable,
            APPLICATION_BINARY,
            "-c",
            self.settings.erp_conf_path,
        ]
        return command + extra, True

    def launch(self, args: Sequence[str] = ()) -> int:
        self.set_state(LifecycleState.RUNNING)
        command, is_odoo = self.build_command(args)

        if not is_odoo:
            logger.info("Executing custom command: %s", " ".join(args))
            return self._exec(command, cwd=None)

        logger.info("Starting Odoo %s...", self.settings.odoo_version)
        if self.settings.resource_watcher:
            logger.info("Resource watcher enabled - running in managed process mode")
            return self.run_managed(command)
        return self._exec(command, cwd=self.settings.odoo_source)

    def _exec(self, command: List[str], cwd: Optional[str]) -> int:
        try:
            if cwd:
                os.chdir(cwd)
            self.execvp(command[0], command)
        except OSError as exc:
            raise FatalStartupError(
                actionable_error("launch_failed", command=" ".join(command), reason=str(exc))
            ) from exc
        return 0

    def run_managed(self, command: List[str]) -> int:
        self.child = ManagedProcess(
            command, logger=logger, cwd=self.settings.odoo_source, popen=self.popen
        )
        try:
            self.child.start()
        except OSError as exc:
            raise FatalStartupError(
                actionable_error("launch_failed", command=" ".join(command), reason=str(exc))
            ) from exc

        self.watcher = ResourceWatcher(
            self.detector,
            on_change=self._on_resource_change,
            interval=self.settings.resource_watcher_interval,
            initial=self.last_reading,
        )
        previous_handlers = self._install_signal_handlers()
        self.watcher.start()
        try:
            returncode = self.child.wait()
        finally:
            self.watcher.stop()
            self.watcher.join()
            self._restore_signal_handlers(previous_handlers)

        exit_code = normalize_exit_code(returncode)
        logger.info("Odoo exited with code %s", exit_code)
        return exit_code

    def _on_resource_change(self, reading: ResourceReading):
        self.reconfigure(reading)
        if self.child is not None:
            self.child.restart()

    def shutdown(self, signum=None, _frame=None):
        logger.info("Received shutdown signal%s", f" {signum}" if signum else "")
        if self.watcher is not None:
            self.watcher.stop()
        if self.child is not None:
            self.child.terminate()

    def _install_signal_handlers(self):
        if threading.current_thread() is not threading.main_thread():
            return {}
        previous = {}
        for signum in FORWARDED_SIGNALS:
            previous[signum] = signal.signal(signum, self.shutdown)
        return previous

    @staticmethod
    def _restore_signal_handlers(previous):
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    def run(self, args: Sequence[str] = ()) -> int:
        self.console.print(
            f"[bold blue]Odoo {self.settings.odoo_version} supervisor starting...[/bold blue]"
        )
        self.starting_phase()
        self.initializing_phase()
        self.upgrading_phase()
        return self.launch(args)
