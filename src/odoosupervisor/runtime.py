"""Wires settings into fully constructed services."""

import logging
import os
from typing import Mapping, Optional

import requests
from rich.console import Console

from .health import HealthReporter, http_probe
from .constants import RUN_AS_USER
from .models import DatabaseConnection
from .services.command_runner import CommandRunner
from .services.config_generator import ConfigGenerator, EnvironmentOptionSource
from .services.database import DatabaseService
from .services.filesystem import FileSystemService
from .services.module_update import ModuleUpdateService
from .services.packages import PackageService
from .services.processes import ProcessController, ProcessFinder
from .services.resources import ResourceDetector, ResourceTuner
from .services.state import FileStateStore
from .services.upgrade_runs import UpgradeRunRecorder
from .settings import SupervisorSettings
from .supervisor import ProcessSupervisor
from .upgrade import UpgradeCoordinator, UpgradeLock

console = Console(stderr=True)
logger = logging.getLogger("odoosupervisor")


def _run_as() -> list:
    return ["gosu", RUN_AS_USER] if os.geteuid() == 0 else []


def build_state_store(settings: SupervisorSettings) -> FileStateStore:
    return FileStateStore(settings.state_file, logger=logger)


def build_database_service(
    settings: SupervisorSettings,
    environ: Optional[Mapping[str, str]] = None,
    command_runner: Optional[CommandRunner] = None,
) -> DatabaseService:
    options = EnvironmentOptionSource(environ).options()
    command_runner = command_runner or CommandRunner(logger=logger)
    return DatabaseService(
        connection=DatabaseConnection.from_options(options),
        run_cmd=command_runner.run,
        logger=logger,
        run_as=_run_as(),
    )


def build_upgrade_coordinator(
    settings: SupervisorSettings,
    environ: Optional[Mapping[str, str]] = None,
    state_store: Optional[FileStateStore] = None,
) -> UpgradeCoordinator:
    command_runner = CommandRunner(logger=logger)
    return UpgradeCoordinator(
        state_store=state_store or build_state_store(settings),
        process_finder=ProcessFinder(),
        process_controller=ProcessController(logger=logger),
        database_service=build_database_service(settings, environ, command_runner),
        module_update_service=ModuleUpdateService(
            conf_path=settings.erp_conf_path,
            run_cmd=command_runner.run,
            logger=logger,
            run_as=_run_as(),
            ignore_core_addons=settings.upgrade_ignore_core,
        ),
        run_recorder=UpgradeRunRecorder(
            settings.upgrade_log_dir, logger=logger, keep=settings.upgrade_keep
        ),
        console=console,
        lock=UpgradeLock(settings.upgrade_lock_file),
        preflight_retries=settings.upgrade_preflight_retries,
        preflight_backoff_seconds=settings.upgrade_preflight_backoff_seconds,
    )


def build_health_reporter(settings: SupervisorSettings) -> HealthReporter:
    finder = ProcessFinder()
    return HealthReporter(
        state_store=build_state_store(settings),
        process_alive=finder.is_alive,
        endpoint_alive=lambda: http_probe(settings.health_url, requests_module=requests),
    )


def build_supervisor(
    settings: SupervisorSettings,
    environ: Optional[Mapping[str, str]] = None,
) -> ProcessSupervisor:
    command_runner = CommandRunner(logger=logger)
    state_store = build_state_store(settings)
    return ProcessSupervisor(
        settings=settings,
        state_store=state_store,
        option_source=EnvironmentOptionSource(environ),
        detector=ResourceDetector(logger=logger),
        tuner=ResourceTuner(
            logger=logger,
            mem_soft_min=settings.memory_soft_min,
            mem_soft_max=settings.memory_soft_max,
        ),
        config_generator=ConfigGenerator(settings.odoo_version, logger=logger),
        filesystem_service=FileSystemService(logger=logger, run_cmd=command_runner.run),
        package_service=PackageService(run_cmd=command_runner.run, logger=logger),
        database_service=build_database_service(settings, environ, command_runner),
        upgrade_coordinator=build_upgrade_coordinator(settings, environ, state_store),
        console=console,
    )
