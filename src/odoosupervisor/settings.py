"""Runtime settings resolved from the environment and optional YAML defaults."""

import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Mapping, Optional

from .constants import (
    DEFAULT_DATA_DIR,
    DEFAULT_ERP_CONF_PATH,
    DEFAULT_ODOO_PORT,
    DEFAULT_ODOO_SOURCE,
    DEFAULT_ODOO_VERSION,
    DEFAULT_UPGRADE_KEEP,
    DEFAULT_WATCHER_INTERVAL,
    MEMORY_SOFT_MAX_BYTES,
    MEMORY_SOFT_MIN_BYTES,
    STATE_FILE_NAME,
    UPGRADE_LOCK_NAME,
    UPGRADE_LOG_DIR_NAME,
)
from .errors import SupervisorError
from .models import ResourceOverrides

logger = logging.getLogger("odoosupervisor")

TRUE_VALUES = {"1", "true", "yes", "on"}


def _resolve_option(environ: Mapping[str, str], config: Mapping[str, Any], key: str, default=None):
    env_value = environ.get(key.upper())
    if env_value is not None and env_value != "":
        return env_value
    if key in config and config[key] is not None:
        return config[key]
    return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUE_VALUES


def _as_int(value: Any, name: str) -> int:
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise SupervisorError(f"{name} must be an integer, got '{value}'.") from exc


def _as_float(value: Any, name: str) -> float:
    try:
        return float(str(value).strip())
    except ValueError as exc:
        raise SupervisorError(f"{name} must be a number, got '{value}'.") from exc


def _override(value: Any, name: str) -> Optional[int]:
    if value is None or str(value).strip() == "":
        return None
    try:
        parsed = int(str(value).strip())
    except ValueError:
        logger.warning("Ignoring %s=%r: not an integer.", name, value)
        return None
    if parsed <= 0:
        logger.warning("Ignoring %s=%r: must be positive.", name, value)
        return None
    return parsed


@dataclass(frozen=True)
class SupervisorSettings:
    erp_conf_path: str = DEFAULT_ERP_CONF_PATH
    odoo_data_dir: str = DEFAULT_DATA_DIR
    odoo_source: str = DEFAULT_ODOO_SOURCE
    odoo_version: str = DEFAULT_ODOO_VERSION
    odoo_port: int = DEFAULT_ODOO_PORT
    puid: int = 1000
    pgid: int = 1000
    resource_watcher: bool = False
    resource_watcher_interval: float = DEFAULT_WATCHER_INTERVAL
    py_install: Optional[str] = None
    npm_install: Optional[str] = None
    initdb_options: Optional[str] = None
    auto_upgrade: bool = False
    upgrade_ignore_core: bool = True
    odoo_db_name: Optional[str] = None
    fix_report_url: bool = False
    upgrade_keep: int = DEFAULT_UPGRADE_KEEP
    upgrade_preflight_retries: int = 5
    upgrade_preflight_backoff_seconds: float = 2.0
    memory_soft_min: int = MEMORY_SOFT_MIN_BYTES
    memory_soft_max: int = MEMORY_SOFT_MAX_BYTES
    overrides: ResourceOverrides = ResourceOverrides()

    @property
    def state_file(self) -> str:
        return os.path.join(self.odoo_data_dir, STATE_FILE_NAME)

    @property
    def upgrade_log_dir(self) -> str:
        return os.path.join(self.odoo_data_dir, UPGRADE_LOG_DIR_NAME)

    @property
    def upgrade_lock_file(self) -> str:
        return os.path.join(self.odoo_data_dir, UPGRADE_LOCK_NAME)

    @property
    def health_url(self) -> str:
        return f"http://localhost:{self.odoo_port}/web/login"

    @classmethod
    def from_sources(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        config: Optional[Mapping[str, Any]] = None,
    ) -> "SupervisorSettings":
        environ = os.environ if environ is None else environ
        config = config or {}

        def opt(key, default=None):
            return _resolve_option(environ, config, key, default)

        memory_soft_min = _as_int(opt("memory_soft_min", MEMORY_SOFT_MIN_BYTES), "MEMORY_SOFT_MIN")
        memory_soft_max = _as_int(opt("memory_soft_max", MEMORY_SOFT_MAX_BYTES), "MEMORY_SOFT_MAX")
        if memory_soft_min > memory_soft_max:
            raise SupervisorError("MEMORY_SOFT_MIN must not exceed MEMORY_SOFT_MAX.")

        return cls(
            erp_conf_path=str(opt("erp_conf_path", DEFAULT_ERP_CONF_PATH)),
            odoo_data_dir=str(opt("odoo_data_dir", DEFAULT_DATA_DIR)),
            odoo_source=str(opt("odoo_source", DEFAULT_ODOO_SOURCE)),
            odoo_version=str(opt("odoo_version", DEFAULT_ODOO_VERSION)),
            odoo_port=_as_int(opt("odoo_port", DEFAULT_ODOO_PORT), "ODOO_PORT"),
            puid=_as_int(opt("puid", 1000), "PUID"),
            pgid=_as_int(opt("pgid", 1000), "PGID"),
            resource_watcher=_as_bool(opt("resource_watcher", False)),
            resource_watcher_interval=_as_float(
                opt("resource_watcher_interval", DEFAULT_WATCHER_INTERVAL),
                "RESOURCE_WATCHER_INTERVAL",
            ),
            py_install=opt("py_install"),
            npm_install=opt("npm_install"),
            initdb_options=opt("initdb_options"),
            auto_upgrade=_as_bool(opt("auto_upgrade", False)),
            upgrade_ignore_core=_as_bool(opt("upgrade_ignore_core", True)),
            odoo_db_name=opt("odoo_db_name"),
            fix_report_url=_as_bool(opt("fix_report_url", False)),
            upgrade_keep=_as_int(opt("upgrade_keep", DEFAULT_UPGRADE_KEEP), "UPGRADE_KEEP"),
            upgrade_preflight_retries=_as_int(
                opt("upgrade_preflight_retries", 5), "UPGRADE_PREFLIGHT_RETRIES"
            ),
            upgrade_preflight_backoff_seconds=_as_float(
                opt("upgrade_preflight_backoff_seconds", 2.0), "UPGRADE_PREFLIGHT_BACKOFF_SECONDS"
            ),
            memory_soft_min=memory_soft_min,
            memory_soft_max=memory_soft_max,
            overrides=ResourceOverrides(
                workers=_override(opt("workers"), "WORKERS"),
                cron_threads=_override(opt("max_cron_threads"), "MAX_CRON_THREADS"),
                mem_soft_bytes=_override(opt("limit_memory_soft"), "LIMIT_MEMORY_SOFT"),
                mem_hard_bytes=_override(opt("limit_memory_hard"), "LIMIT_MEMORY_HARD"),
            ),
        )


# YAML keys that pin a single ResourceProfile field instead of a settings field.
OVERRIDE_KEYS = ("workers", "max_cron_threads", "limit_memory_soft", "limit_memory_hard")

SETTINGS_KEYS = frozenset(
    [field.name for field in fields(SupervisorSettings) if field.name != "overrides"]
    + list(OVERRIDE_KEYS)
)
