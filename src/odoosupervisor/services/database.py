"""Database discovery and maintenance services for odoo-supervisor."""

import shlex
from typing import Callable, List, Optional, Sequence

from odoosupervisor.constants import SYSTEM_DATABASES
from odoosupervisor.errors import SupervisorError
from odoosupervisor.models import DatabaseConnection

LIST_DATABASES_QUERY = (
    "SELECT datname FROM pg_database WHERE datname NOT IN ({excluded}) ORDER BY datname;"
)
REPORT_URL_QUERY = (
    "INSERT INTO ir_config_parameter (key, value, create_uid, write_uid, create_date, write_date) "
    "VALUES ('report.url', '{url}', 1, 1, now(), now()) "
    "ON CONFLICT (key) DO UPDATE SET value = '{url}', write_date = now();"
)


class DatabaseService:
    """Talks to PostgreSQL through ``psql`` and runs Odoo database helpers."""

    def __init__(
        self,
        connection: DatabaseConnection,
        run_cmd: Callable,
        logger,
        run_as: Sequence[str] = (),
        timeout: float = 30.0,
    ):
        self.connection = connection
        self.run_cmd = run_cmd
        self.logger = logger
        self.run_as = list(run_as)
        self.timeout = timeout

    def _psql(self, database: str, query: str) -> List[str]:
        return [
            "psql",
            "-h",
            self.connection.host,
            "-p",
            str(self.connection.port),
            "-U",
            self.connection.user,
            "-d",
            database,
            "-t",
            "-A",
            "-c",
            query,
        ]

    def _env(self):
        return {"PGPASSWORD": self.connection.password}

    def ping(self) -> bool:
        try:
            result = self.run_cmd(
                self._psql("postgres", "SELECT 1;"),
                check=False,
                capture_output=True,
                env=self._env(),
                timeout=self.timeout,
            )
        except SupervisorError as exc:
            self.logger.debug("Database ping failed: %s", exc)
            return False
        return result.returncode == 0

    def list_databases(self) -> List[str]:
        """Returns every non-system database, or an empty list on failure."""
        excluded = ", ".join(f"'{name}'" for name in SYSTEM_DATABASES)
        query = LIST_DATABASES_QUERY.format(excluded=excluded)
        try:
            result = self.run_cmd(
                self._psql("postgres", query),
                check=False,
                capture_output=True,
                env=self._env(),
                timeout=self.timeout,
            )
        except SupervisorError as exc:
            self.logger.warning("Database discovery failed: %s", exc)
            return []

        if result.returncode != 0:
            self.logger.warning(
                "Database discovery query failed (%s): %s",
                result.returncode,
                (result.stderr or "").strip(),
            )
            return []

        return [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]

    def initialize_database(self, conf_path: str, initdb_options: Optional[str]) -> bool:
        if not initdb_options:
            self.logger.info("INITDB_OPTIONS not set, skipping database initialization.")
            return True

        self.logger.info("Running click-odoo-initdb with options: %s...", initdb_options)
        cmd = self.run_as + ["click-odoo-initdb", "-c", conf_path] + shlex.split(initdb_options)
        result = self.run_cmd(cmd, check=False, capture_output=True)
        if result.returncode == 0:
            self.logger.info("Database initialization completed successfully.")
            return True

        self.logger.warning(
            "click-odoo-initdb exited with code %s. This may be normal if the database "
            "already exists.",
            result.returncode,
        )
        return False

    def fix_report_url(self, port: int, databases: Optional[List[str]] = None) -> List[str]:
        """Points ``report.url`` at the local HTTP port; returns the fixed databases."""
        report_url = f"http://localhost:{port}"
        targets = self.list_databases() if databases is None else databases
        if not targets:
            self.logger.info("No databases found, skipping report.url fix.")
            return []

        fixed = []
        for db_name in targets:
            try:
                result = self.run_cmd(
                    self._psql(db_name, REPORT_URL_QUERY.format(url=report_url)),
                    check=False,
                    capture_output=True,
                    env=self._env(),
                    timeout=self.timeout,
                )
            except SupervisorError as exc:
                self.logger.warning("Could not set report.url for %s: %s", db_name, exc)
                continue

            if result.returncode == 0:
                self.logger.info("  report.url = %s -> %s", report_url, db_name)
                fixed.append(db_name)
            else:
                self.logger.warning("  Could not set report.url for %s (new database?)", db_name)
        return fixed
