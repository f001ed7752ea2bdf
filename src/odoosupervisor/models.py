"""Shared domain models for odoo-supervisor."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class LifecycleState(str, Enum):
    """Persisted phase indicator of the supervised application."""

    STARTING = "STARTING"
    INITIALIZING = "INITIALIZING"
    UPGRADING = "UPGRADING"
    UPGRADE_RETRY = "UPGRADE_RETRY"
    RUNNING = "RUNNING"
    UPGRADE_FAILED = "UPGRADE_FAILED"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["LifecycleState"]:
        if not value:
            return None
        try:
            return cls(value.strip())
        except ValueError:
            return None


TRANSITIONAL_STATES = frozenset(
    {
        LifecycleState.STARTING,
        LifecycleState.INITIALIZING,
        LifecycleState.UPGRADING,
        LifecycleState.UPGRADE_RETRY,
    }
)


@dataclass(frozen=True)
class ResourceReading:
    """Raw CPU/RAM ceilings visible to the container."""

    cpu_count: int
    ram_bytes: int


@dataclass(frozen=True)
class ResourceProfile:
    """Concurrency and memory tuning values derived from a reading."""

    cpu_count: int
    ram_bytes: int
    workers: int
    cron_threads: int
    mem_soft_bytes: int
    mem_hard_bytes: int

    def as_options(self) -> Dict[str, str]:
        return {
            "workers": str(self.workers),
            "max_cron_threads": str(self.cron_threads),
            "limit_memory_soft": str(self.mem_soft_bytes),
            "limit_memory_hard": str(self.mem_hard_bytes),
        }


@dataclass(frozen=True)
class ResourceOverrides:
    """Externally pinned profile fields; ``None`` means auto-derive."""

    workers: Optional[int] = None
    cron_threads: Optional[int] = None
    mem_soft_bytes: Optional[int] = None
    mem_hard_bytes: Optional[int] = None


class UpgradeOutcome(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    SKIPPED_UP_TO_DATE = "SKIPPED_UP_TO_DATE"
    PENDING = "PENDING"
    FAILED = "FAILED"


class UpgradeStatus(str, Enum):
    OK = "OK"
    FAILED = "FAILED"


@dataclass(frozen=True)
class DatabaseUpgradeResult:
    name: str
    outcome: UpgradeOutcome
    log_reference: Optional[str] = None
    detail: Optional[str] = None


@dataclass
class UpgradeRun:
    """One upgrade invocation and its per-database results."""

    run_id: str
    dry_run: bool = False
    results: List[DatabaseUpgradeResult] = field(default_factory=list)
    run_dir: Optional[str] = None

    @property
    def overall_status(self) -> UpgradeStatus:
        if any(result.outcome == UpgradeOutcome.FAILED for result in self.results):
            return UpgradeStatus.FAILED
        return UpgradeStatus.OK

    @property
    def failed_databases(self) -> List[str]:
        return [r.name for r in self.results if r.outcome == UpgradeOutcome.FAILED]

    def count(self, outcome: UpgradeOutcome) -> int:
        return sum(1 for result in self.results if result.outcome == outcome)

    @property
    def restart_required(self) -> bool:
        return self.overall_status == UpgradeStatus.OK and self.count(UpgradeOutcome.SUCCEEDED) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.overall_status.value,
            "dry_run": self.dry_run,
            "total": len(self.results),
            "succeeded": self.count(UpgradeOutcome.SUCCEEDED),
            "skipped": self.count(UpgradeOutcome.SKIPPED_UP_TO_DATE),
            "pending": self.count(UpgradeOutcome.PENDING),
            "failed": self.count(UpgradeOutcome.FAILED),
            "failed_databases": self.failed_databases,
            "databases": [
                {
                    "name": result.name,
                    "outcome": result.outcome.value,
                    "log": result.log_reference,
                    "detail": result.detail,
                }
                for result in self.results
            ],
        }


@dataclass(frozen=True)
class DatabaseConnection:
    """PostgreSQL access parameters taken from the declared ``db_*`` options."""

    host: str = "db"
    port: str = "5432"
    user: str = "odoo"
    password: str = "odoo"

    @classmethod
    def from_options(cls, options: Dict[str, str]) -> "DatabaseConnection":
        return cls(
            host=options.get("db_host") or cls.host,
            port=options.get("db_port") or cls.port,
            user=options.get("db_user") or cls.user,
            password=options.get("db_password") or cls.password,
        )
