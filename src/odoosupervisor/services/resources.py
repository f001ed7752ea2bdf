"""Container CPU/RAM detection and resource tuning."""

import math
import os
from typing import Callable, Mapping, Optional

import psutil

from odoosupervisor.constants import (
    FALLBACK_RAM_BYTES,
    MEMORY_HARD_RATIO,
    MEMORY_RAM_PERCENT,
    MEMORY_SOFT_MAX_BYTES,
    MEMORY_SOFT_MIN_BYTES,
    MIB,
)
from odoosupervisor.models import ResourceOverrides, ResourceProfile, ResourceReading

# cgroup v1 reports roughly 9.2 EB when no memory limit is set.
CGROUP_V1_UNLIMITED_BYTES = 9223372036854771712


def parse_cpuset(cpuset: str) -> int:
    """Counts the CPUs in a list such as ``0-3``, ``0,2,4`` or ``0-1,4-5``."""
    count = 0
    for chunk in cpuset.strip().split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        if "-" in chunk:
            start, end = chunk.split("-", 1)
            first, last = int(start), int(end)
            if last < first:
                raise ValueError(f"Invalid cpuset range: {chunk}")
            count += last - first + 1
        else:
            int(chunk)
            count += 1
    return count


class ResourceDetector:
    """Reads the CPU and memory ceilings visible to the container.

    Sources are tried in priority order and the first usable one wins; any
    missing file, unparsable value or "unlimited" sentinel falls through to
    the next source, so ``detect`` never fails.
    """

    def __init__(
        self,
        cgroup_root: str = "/sys/fs/cgroup",
        logger=None,
        host_cpu_count: Optional[Callable[[], Optional[int]]] = None,
        host_ram_bytes: Optional[Callable[[], Optional[int]]] = None,
    ):
        self.cgroup_root = cgroup_root
        self.logger = logger
        self.host_cpu_count = host_cpu_count or os.cpu_count
        self.host_ram_bytes = host_ram_bytes or (lambda: psutil.virtual_memory().total)

    def detect(self) -> ResourceReading:
        return ResourceReading(cpu_count=self.detect_cpu_count(), ram_bytes=self.detect_ram_bytes())

    def detect_cpu_count(self) -> int:
        sources = (
            ("cgroup v2 cpu.max", self._cpu_from_v2_quota),
            ("cgroup v2 cpuset", lambda: self._cpu_from_cpuset("cpuset.cpus.effective")),
            ("cgroup v1 cfs quota", self._cpu_from_v1_quota),
            ("cgroup v1 cpuset", lambda: self._cpu_from_cpuset(os.path.join("cpuset", "cpuset.cpus"))),
        )
        for label, source in sources:
            cpus = self._try(source)
            if cpus and cpus > 0:
                self._debug("CPU count %s from %s", cpus, label)
                return cpus

        cpus = self._try(self.host_cpu_count)
        return cpus if cpus and cpus > 0 else 1

    def detect_ram_bytes(self) -> int:
        sources = (
            ("cgroup v2 memory.max", self._ram_from_v2),
            ("cgroup v1 memory limit", self._ram_from_v1),
            ("host memory", self.host_ram_bytes),
        )
        for label, source in sources:
            ram = self._try(source)
            if ram and ram > 0:
                self._debug("RAM %s bytes from %s", ram, label)
                return ram
        return FALLBACK_RAM_BYTES

    def _cpu_from_v2_quota(self) -> Optional[int]:
        content = self._read("cpu.max")
        if content is None:
            return None
        parts = content.split()
        if len(parts) != 2 or parts[0] == "max":
            return None
        quota, period = int(parts[0]), int(parts[1])
        if quota <= 0 or period <= 0:
            return None
        return math.ceil(quota / period)

    def _cpu_from_v1_quota(self) -> Optional[int]:
        quota = self._read(os.path.join("cpu", "cpu.cfs_quota_us"))
        period = self._read(os.path.join("cpu", "cpu.cfs_period_us"))
        if quota is None or period is None:
            return None
        quota_us, period_us = int(quota), int(period)
        # -1 means no quota
        if quota_us <= 0 or period_us <= 0:
            return None
        return math.ceil(quota_us / period_us)

    def _cpu_from_cpuset(self, relative_path: str) -> Optional[int]:
        content = self._read(relative_path)
        if not content:
            return None
        return parse_cpuset(content)

    def _ram_from_v2(self) -> Optional[int]:
        content = self._read("memory.max")
        if content is None or content == "max":
            return None
        return int(content)

    def _ram_from_v1(self) -> Optional[int]:
        content = self._read(os.path.join("memory", "memory.limit_in_bytes"))
        if content is None:
            return None
        limit = int(content)
        if limit >= CGROUP_V1_UNLIMITED_BYTES:
            return None
        return limit

    def _read(self, relative_path: str) -> Optional[str]:
        path = os.path.join(self.cgroup_root, relative_path)
        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                return file_obj.read().strip()
        except OSError:
            return None

    def _try(self, source: Callable[[], Optional[int]]) -> Optional[int]:
        try:
            return source()
        except (ValueError, OSError, psutil.Error) as exc:
            self._debug("Resource source skipped: %s", exc)
            return None

    def _debug(self, message: str, *args):
        if self.logger:
            self.logger.debug(message, *args)


def _declared_int(declared: Mapping[str, str], key: str) -> Optional[int]:
    value = declared.get(key)
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class ResourceTuner:
    """Turns a resource reading into a ResourceProfile."""

    def __init__(
        self,
        logger,
        mem_soft_min: int = MEMORY_SOFT_MIN_BYTES,
        mem_soft_max: int = MEMORY_SOFT_MAX_BYTES,
    ):
        if mem_soft_min > mem_soft_max:
            raise ValueError("mem_soft_min must not exceed mem_soft_max")
        self.logger = logger
        self.mem_soft_min = mem_soft_min
        self.mem_soft_max = mem_soft_max

    def compute(
        self,
        reading: ResourceReading,
        overrides: Optional[ResourceOverrides] = None,
        declared: Optional[Mapping[str, str]] = None,
    ) -> ResourceProfile:
        overrides = overrides or ResourceOverrides()
        declared = declared or {}
        ram_mb = reading.ram_bytes // MIB
        self.logger.info(
            "Detected: %s CPU(s), %sMB RAM (~%sGB)", reading.cpu_count, ram_mb, ram_mb // 1024
        )

        workers = _declared_int(declared, "workers")
        if workers is not None:
            self.logger.info("  Workers: %s (declared option)", workers)
        elif overrides.workers is not None:
            workers = overrides.workers
            self.logger.info("  Workers: %s (from WORKERS)", workers)
        else:
            workers = max(reading.cpu_count * 2, 2)
            self.logger.info("  Workers: %s (auto: CPU*2)", workers)

        cron_threads = _declared_int(declared, "max_cron_threads")
        if cron_threads is None and overrides.cron_threads is not None:
            cron_threads = overrides.cron_threads
        if cron_threads is None:
            cron_threads = 2 if workers >= 6 else 1
        self.logger.info("  Cron threads: %s", cron_threads)

        total_procs = max(workers + cron_threads, 1)
        mem_soft = _declared_int(declared, "limit_memory_soft")
        if mem_soft is None and overrides.mem_soft_bytes is not None:
            mem_soft = overrides.mem_soft_bytes
        if mem_soft is None:
            mem_soft = (reading.ram_bytes // 100 * MEMORY_RAM_PERCENT) // total_procs
            mem_soft = min(max(mem_soft, self.mem_soft_min), self.mem_soft_max)
            self.logger.info(
                "  Memory soft: %sMB/worker (auto: %s%% RAM / %s procs)",
                mem_soft // MIB,
                MEMORY_RAM_PERCENT,
                total_procs,
            )

        if overrides.mem_hard_bytes is not None:
            mem_hard = overrides.mem_hard_bytes
        else:
            mem_hard = round(mem_soft * MEMORY_HARD_RATIO)
        self.logger.info("  Memory hard: %sMB/worker", mem_hard // MIB)

        return ResourceProfile(
            cpu_count=reading.cpu_count,
            ram_bytes=reading.ram_bytes,
            workers=workers,
            cron_threads=cron_threads,
            mem_soft_bytes=mem_soft,
            mem_hard_bytes=mem_hard,
        )
