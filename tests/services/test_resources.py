import pytest

from odoosupervisor.constants import FALLBACK_RAM_BYTES, GIB, MIB
from odoosupervisor.models import ResourceOverrides, ResourceReading
from odoosupervisor.services.resources import (
    CGROUP_V1_UNLIMITED_BYTES,
    ResourceDetector,
    ResourceTuner,
    parse_cpuset,
)


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None


def _write(root, relative, content):
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _detector(root, cpus=8, ram=16 * GIB):
    return ResourceDetector(
        cgroup_root=str(root),
        logger=DummyLogger(),
        host_cpu_count=lambda: cpus,
        host_ram_bytes=lambda: ram,
    )


@pytest.mark.parametrize(
    "cpuset,expected",
    [("0-3", 4), ("0,2,4", 3), ("0-1,4-5", 4), ("7", 1), ("0-3\n", 4)],
)
def test_parse_cpuset_counts_cpus(cpuset, expected):
    assert parse_cpuset(cpuset) == expected


def test_parse_cpuset_rejects_reversed_range():
    with pytest.raises(ValueError):
        parse_cpuset("3-1")


def test_detector_uses_cgroup_v2_quota_rounded_up(tmp_path):
    _write(tmp_path, "cpu.max", "150000 100000\n")
    _write(tmp_path, "memory.max", str(2 * GIB))

    reading = _detector(tmp_path).detect()

    assert reading == ResourceReading(cpu_count=2, ram_bytes=2 * GIB)


def test_detector_falls_back_to_v2_cpuset_when_quota_is_unlimited(tmp_path):
    _write(tmp_path, "cpu.max", "max 100000")
    _write(tmp_path, "cpuset.cpus.effective", "0-2")

    assert _detector(tmp_path).detect_cpu_count() == 3


def test_detector_reads_cgroup_v1_quota_and_cpuset(tmp_path):
    _write(tmp_path, "cpu/cpu.cfs_quota_us", "-1")
    _write(tmp_path, "cpu/cpu.cfs_period_us", "100000")
    _write(tmp_path, "cpuset/cpuset.cpus", "0,1")

    assert _detector(tmp_path).detect_cpu_count() == 2

    _write(tmp_path, "cpu/cpu.cfs_quota_us", "400000")

    assert _detector(tmp_path).detect_cpu_count() == 4


def test_detector_uses_host_values_without_cgroup_limits(tmp_path):
    reading = _detector(tmp_path, cpus=6, ram=8 * GIB).detect()

    assert reading == ResourceReading(cpu_count=6, ram_bytes=8 * GIB)


def test_detector_ignores_cgroup_v1_unlimited_sentinel(tmp_path):
    _write(tmp_path, "memory.max", "max")
    _write(tmp_path, "memory/memory.limit_in_bytes", str(CGROUP_V1_UNLIMITED_BYTES))

    assert _detector(tmp_path, ram=4 * GIB).detect_ram_bytes() == 4 * GIB


def test_detector_reads_cgroup_v1_memory_limit(tmp_path):
    _write(tmp_path, "memory/memory.limit_in_bytes", str(3 * GIB))

    assert _detector(tmp_path).detect_ram_bytes() == 3 * GIB


def test_detector_never_fails_on_garbage(tmp_path):
    _write(tmp_path, "cpu.max", "garbage")
    _write(tmp_path, "cpuset.cpus.effective", "a-b")
    _write(tmp_path, "memory.max", "lots")

    def broken():
        raise OSError("no /proc")

    detector = ResourceDetector(
        cgroup_root=str(tmp_path),
        logger=DummyLogger(),
        host_cpu_count=lambda: None,
        host_ram_bytes=broken,
    )

    assert detector.detect() == ResourceReading(cpu_count=1, ram_bytes=FALLBACK_RAM_BYTES)


def test_tuner_derives_workers_and_cron_threads():
    tuner = ResourceTuner(logger=DummyLogger())

    small = tuner.compute(ResourceReading(cpu_count=1, ram_bytes=2 * GIB))
    large = tuner.compute(ResourceReading(cpu_count=4, ram_bytes=16 * GIB))

    assert (small.workers, small.cron_threads) == (2, 1)
    assert (large.workers, large.cron_threads) == (8, 2)


def test_tuner_memory_formula_and_hard_ratio():
    tuner = ResourceTuner(logger=DummyLogger())
    ram = 4 * GIB

    profile = tuner.compute(ResourceReading(cpu_count=2, ram_bytes=ram))

    expected_soft = (ram // 100 * 85) // (4 + 1)
    assert profile.mem_soft_bytes == expected_soft
    assert profile.mem_hard_bytes == round(expected_soft * 1.3)


@pytest.mark.parametrize(
    "cpus,ram",
    [(1, 256 * MIB), (64, 512 * MIB), (1, 512 * GIB), (2, 2 * GIB), (16, 64 * GIB)],
)
def test_tuner_keeps_soft_limit_in_band(cpus, ram):
    profile = ResourceTuner(logger=DummyLogger()).compute(ResourceReading(cpus, ram))

    assert profile.workers >= 2
    assert 128 * MIB <= profile.mem_soft_bytes <= 2560 * MIB
    assert profile.mem_hard_bytes > profile.mem_soft_bytes


def test_tuner_honours_overrides():
    overrides = ResourceOverrides(workers=3, cron_threads=4, mem_soft_bytes=500 * MIB)

    profile = ResourceTuner(logger=DummyLogger()).compute(
        ResourceReading(cpu_count=8, ram_bytes=32 * GIB), overrides
    )

    assert profile.workers == 3
    assert profile.cron_threads == 4
    assert profile.mem_soft_bytes == 500 * MIB
    assert profile.mem_hard_bytes == round(500 * MIB * 1.3)


def test_tuner_declared_options_win_over_overrides():
    overrides = ResourceOverrides(workers=3)

    profile = ResourceTuner(logger=DummyLogger()).compute(
        ResourceReading(cpu_count=1, ram_bytes=8 * GIB), overrides, {"workers": "10"}
    )

    assert profile.workers == 10
    assert profile.cron_threads == 2
    assert profile.mem_soft_bytes == (8 * GIB // 100 * 85) // 12


def test_tuner_rejects_inverted_band():
    with pytest.raises(ValueError):
        ResourceTuner(logger=DummyLogger(), mem_soft_min=2 * GIB, mem_soft_max=GIB)
