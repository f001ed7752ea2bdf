import json
import os
from datetime import datetime, timedelta, timezone

import pytest

from odoosupervisor.errors import SupervisorError
from odoosupervisor.models import DatabaseUpgradeResult, UpgradeOutcome
from odoosupervisor.services.upgrade_runs import UpgradeRunRecorder


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class TickingClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


def test_finish_run_writes_result_and_latest_link(tmp_path):
    recorder = UpgradeRunRecorder(str(tmp_path), logger=DummyLogger(), clock=TickingClock())
    run = recorder.start_run()
    run.results.append(
        DatabaseUpgradeResult("alpha", UpgradeOutcome.SUCCEEDED, recorder.log_path(run, "alpha"))
    )
    run.results.append(DatabaseUpgradeResult("beta", UpgradeOutcome.FAILED, None, "boom"))

    recorder.finish_run(run)

    result = recorder.load_result(run.run_id)
    assert result["status"] == "FAILED"
    assert result["succeeded"] == 1
    assert result["failed_databases"] == ["beta"]
    assert result["databases"][0]["log"] == os.path.join(run.run_dir, "alpha.log")
    assert recorder.latest() == run.run_id
    assert json.loads((tmp_path / "latest" / "result.json").read_text())["run_id"] == run.run_id


def test_recorder_keeps_only_newest_runs(tmp_path):
    recorder = UpgradeRunRecorder(str(tmp_path), logger=DummyLogger(), keep=3, clock=TickingClock())

    run_ids = []
    for _ in range(4):
        run = recorder.start_run()
        recorder.finish_run(run)
        run_ids.append(run.run_id)

    assert recorder.list_runs() == run_ids[1:]
    assert recorder.latest() == run_ids[-1]
    assert not (tmp_path / run_ids[0]).exists()


def test_start_run_never_reuses_a_directory(tmp_path):
    fixed = datetime(2026, 1, 1, tzinfo=timezone.utc)
    recorder = UpgradeRunRecorder(str(tmp_path), logger=DummyLogger(), clock=lambda: fixed)

    first = recorder.start_run()
    second = recorder.start_run(dry_run=True)

    assert first.run_dir != second.run_dir
    assert second.dry_run is True
    assert second.run_id == f"{first.run_id}-1"


def test_start_run_reports_unwritable_log_dir(tmp_path):
    blocker = tmp_path / "upgrade-logs"
    blocker.write_text("not a directory", encoding="utf-8")
    recorder = UpgradeRunRecorder(str(blocker), logger=DummyLogger(), clock=TickingClock())

    with pytest.raises(SupervisorError, match="Could not create upgrade run directory"):
        recorder.start_run()


def test_list_runs_ignores_unrelated_entries(tmp_path):
    (tmp_path / "notes.txt").write_text("x", encoding="utf-8")
    (tmp_path / "other-dir").mkdir()

    recorder = UpgradeRunRecorder(str(tmp_path), logger=DummyLogger())

    assert recorder.list_runs() == []
    assert recorder.latest() is None
