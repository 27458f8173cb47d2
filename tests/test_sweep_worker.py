import asyncio
import errno
import shutil

from appdeck.core import filesystem
from appdeck.workers.sweep_worker import SweepWorker


def _locked_marker(projects_dir, monkeypatch):
    app_dir = projects_dir / "busy"
    app_dir.mkdir(parents=True)
    marked = filesystem.mark_for_deletion(app_dir)
    real_rmtree = shutil.rmtree

    def fake_rmtree(target, *args, **kwargs):
        if str(target) == str(marked):
            raise OSError(errno.EBUSY, "simulated")
        return real_rmtree(target, *args, **kwargs)

    monkeypatch.setattr(shutil, "rmtree", fake_rmtree)
    return marked


def test_run_once_cleans_marked_entries(service, projects_dir) -> None:
    async def run_test() -> None:
        app_dir = projects_dir / "old"
        app_dir.mkdir(parents=True)
        marked = filesystem.mark_for_deletion(app_dir)
        worker = SweepWorker(service, interval=0.01)

        result = await worker.run_once()

        assert result.cleaned == 1
        assert not marked.exists()
        assert worker.last_result["cleaned"] == 1

    asyncio.run(run_test())


def test_locked_entry_is_abandoned_after_max_attempts(service, projects_dir, monkeypatch, caplog) -> None:
    async def run_test() -> None:
        marked = _locked_marker(projects_dir, monkeypatch)
        worker = SweepWorker(service, interval=0.01, max_attempts=2)

        first = await worker.run_once()
        second = await worker.run_once()
        third = await worker.run_once()

        assert first.still_locked == [str(marked)]
        assert second.still_locked == [str(marked)]
        assert third.still_locked == []
        assert third.abandoned == [str(marked)]
        assert marked.exists()
        assert "abandon" in caplog.text

    asyncio.run(run_test())


def test_unbounded_attempts_keep_retrying(service, projects_dir, monkeypatch) -> None:
    async def run_test() -> None:
        marked = _locked_marker(projects_dir, monkeypatch)
        worker = SweepWorker(service, interval=0.01, max_attempts=None)

        for _ in range(3):
            result = await worker.run_once()

        assert result.still_locked == [str(marked)]
        assert worker.failures[str(marked)] == 3

    asyncio.run(run_test())


def test_start_and_stop_loop(service) -> None:
    async def run_test() -> None:
        worker = SweepWorker(service, interval=0.01)
        task = asyncio.create_task(worker.start())

        await asyncio.sleep(0.05)
        assert worker.is_healthy()
        assert worker._task is task

        worker.stop()
        await asyncio.wait_for(task, timeout=1.0)
        assert not worker.is_healthy()
        assert worker.last_result["timestamp"] is not None

    asyncio.run(run_test())
