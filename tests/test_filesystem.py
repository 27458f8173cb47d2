import errno
import shutil
import threading
import time
from pathlib import Path

import pytest

from appdeck.core import filesystem
from appdeck.core.exceptions import DirectoryRemovalError, LockedResourceError
from appdeck.core.filesystem import Active, Marked


def _make_app_dir(base: Path, name: str) -> Path:
    path = base / name
    path.mkdir(parents=True)
    (path / "server.js").write_text("console.log('ok')")
    return path


def _rmtree_failing_for(paths, err):
    """rmtree qui échoue avec `err` pour les chemins donnés"""
    real_rmtree = shutil.rmtree
    blocked = {str(p) for p in paths}

    def fake_rmtree(path, *args, **kwargs):
        if str(path) in blocked:
            raise OSError(err, "simulated")
        return real_rmtree(path, *args, **kwargs)

    return fake_rmtree


class TestClassify:
    def test_active(self, tmp_path) -> None:
        assert filesystem.classify(tmp_path / "blog") == Active(path=tmp_path / "blog")

    def test_marked(self, tmp_path) -> None:
        state = filesystem.classify(tmp_path / ".deleted-my-blog-1700000000000000000")

        assert isinstance(state, Marked)
        assert state.original_name == "my-blog"
        assert state.since == 1700000000000000000


class TestRemove:
    def test_removes_tree(self, tmp_path) -> None:
        path = _make_app_dir(tmp_path, "blog")

        filesystem.remove(path)

        assert not path.exists()

    def test_missing_path_is_success(self, tmp_path) -> None:
        filesystem.remove(tmp_path / "nothing")
        filesystem.remove(tmp_path / "nothing")

    def test_locked_raises_recoverable(self, tmp_path, monkeypatch) -> None:
        path = _make_app_dir(tmp_path, "blog")
        monkeypatch.setattr(shutil, "rmtree", _rmtree_failing_for([path], errno.EBUSY))

        with pytest.raises(LockedResourceError) as exc_info:
            filesystem.remove(path)

        assert exc_info.value.recoverable
        assert exc_info.value.code == "EBUSY"
        assert path.exists()

    def test_unknown_error_is_not_recoverable(self, tmp_path, monkeypatch) -> None:
        path = _make_app_dir(tmp_path, "blog")
        monkeypatch.setattr(shutil, "rmtree", _rmtree_failing_for([path], errno.EIO))

        with pytest.raises(DirectoryRemovalError) as exc_info:
            filesystem.remove(path)

        assert not isinstance(exc_info.value, LockedResourceError)
        assert not exc_info.value.recoverable

    def test_transient_error_is_retried(self, tmp_path, monkeypatch) -> None:
        path = _make_app_dir(tmp_path, "blog")
        real_rmtree = shutil.rmtree
        calls = []

        def flaky_rmtree(target, *args, **kwargs):
            calls.append(target)
            if len(calls) == 1:
                raise OSError(errno.ENOTEMPTY, "simulated")
            return real_rmtree(target, *args, **kwargs)

        monkeypatch.setattr(shutil, "rmtree", flaky_rmtree)
        monkeypatch.setattr(filesystem, "RETRY_DELAY", 0)

        filesystem.remove(path)

        assert len(calls) == 2
        assert not path.exists()

    def test_transient_error_gives_up_after_retries(self, tmp_path, monkeypatch) -> None:
        path = _make_app_dir(tmp_path, "blog")
        monkeypatch.setattr(shutil, "rmtree", _rmtree_failing_for([path], errno.ENOTEMPTY))
        monkeypatch.setattr(filesystem, "RETRY_DELAY", 0)

        with pytest.raises(DirectoryRemovalError):
            filesystem.remove(path)


class TestMarkForDeletion:
    def test_rename_keeps_parent_and_original_name(self, tmp_path) -> None:
        path = _make_app_dir(tmp_path, "blog")

        marked = filesystem.mark_for_deletion(path)

        assert not path.exists()
        assert marked.parent == tmp_path
        assert (marked / "server.js").exists()
        state = filesystem.classify(marked)
        assert isinstance(state, Marked)
        assert state.original_name == "blog"

    def test_marks_are_unique_and_ordered(self, tmp_path) -> None:
        first = filesystem.mark_for_deletion(_make_app_dir(tmp_path, "blog"))
        second = filesystem.mark_for_deletion(_make_app_dir(tmp_path, "blog"))

        assert first != second
        assert [m.path for m in filesystem.list_marked(tmp_path)] == [first, second]

    def test_missing_source_raises(self, tmp_path) -> None:
        with pytest.raises(DirectoryRemovalError):
            filesystem.mark_for_deletion(tmp_path / "ghost")


class TestSweep:
    def test_mixed_directory(self, tmp_path, monkeypatch) -> None:
        live = _make_app_dir(tmp_path, "live-app")
        removable = filesystem.mark_for_deletion(_make_app_dir(tmp_path, "old-app"))
        locked = filesystem.mark_for_deletion(_make_app_dir(tmp_path, "busy-app"))
        monkeypatch.setattr(shutil, "rmtree", _rmtree_failing_for([locked], errno.EBUSY))

        result = filesystem.sweep(tmp_path)

        assert result.cleaned == 1
        assert result.still_locked == [str(locked)]
        assert not removable.exists()
        assert locked.exists()
        assert (live / "server.js").exists()

    def test_second_pass_cleans_after_unlock(self, tmp_path, monkeypatch) -> None:
        locked = filesystem.mark_for_deletion(_make_app_dir(tmp_path, "busy-app"))
        monkeypatch.setattr(shutil, "rmtree", _rmtree_failing_for([locked], errno.EBUSY))
        assert filesystem.sweep(tmp_path).still_locked == [str(locked)]

        monkeypatch.undo()
        result = filesystem.sweep(tmp_path)

        assert result.cleaned == 1
        assert result.still_locked == []

    def test_skip_set_is_reported_as_abandoned(self, tmp_path) -> None:
        marked = filesystem.mark_for_deletion(_make_app_dir(tmp_path, "old-app"))

        result = filesystem.sweep(tmp_path, skip={str(marked)})

        assert result.abandoned == [str(marked)]
        assert result.cleaned == 0
        assert marked.exists()

    def test_missing_base_dir_is_noop(self, tmp_path) -> None:
        result = filesystem.sweep(tmp_path / "absent")

        assert result.to_dict() == {"cleaned": 0, "still_locked": [], "abandoned": []}


class TestRemoveResult:
    def test_reports_whether_this_call_removed(self, tmp_path) -> None:
        path = _make_app_dir(tmp_path, "blog")

        assert filesystem.remove(path) is True
        assert filesystem.remove(path) is False

    def test_concurrent_sweeps_count_each_entry_once(self, tmp_path, monkeypatch) -> None:
        markers = [filesystem.mark_for_deletion(_make_app_dir(tmp_path, f"app-{i}")) for i in range(5)]
        real_rmtree = shutil.rmtree
        barrier = threading.Barrier(2)

        def slow_rmtree(target, *args, **kwargs):
            time.sleep(0.01)
            return real_rmtree(target, *args, **kwargs)

        monkeypatch.setattr(shutil, "rmtree", slow_rmtree)
        results = []

        def run():
            barrier.wait()
            results.append(filesystem.sweep(tmp_path))

        threads = [threading.Thread(target=run) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(r.cleaned for r in results) == len(markers)
        assert all(not m.exists() for m in markers)
