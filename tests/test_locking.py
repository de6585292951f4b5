import pytest

from ipswkit.locking import FileLock, LockError


def test_acquire_creates_lock_file(tmp_path):
    path = tmp_path / "fw.lock"
    lock = FileLock(path)
    assert lock.acquire() is lock
    assert path.exists()
    assert lock.locked
    lock.release()
    assert not lock.locked


def test_context_manager_holds_and_releases(tmp_path):
    path = tmp_path / "a.lock"
    with FileLock(path) as lock:
        assert lock.locked
    assert not lock.locked


def test_context_manager_releases_on_exception(tmp_path):
    lock = FileLock(tmp_path / "b.lock")
    with pytest.raises(RuntimeError):
        with lock:
            raise RuntimeError("boom")
    assert not lock.locked


def test_release_without_acquire_raises(tmp_path):
    with pytest.raises(LockError):
        FileLock(tmp_path / "c.lock").release()


def test_double_release_raises(tmp_path):
    lock = FileLock(tmp_path / "d.lock")
    lock.acquire()
    lock.release()
    with pytest.raises(LockError):
        lock.release()


def test_acquire_twice_raises(tmp_path):
    lock = FileLock(tmp_path / "e.lock")
    lock.acquire()
    try:
        with pytest.raises(LockError):
            lock.acquire()
    finally:
        lock.release()


def test_missing_directory_raises(tmp_path):
    lock = FileLock(tmp_path / "missing" / "f.lock")
    with pytest.raises(LockError):
        lock.acquire()
    assert not lock.locked


def test_reacquire_after_release(tmp_path):
    lock = FileLock(str(tmp_path / "g.lock"))
    with lock:
        pass
    with lock:
        assert lock.locked
    assert not lock.locked


def test_existing_content_preserved(tmp_path):
    path = tmp_path / "h.lock"
    path.write_text("keep")
    with FileLock(path):
        pass
    assert path.read_text() == "keep"