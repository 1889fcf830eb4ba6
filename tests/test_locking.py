"""Tests for vtm.locking module."""

import fcntl
import os
import threading

import pytest

from vtm.errors import LockTimeout
from vtm.locking import lock_path_for, manifest_lock


class TestManifestLock:
    """Test the advisory manifest lock."""

    def test_lock_file_sits_next_to_manifest(self, tmp_path):
        assert lock_path_for(tmp_path / "vtm.json") == tmp_path / "vtm.json.lock"

    def test_reentrant_in_same_thread(self, tmp_path):
        path = tmp_path / "vtm.json"
        with manifest_lock(path, timeout=0.2):
            with manifest_lock(path, timeout=0.2):
                pass
            # Still held after the inner block exits
            fd = os.open(str(lock_path_for(path)), os.O_RDWR)
            try:
                with pytest.raises(BlockingIOError):
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            finally:
                os.close(fd)

    def test_released_on_exit(self, tmp_path):
        path = tmp_path / "vtm.json"
        with manifest_lock(path):
            pass
        fd = os.open(str(lock_path_for(path)), os.O_RDWR)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def test_times_out_when_held_elsewhere(self, tmp_path):
        path = tmp_path / "vtm.json"
        fd = os.open(str(lock_path_for(path)), os.O_RDWR | os.O_CREAT)
        fcntl.flock(fd, fcntl.LOCK_EX)
        try:
            with pytest.raises(LockTimeout):
                with manifest_lock(path, timeout=0.1):
                    pass
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

    def test_other_thread_waits(self, tmp_path):
        path = tmp_path / "vtm.json"
        errors = []

        def contender():
            try:
                with manifest_lock(path, timeout=0.1):
                    pass
            except LockTimeout as e:
                errors.append(e)

        with manifest_lock(path):
            thread = threading.Thread(target=contender)
            thread.start()
            thread.join()

        assert len(errors) == 1

    def test_released_when_body_raises(self, tmp_path):
        path = tmp_path / "vtm.json"
        with pytest.raises(RuntimeError):
            with manifest_lock(path):
                raise RuntimeError("boom")
        with manifest_lock(path, timeout=0.1):
            pass
