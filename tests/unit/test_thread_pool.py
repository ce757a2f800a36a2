"""
Unit tests for the worker thread pool.
"""

import threading

import pytest

from httpkit.core.thread_pool import ThreadPool


@pytest.fixture
def pool():
    pool = ThreadPool(min_workers=2, max_workers=4, queue_size=4)
    pool.start()
    yield pool
    pool.shutdown(wait=False)


class TestThreadPool:
    """Tests for ThreadPool."""

    def test_runs_tasks(self, pool: ThreadPool):
        results = []
        lock = threading.Lock()

        def task(n):
            with lock:
                results.append(n)

        for i in range(10):
            assert pool.submit(task, args=(i,))

        assert pool.wait_idle(timeout=5.0)
        assert sorted(results) == list(range(10))
        assert pool.pending == 0

    def test_failing_task_does_not_kill_worker(self, pool: ThreadPool):
        done = threading.Event()

        def boom():
            raise ValueError("boom")

        pool.submit(boom)
        pool.submit(done.set)

        assert done.wait(5.0)
        assert pool.wait_idle(timeout=5.0)
        assert pool.stats["tasks"]["failed"] == 1

    def test_full_queue_rejects_without_blocking(self):
        pool = ThreadPool(min_workers=1, max_workers=1, queue_size=1)
        pool.start()
        release = threading.Event()
        started = threading.Event()

        def blocker():
            started.set()
            release.wait(5.0)

        try:
            assert pool.submit(blocker)
            assert started.wait(5.0)
            assert pool.submit(blocker, block=False)      # fills the queue
            assert not pool.submit(blocker, block=False)  # rejected
            assert pool.pending == 2
        finally:
            release.set()
            pool.shutdown(wait=True, timeout=5.0)

    def test_scales_up_when_busy(self):
        pool = ThreadPool(min_workers=1, max_workers=3, queue_size=10)
        pool.start()
        release = threading.Event()
        started = threading.Event()

        def blocker():
            started.set()
            release.wait(5.0)

        try:
            pool.submit(blocker)
            assert started.wait(5.0)
            for _ in range(3):
                pool.submit(blocker)
            assert 2 <= pool.stats["workers"]["total"] <= 3
        finally:
            release.set()
            pool.shutdown(wait=True, timeout=5.0)

    def test_submit_after_shutdown(self, pool: ThreadPool):
        assert pool.shutdown(wait=True, timeout=5.0)
        with pytest.raises(RuntimeError):
            pool.submit(lambda: None)

    def test_submit_before_start(self):
        with pytest.raises(RuntimeError):
            ThreadPool().submit(lambda: None)

    def test_shutdown_timeout_reports_outstanding_work(self):
        pool = ThreadPool(min_workers=1, max_workers=1, queue_size=4)
        pool.start()
        release = threading.Event()
        started = threading.Event()

        def blocker():
            started.set()
            release.wait(5.0)

        pool.submit(blocker)
        started.wait(5.0)
        pool.submit(blocker)

        try:
            assert pool.shutdown(wait=True, timeout=0.1) is False
        finally:
            release.set()

    def test_restart_after_shutdown(self, pool: ThreadPool):
        pool.shutdown(wait=True, timeout=5.0)
        pool.start()
        done = threading.Event()

        pool.submit(done.set)
        assert done.wait(5.0)
