"""Tests for the background call runners."""
import threading

import pytest
from PySide6.QtCore import QObject

from labgantt.app import workers
from labgantt.app.workers import WorkerPool, run_inline


@pytest.fixture
def owner(qapp):
    return QObject()


def test_run_inline_routes_result_and_error():
    results, errors = [], []
    run_inline(lambda: 42, results.append, errors.append)
    run_inline(lambda: 1 / 0, results.append, errors.append)
    assert results == [42]
    assert isinstance(errors[0], ZeroDivisionError)


class TestWorkerPool:
    def test_delivers_result_on_ui_thread(self, qtbot, owner):
        pool = WorkerPool(owner)
        results = []
        pool.run(lambda: "done", results.append, pytest.fail)
        qtbot.waitUntil(lambda: results == ["done"], timeout=5000)
        qtbot.waitUntil(lambda: pool.pending() == 0, timeout=5000)

    def test_delivers_failure(self, qtbot, owner):
        pool = WorkerPool(owner)
        errors = []

        def boom():
            raise OSError("offline")

        pool.run(boom, pytest.fail, errors.append)
        qtbot.waitUntil(lambda: len(errors) == 1, timeout=5000)
        assert str(errors[0]) == "offline"

    def test_closed_pool_drops_new_calls(self, owner):
        pool = WorkerPool(owner)
        pool.shutdown()
        assert pool.run(lambda: 1, pytest.fail, pytest.fail) is None

    def test_shutdown_detaches_worker_blocked_past_deadline(self, qtbot, owner):
        release = threading.Event()
        pool = WorkerPool(owner)
        results = []
        worker = pool.run(lambda: release.wait(10), results.append, results.append)

        pool.shutdown(wait_ms=50)

        assert worker.isRunning()
        assert worker.parent() is None
        assert worker in workers._detached
        assert pool.pending() == 0

        release.set()
        qtbot.waitUntil(lambda: worker not in workers._detached, timeout=5000)
        assert results == []

    def test_shutdown_waits_for_quick_workers(self, qtbot, owner):
        pool = WorkerPool(owner)
        started = threading.Event()

        def quick():
            started.set()
            return 1

        worker = pool.run(quick, lambda _: None, pytest.fail)
        assert started.wait(5)
        pool.shutdown(wait_ms=5000)
        assert worker.isFinished()
        assert worker not in workers._detached
