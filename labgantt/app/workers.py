from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from PySide6 import QtCore

logger = logging.getLogger(__name__)

Runner = Callable[[Callable[[], Any], Callable[[Any], None], Callable[[Exception], None]], None]

# Workers still blocked in a request when their pool shut down; held until they finish.
_detached: set["CallWorker"] = set()


class CallWorker(QtCore.QThread):
    """Run one blocking call off the UI thread and report back via signals."""

    succeeded = QtCore.Signal(object)
    failed = QtCore.Signal(object)

    def __init__(self, call: Callable[[], Any], parent=None) -> None:
        super().__init__(parent)
        self._call = call
        self._cancel_requested = False

    def request_cancel(self) -> None:
        """Drop the result when it arrives; the call itself is not interrupted."""
        self._cancel_requested = True

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested

    def run(self) -> None:
        try:
            result = self._call()
        except Exception as exc:
            if not self._cancel_requested:
                self.failed.emit(exc)
            return
        if not self._cancel_requested:
            self.succeeded.emit(result)


class WorkerPool(QtCore.QObject):
    """Keeps running workers alive and cancels them together on shutdown."""

    def __init__(self, parent=None) -> None:
        super().__init__(parent)
        self._workers: set[CallWorker] = set()
        self._closed = False

    def run(
        self,
        call: Callable[[], Any],
        on_success: Callable[[Any], None],
        on_failure: Callable[[Exception], None],
    ) -> Optional[CallWorker]:
        if self._closed:
            logger.debug("Worker pool closed; dropping call")
            return None
        worker = CallWorker(call, self)
        worker.succeeded.connect(lambda result, w=worker: self._deliver(w, on_success, result))
        worker.failed.connect(lambda exc, w=worker: self._deliver(w, on_failure, exc))
        worker.finished.connect(lambda w=worker: self._forget(w))
        self._workers.add(worker)
        worker.start()
        return worker

    __call__ = run

    def _deliver(self, worker: CallWorker, callback: Callable[[Any], None], value: Any) -> None:
        if self._closed or worker.cancelled:
            return
        callback(value)

    def _forget(self, worker: CallWorker) -> None:
        self._workers.discard(worker)
        worker.deleteLater()

    def pending(self) -> int:
        return len(self._workers)

    def shutdown(self, wait_ms: int = 2000) -> None:
        """Cancel every worker and wait up to ``wait_ms`` in total for them.

        Workers still running at the deadline (a request can block for the
        full HTTP timeout) are unparented and held until their thread finishes.
        """
        self._closed = True
        workers = list(self._workers)
        for worker in workers:
            worker.request_cancel()
        deadline = QtCore.QDeadlineTimer(wait_ms)
        for worker in workers:
            if not worker.wait(deadline):
                self._detach(worker)

    def _detach(self, worker: CallWorker) -> None:
        logger.debug("Worker still running at shutdown; detaching it")
        self._workers.discard(worker)
        worker.setParent(None)
        _detached.add(worker)
        worker.finished.connect(lambda w=worker: _release(w))
        if worker.isFinished():
            _release(worker)


def _release(worker: CallWorker) -> None:
    if worker in _detached:
        _detached.discard(worker)
        worker.deleteLater()


def run_inline(
    call: Callable[[], Any],
    on_success: Callable[[Any], None],
    on_failure: Callable[[Exception], None],
) -> None:
    """Synchronous runner with the same contract as :class:`WorkerPool`."""
    try:
        result = call()
    except Exception as exc:
        on_failure(exc)
        return
    on_success(result)
