"""Asynchronous avatar loader shared by every redraw of the timeline."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

import httpx
from PySide6.QtCore import QObject, Signal
from PySide6.QtGui import QImage

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], bytes]


def http_fetcher(timeout: float = 10.0) -> Fetcher:
    client = httpx.Client(timeout=timeout, follow_redirects=True)

    def _fetch(url: str) -> bytes:
        resp = client.get(url)
        resp.raise_for_status()
        return resp.content

    return _fetch


class AvatarCache(QObject):
    """URL-keyed image cache with deduplicated background loads.

    Images stay cached until :meth:`clear` is called; a task-list refresh does
    not evict anything, so the cache may hold avatars no longer on screen.
    """

    avatarReady = Signal(str)  # url
    avatarFailed = Signal(str)  # url

    def __init__(self, fetcher: Optional[Fetcher] = None, *, max_workers: int = 4, parent=None) -> None:
        super().__init__(parent)
        self._fetcher = fetcher or http_fetcher()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="avatar")
        self._lock = threading.Lock()
        self._images: dict[str, QImage] = {}
        self._pending: dict[str, Future] = {}
        self._failed: set[str] = set()
        self._generation = 0
        self._closed = False

    def get(self, url: str) -> Optional[QImage]:
        if not url:
            return None
        with self._lock:
            return self._images.get(url)

    def contains(self, url: str) -> bool:
        with self._lock:
            return url in self._images

    def has_failed(self, url: str) -> bool:
        with self._lock:
            return url in self._failed

    def load(self, url: str) -> Future:
        """Return a future resolving to the image for ``url`` (None on failure).

        Concurrent requests for the same URL share one future.
        """
        with self._lock:
            cached = self._images.get(url)
            if cached is not None or url in self._failed or self._closed or not url:
                done: Future = Future()
                done.set_result(cached)
                return done
            pending = self._pending.get(url)
            if pending is not None:
                return pending
            generation = self._generation
            future = self._executor.submit(self._load_blocking, url, generation)
            self._pending[url] = future
            return future

    def request(self, url: str) -> None:
        """Fire-and-forget variant used from the paint path."""
        if url and not self.contains(url) and not self.has_failed(url):
            self.load(url)

    def _load_blocking(self, url: str, generation: int) -> Optional[QImage]:
        image: Optional[QImage] = None
        try:
            data = self._fetcher(url)
            candidate = QImage.fromData(data)
            if candidate.isNull():
                logger.debug("Avatar %s did not decode as an image", url)
            else:
                image = candidate
        except Exception as exc:
            logger.debug("Avatar fetch failed for %s: %s", url, exc)

        with self._lock:
            stale = generation != self._generation or self._closed
            if self._pending.get(url) is not None and not stale:
                self._pending.pop(url, None)
            if stale:
                return None
            if image is None:
                self._failed.add(url)
            else:
                self._images[url] = image

        if image is None:
            self.avatarFailed.emit(url)
        else:
            self.avatarReady.emit(url)
        return image

    def cancel_pending(self) -> None:
        """Cancel queued loads and ignore results of loads already running."""
        with self._lock:
            self._generation += 1
            pending = list(self._pending.values())
            self._pending.clear()
        for future in pending:
            future.cancel()

    def clear(self) -> None:
        """Forget every cached image and failure (connection source changed)."""
        self.cancel_pending()
        with self._lock:
            self._images.clear()
            self._failed.clear()

    def close(self) -> None:
        self.cancel_pending()
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._images)
