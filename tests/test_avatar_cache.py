"""Tests for the shared avatar cache."""
import threading

import pytest
from PySide6.QtCore import QBuffer, QByteArray, QIODevice
from PySide6.QtGui import QColor, QImage

from labgantt.app.avatar_cache import AvatarCache

URL = "https://gitlab.example.com/avatar.png"


def _png_bytes() -> bytes:
    image = QImage(4, 4, QImage.Format_ARGB32)
    image.fill(QColor("#3366cc"))
    data = QByteArray()
    buffer = QBuffer(data)
    buffer.open(QIODevice.WriteOnly)
    image.save(buffer, "PNG")
    buffer.close()
    return bytes(data)


@pytest.fixture
def png():
    return _png_bytes()


def test_loads_and_caches(qapp, png):
    calls = []

    def fetch(url):
        calls.append(url)
        return png

    cache = AvatarCache(fetch)
    try:
        image = cache.load(URL).result(timeout=5)
        assert image is not None and not image.isNull()
        assert cache.contains(URL)
        assert cache.get(URL) is image
        assert len(cache) == 1
        assert cache.load(URL).result(timeout=5) is image
        assert calls == [URL]
    finally:
        cache.close()


def test_concurrent_requests_share_one_fetch(qapp, png):
    release = threading.Event()
    calls = []

    def fetch(url):
        calls.append(url)
        release.wait(5)
        return png

    cache = AvatarCache(fetch)
    try:
        first = cache.load(URL)
        second = cache.load(URL)
        cache.request(URL)
        assert first is second
        release.set()
        assert first.result(timeout=5) is not None
        assert calls == [URL]
    finally:
        cache.close()


def test_failure_is_remembered(qapp):
    calls = []

    def fetch(url):
        calls.append(url)
        raise OSError("unreachable")

    cache = AvatarCache(fetch)
    try:
        assert cache.load(URL).result(timeout=5) is None
        assert cache.has_failed(URL)
        cache.request(URL)
        assert cache.load(URL).result(timeout=5) is None
        assert calls == [URL]
    finally:
        cache.close()


def test_undecodable_bytes_count_as_failure(qapp):
    cache = AvatarCache(lambda url: b"not an image")
    try:
        assert cache.load(URL).result(timeout=5) is None
        assert cache.has_failed(URL)
        assert cache.get(URL) is None
    finally:
        cache.close()


def test_clear_forgets_images_and_failures(qapp, png):
    cache = AvatarCache(lambda url: png)
    try:
        cache.load(URL).result(timeout=5)
        cache.clear()
        assert not cache.contains(URL)
        assert len(cache) == 0
    finally:
        cache.close()


def test_empty_url_resolves_to_none(qapp):
    cache = AvatarCache(lambda url: b"")
    try:
        assert cache.get("") is None
        assert cache.load("").result(timeout=5) is None
    finally:
        cache.close()


def test_cancel_pending_drops_late_result(qapp, png):
    started = threading.Event()
    release = threading.Event()
    ready = []

    def fetch(url):
        started.set()
        release.wait(5)
        return png

    cache = AvatarCache(fetch)
    cache.avatarReady.connect(ready.append)
    try:
        future = cache.load(URL)
        assert started.wait(5)
        cache.cancel_pending()
        release.set()
        assert future.result(timeout=5) is None
        assert not cache.contains(URL)
        assert not cache.has_failed(URL)
        assert ready == []
    finally:
        release.set()
        cache.close()


def test_closed_cache_resolves_loads_to_none(qapp, png):
    calls = []
    cache = AvatarCache(lambda url: calls.append(url) or png)
    cache.close()
    assert cache.load(URL).result(timeout=5) is None
    cache.request(URL)
    assert calls == []
    assert len(cache) == 0
