from __future__ import annotations

import importlib
import sys
from pathlib import Path


def _ensure_backend_on_path() -> None:
    here = Path(__file__).resolve()
    backend_dir = here.parent.parent
    root = backend_dir.parent
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _cache_mod():
    _ensure_backend_on_path()
    return importlib.import_module("liguia.media.cache")


def test_cache_returns_stored_value() -> None:
    cache = _cache_mod().MediaUrlCache(max_entries=10, ttl_s=60)
    assert cache.get("https://a") is None
    cache.set("https://a", "/api/media-proxy?url=a")
    assert cache.get("https://a") == "/api/media-proxy?url=a"
    assert "https://a" in cache
    assert len(cache) == 1


def test_cache_evicts_least_recently_used() -> None:
    cache = _cache_mod().MediaUrlCache(max_entries=2, ttl_s=60)
    cache.set("a", "1")
    cache.set("b", "2")
    # Leitura de "a" o torna o mais recente; "b" sai na próxima inserção.
    assert cache.get("a") == "1"
    cache.set("c", "3")
    assert cache.get("b") is None
    assert cache.get("a") == "1"
    assert cache.get("c") == "3"
    assert len(cache) == 2


def test_cache_entries_expire_after_ttl() -> None:
    clock = _Clock()
    cache = _cache_mod().MediaUrlCache(max_entries=10, ttl_s=30, clock=clock)
    cache.set("a", "1")
    clock.now += 29
    assert cache.get("a") == "1"
    clock.now += 1
    assert cache.get("a") is None
    assert len(cache) == 0


def test_cache_set_refreshes_ttl() -> None:
    clock = _Clock()
    cache = _cache_mod().MediaUrlCache(max_entries=10, ttl_s=30, clock=clock)
    cache.set("a", "1")
    clock.now += 20
    cache.set("a", "2")
    clock.now += 20
    assert cache.get("a") == "2"


def test_cache_from_env(monkeypatch) -> None:
    cache_mod = _cache_mod()
    monkeypatch.setenv("MEDIA_CACHE_MAX_ENTRIES", "1")
    monkeypatch.setenv("MEDIA_CACHE_TTL_S", "not-a-number")
    cache = cache_mod.MediaUrlCache.from_env()
    cache.set("a", "1")
    cache.set("b", "2")
    assert cache.get("a") is None
    assert cache.get("b") == "2"


def test_cache_clear() -> None:
    cache = _cache_mod().MediaUrlCache()
    cache.set("a", "1")
    cache.clear()
    assert len(cache) == 0
    assert "a" not in cache
