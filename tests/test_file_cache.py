from __future__ import annotations

import os
import time

import pytest
from filelock import FileLock

from dacloud.cache import file as file_cache
from dacloud.cache.file import FileCacheProvider, read_directory_setting
from dacloud.core.errors import CacheUnavailable, CacheWriteFailed
from dacloud.core.model import SERVERS_CACHE_AUTO

KEY = "0123456789abcdef0123456789abcdef"


def _age(path, seconds: float) -> None:
    past = time.time() - seconds
    os.utime(path, (past, past))


def test_set_get_persists_sharded_file(tmp_path) -> None:
    cache = FileCacheProvider(tmp_path)
    cache.set(KEY, {"model": "iPhone"})

    path = tmp_path / "dacloud_FileCacheProvider" / "01" / "23" / f"{KEY[4:]}.dat"
    assert cache.path_for(KEY) == path
    assert path.is_file()
    assert cache.get(KEY) == {"model": "iPhone"}


def test_reserved_and_short_keys_live_in_root(tmp_path) -> None:
    cache = FileCacheProvider(tmp_path)
    assert cache.path_for(SERVERS_CACHE_AUTO) == cache.root / f"{SERVERS_CACHE_AUTO}.dat"
    assert cache.path_for("abcd") == cache.root / "abcd.dat"


def test_entries_are_loaded_at_construction(tmp_path) -> None:
    FileCacheProvider(tmp_path).set(KEY, [1, 2, 3])
    FileCacheProvider(tmp_path).set(SERVERS_CACHE_AUTO, [{"host": "a"}])

    reloaded = FileCacheProvider(tmp_path)
    assert sorted(reloaded.list_keys()) == sorted([KEY, SERVERS_CACHE_AUTO])
    assert reloaded.get(KEY) == [1, 2, 3]


def test_expired_entry_is_a_miss_and_deleted(tmp_path) -> None:
    cache = FileCacheProvider(tmp_path, expiry=60)
    cache.set(KEY, "value")
    path = cache.path_for(KEY)
    _age(path, 120)

    assert cache.get(KEY) is None
    assert not path.exists()
    assert KEY not in cache.list_keys()


def test_set_expiry_applies_to_existing_entries(tmp_path) -> None:
    cache = FileCacheProvider(tmp_path, expiry=3600)
    cache.set(KEY, "value")
    _age(cache.path_for(KEY), 30)
    assert cache.get(KEY) == "value"

    cache.set_expiry(10)
    assert cache.get(KEY) is None


def test_file_deleted_externally_is_a_miss(tmp_path) -> None:
    cache = FileCacheProvider(tmp_path)
    cache.set(KEY, "value")
    cache.path_for(KEY).unlink()
    assert cache.get(KEY) is None


def test_entry_written_by_another_provider_is_read_from_disk(tmp_path) -> None:
    first = FileCacheProvider(tmp_path)
    second = FileCacheProvider(tmp_path)
    first.set(KEY, "shared")
    assert second.get(KEY) == "shared"


def test_remove_and_clear(tmp_path) -> None:
    cache = FileCacheProvider(tmp_path)
    cache.set(KEY, "a")
    cache.set("ffff0000", "b")

    cache.remove(KEY)
    assert cache.get(KEY) is None
    assert not cache.path_for(KEY).exists()
    cache.remove(KEY)

    cache.clear()
    assert cache.list_keys() == []
    assert list(cache.root.rglob("*.dat")) == []


def test_locked_entry_write_fails(tmp_path) -> None:
    cache = FileCacheProvider(tmp_path)
    path = cache.path_for(KEY)
    path.parent.mkdir(parents=True, exist_ok=True)

    with FileLock(f"{path}.lock"):
        with pytest.raises(CacheWriteFailed, match="locked"):
            cache.set(KEY, "value")


def test_unavailable_root_raises_on_use(tmp_path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")

    cache = FileCacheProvider(blocker)
    with pytest.raises(CacheUnavailable):
        cache.get(KEY)
    with pytest.raises(CacheUnavailable):
        cache.set(KEY, "value")


def test_directory_read_from_settings_file(tmp_path, monkeypatch) -> None:
    config_home = tmp_path / "config"
    settings = config_home / "dacloud" / "filecache.ini"
    settings.parent.mkdir(parents=True)
    settings.write_text("# cache location\ndirectory = %s\n" % (tmp_path / "store"), encoding="utf-8")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))

    assert file_cache.default_settings_file() == settings
    assert read_directory_setting(settings) == str(tmp_path / "store")

    cache = FileCacheProvider()
    assert cache.root == tmp_path / "store" / "dacloud_FileCacheProvider"


def test_missing_settings_file_falls_back_to_temp_dir(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(file_cache.tempfile, "gettempdir", lambda: str(tmp_path))
    cache = FileCacheProvider(settings_file=tmp_path / "missing.ini")
    assert cache.root == tmp_path / "dacloud_FileCacheProvider"
