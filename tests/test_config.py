from datetime import timedelta

import pytest
from pydantic import ValidationError

from microq.adapters.store.filesystem import LocalFileSystemJobStore
from microq.config import DispatcherOptions, MicroqSettings, get_settings

# ---------------------------------------------------------------------------
# DispatcherOptions
# ---------------------------------------------------------------------------


def test_default_options():
    options = DispatcherOptions()
    assert options.interval == timedelta(seconds=5)
    assert options.recover is True
    assert options.parallel is True
    assert options.max_concurrency == 10


def test_numeric_interval_is_seconds():
    assert DispatcherOptions(interval=0.5).interval == timedelta(milliseconds=500)


@pytest.mark.parametrize("interval", [0, -1, timedelta(0)])
def test_interval_must_be_positive(interval):
    with pytest.raises(ValidationError):
        DispatcherOptions(interval=interval)


def test_max_concurrency_must_be_positive():
    with pytest.raises(ValidationError):
        DispatcherOptions(max_concurrency=0)


def test_max_concurrency_none_means_unbounded():
    assert DispatcherOptions(max_concurrency=None).max_concurrency is None


def test_with_overrides_skips_none():
    options = DispatcherOptions(parallel=False)
    assert options.with_overrides(interval=None, parallel=None) is options


def test_with_overrides_applies_values():
    options = DispatcherOptions().with_overrides(interval=1, recover=False)
    assert options.interval == timedelta(seconds=1)
    assert options.recover is False
    assert options.parallel is True


def test_with_overrides_validates():
    with pytest.raises(ValidationError):
        DispatcherOptions().with_overrides(max_concurrency=-3)


# ---------------------------------------------------------------------------
# MicroqSettings
# ---------------------------------------------------------------------------


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("MICROQ_POLL_INTERVAL_SECONDS", "0.25")
    monkeypatch.setenv("MICROQ_PARALLEL", "false")
    monkeypatch.setenv("MICROQ_RECOVER_ON_START", "0")
    monkeypatch.setenv("MICROQ_MAX_CONCURRENCY", "3")

    options = MicroqSettings().dispatcher_options()

    assert options.interval == timedelta(milliseconds=250)
    assert options.parallel is False
    assert options.recover is False
    assert options.max_concurrency == 3


def test_settings_build_filesystem_store(tmp_path):
    settings = MicroqSettings(store_path=tmp_path / "jobs.json")
    store = settings.build_store()
    assert isinstance(store, LocalFileSystemJobStore)
    assert store.path == tmp_path / "jobs.json"


def test_settings_build_mongo_store():
    from microq.adapters.store.mongo import MongoJobStore

    settings = MicroqSettings(mongo_url="mongodb://db:27017", mongo_collection="q")
    store = settings.build_store()
    assert isinstance(store, MongoJobStore)
    assert store.url == "mongodb://db:27017"
    assert store.collection == "q"


def test_get_settings_is_cached():
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()
