"""
Tests for CacheSettings and how CachedFetcher applies overrides.
"""
import pytest
from pydantic import ValidationError

from cached_fetcher import CachedFetcher, CacheSettings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the host environment out of these tests"""
    for name in ("DEFAULT_TTL", "CLEAN_INTERVAL", "CACHE_ERRORS", "DOUBLE_BUFFER"):
        monkeypatch.delenv(f"CACHED_FETCHER_{name}", raising=False)


def test_defaults():
    """60s TTL, no cleaner, no error caching, no double buffering"""
    settings = CacheSettings(_env_file=None)
    assert settings.default_ttl == 60.0
    assert settings.clean_interval == 0.0
    assert settings.cache_errors is False
    assert settings.double_buffer is False


def test_environment_overrides(monkeypatch):
    """CACHED_FETCHER_* variables are picked up"""
    monkeypatch.setenv("CACHED_FETCHER_DEFAULT_TTL", "2.5")
    monkeypatch.setenv("CACHED_FETCHER_CLEAN_INTERVAL", "30")
    monkeypatch.setenv("CACHED_FETCHER_CACHE_ERRORS", "true")
    monkeypatch.setenv("CACHED_FETCHER_DOUBLE_BUFFER", "1")

    settings = CacheSettings(_env_file=None)

    assert settings.default_ttl == 2.5
    assert settings.clean_interval == 30.0
    assert settings.cache_errors is True
    assert settings.double_buffer is True


def test_negative_clean_interval_rejected():
    """clean_interval cannot be negative"""
    with pytest.raises(ValidationError):
        CacheSettings(_env_file=None, clean_interval=-1)


def test_fetcher_keyword_overrides_settings():
    """Keyword arguments win over the settings object"""
    base = CacheSettings(_env_file=None, default_ttl=10, cache_errors=True)
    cache = CachedFetcher(settings=base, default_ttl=5)

    assert cache.settings.default_ttl == 5
    assert cache.settings.cache_errors is True
    assert base.default_ttl == 10


def test_fetcher_keyword_overrides_validated():
    """Overrides go through the same validation"""
    with pytest.raises(ValidationError):
        CachedFetcher(clean_interval=-5)


def test_fetcher_reads_environment(monkeypatch):
    """Without settings the cache configures itself from the environment"""
    monkeypatch.setenv("CACHED_FETCHER_CACHE_ERRORS", "true")
    cache = CachedFetcher()
    assert cache.settings.cache_errors is True


def test_env_file_with_unrelated_keys(tmp_path):
    """Only CACHED_FETCHER_* entries of a shared .env file are read"""
    env_file = tmp_path / ".env"
    env_file.write_text(
        "DATABASE_URL=postgres://localhost/app\n"
        "CACHED_FETCHER_DEFAULT_TTL=7\n"
    )

    settings = CacheSettings(_env_file=str(env_file))

    assert settings.default_ttl == 7.0
    assert settings.cache_errors is False
