"""Configuration settings behaviour tests."""

from __future__ import annotations

import pytest

from app.config import Settings


def test_bare_stash_url_points_at_graphql_endpoint() -> None:
    """A server URL without a path should be normalised to /graphql."""

    settings = Settings(_env_file=None, STASH_URL="http://stash.local:9999/")

    assert str(settings.stash_url) == "http://stash.local:9999/graphql"


def test_graphql_stash_url_is_kept() -> None:
    settings = Settings(_env_file=None, STASH_URL="https://stash.example.com/graphql")

    assert str(settings.stash_url) == "https://stash.example.com/graphql"


def test_log_level_is_case_insensitive() -> None:
    settings = Settings(_env_file=None, LOG_LEVEL="debug")

    assert settings.log_level == "DEBUG"


def test_unknown_log_level_raises() -> None:
    with pytest.raises(ValueError, match="LOG_LEVEL"):
        Settings(_env_file=None, LOG_LEVEL="chatty")


def test_blank_api_key_is_treated_as_missing() -> None:
    settings = Settings(_env_file=None, STASH_API_KEY="   ")

    assert settings.stash_api_key is None


def test_default_page_size_must_fit_maximum() -> None:
    """The default page size may not exceed the configured maximum."""

    with pytest.raises(ValueError, match="DEFAULT_PAGE_SIZE"):
        Settings(_env_file=None, DEFAULT_PAGE_SIZE=100, MAX_PAGE_SIZE=50)


def test_sync_intervals_are_read_from_aliases() -> None:
    settings = Settings(
        _env_file=None,
        SYNC_INTERVAL_MINUTES=15,
        FULL_SYNC_INTERVAL_HOURS=6,
        SYNC_ON_STARTUP=False,
        UPSTREAM_TIMEOUT=30,
    )

    assert settings.sync_interval_minutes == 15
    assert settings.full_sync_interval_hours == 6
    assert settings.sync_on_startup is False
    assert settings.upstream_timeout_seconds == 30.0
