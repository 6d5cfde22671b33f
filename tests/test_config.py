from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import allure
import pytest

from bundle_stories.config import BridgeSettings, HealthSettings, RefreshSettings, Settings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Settings"),
]


def test_defaults_are_valid() -> None:
    settings = Settings()

    settings.validate()
    assert settings.cache.staleness_window_seconds == 3600
    assert settings.health.error_threshold == 5
    assert settings.health.dead_after_days == 30


def test_from_env_reads_prefixed_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BUNDLE_STORIES_DB_PATH", "/tmp/env.db")
    monkeypatch.setenv("BUNDLE_STORIES_STALENESS_WINDOW_SECONDS", "120")
    monkeypatch.setenv("BUNDLE_STORIES_ADAPTER_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("BUNDLE_STORIES_ERROR_THRESHOLD", "3")
    monkeypatch.setenv("BUNDLE_STORIES_BRIDGE_BASE_URL", "https://bridge.example.com")
    monkeypatch.setenv("BUNDLE_STORIES_BRIDGE_API_TOKEN", "")

    settings = Settings.from_env()

    assert settings.db_path == Path("/tmp/env.db")
    assert settings.cache.staleness_window_seconds == 120
    assert settings.refresh.adapter_timeout_seconds == 2.5
    assert settings.health.error_threshold == 3
    assert settings.bridge.base_url == "https://bridge.example.com"
    assert settings.bridge.api_token is None


def test_explicit_db_path_wins_over_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BUNDLE_STORIES_DB_PATH", "/tmp/env.db")

    assert Settings.from_env(db_path=Path("cli.db")).db_path == Path("cli.db")


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (
            replace(Settings(), refresh=RefreshSettings(adapter_timeout_seconds=0)),
            "ADAPTER_TIMEOUT_SECONDS must be > 0",
        ),
        (
            replace(Settings(), health=HealthSettings(delete_batch_size=101)),
            "DELETE_BATCH_SIZE must be between 1 and 100",
        ),
        (
            replace(Settings(), health=HealthSettings(dead_after_days=0)),
            "DEAD_AFTER_DAYS must be > 0",
        ),
        (
            replace(Settings(), bridge=BridgeSettings(base_url="ftp://bridge")),
            "Invalid bridge base URL",
        ),
    ],
)
def test_validate_rejects_out_of_range_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()
