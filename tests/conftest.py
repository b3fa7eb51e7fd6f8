from __future__ import annotations

import pytest
from click.testing import CliRunner

from src.datatypes import AppConfig
from tests.helpers.intake_stubs import RecordingNotifier


@pytest.fixture
def notifier() -> RecordingNotifier:
    """Notifier double that answers every confirmation with yes."""

    return RecordingNotifier()


@pytest.fixture
def app_config() -> AppConfig:
    """Default configuration, safe to mutate per test."""

    return AppConfig()


@pytest.fixture
def runner() -> CliRunner:
    """Provide a Click runner configured for CLI smoke tests."""

    return CliRunner()


@pytest.fixture(autouse=True)
def _no_crop_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the host environment from disabling the crop capability."""

    monkeypatch.delenv("MEDIA_INTAKE_NO_CROP", raising=False)
