"""Settings validation tests."""

import pytest
from pydantic import ValidationError

from shortener.config import Settings


def test_defaults() -> None:
    settings = Settings()
    assert settings.ID_SEQUENCE_NAME == "url_sequence"
    assert settings.ID_RANGE_SIZE == 100
    assert settings.LINK_TTL_DAYS == 30
    assert settings.RATE_LIMIT_MAX_REQUESTS == 100
    assert settings.RATE_LIMIT_WINDOW_SECONDS == 60


@pytest.mark.parametrize(
    "field",
    ["ID_RANGE_SIZE", "LINK_TTL_DAYS", "RATE_LIMIT_MAX_REQUESTS", "RATE_LIMIT_WINDOW_SECONDS"],
)
def test_non_positive_values_are_rejected(field: str) -> None:
    with pytest.raises(ValidationError):
        Settings(**{field: 0})


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("ID_RANGE_SIZE", "500")
    monkeypatch.setenv("SYNC_ENABLED", "false")

    settings = Settings()
    assert settings.ID_RANGE_SIZE == 500
    assert settings.SYNC_ENABLED is False
