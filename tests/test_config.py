from __future__ import annotations

from pathlib import Path

import pytest

from grifo_turnos.config import ConfigError, load_config

_KEYS = (
    "GRIFO_ENV",
    "GRIFO_API_BASE_URL",
    "GRIFO_API_BASE_URL_DEV",
    "GRIFO_API_BASE_URL_PROD",
    "GRIFO_TIMEOUT_SECONDS",
    "GRIFO_RETRIES",
    "GRIFO_RETRY_BACKOFF_SECONDS",
    "GRIFO_REFRESH_INTERVAL_SECONDS",
    "GRIFO_RECENT_SALES_LIMIT",
    "GRIFO_TIMEZONE",
    "GRIFO_VERIFY_SSL",
    "GRIFO_STATE_DIR",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    for key in _KEYS:
        monkeypatch.delenv(key, raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("", encoding="utf-8")
    return env_file


def test_defaults(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GRIFO_API_BASE_URL", "https://api.grifo.test/")

    config = load_config(str(clean_env))

    assert config.api_base_url == "https://api.grifo.test"
    assert config.normalized_env == "dev"
    assert config.retries == 3
    assert config.refresh_interval_seconds == 30.0
    assert config.recent_sales_limit == 25
    assert config.timezone == "America/Lima"
    assert config.verify_ssl is True
    assert config.state_dir is None


def test_env_specific_base_url_wins(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GRIFO_ENV", "prod")
    monkeypatch.setenv("GRIFO_API_BASE_URL", "https://generic.test")
    monkeypatch.setenv("GRIFO_API_BASE_URL_PROD", "https://prod.test")

    assert load_config(str(clean_env)).api_base_url == "https://prod.test"


def test_dotenv_file_is_read(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    clean_env.write_text(
        "GRIFO_API_BASE_URL=https://file.test\nGRIFO_VERIFY_SSL=no\nGRIFO_STATE_DIR=/tmp/grifo\n",
        encoding="utf-8",
    )
    for key in ("GRIFO_API_BASE_URL", "GRIFO_VERIFY_SSL", "GRIFO_STATE_DIR"):
        # registered so the values loaded from the file are undone after the test
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)

    config = load_config(str(clean_env))

    assert config.api_base_url == "https://file.test"
    assert config.verify_ssl is False
    assert config.state_dir == "/tmp/grifo"


def test_missing_base_url(clean_env: Path) -> None:
    with pytest.raises(ConfigError, match="GRIFO_API_BASE_URL"):
        load_config(str(clean_env))


@pytest.mark.parametrize(
    ("key", "value", "message"),
    [
        ("GRIFO_REFRESH_INTERVAL_SECONDS", "5", "between 15 and 60"),
        ("GRIFO_REFRESH_INTERVAL_SECONDS", "abc", "expected a number"),
        ("GRIFO_RECENT_SALES_LIMIT", "101", "1..100"),
        ("GRIFO_RETRIES", "-1", "GRIFO_RETRIES"),
        ("GRIFO_TIMEOUT_SECONDS", "0", "GRIFO_TIMEOUT_SECONDS"),
        ("GRIFO_TIMEZONE", "Mars/Olympus", "unknown zone"),
    ],
)
def test_invalid_values(
    clean_env: Path, monkeypatch: pytest.MonkeyPatch, key: str, value: str, message: str
) -> None:
    monkeypatch.setenv("GRIFO_API_BASE_URL", "https://api.grifo.test")
    monkeypatch.setenv(key, value)

    with pytest.raises(ConfigError, match=message):
        load_config(str(clean_env))
