from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from overseer_mcp.config import OverseerSettings, get_settings


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("OVERSEER_") or key == "CHROMA_PERSIST_PATH":
            monkeypatch.delenv(key)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults() -> None:
    settings = OverseerSettings()

    assert settings.log_level == "INFO"
    assert settings.profile_paths == (Path("profiles"),)
    assert settings.mcp_server_name == "overseer"
    assert settings.timeout_for("validation") == 900.0
    assert settings.timeout_for("development") == 3600.0


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OVERSEER_LOG_LEVEL", "debug")
    monkeypatch.setenv("OVERSEER_PROFILE_PATHS", os.pathsep.join(["one", "two"]))
    monkeypatch.setenv("OVERSEER_VALIDATION_TIMEOUT", "30")
    monkeypatch.setenv("OVERSEER_DEFAULT_MODEL", "sonnet")

    settings = OverseerSettings()

    assert settings.log_level == "DEBUG"
    assert settings.profile_paths == (Path("one"), Path("two"))
    assert settings.timeout_for("validation") == 30.0
    assert settings.worker_default_model == "sonnet"


@pytest.mark.parametrize(
    "key, value",
    [
        ("OVERSEER_LOG_LEVEL", "chatty"),
        ("OVERSEER_PERMISSION_CACHE_TTL", "-1"),
        ("OVERSEER_DEVELOPMENT_TIMEOUT", "0"),
        ("OVERSEER_MCP_SERVER_NAME", "  "),
    ],
)
def test_invalid_values_are_rejected(monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
    monkeypatch.setenv(key, value)

    with pytest.raises(ValidationError):
        OverseerSettings()


def test_get_settings_resolves_paths(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("OVERSEER_REPORTS_PATH", "reports")

    settings = get_settings()

    assert settings.reports_path == (tmp_path / "reports").resolve()
    assert settings.output_streams_path.is_absolute()
    assert get_settings() is settings
