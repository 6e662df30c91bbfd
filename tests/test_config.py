from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from squabble_mcp.config import SquabbleSettings


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SQUABBLE_WORKSPACE", str(tmp_path))
    monkeypatch.setenv("SQUABBLE_MODE", "PM")
    monkeypatch.setenv("SQUABBLE_ENV", "prod")
    monkeypatch.setenv("SQUABBLE_LOG_LEVEL", "debug")
    monkeypatch.setenv("SQUABBLE_REVIEW_TIMEOUT", "300")

    settings = SquabbleSettings()

    assert settings.workspace_root == tmp_path
    assert settings.role == "pm"
    assert settings.environment == "production"
    assert not settings.is_development
    assert settings.log_level == "DEBUG"
    assert settings.review_timeout_seconds == 300.0


def test_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("SQUABBLE_MODE", "SQUABBLE_REVIEW_TIMEOUT", "SQUABBLE_TASK_PREFIX"):
        monkeypatch.delenv(name, raising=False)

    settings = SquabbleSettings()

    assert settings.role == "engineer"
    assert settings.task_id_prefix == "SQBL"
    assert settings.review_timeout_seconds is None
    assert settings.activity_log_keep_sessions == 5


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("SQUABBLE_MODE", "admin"),
        ("SQUABBLE_ENV", "staging"),
        ("SQUABBLE_LOG_LEVEL", "verbose"),
        ("SQUABBLE_TASK_PREFIX", "A.B"),
        ("SQUABBLE_CONSULT_TIMEOUT", "0"),
    ],
)
def test_settings_reject_invalid_values(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        SquabbleSettings()


def test_profile_paths_split_on_pathsep(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    import os

    monkeypatch.setenv("SQUABBLE_PROFILE_PATHS", os.pathsep.join([str(tmp_path / "a"), str(tmp_path / "b")]))

    assert SquabbleSettings().profile_paths == (tmp_path / "a", tmp_path / "b")
