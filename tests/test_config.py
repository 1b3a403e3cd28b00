from pathlib import Path

import pytest

from numis_archive.config import load_ai_settings, load_db_path

_KEYS = (
    "NUMIS_AI_BACKEND",
    "OPEN_ROUTER_API_KEY",
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "NUMIS_EXTRACT_MODEL",
    "NUMIS_VALUE_MODEL",
    "NUMIS_HISTORY_MODEL",
    "NUMIS_IMAGE_MODEL",
    "NUMIS_AI_TIMEOUT",
    "NUMIS_DB_PATH",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in _KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults_to_openrouter_with_dotenv_key(tmp_path: Path):
    (tmp_path / ".env").write_text("OPEN_ROUTER_API_KEY=sk-or-test\n", encoding="utf-8")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)

    settings = load_ai_settings(str(nested))
    assert settings.backend == "openrouter"
    assert settings.api_key == "sk-or-test"
    assert settings.extract_model == "google/gemini-2.5-pro"
    assert settings.image_model == "google/gemini-2.5-flash-image-preview"
    assert settings.timeout_seconds == 120


def test_environment_overrides_dotenv(tmp_path: Path, monkeypatch):
    (tmp_path / ".env").write_text(
        "NUMIS_AI_BACKEND=openai\nOPENAI_API_KEY=from-file\nNUMIS_AI_TIMEOUT=30\n", encoding="utf-8"
    )
    monkeypatch.setenv("OPENAI_API_KEY", "from-env")
    monkeypatch.setenv("NUMIS_VALUE_MODEL", "gpt-4o-mini-search-preview")

    settings = load_ai_settings(str(tmp_path))
    assert settings.backend == "openai"
    assert settings.api_key == "from-env"
    assert settings.value_model == "gpt-4o-mini-search-preview"
    assert settings.extract_model == "gpt-4o"
    assert settings.timeout_seconds == 30


def test_unknown_backend_and_bad_timeout_fall_back(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("NUMIS_AI_BACKEND", "gemini")
    monkeypatch.setenv("NUMIS_AI_TIMEOUT", "soon")
    settings = load_ai_settings(str(tmp_path))
    assert settings.backend == "openrouter"
    assert settings.api_key is None
    assert settings.timeout_seconds == 120


def test_db_path_override(tmp_path: Path, monkeypatch):
    assert load_db_path(str(tmp_path)) is None
    monkeypatch.setenv("NUMIS_DB_PATH", "/data/notes.sqlite3")
    assert load_db_path(str(tmp_path)) == "/data/notes.sqlite3"
