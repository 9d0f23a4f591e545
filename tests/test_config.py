from __future__ import annotations

from pathlib import Path

import pytest

from setu.config import AppSettings, data_dir
from setu.main import build_remote_router
from setu.orchestrator.policies import PipelinePolicies, RemotePolicies


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ("GEMINI_API_KEYS", "REMOTE_PROVIDER", "DEFAULT_LANGUAGE", "SUPPORTED_LANGUAGES", "PHRASE_TABLE_PATH"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_point_at_bundled_tables() -> None:
    settings = AppSettings()
    resources = settings.resources
    assert resources.phrase_table_path == data_dir() / "phrases.yml"
    assert resources.knowledge_base_path.exists()
    assert settings.pipeline.debounce_ms == 300
    assert settings.pipeline.pause_threshold_ms == 1500


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DEBOUNCE_MS", "250")
    monkeypatch.setenv("GEMINI_API_KEYS", "alpha, beta,,gamma ")
    monkeypatch.setenv("PHRASE_TABLE_PATH", "/srv/kiosk/phrases.yml")
    settings = AppSettings()
    assert settings.pipeline.debounce_ms == 250
    assert settings.remote.gemini_api_keys == ("alpha", "beta", "gamma")
    assert settings.resources.phrase_table_path == Path("/srv/kiosk/phrases.yml")


def test_unsupported_default_language_falls_back() -> None:
    settings = AppSettings(SUPPORTED_LANGUAGES="en,pa", DEFAULT_LANGUAGE="hi", FALLBACK_LANGUAGE="en")
    assert settings.languages.supported == ("en", "pa")
    assert settings.languages.default == "en"


def test_policies_follow_settings() -> None:
    settings = AppSettings(PAUSE_THRESHOLD_MS=900, REMOTE_DAILY_CALL_CAP=50, REMOTE_HISTORY_TURNS=4)
    pipeline = PipelinePolicies.from_settings(settings.pipeline, settings.languages.fallback)
    remote = RemotePolicies.from_settings(settings.remote)
    assert pipeline.pause_threshold_ms == 900
    assert remote.history_turns == 4
    assert remote.budget.daily_cap == 50


def test_remote_router_disabled() -> None:
    assert build_remote_router(AppSettings(REMOTE_PROVIDER="none")) is None


def test_remote_router_without_gemini_keys_is_empty() -> None:
    router = build_remote_router(AppSettings(REMOTE_PROVIDER="gemini"))
    assert router is not None
    assert router.available() == []
    assert router.current_provider() is None


def test_remote_router_registers_ollama_on_request() -> None:
    router = build_remote_router(AppSettings(REMOTE_PROVIDER="ollama", OLLAMA_MODEL="llama-test"))
    assert router is not None
    assert router.current_provider() == "ollama"
