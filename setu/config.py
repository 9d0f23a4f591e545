from __future__ import annotations

import functools
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PipelineSettings(BaseModel):
    debounce_ms: int = Field(default=300, ge=0)
    pause_threshold_ms: int = Field(default=1500, ge=0)
    idle_finalize_ms: int = Field(default=1500, gt=0)
    max_prefix_tokens: int = Field(default=3, ge=1)
    strip_fillers: bool = True


class LanguageSettings(BaseModel):
    supported: tuple[str, ...] = ("en", "hi", "pa")
    default: str = "hi"
    fallback: str = "en"


class ResourceSettings(BaseModel):
    phrase_table_path: Path
    knowledge_base_path: Path
    fillers_path: Path


class RemoteSettings(BaseModel):
    provider: Literal["gemini", "ollama", "none"] = "gemini"
    gemini_api_keys: tuple[str, ...] = ()
    gemini_model: str = "gemini-2.5-flash"
    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"
    timeout_s: float = 8.0
    history_turns: int = 10
    daily_call_cap: int | None = None


class TelemetrySettings(BaseModel):
    log_level: str = "INFO"
    otlp_endpoint: str | None = None


class UISettings(BaseModel):
    kiosk_ui_origin: str = "http://localhost:5173"
    session_idle_timeout_s: float = Field(default=900.0, gt=0)


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", ".env.local"), env_file_encoding="utf-8", extra="ignore")

    DEBOUNCE_MS: int = 300
    PAUSE_THRESHOLD_MS: int = 1500
    IDLE_FINALIZE_MS: int = 1500
    MAX_PREFIX_TOKENS: int = 3
    STRIP_FILLERS: bool = True
    SUPPORTED_LANGUAGES: str = "en,hi,pa"
    DEFAULT_LANGUAGE: str = "hi"
    FALLBACK_LANGUAGE: str = "en"
    PHRASE_TABLE_PATH: str | None = None
    KNOWLEDGE_BASE_PATH: str | None = None
    FILLERS_PATH: str | None = None
    REMOTE_PROVIDER: Literal["gemini", "ollama", "none"] = "gemini"
    GEMINI_API_KEYS: str | None = None
    GEMINI_MODEL: str = "gemini-2.5-flash"
    OLLAMA_HOST: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "llama3.2"
    REMOTE_TIMEOUT_S: float = 8.0
    REMOTE_HISTORY_TURNS: int = 10
    REMOTE_DAILY_CALL_CAP: int | None = None
    LOG_LEVEL: str = "INFO"
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None
    KIOSK_UI_ORIGIN: str = "http://localhost:5173"
    SESSION_IDLE_TIMEOUT_S: float = 900.0
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"

    @staticmethod
    def _split_csv(value: str | None) -> tuple[str, ...]:
        if not value:
            return ()
        return tuple(item.strip() for item in value.split(",") if item.strip())

    @staticmethod
    def _resolve_path(value: str | None, default_name: str) -> Path:
        if value and value.strip():
            return Path(value.strip()).expanduser()
        return data_dir() / default_name

    @property
    def pipeline(self) -> PipelineSettings:
        return PipelineSettings(
            debounce_ms=self.DEBOUNCE_MS,
            pause_threshold_ms=self.PAUSE_THRESHOLD_MS,
            idle_finalize_ms=self.IDLE_FINALIZE_MS,
            max_prefix_tokens=self.MAX_PREFIX_TOKENS,
            strip_fillers=self.STRIP_FILLERS,
        )

    @property
    def languages(self) -> LanguageSettings:
        supported = tuple(code.lower() for code in self._split_csv(self.SUPPORTED_LANGUAGES)) or ("en",)
        fallback = self.FALLBACK_LANGUAGE.lower()
        default = self.DEFAULT_LANGUAGE.lower()
        if default not in supported:
            default = fallback if fallback in supported else supported[0]
        return LanguageSettings(supported=supported, default=default, fallback=fallback)

    @property
    def resources(self) -> ResourceSettings:
        return ResourceSettings(
            phrase_table_path=self._resolve_path(self.PHRASE_TABLE_PATH, "phrases.yml"),
            knowledge_base_path=self._resolve_path(self.KNOWLEDGE_BASE_PATH, "knowledge_base.yml"),
            fillers_path=self._resolve_path(self.FILLERS_PATH, "fillers.yml"),
        )

    @property
    def remote(self) -> RemoteSettings:
        return RemoteSettings(
            provider=self.REMOTE_PROVIDER,
            gemini_api_keys=self._split_csv(self.GEMINI_API_KEYS),
            gemini_model=self.GEMINI_MODEL,
            ollama_host=self.OLLAMA_HOST,
            ollama_model=self.OLLAMA_MODEL,
            timeout_s=self.REMOTE_TIMEOUT_S,
            history_turns=self.REMOTE_HISTORY_TURNS,
            daily_call_cap=self.REMOTE_DAILY_CALL_CAP,
        )

    @property
    def telemetry(self) -> TelemetrySettings:
        return TelemetrySettings(log_level=self.LOG_LEVEL, otlp_endpoint=self.OTEL_EXPORTER_OTLP_ENDPOINT)

    @property
    def ui(self) -> UISettings:
        return UISettings(kiosk_ui_origin=self.KIOSK_UI_ORIGIN, session_idle_timeout_s=self.SESSION_IDLE_TIMEOUT_S)


@functools.lru_cache(maxsize=1)
def load_settings() -> AppSettings:
    return AppSettings()


def data_dir() -> Path:
    return Path(__file__).resolve().parent / "data"


__all__ = ["AppSettings", "load_settings", "data_dir"]
