from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from setu.config import PipelineSettings, RemoteSettings


@dataclass
class CallBudget:
    daily_cap: int | None = None
    warning_ratio: float = 0.85
    _calls_today: int = 0
    _day_started: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def reset_if_needed(self) -> None:
        now = datetime.now(timezone.utc)
        if now.date() != self._day_started.date():
            self._calls_today = 0
            self._day_started = now

    def register(self, calls: int = 1) -> None:
        self.reset_if_needed()
        self._calls_today += calls

    def near_cap(self) -> bool:
        if self.daily_cap is None:
            return False
        self.reset_if_needed()
        return self._calls_today >= self.daily_cap * self.warning_ratio

    def exceeded(self) -> bool:
        if self.daily_cap is None:
            return False
        self.reset_if_needed()
        return self._calls_today >= self.daily_cap

    @property
    def calls_today(self) -> int:
        self.reset_if_needed()
        return self._calls_today


@dataclass
class PipelinePolicies:
    debounce_ms: int = 300
    pause_threshold_ms: int = 1500
    idle_finalize_ms: int = 1500
    max_prefix_tokens: int = 3
    strip_fillers: bool = True
    fallback_language: str = "en"

    @classmethod
    def from_settings(cls, settings: PipelineSettings, fallback_language: str = "en") -> "PipelinePolicies":
        return cls(
            debounce_ms=settings.debounce_ms,
            pause_threshold_ms=settings.pause_threshold_ms,
            idle_finalize_ms=settings.idle_finalize_ms,
            max_prefix_tokens=settings.max_prefix_tokens,
            strip_fillers=settings.strip_fillers,
            fallback_language=fallback_language,
        )


@dataclass
class RemotePolicies:
    history_turns: int = 10
    prompt_history_messages: int = 6  # last 3 exchanges go into the prompt
    temperature: float = 0.4
    max_output_tokens: int = 200
    budget: CallBudget = field(default_factory=CallBudget)

    @classmethod
    def from_settings(cls, settings: RemoteSettings) -> "RemotePolicies":
        return cls(history_turns=settings.history_turns, budget=CallBudget(daily_cap=settings.daily_call_cap))


__all__ = ["CallBudget", "PipelinePolicies", "RemotePolicies"]
