from __future__ import annotations

from typing import Any

import pytest

from setu.intent.knowledge_base import KnowledgeBaseResolver, default_knowledge_base
from setu.intent.quick_match import QuickMatchResolver
from setu.intent.tables import PhraseTable, default_phrase_table
from setu.orchestrator.clock import Clock
from setu.orchestrator.events import ResolutionResult
from setu.orchestrator.pipeline import SpeechPipeline
from setu.orchestrator.policies import PipelinePolicies


class FakeClock(Clock):
    def __init__(self, start_ms: float = 10_000.0) -> None:
        self._ms = start_ms

    def monotonic_ms(self) -> float:
        return self._ms

    def advance(self, ms: float) -> None:
        self._ms += ms


class RecordingExecutor:
    def __init__(self) -> None:
        self.actions: list[ResolutionResult] = []
        self.partials: list[str] = []
        self.errors: list[tuple[str, str]] = []

    async def execute(self, result: ResolutionResult) -> None:
        self.actions.append(result)

    async def listening(self, partial_text: str) -> None:
        self.partials.append(partial_text)

    async def report_error(self, code: str, message: str) -> None:
        self.errors.append((code, message))


def make_table(groups: list[dict[str, Any]]) -> PhraseTable:
    return PhraseTable.from_mapping({"entries": groups})


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def phrase_table() -> PhraseTable:
    return default_phrase_table()


@pytest.fixture
def kb_resolver() -> KnowledgeBaseResolver:
    return KnowledgeBaseResolver(default_knowledge_base())


@pytest.fixture
def pipeline(phrase_table: PhraseTable, clock: FakeClock) -> SpeechPipeline:
    return SpeechPipeline(QuickMatchResolver(phrase_table), PipelinePolicies(), clock=clock)
