"""
Pytest fixtures for RiskScope tests. Network I/O is replaced by scripted
fake connectors and a fake reasoning client.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Union

import pytest

from riskscope.compute.connectors import EvidenceConnector, SearchHit, SearchResponse
from riskscope.reasoning.client import ReasoningClient
from riskscope.errors import ReasoningServiceError

Script = Union[List[SearchHit], Exception]


def hit(title: str, snippet: str = "", url: str = "https://example.com/article") -> SearchHit:
    return SearchHit(title=title, snippet=snippet, url=url)


class FakeConnector(EvidenceConnector):
    """
    Plays back one scripted answer per call, in call order. An Exception in
    the script is raised instead of returned. Calls past the end of the
    script get an empty result list.
    """

    def __init__(self, script: Optional[List[Script]] = None, name: str = "fake", delay: float = 0.0):
        self.script = list(script or [])
        self.name = name
        self.delay = delay
        self.calls: List[str] = []
        self.options: List[Dict[str, Any]] = []

    async def search(self, query: str, options: Optional[Dict[str, Any]] = None) -> SearchResponse:
        index = len(self.calls)
        self.calls.append(query)
        self.options.append(dict(options or {}))
        if self.delay:
            await asyncio.sleep(self.delay)
        answer = self.script[index] if index < len(self.script) else []
        if isinstance(answer, Exception):
            raise answer
        return SearchResponse(query=query, source=self.name, results=list(answer))


class FakeReasoning(ReasoningClient):
    name = "fake"

    def __init__(self, replies: Optional[List[Union[str, Exception]]] = None):
        self.replies = list(replies or [])
        self.prompts: List[str] = []

    async def infer(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.replies:
            raise ReasoningServiceError("no scripted reply")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture(autouse=True)
def reset_registries():
    """Process-wide limiter, quota and cache registries start empty for every test."""
    from riskscope.compute import cache
    from riskscope.compute.connectors import reset_quota_trackers
    from riskscope.compute.rate_limit import reset_rate_limiters

    reset_rate_limiters()
    reset_quota_trackers()
    cache._caches.clear()
    yield
    reset_rate_limiters()
    reset_quota_trackers()
    cache._caches.clear()


@pytest.fixture
def env(monkeypatch):
    """Deterministic environment: no delays, no retries backoff, no real keys."""
    monkeypatch.setenv("RISKSCOPE_ENV", "development")
    monkeypatch.setenv("AUTH_TOKEN", "test-token")
    monkeypatch.setenv("SERPAPI_API_KEY", "test-serp-key")
    monkeypatch.setenv("SERPAPI_ENABLED", "true")
    monkeypatch.setenv("SERPAPI_RATE_LIMIT_MS", "0")
    monkeypatch.setenv("SERPAPI_MAX_RETRIES", "3")
    monkeypatch.setenv("RETRY_BACKOFF_BASE_MS", "0")
    monkeypatch.setenv("INTER_QUERY_DELAY_MS", "0")
    monkeypatch.setenv("COLLECTION_CONCURRENCY", "1")
    monkeypatch.setenv("REDIS_URL", "redis://127.0.0.1:1/0")
    monkeypatch.delenv("REASONING_API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("DISABLE_HTTP_FALLBACK", raising=False)
    monkeypatch.delenv("DISABLE_BROWSER_FALLBACK", raising=False)
    monkeypatch.delenv("FALLBACK_MAX_RETRIES", raising=False)

    from riskscope.config import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(env):
    from riskscope.config import Settings
    return Settings()


@pytest.fixture
def make_context(settings):
    """Factory for an OrchestratorContext wired to fakes."""
    from riskscope.compute.orchestrator import OrchestratorContext

    def _make(primary=None, fallback=None, reasoning=None, **overrides):
        for key, value in overrides.items():
            setattr(settings, key, value)
        return OrchestratorContext(
            settings,
            primary=primary if primary is not None else FakeConnector(),
            fallback=fallback,
            reasoning=reasoning,
        )

    return _make


@pytest.fixture
def client(env):
    """FastAPI TestClient with the context factory swapped for fakes (`client.sources`)."""
    from fastapi.testclient import TestClient

    from riskscope.api.analysis import get_context_factory
    from riskscope.main import app

    sources: Dict[str, Any] = {"primary": FakeConnector(), "fallback": None, "reasoning": None}

    def override():
        from riskscope.compute.orchestrator import OrchestratorContext
        from riskscope.config import get_settings

        def factory(request_id=None):
            return OrchestratorContext(
                get_settings(),
                primary=sources["primary"],
                fallback=sources["fallback"],
                reasoning=sources["reasoning"],
                request_id=request_id,
            )
        return factory

    app.dependency_overrides[get_context_factory] = override
    test_client = TestClient(app)
    test_client.sources = sources
    yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": "Bearer test-token"}
