"""
GeminiReasoningClient against httpx.MockTransport: request shape, candidate
extraction, failure mapping and quota abort through the pipeline.
"""

from __future__ import annotations

import json

import httpx
import pytest

from conftest import FakeConnector, hit
from riskscope.compute.pipeline import AnalysisPipeline
from riskscope.errors import ConnectorQuotaExhausted, ReasoningServiceError
from riskscope.reasoning.client import GeminiReasoningClient, build_reasoning_client
from riskscope.trust.models import PipelineState, SubjectProfile

LEGIT = SubjectProfile("Sentosa Abadi", "Registered with regulator, ISO certified")

QUOTA_BODY = {"error": {"code": 429, "status": "RESOURCE_EXHAUSTED",
                        "message": "You exceeded your current quota"}}
TRIAGE_REPLY = json.dumps({"riskLevel": "low", "initialScore": 15, "confidence": 85,
                           "reasoning": "Registered, certified manufacturer."})


def _candidate(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _gemini(settings, responses):
    """Client whose transport plays back `responses` in order, recording requests."""
    settings.REASONING_API_KEY = "test-gemini-key"
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return responses[min(len(calls) - 1, len(responses) - 1)]

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GeminiReasoningClient(settings, client), calls


@pytest.mark.asyncio
async def test_returns_first_candidate_text(settings):
    gemini, calls = _gemini(settings, [httpx.Response(200, json=_candidate("hello"))])

    assert await gemini.infer("prompt text") == "hello"
    assert calls[0].url.params["key"] == "test-gemini-key"
    assert ":generateContent" in calls[0].url.path
    assert json.loads(calls[0].content)["contents"][0]["parts"][0]["text"] == "prompt text"


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(200, json={"candidates": []}),
    httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}}),
    httpx.Response(200, text="not json"),
    httpx.Response(500, text="internal"),
    httpx.Response(400, json={"error": {"message": "API key not valid"}}),
])
async def test_malformed_or_failed_responses_raise_service_error(settings, response):
    gemini, _ = _gemini(settings, [response])
    with pytest.raises(ReasoningServiceError):
        await gemini.infer("prompt")


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(429, json=QUOTA_BODY),
    httpx.Response(403, json={"error": {"status": "RESOURCE_EXHAUSTED", "message": "quota exceeded"}}),
])
async def test_quota_responses_are_fatal(settings, response):
    gemini, _ = _gemini(settings, [response])
    with pytest.raises(ConnectorQuotaExhausted) as exc:
        await gemini.infer("prompt")
    assert exc.value.source == "gemini"


@pytest.mark.asyncio
async def test_missing_key_is_a_service_error(settings):
    settings.REASONING_API_KEY = ""
    with pytest.raises(ReasoningServiceError):
        await GeminiReasoningClient(settings).infer("prompt")


def test_client_only_built_when_key_configured(settings):
    assert build_reasoning_client(settings) is None
    settings.REASONING_API_KEY = "k"
    assert isinstance(build_reasoning_client(settings), GeminiReasoningClient)


@pytest.mark.asyncio
async def test_quota_during_triage_fails_the_pipeline(settings, make_context):
    gemini, _ = _gemini(settings, [httpx.Response(429, json=QUOTA_BODY)])
    primary = FakeConnector()
    pipeline = AnalysisPipeline(context=make_context(primary, reasoning=gemini))

    with pytest.raises(ConnectorQuotaExhausted):
        await pipeline.run(LEGIT)

    assert pipeline.state == PipelineState.FAILED
    assert pipeline.history == ["init", "triaging", "failed"]
    assert primary.calls == []


@pytest.mark.asyncio
async def test_quota_during_narrative_fails_the_pipeline(settings, make_context):
    gemini, calls = _gemini(settings, [
        httpx.Response(200, json=_candidate(TRIAGE_REPLY)),
        httpx.Response(429, json=QUOTA_BODY),
    ])
    primary = FakeConnector([[hit("Sentosa Abadi resmi", "terdaftar", "https://kompas.com/a")]])
    pipeline = AnalysisPipeline(context=make_context(primary, reasoning=gemini))

    with pytest.raises(ConnectorQuotaExhausted):
        await pipeline.run(LEGIT)

    assert len(calls) == 2
    assert pipeline.history[-2:] == ["narrating", "failed"]
