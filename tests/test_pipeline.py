"""
End-to-end pipeline tests with scripted evidence sources.
"""

from __future__ import annotations

import json
import random

import pytest

from conftest import FakeConnector, FakeReasoning, hit
from riskscope.compute import pipeline as pipeline_module
from riskscope.compute.pipeline import AnalysisPipeline
from riskscope.errors import ConnectorError, ConnectorQuotaExhausted
from riskscope.trust.models import (
    EvidenceQuality, PipelineState, RecommendedAction, RiskLevel, SubjectProfile,
)

LEGIT = SubjectProfile("Sentosa Abadi", "Registered with regulator, ISO certified")
PONZI = SubjectProfile("Profit Kilat", "Ponzi style program with guaranteed return of 30% monthly")

LEGIT_HITS = [
    hit("Sentosa Abadi perusahaan resmi", "Sentosa Abadi terdaftar resmi", "https://kompas.com/a"),
    hit("Sentosa Abadi certified supplier", "Pemasok bersertifikat", "https://bisnis.com/b"),
]
FRAUD_HITS = [
    hit("Profit Kilat penipuan", "banyak korban melapor", "https://detik.com/1"),
    hit("Waspada Profit Kilat", "investasi bodong, korban rugi", "https://tribun.com/2"),
    hit("Profit Kilat scam", "uang korban tidak kembali", "https://kaskus.co.id/3"),
]

TRIAGE_REPLY = json.dumps({"riskLevel": "low", "initialScore": 15, "confidence": 85,
                           "reasoning": "Registered, certified manufacturer."})
NARRATIVE_REPLY = json.dumps({
    "summary": "Sentosa Abadi looks legitimate.",
    "keyFindings": ["Registered with regulator"],
    "riskExplanation": "Strong legitimacy evidence.",
    "recommendations": ["Proceed"],
})


async def _run(make_context, profile, primary, reasoning=None, **kwargs):
    pipeline = AnalysisPipeline(context=make_context(primary, reasoning=reasoning))
    result = await pipeline.run(profile, **kwargs)
    return pipeline, result


@pytest.mark.asyncio
async def test_registered_subject_scores_low(make_context):
    """Legitimacy keywords plus two legitimacy hits give a low score and approval."""
    pipeline, result = await _run(make_context, LEGIT, FakeConnector([LEGIT_HITS]))

    assert result.category_scores.legitimacy_evidence > 70
    assert result.fraud_score <= 25
    assert result.risk_level == RiskLevel.LOW
    assert result.recommended_action == RecommendedAction.APPROVE
    assert len(result.evidence) == 2
    assert result.narrative.method == "template"
    assert result.triage.strategy.value == "light"
    assert pipeline.history == ["init", "triaging", "collecting", "validating", "scoring", "narrating", "done"]


@pytest.mark.asyncio
async def test_ponzi_subject_is_rejected(make_context):
    """Red flags plus three fraud hits give a critical score and rejection."""
    primary = FakeConnector([FRAUD_HITS])
    _, result = await _run(make_context, PONZI, primary)

    assert result.category_scores.fraud_indicators == 100
    assert result.fraud_score > 75
    assert result.risk_level == RiskLevel.CRITICAL
    assert result.recommended_action == RecommendedAction.REJECT
    assert result.triage.strategy.value == "deep"
    assert len(primary.calls) == 8
    assert all(a.field == "fraud_mention" for a in result.evidence)


@pytest.mark.asyncio
async def test_quota_exhaustion_fails_the_pipeline(make_context):
    primary = FakeConnector([ConnectorQuotaExhausted("serpapi", "run out of searches")])
    pipeline = AnalysisPipeline(context=make_context(primary))
    with pytest.raises(ConnectorQuotaExhausted):
        await pipeline.run(LEGIT)
    assert pipeline.state == PipelineState.FAILED
    assert pipeline.history[-1] == "failed"


@pytest.mark.asyncio
async def test_collection_crash_scores_on_profile_only(make_context):
    _, result = await _run(make_context, LEGIT, FakeConnector([RuntimeError("socket exploded")]))

    assert not result.degraded
    assert result.confidence <= 30
    assert result.evidence == []
    assert any("collection failed" in w for w in result.data_quality_warnings)
    assert result.processing["collection"]["failed"] is True


@pytest.mark.asyncio
async def test_unknown_error_returns_minimal_result(make_context, monkeypatch):
    def explode(signals):
        raise ValueError("bad math")

    monkeypatch.setattr(pipeline_module, "compute_analysis", explode)
    pipeline, result = await _run(make_context, PONZI, FakeConnector([FRAUD_HITS]))

    assert result.degraded
    assert result.confidence == 25
    assert result.evidence_quality == EvidenceQuality.MINIMAL
    assert result.recommended_action == RecommendedAction.MANUAL_REVIEW
    assert 0 <= result.fraud_score <= 100
    assert pipeline.history[-1] == "done"
    assert "scoring" in result.data_quality_warnings[0]


@pytest.mark.asyncio
async def test_unavailable_source_is_reported(make_context):
    primary = FakeConnector([ConnectorError("serpapi", "HTTP 401"), LEGIT_HITS])
    _, result = await _run(make_context, LEGIT, primary)

    # q0 failed, q1 returned hits, q2 answered with nothing
    assert result.sources_used == 2
    assert result.sources_scraped == 1
    assert any("unavailable" in w for w in result.data_quality_warnings)


@pytest.mark.asyncio
async def test_reasoning_service_drives_triage_and_narrative(make_context):
    reasoning = FakeReasoning([TRIAGE_REPLY, NARRATIVE_REPLY])
    _, result = await _run(make_context, LEGIT, FakeConnector([LEGIT_HITS]), reasoning=reasoning)

    assert result.triage.method == "ai"
    assert result.narrative.method == "ai"
    assert result.narrative.summary == "Sentosa Abadi looks legitimate."
    assert result.risk_level == RiskLevel.LOW


@pytest.mark.asyncio
async def test_bad_narrative_falls_back_to_template(make_context):
    reasoning = FakeReasoning([TRIAGE_REPLY, "Sorry, I cannot help with that."])
    _, result = await _run(make_context, LEGIT, FakeConnector([LEGIT_HITS]), reasoning=reasoning)

    assert result.narrative.method == "template"
    assert result.narrative.summary.startswith("Sentosa Abadi")


@pytest.mark.asyncio
async def test_enhanced_run_forces_deep_strategy(make_context):
    _, result = await _run(make_context, LEGIT, FakeConnector([LEGIT_HITS]), enhanced=True)

    assert result.triage.strategy.value == "deep"
    assert result.processing["enhanced"] is True
    assert result.processing["collection"]["strategy"]["name"] == "deep"


@pytest.mark.asyncio
async def test_random_collections_keep_scraped_sources_backed_by_evidence(make_context):
    """Any source that returned results leaves at least one evidence atom behind."""
    rng = random.Random(20240501)
    pool = LEGIT_HITS + FRAUD_HITS + [hit("Forum thread", "", "https://reddit.com/r/x")]
    for _ in range(25):
        script = []
        for _ in range(8):
            roll = rng.random()
            if roll < 0.15:
                script.append(ConnectorError("serpapi", "HTTP 500"))
            elif roll < 0.4:
                script.append([])
            else:
                script.append(rng.sample(pool, rng.randint(1, 3)))
        profile = rng.choice([LEGIT, PONZI])
        _, result = await _run(make_context, profile, FakeConnector(script))

        if result.sources_scraped > 0:
            assert result.evidence
        assert result.sources_scraped <= result.sources_used
        assert 0 <= result.fraud_score <= 100
        assert 25 <= result.confidence <= 100


def test_illegal_transition_is_rejected(make_context):
    pipeline = AnalysisPipeline(context=make_context())
    with pytest.raises(RuntimeError):
        pipeline._transition(PipelineState.SCORING)
