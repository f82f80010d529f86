from __future__ import annotations

import json

import pytest

from conftest import FakeReasoning
from riskscope.errors import ReasoningServiceError
from riskscope.trust.models import RiskLevel, StrategyName, SubjectProfile
from riskscope.trust.triage import (
    FALLBACK_CONFIDENCE, TriageClassifier, detect_industry, keyword_analysis, keyword_triage,
)

PONZI = SubjectProfile(
    name="Profit Kilat",
    description="Ponzi style program with guaranteed return of 30% monthly",
)
LEGIT = SubjectProfile(
    name="Sentosa Abadi",
    description="Registered with regulator, ISO certified",
)


def test_red_flags_triage_high_with_fraud_check_first():
    result = keyword_triage(keyword_analysis(PONZI))
    assert result.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL)
    assert result.strategy == StrategyName.DEEP
    assert result.method == "keyword"
    assert result.confidence == FALLBACK_CONFIDENCE
    assert result.investigation_focus[0] == "immediate_fraud_check"
    assert "ponzi" in result.red_flags


def test_legitimate_profile_triages_low_and_light():
    result = keyword_triage(keyword_analysis(LEGIT))
    assert result.risk_level == RiskLevel.LOW
    assert result.strategy == StrategyName.LIGHT
    assert "regulatory" in result.priority_patterns
    assert result.resource_estimate["estimatedQueries"] == 3


def test_industry_multiplier_scales_keyword_score():
    plain = keyword_analysis(SubjectProfile("Acme", "We sell goods with a referral bonus"))
    crypto = keyword_analysis(SubjectProfile("Acme", "We sell crypto goods with a referral bonus",
                                             industry="cryptocurrency"))
    assert crypto.multiplier == 1.5
    assert crypto.score > plain.score


def test_declared_industry_wins_over_text():
    profile = SubjectProfile("Acme", "An online store for phones", industry="Fintech")
    assert detect_industry(profile) == "fintech"


@pytest.mark.asyncio
async def test_reasoning_result_is_used():
    reply = json.dumps({
        "riskLevel": "medium", "initialScore": 42, "confidence": 80,
        "riskFactors": ["unverified claims"], "scrapingPriority": ["news", "fraud"],
        "reasoning": "Some claims cannot be verified.",
    })
    result = await TriageClassifier(FakeReasoning([reply])).classify(LEGIT)
    assert result.method == "ai"
    assert result.risk_level == RiskLevel.MEDIUM
    assert result.strategy == StrategyName.MEDIUM
    assert result.confidence == 80
    assert result.priority_patterns[:2] == ["news", "fraud"]


@pytest.mark.asyncio
async def test_reasoning_cannot_downgrade_red_flags():
    reply = '```json\n{"riskLevel": "low", "initialScore": 10, "confidence": 90}\n```'
    result = await TriageClassifier(FakeReasoning([reply])).classify(PONZI)
    assert result.method == "ai"
    assert result.risk_level == RiskLevel.HIGH
    assert result.initial_score >= 51


@pytest.mark.asyncio
async def test_reasoning_failure_falls_back_to_keywords():
    reasoning = FakeReasoning([ReasoningServiceError("timeout")])
    result = await TriageClassifier(reasoning).classify(PONZI)
    assert result.method == "keyword"
    assert result.confidence == FALLBACK_CONFIDENCE
    assert len(reasoning.prompts) == 1


@pytest.mark.asyncio
async def test_unparseable_reasoning_falls_back_to_keywords():
    result = await TriageClassifier(FakeReasoning(["I think it is fine."])).classify(LEGIT)
    assert result.method == "keyword"


@pytest.mark.asyncio
async def test_invalid_risk_level_falls_back_to_keywords():
    reply = '{"riskLevel": "catastrophic", "initialScore": 99}'
    result = await TriageClassifier(FakeReasoning([reply])).classify(LEGIT)
    assert result.method == "keyword"
