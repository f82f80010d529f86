"""
RiskScope — Triage Classifier

Fast preliminary risk leveling. Decides how much collection effort a
subject is worth:

    low      → light   (3 sources, 15s, stop at 5 results)
    medium   → medium  (5 sources, 30s, stop at 8 results)
    high     → deep    (8 sources, 45s, no early stop)
    critical → deep

Two passes:
    1. Keyword pass (always)  — red flags, concerns, legitimacy signals,
                                scaled by an industry risk multiplier
    2. Reasoning pass (optional) — structured prompt to the reasoning
                                service; a failed or unparseable answer
                                falls back to the keyword score with
                                confidence 40 (quota exhaustion propagates)
"""
from __future__ import annotations
import json
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

import structlog

from riskscope.compute.cache import QueryCache
from riskscope.errors import ReasoningServiceError
from riskscope.reasoning.client import ReasoningClient
from riskscope.reasoning.parse import parse_record
from riskscope.trust import keywords as kw
from riskscope.trust.models import (
    RiskLevel, SubjectProfile, TriageResult, STRATEGIES, STRATEGY_FOR_RISK,
    clamp, risk_level_for,
)

logger = structlog.get_logger()

FALLBACK_CONFIDENCE = 40
KEYWORD_BASE_SCORE = 20
RED_FLAG_WEIGHT = 25
CONCERN_WEIGHT = 10
LEGITIMACY_WEIGHT = -8

TRIAGE_FIELDS = ("riskLevel", "initialScore")


@dataclass
class KeywordAnalysis:
    red_flags: List[str] = field(default_factory=list)
    concerns: List[str] = field(default_factory=list)
    legitimacy: List[str] = field(default_factory=list)
    industry: str = "default"
    multiplier: float = 1.0
    contexts: List[str] = field(default_factory=list)
    score: float = 0.0


def detect_industry(profile: SubjectProfile) -> str:
    if profile.industry:
        declared = profile.industry.strip().lower()
        if declared in kw.INDUSTRY_MULTIPLIERS:
            return declared
        for industry, terms in kw.INDUSTRY_DETECTION.items():
            if kw.find_terms(declared, terms):
                return industry
    text = profile.text
    for industry, terms in kw.INDUSTRY_DETECTION.items():
        if kw.find_terms(text, terms):
            return industry
    return "default"


def detect_business_context(profile: SubjectProfile) -> List[str]:
    text = f" {profile.text} "
    return [ctx for ctx, terms in kw.BUSINESS_CONTEXTS.items() if kw.find_terms(text, terms)]


def keyword_analysis(profile: SubjectProfile) -> KeywordAnalysis:
    """Weighted keyword score over the three triage buckets."""
    text = profile.text
    analysis = KeywordAnalysis(
        red_flags=kw.find_terms(text, kw.IMMEDIATE_RED_FLAGS),
        concerns=kw.find_terms(text, kw.POTENTIAL_CONCERNS),
        legitimacy=kw.find_affirmed_terms(text, kw.LEGITIMACY_SIGNALS),
        industry=detect_industry(profile),
        contexts=detect_business_context(profile),
    )
    analysis.multiplier = kw.INDUSTRY_MULTIPLIERS.get(analysis.industry, 1.0)

    raw = (
        KEYWORD_BASE_SCORE
        + RED_FLAG_WEIGHT * len(analysis.red_flags)
        + CONCERN_WEIGHT * len(analysis.concerns)
        + LEGITIMACY_WEIGHT * len(analysis.legitimacy)
    )
    analysis.score = round(clamp(raw * analysis.multiplier), 1)
    return analysis


def build_triage_prompt(profile: SubjectProfile, analysis: KeywordAnalysis) -> str:
    return f"""You are a fraud-risk triage analyst. Classify the preliminary risk of this business.

BUSINESS
Name: {profile.name}
Description: {profile.description}
Region: {profile.region or "unknown"}
Industry: {analysis.industry} (risk multiplier {analysis.multiplier})
Business context: {", ".join(analysis.contexts) or "unknown"}

KEYWORD PRE-ANALYSIS
Immediate red flags: {", ".join(analysis.red_flags) or "none"}
Potential concerns: {", ".join(analysis.concerns) or "none"}
Legitimacy signals: {", ".join(analysis.legitimacy) or "none"}
Keyword score: {analysis.score}

SCORING CRITERIA
0-25 low, 26-50 medium, 51-75 high, 76-100 critical.

Respond with ONLY one JSON object:
{{
  "riskLevel": "low|medium|high|critical",
  "initialScore": 0-100,
  "confidence": 0-100,
  "riskFactors": ["..."],
  "investigationFocus": ["..."],
  "scrapingPriority": ["fraud|regulatory|victims|financial|news|general|official"],
  "reasoning": "one paragraph"
}}"""


def _investigation_focus(analysis: KeywordAnalysis) -> List[str]:
    focus = []
    if analysis.red_flags:
        focus.append("immediate_fraud_check")
    if "regulated" in analysis.contexts or analysis.industry in ("fintech", "lending", "investment", "banking", "cryptocurrency"):
        focus.append("regulatory_compliance")
    if analysis.red_flags or analysis.concerns:
        focus.append("victim_reports")
    focus.append("business_registration")
    if "digital" in analysis.contexts:
        focus.append("digital_footprint")
    if "formal" in analysis.contexts:
        focus.append("financial_health")
    return focus


def _enhance(result: TriageResult, analysis: KeywordAnalysis) -> TriageResult:
    """Strategy selection and investigation focus, shared by both passes."""
    result.strategy = STRATEGY_FOR_RISK[result.risk_level]
    result.industry = analysis.industry
    result.industry_multiplier = analysis.multiplier
    result.business_context = list(analysis.contexts)
    result.red_flags = list(analysis.red_flags)
    result.concerns = list(analysis.concerns)
    result.legitimacy_signals = list(analysis.legitimacy)

    # Heuristic focus leads (immediate_fraud_check first when red flags exist)
    focus = _investigation_focus(analysis)
    for item in result.investigation_focus:
        if item not in focus:
            focus.append(item)
    result.investigation_focus = focus

    if "regulated" in analysis.contexts and "regulatory" not in result.priority_patterns:
        result.priority_patterns.append("regulatory")

    strategy = STRATEGIES[result.strategy]
    result.resource_estimate = {
        "estimatedQueries": strategy.max_sources,
        "maxResultsPerSource": strategy.max_results_per_source,
        "estimatedSeconds": strategy.timeout_ms // 1000,
        "earlyTermination": strategy.early_termination,
    }
    return result


def keyword_triage(analysis: KeywordAnalysis) -> TriageResult:
    level = risk_level_for(analysis.score)
    factors = [f"red_flag:{t}" for t in analysis.red_flags] + [f"concern:{t}" for t in analysis.concerns]
    result = TriageResult(
        risk_level=level,
        initial_score=analysis.score,
        strategy=STRATEGY_FOR_RISK[level],
        confidence=FALLBACK_CONFIDENCE,
        risk_factors=factors,
        priority_patterns=list(analysis.red_flags + analysis.concerns),
        reasoning=(
            f"Keyword triage: {len(analysis.red_flags)} red flags, {len(analysis.concerns)} concerns, "
            f"{len(analysis.legitimacy)} legitimacy signals, industry '{analysis.industry}' x{analysis.multiplier}."
        ),
        method="keyword",
    )
    return _enhance(result, analysis)


def triage_from_record(record: Dict[str, Any], analysis: KeywordAnalysis) -> Optional[TriageResult]:
    """Build a TriageResult from a parsed reasoning record; None if it is unusable."""
    try:
        level = RiskLevel(str(record["riskLevel"]).strip().lower())
        score = clamp(float(record["initialScore"]))
        confidence = clamp(float(record.get("confidence", 70)))
    except (KeyError, ValueError, TypeError):
        return None

    # Explicit red flags never triage below high
    if analysis.red_flags and level in (RiskLevel.LOW, RiskLevel.MEDIUM):
        level = RiskLevel.HIGH
        score = max(score, 51.0)

    result = TriageResult(
        risk_level=level,
        initial_score=round(score, 1),
        strategy=STRATEGY_FOR_RISK[level],
        confidence=round(confidence, 1),
        risk_factors=[str(f) for f in record.get("riskFactors") or []],
        investigation_focus=[str(f) for f in record.get("investigationFocus") or []],
        priority_patterns=[str(p) for p in record.get("scrapingPriority") or []],
        reasoning=str(record.get("reasoning", "")),
        method="ai",
    )
    return _enhance(result, analysis)


class TriageClassifier:

    def __init__(self, reasoning: Optional[ReasoningClient] = None, cache: Optional[QueryCache] = None):
        self.reasoning = reasoning
        self.cache = cache

    @staticmethod
    def _cache_key(profile: SubjectProfile) -> str:
        return json.dumps(profile.to_dict(), sort_keys=True)

    async def classify(self, profile: SubjectProfile) -> TriageResult:
        key = self._cache_key(profile)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return TriageResult.from_dict(cached)

        analysis = keyword_analysis(profile)
        result: Optional[TriageResult] = None

        if self.reasoning is not None:
            try:
                text = await self.reasoning.infer(build_triage_prompt(profile, analysis))
                parsed = parse_record(text, required=TRIAGE_FIELDS)
                if parsed.ok:
                    result = triage_from_record(parsed.record, analysis)
                    if result is None:
                        logger.warning("triage_record_invalid", subject=profile.name[:50])
                else:
                    logger.warning("triage_parse_failed", subject=profile.name[:50], error=str(parsed.error))
            except ReasoningServiceError as e:
                logger.warning("triage_reasoning_failed", subject=profile.name[:50], error=str(e))

        if result is None:
            result = keyword_triage(analysis)

        logger.info("triage_complete",
                    subject=profile.name[:50],
                    risk_level=result.risk_level.value,
                    score=result.initial_score,
                    strategy=result.strategy.value,
                    method=result.method)

        if self.cache is not None:
            self.cache.set(key, result.to_dict())
        return result
