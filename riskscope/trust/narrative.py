"""
RiskScope — Narrative Synthesizer

Turns an AnalysisResult into summary / key findings / explanation /
recommendations. Uses the reasoning service when one is configured and
falls back to templates keyed by risk bucket when it is not, or when its
answer cannot be parsed.
"""
from __future__ import annotations
import json
from typing import Optional, List

import structlog

from riskscope.errors import ReasoningServiceError
from riskscope.reasoning.client import ReasoningClient
from riskscope.reasoning.parse import parse_record
from riskscope.trust.models import AnalysisResult, Narrative, RiskLevel, SubjectProfile

logger = structlog.get_logger()

NARRATIVE_FIELDS = ("summary", "keyFindings", "riskExplanation", "recommendations")

TEMPLATES = {
    "severe": {
        "summary": "{name} shows strong indicators of fraudulent or high-risk activity (fraud score {score}/100, {level} risk).",
        "explanation": "Fraud-related signals dominate the collected evidence and legitimacy evidence is weak. "
                       "The combination is typical of schemes that should not be engaged without a full investigation.",
        "recommendations": [
            "Do not proceed with onboarding or investment at this time",
            "Escalate to compliance for manual investigation",
            "Verify registration directly with the relevant regulator",
            "Check for consumer complaints and victim reports",
        ],
    },
    "moderate": {
        "summary": "{name} presents a mixed risk profile (fraud score {score}/100, {level} risk).",
        "explanation": "Some risk signals were found alongside partial legitimacy evidence. "
                       "The available evidence does not settle the question either way.",
        "recommendations": [
            "Perform enhanced due diligence before proceeding",
            "Request registration and licensing documents",
            "Monitor public sources for new complaints",
        ],
    },
    "low": {
        "summary": "{name} appears to be a legitimate business (fraud score {score}/100, {level} risk).",
        "explanation": "Legitimacy evidence outweighs risk signals and no regulatory warnings were found.",
        "recommendations": [
            "Proceed with standard due diligence",
            "Re-check periodically for new regulatory actions",
        ],
    },
}


def _bucket(level: RiskLevel) -> str:
    if level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
        return "severe"
    if level == RiskLevel.MEDIUM:
        return "moderate"
    return "low"


def explain_confidence(result: AnalysisResult) -> str:
    if result.confidence >= 80:
        band = "High confidence: the assessment rests on multiple corroborating, authoritative sources."
    elif result.confidence >= 60:
        band = "Moderate confidence: the evidence is reasonable but not exhaustive."
    else:
        band = "Limited confidence: little external evidence was available; treat the score as preliminary."
    return f"{band} Evidence quality is {result.evidence_quality.value} ({len(result.evidence)} evidence atoms)."


def _business_context(profile: SubjectProfile, result: AnalysisResult) -> str:
    parts = []
    if result.triage is not None:
        parts.append(f"Industry: {result.triage.industry}")
        if result.triage.business_context:
            parts.append(f"context: {', '.join(result.triage.business_context)}")
    if profile.region:
        parts.append(f"region: {profile.region}")
    return "; ".join(parts) or "No business context detected"


def _key_findings(result: AnalysisResult, limit: int = 6) -> List[str]:
    findings = []
    for items in result.evidence_breakdown.values():
        findings.extend(items)
    return findings[:limit]


def template_narrative(profile: SubjectProfile, result: AnalysisResult) -> Narrative:
    template = TEMPLATES[_bucket(result.risk_level)]
    fmt = {"name": profile.name, "score": result.fraud_score, "level": result.risk_level.value}
    return Narrative(
        summary=template["summary"].format(**fmt),
        key_findings=_key_findings(result),
        risk_explanation=template["explanation"],
        recommendations=list(template["recommendations"]),
        confidence_reasoning=explain_confidence(result),
        business_context=_business_context(profile, result),
        method="template",
    )


def build_narrative_prompt(profile: SubjectProfile, result: AnalysisResult) -> str:
    payload = {
        "fraudScore": result.fraud_score,
        "riskLevel": result.risk_level.value,
        "confidence": result.confidence,
        "evidenceQuality": result.evidence_quality.value,
        "recommendedAction": result.recommended_action.value,
        "categoryScores": result.category_scores.to_dict(),
        "findings": result.evidence_breakdown,
    }
    return f"""You are a compliance analyst writing a fraud-risk briefing.

BUSINESS: {profile.name}
DESCRIPTION: {profile.description}

ANALYSIS
{json.dumps(payload, indent=2)}

Do not change the score or risk level. Respond with ONLY one JSON object:
{{
  "summary": "2-3 sentences",
  "keyFindings": ["..."],
  "riskExplanation": "why the score is what it is",
  "recommendations": ["..."],
  "confidenceReasoning": "how much to trust this",
  "businessContext": "industry and market context"
}}"""


class NarrativeSynthesizer:

    def __init__(self, reasoning: Optional[ReasoningClient] = None):
        self.reasoning = reasoning

    async def synthesize(self, profile: SubjectProfile, result: AnalysisResult) -> Narrative:
        if self.reasoning is None:
            return template_narrative(profile, result)

        try:
            text = await self.reasoning.infer(build_narrative_prompt(profile, result))
        except ReasoningServiceError as e:
            logger.warning("narrative_reasoning_failed", subject=profile.name[:50], error=str(e))
            return template_narrative(profile, result)

        parsed = parse_record(text, required=NARRATIVE_FIELDS)
        if not parsed.ok:
            logger.warning("narrative_parse_failed", subject=profile.name[:50], error=str(parsed.error))
            return template_narrative(profile, result)

        record = parsed.record
        fallback = template_narrative(profile, result)
        return Narrative(
            summary=str(record["summary"]),
            key_findings=[str(f) for f in record.get("keyFindings") or []] or fallback.key_findings,
            risk_explanation=str(record["riskExplanation"]),
            recommendations=[str(r) for r in record.get("recommendations") or []] or fallback.recommendations,
            confidence_reasoning=str(record.get("confidenceReasoning") or fallback.confidence_reasoning),
            business_context=str(record.get("businessContext") or fallback.business_context),
            method="ai",
        )
