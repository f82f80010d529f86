"""
RiskScope — Fraud Scoring Engine
Tiered evidence fusion.

Architecture:
    Layer A — Evidence collection (connectors + orchestrator) → EvidenceSignals
    Layer B — Category sub-scores, each 0-100
    Layer C — Fusion, risk bucketing, confidence

Five scoring categories:
    Fraud Indicators      — red-flag terms, fraud-mention search hits
    Regulatory Warnings   — warning / suspension / revocation / investigations
    Legitimacy Evidence   — weighted keywords, web research, tier-0/1 bonus
    Public Sentiment      — negativity of what the web says (higher = worse)
    Web Research Impact   — how far research moved the picture (reported only)

    fraudScore = 0.5·fraud + 0.25·regulatory + 0.25·(100 − legitimacy) + 0.10·sentiment

Risk buckets: 0-25 low, 26-50 medium, 51-75 high, 76-100 critical.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Any, List

from riskscope.trust import keywords as kw
from riskscope.trust.models import (
    AnalysisResult, CategoryScores, EvidenceAtom, EvidenceQuality,
    RecommendedAction, RiskLevel, clamp, risk_level_for,
)


# ── Raw Signal Input ──────────────────────────────

@dataclass
class EvidenceSignals:
    """
    Every fact we know about a subject after collection.
    No scoring logic here — just data.
    """
    subject: str = ""
    profile_text: str = ""

    # Triage keyword pass
    red_flags: List[str] = field(default_factory=list)
    concerns: List[str] = field(default_factory=list)

    # Search-result signal counts (one per result carrying the term family)
    fraud_hits: int = 0
    legitimacy_hits: int = 0
    regulator_warning_found: bool = False
    regulatory_texts: List[str] = field(default_factory=list)

    # Collection
    atoms: List[EvidenceAtom] = field(default_factory=list)
    domains: List[str] = field(default_factory=list)
    sources_used: int = 0
    sources_scraped: int = 0
    fallback_checks: int = 0
    conclusive: bool = False
    collection_failed: bool = False


# ── Legitimacy ────────────────────────────────────

_WEB_LEGITIMACY_CAP = 20


def normalize_legitimacy(raw: float) -> float:
    """Piecewise-linear map of a 0-100 raw keyword sum onto the legitimacy scale."""
    x = clamp(raw)
    if x <= 20:
        return x * 1.25
    if x <= 50:
        return 25 + 0.83 * (x - 20)
    if x <= 80:
        return 50 + 0.83 * (x - 50)
    return 75 + 0.625 * (x - 80)


def tier_bonus(atoms: List[EvidenceAtom]) -> float:
    """+15 per tier-0 atom, +10 per tier-1 atom, never more than +30 in total."""
    tier0 = sum(1 for a in atoms if a.tier == 0)
    tier1 = sum(1 for a in atoms if a.tier == 1)
    return min(30.0, 15.0 * tier0 + 10.0 * tier1)


def legitimacy_keyword_score(text: str) -> tuple[float, Dict[str, float]]:
    found = kw.find_affirmed_terms(text, kw.LEGITIMACY_WEIGHTS)
    hits = {term: float(kw.LEGITIMACY_WEIGHTS[term]) for term in found}
    return sum(hits.values()), hits


def score_legitimacy(s: EvidenceSignals) -> tuple[float, Dict[str, float]]:
    """Category: does the subject look like a real, registered business?"""
    raw, breakdown = legitimacy_keyword_score(s.profile_text)

    if any(a.tier == 0 or a.field == "business_registration" for a in s.atoms):
        breakdown["web_business_registration"] = 15
    if len(s.domains) >= 5:
        breakdown["web_digital_footprint"] = 10
    elif len(s.domains) >= 2:
        breakdown["web_digital_footprint"] = 5
    if s.legitimacy_hits:
        breakdown["web_legitimacy_signals"] = min(s.legitimacy_hits * 5, _WEB_LEGITIMACY_CAP)

    raw = min(sum(breakdown.values()), 100)
    normalized = normalize_legitimacy(raw)
    bonus = tier_bonus(s.atoms)
    breakdown["_raw"] = raw
    breakdown["_normalized"] = round(normalized, 2)
    breakdown["_tier_bonus"] = bonus
    return round(clamp(normalized + bonus), 2), breakdown


# ── Fraud indicators ──────────────────────────────

def score_fraud_indicators(s: EvidenceSignals) -> tuple[float, Dict[str, float]]:
    """Category: what points at fraud, in the profile and on the web."""
    breakdown = {}
    if s.red_flags:
        breakdown["red_flags"] = 25 * len(s.red_flags)
    if s.concerns:
        breakdown["concerns"] = 10 * len(s.concerns)
    suspicious = kw.find_terms(s.profile_text, kw.SUSPICIOUS_CONCERNS)
    if suspicious:
        breakdown["suspicious_language"] = 5 * len(suspicious)
    if s.fraud_hits:
        breakdown["fraud_search_hits"] = 20 * s.fraud_hits
    return clamp(sum(breakdown.values())), breakdown


# ── Regulatory warnings ───────────────────────────

def score_regulatory_warnings(s: EvidenceSignals) -> tuple[float, Dict[str, float]]:
    """Category: has a regulator said anything about this subject?"""
    breakdown: Dict[str, float] = {}
    joined = " ".join(s.regulatory_texts).lower()

    status_score = 0
    for status, (points, terms) in kw.REGULATORY_STATUS_TERMS.items():
        if kw.find_terms(joined, terms) and points > status_score:
            status_score = points
            breakdown = {f"status_{status}": points}
    if s.regulator_warning_found and status_score == 0:
        breakdown["status_warning_issued"] = 70

    investigations = sum(1 for t in s.regulatory_texts if kw.find_terms(t, kw.INVESTIGATION_TERMS))
    if investigations:
        breakdown["investigations"] = min(investigations * 20, 60)
    return clamp(sum(breakdown.values())), breakdown


# ── Public sentiment ──────────────────────────────

def sentiment_label(s: EvidenceSignals) -> str:
    if s.fraud_hits and s.fraud_hits > s.legitimacy_hits:
        return "negative"
    if s.fraud_hits and s.legitimacy_hits:
        return "mixed"
    if s.legitimacy_hits:
        return "positive"
    return "neutral"


def score_public_sentiment(s: EvidenceSignals) -> tuple[float, Dict[str, float]]:
    """Category: negativity of public mentions. Higher means riskier."""
    breakdown = {}
    label = sentiment_label(s)
    if label == "negative":
        breakdown["negative_sentiment"] = 40
    elif label == "mixed":
        breakdown["mixed_sentiment"] = 20
    if s.fraud_hits:
        breakdown["fraud_mentions"] = min(s.fraud_hits * 15, 45)

    fraud_atoms = sum(1 for a in s.atoms if a.field == "fraud_mention")
    if fraud_atoms >= 2 and fraud_atoms * 2 >= len(s.atoms):
        breakdown["negative_footprint"] = 30
    return clamp(sum(breakdown.values())), breakdown


# ── Web research impact ───────────────────────────

def score_web_research_impact(s: EvidenceSignals) -> tuple[float, Dict[str, float]]:
    net = s.legitimacy_hits - s.fraud_hits
    score = min(abs(net) * 5, 100)
    if s.sources_used > 0:
        score = max(score, 10)
    return float(score), {"net_signal": net}


# ── Quality & confidence ──────────────────────────

QUALITY_THRESHOLDS = (
    (60, EvidenceQuality.COMPREHENSIVE),
    (40, EvidenceQuality.GOOD),
    (20, EvidenceQuality.LIMITED),
)


def evidence_points(s: EvidenceSignals) -> Dict[str, int]:
    """Per-category contribution points that make up the evidence-quality tally."""
    points = {}
    if any(a.tier <= 1 or a.field == "regulatory" for a in s.atoms):
        points["regulatory"] = 20
    if any(a.field == "news" for a in s.atoms):
        points["news"] = 15
    if any(a.field == "business_registration" for a in s.atoms):
        points["business"] = 10
    if s.fallback_checks:
        points["fallback_checks"] = 5 * s.fallback_checks
    if s.conclusive:
        points["conclusive"] = 20
    return points


def evidence_quality_for(tally: int) -> EvidenceQuality:
    for threshold, quality in QUALITY_THRESHOLDS:
        if tally >= threshold:
            return quality
    return EvidenceQuality.MINIMAL


def compute_confidence(s: EvidenceSignals, tally: int) -> tuple[int, Dict[str, float]]:
    components = {
        "base": 25.0,
        "evidence_volume": float(min(30, 3 * len(s.atoms))),
        "source_diversity": float(min(20, 5 * len(set(s.domains)))),
        "quality_tally": round(min(tally, 100) * 0.25, 2),
    }
    confidence = sum(components.values())
    if any(a.tier <= 1 for a in s.atoms):
        components["authoritative_bonus"] = 10.0
        confidence += 10
    else:
        confidence = min(confidence, 75)
    if s.collection_failed:
        confidence = min(confidence, 30)
    return int(round(clamp(confidence, 25, 100))), components


RECOMMENDED_ACTIONS = {
    RiskLevel.CRITICAL: RecommendedAction.REJECT,
    RiskLevel.HIGH: RecommendedAction.MANUAL_REVIEW,
    RiskLevel.MEDIUM: RecommendedAction.INVESTIGATE,
    RiskLevel.LOW: RecommendedAction.APPROVE,
}


def fuse(scores: CategoryScores) -> float:
    raw = (
        0.5 * scores.fraud_indicators
        + 0.25 * scores.regulatory_warnings
        + 0.25 * (100 - scores.legitimacy_evidence)
        + 0.10 * scores.public_sentiment
    )
    return clamp(raw)


# ── Findings ──────────────────────────────────────

def _findings(s: EvidenceSignals, breakdowns: Dict[str, Dict[str, float]]) -> Dict[str, List[str]]:
    out: Dict[str, List[str]] = {
        "fraudIndicators": [],
        "regulatoryWarnings": [],
        "legitimacyEvidence": [],
        "publicSentiment": [],
        "webResearchImpact": [],
    }
    out["fraudIndicators"] += [f"Red-flag term in profile: '{t}'" for t in s.red_flags]
    out["fraudIndicators"] += [f"Concerning term in profile: '{t}'" for t in s.concerns]
    if s.fraud_hits:
        out["fraudIndicators"].append(f"{s.fraud_hits} search result(s) mention fraud-related terms")

    for key in breakdowns["regulatoryWarnings"]:
        if key.startswith("status_"):
            out["regulatoryWarnings"].append(f"Regulatory status signal: {key[len('status_'):]}")
    if "investigations" in breakdowns["regulatoryWarnings"]:
        out["regulatoryWarnings"].append("Investigation reports found in regulatory results")

    keywords_found = [k for k in breakdowns["legitimacyEvidence"] if not k.startswith(("_", "web_"))]
    if keywords_found:
        out["legitimacyEvidence"].append(f"Legitimacy keywords: {', '.join(keywords_found)}")
    if s.legitimacy_hits:
        out["legitimacyEvidence"].append(f"{s.legitimacy_hits} search result(s) carry legitimacy signals")
    authoritative = sum(1 for a in s.atoms if a.tier <= 1)
    if authoritative:
        out["legitimacyEvidence"].append(
            f"{authoritative} tier-0/1 evidence atom(s), bonus +{breakdowns['legitimacyEvidence']['_tier_bonus']:.0f}"
        )

    out["publicSentiment"].append(f"Public sentiment: {sentiment_label(s)}")
    out["webResearchImpact"].append(
        f"{s.sources_used} source(s) answered, {len(set(s.domains))} distinct domain(s), {len(s.atoms)} evidence atom(s)"
    )
    return out


# ── Main Entry Point ──────────────────────────────

def compute_analysis(s: EvidenceSignals) -> AnalysisResult:
    """
    THE scoring function. Takes collected signals, returns an AnalysisResult
    with category scores, findings, quality and confidence.
    """
    fi, fi_bd = score_fraud_indicators(s)
    rw, rw_bd = score_regulatory_warnings(s)
    le, le_bd = score_legitimacy(s)
    ps, ps_bd = score_public_sentiment(s)
    wr, wr_bd = score_web_research_impact(s)

    scores = CategoryScores(
        fraud_indicators=round(fi, 2),
        regulatory_warnings=round(rw, 2),
        legitimacy_evidence=round(le, 2),
        public_sentiment=round(ps, 2),
        web_research_impact=round(wr, 2),
    )
    fraud_score = int(round(fuse(scores)))
    level = risk_level_for(fraud_score)

    points = evidence_points(s)
    tally = sum(points.values())
    confidence, conf_components = compute_confidence(s, tally)

    breakdowns = {
        "fraudIndicators": fi_bd,
        "regulatoryWarnings": rw_bd,
        "legitimacyEvidence": le_bd,
        "publicSentiment": ps_bd,
        "webResearchImpact": wr_bd,
    }

    return AnalysisResult(
        subject=s.subject,
        fraud_score=fraud_score,
        risk_level=level,
        confidence=confidence,
        recommended_action=RECOMMENDED_ACTIONS[level],
        evidence_quality=evidence_quality_for(tally),
        category_scores=scores,
        evidence_breakdown=_findings(s, breakdowns),
        evidence=list(s.atoms),
        sources_used=s.sources_used,
        sources_scraped=s.sources_scraped,
        processing={
            "scoreBreakdown": {k: {bk: float(bv) for bk, bv in v.items()} for k, v in breakdowns.items()},
            "evidencePoints": points,
            "evidenceTally": tally,
            "confidenceComponents": conf_components,
        },
    )


def score_summary(result: AnalysisResult) -> Dict[str, Any]:
    """Compact view for logs."""
    return {
        "fraud_score": result.fraud_score,
        "risk_level": result.risk_level.value,
        "confidence": result.confidence,
        "evidence_quality": result.evidence_quality.value,
        "atoms": len(result.evidence),
    }
