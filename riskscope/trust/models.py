"""
RiskScope — Data Model

SubjectProfile    what the caller submits (immutable)
EvidenceAtom      one externally sourced fact, tier 0 (registry) .. 3 (forum)
TriageResult      preliminary risk level + collection strategy
CategoryScores    five 0-100 sub-scores
AnalysisResult    the only artifact returned to the caller

Everything serializes to camelCase dicts (the wire format) and parses back
with from_dict; to_dict(from_dict(d)) == d.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
from enum import Enum


# ── Enums ─────────────────────────────────────────

class RiskLevel(str, Enum):
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"


class StrategyName(str, Enum):
    LIGHT  = "light"
    MEDIUM = "medium"
    DEEP   = "deep"


class Verification(str, Enum):
    EXACT      = "exact"
    VERIFIED   = "verified"
    PARTIAL    = "partial"
    UNVERIFIED = "unverified"


class RecommendedAction(str, Enum):
    APPROVE       = "approve"
    INVESTIGATE   = "investigate"
    REJECT        = "reject"
    MANUAL_REVIEW = "manual_review"


class EvidenceQuality(str, Enum):
    COMPREHENSIVE = "comprehensive"
    GOOD          = "good"
    LIMITED       = "limited"
    MINIMAL       = "minimal"


class PipelineState(str, Enum):
    INIT       = "init"
    TRIAGING   = "triaging"
    COLLECTING = "collecting"
    VALIDATING = "validating"
    SCORING    = "scoring"
    NARRATING  = "narrating"
    DONE       = "done"
    FAILED     = "failed"


# ── Risk buckets ──────────────────────────────────

# Upper bound (inclusive) of each bucket on a 0-100 fraud score.
RISK_BUCKETS = (
    (25, RiskLevel.LOW),
    (50, RiskLevel.MEDIUM),
    (75, RiskLevel.HIGH),
    (100, RiskLevel.CRITICAL),
)


def risk_level_for(score: float) -> RiskLevel:
    s = round(min(max(score, 0), 100))
    for upper, level in RISK_BUCKETS:
        if s <= upper:
            return level
    return RiskLevel.CRITICAL


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return min(max(value, low), high)


# ── Strategy ──────────────────────────────────────

@dataclass(frozen=True)
class StrategyConfig:
    """Budget profile for one collection run."""
    name: StrategyName
    max_sources: int
    max_results_per_source: int
    timeout_ms: int
    early_termination: bool
    termination_threshold: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name.value,
            "maxSources": self.max_sources,
            "maxResultsPerSource": self.max_results_per_source,
            "timeoutMs": self.timeout_ms,
            "earlyTermination": self.early_termination,
            "terminationThreshold": self.termination_threshold,
        }


STRATEGIES: Dict[StrategyName, StrategyConfig] = {
    StrategyName.LIGHT: StrategyConfig(StrategyName.LIGHT, 3, 3, 15_000, True, 5),
    StrategyName.MEDIUM: StrategyConfig(StrategyName.MEDIUM, 5, 5, 30_000, True, 8),
    StrategyName.DEEP: StrategyConfig(StrategyName.DEEP, 8, 8, 45_000, False, None),
}

STRATEGY_FOR_RISK = {
    RiskLevel.LOW: StrategyName.LIGHT,
    RiskLevel.MEDIUM: StrategyName.MEDIUM,
    RiskLevel.HIGH: StrategyName.DEEP,
    RiskLevel.CRITICAL: StrategyName.DEEP,
}


# ── Subject ───────────────────────────────────────

@dataclass(frozen=True)
class SubjectProfile:
    name: str
    description: str
    region: Optional[str] = None
    industry: Optional[str] = None

    @property
    def text(self) -> str:
        return f"{self.name} {self.description}".lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "region": self.region,
            "industry": self.industry,
        }


# ── Evidence ──────────────────────────────────────

@dataclass(frozen=True)
class EvidenceAtom:
    tier: int
    source: str
    field: str
    value: str
    url: str
    timestamp: str
    verification: Verification
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier,
            "source": self.source,
            "field": self.field,
            "value": self.value,
            "url": self.url,
            "timestamp": self.timestamp,
            "verification": self.verification.value,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "EvidenceAtom":
        return cls(
            tier=int(d["tier"]),
            source=d["source"],
            field=d["field"],
            value=d["value"],
            url=d["url"],
            timestamp=d["timestamp"],
            verification=Verification(d["verification"]),
            confidence=float(d["confidence"]),
        )


# ── Triage ────────────────────────────────────────

@dataclass
class TriageResult:
    risk_level: RiskLevel
    initial_score: float
    strategy: StrategyName
    confidence: float
    risk_factors: List[str] = field(default_factory=list)
    investigation_focus: List[str] = field(default_factory=list)
    priority_patterns: List[str] = field(default_factory=list)
    business_context: List[str] = field(default_factory=list)
    industry: str = "default"
    industry_multiplier: float = 1.0
    red_flags: List[str] = field(default_factory=list)
    concerns: List[str] = field(default_factory=list)
    legitimacy_signals: List[str] = field(default_factory=list)
    reasoning: str = ""
    method: str = "keyword"          # "ai" | "keyword"
    resource_estimate: Dict[str, Any] = field(default_factory=dict)

    @property
    def strategy_config(self) -> StrategyConfig:
        return STRATEGIES[self.strategy]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "riskLevel": self.risk_level.value,
            "initialScore": self.initial_score,
            "strategy": self.strategy.value,
            "confidence": self.confidence,
            "riskFactors": list(self.risk_factors),
            "investigationFocus": list(self.investigation_focus),
            "priorityPatterns": list(self.priority_patterns),
            "businessContext": list(self.business_context),
            "industry": self.industry,
            "industryMultiplier": self.industry_multiplier,
            "redFlags": list(self.red_flags),
            "concerns": list(self.concerns),
            "legitimacySignals": list(self.legitimacy_signals),
            "reasoning": self.reasoning,
            "method": self.method,
            "resourceEstimate": dict(self.resource_estimate),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TriageResult":
        return cls(
            risk_level=RiskLevel(d["riskLevel"]),
            initial_score=d["initialScore"],
            strategy=StrategyName(d["strategy"]),
            confidence=d["confidence"],
            risk_factors=list(d.get("riskFactors", [])),
            investigation_focus=list(d.get("investigationFocus", [])),
            priority_patterns=list(d.get("priorityPatterns", [])),
            business_context=list(d.get("businessContext", [])),
            industry=d.get("industry", "default"),
            industry_multiplier=d.get("industryMultiplier", 1.0),
            red_flags=list(d.get("redFlags", [])),
            concerns=list(d.get("concerns", [])),
            legitimacy_signals=list(d.get("legitimacySignals", [])),
            reasoning=d.get("reasoning", ""),
            method=d.get("method", "keyword"),
            resource_estimate=dict(d.get("resourceEstimate", {})),
        )


# ── Scores ────────────────────────────────────────

@dataclass
class CategoryScores:
    fraud_indicators: float = 0.0
    regulatory_warnings: float = 0.0
    legitimacy_evidence: float = 0.0
    public_sentiment: float = 0.0
    web_research_impact: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "fraudIndicators": self.fraud_indicators,
            "regulatoryWarnings": self.regulatory_warnings,
            "legitimacyEvidence": self.legitimacy_evidence,
            "publicSentiment": self.public_sentiment,
            "webResearchImpact": self.web_research_impact,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CategoryScores":
        return cls(
            fraud_indicators=d.get("fraudIndicators", 0.0),
            regulatory_warnings=d.get("regulatoryWarnings", 0.0),
            legitimacy_evidence=d.get("legitimacyEvidence", 0.0),
            public_sentiment=d.get("publicSentiment", 0.0),
            web_research_impact=d.get("webResearchImpact", 0.0),
        )


@dataclass
class Narrative:
    summary: str
    key_findings: List[str] = field(default_factory=list)
    risk_explanation: str = ""
    recommendations: List[str] = field(default_factory=list)
    confidence_reasoning: str = ""
    business_context: str = ""
    method: str = "template"         # "ai" | "template"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "keyFindings": list(self.key_findings),
            "riskExplanation": self.risk_explanation,
            "recommendations": list(self.recommendations),
            "confidenceReasoning": self.confidence_reasoning,
            "businessContext": self.business_context,
            "method": self.method,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Narrative":
        return cls(
            summary=d.get("summary", ""),
            key_findings=list(d.get("keyFindings", [])),
            risk_explanation=d.get("riskExplanation", ""),
            recommendations=list(d.get("recommendations", [])),
            confidence_reasoning=d.get("confidenceReasoning", ""),
            business_context=d.get("businessContext", ""),
            method=d.get("method", "template"),
        )


# ── Main output ───────────────────────────────────

@dataclass
class AnalysisResult:
    """The final output. Every field is API-ready."""
    subject: str
    fraud_score: int
    risk_level: RiskLevel
    confidence: int
    recommended_action: RecommendedAction
    evidence_quality: EvidenceQuality
    category_scores: CategoryScores = field(default_factory=CategoryScores)

    # Per-category findings: {"fraudIndicators": ["..."], ...}
    evidence_breakdown: Dict[str, List[str]] = field(default_factory=dict)
    evidence: List[EvidenceAtom] = field(default_factory=list)

    triage: Optional[TriageResult] = None
    narrative: Optional[Narrative] = None

    sources_used: int = 0
    sources_scraped: int = 0
    data_quality_warnings: List[str] = field(default_factory=list)
    validation_issues: List[Dict[str, Any]] = field(default_factory=list)
    processing: Dict[str, Any] = field(default_factory=dict)
    degraded: bool = False
    engine_version: str = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "fraudScore": self.fraud_score,
            "riskLevel": self.risk_level.value,
            "confidence": self.confidence,
            "recommendedAction": self.recommended_action.value,
            "evidenceQuality": self.evidence_quality.value,
            "categoryScores": self.category_scores.to_dict(),
            "evidenceBreakdown": {k: list(v) for k, v in self.evidence_breakdown.items()},
            "evidence": [a.to_dict() for a in self.evidence],
            "triage": self.triage.to_dict() if self.triage else None,
            "narrative": self.narrative.to_dict() if self.narrative else None,
            "sourcesUsed": self.sources_used,
            "sourcesScraped": self.sources_scraped,
            "dataQualityWarnings": list(self.data_quality_warnings),
            "validationIssues": [dict(i) for i in self.validation_issues],
            "processing": dict(self.processing),
            "degraded": self.degraded,
            "engineVersion": self.engine_version,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AnalysisResult":
        return cls(
            subject=d["subject"],
            fraud_score=d["fraudScore"],
            risk_level=RiskLevel(d["riskLevel"]),
            confidence=d["confidence"],
            recommended_action=RecommendedAction(d["recommendedAction"]),
            evidence_quality=EvidenceQuality(d["evidenceQuality"]),
            category_scores=CategoryScores.from_dict(d.get("categoryScores", {})),
            evidence_breakdown={k: list(v) for k, v in d.get("evidenceBreakdown", {}).items()},
            evidence=[EvidenceAtom.from_dict(a) for a in d.get("evidence", [])],
            triage=TriageResult.from_dict(d["triage"]) if d.get("triage") else None,
            narrative=Narrative.from_dict(d["narrative"]) if d.get("narrative") else None,
            sources_used=d.get("sourcesUsed", 0),
            sources_scraped=d.get("sourcesScraped", 0),
            data_quality_warnings=list(d.get("dataQualityWarnings", [])),
            validation_issues=[dict(i) for i in d.get("validationIssues", [])],
            processing=dict(d.get("processing", {})),
            degraded=d.get("degraded", False),
            engine_version=d.get("engineVersion", "1.0.0"),
        )
