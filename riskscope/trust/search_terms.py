"""
RiskScope — Search-Term Generator

Builds the ordered query list for one collection run. Order matters: the
collector stops early on cumulative signal, so the queries most likely to
settle the question come first.

    1. Base identity query ("Name"), always first
    2. Category queries from the industry pattern table
       (legitimacy → official, fraud → fraud, regulatory → regulatory)
    3. Contextual queries conditioned on triage
       (fraud-risk → victims/complaints, low-risk → recognition/partnership)

Everything after the base query is ordered by search-type priority for the
triage risk level, then truncated to strategy.max_sources.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Dict

from riskscope.trust.keywords import CONTEXT_PATTERNS
from riskscope.trust.models import RiskLevel, SubjectProfile, TriageResult

SEARCH_TYPES = ("general", "fraud", "regulatory", "victims", "financial", "news", "official")

SEARCH_PRIORITY: Dict[RiskLevel, List[str]] = {
    RiskLevel.CRITICAL: ["fraud", "regulatory", "victims", "financial", "news", "general"],
    RiskLevel.HIGH: ["fraud", "regulatory", "victims", "financial", "news", "general"],
    RiskLevel.MEDIUM: ["general", "news", "fraud", "regulatory", "financial"],
    RiskLevel.LOW: ["general", "regulatory", "news", "official"],
}

# search type → evidence bucket used by the validator
SEARCH_TYPE_BUCKET = {
    "general": "general",
    "fraud": "fraud_mention",
    "victims": "fraud_mention",
    "regulatory": "regulatory",
    "news": "news",
    "official": "business_registration",
    "financial": "business_registration",
}


@dataclass(frozen=True)
class SearchQuery:
    query: str
    search_type: str

    @property
    def bucket(self) -> str:
        return SEARCH_TYPE_BUCKET.get(self.search_type, "general")

    def to_dict(self) -> Dict[str, str]:
        return {"query": self.query, "searchType": self.search_type, "bucket": self.bucket}


def _candidates(profile: SubjectProfile, triage: TriageResult) -> Dict[str, List[str]]:
    base = f'"{profile.name.strip()}"'
    patterns = CONTEXT_PATTERNS.get(triage.industry, CONTEXT_PATTERNS["manufacturing"])
    out: Dict[str, List[str]] = {t: [] for t in SEARCH_TYPES}

    if profile.region:
        out["general"].append(f"{base} {profile.region.strip()}")
    out["official"] += [f"{base} {t}" for t in patterns["legitimacy"]]
    out["fraud"] += [f"{base} {t}" for t in patterns["fraud"]]
    out["regulatory"] += [f"{base} {t}" for t in patterns["regulatory"]]

    fraud_signal = len(triage.red_flags) + len(triage.concerns)
    legit_signal = len(triage.legitimacy_signals)
    if fraud_signal > legit_signal:
        out["victims"] += [f"{base} korban penipuan", f"{base} keluhan pelanggan"]
        out["fraud"].append(f"{base} laporan scam")
    elif legit_signal > fraud_signal:
        out["official"] += [f"{base} licensed certified", f"{base} perusahaan resmi"]

    if triage.risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
        out["regulatory"] += [f"{base} investigasi", f"{base} sanksi"]
        out["news"].append(f"{base} peringatan")
    elif triage.risk_level == RiskLevel.LOW:
        out["news"] += [f"{base} penghargaan", f"{base} kerjasama"]

    if "formal" in triage.business_context:
        out["financial"].append(f"{base} laporan keuangan")
    out["news"].append(f"{base} berita")
    return out


def generate_search_terms(profile: SubjectProfile, triage: TriageResult) -> List[SearchQuery]:
    """Ordered, de-duplicated query list capped at the strategy's max_sources."""
    strategy = triage.strategy_config
    candidates = _candidates(profile, triage)

    order: List[str] = []
    if triage.method == "ai":
        order += [p for p in triage.priority_patterns if p in SEARCH_TYPES]
    order += SEARCH_PRIORITY[triage.risk_level]
    order += list(SEARCH_TYPES)

    queries = [SearchQuery(f'"{profile.name.strip()}"', "general")]
    seen = {queries[0].query}
    for search_type in dict.fromkeys(order):
        for q in candidates[search_type]:
            if q not in seen:
                seen.add(q)
                queries.append(SearchQuery(q, search_type))

    return queries[:strategy.max_sources]
