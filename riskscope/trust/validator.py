"""
RiskScope — Evidence Validator / Normalizer

Raw connector records go in, EvidenceAtoms come out. Nothing is dropped for
being out of range: a bad tier or confidence is clamped, logged and
recorded as a ValidationError next to the atom.

Tier by source authority:
    0  authoritative public registries   (ahu.go.id, oss.go.id, idx.co.id, ...)
    1  sector regulators / government    (ojk.go.id, bi.go.id, sec.gov, ...)
    2  news, secondary registries, general web
    3  social media and forums
"""
from __future__ import annotations
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

import structlog

from riskscope.errors import ValidationError
from riskscope.trust.models import EvidenceAtom, SubjectProfile, Verification

logger = structlog.get_logger()

DEFAULT_CONFIDENCE = 0.7
MAX_TIER = 3

REGISTRY_DOMAINS = (
    "ahu.go.id", "oss.go.id", "idx.co.id", "opencorporates.com",
    "find-and-update.company-information.service.gov.uk",
)
REGULATOR_DOMAINS = (
    "ojk.go.id", "bi.go.id", "bappebti.go.id", "kemenkeu.go.id", "kominfo.go.id",
    "sec.gov", "fca.org.uk", "finra.org", "mas.gov.sg",
)
SOCIAL_DOMAINS = (
    "facebook.com", "twitter.com", "x.com", "instagram.com", "tiktok.com",
    "reddit.com", "kaskus.co.id", "youtube.com", "quora.com", "linkedin.com",
)

# bucket → (tier, verification, confidence); None confidence = use relevance
BUCKET_DEFAULTS: Dict[str, Tuple[int, Verification, Optional[float]]] = {
    "regulatory": (1, Verification.VERIFIED, None),
    "business_registration": (2, Verification.PARTIAL, 0.6),
    "news": (2, Verification.PARTIAL, 0.5),
    "fraud_mention": (2, Verification.PARTIAL, 0.7),
    "general": (2, Verification.UNVERIFIED, DEFAULT_CONFIDENCE),
}

PROFILE_LIMITS = {"name": 200, "description": 2000, "region": 100, "industry": 100}
MIN_DESCRIPTION_LENGTH = 10


def _host(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def _matches(host: str, domains) -> bool:
    return any(host == d or host.endswith("." + d) for d in domains)


def authority_tier(url: str, bucket: str = "general") -> int:
    """Default tier from the URL's authority, falling back to the bucket default."""
    host = _host(url)
    if host:
        if _matches(host, REGISTRY_DOMAINS):
            return 0
        if _matches(host, REGULATOR_DOMAINS) or host.endswith(".go.id") or host.endswith(".gov"):
            return 1
        if _matches(host, SOCIAL_DOMAINS):
            return 3
    return BUCKET_DEFAULTS.get(bucket, BUCKET_DEFAULTS["general"])[0]


# ── Builder ───────────────────────────────────────

@dataclass
class BuildResult:
    """Result<EvidenceAtom, ValidationError>: atom is None only when the record is unusable."""
    atom: Optional[EvidenceAtom] = None
    issues: List[ValidationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.atom is not None


class EvidenceAtomBuilder:
    """
    Checks every field of a raw record at construction time.

    Usage:
        result = EvidenceAtomBuilder().build({"source": "serpapi", "url": ..., ...})
        if result.ok:
            atoms.append(result.atom)
        issues.extend(result.issues)
    """

    def build(self, raw: Any) -> BuildResult:
        if not isinstance(raw, Mapping):
            return BuildResult(issues=[ValidationError("record", "not a mapping", raw)])

        issues: List[ValidationError] = []
        bucket = str(raw.get("bucket") or "general")
        if bucket not in BUCKET_DEFAULTS:
            issues.append(ValidationError("bucket", "unknown bucket, using general", bucket))
            bucket = "general"
        default_tier, default_verification, default_confidence = BUCKET_DEFAULTS[bucket]

        url = self._text(raw, "url", "", issues, required=False)
        if url and not url.startswith(("http://", "https://")):
            issues.append(ValidationError("url", "not an http(s) URL", url))

        tier = self._tier(raw.get("tier"), url, bucket, issues)
        confidence = self._confidence(raw, bucket, default_confidence, issues)

        verification = raw.get("verification", default_verification)
        try:
            verification = Verification(verification)
        except ValueError:
            issues.append(ValidationError("verification", "unknown verification level, using partial", verification))
            verification = Verification.PARTIAL

        atom = EvidenceAtom(
            tier=tier,
            source=self._text(raw, "source", "unknown", issues),
            field=self._text(raw, "field", "unknown", issues),
            value=self._text(raw, "value", "", issues),
            url=url,
            timestamp=self._text(raw, "timestamp", datetime.now(timezone.utc).isoformat(), issues, required=False),
            verification=verification,
            confidence=confidence,
        )
        return BuildResult(atom=atom, issues=issues)

    @staticmethod
    def _text(raw: Mapping, key: str, default: str, issues: List[ValidationError], required: bool = True) -> str:
        value = raw.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            if required:
                issues.append(ValidationError(key, f"missing, defaulted to '{default}'", value))
            return default
        return str(value).strip()

    @staticmethod
    def _tier(value: Any, url: str, bucket: str, issues: List[ValidationError]) -> int:
        if value is None:
            return authority_tier(url, bucket)
        try:
            tier = int(value)
        except (TypeError, ValueError):
            issues.append(ValidationError("tier", "not an integer, using authority default", value))
            return authority_tier(url, bucket)
        if tier < 0 or tier > MAX_TIER:
            clamped = min(max(tier, 0), MAX_TIER)
            logger.warning("evidence_field_clamped", field="tier", value=tier, clamped=clamped)
            issues.append(ValidationError("tier", f"out of range [0,{MAX_TIER}], clamped to {clamped}", tier))
            return clamped
        return tier

    @staticmethod
    def _confidence(raw: Mapping, bucket: str, default: Optional[float], issues: List[ValidationError]) -> float:
        value = raw.get("confidence")
        if value is None:
            relevance = raw.get("relevance")
            if default is None and isinstance(relevance, (int, float)) and relevance > 0:
                return round(min(max(relevance / 100.0, 0.0), 1.0), 3)
            if default is None and bucket == "regulatory":
                return 0.8
            return default if default is not None else DEFAULT_CONFIDENCE
        try:
            confidence = float(value)
        except (TypeError, ValueError):
            issues.append(ValidationError("confidence", f"not a number, defaulted to {DEFAULT_CONFIDENCE}", value))
            return DEFAULT_CONFIDENCE
        if math.isnan(confidence):
            issues.append(ValidationError("confidence", f"NaN, defaulted to {DEFAULT_CONFIDENCE}", value))
            return DEFAULT_CONFIDENCE
        if confidence < 0.0 or confidence > 1.0:
            clamped = min(max(confidence, 0.0), 1.0)
            logger.warning("evidence_field_clamped", field="confidence", value=confidence, clamped=clamped)
            issues.append(ValidationError("confidence", f"out of range [0,1], clamped to {clamped}", confidence))
            return clamped
        return confidence


# ── Batch validation ──────────────────────────────

@dataclass
class ValidationReport:
    atoms: List[EvidenceAtom] = field(default_factory=list)
    issues: List[ValidationError] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def validate_evidence(raw_records: List[Any], sources_used: int) -> ValidationReport:
    """Build atoms for every record and enforce sources_used > 0 ⇒ evidence non-empty."""
    builder = EvidenceAtomBuilder()
    report = ValidationReport()
    for raw in raw_records:
        result = builder.build(raw)
        report.issues.extend(result.issues)
        if result.ok:
            report.atoms.append(result.atom)

    if sources_used > 0 and not report.atoms:
        report.warnings.append(
            f"{sources_used} evidence source(s) were queried but no evidence atoms were produced"
        )
        logger.warning("evidence_empty_after_collection", sources_used=sources_used)

    if report.issues:
        logger.info("evidence_validation_issues", count=len(report.issues))
    return report


def validate_profile(payload: Mapping[str, Any]) -> SubjectProfile:
    """Trim and check an inbound subject profile. Raises ValidationError."""
    values: Dict[str, Optional[str]] = {}
    for key, limit in PROFILE_LIMITS.items():
        value = payload.get(key)
        if value is None:
            values[key] = None
            continue
        if not isinstance(value, str):
            raise ValidationError(key, "must be a string", value)
        values[key] = value.strip()[:limit] or None

    if not values["name"]:
        raise ValidationError("name", "is required")
    if not values["description"]:
        raise ValidationError("description", "is required")
    if len(values["description"]) < MIN_DESCRIPTION_LENGTH:
        raise ValidationError("description", f"must be at least {MIN_DESCRIPTION_LENGTH} characters",
                              values["description"])

    return SubjectProfile(
        name=values["name"],
        description=values["description"],
        region=values["region"],
        industry=values["industry"],
    )
