from __future__ import annotations

import pytest

from riskscope.errors import ValidationError
from riskscope.trust.models import Verification
from riskscope.trust.validator import (
    EvidenceAtomBuilder, authority_tier, validate_evidence, validate_profile,
)


def _record(**overrides):
    record = {
        "source": "serpapi",
        "bucket": "general",
        "field": "general",
        "value": "Sentosa Abadi opens new plant",
        "url": "https://kompas.com/sentosa",
        "timestamp": "2024-05-01T00:00:00+00:00",
        "relevance": 70,
    }
    record.update(overrides)
    return record


class TestAuthorityTier:

    def test_registry_domain_is_tier_zero(self):
        assert authority_tier("https://ahu.go.id/profil/123") == 0

    def test_regulator_domain_is_tier_one(self):
        assert authority_tier("https://www.ojk.go.id/waspada") == 1
        assert authority_tier("https://www.sec.gov/litigation") == 1

    def test_social_domain_is_tier_three(self):
        assert authority_tier("https://www.reddit.com/r/indonesia") == 3

    def test_unknown_domain_uses_bucket_default(self):
        assert authority_tier("https://kompas.com/a", "news") == 2
        assert authority_tier("", "regulatory") == 1


class TestEvidenceAtomBuilder:

    def test_valid_record_builds_without_issues(self):
        result = EvidenceAtomBuilder().build(_record())
        assert result.ok
        assert result.issues == []
        assert result.atom.tier == 2
        assert result.atom.verification == Verification.UNVERIFIED

    def test_out_of_range_tier_is_clamped_and_recorded(self):
        result = EvidenceAtomBuilder().build(_record(tier=7))
        assert result.ok
        assert result.atom.tier == 3
        assert [i.field for i in result.issues] == ["tier"]

    def test_negative_tier_is_clamped_to_zero(self):
        result = EvidenceAtomBuilder().build(_record(tier=-2))
        assert result.atom.tier == 0

    def test_out_of_range_confidence_is_clamped(self):
        result = EvidenceAtomBuilder().build(_record(confidence=1.7))
        assert result.atom.confidence == 1.0
        assert result.issues[0].field == "confidence"

    def test_non_numeric_confidence_falls_back_to_default(self):
        result = EvidenceAtomBuilder().build(_record(confidence="high"))
        assert result.atom.confidence == 0.7
        assert result.issues[0].field == "confidence"

    def test_missing_source_defaults_to_unknown(self):
        record = _record()
        del record["source"]
        result = EvidenceAtomBuilder().build(record)
        assert result.ok
        assert result.atom.source == "unknown"
        assert any(i.field == "source" for i in result.issues)

    def test_regulatory_confidence_comes_from_relevance(self):
        result = EvidenceAtomBuilder().build(
            _record(bucket="regulatory", field="regulatory", url="https://ojk.go.id/x", relevance=85)
        )
        assert result.atom.tier == 1
        assert result.atom.confidence == 0.85
        assert result.atom.verification == Verification.VERIFIED

    def test_unknown_verification_becomes_partial(self):
        result = EvidenceAtomBuilder().build(_record(verification="certain"))
        assert result.atom.verification == Verification.PARTIAL
        assert result.issues[0].field == "verification"

    def test_non_mapping_record_is_rejected(self):
        result = EvidenceAtomBuilder().build(["not", "a", "record"])
        assert not result.ok
        assert result.issues[0].field == "record"


class TestValidateEvidence:

    def test_keeps_every_mapping_record(self):
        report = validate_evidence([_record(), _record(tier=9)], sources_used=1)
        assert len(report.atoms) == 2
        assert len(report.issues) == 1
        assert report.warnings == []

    def test_warns_when_sources_answered_but_nothing_usable(self):
        report = validate_evidence(["garbage"], sources_used=2)
        assert report.atoms == []
        assert report.warnings

    def test_no_warning_without_sources(self):
        assert validate_evidence([], sources_used=0).warnings == []


class TestValidateProfile:

    def test_trims_and_truncates(self):
        profile = validate_profile({"name": "  Acme  ", "description": "x" * 2500, "region": " Jakarta "})
        assert profile.name == "Acme"
        assert len(profile.description) == 2000
        assert profile.region == "Jakarta"
        assert profile.industry is None

    def test_missing_description_raises(self):
        with pytest.raises(ValidationError) as exc:
            validate_profile({"name": "Acme", "description": "   "})
        assert exc.value.field == "description"

    def test_non_string_field_raises(self):
        with pytest.raises(ValidationError):
            validate_profile({"name": 42, "description": "A real business description"})

    def test_description_length_is_checked_after_trimming(self):
        with pytest.raises(ValidationError) as exc:
            validate_profile({"name": "Acme", "description": "   abc      "})
        assert exc.value.field == "description"
