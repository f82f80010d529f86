"""
Evidence collector tests: early termination, quota abort, unavailable
sources, fallback checks, the collection deadline and parallel mode.
"""

from __future__ import annotations

import pytest

from conftest import FakeConnector, hit
from riskscope.compute.orchestrator import EvidenceCollector, OrchestratorContext, calculate_relevance
from riskscope.errors import ConfigurationError, ConnectorError, ConnectorQuotaExhausted
from riskscope.trust.models import STRATEGIES, StrategyConfig, StrategyName, SubjectProfile
from riskscope.trust.search_terms import SearchQuery

PROFILE = SubjectProfile("Sentosa Abadi", "Registered with regulator, ISO certified")

MEDIUM = STRATEGIES[StrategyName.MEDIUM]
DEEP = STRATEGIES[StrategyName.DEEP]


def _queries(n: int, search_type: str = "general"):
    return [SearchQuery(f'"Sentosa Abadi" q{i}', search_type) for i in range(n)]


def _fraud_hit(i: int):
    return hit(f"Sentosa Abadi penipuan {i}", "banyak korban melapor", f"https://site{i}.com/x")


def _neutral_hit(i: int):
    return hit(f"Sentosa Abadi {i}", "pembukaan cabang baru", f"https://news{i}.com/x")


async def _collect(ctx, strategy, queries, profile=PROFILE):
    async with ctx:
        return await EvidenceCollector(ctx).collect(profile, strategy, queries)


@pytest.mark.asyncio
async def test_early_termination_on_fraud_signals(make_context):
    primary = FakeConnector([[_fraud_hit(0)], [_fraud_hit(1), _fraud_hit(2)], [_neutral_hit(3)]])
    report = await _collect(make_context(primary), MEDIUM, _queries(5))

    assert report.conclusive
    assert report.terminated_early
    assert report.termination_reason == "fraud_signals"
    assert report.termination_index == 1
    assert len(primary.calls) == report.termination_index + 1
    assert report.queries_issued == 2


@pytest.mark.asyncio
async def test_deep_strategy_never_stops_early(make_context):
    primary = FakeConnector([[_fraud_hit(i)] for i in range(8)])
    report = await _collect(make_context(primary), DEEP, _queries(8))

    assert report.conclusive
    assert not report.terminated_early
    assert len(primary.calls) == 8


@pytest.mark.asyncio
async def test_regulator_warning_is_conclusive(make_context):
    warning = hit("Daftar entitas ilegal", "Satgas Waspada Investasi: Sentosa Abadi", "https://www.ojk.go.id/waspada")
    primary = FakeConnector([[warning]])
    report = await _collect(make_context(primary), MEDIUM, _queries(3, "regulatory"))

    assert report.regulator_warning_found
    assert report.termination_reason == "regulator_warning"
    assert len(primary.calls) == 1
    assert report.regulatory_texts


@pytest.mark.asyncio
async def test_warning_terms_outside_regulatory_sources_are_not_regulator_warnings(make_context):
    primary = FakeConnector([[hit("Sentosa Abadi warning label recall", "product warning", "https://blog.com/a")]])
    report = await _collect(make_context(primary), MEDIUM, _queries(1))
    assert not report.regulator_warning_found


@pytest.mark.asyncio
async def test_legitimacy_volume_is_conclusive(make_context):
    legit = [hit(f"Sentosa Abadi resmi {i}", "perusahaan terdaftar", f"https://n{i}.com") for i in range(5)]
    primary = FakeConnector([legit, legit[:3], [_neutral_hit(9)]])
    report = await _collect(make_context(primary), MEDIUM, _queries(5))

    assert report.termination_reason == "legitimacy_signals"
    assert report.termination_index == 1
    assert report.total_results == 8


@pytest.mark.asyncio
async def test_negated_licence_mentions_are_not_legitimacy_hits(make_context):
    primary = FakeConnector([[
        hit("Sentosa Abadi beroperasi tanpa izin OJK", "perusahaan belum terdaftar", "https://n1.com/a"),
        hit("Sentosa Abadi resmi terdaftar", "perusahaan terdaftar di OJK", "https://n2.com/b"),
    ]])
    report = await _collect(make_context(primary), MEDIUM, _queries(1))

    assert report.legitimacy_hits == 1


@pytest.mark.asyncio
async def test_quota_exhaustion_propagates(make_context):
    primary = FakeConnector([[_neutral_hit(0)], ConnectorQuotaExhausted("fake", "run out of searches")])
    with pytest.raises(ConnectorQuotaExhausted):
        await _collect(make_context(primary), MEDIUM, _queries(5))
    assert len(primary.calls) == 2


@pytest.mark.asyncio
async def test_connector_error_marks_source_unavailable(make_context):
    primary = FakeConnector([ConnectorError("fake", "HTTP 401"), [_neutral_hit(1)], [_neutral_hit(2)]])
    report = await _collect(make_context(primary), MEDIUM, _queries(3))

    assert report.unavailable == ['"Sentosa Abadi" q0']
    assert report.sources_used == 2
    assert report.sources_scraped == 2
    assert len(report.raw_records) == 2


@pytest.mark.asyncio
async def test_fallback_runs_when_primary_is_thin(make_context):
    primary = FakeConnector([[_neutral_hit(0)]])
    fallback = FakeConnector(
        [[hit("AHU", "Sentosa Abadi terdaftar", "https://ahu.go.id/x")], []],
        name="http_fallback",
    )
    report = await _collect(make_context(primary, fallback=fallback), STRATEGIES[StrategyName.LIGHT], _queries(3))

    assert len(fallback.calls) == 2
    assert report.fallback_checks == ["regulator_registry", "business_registry"]
    assert fallback.options[0]["subject"] == "Sentosa Abadi"
    assert report.queries_issued == 3
    assert report.sources_scraped == 2


@pytest.mark.asyncio
async def test_fallback_disabled(make_context):
    fallback = FakeConnector(name="http_fallback")
    ctx = make_context(FakeConnector(), fallback=fallback, DISABLE_HTTP_FALLBACK=True)
    report = await _collect(ctx, MEDIUM, _queries(2))

    assert fallback.calls == []
    assert report.fallback_checks == []


@pytest.mark.asyncio
async def test_fallback_skipped_when_primary_has_data(make_context):
    primary = FakeConnector([[_neutral_hit(i) for i in range(3)]])
    fallback = FakeConnector(name="http_fallback")
    await _collect(make_context(primary, fallback=fallback), MEDIUM, _queries(1))
    assert fallback.calls == []


@pytest.mark.asyncio
async def test_deadline_keeps_partial_results(make_context):
    strategy = StrategyConfig(StrategyName.LIGHT, 3, 3, 300, True, 5)
    primary = FakeConnector([[_neutral_hit(0)], [_neutral_hit(1)], [_neutral_hit(2)]], delay=0.2)
    report = await _collect(make_context(primary), strategy, _queries(3))

    assert report.timed_out
    assert report.queries_issued == 1
    assert report.total_results == 1


@pytest.mark.asyncio
async def test_parallel_collection_issues_every_query(make_context):
    primary = FakeConnector([[_neutral_hit(i)] for i in range(5)], delay=0.01)
    ctx = make_context(primary, COLLECTION_CONCURRENCY=3)
    report = await _collect(ctx, MEDIUM, _queries(5))

    assert len(primary.calls) == 5
    assert report.queries_issued == 5
    assert sorted(o.index for o in report.outcomes) == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_parallel_collection_propagates_quota(make_context):
    primary = FakeConnector([ConnectorQuotaExhausted("fake", "daily limit")] * 5, delay=0.01)
    with pytest.raises(ConnectorQuotaExhausted):
        await _collect(make_context(primary, COLLECTION_CONCURRENCY=2), MEDIUM, _queries(5))


@pytest.mark.asyncio
async def test_default_context_requires_configured_source(settings):
    settings.SERPAPI_API_KEY = ""
    with pytest.raises(ConfigurationError):
        async with OrchestratorContext(settings):
            pass


def test_relevance_rewards_subject_mentions_and_penalizes_spam():
    relevant = hit("Sentosa Abadi laporan tahunan", "x" * 60, "https://kompas.com/a")
    spam = hit("slot gacor", "judi online", "http://spam.biz")
    assert calculate_relevance(relevant, "Sentosa Abadi", "regulatory") == 90
    assert calculate_relevance(spam, "Sentosa Abadi", "general") < 45
