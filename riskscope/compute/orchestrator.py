"""
RiskScope — Evidence Collector / Orchestrator

Executes a triage strategy against the evidence sources:

    1. Issue up to strategy.max_sources queries in priority order
       (sequential with an inter-query delay by default; bounded
       parallelism when COLLECTION_CONCURRENCY > 1)
    2. After each source, count fraud / legitimacy signals and evaluate the
       conclusive-evidence predicate; stop early when the strategy allows
    3. If the primary source produced ≤ 2 data points, run at most two
       canonical checks through the fallback connector
    4. The whole phase runs under one deadline (strategy.timeout_ms);
       whatever completed before the deadline is kept

Quota exhaustion from any connector cancels in-flight queries and
propagates. Every other connector error marks that source unavailable.

OrchestratorContext owns every handle a request needs (HTTP client,
connectors, reasoning client, caches) and is opened at request start and
closed at request end.
"""
import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple
from urllib.parse import urlparse

import httpx
import structlog

from riskscope.compute.cache import QueryCache, get_cache
from riskscope.compute.connectors import (
    CANONICAL_CHECKS, USER_AGENT, EvidenceConnector, HttpFallbackConnector,
    SearchApiConnector, SearchHit, get_quota_tracker,
)
from riskscope.compute.rate_limit import get_rate_limiter
from riskscope.config import Settings
from riskscope.errors import ConfigurationError, ConnectorError
from riskscope.reasoning.client import ReasoningClient, build_reasoning_client
from riskscope.trust import keywords as kw
from riskscope.trust.models import StrategyConfig, SubjectProfile
from riskscope.trust.search_terms import SearchQuery, SEARCH_TYPE_BUCKET
from riskscope.trust.validator import REGULATOR_DOMAINS

logger = structlog.get_logger()

_TIMEOUT = httpx.Timeout(10.0, connect=5.0)

FRAUD_SIGNAL_THRESHOLD = 3
LEGITIMACY_SIGNAL_THRESHOLD = 5
DEFAULT_VOLUME_THRESHOLD = 8
FALLBACK_DATA_POINTS = 2
MAX_FALLBACK_CHECKS = 2

SPECIALIZATION_BASE = {
    "regulatory": 60,
    "fraud": 55,
    "victims": 55,
    "official": 55,
    "financial": 55,
    "news": 50,
    "general": 45,
}


# ── Context ───────────────────────────────────────

class OrchestratorContext:
    """
    Per-request handles, passed through every pipeline stage.

    Usage:
        async with OrchestratorContext(settings) as ctx:
            await ctx.primary.search('"Acme"')

    Anything passed in explicitly (connectors, reasoning client, caches) is
    used as-is and not closed; anything built here is closed on exit.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        primary: Optional[EvidenceConnector] = None,
        fallback: Optional[EvidenceConnector] = None,
        reasoning: Optional[ReasoningClient] = None,
        triage_cache: Optional[QueryCache] = None,
        request_id: Optional[str] = None,
    ):
        self.settings = settings
        self.primary = primary
        self.fallback = fallback
        self.reasoning = reasoning
        self.triage_cache = triage_cache
        self.request_id = request_id or str(uuid.uuid4())[:8]
        self.log = logger.bind(request_id=self.request_id)
        self._build_defaults = primary is None
        self._client: Optional[httpx.AsyncClient] = None
        self._opened = False

    @property
    def is_open(self) -> bool:
        return self._opened

    async def open(self) -> "OrchestratorContext":
        if self._opened:
            return self

        if self._build_defaults:
            if not self.settings.primary_source_configured:
                raise ConfigurationError(
                    "primary evidence source is not configured (set SERPAPI_API_KEY and SERPAPI_ENABLED)"
                )
            self._client = httpx.AsyncClient(
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
                timeout=_TIMEOUT,
            )
            self.primary = build_primary_connector(self.settings, self._client)
            if self.fallback is None and not self.settings.DISABLE_HTTP_FALLBACK:
                self.fallback = HttpFallbackConnector(self.settings, self._client)
            if self.reasoning is None:
                self.reasoning = build_reasoning_client(self.settings, self._client)
            if self.triage_cache is None:
                self.triage_cache = get_cache(
                    "triage", self.settings.REDIS_URL, self.settings.TRIAGE_CACHE_TTL_HOURS * 3600
                )

        self._opened = True
        self.log.debug("orchestrator_context_opened")
        return self

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._opened = False
        self.log.debug("orchestrator_context_closed")

    async def __aenter__(self) -> "OrchestratorContext":
        return await self.open()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def build_primary_connector(settings: Settings, client: httpx.AsyncClient) -> SearchApiConnector:
    """Primary connector wired to the process-wide cache, limiter and quota."""
    return SearchApiConnector(
        settings,
        client,
        cache=get_cache("search", settings.REDIS_URL, settings.SERPAPI_CACHE_TTL_HOURS * 3600),
        limiter=get_rate_limiter(SearchApiConnector.name, settings.SERPAPI_RATE_LIMIT_MS),
        quota=get_quota_tracker(SearchApiConnector.name, settings.SERPAPI_QUOTA_DAILY),
    )


def source_stats(settings: Settings) -> Dict[str, Any]:
    """Stats for the evidence sources without opening a request context."""
    quota = get_quota_tracker(SearchApiConnector.name, settings.SERPAPI_QUOTA_DAILY)
    cache = get_cache("search", settings.REDIS_URL, settings.SERPAPI_CACHE_TTL_HOURS * 3600)
    limiter = get_rate_limiter(SearchApiConnector.name, settings.SERPAPI_RATE_LIMIT_MS)
    cache_stats = cache.stats()
    stats = {
        "source": SearchApiConnector.name,
        "enabled": settings.SERPAPI_ENABLED,
        "configured": bool(settings.SERPAPI_API_KEY),
        "isOperational": settings.primary_source_configured and quota.remaining > 0,
        "cacheSize": cache_stats.get("size", 0),
        "cache": cache_stats,
        "rateLimit": limiter.stats(),
        "fallbackEnabled": not settings.DISABLE_HTTP_FALLBACK,
    }
    stats.update(quota.stats())
    return stats


# ── Result analysis ───────────────────────────────

def calculate_relevance(hit: SearchHit, subject: str, search_type: str) -> int:
    """0-100 relevance of one hit for its search specialization."""
    score = SPECIALIZATION_BASE.get(search_type, 45)
    if hit.url.startswith("https://"):
        score += 5
    if 10 <= len(hit.title) <= 100:
        score += 5
    if len(hit.snippet) > 50:
        score += 10
    if subject and subject.lower() in hit.text:
        score += 10
    if kw.find_terms(hit.text, kw.SPAM_TERMS):
        score -= 20
    return int(min(max(score, 0), 100))


def _host(url: str) -> str:
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def _is_regulator(host: str) -> bool:
    return any(host == d or host.endswith("." + d) for d in REGULATOR_DOMAINS)


@dataclass
class SourceOutcome:
    index: int
    query: str
    search_type: str
    source: str
    results: int = 0
    fraud_hits: int = 0
    legitimacy_hits: int = 0
    regulator_warning: bool = False
    conclusive: bool = False
    cached: bool = False
    error: Optional[str] = None
    elapsed_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "query": self.query,
            "searchType": self.search_type,
            "source": self.source,
            "results": self.results,
            "fraudHits": self.fraud_hits,
            "legitimacyHits": self.legitimacy_hits,
            "regulatorWarning": self.regulator_warning,
            "conclusive": self.conclusive,
            "cached": self.cached,
            "error": self.error,
            "elapsedMs": self.elapsed_ms,
        }


@dataclass
class CollectionReport:
    strategy: StrategyConfig
    queries: List[SearchQuery] = field(default_factory=list)
    outcomes: List[SourceOutcome] = field(default_factory=list)
    raw_records: List[Dict[str, Any]] = field(default_factory=list)
    regulatory_texts: List[str] = field(default_factory=list)
    domains: List[str] = field(default_factory=list)

    fraud_hits: int = 0
    legitimacy_hits: int = 0
    total_results: int = 0
    regulator_warning_found: bool = False
    conclusive: bool = False
    terminated_early: bool = False
    termination_index: Optional[int] = None
    termination_reason: Optional[str] = None
    timed_out: bool = False
    fallback_checks: List[str] = field(default_factory=list)
    failed: bool = False
    failure: Optional[str] = None
    processing_ms: float = 0.0

    @property
    def primary_outcomes(self) -> List[SourceOutcome]:
        return [o for o in self.outcomes if o.search_type != "fallback"]

    @property
    def queries_issued(self) -> int:
        return len(self.primary_outcomes)

    @property
    def sources_used(self) -> int:
        return sum(1 for o in self.outcomes if o.error is None)

    @property
    def sources_scraped(self) -> int:
        return sum(1 for o in self.outcomes if o.error is None and o.results > 0)

    @property
    def unavailable(self) -> List[str]:
        return [o.query for o in self.outcomes if o.error is not None]

    @property
    def efficiency(self) -> str:
        if self.processing_ms < 20_000:
            return "high"
        if self.processing_ms < 35_000:
            return "standard"
        return "low"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.to_dict(),
            "queriesPlanned": len(self.queries),
            "queriesIssued": self.queries_issued,
            "sourcesUsed": self.sources_used,
            "sourcesScraped": self.sources_scraped,
            "unavailableSources": self.unavailable,
            "totalResults": self.total_results,
            "fraudSignals": self.fraud_hits,
            "legitimacySignals": self.legitimacy_hits,
            "regulatorWarningFound": self.regulator_warning_found,
            "conclusive": self.conclusive,
            "terminatedEarly": self.terminated_early,
            "terminationIndex": self.termination_index,
            "terminationReason": self.termination_reason,
            "timedOut": self.timed_out,
            "fallbackChecks": list(self.fallback_checks),
            "failed": self.failed,
            "failure": self.failure,
            "domains": list(self.domains),
            "processingMs": self.processing_ms,
            "efficiency": self.efficiency,
            "outcomes": [o.to_dict() for o in sorted(self.outcomes, key=lambda o: o.index)],
        }


# ── Collector ─────────────────────────────────────

class EvidenceCollector:

    def __init__(self, ctx: OrchestratorContext):
        self.ctx = ctx
        self.settings = ctx.settings
        self.log = ctx.log

    async def collect(self, profile: SubjectProfile, strategy: StrategyConfig,
                      queries: List[SearchQuery]) -> CollectionReport:
        report = CollectionReport(strategy=strategy, queries=list(queries[:strategy.max_sources]))
        start = time.monotonic()
        try:
            await asyncio.wait_for(self._run(profile, strategy, report), timeout=strategy.timeout_ms / 1000)
        except asyncio.TimeoutError:
            report.timed_out = True
            self.log.warning("collection_deadline_reached",
                             timeout_ms=strategy.timeout_ms,
                             completed=report.queries_issued)
        report.processing_ms = round((time.monotonic() - start) * 1000, 2)

        self.log.info("collection_complete",
                      subject=profile.name[:50],
                      strategy=strategy.name.value,
                      queries=report.queries_issued,
                      results=report.total_results,
                      fraud_signals=report.fraud_hits,
                      legitimacy_signals=report.legitimacy_hits,
                      terminated_early=report.terminated_early,
                      fallback_checks=len(report.fallback_checks),
                      duration_ms=report.processing_ms)
        return report

    async def _run(self, profile: SubjectProfile, strategy: StrategyConfig, report: CollectionReport) -> None:
        concurrency = min(self.settings.COLLECTION_CONCURRENCY, strategy.max_sources)
        if concurrency > 1:
            await self._collect_parallel(profile, strategy, report, concurrency)
        else:
            await self._collect_sequential(profile, strategy, report)

        if self._needs_fallback(report):
            await self._run_fallback(profile, report)

    # ── primary ──

    async def _collect_sequential(self, profile: SubjectProfile, strategy: StrategyConfig,
                                  report: CollectionReport) -> None:
        delay = self.settings.INTER_QUERY_DELAY_MS / 1000
        for index, query in enumerate(report.queries):
            if index > 0 and delay > 0:
                await asyncio.sleep(delay)
            outcome, hits = await self._query(index, query, profile, strategy)
            self._absorb(report, outcome, hits, query.search_type, profile.name)
            if self._check_termination(report, strategy, index):
                break

    async def _collect_parallel(self, profile: SubjectProfile, strategy: StrategyConfig,
                                report: CollectionReport, concurrency: int) -> None:
        semaphore = asyncio.Semaphore(concurrency)

        async def run(index: int, query: SearchQuery):
            async with semaphore:
                return index, query, await self._query(index, query, profile, strategy)

        tasks = [asyncio.create_task(run(i, q)) for i, q in enumerate(report.queries)]
        try:
            for next_done in asyncio.as_completed(tasks):
                index, query, (outcome, hits) = await next_done
                self._absorb(report, outcome, hits, query.search_type, profile.name)
                if self._check_termination(report, strategy, index):
                    break
        finally:
            pending = [t for t in tasks if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def _query(self, index: int, query: SearchQuery, profile: SubjectProfile,
                     strategy: StrategyConfig) -> Tuple[SourceOutcome, List[SearchHit]]:
        connector = self.ctx.primary
        outcome = SourceOutcome(index=index, query=query.query, search_type=query.search_type, source=connector.name)
        try:
            response = await connector.search(query.query, {"num": strategy.max_results_per_source})
        except ConnectorError as e:
            outcome.error = e.message
            self.log.warning("source_unavailable", query=query.query, source=connector.name, error=e.message)
            return outcome, []
        outcome.cached = response.cached
        outcome.elapsed_ms = response.elapsed_ms
        return outcome, response.results[:strategy.max_results_per_source]

    # ── fallback ──

    def _needs_fallback(self, report: CollectionReport) -> bool:
        if self.ctx.fallback is None or self.settings.DISABLE_HTTP_FALLBACK:
            return False
        if report.conclusive:
            return False
        return report.total_results <= FALLBACK_DATA_POINTS

    async def _run_fallback(self, profile: SubjectProfile, report: CollectionReport) -> None:
        connector = self.ctx.fallback
        base_index = len(report.queries)
        for offset, check in enumerate(CANONICAL_CHECKS[:MAX_FALLBACK_CHECKS]):
            query = check.query_template.format(name=profile.name)
            outcome = SourceOutcome(index=base_index + offset, query=query, search_type="fallback", source=connector.name)
            try:
                response = await connector.search(query, {"subject": profile.name})
            except ConnectorError as e:
                outcome.error = e.message
                self.log.warning("fallback_check_failed", check=check.name, error=e.message)
                report.outcomes.append(outcome)
                continue
            outcome.elapsed_ms = response.elapsed_ms
            report.fallback_checks.append(check.name)
            self._absorb(report, outcome, response.results, check.search_type, profile.name)
        self.log.info("fallback_complete", checks=report.fallback_checks)

    # ── signal accounting ──

    def _absorb(self, report: CollectionReport, outcome: SourceOutcome, hits: List[SearchHit],
                search_type: str, subject: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        outcome.results = len(hits)
        for hit in hits:
            text = hit.text
            host = _host(hit.url)
            fraud_terms = kw.find_terms(text, kw.FRAUD_TERMS)
            legit_terms = kw.find_affirmed_terms(text, kw.LEGITIMACY_TERMS)
            if fraud_terms:
                outcome.fraud_hits += 1
            if legit_terms:
                outcome.legitimacy_hits += 1

            regulatory = search_type == "regulatory" or _is_regulator(host)
            if regulatory:
                report.regulatory_texts.append(text)
                if kw.find_terms(text, kw.REGULATOR_WARNING_TERMS):
                    outcome.regulator_warning = True

            bucket = SEARCH_TYPE_BUCKET.get(search_type, "general")
            if fraud_terms and bucket in ("general", "news"):
                bucket = "fraud_mention"

            report.raw_records.append({
                "source": outcome.source,
                "bucket": bucket,
                "field": bucket,
                "value": hit.snippet or hit.title,
                "url": hit.url,
                "timestamp": hit.date or now,
                "relevance": calculate_relevance(hit, subject, search_type),
            })
            if host and host not in report.domains:
                report.domains.append(host)

        report.outcomes.append(outcome)
        report.total_results += outcome.results
        report.fraud_hits += outcome.fraud_hits
        report.legitimacy_hits += outcome.legitimacy_hits
        report.regulator_warning_found = report.regulator_warning_found or outcome.regulator_warning

        reason = self._conclusive_reason(report)
        if reason and not report.conclusive:
            report.conclusive = True
            report.termination_reason = reason
            outcome.conclusive = True

    def _conclusive_reason(self, report: CollectionReport) -> Optional[str]:
        if report.regulator_warning_found:
            return "regulator_warning"
        if report.fraud_hits >= FRAUD_SIGNAL_THRESHOLD:
            return "fraud_signals"
        threshold = report.strategy.termination_threshold or DEFAULT_VOLUME_THRESHOLD
        if report.total_results >= threshold and report.legitimacy_hits >= LEGITIMACY_SIGNAL_THRESHOLD:
            return "legitimacy_signals"
        return None

    def _check_termination(self, report: CollectionReport, strategy: StrategyConfig, index: int) -> bool:
        if not (strategy.early_termination and report.conclusive):
            return False
        report.terminated_early = True
        report.termination_index = index
        self.log.info("collection_terminated_early", index=index, reason=report.termination_reason)
        return True
