"""
RiskScope — Evidence Source Connectors
Every connector returns raw search hits. No scoring logic. No opinions.

Sources:
    1. Search API (primary) — SerpAPI-compatible JSON endpoint, key + daily quota
    2. Direct HTTP (fallback) — plain web search page, used for at most two
       canonical checks when the primary source produced almost nothing

Contract:
    await connector.search(query, options) -> SearchResponse

Failure classification:
    ConnectorQuotaExhausted  — raised immediately, never retried
    ConnectorTransientError  — timeouts, transport errors, 5xx; retried with
                               exponential backoff, re-raised when retries run out
    ConnectorError           — anything else the source rejects
"""
import asyncio
import html
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone, date
from typing import Optional, Dict, Any, List, Awaitable, Callable, TypeVar

import httpx
import structlog

from riskscope.compute.cache import QueryCache
from riskscope.compute.rate_limit import TokenBucket
from riskscope.config import Settings
from riskscope.errors import (
    ConnectorError, ConnectorTransientError, ConnectorQuotaExhausted, is_quota_message,
)

logger = structlog.get_logger()

USER_AGENT = "RiskScope/1.0 (+evidence-collector)"

T = TypeVar("T")


# ── Wire types ────────────────────────────────────

@dataclass
class SearchHit:
    title: str
    snippet: str
    url: str
    date: Optional[str] = None
    position: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "snippet": self.snippet,
            "url": self.url,
            "date": self.date,
            "position": self.position,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SearchHit":
        return cls(
            title=d.get("title") or "",
            snippet=d.get("snippet") or "",
            url=d.get("url") or d.get("link") or "",
            date=d.get("date"),
            position=int(d.get("position") or 0),
        )

    @property
    def text(self) -> str:
        return f"{self.title} {self.snippet}".lower()


@dataclass
class SearchResponse:
    query: str
    source: str
    results: List[SearchHit] = field(default_factory=list)
    error: Optional[str] = None
    cached: bool = False
    elapsed_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "source": self.source,
            "results": [r.to_dict() for r in self.results],
            "error": self.error,
            "cached": self.cached,
            "elapsedMs": self.elapsed_ms,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SearchResponse":
        return cls(
            query=d["query"],
            source=d["source"],
            results=[SearchHit.from_dict(r) for r in d.get("results", [])],
            error=d.get("error"),
            cached=d.get("cached", False),
            elapsed_ms=d.get("elapsedMs", 0.0),
        )


class EvidenceConnector:
    """Base class for evidence sources."""

    name = "base"
    failures = 0

    async def search(self, query: str, options: Optional[Dict[str, Any]] = None) -> SearchResponse:
        raise NotImplementedError

    async def _with_retries(self, attempt: Callable[[], Awaitable[T]], max_retries: int, backoff_base_ms: int) -> T:
        """
        Run attempt(), retrying ConnectorTransientError with exponential
        backoff (base * 2^n ms). Quota and plain connector errors pass straight
        through. The last transient error is re-raised once retries run out.
        """
        attempts = max(max_retries, 1)
        n = 0
        while True:
            try:
                return await attempt()
            except ConnectorTransientError as e:
                self.failures += 1
                n += 1
                if n >= attempts:
                    logger.warning("search_failed", source=self.name, attempts=attempts, error=e.message)
                    raise
                backoff = (backoff_base_ms * (2 ** (n - 1))) / 1000
                logger.warning("search_retry", source=self.name, attempt=n, backoff_s=backoff, error=e.message)
                await asyncio.sleep(backoff)

    def stats(self) -> Dict[str, Any]:
        return {"source": self.name}


# ── Quota ─────────────────────────────────────────

class QuotaTracker:
    """Local daily quota counter. Rolls over at UTC midnight."""

    def __init__(self, source: str, daily_quota: int):
        self.source = source
        self.daily_quota = daily_quota
        self.used = 0
        self.last_reset: date = datetime.now(timezone.utc).date()

    def _rollover(self) -> None:
        today = datetime.now(timezone.utc).date()
        if today != self.last_reset:
            logger.info("quota_reset", source=self.source, used_yesterday=self.used)
            self.used = 0
            self.last_reset = today

    @property
    def remaining(self) -> int:
        self._rollover()
        return max(self.daily_quota - self.used, 0)

    def check(self) -> None:
        """Raise before spending a call we know the quota cannot cover."""
        if self.remaining <= 0:
            raise ConnectorQuotaExhausted(
                self.source,
                f"daily quota of {self.daily_quota} searches used up",
                quota=self.daily_quota,
                used=self.used,
            )

    def consume(self) -> None:
        self._rollover()
        self.used += 1

    def stats(self) -> Dict[str, Any]:
        return {
            "quotaUsed": self.used,
            "quotaRemaining": self.remaining,
            "quotaDaily": self.daily_quota,
            "lastReset": self.last_reset.isoformat(),
        }


_quotas: Dict[str, QuotaTracker] = {}


def get_quota_tracker(source: str, daily_quota: int) -> QuotaTracker:
    tracker = _quotas.get(source)
    if tracker is None:
        tracker = QuotaTracker(source, daily_quota)
        _quotas[source] = tracker
    return tracker


def reset_quota_trackers() -> None:
    _quotas.clear()


# ── 1. Search API (primary) ───────────────────────

class SearchApiConnector(EvidenceConnector):
    """SerpAPI-compatible Google search with cache, token bucket and daily quota."""

    name = "serpapi"

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        cache: QueryCache,
        limiter: TokenBucket,
        quota: QuotaTracker,
    ):
        self.settings = settings
        self.client = client
        self.cache = cache
        self.limiter = limiter
        self.quota = quota
        self.timeout = httpx.Timeout(settings.SERPAPI_TIMEOUT_MS / 1000, connect=5.0)
        self.calls = 0
        self.failures = 0

    @property
    def operational(self) -> bool:
        return self.settings.primary_source_configured and self.quota.remaining > 0

    async def search(self, query: str, options: Optional[Dict[str, Any]] = None) -> SearchResponse:
        options = options or {}
        num = int(options.get("num", 10))
        cache_key = f"{query}|num={num}"

        cached = self.cache.get(cache_key)
        if cached is not None:
            response = SearchResponse.from_dict(cached)
            response.cached = True
            return response

        params = {
            "engine": "google",
            "q": query,
            "api_key": self.settings.SERPAPI_API_KEY,
            "num": num,
            "gl": options.get("gl", self.settings.SERPAPI_COUNTRY),
            "hl": options.get("hl", self.settings.SERPAPI_LANGUAGE),
        }

        async def attempt() -> Dict[str, Any]:
            self.quota.check()
            await self.limiter.acquire()
            return await self._request(params)

        start = time.monotonic()
        payload = await self._with_retries(attempt, self.settings.SERPAPI_MAX_RETRIES,
                                           self.settings.RETRY_BACKOFF_BASE_MS)

        response = SearchResponse(
            query=query,
            source=self.name,
            results=self._parse_results(payload, num),
            elapsed_ms=round((time.monotonic() - start) * 1000, 2),
        )
        self.cache.set(cache_key, response.to_dict())
        return response

    async def _request(self, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = await self.client.get(self.settings.SERPAPI_BASE_URL, params=params, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise ConnectorTransientError(self.name, f"timeout: {e}") from e
        except httpx.TransportError as e:
            raise ConnectorTransientError(self.name, f"transport error: {e}") from e

        self.calls += 1
        self.quota.consume()

        if resp.status_code == 429 or (resp.status_code >= 400 and is_quota_message(resp.text)):
            raise ConnectorQuotaExhausted(self.name, f"HTTP {resp.status_code}: {resp.text[:200]}",
                                          quota=self.quota.daily_quota, used=self.quota.used)
        if resp.status_code >= 500:
            raise ConnectorTransientError(self.name, f"HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise ConnectorError(self.name, f"HTTP {resp.status_code}: {resp.text[:200]}")

        try:
            data = resp.json()
        except ValueError as e:
            raise ConnectorError(self.name, f"invalid JSON: {e}") from e

        error = data.get("error")
        if error:
            if is_quota_message(error):
                raise ConnectorQuotaExhausted(self.name, error,
                                              quota=self.quota.daily_quota, used=self.quota.used)
            # Empty result sets come back as an "error" string
            if "hasn't returned any results" in error.lower():
                return {"organic_results": []}
            raise ConnectorError(self.name, error)
        return data

    @staticmethod
    def _parse_results(payload: Dict[str, Any], num: int) -> List[SearchHit]:
        hits = []
        for i, item in enumerate(payload.get("organic_results", [])[:num]):
            hits.append(SearchHit(
                title=item.get("title", ""),
                snippet=item.get("snippet", ""),
                url=item.get("link", ""),
                date=item.get("date"),
                position=item.get("position", i + 1),
            ))
        for i, item in enumerate(payload.get("news_results", [])[: max(num - len(hits), 0)]):
            hits.append(SearchHit(
                title=item.get("title", ""),
                snippet=item.get("snippet", ""),
                url=item.get("link", ""),
                date=item.get("date"),
                position=len(hits) + 1,
            ))
        return hits

    def stats(self) -> Dict[str, Any]:
        stats = {
            "source": self.name,
            "enabled": self.settings.SERPAPI_ENABLED,
            "configured": bool(self.settings.SERPAPI_API_KEY),
            "isOperational": self.operational,
            "calls": self.calls,
            "failures": self.failures,
            "rateLimit": self.limiter.stats(),
        }
        stats.update(self.quota.stats())
        cache_stats = self.cache.stats()
        stats["cacheSize"] = cache_stats.get("size", 0)
        stats["cache"] = cache_stats
        return stats


# ── 2. Direct HTTP (fallback) ─────────────────────

@dataclass(frozen=True)
class FallbackCheck:
    name: str
    query_template: str
    search_type: str


CANONICAL_CHECKS = [
    FallbackCheck("regulator_registry", '"{name}" site:ojk.go.id', "regulatory"),
    FallbackCheck("business_registry", '"{name}" site:ahu.go.id OR site:oss.go.id', "official"),
    FallbackCheck("news_archive", '"{name}" berita', "news"),
]

_TAG_RE = re.compile(r"<[^>]+>")
_SCRIPT_RE = re.compile(r"<(script|style)[^>]*>.*?</\1>", re.S | re.I)
_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.S | re.I)


def html_to_text(body: str) -> str:
    body = _SCRIPT_RE.sub(" ", body)
    text = html.unescape(_TAG_RE.sub(" ", body))
    return re.sub(r"\s+", " ", text).strip()


class HttpFallbackConnector(EvidenceConnector):
    """
    Fetches a plain search results page and checks whether the subject is
    mentioned at all. A 429 here means the page blocked scraping, not that
    a paid quota ran out, so it is classified as transient.
    """

    name = "http_fallback"

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self.settings = settings
        self.client = client
        self.timeout = httpx.Timeout(10.0, connect=5.0)
        self.failures = 0

    async def search(self, query: str, options: Optional[Dict[str, Any]] = None) -> SearchResponse:
        options = options or {}
        subject = (options.get("subject") or "").lower()
        start = time.monotonic()
        resp = await self._with_retries(lambda: self._fetch(query), self.settings.FALLBACK_MAX_RETRIES,
                                        self.settings.RETRY_BACKOFF_BASE_MS)

        text = html_to_text(resp.text)
        results: List[SearchHit] = []
        if subject and subject in text.lower():
            idx = text.lower().index(subject)
            excerpt = text[max(idx - 120, 0): idx + 200]
            title_match = _TITLE_RE.search(resp.text)
            results.append(SearchHit(
                title=html.unescape(title_match.group(1)).strip() if title_match else query,
                snippet=excerpt,
                url=str(resp.url),
                position=1,
            ))

        return SearchResponse(
            query=query,
            source=self.name,
            results=results,
            elapsed_ms=round((time.monotonic() - start) * 1000, 2),
        )

    async def _fetch(self, query: str) -> httpx.Response:
        try:
            resp = await self.client.get(
                self.settings.FALLBACK_SEARCH_URL,
                params={"q": query, "hl": self.settings.SERPAPI_LANGUAGE},
                headers={"User-Agent": USER_AGENT},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise ConnectorTransientError(self.name, f"timeout: {e}") from e
        except httpx.TransportError as e:
            raise ConnectorTransientError(self.name, f"transport error: {e}") from e

        if resp.status_code == 429 or resp.status_code >= 500:
            raise ConnectorTransientError(self.name, f"HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise ConnectorError(self.name, f"HTTP {resp.status_code}")
        return resp

    def stats(self) -> Dict[str, Any]:
        return {
            "source": self.name,
            "enabled": not self.settings.DISABLE_HTTP_FALLBACK,
            "failures": self.failures,
            "checks": [c.name for c in CANONICAL_CHECKS],
        }
