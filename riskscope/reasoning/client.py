"""
RiskScope — External Reasoning Service

    await client.infer(prompt) -> str

Triage and narrative both call through this narrow interface and treat any
ReasoningServiceError as "use the deterministic fallback". A quota response
is different: it raises ConnectorQuotaExhausted and aborts the analysis the
same way an exhausted evidence source does.
"""
from typing import Optional

import httpx
import structlog

from riskscope.config import Settings
from riskscope.errors import ConnectorQuotaExhausted, ReasoningServiceError, is_quota_message

logger = structlog.get_logger()


class ReasoningClient:
    """Base class for reasoning-service clients."""

    name = "base"

    async def infer(self, prompt: str) -> str:
        raise NotImplementedError


class GeminiReasoningClient(ReasoningClient):
    """Google Gemini generateContent client."""

    name = "gemini"

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.api_key = settings.REASONING_API_KEY
        self.model = settings.REASONING_MODEL
        self.base_url = f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
        self.timeout = settings.REASONING_TIMEOUT_MS / 1000
        self._client = client

    async def infer(self, prompt: str) -> str:
        if not self.api_key:
            raise ReasoningServiceError("reasoning service API key not configured")

        client = self._client or httpx.AsyncClient()
        try:
            response = await client.post(
                self.base_url,
                params={"key": self.api_key},
                headers={"Content-Type": "application/json"},
                json={
                    "contents": [{"parts": [{"text": prompt}]}],
                    "generationConfig": {"maxOutputTokens": 2048, "temperature": 0.2},
                },
                timeout=self.timeout,
            )
            if response.status_code == 429 or (response.status_code >= 400 and is_quota_message(response.text)):
                logger.error("reasoning_quota_exhausted", system=self.name, status=response.status_code)
                raise ConnectorQuotaExhausted(self.name, f"HTTP {response.status_code}: {response.text[:200]}")
            response.raise_for_status()
            data = response.json()
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning("reasoning_query_failed", system=self.name, error=str(e))
            raise ReasoningServiceError(f"{self.name}: {e}") from e
        finally:
            if self._client is None:
                await client.aclose()


def build_reasoning_client(settings: Settings, client: Optional[httpx.AsyncClient] = None) -> Optional[ReasoningClient]:
    if not settings.reasoning_enabled:
        return None
    return GeminiReasoningClient(settings, client)
