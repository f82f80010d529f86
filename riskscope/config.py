"""
RiskScope — Configuration

All settings load from environment variables with safe defaults for development.
In production, set RISKSCOPE_ENV=production to enforce required values.
"""
import os
from typing import List
from functools import lru_cache

from dotenv import load_dotenv

from riskscope.errors import ConfigurationError

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    def __init__(self):
        self.ENVIRONMENT = os.getenv("RISKSCOPE_ENV", "development")

        # === Inbound auth ===
        self.AUTH_TOKEN = os.getenv("AUTH_TOKEN", "")
        if not self.AUTH_TOKEN and self.ENVIRONMENT == "production":
            raise ConfigurationError("AUTH_TOKEN must be set in production. Add it to .env")

        # === Primary evidence source (search API) ===
        self.SERPAPI_API_KEY = os.getenv("SERPAPI_API_KEY", "")
        self.SERPAPI_ENABLED = _env_bool("SERPAPI_ENABLED", "true")
        self.SERPAPI_BASE_URL = os.getenv("SERPAPI_BASE_URL", "https://serpapi.com/search.json")
        self.SERPAPI_RATE_LIMIT_MS = int(os.getenv("SERPAPI_RATE_LIMIT_MS", "1000"))
        self.SERPAPI_MAX_RETRIES = int(os.getenv("SERPAPI_MAX_RETRIES", "3"))
        self.SERPAPI_TIMEOUT_MS = int(os.getenv("SERPAPI_TIMEOUT_MS", "120000"))
        self.SERPAPI_QUOTA_DAILY = int(os.getenv("SERPAPI_QUOTA_DAILY", "1000"))
        self.SERPAPI_CACHE_TTL_HOURS = int(os.getenv("SERPAPI_CACHE_TTL_HOURS", "24"))
        self.SERPAPI_COUNTRY = os.getenv("SERPAPI_COUNTRY", "id")
        self.SERPAPI_LANGUAGE = os.getenv("SERPAPI_LANGUAGE", "id")

        # === Fallback evidence source (direct HTTP) ===
        self.DISABLE_HTTP_FALLBACK = (
            _env_bool("DISABLE_HTTP_FALLBACK") or _env_bool("DISABLE_BROWSER_FALLBACK")
        )
        self.FALLBACK_SEARCH_URL = os.getenv("FALLBACK_SEARCH_URL", "https://www.google.com/search")
        self.FALLBACK_MAX_RETRIES = int(os.getenv("FALLBACK_MAX_RETRIES", "2"))

        # === Collection ===
        self.INTER_QUERY_DELAY_MS = int(os.getenv("INTER_QUERY_DELAY_MS", "500"))
        self.COLLECTION_CONCURRENCY = int(os.getenv("COLLECTION_CONCURRENCY", "1"))
        self.RETRY_BACKOFF_BASE_MS = int(os.getenv("RETRY_BACKOFF_BASE_MS", "1000"))

        # === External reasoning service (Gemini-compatible) ===
        self.REASONING_API_KEY = os.getenv("REASONING_API_KEY", os.getenv("GEMINI_API_KEY", ""))
        self.REASONING_MODEL = os.getenv("REASONING_MODEL", "gemini-1.5-flash")
        self.REASONING_TIMEOUT_MS = int(os.getenv("REASONING_TIMEOUT_MS", "30000"))

        # === Cache ===
        self.REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.TRIAGE_CACHE_TTL_HOURS = int(os.getenv("TRIAGE_CACHE_TTL_HOURS", "6"))

        # === Application ===
        self.HOST = os.getenv("RISKSCOPE_HOST", "0.0.0.0")
        self.PORT = int(os.getenv("RISKSCOPE_PORT", "8000"))
        self.CORS_ORIGINS: List[str] = [
            o.strip()
            for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
            if o.strip()
        ]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def primary_source_configured(self) -> bool:
        return self.SERPAPI_ENABLED and bool(self.SERPAPI_API_KEY)

    @property
    def reasoning_enabled(self) -> bool:
        return bool(self.REASONING_API_KEY)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
