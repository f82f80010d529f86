"""
RiskScope error taxonomy.

Quota exhaustion is the only condition that aborts a whole analysis, so
ConnectorQuotaExhausted is kept outside the ConnectorError branch:
`except ConnectorError` in the collector can never catch it.
"""
from typing import Any, Optional


class RiskScopeError(Exception):
    pass


class ConfigurationError(RiskScopeError):
    """Fatal. The pipeline never starts."""


class ValidationError(RiskScopeError):
    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message, "value": repr(self.value)}


class ConnectorError(RiskScopeError):
    def __init__(self, source: str, message: str):
        self.source = source
        self.message = message
        super().__init__(f"[{source}] {message}")


class ConnectorTransientError(ConnectorError):
    """Network/5xx failure. Retried with backoff, then the source is marked unavailable."""


class ConnectorQuotaExhausted(RiskScopeError):
    def __init__(self, source: str, message: str, quota: Optional[int] = None, used: Optional[int] = None):
        self.source = source
        self.message = message
        self.quota = quota
        self.used = used
        super().__init__(f"[{source}] quota exhausted: {message}")


class ReasoningServiceError(RiskScopeError):
    pass


class ReasoningServiceParseError(ReasoningServiceError):
    def __init__(self, message: str, raw: str = ""):
        self.raw = raw[:500]
        super().__init__(message)


class UnknownError(RiskScopeError):
    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage}: {type(cause).__name__}: {cause}")


QUOTA_ERROR_PATTERNS = (
    "run out of searches",
    "quota exhausted",
    "quota exceeded",
    "exceeded your current quota",
    "quota_exceeded",
    "429 too many requests",
    "rate limit exceeded",
    "daily limit",
    "resource_exhausted",
    "account has run out",
)


def is_quota_message(message: str) -> bool:
    """True when an error message from a source reports an exhausted usage window."""
    text = (message or "").lower()
    return any(p in text for p in QUOTA_ERROR_PATTERNS)
