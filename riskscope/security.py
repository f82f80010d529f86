"""
RiskScope — Security Layer
Bearer-token dependency for the analysis API.
"""
import hmac

from fastapi import Header, HTTPException
import structlog

from riskscope.config import get_settings

logger = structlog.get_logger()


async def require_bearer_token(authorization: str = Header(None)) -> str:
    """Authenticate via `Authorization: Bearer <AUTH_TOKEN>`."""
    expected = get_settings().AUTH_TOKEN
    if not expected:
        logger.error("auth_token_not_configured")
        raise HTTPException(status_code=500, detail="Server authentication is not configured.")

    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=401,
            detail="Bearer token required.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = authorization[len("Bearer "):].strip()
    if not hmac.compare_digest(token.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid bearer token.")
    return token
