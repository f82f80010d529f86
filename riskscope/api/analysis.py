"""
RiskScope — Analysis API

Authenticated endpoints (Bearer AUTH_TOKEN):
    POST /analyze-subject                       - Fraud-risk analysis of one subject
    POST /analyze-subject/evidence-enhanced     - Deep-strategy analysis + data-source summary
    GET  /evidence-source/stats                 - Primary source quota / cache / rate-limit stats
    POST /evidence-source/search                - Raw connector passthrough (testing)
"""
from typing import Optional, List, Dict, Any, Callable
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field
import structlog

from riskscope.compute.orchestrator import OrchestratorContext, source_stats
from riskscope.compute.pipeline import AnalysisPipeline
from riskscope.config import get_settings
from riskscope.errors import ConfigurationError, ConnectorError, ConnectorQuotaExhausted, ValidationError
from riskscope.security import require_bearer_token
from riskscope.trust.models import AnalysisResult
from riskscope.trust.validator import validate_profile

logger = structlog.get_logger()

router = APIRouter(tags=["analysis"], dependencies=[Depends(require_bearer_token)])

ContextFactory = Callable[[Optional[str]], OrchestratorContext]


# =============================================
# REQUEST/RESPONSE MODELS
# =============================================

class AnalyzeSubjectRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=10, max_length=2000)
    region: Optional[str] = Field(None, max_length=100)
    industry: Optional[str] = Field(None, max_length=100)


class SourceSearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=500)
    num: int = Field(10, ge=1, le=20)


class AnalysisResponse(BaseModel):
    success: bool = True
    data: Dict[str, Any]


class EnhancedAnalysisResponse(AnalysisResponse):
    dataSources: List[Dict[str, Any]]


# =============================================
# DEPENDENCIES
# =============================================

def get_context_factory() -> ContextFactory:
    """Builds a fresh OrchestratorContext per request. Overridden in tests."""
    settings = get_settings()

    def factory(request_id: Optional[str] = None) -> OrchestratorContext:
        return OrchestratorContext(settings, request_id=request_id)

    return factory


def _unavailable(error: Exception) -> HTTPException:
    if isinstance(error, ConnectorQuotaExhausted):
        return HTTPException(
            status_code=503,
            detail={
                "error": "evidence_source_quota_exhausted",
                "source": error.source,
                "message": f"Quota exhausted at {error.source}. Analysis aborted; retry after the quota resets.",
            },
        )
    return HTTPException(
        status_code=503,
        detail={"error": "service_not_configured", "message": str(error)},
    )


def build_data_sources(result: AnalysisResult) -> List[Dict[str, Any]]:
    """Group evidence atoms by domain for the evidence-enhanced response."""
    groups: Dict[str, Dict[str, Any]] = {}
    for atom in result.evidence:
        domain = (urlparse(atom.url).hostname or atom.source) if atom.url else atom.source
        group = groups.setdefault(domain, {"domain": domain, "atoms": 0, "bestTier": 3, "fields": []})
        group["atoms"] += 1
        group["bestTier"] = min(group["bestTier"], atom.tier)
        if atom.field not in group["fields"]:
            group["fields"].append(atom.field)
    return sorted(groups.values(), key=lambda g: (g["bestTier"], -g["atoms"], g["domain"]))


async def _analyze(request: Request, body: AnalyzeSubjectRequest, factory: ContextFactory,
                   enhanced: bool) -> AnalysisResult:
    try:
        profile = validate_profile(body.model_dump())
    except ValidationError as e:
        raise HTTPException(status_code=400, detail={"error": "validation_error", "details": [e.message], "field": e.field})

    request_id = getattr(request.state, "request_id", None)
    pipeline = AnalysisPipeline(get_settings(), factory(request_id))
    try:
        return await pipeline.run(profile, enhanced=enhanced)
    except (ConnectorQuotaExhausted, ConfigurationError) as e:
        raise _unavailable(e)


# =============================================
# ENDPOINTS
# =============================================

@router.post("/analyze-subject", response_model=AnalysisResponse)
async def analyze_subject(
    request: Request,
    body: AnalyzeSubjectRequest,
    factory: ContextFactory = Depends(get_context_factory),
):
    result = await _analyze(request, body, factory, enhanced=False)
    return {"success": True, "data": result.to_dict()}


@router.post("/analyze-subject/evidence-enhanced", response_model=EnhancedAnalysisResponse)
async def analyze_subject_enhanced(
    request: Request,
    body: AnalyzeSubjectRequest,
    factory: ContextFactory = Depends(get_context_factory),
):
    result = await _analyze(request, body, factory, enhanced=True)
    return {"success": True, "data": result.to_dict(), "dataSources": build_data_sources(result)}


@router.get("/evidence-source/stats")
async def evidence_source_stats():
    return {"success": True, "data": source_stats(get_settings())}


@router.post("/evidence-source/search")
async def evidence_source_search(
    request: Request,
    body: SourceSearchRequest,
    factory: ContextFactory = Depends(get_context_factory),
):
    ctx = factory(getattr(request.state, "request_id", None))
    try:
        async with ctx:
            response = await ctx.primary.search(body.query, {"num": body.num})
    except (ConnectorQuotaExhausted, ConfigurationError) as e:
        raise _unavailable(e)
    except ConnectorError as e:
        logger.warning("passthrough_search_failed", query=body.query[:60], error=e.message)
        return {"success": False, "data": {"query": body.query, "source": e.source, "results": [], "error": e.message}}
    return {"success": True, "data": response.to_dict()}
