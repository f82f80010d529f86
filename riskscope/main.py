"""
RiskScope — Fraud-Risk Evidence Service

Start with:
    uvicorn riskscope.main:app --host 0.0.0.0 --port 8000
"""
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from riskscope.config import get_settings
from riskscope.errors import ConfigurationError, ConnectorQuotaExhausted

structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)
logger = structlog.get_logger()

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("service_starting",
                version=VERSION,
                environment=settings.ENVIRONMENT,
                primary_source_configured=settings.primary_source_configured,
                reasoning_enabled=settings.reasoning_enabled,
                http_fallback=not settings.DISABLE_HTTP_FALLBACK)
    if not settings.AUTH_TOKEN:
        logger.warning("auth_token_missing", message="AUTH_TOKEN not set; analysis endpoints will return 500")

    yield

    from riskscope.compute.cache import close_caches
    close_caches()
    logger.info("service_stopped")


app = FastAPI(
    title="RiskScope — Fraud-Risk Evidence Engine",
    description=(
        "Triage, multi-source evidence collection and category-weighted fraud scoring "
        "for business subjects."
    ),
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id", "X-Response-Time"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = str(uuid.uuid4())[:8]
    start = time.time()
    request.state.request_id = request_id
    response = await call_next(request)
    duration_ms = round((time.time() - start) * 1000, 2)
    response.headers["X-Request-Id"] = request_id
    response.headers["X-Response-Time"] = f"{duration_ms}ms"
    if request.url.path != "/health":
        logger.info("request",
                    method=request.method,
                    path=request.url.path,
                    status=response.status_code,
                    duration_ms=duration_ms,
                    request_id=request_id)
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "validation_error",
            "details": [f"{'.'.join(str(p) for p in e['loc'][1:])}: {e['msg']}" for e in exc.errors()],
        },
    )


@app.exception_handler(ConnectorQuotaExhausted)
async def quota_exception_handler(request: Request, exc: ConnectorQuotaExhausted):
    logger.error("quota_exhausted", path=request.url.path, source=exc.source, error=exc.message)
    return JSONResponse(
        status_code=503,
        content={"success": False, "error": "evidence_source_quota_exhausted", "source": exc.source},
    )


@app.exception_handler(ConfigurationError)
async def configuration_exception_handler(request: Request, exc: ConfigurationError):
    logger.error("service_not_configured", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=503,
        content={"success": False, "error": "service_not_configured", "message": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("unhandled_exception",
                 path=request.url.path,
                 error=str(exc),
                 type=type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "internal_server_error",
            "message": "Something went wrong.",
            "request_id": getattr(request.state, "request_id", "unknown"),
        },
    )


# === Routers ===

from riskscope.api.analysis import router as analysis_router  # noqa: E402

app.include_router(analysis_router)
logger.info("router_loaded", router="analysis")


@app.get("/health")
async def health():
    settings = get_settings()
    return {
        "status": "healthy",
        "service": "riskscope",
        "version": VERSION,
        "primary_source_configured": settings.primary_source_configured,
        "reasoning_enabled": settings.reasoning_enabled,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
