"""FastAPI backend for bulk avatar video generation."""

import logging
import sys
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from bvg.config import get_settings
from bvg.errors import (
    InsufficientCreditsError,
    JobNotFoundError,
    ProviderError,
    StaleJobError,
    StitchError,
    ValidationError,
)

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

settings = get_settings()

app = FastAPI(
    title="BVG API",
    description="Bulk avatar video generation: variable batches, chained scene renders, stitching and credits.",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------
cors_origins = settings.cors_origin_list
cors_origin_regex = settings.cors_origin_regex
logger.info("CORS configured for origins: %s", cors_origins)
if cors_origin_regex:
    logger.info("CORS origin regex: %s", cors_origin_regex)

logger.info(
    "Storage: %s",
    "Postgres" if settings.bvg_database_url else f"JSON files under {settings.data_dir}",
)
cors_kw: dict = {
    "allow_origins": cors_origins,
    "allow_credentials": True,
    "allow_methods": ["*"],
    "allow_headers": ["*"],
}
if cors_origin_regex:
    cors_kw["allow_origin_regex"] = cors_origin_regex
app.add_middleware(CORSMiddleware, **cors_kw)


# ---------------------------------------------------------------------------
# Domain errors → HTTP
# ---------------------------------------------------------------------------
@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(InsufficientCreditsError)
async def insufficient_credits_handler(request: Request, exc: InsufficientCreditsError):
    return JSONResponse(
        status_code=402,
        content={
            "detail": str(exc),
            "balance": exc.balance,
            "required": exc.required,
            "shortfall": exc.shortfall,
        },
    )


@app.exception_handler(JobNotFoundError)
async def not_found_handler(request: Request, exc: JobNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StaleJobError)
async def stale_handler(request: Request, exc: StaleJobError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(StitchError)
async def stitch_error_handler(request: Request, exc: StitchError):
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "step": exc.step, "segment_index": exc.segment_index},
    )


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    logger.warning("Provider error surfaced to client: %s", exc.type.value)
    return JSONResponse(
        status_code=502,
        content={"detail": exc.message, "type": exc.type.value, "user_action": exc.user_action},
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------
class HealthResponse(BaseModel):
    status: str
    data_dir: str


@app.get("/health", response_model=HealthResponse)
@app.get("/api/health", response_model=HealthResponse)
async def health():
    """Health check endpoint."""
    return HealthResponse(status="ok", data_dir=str(settings.data_dir))


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
from backend.routes import batches, callbacks, credits, jobs, variables, webhooks  # noqa: E402

app.include_router(variables.router, prefix="/api", tags=["variables"])
app.include_router(batches.router, prefix="/api", tags=["batches"])
app.include_router(jobs.router, prefix="/api", tags=["jobs"])
app.include_router(callbacks.router, prefix="/api", tags=["callbacks"])
app.include_router(credits.router, prefix="/api", tags=["credits"])
app.include_router(webhooks.router, prefix="/api", tags=["webhooks"])
