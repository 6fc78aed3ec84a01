"""
promowheel.api.main — FastAPI application entry point
=======================================================

Run with::

    uvicorn promowheel.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from promowheel.api.deps import get_config, get_engine  # noqa: E402
from promowheel.api.routes.admin import router as admin_router  # noqa: E402
from promowheel.api.routes.campaigns import router as campaigns_router  # noqa: E402
from promowheel.api.routes.public import router as public_router  # noqa: E402
from promowheel.errors import (  # noqa: E402
    CreditsExhausted,
    EngineError,
    InvalidTransition,
    NotEligible,
    NotFound,
    TransientStoreFailure,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s"
RETRY_AFTER_SECONDS = 5


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — configure logging, warm the DB engine."""
    cfg = get_config()
    logging.basicConfig(level=cfg.log_level, format=LOG_FORMAT, datefmt="%H:%M:%S")

    engine = get_engine()
    logger.info("%s API started — engine ready (%s)", cfg.app_name, engine.url.database)
    yield
    logger.info("%s API shutting down", cfg.app_name)


app = FastAPI(
    title="PromoWheel API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Engine errors → HTTP
# ---------------------------------------------------------------------------
_STATUS_CODES: dict[type[EngineError], int] = {
    NotFound: status.HTTP_404_NOT_FOUND,
    NotEligible: status.HTTP_403_FORBIDDEN,
    CreditsExhausted: status.HTTP_403_FORBIDDEN,
    InvalidTransition: status.HTTP_400_BAD_REQUEST,
    ValidationFailed: status.HTTP_400_BAD_REQUEST,
    TransientStoreFailure: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    body: dict = {"error": exc.code, "message": exc.message}
    headers = None
    if isinstance(exc, CreditsExhausted):
        body["credits_exhausted"] = True
    elif isinstance(exc, InvalidTransition) and exc.reason:
        body["reason"] = exc.reason
    elif isinstance(exc, TransientStoreFailure):
        headers = {"Retry-After": str(RETRY_AFTER_SECONDS)}

    status_code = _STATUS_CODES.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.warning("%s %s → %d %s", request.method, request.url.path, status_code, exc.code)
    return JSONResponse(body, status_code=status_code, headers=headers)


# Mount routers
app.include_router(public_router, prefix="/api")
app.include_router(campaigns_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
