"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from formstage.core.config import settings
from formstage.db import models  # noqa: F401  (registers tables on Base.metadata)
from formstage.db.base import Base
from formstage.db.session import engine
from formstage.services.form_errors import StorageWriteError, UploadMoveError

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

# ============================================================================
# Rate Limiting
# ============================================================================

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from formstage.core.rate_limit import limiter


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Formstage API",
    description="Page form submissions with staged file uploads",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
    lifespan=lifespan,
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,  # Required for the session cookie
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Requested-With"],
)


# ============================================================================
# Fatal pipeline errors
# ============================================================================


@app.exception_handler(UploadMoveError)
@app.exception_handler(StorageWriteError)
async def fatal_form_error_handler(request: Request, exc: UploadMoveError | StorageWriteError):
    logger.error("Fatal form error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"status": "error", "message": exc.render()})


# ============================================================================
# Routers
# ============================================================================

from formstage.routers import forms_public

app.include_router(forms_public.router)


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
