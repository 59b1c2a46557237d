"""TechRec API — developer profiles, CV analysis, role search and application writing.

Run: uvicorn app.main:app --reload --port 8001
Docs: http://localhost:8001/docs
"""

import traceback
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from app.config import load_settings  # noqa: E402
from app.core.logger import logger  # noqa: E402
from app.core import cache  # noqa: E402
from app.core.langfuse_client import flush  # noqa: E402
from app.db.session import create_all  # noqa: E402
from app.services.job_search import api_mode  # noqa: E402
from app.core.request_context import request_id_var  # noqa: E402
from app.middleware import RequestIdMiddleware  # noqa: E402
from app.routes.health import VERSION  # noqa: E402
from app.routes import cvs, gamification, health, points, profile, roles, saved_roles, subscription, writing  # noqa: E402

settings = load_settings()

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_all()
    logger.info(
        f"TechRec API starting: storage={settings.storage_backend}, "
        f"role search={api_mode()}, cache={'on' if settings.redis_url else 'off'}, "
        f"billing={'on' if settings.stripe_secret_key else 'off'}"
    )
    yield
    flush()
    await cache.close()
    logger.info("TechRec API stopped")


app = FastAPI(
    title="TechRec API",
    version=VERSION,
    description="Job-search backend: CV analysis, role search, subscriptions and AI-assisted writing.",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

ALLOWED_ORIGINS = settings.allowed_origins.split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID", "Stripe-Signature"],
    expose_headers=["X-Request-ID"],
)

# Request ID middleware (runs after CORS, before route handlers)
app.add_middleware(RequestIdMiddleware)


# ── Global exception handlers ────────────────────────────────────────


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    rid = request_id_var.get("-")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "request_id": rid},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    rid = request_id_var.get("-")
    errors = [
        {"field": ".".join(str(p) for p in err["loc"][1:]) or err["loc"][0], "message": err["msg"]}
        for err in exc.errors()
    ]
    logger.info(f"Rejected request body [{rid}]: {errors}")
    return JSONResponse(
        status_code=422,
        content={"detail": "Validation failed", "errors": errors, "request_id": rid},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = request_id_var.get("-")
    logger.error(f"Unhandled exception [{rid}]: {exc}\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "request_id": rid},
    )


app.include_router(health.router)
app.include_router(profile.router)
app.include_router(cvs.router)
app.include_router(points.router)
app.include_router(gamification.router)
app.include_router(subscription.router)
app.include_router(roles.router)
app.include_router(saved_roles.router)
app.include_router(writing.router)
