"""Health check endpoint.

Always 200 so load balancers keep routing; "status" drops to "degraded"
when the database is unreachable.
"""

import time

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.config import load_settings
from app.core.cache import is_enabled as cache_enabled
from app.core.llm import get_llm_client
from app.core.logger import logger
from app.db.session import get_engine
from app.services.job_search import api_mode

router = APIRouter(tags=["System"])

_start_time = time.monotonic()
VERSION = "1.0.0"


def _database_ok() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"Health check: database unreachable: {e}")
        return False


@router.get("/api/health")
async def health():
    database_ok = _database_ok()
    llm = await get_llm_client()
    return {
        "status": "ok" if database_ok else "degraded",
        "service": "techrec",
        "version": VERSION,
        "uptime_seconds": round(time.monotonic() - _start_time),
        "checks": {
            "database": "ok" if database_ok else "unreachable",
            "cache": "enabled" if cache_enabled() else "disabled",
            "storage": load_settings().storage_backend,
            "role_search": api_mode(),
            "llm": llm.status(),
        },
    }
