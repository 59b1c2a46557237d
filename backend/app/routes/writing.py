"""Cover letter and outreach message endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from app.core.constants import RATE_LIMIT_PER_MINUTE
from app.core.langfuse_client import flush
from app.core.security import get_current_developer
from app.db.session import get_db
from app.db.tables import Developer
from app.models import LetterRequest, LetterResponse
from app.services.points import PointsError
from app.services.writer import LetterValidationError, generate_letter

router = APIRouter(prefix="/api/writing", tags=["Writing"])
limiter = Limiter(key_func=get_remote_address)


async def _generate(db: Session, developer: Developer, body: LetterRequest, request_type: str) -> LetterResponse:
    try:
        return await generate_letter(db, developer, body, request_type)
    except PointsError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except LetterValidationError as e:
        raise HTTPException(
            status_code=e.status_code,
            detail={"message": e.detail, "errors": e.errors} if e.errors else e.detail,
        )
    finally:
        flush()


@router.post("/cover-letter", response_model=LetterResponse)
@limiter.limit(f"{RATE_LIMIT_PER_MINUTE}/minute")
async def cover_letter(
    request: Request,
    body: LetterRequest,
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    return await _generate(db, developer, body, "coverLetter")


@router.post("/outreach", response_model=LetterResponse)
@limiter.limit(f"{RATE_LIMIT_PER_MINUTE}/minute")
async def outreach(
    request: Request,
    body: LetterRequest,
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    return await _generate(db, developer, body, "outreach")
