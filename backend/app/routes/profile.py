"""Developer profile endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.logger import logger
from app.core.security import get_current_developer
from app.db.session import get_db
from app.db.tables import Developer
from app.models import ExperienceSummary, ProfileResponse, ProfileUpdate
from app.services.experience import get_experience_summary, invalidate_experience_cache
from app.services.profile import delete_account, get_profile, update_profile

router = APIRouter(prefix="/api/developer/me", tags=["Profile"])


@router.get("/profile", response_model=ProfileResponse)
async def read_profile(
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    return get_profile(db, developer)


@router.put("/profile", response_model=ProfileResponse)
async def write_profile(
    update: ProfileUpdate,
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    """Partial update; list fields present in the body replace the stored collection."""
    try:
        update_profile(db, developer, update)
    except SQLAlchemyError as e:
        logger.error(f"Profile update failed for {developer.id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update profile")

    if update.experience is not None:
        await invalidate_experience_cache(developer.id)
    db.refresh(developer)
    return get_profile(db, developer)


@router.delete("/profile", status_code=204)
async def remove_account(
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    developer_id = developer.id
    await delete_account(db, developer)
    await invalidate_experience_cache(developer_id)
    return Response(status_code=204)


@router.get("/experience/summary", response_model=ExperienceSummary)
async def experience_summary(developer: Developer = Depends(get_current_developer)):
    return await get_experience_summary(developer.id, developer.experience)
