"""Role search, match scoring and search API usage."""

from fastapi import APIRouter, Depends, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from app.core.constants import DEFAULT_SEARCH_LIMIT, RATE_LIMIT_PER_MINUTE
from app.core.logger import logger
from app.core.security import get_current_developer
from app.db.session import get_db
from app.db.tables import Developer
from app.models import BatchMatchRequest, MatchResult, RoleSearchResponse
from app.services.job_search import SearchError, api_mode, search_cache, search_roles, usage_tracker
from app.services.points import PointsError, can_afford, spend_points
from app.services.skill_matcher import calculate_match

router = APIRouter(prefix="/api/roles", tags=["Roles"])
limiter = Limiter(key_func=get_remote_address)


def _developer_skill_names(developer: Developer) -> list[str]:
    return [ds.skill.name for ds in developer.skills]


@router.get("/search", response_model=RoleSearchResponse)
@limiter.limit(f"{RATE_LIMIT_PER_MINUTE}/minute")
async def search(
    request: Request,
    title: str | None = None,
    advanced_title_filter: str | None = None,
    location: str | None = None,
    type_filter: str | None = None,
    seniority_filter: str | None = None,
    description_filter: str | None = None,
    remote: bool | None = None,
    agency: bool | None = None,
    directapply: bool | None = None,
    date_filter: str | None = None,
    limit: int = DEFAULT_SEARCH_LIMIT,
    offset: int = 0,
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    """Search live roles and score each against the developer's skills.

    Costs JOB_QUERY points per successful search.
    """
    affordable, cost = can_afford(developer, "JOB_QUERY")
    if not affordable:
        raise HTTPException(status_code=402, detail=f"Insufficient points: need {cost} for a role search")

    params = {
        "title_filter": title,
        "advanced_title_filter": advanced_title_filter,
        "location_filter": location,
        "type_filter": type_filter,
        "seniority_filter": seniority_filter,
        "description_filter": description_filter,
        "remote": None if remote is None else str(remote).lower(),
        "agency": None if agency is None else str(agency).lower(),
        "directapply": None if directapply is None else str(directapply).lower(),
        "date_filter": date_filter,
        "limit": limit,
        "offset": offset,
    }
    try:
        outcome = await search_roles(params)
    except SearchError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    try:
        spent = spend_points(
            db, developer, "JOB_QUERY",
            details={"title": title, "location": location, "results": len(outcome.roles)},
        )
    except PointsError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    user_skills = _developer_skill_names(developer)
    for role in outcome.roles:
        match = calculate_match(user_skills, role)
        role.match_score = match.score
        role.matched_skills = match.matched_skills

    logger.info(
        f"Role search for {developer.id}: {len(outcome.roles)} roles "
        f"(cached={outcome.cached}, mode={outcome.api_mode})"
    )
    return RoleSearchResponse(
        roles=outcome.roles,
        total=len(outcome.roles),
        cached=outcome.cached,
        api_mode=outcome.api_mode,
        usage=usage_tracker.info(),
        warnings=outcome.warnings,
        points_spent=spent,
    )


@router.post("/batch-match")
async def batch_match(
    body: BatchMatchRequest,
    developer: Developer = Depends(get_current_developer),
):
    user_skills = _developer_skill_names(developer)
    results: list[MatchResult] = [calculate_match(user_skills, role) for role in body.roles]
    return {"results": results, "total_processed": len(results)}


@router.get("/usage")
async def search_usage(developer: Developer = Depends(get_current_developer)):
    return {
        "api_mode": api_mode(),
        "usage": usage_tracker.info(),
        "cache": search_cache.stats(),
    }
