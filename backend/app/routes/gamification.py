"""XP dashboard and leaderboard (read-only)."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.constants import DASHBOARD_RECENT_TRANSACTIONS, LEADERBOARD_DEFAULT_LIMIT, LEADERBOARD_MAX_LIMIT
from app.core.security import get_current_developer
from app.db.session import get_db
from app.db.tables import CV, Developer, PointsTransaction, SavedRole, SubscriptionTier
from app.models import DashboardResponse, LeaderboardResponse, TransactionOut
from app.services.points import leaderboard, level_progress, points_summary

router = APIRouter(prefix="/api/gamification", tags=["Gamification"])


def _count(db: Session, stmt) -> int:
    return db.scalar(select(func.count()).select_from(stmt.subquery()))


@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    recent = db.scalars(
        select(PointsTransaction)
        .where(PointsTransaction.developer_id == developer.id)
        .order_by(PointsTransaction.created_at.desc())
        .limit(DASHBOARD_RECENT_TRANSACTIONS)
    )
    saved = select(SavedRole.id).where(SavedRole.developer_id == developer.id)
    return DashboardResponse(
        tier=developer.subscription_tier,
        progress=level_progress(developer),
        points=points_summary(developer),
        recent_transactions=[TransactionOut.model_validate(t) for t in recent],
        cv_count=_count(db, select(CV.id).where(CV.developer_id == developer.id)),
        saved_role_count=_count(db, saved),
        applied_count=_count(db, saved.where(SavedRole.applied_for.is_(True))),
    )


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    tier: SubscriptionTier | None = None,
    limit: int = Query(default=LEADERBOARD_DEFAULT_LIMIT, ge=1, le=LEADERBOARD_MAX_LIMIT),
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    return leaderboard(db, developer, tier=tier.value if tier else None, limit=limit)
