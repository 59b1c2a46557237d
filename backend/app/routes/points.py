"""Points balance and transaction history."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.security import get_current_developer
from app.db.session import get_db
from app.db.tables import Developer, PointsTransaction
from app.models import PointsBalanceResponse, TransactionOut
from app.services.points import cost_table, points_summary, usage_stats

router = APIRouter(prefix="/api/points", tags=["Points"])


@router.get("", response_model=PointsBalanceResponse)
async def get_points(
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    return PointsBalanceResponse(
        tier=developer.subscription_tier,
        points=points_summary(developer),
        costs=cost_table(developer.subscription_tier),
    )


@router.get("/transactions")
async def get_transactions(
    limit: int = Query(default=50, ge=1, le=200),
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    """Most recent transactions first, plus spend totals over the whole history."""
    history = list(db.scalars(
        select(PointsTransaction)
        .where(PointsTransaction.developer_id == developer.id)
        .order_by(PointsTransaction.created_at.desc())
    ))
    return {
        "transactions": [TransactionOut.model_validate(t) for t in history[:limit]],
        "stats": usage_stats(history),
    }
