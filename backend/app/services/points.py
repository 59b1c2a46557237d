"""Subscription points (spend/award/reset) and gamification XP.

Points are the monthly consumable balance: available = monthly + earned - used.
Spends are applied with a single conditional UPDATE so two concurrent
requests can never overdraw the balance. XP is cumulative and only grows.
"""

import math
from collections import defaultdict
from datetime import datetime, timedelta

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app.core.constants import (
    LEADERBOARD_DEFAULT_LIMIT,
    MAX_LEVEL_BONUS,
    MAX_POINTS_AWARD,
    MAX_STREAK_BONUS,
    POINTS_COSTS,
    POINTS_RESET_DAYS,
    SPEND_TYPES_REQUIRING_SOURCE,
    TIER_CONFIG,
    TIER_EFFICIENCY,
    XP_PER_LEVEL_BASE,
    XP_REWARDS,
)
from app.core.logger import logger
from app.db.tables import Developer, PointsTransaction, utcnow
from app.models import LeaderboardEntry, LeaderboardResponse, LevelProgress, PointsSummary


class PointsError(Exception):
    """Raised when a spend or award is rejected."""

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Balance
# ---------------------------------------------------------------------------


def available_points(developer: Developer) -> int:
    return max(0, developer.monthly_points + developer.points_earned - developer.points_used)


def points_summary(developer: Developer) -> PointsSummary:
    return PointsSummary(
        monthly=developer.monthly_points,
        used=developer.points_used,
        earned=developer.points_earned,
        available=available_points(developer),
        reset_date=developer.points_reset_date,
    )


def effective_cost(spend_type: str, tier: str) -> int:
    """Base cost scaled by the tier's efficiency, rounded up."""
    if spend_type not in POINTS_COSTS:
        raise PointsError(400, f"Unknown spend type: {spend_type}")
    return math.ceil(POINTS_COSTS[spend_type] * TIER_EFFICIENCY.get(tier, 1.0))


def cost_table(tier: str) -> dict[str, int]:
    return {spend_type: effective_cost(spend_type, tier) for spend_type in POINTS_COSTS}


def can_afford(developer: Developer, spend_type: str) -> tuple[bool, int]:
    cost = effective_cost(spend_type, developer.subscription_tier)
    return available_points(developer) >= cost, cost


def reset_if_due(developer: Developer, now: datetime | None = None) -> bool:
    """Start a new points period when the reset date is missing or past.

    Mutates the row only; the caller commits.
    """
    now = now or utcnow()
    if developer.points_reset_date and developer.points_reset_date > now:
        return False

    developer.points_used = 0
    developer.points_earned = 0
    developer.monthly_points = TIER_CONFIG.get(developer.subscription_tier, TIER_CONFIG["FREE"])["points"]
    developer.points_reset_date = now + timedelta(days=POINTS_RESET_DAYS)
    logger.info(f"Points period reset for {developer.id} (tier={developer.subscription_tier})")
    return True


# ---------------------------------------------------------------------------
# Spend / award
# ---------------------------------------------------------------------------


def validate_spend(spend_type: str, source_id: str | None) -> None:
    if spend_type not in POINTS_COSTS:
        raise PointsError(400, f"Unknown spend type: {spend_type}")
    if spend_type in SPEND_TYPES_REQUIRING_SOURCE and not source_id:
        raise PointsError(400, f"{spend_type} spends require a source id")


def spend_points(
    db: Session,
    developer: Developer,
    spend_type: str,
    source_id: str | None = None,
    details: dict | None = None,
) -> int:
    """Atomically deduct the effective cost and record a transaction.

    Returns:
        The number of points spent.

    Raises:
        PointsError: 400 for invalid spends, 402 when the balance is too low.
    """
    validate_spend(spend_type, source_id)
    if reset_if_due(developer):
        db.commit()

    cost = effective_cost(spend_type, developer.subscription_tier)
    balance = Developer.monthly_points + Developer.points_earned - Developer.points_used
    result = db.execute(
        update(Developer)
        .where(Developer.id == developer.id, balance >= cost)
        .values(points_used=Developer.points_used + cost)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        db.refresh(developer)
        raise PointsError(
            402, f"Insufficient points: need {cost}, have {available_points(developer)}"
        )

    db.add(PointsTransaction(
        developer_id=developer.id,
        amount=-cost,
        spend_type=spend_type,
        source="SPEND",
        source_id=source_id,
        description=f"{spend_type} ({cost} points)",
        details=details,
    ))
    db.commit()
    db.refresh(developer)
    logger.info(f"Developer {developer.id} spent {cost} points on {spend_type}")
    return cost


def validate_award(amount: int, source: str, source_id: str | None) -> None:
    if amount <= 0:
        raise PointsError(400, "Award amount must be positive")
    if amount > MAX_POINTS_AWARD:
        raise PointsError(400, f"Award amount exceeds maximum of {MAX_POINTS_AWARD}")
    if source == "STREAK_BONUS" and amount > MAX_STREAK_BONUS:
        raise PointsError(400, f"Streak bonus cannot exceed {MAX_STREAK_BONUS}")
    if source == "LEVEL_BONUS" and amount > MAX_LEVEL_BONUS:
        raise PointsError(400, f"Level bonus cannot exceed {MAX_LEVEL_BONUS}")
    if source == "ACHIEVEMENT_BONUS" and not source_id:
        raise PointsError(400, "Achievement bonus requires a source id")


def award_points(
    db: Session,
    developer: Developer,
    amount: int,
    source: str,
    source_id: str | None = None,
    description: str | None = None,
) -> int:
    validate_award(amount, source, source_id)
    developer.points_earned += amount
    db.add(PointsTransaction(
        developer_id=developer.id,
        amount=amount,
        source=source,
        source_id=source_id,
        description=description or f"{source} (+{amount} points)",
    ))
    db.commit()
    logger.info(f"Developer {developer.id} earned {amount} points from {source}")
    return amount


def usage_stats(transactions: list[PointsTransaction]) -> dict:
    """Totals plus breakdowns by spend type and by source."""
    total_spent = 0
    total_earned = 0
    by_spend_type: dict[str, int] = defaultdict(int)
    by_source: dict[str, int] = defaultdict(int)
    for tx in transactions:
        if tx.amount < 0:
            total_spent += -tx.amount
            if tx.spend_type:
                by_spend_type[tx.spend_type] += -tx.amount
        else:
            total_earned += tx.amount
        by_source[tx.source] += abs(tx.amount)
    return {
        "total_spent": total_spent,
        "total_earned": total_earned,
        "by_spend_type": dict(by_spend_type),
        "by_source": dict(by_source),
    }


# ---------------------------------------------------------------------------
# XP
# ---------------------------------------------------------------------------


def level_for_xp(xp: int) -> int:
    return math.floor(math.sqrt(max(0, xp) / XP_PER_LEVEL_BASE)) + 1


def xp_for_level(level: int) -> int:
    return (level - 1) ** 2 * XP_PER_LEVEL_BASE


def award_xp(developer: Developer, reason: str) -> int:
    """Add tier-scaled XP for an activity and update the level.

    Mutates the row only; the caller owns the transaction.
    """
    base = XP_REWARDS.get(reason)
    if base is None:
        logger.warning(f"Unknown XP reason: {reason}")
        return 0
    multiplier = TIER_CONFIG.get(developer.subscription_tier, TIER_CONFIG["FREE"])["xp_multiplier"]
    gained = round(base * multiplier)
    developer.total_xp = (developer.total_xp or 0) + gained
    new_level = level_for_xp(developer.total_xp)
    if new_level > (developer.current_level or 1):
        logger.info(f"Developer {developer.id} reached level {new_level}")
    developer.current_level = new_level
    return gained


def level_progress(developer: Developer) -> LevelProgress:
    total_xp = developer.total_xp or 0
    level = level_for_xp(total_xp)
    floor_xp = xp_for_level(level)
    next_xp = xp_for_level(level + 1)
    return LevelProgress(
        level=level,
        total_xp=total_xp,
        current_level_xp=total_xp - floor_xp,
        next_level_xp=next_xp,
        xp_to_next_level=next_xp - total_xp,
        progress_percent=round((total_xp - floor_xp) * 100 / (next_xp - floor_xp)),
    )


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------


def leaderboard(
    db: Session,
    viewer: Developer,
    tier: str | None = None,
    limit: int = LEADERBOARD_DEFAULT_LIMIT,
) -> LeaderboardResponse:
    """Top developers by XP. Other developers are shown as "Player N"."""
    stmt = select(Developer)
    if tier:
        stmt = stmt.where(Developer.subscription_tier == tier)
    top = db.scalars(stmt.order_by(Developer.total_xp.desc(), Developer.created_at, Developer.id).limit(limit))

    entries = []
    for rank, dev in enumerate(top, start=1):
        is_viewer = dev.id == viewer.id
        entries.append(LeaderboardEntry(
            rank=rank,
            name=(dev.name or "You") if is_viewer else f"Player {rank}",
            is_current_user=is_viewer,
            total_xp=dev.total_xp or 0,
            level=dev.current_level or 1,
            tier=dev.subscription_tier,
        ))

    viewer_rank = next((e.rank for e in entries if e.is_current_user), None)
    if viewer_rank is None and (not tier or viewer.subscription_tier == tier):
        ahead = select(func.count()).select_from(Developer).where(Developer.total_xp > (viewer.total_xp or 0))
        if tier:
            ahead = ahead.where(Developer.subscription_tier == tier)
        viewer_rank = db.scalar(ahead) + 1

    return LeaderboardResponse(entries=entries, current_user_rank=viewer_rank)
