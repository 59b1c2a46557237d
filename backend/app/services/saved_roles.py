"""Saved roles and application tracking."""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.logger import logger
from app.db.tables import Developer, SavedRole, utcnow
from app.models import MarkAppliedRequest, SavedRoleIn
from app.services.points import award_xp


def list_saved_roles(db: Session, developer_id: str) -> list[SavedRole]:
    return list(db.scalars(
        select(SavedRole)
        .where(SavedRole.developer_id == developer_id)
        .order_by(SavedRole.created_at.desc())
    ))


def get_saved_role(db: Session, developer_id: str, external_role_id: str) -> SavedRole | None:
    return db.scalar(select(SavedRole).where(
        SavedRole.developer_id == developer_id,
        SavedRole.external_role_id == external_role_id,
    ))


def save_role(db: Session, developer: Developer, data: SavedRoleIn) -> tuple[SavedRole, bool]:
    """Save a role once per developer. Returns (row, created)."""
    existing = get_saved_role(db, developer.id, data.external_role_id)
    if existing is not None:
        return existing, False

    role = SavedRole(developer_id=developer.id, **data.model_dump())
    db.add(role)
    award_xp(developer, "ROLE_SAVED")
    try:
        db.commit()
    except IntegrityError:
        # concurrent save of the same role
        db.rollback()
        return get_saved_role(db, developer.id, data.external_role_id), False
    logger.info(f"Developer {developer.id} saved role {data.external_role_id}")
    return role, True


def unsave_role(db: Session, developer_id: str, external_role_id: str) -> bool:
    role = get_saved_role(db, developer_id, external_role_id)
    if role is None:
        return False
    db.delete(role)
    db.commit()
    return True


def mark_applied(db: Session, developer: Developer, data: MarkAppliedRequest) -> SavedRole | None:
    """Record an application. XP is only awarded the first time."""
    role = get_saved_role(db, developer.id, data.role_id)
    if role is None:
        return None

    first_time = not role.applied_for
    role.applied_for = True
    role.applied_at = role.applied_at if not first_time else utcnow()
    role.application_method = data.application_method
    role.job_posting_url = data.job_posting_url or role.job_posting_url
    role.application_notes = data.application_notes or role.application_notes
    if first_time:
        award_xp(developer, "APPLICATION_SUBMITTED")
    db.commit()
    logger.info(f"Developer {developer.id} applied to {data.role_id} via {data.application_method}")
    return role


def unmark_applied(db: Session, developer_id: str, role_id: str) -> SavedRole | None:
    role = get_saved_role(db, developer_id, role_id)
    if role is None:
        return None
    role.applied_for = False
    role.applied_at = None
    role.application_method = None
    db.commit()
    return role
