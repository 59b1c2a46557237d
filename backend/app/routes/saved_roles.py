"""Saved roles and application tracking endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from app.core.security import get_current_developer
from app.db.session import get_db
from app.db.tables import Developer
from app.models import MarkAppliedRequest, SavedRoleIn, SavedRoleOut, UnapplyRequest
from app.services.saved_roles import (
    list_saved_roles,
    mark_applied,
    save_role,
    unmark_applied,
    unsave_role,
)

router = APIRouter(prefix="/api/developer/saved-roles", tags=["Saved roles"])


@router.get("", response_model=list[SavedRoleOut])
async def get_saved_roles(
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    return list_saved_roles(db, developer.id)


@router.post("", response_model=SavedRoleOut)
async def create_saved_role(
    body: SavedRoleIn,
    response: Response,
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    """Idempotent: saving an already-saved role returns the existing row with 200."""
    role, created = save_role(db, developer, body)
    response.status_code = 201 if created else 200
    return role


@router.post("/mark-applied", response_model=SavedRoleOut)
async def mark_role_applied(
    body: MarkAppliedRequest,
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    role = mark_applied(db, developer, body)
    if role is None:
        raise HTTPException(status_code=404, detail="Role is not saved")
    return role


@router.post("/un-apply", response_model=SavedRoleOut)
async def unmark_role_applied(
    body: UnapplyRequest,
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    role = unmark_applied(db, developer.id, body.role_id)
    if role is None:
        raise HTTPException(status_code=404, detail="Role is not saved")
    return role


@router.delete("/{external_role_id}", status_code=204)
async def delete_saved_role(
    external_role_id: str,
    developer: Developer = Depends(get_current_developer),
    db: Session = Depends(get_db),
):
    if not unsave_role(db, developer.id, external_role_id):
        raise HTTPException(status_code=404, detail="Role is not saved")
    return Response(status_code=204)
