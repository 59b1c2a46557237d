"""Bearer-token authentication.

Tokens are HS256 JWTs issued by the identity provider that shares
JWT_SECRET with this service. Claims: sub (developer id), email, name.
A developer row is provisioned the first time a valid token is seen, and
an expired points period is reset before the request is handled.
"""

from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import load_settings
from app.core.constants import POINTS_RESET_DAYS, TIER_CONFIG
from app.core.logger import logger
from app.core.request_context import developer_id_var
from app.db.session import get_db
from app.db.tables import Developer, utcnow
from app.services.points import reset_if_due


def create_access_token(developer_id: str, email: str, name: str = "", expires_minutes: int = 60) -> str:
    settings = load_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": developer_id,
        "email": email,
        "name": name,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    """Decode and verify a token. Raises HTTPException(401) on any failure."""
    settings = load_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    if not payload.get("sub") or not payload.get("email"):
        raise HTTPException(status_code=401, detail="Token missing required claims")
    return payload


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    return auth_header[len("Bearer "):].strip()


async def get_current_developer(request: Request, db: Session = Depends(get_db)) -> Developer:
    """FastAPI dependency: the authenticated developer, created on first login."""
    claims = decode_access_token(_bearer_token(request))
    developer_id_var.set(claims["sub"])

    developer = db.get(Developer, claims["sub"])
    if developer:
        # Roll over an expired points period before any balance check
        if reset_if_due(developer):
            db.commit()
        return developer

    developer = Developer(
        id=claims["sub"],
        email=claims["email"],
        name=claims.get("name") or "",
        monthly_points=TIER_CONFIG["FREE"]["points"],
        points_reset_date=utcnow() + timedelta(days=POINTS_RESET_DAYS),
    )
    db.add(developer)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        # A concurrent request may have provisioned the same id first
        existing = db.get(Developer, claims["sub"])
        if existing:
            return existing
        logger.warning(f"Developer provisioning conflict for {claims['email']}")
        raise HTTPException(status_code=409, detail="Account already exists for this email")

    logger.info(f"Provisioned developer {developer.id} ({developer.email})")
    return developer
