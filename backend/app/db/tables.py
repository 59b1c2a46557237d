"""ORM tables for developers, CVs, analyses, saved roles and points."""

import enum
import uuid
from datetime import date, datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.session import Base


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo, so we never store it)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid.uuid4().hex


class AnalysisStatus(str, enum.Enum):
    PENDING = "PENDING"
    ANALYZING = "ANALYZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SkillLevel(str, enum.Enum):
    BEGINNER = "BEGINNER"
    INTERMEDIATE = "INTERMEDIATE"
    ADVANCED = "ADVANCED"
    EXPERT = "EXPERT"


class SubscriptionTier(str, enum.Enum):
    FREE = "FREE"
    BASIC = "BASIC"
    STARTER = "STARTER"
    PRO = "PRO"
    EXPERT = "EXPERT"


_children = dict(cascade="all, delete-orphan", passive_deletes=True)


class Developer(Base):
    __tablename__ = "developers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(200), default="")
    title: Mapped[str | None] = mapped_column(String(200))
    profile_email: Mapped[str | None] = mapped_column(String(320))
    about: Mapped[str | None] = mapped_column(Text)

    subscription_tier: Mapped[str] = mapped_column(String(20), default=SubscriptionTier.FREE.value)
    subscription_status: Mapped[str] = mapped_column(String(30), default="active")
    subscription_id: Mapped[str | None] = mapped_column(String(100))
    stripe_customer_id: Mapped[str | None] = mapped_column(String(100))
    subscription_start: Mapped[datetime | None] = mapped_column(DateTime)
    subscription_end: Mapped[datetime | None] = mapped_column(DateTime)

    monthly_points: Mapped[int] = mapped_column(Integer, default=10)
    points_used: Mapped[int] = mapped_column(Integer, default=0)
    points_earned: Mapped[int] = mapped_column(Integer, default=0)
    points_reset_date: Mapped[datetime | None] = mapped_column(DateTime)

    total_xp: Mapped[int] = mapped_column(Integer, default=0)
    current_level: Mapped[int] = mapped_column(Integer, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    contact_info: Mapped[Optional["ContactInfo"]] = relationship(
        back_populates="developer", uselist=False, **_children
    )
    skills: Mapped[list["DeveloperSkill"]] = relationship(back_populates="developer", **_children)
    experience: Mapped[list["Experience"]] = relationship(
        back_populates="developer", order_by="Experience.start_date.desc()", **_children
    )
    education: Mapped[list["Education"]] = relationship(back_populates="developer", **_children)
    achievements: Mapped[list["Achievement"]] = relationship(back_populates="developer", **_children)
    cvs: Mapped[list["CV"]] = relationship(back_populates="developer", **_children)
    saved_roles: Mapped[list["SavedRole"]] = relationship(back_populates="developer", **_children)
    transactions: Mapped[list["PointsTransaction"]] = relationship(**_children)


class ContactInfo(Base):
    __tablename__ = "contact_info"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    developer_id: Mapped[str] = mapped_column(
        ForeignKey("developers.id", ondelete="CASCADE"), unique=True
    )
    phone: Mapped[str | None] = mapped_column(String(50))
    address: Mapped[str | None] = mapped_column(String(300))
    city: Mapped[str | None] = mapped_column(String(100))
    country: Mapped[str | None] = mapped_column(String(100))
    linkedin: Mapped[str | None] = mapped_column(String(300))
    github: Mapped[str | None] = mapped_column(String(300))
    website: Mapped[str | None] = mapped_column(String(300))

    developer: Mapped[Developer] = relationship(back_populates="contact_info")


class Skill(Base):
    __tablename__ = "skills"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    category: Mapped[str | None] = mapped_column(String(100))


class DeveloperSkill(Base):
    __tablename__ = "developer_skills"
    __table_args__ = (UniqueConstraint("developer_id", "skill_id"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    developer_id: Mapped[str] = mapped_column(ForeignKey("developers.id", ondelete="CASCADE"), index=True)
    skill_id: Mapped[str] = mapped_column(ForeignKey("skills.id"))
    level: Mapped[SkillLevel] = mapped_column(
        SAEnum(SkillLevel, native_enum=False), default=SkillLevel.INTERMEDIATE
    )

    developer: Mapped[Developer] = relationship(back_populates="skills")
    skill: Mapped[Skill] = relationship(lazy="joined")


class Experience(Base):
    __tablename__ = "experience"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    developer_id: Mapped[str] = mapped_column(ForeignKey("developers.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(String(200))
    company: Mapped[str] = mapped_column(String(200))
    location: Mapped[str | None] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text)
    responsibilities: Mapped[list] = mapped_column(JSON, default=list)
    start_date: Mapped[date | None] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)
    is_current: Mapped[bool] = mapped_column(Boolean, default=False)

    developer: Mapped[Developer] = relationship(back_populates="experience")


class Education(Base):
    __tablename__ = "education"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    developer_id: Mapped[str] = mapped_column(ForeignKey("developers.id", ondelete="CASCADE"), index=True)
    institution: Mapped[str] = mapped_column(String(200))
    degree: Mapped[str | None] = mapped_column(String(200))
    year: Mapped[str | None] = mapped_column(String(20))
    location: Mapped[str | None] = mapped_column(String(200))
    start_date: Mapped[date | None] = mapped_column(Date)
    end_date: Mapped[date | None] = mapped_column(Date)

    developer: Mapped[Developer] = relationship(back_populates="education")


class Achievement(Base):
    __tablename__ = "achievements"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    developer_id: Mapped[str] = mapped_column(ForeignKey("developers.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(String(300))
    description: Mapped[str | None] = mapped_column(Text)
    date: Mapped[str | None] = mapped_column(String(20))
    url: Mapped[str | None] = mapped_column(String(500))
    issuer: Mapped[str | None] = mapped_column(String(200))

    developer: Mapped[Developer] = relationship(back_populates="achievements")


class CV(Base):
    __tablename__ = "cvs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    developer_id: Mapped[str] = mapped_column(ForeignKey("developers.id", ondelete="CASCADE"), index=True)
    original_name: Mapped[str] = mapped_column(String(300))
    mime_type: Mapped[str] = mapped_column(String(150))
    size: Mapped[int] = mapped_column(Integer)
    storage_key: Mapped[str] = mapped_column(String(500), unique=True)
    status: Mapped[AnalysisStatus] = mapped_column(
        SAEnum(AnalysisStatus, native_enum=False), default=AnalysisStatus.PENDING, index=True
    )
    extracted_text: Mapped[str | None] = mapped_column(Text)
    error_message: Mapped[str | None] = mapped_column(Text)
    upload_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
    analysis_id: Mapped[str | None] = mapped_column(String(64))
    improvement_score: Mapped[float | None] = mapped_column(Float)

    developer: Mapped[Developer] = relationship(back_populates="cvs")
    analyses: Mapped[list["CvAnalysis"]] = relationship(back_populates="cv", **_children)


class CvAnalysis(Base):
    __tablename__ = "cv_analyses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    developer_id: Mapped[str] = mapped_column(ForeignKey("developers.id", ondelete="CASCADE"), index=True)
    cv_id: Mapped[str] = mapped_column(ForeignKey("cvs.id", ondelete="CASCADE"), index=True)
    status: Mapped[AnalysisStatus] = mapped_column(
        SAEnum(AnalysisStatus, native_enum=False), default=AnalysisStatus.PENDING
    )
    analysis_result: Mapped[dict | None] = mapped_column(JSON)
    provider: Mapped[str | None] = mapped_column(String(30))
    error_message: Mapped[str | None] = mapped_column(Text)
    analyzed_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    cv: Mapped[CV] = relationship(back_populates="analyses")


class SavedRole(Base):
    __tablename__ = "saved_roles"
    __table_args__ = (UniqueConstraint("developer_id", "external_role_id"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    developer_id: Mapped[str] = mapped_column(ForeignKey("developers.id", ondelete="CASCADE"), index=True)
    external_role_id: Mapped[str] = mapped_column(String(100))
    title: Mapped[str] = mapped_column(String(300))
    company_name: Mapped[str | None] = mapped_column(String(200))
    location: Mapped[str | None] = mapped_column(String(200))
    url: Mapped[str | None] = mapped_column(String(1000))
    notes: Mapped[str | None] = mapped_column(Text)
    applied_for: Mapped[bool] = mapped_column(Boolean, default=False)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime)
    application_method: Mapped[str | None] = mapped_column(String(30))
    job_posting_url: Mapped[str | None] = mapped_column(String(1000))
    application_notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    developer: Mapped[Developer] = relationship(back_populates="saved_roles")


class PointsTransaction(Base):
    __tablename__ = "points_transactions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    developer_id: Mapped[str] = mapped_column(ForeignKey("developers.id", ondelete="CASCADE"), index=True)
    amount: Mapped[int] = mapped_column(Integer)  # negative for spends
    spend_type: Mapped[str | None] = mapped_column(String(40))
    source: Mapped[str] = mapped_column(String(40))
    source_id: Mapped[str | None] = mapped_column(String(100))
    description: Mapped[str | None] = mapped_column(String(500))
    # "metadata" is reserved on declarative classes
    details: Mapped[dict | None] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    type: Mapped[str] = mapped_column(String(100))
    received_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
