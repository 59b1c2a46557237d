"""Pydantic request/response models for the TechRec API."""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.db.tables import AnalysisStatus, SkillLevel


# ---------------------------------------------------------------------------
# CV analysis (LLM output)
# ---------------------------------------------------------------------------


class _LenientModel(BaseModel):
    """Accepts snake_case or camelCase keys; LLM output uses either.

    Numbers become strings ("year": 2019).
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )


def _none_to_list(value):
    return [] if value is None else value


def _none_to_empty(value):
    return "" if value is None else value


class ContactInfoData(_LenientModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    location: str | None = None
    linkedin: str | None = None
    github: str | None = None
    website: str | None = None


class SkillData(_LenientModel):
    name: str = ""
    category: str | None = None
    level: SkillLevel = SkillLevel.INTERMEDIATE

    @field_validator("name", mode="before")
    @classmethod
    def _name_or_empty(cls, value):
        return _none_to_empty(value)

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, value):
        if isinstance(value, SkillLevel):
            return value
        if not value:
            return SkillLevel.INTERMEDIATE
        normalized = str(value).strip().upper()
        return normalized if normalized in SkillLevel.__members__ else SkillLevel.INTERMEDIATE


class ExperienceData(_LenientModel):
    title: str = ""
    company: str = ""
    location: str | None = None
    description: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    responsibilities: list[str] = []

    @field_validator("title", "company", mode="before")
    @classmethod
    def _text_or_empty(cls, value):
        return _none_to_empty(value)

    @field_validator("responsibilities", mode="before")
    @classmethod
    def _coerce_responsibilities(cls, value):
        if isinstance(value, str):
            return [value] if value.strip() else []
        return _none_to_list(value)


class EducationData(_LenientModel):
    institution: str = ""
    degree: str | None = None
    year: str | None = None
    location: str | None = None
    start_date: str | None = None
    end_date: str | None = None

    @field_validator("institution", mode="before")
    @classmethod
    def _institution_or_empty(cls, value):
        return _none_to_empty(value)


class AchievementData(_LenientModel):
    title: str = ""
    description: str | None = None
    date: str | None = None
    url: str | None = None
    issuer: str | None = None

    @field_validator("title", mode="before")
    @classmethod
    def _title_or_empty(cls, value):
        return _none_to_empty(value)


class CvAnalysisData(_LenientModel):
    """Structured CV content extracted by the LLM."""
    contact_info: ContactInfoData = Field(default_factory=ContactInfoData)
    about: str | None = None
    skills: list[SkillData] = []
    experience: list[ExperienceData] = []
    education: list[EducationData] = []
    achievements: list[AchievementData] = []

    @field_validator("contact_info", mode="before")
    @classmethod
    def _coerce_contact(cls, value):
        return value or {}

    @field_validator("skills", mode="before")
    @classmethod
    def _coerce_skills(cls, value):
        # Some responses list skills as bare strings
        value = _none_to_list(value)
        return [{"name": s} if isinstance(s, str) else s for s in value]

    @field_validator("experience", "education", "achievements", mode="before")
    @classmethod
    def _coerce_lists(cls, value):
        return _none_to_list(value)


class ValidationWarning(BaseModel):
    path: str
    message: str
    original_value: str | None = None


# ---------------------------------------------------------------------------
# CVs
# ---------------------------------------------------------------------------


class CvResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    original_name: str
    mime_type: str
    size: int
    status: AnalysisStatus
    upload_date: datetime
    analysis_id: str | None = None
    improvement_score: float | None = None
    error_message: str | None = None


class CvDetailResponse(CvResponse):
    analysis: CvAnalysisData | None = None
    warnings: list[ValidationWarning] = []


class CvUploadResponse(BaseModel):
    message: str
    cv_id: str
    status: AnalysisStatus
    analysis_status: str


class Suggestion(BaseModel):
    id: str
    type: Literal[
        "experience_bullet", "education_gap", "missing_skill",
        "summary_improvement", "general_improvement",
    ] = "general_improvement"
    section: str = "general"
    target_id: str | None = None
    title: str = ""
    reasoning: str = ""
    suggested_content: str | None = None
    original_content: str | None = None
    priority: Literal["high", "medium", "low"] = "medium"
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)


class SuggestionSummary(BaseModel):
    total: int
    high_priority: int
    categories: dict[str, int]


class SuggestionsResponse(BaseModel):
    suggestions: list[Suggestion]
    summary: SuggestionSummary
    from_cache: bool = False
    points_spent: int = 0


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class ContactInfoIn(BaseModel):
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    country: str | None = None
    linkedin: str | None = None
    github: str | None = None
    website: str | None = None


class ContactInfoOut(ContactInfoIn):
    model_config = ConfigDict(from_attributes=True)


class SkillIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    category: str | None = None
    level: SkillLevel = SkillLevel.INTERMEDIATE


class SkillOut(SkillIn):
    pass


class ExperienceIn(BaseModel):
    title: str = Field(..., min_length=1)
    company: str = Field(..., min_length=1)
    location: str | None = None
    description: str | None = None
    responsibilities: list[str] = []
    start_date: str | None = Field(default=None, description="YYYY, YYYY-MM or YYYY-MM-DD")
    end_date: str | None = Field(default=None, description="Empty or 'Present' for current roles")
    is_current: bool = False


class ExperienceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    company: str
    location: str | None = None
    description: str | None = None
    responsibilities: list[str] = []
    start_date: date | None = None
    end_date: date | None = None
    is_current: bool = False


class EducationIn(BaseModel):
    institution: str = Field(..., min_length=1)
    degree: str | None = None
    year: str | None = None
    location: str | None = None
    start_date: str | None = None
    end_date: str | None = None


class EducationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    institution: str
    degree: str | None = None
    year: str | None = None
    location: str | None = None
    start_date: date | None = None
    end_date: date | None = None


class AchievementIn(BaseModel):
    title: str = Field(..., min_length=1)
    description: str | None = None
    date: str | None = None
    url: str | None = None
    issuer: str | None = None


class AchievementOut(AchievementIn):
    model_config = ConfigDict(from_attributes=True)

    id: str


class PointsSummary(BaseModel):
    monthly: int
    used: int
    earned: int
    available: int
    reset_date: datetime | None = None


class ProfileUpdate(BaseModel):
    """Partial update. A list field, when present, replaces the whole collection."""
    name: str | None = Field(default=None, max_length=200)
    title: str | None = Field(default=None, max_length=200)
    profile_email: str | None = None
    about: str | None = None
    contact_info: ContactInfoIn | None = None
    skills: list[SkillIn] | None = None
    experience: list[ExperienceIn] | None = None
    education: list[EducationIn] | None = None
    achievements: list[AchievementIn] | None = None


class ProfileResponse(BaseModel):
    id: str
    email: str
    name: str
    title: str | None = None
    profile_email: str | None = None
    about: str | None = None
    contact_info: ContactInfoOut | None = None
    skills: list[SkillOut] = []
    experience: list[ExperienceOut] = []
    education: list[EducationOut] = []
    achievements: list[AchievementOut] = []
    subscription_tier: str
    subscription_status: str
    total_xp: int
    current_level: int
    points: PointsSummary
    counts: dict[str, int]


class ExperienceSummary(BaseModel):
    total_years: float
    is_junior: bool
    position_count: int
    cached: bool = False


# ---------------------------------------------------------------------------
# Points + subscription
# ---------------------------------------------------------------------------


class PointsBalanceResponse(BaseModel):
    tier: str
    points: PointsSummary
    costs: dict[str, int]


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    amount: int
    spend_type: str | None = None
    source: str
    source_id: str | None = None
    description: str | None = None
    created_at: datetime


class LevelProgress(BaseModel):
    level: int
    total_xp: int
    current_level_xp: int
    next_level_xp: int
    xp_to_next_level: int
    progress_percent: int


class DashboardResponse(BaseModel):
    tier: str
    progress: LevelProgress
    points: PointsSummary
    recent_transactions: list[TransactionOut]
    cv_count: int
    saved_role_count: int
    applied_count: int


class LeaderboardEntry(BaseModel):
    rank: int
    name: str
    is_current_user: bool
    total_xp: int
    level: int
    tier: str


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntry]
    current_user_rank: int | None = None


class TierInfo(BaseModel):
    tier: str
    points: int
    xp_multiplier: float
    price: float
    features: list[str]


class SubscriptionCreate(BaseModel):
    tier: str
    price_id: str = Field(..., min_length=1)


class SubscriptionUpdate(BaseModel):
    action: Literal["cancel", "upgrade", "downgrade"]
    tier: str | None = None
    price_id: str | None = None


class SubscriptionResponse(BaseModel):
    tier: str
    status: str
    config: TierInfo
    points: PointsSummary
    billing: dict | None = None


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleCompany(BaseModel):
    id: str | None = None
    name: str = ""
    url: str | None = None
    logo: str | None = None
    industry: str | None = None
    size: str | None = None
    headquarters: str | None = None
    description: str | None = None
    specialties: list[str] = []
    employee_count: int | None = None
    linkedin_url: str | None = None


class Role(BaseModel):
    id: str
    title: str
    description: str = ""
    company: RoleCompany = Field(default_factory=RoleCompany)
    location: str = ""
    salary: str = ""
    type: str = ""
    remote: bool = False
    url: str | None = None
    direct_apply: bool = False
    seniority: str | None = None
    posted_date: str | None = None
    skills: list[str] = []
    requirements: list[str] = []
    ai_key_skills: list[str] = []
    visa_sponsorship: bool | None = None
    recruiter_name: str | None = None
    recruiter_title: str | None = None
    hiring_manager: str | None = None
    match_score: int | None = None
    matched_skills: list[str] = []


class UsageInfo(BaseModel):
    jobs_limit: int | None = None
    jobs_remaining: int | None = None
    requests_limit: int | None = None
    requests_remaining: int | None = None
    jobs_reset_seconds: int | None = None
    warning_level: Literal["ok", "low", "critical"] = "ok"


class RoleSearchResponse(BaseModel):
    roles: list[Role]
    total: int
    cached: bool
    api_mode: Literal["DEVELOPMENT", "PRODUCTION"]
    usage: UsageInfo
    warnings: list[str] = []
    points_spent: int = 0


class BatchMatchRequest(BaseModel):
    roles: list[Role] = Field(..., max_length=100)


class MatchResult(BaseModel):
    role_id: str
    score: int
    matched_skills: list[str]
    role_skills: list[str]


class SavedRoleIn(BaseModel):
    external_role_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    company_name: str | None = None
    location: str | None = None
    url: str | None = None
    notes: str | None = None


class SavedRoleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    external_role_id: str
    title: str
    company_name: str | None = None
    location: str | None = None
    url: str | None = None
    notes: str | None = None
    applied_for: bool
    applied_at: datetime | None = None
    application_method: str | None = None
    job_posting_url: str | None = None
    application_notes: str | None = None
    created_at: datetime


class MarkAppliedRequest(BaseModel):
    role_id: str = Field(..., min_length=1)
    application_method: Literal["easy_apply", "external", "manual", "cover_letter"] = "manual"
    job_posting_url: str | None = None
    application_notes: str | None = None


class UnapplyRequest(BaseModel):
    role_id: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Writing tools
# ---------------------------------------------------------------------------


class RoleInfo(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    requirements: list[str] = []
    skills: list[str] = []
    location: str | None = None
    seniority: str | None = None
    ai_key_skills: list[str] = []
    ai_core_responsibilities: str | None = None


class CompanyInfo(BaseModel):
    name: str = Field(..., min_length=1)
    location: str | None = None
    remote: bool | None = None
    attraction_points: list[str] = []
    industry: str | None = None
    description: str | None = None
    specialties: list[str] = []


class LetterRequest(BaseModel):
    role_id: str = Field(..., min_length=1, description="Role the letter is for (points are charged against it)")
    role_info: RoleInfo
    company_info: CompanyInfo
    job_source: str | None = None
    hiring_manager: str | None = None
    achievements: list[str] = []
    tone: Literal["formal", "friendly", "enthusiastic"] = "formal"


class LetterResponse(BaseModel):
    letter: str
    provider: str | None = None
    cached: bool = False
    word_count: int
    warnings: list[str] = []
    points_spent: int = 0
