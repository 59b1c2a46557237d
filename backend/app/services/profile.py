"""Developer profile: read, replace-style update, CV sync, account deletion.

Nested collections (skills, experience, education, achievements) are always
replaced wholesale, never merged item by item. Skills are shared rows in
the `skills` table, matched case-insensitively by name.
"""

import asyncio

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.logger import logger
from app.core.storage import StorageError, get_storage
from app.db.tables import (
    CV,
    Achievement,
    ContactInfo,
    Developer,
    DeveloperSkill,
    Education,
    Experience,
    Skill,
)
from app.models import (
    AchievementIn,
    AchievementOut,
    ContactInfoOut,
    CvAnalysisData,
    EducationIn,
    EducationOut,
    ExperienceIn,
    ExperienceOut,
    ProfileResponse,
    ProfileUpdate,
    SkillIn,
    SkillOut,
)
from app.services.experience import is_present, parse_partial_date
from app.services.points import award_xp, points_summary, reset_if_due


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------


def get_profile(db: Session, developer: Developer) -> ProfileResponse:
    if reset_if_due(developer):
        db.commit()

    cv_count = db.scalar(select(func.count()).select_from(CV).where(CV.developer_id == developer.id))
    return ProfileResponse(
        id=developer.id,
        email=developer.email,
        name=developer.name,
        title=developer.title,
        profile_email=developer.profile_email,
        about=developer.about,
        contact_info=ContactInfoOut.model_validate(developer.contact_info) if developer.contact_info else None,
        skills=[
            SkillOut(name=ds.skill.name, category=ds.skill.category, level=ds.level)
            for ds in developer.skills
        ],
        experience=[ExperienceOut.model_validate(e) for e in developer.experience],
        education=[EducationOut.model_validate(e) for e in developer.education],
        achievements=[AchievementOut.model_validate(a) for a in developer.achievements],
        subscription_tier=developer.subscription_tier,
        subscription_status=developer.subscription_status,
        total_xp=developer.total_xp,
        current_level=developer.current_level,
        points=points_summary(developer),
        counts={
            "cvs": cv_count or 0,
            "skills": len(developer.skills),
            "experience": len(developer.experience),
            "education": len(developer.education),
            "achievements": len(developer.achievements),
        },
    )


def is_profile_complete(developer: Developer) -> bool:
    return bool(developer.name and developer.about and developer.skills and developer.experience)


# ---------------------------------------------------------------------------
# Collection replacement (no commit; callers own the transaction)
# ---------------------------------------------------------------------------


def _get_or_create_skill(db: Session, name: str, category: str | None) -> Skill:
    skill = db.scalar(select(Skill).where(func.lower(Skill.name) == name.lower()))
    if skill is None:
        skill = Skill(name=name, category=category)
        db.add(skill)
        db.flush()
    elif category and not skill.category:
        skill.category = category
    return skill


def replace_skills(db: Session, developer: Developer, skills: list[SkillIn]) -> None:
    developer.skills.clear()
    db.flush()

    seen: set[str] = set()
    for item in skills:
        name = item.name.strip()
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        skill = _get_or_create_skill(db, name, item.category)
        developer.skills.append(DeveloperSkill(skill=skill, level=item.level))


def replace_experience(db: Session, developer: Developer, items: list[ExperienceIn]) -> None:
    developer.experience.clear()
    db.flush()
    for item in items:
        current = item.is_current or is_present(item.end_date)
        developer.experience.append(Experience(
            title=item.title,
            company=item.company,
            location=item.location,
            description=item.description,
            responsibilities=list(item.responsibilities),
            start_date=parse_partial_date(item.start_date),
            end_date=None if current else parse_partial_date(item.end_date),
            is_current=current,
        ))


def replace_education(db: Session, developer: Developer, items: list[EducationIn]) -> None:
    developer.education.clear()
    db.flush()
    for item in items:
        developer.education.append(Education(
            institution=item.institution,
            degree=item.degree,
            year=item.year,
            location=item.location,
            start_date=parse_partial_date(item.start_date),
            end_date=parse_partial_date(item.end_date),
        ))


def replace_achievements(db: Session, developer: Developer, items: list[AchievementIn]) -> None:
    developer.achievements.clear()
    db.flush()
    for item in items:
        developer.achievements.append(Achievement(**item.model_dump()))


def _set_contact_info(developer: Developer, values: dict) -> None:
    if developer.contact_info is None:
        developer.contact_info = ContactInfo()
    for field, value in values.items():
        setattr(developer.contact_info, field, value)


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


def update_profile(db: Session, developer: Developer, update: ProfileUpdate) -> None:
    """Apply a partial update in one transaction."""
    was_complete = is_profile_complete(developer)
    try:
        for field in ("name", "title", "profile_email", "about"):
            value = getattr(update, field)
            if value is not None:
                setattr(developer, field, value)
        if update.contact_info is not None:
            _set_contact_info(developer, update.contact_info.model_dump())
        if update.skills is not None:
            replace_skills(db, developer, update.skills)
        if update.experience is not None:
            replace_experience(db, developer, update.experience)
        if update.education is not None:
            replace_education(db, developer, update.education)
        if update.achievements is not None:
            replace_achievements(db, developer, update.achievements)

        if not was_complete and is_profile_complete(developer):
            award_xp(developer, "PROFILE_COMPLETED")
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Profile updated for {developer.id}")


def apply_analysis_to_profile(db: Session, developer: Developer, data: CvAnalysisData) -> None:
    """Copy analyzed CV content onto the profile. Does not commit."""
    contact = data.contact_info
    if contact.name:
        developer.name = contact.name
    if contact.email:
        developer.profile_email = contact.email
    if data.about:
        developer.about = data.about
    _set_contact_info(developer, {
        "phone": contact.phone,
        "address": contact.location,
        "linkedin": contact.linkedin,
        "github": contact.github,
        "website": contact.website,
    })

    replace_skills(db, developer, [
        SkillIn(name=s.name.strip()[:100], category=s.category, level=s.level)
        for s in data.skills if s.name and s.name.strip()
    ])
    replace_experience(db, developer, [
        ExperienceIn(
            title=e.title, company=e.company, location=e.location, description=e.description,
            responsibilities=e.responsibilities, start_date=e.start_date, end_date=e.end_date,
        )
        for e in data.experience if e.title and e.company
    ])
    replace_education(db, developer, [
        EducationIn(
            institution=e.institution, degree=e.degree, year=e.year, location=e.location,
            start_date=e.start_date, end_date=e.end_date,
        )
        for e in data.education if e.institution
    ])
    replace_achievements(db, developer, [
        AchievementIn(**a.model_dump()) for a in data.achievements if a.title
    ])
    logger.info(
        f"Profile synced from CV for {developer.id}: skills={len(developer.skills)}, "
        f"experience={len(developer.experience)}"
    )


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


async def delete_account(db: Session, developer: Developer) -> None:
    """Remove stored CV files, then the developer row (children cascade)."""
    storage = get_storage()
    for cv in developer.cvs:
        try:
            await asyncio.to_thread(storage.delete, cv.storage_key)
        except StorageError as e:
            logger.warning(f"Could not delete stored CV {cv.storage_key}: {e}")

    db.delete(developer)
    db.commit()
    logger.info(f"Deleted account {developer.id}")
