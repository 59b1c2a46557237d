"""Cover letter and outreach message generation.

Fetches prompts from Langfuse ("techrec-cover-letter", "techrec-outreach")
at runtime, with embedded fallbacks.

Generated text is validated before the developer is charged: a letter with
leftover markdown, placeholders or no greeting is rejected (502) and costs
nothing. Successful letters are cached for 10 minutes; a cache hit is free.
"""

import re
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.core.cache import get_cache, set_cache
from app.core.constants import (
    DESCRIPTION_TRUNCATE_LENGTH,
    LETTER_CACHE_TTL,
    LETTER_MAX_TOKENS,
    WORD_BOUNDS,
)
from app.core.langfuse_client import load_prompt, observe, tag_trace
from app.core.llm import get_llm_client
from app.core.logger import logger
from app.db.tables import Developer, SkillLevel
from app.models import LetterRequest, LetterResponse, RoleInfo
from app.services.points import PointsError, award_xp, can_afford, spend_points
from app.services.skill_matcher import extract_tech_terms

# request type → (prompt name, spend type, XP reason)
LETTER_TYPES = {
    "coverLetter": ("techrec-cover-letter", "COVER_LETTER", "COVER_LETTER_GENERATED"),
    "outreach": ("techrec-outreach", "OUTREACH_MESSAGE", "OUTREACH_SENT"),
}

_PLACEHOLDERS = ("[company]", "[role]", "[name]")
_PLACEHOLDER_WORDS = ("xyz", "abc")
_INFORMAL_WORDS = ("awesome", "cool", "amazing", "super excited")
_CLOSING_RE = re.compile(r"\b(sincerely|best regards|regards|thank you)\b", re.IGNORECASE)
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

_LEVEL_RANK = {
    SkillLevel.EXPERT: 0,
    SkillLevel.ADVANCED: 1,
    SkillLevel.INTERMEDIATE: 2,
    SkillLevel.BEGINNER: 3,
}


class LetterValidationError(Exception):
    """Raised when the LLM produced no usable letter."""

    def __init__(self, status_code: int, detail: str, errors: list[str] | None = None):
        self.status_code = status_code
        self.detail = detail
        self.errors = errors or []
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


@dataclass
class LetterCheck:
    valid: bool
    errors: list[str]
    warnings: list[str]
    word_count: int


def count_words(text: str) -> int:
    return len(text.split())


def validate_letter_output(text: str, request_type: str = "coverLetter") -> LetterCheck:
    """Structural checks on a generated letter.

    Errors (no greeting, markdown, placeholders) make the letter unusable.
    Warnings, including word count outside the target range, are reported
    back to the client alongside the letter.
    """
    if not text or not text.strip():
        return LetterCheck(valid=False, errors=["Letter content is empty"], warnings=[], word_count=0)

    errors: list[str] = []
    warnings: list[str] = []
    letter = text.strip()
    lowered = letter.lower()
    word_count = count_words(letter)

    if "dear " not in lowered:
        errors.append("Letter must include a proper greeting (Dear ...)")
    if "*" in letter or "###" in letter:
        errors.append("Letter contains markdown formatting that should be removed")
    for placeholder in _PLACEHOLDERS:
        if placeholder in lowered:
            errors.append(f"Letter contains placeholder text: {placeholder}")
    for placeholder in _PLACEHOLDER_WORDS:
        if re.search(rf"\b{placeholder}\b", lowered):
            errors.append(f"Letter contains placeholder text: {placeholder}")

    if not _CLOSING_RE.search(letter):
        warnings.append("Letter should include a professional closing")
    sentences = [s for s in re.split(r"[.!?]+", letter) if s.strip()]
    if len(sentences) < 3:
        warnings.append("Letter may be too simple (less than 3 sentences)")
    for word in _INFORMAL_WORDS:
        if word in lowered:
            warnings.append(f'Consider replacing informal word: "{word}"')
    if not any(term in lowered for term in ("position", "role", "opportunity")):
        warnings.append("Letter should reference the specific position or role")

    min_words, max_words = WORD_BOUNDS.get(request_type, WORD_BOUNDS["coverLetter"])
    if word_count < min_words:
        warnings.append(f"Letter is short ({word_count} words, target {min_words}-{max_words})")
    elif word_count > max_words:
        warnings.append(f"Letter is long ({word_count} words, target {min_words}-{max_words})")

    return LetterCheck(valid=not errors, errors=errors, warnings=warnings, word_count=word_count)


def sanitize_input(text: str | None) -> str:
    """Drop control characters and collapse whitespace."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", _CONTROL_CHARS_RE.sub("", text)).strip()


def enforce_word_count(text: str, max_words: int) -> str:
    """Trim to max_words, ending on a sentence when that keeps 70% of the text."""
    if not text:
        return ""
    words = text.split()
    if len(words) <= max_words:
        return text

    truncated = " ".join(words[:max_words])
    last_end = max(truncated.rfind("."), truncated.rfind("!"), truncated.rfind("?"))
    if last_end > len(truncated) * 0.7:
        return truncated[: last_end + 1]
    return truncated + "..."


# ---------------------------------------------------------------------------
# Prompt inputs
# ---------------------------------------------------------------------------


def pick_core_skills(developer: Developer, limit: int = 8) -> list[str]:
    """Strongest skills first; ties keep profile order."""
    ranked = sorted(developer.skills, key=lambda ds: _LEVEL_RANK.get(ds.level, 2))
    return [ds.skill.name for ds in ranked[:limit]]


def rank_role_keywords(role_info: RoleInfo, limit: int = 8) -> list[str]:
    """AI key skills, then listed skills and requirements, then description terms."""
    candidates = [
        *role_info.ai_key_skills,
        *role_info.skills,
        *role_info.requirements,
        *extract_tech_terms(role_info.description or ""),
    ]
    seen: set[str] = set()
    keywords: list[str] = []
    for item in candidates:
        item = sanitize_input(item)
        if item and item.lower() not in seen:
            seen.add(item.lower())
            keywords.append(item)
    return keywords[:limit]


def derive_achievements(developer: Developer, provided: list[str], limit: int = 3) -> list[str]:
    """Use the achievements sent with the request, else fall back to the profile."""
    achievements = [sanitize_input(a) for a in provided if sanitize_input(a)]
    if not achievements:
        for item in developer.achievements:
            text = item.title if not item.description else f"{item.title}: {item.description}"
            achievements.append(sanitize_input(text))
    if not achievements:
        for exp in developer.experience:
            achievements.extend(sanitize_input(r) for r in exp.responsibilities or [] if r)
    return achievements[:limit]


def build_cache_key(developer_id: str, request: LetterRequest, request_type: str) -> str:
    parts = [
        "cover-letter",
        developer_id,
        request.role_info.title,
        request.company_info.name,
        request_type,
        request.tone,
        request.hiring_manager or "none",
        request.job_source or "none",
    ]
    return re.sub(r"[^a-zA-Z0-9:-]", "_", ":".join(parts))


def _template_vars(developer: Developer, request: LetterRequest, request_type: str) -> dict:
    min_words, max_words = WORD_BOUNDS[request_type]
    company = request.company_info
    phone = developer.contact_info.phone if developer.contact_info else None
    achievements = derive_achievements(developer, request.achievements)
    return {
        "name": developer.name or "Applicant",
        "email": developer.profile_email or developer.email,
        "phone": phone or "N/A",
        "company_name": sanitize_input(company.name),
        "company_location": sanitize_input(company.location) or "N/A",
        "company_fact": sanitize_input(company.attraction_points[0]) if company.attraction_points else "",
        "role_title": sanitize_input(request.role_info.title),
        "role_description": sanitize_input(request.role_info.description)[:DESCRIPTION_TRUNCATE_LENGTH],
        "keywords": ", ".join(rank_role_keywords(request.role_info)),
        "professional_title": developer.title or "Software Developer",
        "core_skills": ", ".join(pick_core_skills(developer)),
        "achievements": "\n".join(f"- {a}" for a in achievements) or "- (none listed)",
        "min_words": min_words,
        "max_words": max_words,
        "tone": request.tone,
        "hiring_manager": sanitize_input(request.hiring_manager) or "Hiring Team",
        "job_source": sanitize_input(request.job_source) or "LinkedIn",
    }


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


@observe(name="techrec-write-letter")
async def generate_letter(
    db: Session,
    developer: Developer,
    request: LetterRequest,
    request_type: str = "coverLetter",
) -> LetterResponse:
    """Generate a cover letter or outreach message for a role.

    Raises:
        PointsError: 402 when the developer cannot afford the letter.
        LetterValidationError: 502 when the LLM fails or the letter is unusable.
    """
    prompt_name, spend_type, xp_reason = LETTER_TYPES[request_type]

    cache_key = build_cache_key(developer.id, request, request_type)
    cached = await get_cache(cache_key)
    if cached:
        logger.info(f"Letter cache HIT ({cache_key})")
        check = validate_letter_output(cached["letter"], request_type)
        return LetterResponse(
            letter=cached["letter"],
            provider=cached.get("provider"),
            cached=True,
            word_count=check.word_count,
            warnings=check.warnings,
        )

    affordable, cost = can_afford(developer, spend_type)
    if not affordable:
        raise PointsError(402, f"Insufficient points: need {cost}")

    tag_trace(request_type, developer.id, role_id=request.role_id, tone=request.tone)
    system_prompt, user_prompt, config = load_prompt(
        prompt_name, _template_vars(developer, request, request_type)
    )
    llm = await get_llm_client()
    text = await llm.call(
        prompt=user_prompt,
        system_prompt=system_prompt,
        temperature=config.get("temperature", 0.5),
        max_tokens=config.get("max_tokens", LETTER_MAX_TOKENS[request_type]),
        name=request_type,
    )
    if not text or not text.strip():
        raise LetterValidationError(502, "Letter generation failed — no response from the LLM")

    letter = text.strip()
    check = validate_letter_output(letter, request_type)
    if not check.valid:
        logger.warning(f"Generated {request_type} failed validation: {check.errors}")
        raise LetterValidationError(
            502, f"Generated letter failed validation: {', '.join(check.errors)}", check.errors
        )

    spent = spend_points(
        db, developer, spend_type,
        source_id=request.role_id,
        details={"company": request.company_info.name, "role": request.role_info.title},
    )
    award_xp(developer, xp_reason)
    db.commit()

    await set_cache(cache_key, {"letter": letter, "provider": llm.last_provider}, LETTER_CACHE_TTL)
    logger.info(
        f"Generated {request_type} for {developer.id} ({check.word_count} words, "
        f"provider={llm.last_provider})"
    )
    return LetterResponse(
        letter=letter,
        provider=llm.last_provider,
        cached=False,
        word_count=check.word_count,
        warnings=check.warnings,
        points_spent=spent,
    )
