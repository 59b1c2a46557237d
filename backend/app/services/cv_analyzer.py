"""LLM extraction of structured data from CV text.

Fetches prompt from Langfuse ("techrec-cv-analyze") at runtime, with the
embedded fallback when Langfuse is unavailable.

Besides the LLM call this module owns two deterministic helpers used by the
upload pipeline: collect_warnings (soft validation of emails, URLs and
dates, reported but never blocking) and calculate_improvement_score.
"""

import hashlib
import re
from urllib.parse import urlparse

from pydantic import ValidationError

from app.core.llm import get_llm_client
from app.core.langfuse_client import load_prompt, observe, tag_trace
from app.core.constants import CV_TRUNCATE_LENGTH
from app.core.logger import logger
from app.models import CvAnalysisData, ValidationWarning

# In-memory cache: SHA-256(cv_text) → CvAnalysisData
# Re-analysing an unchanged CV (or re-uploading the same file) skips the LLM call.
_analysis_cache: dict[str, CvAnalysisData] = {}
_MAX_CACHE = 50

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_DATE_RE = re.compile(r"^\d{4}(-\d{2}(-\d{2})?)?$")


def _text_hash(text: str) -> str:
    return hashlib.sha256(text.encode()).hexdigest()


@observe(name="techrec-cv-analyze")
async def analyze_cv_text(cv_text: str, use_cache: bool = True) -> CvAnalysisData | None:
    """Extract contact info, skills, experience, education and achievements.

    Args:
        cv_text: Plain text extracted from the uploaded file.
        use_cache: False forces a fresh LLM call (explicit re-analysis).

    Returns:
        CvAnalysisData, or None if the LLM call fails or returns unusable data.

    Raises:
        ValueError: if cv_text is empty.
    """
    if not cv_text or not cv_text.strip():
        raise ValueError("CV text is empty")

    content_hash = _text_hash(cv_text)
    if use_cache and content_hash in _analysis_cache:
        logger.info(f"CV analysis cache HIT (hash={content_hash[:8]}...)")
        return _analysis_cache[content_hash]

    truncated = cv_text[:CV_TRUNCATE_LENGTH]
    if len(cv_text) > CV_TRUNCATE_LENGTH:
        logger.info(f"CV text truncated from {len(cv_text)} to {CV_TRUNCATE_LENGTH} chars")

    tag_trace("cv_analysis", chars=len(truncated))
    system_prompt, user_prompt, config = load_prompt("techrec-cv-analyze", {"cv_text": truncated})

    llm = await get_llm_client()
    result = await llm.call_json(
        prompt=user_prompt,
        system_prompt=system_prompt,
        temperature=config.get("temperature", 0.1),
        max_tokens=config.get("max_tokens", 8000),
        name="cv-analysis",
    )

    if not result:
        logger.warning("CV analysis returned no result")
        return None

    try:
        analysis = CvAnalysisData.model_validate(result)
    except ValidationError as e:
        logger.warning(f"Failed to parse CV analysis: {e}")
        return None

    logger.info(
        f"CV analyzed: skills={len(analysis.skills)}, experience={len(analysis.experience)}, "
        f"education={len(analysis.education)}, name='{analysis.contact_info.name or ''}'"
    )
    if len(_analysis_cache) >= _MAX_CACHE:
        oldest_key = next(iter(_analysis_cache))
        del _analysis_cache[oldest_key]
    _analysis_cache[content_hash] = analysis
    return analysis


def _is_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _is_date(value: str) -> bool:
    return value.strip().lower() == "present" or bool(_DATE_RE.match(value.strip()))


def collect_warnings(data: CvAnalysisData) -> list[ValidationWarning]:
    """Soft-validate fields the LLM tends to get wrong."""
    warnings: list[ValidationWarning] = []

    def check(path: str, value: str | None, valid, message: str) -> None:
        if value and not valid(value):
            warnings.append(ValidationWarning(path=path, message=message, original_value=value))

    contact = data.contact_info
    check("contact_info.email", contact.email, _EMAIL_RE.match, "Invalid email format")
    for field in ("linkedin", "github", "website"):
        check(f"contact_info.{field}", getattr(contact, field), _is_url, "Invalid URL format")

    for i, item in enumerate(data.experience):
        check(f"experience[{i}].start_date", item.start_date, _is_date, "Invalid date format")
        check(f"experience[{i}].end_date", item.end_date, _is_date, "Invalid date format")
    for i, item in enumerate(data.education):
        check(f"education[{i}].start_date", item.start_date, _is_date, "Invalid date format")
        check(f"education[{i}].end_date", item.end_date, _is_date, "Invalid date format")
    for i, item in enumerate(data.achievements):
        check(f"achievements[{i}].date", item.date, _is_date, "Invalid date format")
        check(f"achievements[{i}].url", item.url, _is_url, "Invalid URL format")

    return warnings


def calculate_improvement_score(data: CvAnalysisData) -> int:
    """Completeness score 0-100 for an analyzed CV."""
    score = 0
    if data.contact_info.name:
        score += 10
    if data.contact_info.email:
        score += 5
    if data.about and len(data.about) > 50:
        score += 15
    score += len(data.skills) * 2
    score += len(data.experience) * 5
    score += len(data.education) * 3
    score += len(data.achievements) * 2
    return max(0, min(100, score))
