"""LLM-generated improvement suggestions for an analyzed CV.

Fetches prompt from Langfuse ("techrec-cv-suggestions") at runtime.
Results are cached in Redis for an hour, keyed by analysis id and a hash of
the analysis content, so re-requesting suggestions for an unchanged CV is free.
"""

import hashlib
import json
from typing import get_args

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.cache import get_cache, set_cache
from app.core.constants import SUGGESTION_CACHE_TTL
from app.core.langfuse_client import load_prompt, observe, tag_trace
from app.core.llm import get_llm_client
from app.core.logger import logger
from app.db.tables import CvAnalysis, Developer
from app.models import Suggestion, SuggestionsResponse, SuggestionSummary
from app.services.cv_pipeline import AnalysisError
from app.services.points import PointsError, can_afford, spend_points

_TYPES = set(get_args(Suggestion.model_fields["type"].annotation))
_PRIORITIES = {"high", "medium", "low"}


def _cache_key(analysis: CvAnalysis) -> str:
    content = json.dumps(analysis.analysis_result, sort_keys=True, default=str)
    return f"cv-suggestions:{analysis.id}:{hashlib.sha256(content.encode()).hexdigest()[:16]}"


def _coerce(item: dict, index: int) -> Suggestion | None:
    if not isinstance(item, dict):
        return None
    data = dict(item)
    data["id"] = str(data.get("id") or f"sugg-{index + 1}")
    if data.get("type") not in _TYPES:
        data["type"] = "general_improvement"
    priority = str(data.get("priority") or "medium").lower()
    data["priority"] = priority if priority in _PRIORITIES else "medium"
    try:
        data["confidence"] = min(1.0, max(0.0, float(data.get("confidence", 0.8))))
    except (TypeError, ValueError):
        data["confidence"] = 0.8
    try:
        return Suggestion.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Dropping malformed suggestion #{index}: {e}")
        return None


def summarize(suggestions: list[Suggestion]) -> SuggestionSummary:
    categories: dict[str, int] = {}
    for s in suggestions:
        categories[s.type] = categories.get(s.type, 0) + 1
    return SuggestionSummary(
        total=len(suggestions),
        high_priority=sum(1 for s in suggestions if s.priority == "high"),
        categories=categories,
    )


@observe(name="techrec-cv-suggestions")
async def generate_suggestions(
    db: Session, developer: Developer, analysis: CvAnalysis
) -> SuggestionsResponse:
    """Suggestions for an analysis, from cache when the content is unchanged.

    Raises:
        PointsError: 402 when a fresh generation cannot be afforded.
        AnalysisError: 502 when the LLM returns nothing usable.
    """
    key = _cache_key(analysis)
    cached = await get_cache(key)
    if cached is not None:
        logger.info(f"CV suggestions cache HIT for analysis {analysis.id}")
        suggestions = [Suggestion.model_validate(s) for s in cached]
        return SuggestionsResponse(suggestions=suggestions, summary=summarize(suggestions), from_cache=True)

    affordable, cost = can_afford(developer, "CV_SUGGESTION")
    if not affordable:
        raise PointsError(402, f"Insufficient points: need {cost}")

    tag_trace("cv_suggestions", developer.id, analysis_id=analysis.id)
    system_prompt, user_prompt, config = load_prompt(
        "techrec-cv-suggestions",
        {"cv_json": json.dumps(analysis.analysis_result, indent=2, default=str)},
    )
    llm = await get_llm_client()
    result = await llm.call_json(
        prompt=user_prompt,
        system_prompt=system_prompt,
        temperature=config.get("temperature", 0.5),
        max_tokens=config.get("max_tokens", 4000),
        name="cv-suggestions",
    )
    raw = (result or {}).get("suggestions")
    if not isinstance(raw, list):
        logger.warning(f"CV suggestions returned no usable list for analysis {analysis.id}")
        raise AnalysisError(502, "Failed to generate suggestions")

    suggestions = [s for s in (_coerce(item, i) for i, item in enumerate(raw)) if s is not None]
    spent = spend_points(db, developer, "CV_SUGGESTION", source_id=analysis.id)

    await set_cache(key, [s.model_dump() for s in suggestions], SUGGESTION_CACHE_TTL)
    logger.info(f"Generated {len(suggestions)} CV suggestions for analysis {analysis.id}")
    return SuggestionsResponse(
        suggestions=suggestions, summary=summarize(suggestions), points_spent=spent,
    )
