"""Role search over the RapidAPI LinkedIn jobs API (7-day endpoint).

Pipeline for a search:
  1. validate_search_params — reject what the API would reject, warn about
     filters known to time out or over-filter
  2. search_cache — identical parameter sets are served from memory for 1h
  3. usage_tracker — refuse requests the remaining API credits cannot cover
  4. fetch — live API, or bundled sample jobs when no RapidAPI key is set
  5. map_job_to_role — RapidAPI job dict → Role
"""

import copy
import hashlib
import json
import re
import time
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from app.config import load_settings
from app.core.constants import (
    DEFAULT_SEARCH_LIMIT,
    MAX_DESCRIPTION_FILTER_LENGTH,
    MAX_LOCATION_FILTER_LENGTH,
    MAX_SEARCH_LIMIT,
    MAX_TITLE_FILTER_LENGTH,
    RAPIDAPI_JOBS_PATH,
    SEARCH_CACHE_EVICT_FRACTION,
    SEARCH_CACHE_MAX_ENTRIES,
    SEARCH_CACHE_TTL,
    SEARCH_TIMEOUT,
    USAGE_CRITICAL_PERCENT,
    USAGE_LOW_PERCENT,
    VALID_EMPLOYMENT_TYPES,
    VALID_SENIORITY_LEVELS,
)
from app.core.logger import logger
from app.models import Role, RoleCompany, UsageInfo

SAMPLE_JOBS_PATH = Path(__file__).resolve().parent.parent / "data" / "sample_jobs.json"

# Simulated usage headers served in development mode
DEV_USAGE_HEADERS = {
    "x-ratelimit-jobs-limit": "10000",
    "x-ratelimit-jobs-remaining": "9950",
    "x-ratelimit-requests-limit": "1000",
    "x-ratelimit-requests-remaining": "985",
    "x-ratelimit-jobs-reset": "86400",
}

# Request parameters forwarded to the upstream API
SEARCH_PARAMS = (
    "limit", "offset", "title_filter", "advanced_title_filter", "location_filter",
    "type_filter", "seniority_filter", "description_filter", "remote", "agency",
    "date_filter", "directapply", "include_ai", "description_type",
)

_TITLE_ABBREVIATIONS = ("JS", "TS", "AI", "ML", "API", "UI", "UX")
_LOCATION_WARN_ABBREVIATIONS = ("USA", "NY", "CA", "TX", "FL")
_SLOW_DESCRIPTION_PHRASES = ("health safety", "remote work", "team player")


class SearchError(Exception):
    """Raised when a search cannot be served."""

    def __init__(self, status_code: int, detail: str, warnings: list[str] | None = None):
        self.status_code = status_code
        self.detail = detail
        self.warnings = warnings or []
        super().__init__(detail)


# ---------------------------------------------------------------------------
# Parameter validation
# ---------------------------------------------------------------------------


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str]
    warnings: list[str]
    normalized: dict


def _has_word(value: str, word: str) -> bool:
    return re.search(rf"\b{re.escape(word)}\b", value) is not None


def _check_title(value: str, errors: list[str], warnings: list[str]) -> None:
    if len(value) > MAX_TITLE_FILTER_LENGTH:
        errors.append(f"Title filter exceeds maximum length of {MAX_TITLE_FILTER_LENGTH} characters")
    if value.count('"') % 2:
        errors.append("Unbalanced quotes in title filter - ensure all quotes are properly closed")
    if _has_word(value, "AND") and _has_word(value, "OR") and "(" not in value:
        warnings.append("Complex boolean expressions should use parentheses for clarity")
    for abbr in _TITLE_ABBREVIATIONS:
        if _has_word(value, abbr) and f'"{abbr}"' not in value:
            warnings.append(f'Consider quoting abbreviation "{abbr}" for exact matching')


def _check_location(value: str, errors: list[str], warnings: list[str]) -> None:
    if len(value) > MAX_LOCATION_FILTER_LENGTH:
        errors.append(f"Location filter exceeds maximum length of {MAX_LOCATION_FILTER_LENGTH} characters")
    if _has_word(value, "US"):
        errors.append('Use "United States" instead of "US" abbreviation')
    if _has_word(value, "UK"):
        errors.append('Use "United Kingdom" instead of "UK" abbreviation')
    for abbr in _LOCATION_WARN_ABBREVIATIONS:
        if _has_word(value, abbr):
            warnings.append(f'Consider using full location name instead of "{abbr}" abbreviation')
    if _has_word(value, "OR") and '"' not in value:
        warnings.append("When using OR with locations, consider quoting location names")


def _check_list(
    value: str, allowed: tuple[str, ...], label: str, errors: list[str]
) -> None:
    for item in (v.strip() for v in value.split(",")):
        if item not in allowed:
            errors.append(f'Invalid {label}: "{item}". Allowed values: {", ".join(allowed)}')
    if ", " in value:
        errors.append(f"{label.capitalize()} values must be comma-delimited without spaces")


def _check_description(value: str, limit: int, errors: list[str], warnings: list[str]) -> None:
    if len(value) > MAX_DESCRIPTION_FILTER_LENGTH:
        errors.append(
            f"Description filter exceeds maximum length of {MAX_DESCRIPTION_FILTER_LENGTH} characters"
        )
    for phrase in _SLOW_DESCRIPTION_PHRASES:
        if f'"{phrase}"' in value:
            warnings.append(f'Quoted phrase "{phrase}" might cause timeouts - consider unquoted search')
    if limit > DEFAULT_SEARCH_LIMIT:
        warnings.append(f"Description filter with limit > {DEFAULT_SEARCH_LIMIT} may cause timeouts")


def validate_search_params(params: dict) -> ValidationResult:
    """Check search parameters against the upstream API's documented rules.

    Empty values are dropped and string values stripped before checking.
    Errors make the request invalid; warnings are passed back to the client.
    """
    normalized = {
        key: value.strip() if isinstance(value, str) else value
        for key, value in params.items()
        if value is not None and not (isinstance(value, str) and not value.strip())
    }
    normalized.setdefault("limit", DEFAULT_SEARCH_LIMIT)
    normalized.setdefault("offset", 0)

    errors: list[str] = []
    warnings: list[str] = []

    limit = normalized["limit"]
    offset = normalized["offset"]
    if not isinstance(limit, int) or not 1 <= limit <= MAX_SEARCH_LIMIT:
        errors.append(f"Limit must be between 1 and {MAX_SEARCH_LIMIT}")
        limit = DEFAULT_SEARCH_LIMIT
    if not isinstance(offset, int) or offset < 0:
        errors.append("Offset must be zero or a positive integer")
    elif offset % 10:
        warnings.append("Offset should be a multiple of 10 to line up with result pages")

    if "title_filter" in normalized and "advanced_title_filter" in normalized:
        errors.append("Cannot use both title_filter and advanced_title_filter in the same request")
    if "title_filter" in normalized:
        _check_title(normalized["title_filter"], errors, warnings)
    if "location_filter" in normalized:
        _check_location(normalized["location_filter"], errors, warnings)
    if "type_filter" in normalized:
        _check_list(normalized["type_filter"], VALID_EMPLOYMENT_TYPES, "job type", errors)
    if "seniority_filter" in normalized:
        _check_list(normalized["seniority_filter"], VALID_SENIORITY_LEVELS, "seniority level", errors)
        if "Not Applicable" in normalized["seniority_filter"]:
            warnings.append('Using "Not Applicable" may miss relevant jobs - consider omitting this filter')
    if "description_filter" in normalized:
        _check_description(normalized["description_filter"], limit, errors, warnings)

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings, normalized=normalized)


# ---------------------------------------------------------------------------
# Response cache
# ---------------------------------------------------------------------------


def params_hash(params: dict) -> str:
    """SHA-256 of the parameters with keys sorted."""
    return hashlib.sha256(json.dumps(params, sort_keys=True, default=str).encode()).hexdigest()


class SearchCache:
    """In-memory cache of raw upstream responses keyed by parameter hash."""

    def __init__(
        self,
        ttl: int = SEARCH_CACHE_TTL,
        max_entries: int = SEARCH_CACHE_MAX_ENTRIES,
    ):
        self.ttl = ttl
        self.max_entries = max_entries
        self._entries: dict[str, tuple[float, list[dict]]] = {}

    def get(self, params: dict) -> list[dict] | None:
        key = params_hash(params)
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, jobs = entry
        if time.time() - stored_at > self.ttl:
            del self._entries[key]
            return None
        return copy.deepcopy(jobs)

    def put(self, params: dict, jobs: list[dict]) -> None:
        if len(self._entries) >= self.max_entries:
            self._evict()
        self._entries[params_hash(params)] = (time.time(), copy.deepcopy(jobs))

    def _evict(self) -> None:
        count = max(1, int(self.max_entries * SEARCH_CACHE_EVICT_FRACTION))
        oldest = sorted(self._entries, key=lambda k: self._entries[k][0])[:count]
        for key in oldest:
            del self._entries[key]
        logger.info(f"Search cache full — evicted {len(oldest)} oldest entries")

    def stats(self) -> dict:
        now = time.time()
        return {
            "size": len(self._entries),
            "max_size": self.max_entries,
            "entries": [
                {"hash": key[:8], "age_minutes": round((now - stored_at) / 60)}
                for key, (stored_at, _) in self._entries.items()
            ],
        }

    def clear(self) -> None:
        self._entries.clear()


# ---------------------------------------------------------------------------
# API usage tracking
# ---------------------------------------------------------------------------


def parse_usage_headers(headers) -> dict | None:
    """Read x-ratelimit-* headers. Returns None unless all four counters are present."""
    try:
        usage = {
            "jobs_limit": int(headers["x-ratelimit-jobs-limit"]),
            "jobs_remaining": int(headers["x-ratelimit-jobs-remaining"]),
            "requests_limit": int(headers["x-ratelimit-requests-limit"]),
            "requests_remaining": int(headers["x-ratelimit-requests-remaining"]),
        }
    except (KeyError, TypeError, ValueError):
        return None
    try:
        usage["jobs_reset_seconds"] = int(headers.get("x-ratelimit-jobs-reset") or 0)
    except ValueError:
        usage["jobs_reset_seconds"] = 0
    return usage


def credit_consumption(params: dict) -> dict:
    limit = params.get("limit") or DEFAULT_SEARCH_LIMIT
    return {"jobs": min(limit, MAX_SEARCH_LIMIT), "requests": 1}


class UsageTracker:
    def __init__(self):
        self.current: dict | None = None

    def update(self, headers) -> None:
        usage = parse_usage_headers(headers)
        if usage is None:
            return
        self.current = usage
        logger.info(
            f"RapidAPI usage: jobs_remaining={usage['jobs_remaining']}, "
            f"requests_remaining={usage['requests_remaining']}, "
            f"reset_in={round(usage['jobs_reset_seconds'] / 3600)}h"
        )

    def check(self, params: dict) -> str | None:
        """Return a refusal reason when remaining credits cannot cover the request."""
        if self.current is None:
            return None
        need = credit_consumption(params)
        if self.current["jobs_remaining"] < need["jobs"]:
            return f"Insufficient job credits. Need {need['jobs']}, have {self.current['jobs_remaining']}"
        if self.current["requests_remaining"] < need["requests"]:
            return (
                f"Insufficient request credits. Need {need['requests']}, "
                f"have {self.current['requests_remaining']}"
            )
        return None

    def warning_level(self) -> str:
        if self.current is None:
            return "ok"
        jobs_pct = self.current["jobs_remaining"] / max(self.current["jobs_limit"], 1) * 100
        requests_pct = self.current["requests_remaining"] / max(self.current["requests_limit"], 1) * 100
        lowest = min(jobs_pct, requests_pct)
        if lowest < USAGE_CRITICAL_PERCENT:
            return "critical"
        if lowest < USAGE_LOW_PERCENT:
            return "low"
        return "ok"

    def info(self) -> UsageInfo:
        return UsageInfo(**(self.current or {}), warning_level=self.warning_level())

    def clear(self) -> None:
        self.current = None


search_cache = SearchCache()
usage_tracker = UsageTracker()


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------


def api_mode() -> str:
    return "PRODUCTION" if load_settings().rapidapi_key else "DEVELOPMENT"


def _load_sample_jobs() -> list[dict]:
    with open(SAMPLE_JOBS_PATH, encoding="utf-8") as f:
        return json.load(f)


async def _fetch_live(params: dict) -> tuple[list[dict], httpx.Headers]:
    settings = load_settings()
    url = f"https://{settings.rapidapi_host}{RAPIDAPI_JOBS_PATH}"
    headers = {
        "x-rapidapi-key": settings.rapidapi_key,
        "x-rapidapi-host": settings.rapidapi_host,
    }
    query = {k: str(v) for k, v in params.items() if k in SEARCH_PARAMS}

    try:
        async with httpx.AsyncClient(timeout=SEARCH_TIMEOUT) as client:
            response = await client.get(url, params=query, headers=headers)
            response.raise_for_status()
    except httpx.TimeoutException:
        logger.error(f"RapidAPI search timed out after {SEARCH_TIMEOUT}s")
        raise SearchError(504, "Job search timed out — try narrower filters")
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        logger.error(f"RapidAPI search failed: HTTP {status}")
        if status == 429:
            raise SearchError(429, "Job search API rate limit reached")
        raise SearchError(502, f"Job search API error (HTTP {status})")
    except httpx.HTTPError as e:
        logger.error(f"RapidAPI search request failed: {e}")
        raise SearchError(502, "Job search API is unreachable")

    try:
        body = response.json()
    except ValueError:
        raise SearchError(502, "Job search API returned invalid JSON")
    jobs = body if isinstance(body, list) else body.get("jobs", []) if isinstance(body, dict) else []
    return jobs, response.headers


async def fetch_jobs(params: dict) -> tuple[list[dict], bool]:
    """Run a validated search. Returns (raw jobs, served_from_cache).

    Raises:
        SearchError: 429 when API credits are exhausted, 5xx on upstream failure.
    """
    cached = search_cache.get(params)
    if cached is not None:
        logger.info(f"Search cache HIT ({len(cached)} jobs)")
        return cached, True

    refusal = usage_tracker.check(params)
    if refusal:
        logger.warning(f"Search blocked by API usage limits: {refusal}")
        raise SearchError(429, refusal)

    if api_mode() == "DEVELOPMENT":
        jobs = _load_sample_jobs()
        headers = DEV_USAGE_HEADERS
        logger.info(f"Search served from sample jobs ({len(jobs)} jobs, development mode)")
    else:
        jobs, headers = await _fetch_live(params)
        logger.info(f"Search returned {len(jobs)} jobs from RapidAPI")

    usage_tracker.update(headers)
    search_cache.put(params, jobs)
    return jobs, False


# ---------------------------------------------------------------------------
# RapidAPI job → Role
# ---------------------------------------------------------------------------


def _first(values) -> str | None:
    if isinstance(values, list) and values and isinstance(values[0], str) and values[0].strip():
        return values[0].strip()
    return None


def _money(value) -> str:
    return f"{value:,.0f}" if isinstance(value, (int, float)) else str(value)


def format_salary(job: dict) -> str:
    raw = (job.get("salary_raw") or {}).get("value") or {}
    min_value, max_value = raw.get("minValue"), raw.get("maxValue")
    unit = (raw.get("unitText") or "year").lower()
    currency = (job.get("salary_raw") or {}).get("currency") or "$"
    if currency == "USD":
        currency = "$"
    if min_value and max_value:
        return f"{currency}{_money(min_value)} - {currency}{_money(max_value)} / {unit}"
    if min_value:
        return f"From {currency}{_money(min_value)} / {unit}"
    if max_value:
        return f"Up to {currency}{_money(max_value)} / {unit}"

    currency = job.get("ai_salary_currency") or "$"
    if currency == "USD":
        currency = "$"
    unit = (job.get("ai_salary_unittext") or "year").lower()
    if job.get("ai_salary_minvalue") and job.get("ai_salary_maxvalue"):
        return (
            f"{currency}{_money(job['ai_salary_minvalue'])} - "
            f"{currency}{_money(job['ai_salary_maxvalue'])} / {unit}"
        )
    if job.get("ai_salary_value"):
        return f"{currency}{_money(job['ai_salary_value'])} / {unit}"
    return "Not Specified"


def _location(job: dict) -> str:
    primary = _first(job.get("locations_derived"))
    if primary:
        return primary
    parts = [
        _first(job.get(key))
        for key in ("cities_derived", "regions_derived", "countries_derived")
    ]
    parts = [p for p in parts if p]
    return ", ".join(parts) if parts else "Location Not Specified"


def _employment_type(job: dict) -> str:
    value = _first(job.get("employment_type"))
    if not value:
        return "Unknown Type"
    return " ".join(word.capitalize() for word in re.split(r"[_\s-]+", value) if word)


def _company(job: dict) -> RoleCompany:
    name = job.get("organization") or "Unknown Company"
    slug = re.sub(r"[^a-z0-9]", "-", name.lower())
    return RoleCompany(
        id=job.get("organization_url") or f"org-{slug}",
        name=name,
        url=job.get("organization_url"),
        logo=job.get("organization_logo"),
        industry=job.get("linkedin_org_industry"),
        size=job.get("linkedin_org_size"),
        headquarters=job.get("linkedin_org_headquarters"),
        description=job.get("linkedin_org_description"),
        specialties=job.get("linkedin_org_specialties") or [],
        employee_count=job.get("linkedin_org_employees"),
        linkedin_url=job.get("linkedin_org_url"),
    )


def map_job_to_role(job: dict) -> Role:
    specialties = job.get("linkedin_org_specialties") or []
    ai_skills = job.get("ai_key_skills") or []
    return Role(
        id=str(job.get("id") or params_hash(job)[:16]),
        title=job.get("title") or "Job Title Not Available",
        description=job.get("description_text") or "Role description not provided by job source.",
        company=_company(job),
        location=_location(job),
        salary=format_salary(job),
        type=_employment_type(job),
        remote=bool(job.get("remote_derived")),
        url=job.get("url"),
        direct_apply=bool(job.get("directapply")),
        seniority=job.get("seniority"),
        posted_date=job.get("date_posted"),
        skills=list(dict.fromkeys([*ai_skills, *specialties])),
        requirements=list(specialties),
        ai_key_skills=list(ai_skills),
        visa_sponsorship=job.get("ai_visa_sponsorship"),
        recruiter_name=job.get("recruiter_name"),
        recruiter_title=job.get("recruiter_title"),
        hiring_manager=job.get("ai_hiring_manager_name"),
    )


@dataclass
class SearchOutcome:
    roles: list[Role]
    cached: bool
    api_mode: str
    warnings: list[str] = field(default_factory=list)


async def search_roles(params: dict) -> SearchOutcome:
    """Validate, fetch (or serve from cache) and map a role search.

    Raises:
        SearchError: 400 for invalid parameters, plus fetch_jobs' errors.
    """
    validation = validate_search_params(params)
    if not validation.valid:
        logger.info(f"Rejected search parameters: {validation.errors}")
        raise SearchError(400, "; ".join(validation.errors), validation.warnings)

    jobs, cached = await fetch_jobs(validation.normalized)
    roles = []
    for job in jobs:
        if not isinstance(job, dict):
            continue
        roles.append(map_job_to_role(job))
    return SearchOutcome(
        roles=roles, cached=cached, api_mode=api_mode(), warnings=validation.warnings,
    )
