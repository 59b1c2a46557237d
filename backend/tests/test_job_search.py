"""Tests for role search: parameter validation, response cache, API usage
tracking, live/dev fetch, and RapidAPI job mapping.

Live fetches run against httpx.MockTransport, never the network.
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from unittest.mock import patch

import httpx
import pytest

from app.config import load_settings
from app.services import job_search
from app.services.job_search import (
    SearchCache,
    SearchError,
    UsageTracker,
    credit_consumption,
    fetch_jobs,
    format_salary,
    map_job_to_role,
    params_hash,
    parse_usage_headers,
    search_cache,
    search_roles,
    usage_tracker,
    validate_search_params,
)

_RealAsyncClient = httpx.AsyncClient

USAGE_HEADERS = {
    "x-ratelimit-jobs-limit": "1000",
    "x-ratelimit-jobs-remaining": "500",
    "x-ratelimit-requests-limit": "100",
    "x-ratelimit-requests-remaining": "60",
    "x-ratelimit-jobs-reset": "3600",
}


def _mock_api(handler):
    """Route job_search's httpx client through a MockTransport."""
    transport = httpx.MockTransport(handler)
    return patch(
        "app.services.job_search.httpx.AsyncClient",
        side_effect=lambda **kwargs: _RealAsyncClient(transport=transport, **kwargs),
    )


@pytest.fixture
def production_mode(monkeypatch):
    monkeypatch.setattr(load_settings(), "rapidapi_key", "rapid-test-key")


# ===========================================================================
# validate_search_params
# ===========================================================================


class TestValidateSearchParams:

    def test_defaults_and_normalization(self):
        result = validate_search_params({"title_filter": "  Python Developer ", "location_filter": "", "remote": None})
        assert result.valid
        assert result.normalized == {"title_filter": "Python Developer", "limit": 10, "offset": 0}

    @pytest.mark.parametrize("limit", [0, 101, -5])
    def test_limit_out_of_range(self, limit):
        result = validate_search_params({"limit": limit})
        assert not result.valid
        assert "Limit must be between 1 and 100" in result.errors

    def test_negative_offset_is_error(self):
        result = validate_search_params({"offset": -10})
        assert not result.valid

    def test_offset_not_multiple_of_ten_warns(self):
        result = validate_search_params({"offset": 15})
        assert result.valid
        assert any("multiple of 10" in w for w in result.warnings)

    def test_title_and_advanced_title_are_exclusive(self):
        result = validate_search_params({"title_filter": "Python", "advanced_title_filter": "Python & Django"})
        assert not result.valid
        assert any("advanced_title_filter" in e for e in result.errors)

    def test_unbalanced_quotes_in_title(self):
        result = validate_search_params({"title_filter": '"Data Engineer'})
        assert not result.valid
        assert any("Unbalanced quotes" in e for e in result.errors)

    def test_title_too_long(self):
        result = validate_search_params({"title_filter": "a" * 501})
        assert not result.valid

    def test_unquoted_abbreviation_warns(self):
        result = validate_search_params({"title_filter": "AI Engineer"})
        assert result.valid
        assert result.warnings == ['Consider quoting abbreviation "AI" for exact matching']

    def test_quoted_abbreviation_and_embedded_letters_do_not_warn(self):
        """'"AI"' is quoted and 'Maintenance' merely contains the letters 'ai'."""
        result = validate_search_params({"title_filter": '"AI" Maintenance Engineer'})
        assert result.valid
        assert result.warnings == []

    def test_boolean_without_parentheses_warns(self):
        result = validate_search_params({"title_filter": "Python AND Django OR Flask"})
        assert any("parentheses" in w for w in result.warnings)

    @pytest.mark.parametrize("location,expected", [
        ("US", 'Use "United States" instead of "US" abbreviation'),
        ("London, UK", 'Use "United Kingdom" instead of "UK" abbreviation'),
    ])
    def test_country_abbreviations_rejected(self, location, expected):
        result = validate_search_params({"location_filter": location})
        assert not result.valid
        assert expected in result.errors

    def test_state_abbreviation_warns(self):
        result = validate_search_params({"location_filter": "New York, NY"})
        assert result.valid
        assert any('"NY"' in w for w in result.warnings)

    def test_location_word_containing_us_is_fine(self):
        result = validate_search_params({"location_filter": "Austin, Texas, United States"})
        assert result.valid
        assert result.warnings == []

    def test_invalid_employment_type(self):
        result = validate_search_params({"type_filter": "FULL_TIME,FREELANCE"})
        assert not result.valid
        assert any('"FREELANCE"' in e for e in result.errors)

    def test_list_with_spaces_is_rejected(self):
        result = validate_search_params({"type_filter": "FULL_TIME, CONTRACTOR"})
        assert not result.valid
        assert any("without spaces" in e for e in result.errors)

    def test_seniority_not_applicable_warns(self):
        result = validate_search_params({"seniority_filter": "Entry level,Not Applicable"})
        assert result.valid
        assert any("Not Applicable" in w for w in result.warnings)

    def test_description_filter_rules(self):
        result = validate_search_params({"description_filter": '"remote work"', "limit": 20})
        assert result.valid
        assert len(result.warnings) == 2

        too_long = validate_search_params({"description_filter": "x" * 201})
        assert not too_long.valid


# ===========================================================================
# Cache + usage
# ===========================================================================


class TestSearchCache:

    def test_hash_is_key_order_independent(self):
        assert params_hash({"a": 1, "b": 2}) == params_hash({"b": 2, "a": 1})

    def test_get_returns_a_copy(self):
        cache = SearchCache()
        cache.put({"limit": 10}, [{"id": "1"}])
        first = cache.get({"limit": 10})
        first[0]["id"] = "mutated"
        assert cache.get({"limit": 10}) == [{"id": "1"}]

    def test_expired_entry_is_a_miss(self):
        cache = SearchCache(ttl=60)
        with patch("app.services.job_search.time.time", return_value=1000.0):
            cache.put({"limit": 10}, [])
        with patch("app.services.job_search.time.time", return_value=1061.0):
            assert cache.get({"limit": 10}) is None
        assert cache.stats()["size"] == 0

    def test_full_cache_evicts_oldest_fifth(self):
        cache = SearchCache(max_entries=10)
        for i in range(10):
            with patch("app.services.job_search.time.time", return_value=1000.0 + i):
                cache.put({"offset": i}, [])
        with patch("app.services.job_search.time.time", return_value=2000.0):
            cache.put({"offset": 99}, [])

        assert cache.stats()["size"] == 9
        with patch("app.services.job_search.time.time", return_value=2000.0):
            assert cache.get({"offset": 0}) is None
            assert cache.get({"offset": 1}) is None
            assert cache.get({"offset": 2}) == []
            assert cache.get({"offset": 99}) == []


class TestUsageTracking:

    def test_parse_headers(self):
        usage = parse_usage_headers(USAGE_HEADERS)
        assert usage == {
            "jobs_limit": 1000,
            "jobs_remaining": 500,
            "requests_limit": 100,
            "requests_remaining": 60,
            "jobs_reset_seconds": 3600,
        }

    def test_incomplete_headers_are_ignored(self):
        assert parse_usage_headers({"x-ratelimit-jobs-limit": "1000"}) is None
        tracker = UsageTracker()
        tracker.update({"x-ratelimit-jobs-limit": "1000"})
        assert tracker.current is None
        assert tracker.check({"limit": 10}) is None

    def test_consumption_is_capped_at_max_limit(self):
        assert credit_consumption({"limit": 250}) == {"jobs": 100, "requests": 1}
        assert credit_consumption({}) == {"jobs": 10, "requests": 1}

    def test_check_refuses_when_job_credits_run_out(self):
        tracker = UsageTracker()
        tracker.update({**USAGE_HEADERS, "x-ratelimit-jobs-remaining": "5"})
        assert tracker.check({"limit": 10}) == "Insufficient job credits. Need 10, have 5"
        assert tracker.check({"limit": 5}) is None

    def test_check_refuses_when_request_credits_run_out(self):
        tracker = UsageTracker()
        tracker.update({**USAGE_HEADERS, "x-ratelimit-requests-remaining": "0"})
        assert tracker.check({"limit": 10}).startswith("Insufficient request credits")

    @pytest.mark.parametrize("jobs_remaining,requests_remaining,level", [
        ("500", "60", "ok"),
        ("200", "60", "low"),
        ("500", "5", "critical"),
    ])
    def test_warning_levels(self, jobs_remaining, requests_remaining, level):
        tracker = UsageTracker()
        tracker.update({
            **USAGE_HEADERS,
            "x-ratelimit-jobs-remaining": jobs_remaining,
            "x-ratelimit-requests-remaining": requests_remaining,
        })
        assert tracker.warning_level() == level
        assert tracker.info().warning_level == level


# ===========================================================================
# Fetch
# ===========================================================================


@pytest.mark.asyncio
class TestFetchJobs:

    async def test_development_mode_serves_sample_jobs(self):
        jobs, cached = await fetch_jobs({"limit": 10, "offset": 0})
        assert cached is False
        assert len(jobs) == 4
        assert usage_tracker.current["jobs_remaining"] == 9950

        again, cached = await fetch_jobs({"limit": 10, "offset": 0})
        assert cached is True
        assert again == jobs

    async def test_live_request_sends_rapidapi_headers(self, production_mode):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["key"] = request.headers["x-rapidapi-key"]
            return httpx.Response(200, json=[{"id": "9", "title": "Go Developer"}], headers=USAGE_HEADERS)

        with _mock_api(handler):
            jobs, cached = await fetch_jobs({"limit": 10, "offset": 0, "title_filter": "Go", "extra": "dropped"})

        assert jobs == [{"id": "9", "title": "Go Developer"}]
        assert cached is False
        assert seen["key"] == "rapid-test-key"
        assert "/active-jb-7d" in seen["url"]
        assert "title_filter=Go" in seen["url"]
        assert "extra" not in seen["url"]
        assert usage_tracker.current["requests_remaining"] == 60

    async def test_blocked_when_credits_exhausted(self, production_mode):
        usage_tracker.update({**USAGE_HEADERS, "x-ratelimit-jobs-remaining": "3"})

        with pytest.raises(SearchError) as exc:
            await fetch_jobs({"limit": 10, "offset": 0})
        assert exc.value.status_code == 429

    @pytest.mark.parametrize("response,status", [
        (httpx.Response(429), 429),
        (httpx.Response(500), 502),
        (httpx.Response(200, content=b"not json"), 502),
    ])
    async def test_upstream_errors_are_mapped(self, production_mode, response, status):
        with _mock_api(lambda request: response):
            with pytest.raises(SearchError) as exc:
                await fetch_jobs({"limit": 10, "offset": 0})
        assert exc.value.status_code == status

    async def test_timeout_is_504(self, production_mode):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with _mock_api(handler):
            with pytest.raises(SearchError) as exc:
                await fetch_jobs({"limit": 10, "offset": 0})
        assert exc.value.status_code == 504
        assert search_cache.stats()["size"] == 0

    async def test_search_roles_rejects_invalid_params(self):
        with pytest.raises(SearchError) as exc:
            await search_roles({"location_filter": "US"})
        assert exc.value.status_code == 400
        assert "United States" in exc.value.detail

    async def test_search_roles_maps_and_reports_warnings(self):
        outcome = await search_roles({"title_filter": "ML Engineer"})
        assert outcome.api_mode == "DEVELOPMENT"
        assert [r.id for r in outcome.roles][:2] == ["1742118233", "1742120419"]
        assert any('"ML"' in w for w in outcome.warnings)


# ===========================================================================
# Mapping
# ===========================================================================


class TestMapJobToRole:

    def _sample(self, job_id):
        return next(j for j in job_search._load_sample_jobs() if j["id"] == job_id)

    def test_full_job(self):
        role = map_job_to_role(self._sample("1742118233"))
        assert role.title == "Senior Backend Engineer (Python)"
        assert role.company.name == "Northwind Analytics"
        assert role.company.employee_count == 340
        assert role.location == "Berlin, Berlin, Germany"
        assert role.type == "Full Time"
        assert role.salary == "EUR75,000 - EUR95,000 / year"
        assert role.hiring_manager == "Tobias Keller"
        assert role.requirements == ["Data Analytics", "Machine Learning", "SaaS"]
        assert role.skills[:2] == ["Python", "FastAPI"]
        assert "SaaS" in role.skills
        assert role.direct_apply is True

    def test_location_falls_back_to_city_region_country(self):
        role = map_job_to_role(self._sample("1742131776"))
        assert role.location == "Austin, Texas, United States"
        assert role.type == "Contractor"
        assert role.company.id == "org-harbor-freight-systems"

    def test_ai_salary_fallback(self):
        role = map_job_to_role(self._sample("1742120419"))
        assert role.salary == "GBP55,000 - GBP68,000 / year"
        assert role.remote is True

    def test_missing_fields_get_defaults(self):
        role = map_job_to_role({"id": 7})
        assert role.id == "7"
        assert role.title == "Job Title Not Available"
        assert role.description == "Role description not provided by job source."
        assert role.company.name == "Unknown Company"
        assert role.location == "Location Not Specified"
        assert role.type == "Unknown Type"
        assert role.salary == "Not Specified"

    @pytest.mark.parametrize("job,expected", [
        ({"salary_raw": {"currency": "USD", "value": {"minValue": 50, "unitText": "HOUR"}}}, "From $50 / hour"),
        ({"salary_raw": {"value": {"maxValue": 120000}}}, "Up to $120,000 / year"),
        ({"ai_salary_value": 90000, "ai_salary_currency": "USD"}, "$90,000 / year"),
        ({}, "Not Specified"),
    ])
    def test_format_salary(self, job, expected):
        assert format_salary(job) == expected
