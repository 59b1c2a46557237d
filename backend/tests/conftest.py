"""Shared fixtures for TechRec backend tests."""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# No external services in tests: Redis, Stripe, RapidAPI and the LLM providers
# are all disabled unless a test wires in a fake.
for _var in (
    "OPENAI_API_KEY",
    "GOOGLE_AI_API_KEY",
    "LANGFUSE_PUBLIC_KEY",
    "LANGFUSE_SECRET_KEY",
    "REDIS_URL",
    "RAPIDAPI_KEY",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
):
    os.environ[_var] = ""
os.environ["JWT_SECRET"] = "techrec-test-secret-0123456789abcdef"
os.environ["DATABASE_URL"] = "sqlite://"

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from app.core import cache
from app.core.security import create_access_token
from app.core.storage import LocalStorage, set_storage
from app.db.session import SessionLocal, create_all, init_engine
from app.db.tables import Developer, utcnow
from app.main import app
from app.models import CvAnalysisData, LetterRequest
from app.routes import cvs as cvs_route
from app.routes import roles as roles_route
from app.routes import writing as writing_route


class FakeRedis:
    """In-memory stand-in for the async Redis client (get/set/delete only)."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, key):
        self.ttls.pop(key, None)
        return 1 if self.store.pop(key, None) is not None else 0


# ---------------------------------------------------------------------------
# Isolation (autouse)
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _database():
    """Fresh in-memory SQLite database per test."""
    engine = init_engine("sqlite://")
    create_all()
    yield engine
    engine.dispose()


@pytest.fixture(autouse=True)
def _storage(tmp_path):
    set_storage(LocalStorage(tmp_path / "uploads"))
    yield
    set_storage(None)


@pytest.fixture(autouse=True)
def _no_redis():
    cache.set_client(None)
    yield
    cache.set_client(None)


@pytest.fixture(autouse=True)
def _disable_rate_limiter():
    """Disable slowapi rate limiting for all tests."""
    limiters = [app.state.limiter, cvs_route.limiter, roles_route.limiter, writing_route.limiter]
    for limiter in limiters:
        limiter.enabled = False
    yield
    for limiter in limiters:
        limiter.enabled = True


@pytest.fixture(autouse=True)
def _clear_in_memory_caches():
    """Clear in-memory caches between tests to prevent interference."""
    from app.services.cv_analyzer import _analysis_cache
    from app.services.job_search import search_cache, usage_tracker

    _analysis_cache.clear()
    search_cache.clear()
    usage_tracker.clear()
    yield
    _analysis_cache.clear()
    search_cache.clear()
    usage_tracker.clear()


# ---------------------------------------------------------------------------
# Database + auth fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_redis():
    client = FakeRedis()
    cache.set_client(client)
    return client


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def make_developer(db, developer_id="dev-1", email="dana@example.com", tier="FREE", points=10, **extra):
    developer = Developer(
        id=developer_id,
        email=email,
        name=extra.pop("name", "Dana Developer"),
        subscription_tier=tier,
        subscription_status="active",
        monthly_points=points,
        points_used=0,
        points_earned=0,
        points_reset_date=utcnow() + timedelta(days=30),
        total_xp=0,
        current_level=1,
        **extra,
    )
    db.add(developer)
    db.commit()
    return developer


@pytest.fixture
def developer(db):
    """A FREE-tier developer with a full 10-point balance."""
    return make_developer(db)


@pytest.fixture
def auth_headers(developer):
    token = create_access_token(developer.id, developer.email, developer.name)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client():
    """Async httpx test client wired to the FastAPI app via ASGI transport."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

SAMPLE_CV_TEXT = """Dana Developer
dana@example.com | +44 20 7946 0000 | London

Backend engineer with six years of experience building Python services,
data pipelines and public APIs for fintech and health companies.

EXPERIENCE
Senior Backend Engineer, Ledgerline (2021-03 - Present)
- Led the migration of the payments API from Flask to FastAPI
- Cut p95 latency by 40% with Redis caching

Backend Engineer, Carebridge (2018-01 - 2021-02)
- Built HL7 ingestion pipelines on AWS

EDUCATION
BSc Computer Science, University of Leeds (2014 - 2017)
"""


SAMPLE_ANALYSIS = {
    "contactInfo": {
        "name": "Dana Developer",
        "email": "dana@example.com",
        "phone": "+44 20 7946 0000",
        "location": "London",
        "linkedin": "https://www.linkedin.com/in/dana-dev",
        "github": "https://github.com/danadev",
        "website": None,
    },
    "about": "Backend engineer with six years of experience building Python services and public APIs.",
    "skills": [
        {"name": "Python", "category": "Languages", "level": "expert"},
        {"name": "FastAPI", "category": "Frameworks", "level": "advanced"},
        {"name": "Redis", "category": "Databases", "level": "intermediate"},
        {"name": "AWS", "category": "Cloud", "level": "intermediate"},
    ],
    "experience": [
        {
            "title": "Senior Backend Engineer",
            "company": "Ledgerline",
            "location": "London",
            "startDate": "2021-03",
            "endDate": "Present",
            "responsibilities": [
                "Led the migration of the payments API from Flask to FastAPI",
                "Cut p95 latency by 40% with Redis caching",
            ],
        },
        {
            "title": "Backend Engineer",
            "company": "Carebridge",
            "startDate": "2018-01",
            "endDate": "2021-02",
            "responsibilities": ["Built HL7 ingestion pipelines on AWS"],
        },
    ],
    "education": [
        {
            "institution": "University of Leeds",
            "degree": "BSc Computer Science",
            "startDate": "2014",
            "endDate": "2017",
        },
    ],
    "achievements": [],
}


@pytest.fixture()
def sample_analysis():
    return CvAnalysisData.model_validate(SAMPLE_ANALYSIS)


GOOD_LETTER = (
    "Dear Hiring Team,\n\n"
    "I am writing to apply for the Senior Backend Engineer position at Northwind Analytics. "
    "Over the past six years I have built Python services and public APIs that handle "
    "millions of requests a day, most recently leading the migration of a payments API "
    "from Flask to FastAPI. That work cut p95 latency by forty percent and gave the team "
    "a codebase they could change with confidence.\n\n"
    "Your focus on dependable analytics infrastructure matches what I enjoy most. I like "
    "designing clear service boundaries, writing tests that catch regressions early, and "
    "working closely with product teams to ship features that matter to customers. I have "
    "run PostgreSQL and Redis in production, deployed on AWS with Docker and Kubernetes, "
    "and mentored junior engineers through their first on-call rotations.\n\n"
    "I would welcome the opportunity to discuss how my experience could help Northwind "
    "Analytics grow its platform. Thank you for considering my application.\n\n"
    "Sincerely,\nDana Developer"
)


def letter_request(**overrides) -> LetterRequest:
    payload = {
        "role_id": "1742118233",
        "role_info": {
            "title": "Senior Backend Engineer",
            "description": "Build Python services with FastAPI and PostgreSQL on AWS.",
            "skills": ["Python", "FastAPI"],
            "requirements": ["PostgreSQL"],
            "ai_key_skills": ["Python", "AWS"],
        },
        "company_info": {
            "name": "Northwind Analytics",
            "location": "Berlin",
            "attraction_points": ["Open-source data tooling"],
        },
        "tone": "formal",
    }
    payload.update(overrides)
    return LetterRequest.model_validate(payload)
