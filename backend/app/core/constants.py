"""Centralized constants — no magic numbers in service code."""

# Upload limits
MAX_UPLOAD_SIZE = 10 * 1024 * 1024  # 10 MB
ALLOWED_CV_MIME_TYPES = {
    "application/pdf": "pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "text/plain": "txt",
}

# Truncation
CV_TRUNCATE_LENGTH = 20_000  # chars sent to LLM for CV analysis
DESCRIPTION_TRUNCATE_LENGTH = 1_500  # chars of a role description sent to the writer

# LLM
DEFAULT_LLM_MODEL = "gpt-4o-mini"
GEMINI_MODEL = "gemini-2.0-flash"
MAX_OPENAI_FAILURES = 5
OPENAI_COOLDOWN_SECONDS = 300  # OpenAI is skipped this long after MAX_OPENAI_FAILURES in a row

# Rate limiting
RATE_LIMIT_PER_MINUTE = 10

# Cache TTLs (seconds)
DEFAULT_CACHE_TTL = 24 * 60 * 60
EXPERIENCE_CACHE_TTL = 24 * 60 * 60
LETTER_CACHE_TTL = 10 * 60
SUGGESTION_CACHE_TTL = 60 * 60
PROMPT_CACHE_TTL = 5 * 60  # Langfuse SDK prompt cache

# ─── Subscription tiers ─────────────────────────────────────────────
# tier -> monthly points, XP multiplier, price (USD/month), features
TIER_CONFIG = {
    "FREE": {
        "points": 10,
        "xp_multiplier": 1.0,
        "price": 0.0,
        "features": ["Basic profile", "CV upload and analysis", "3 role searches per month"],
    },
    "BASIC": {
        "points": 30,
        "xp_multiplier": 1.2,
        "price": 4.99,
        "features": ["Everything in Free", "Cover letter generation", "Outreach messages"],
    },
    "STARTER": {
        "points": 75,
        "xp_multiplier": 1.5,
        "price": 9.99,
        "features": ["Everything in Basic", "CV improvement suggestions", "Priority analysis"],
    },
    "PRO": {
        "points": 200,
        "xp_multiplier": 1.75,
        "price": 19.99,
        "features": ["Everything in Starter", "Bulk applications", "Premium analysis"],
    },
    "EXPERT": {
        "points": 500,
        "xp_multiplier": 2.0,
        "price": 39.99,
        "features": ["Everything in Pro", "Highest points efficiency", "Early access features"],
    },
}
PAID_TIERS = ("BASIC", "STARTER", "PRO", "EXPERT")

# Cost multiplier per tier (higher tiers pay fewer points per action)
TIER_EFFICIENCY = {
    "FREE": 1.0,
    "BASIC": 0.95,
    "STARTER": 0.90,
    "PRO": 0.85,
    "EXPERT": 0.80,
}

# ─── Points ─────────────────────────────────────────────────────────
POINTS_COSTS = {
    "JOB_QUERY": 3,
    "COVER_LETTER": 1,
    "OUTREACH_MESSAGE": 1,
    "CV_SUGGESTION": 1,
    "BULK_APPLICATION": 8,
    "PREMIUM_ANALYSIS": 5,
}
POINTS_RESET_DAYS = 30
MAX_POINTS_AWARD = 100
MAX_STREAK_BONUS = 50
MAX_LEVEL_BONUS = 25
# Spend types that must reference the entity they were spent on
SPEND_TYPES_REQUIRING_SOURCE = ("COVER_LETTER", "OUTREACH_MESSAGE", "CV_SUGGESTION")

# ─── XP ─────────────────────────────────────────────────────────────
XP_REWARDS = {
    "CV_UPLOADED": 25,
    "CV_ANALYSIS_COMPLETED": 50,
    "PROFILE_COMPLETED": 15,
    "SKILL_ADDED": 10,
    "EXPERIENCE_ADDED": 20,
    "ROLE_SAVED": 5,
    "APPLICATION_SUBMITTED": 100,
    "COVER_LETTER_GENERATED": 20,
    "OUTREACH_SENT": 10,
    "DAILY_LOGIN": 5,
}
XP_PER_LEVEL_BASE = 50
DASHBOARD_RECENT_TRANSACTIONS = 5
LEADERBOARD_DEFAULT_LIMIT = 50
LEADERBOARD_MAX_LIMIT = 100

# ─── Experience ─────────────────────────────────────────────────────
JUNIOR_MAX_YEARS = 2
DAYS_PER_YEAR = 365.25

# ─── Job search (RapidAPI LinkedIn jobs) ────────────────────────────
RAPIDAPI_JOBS_PATH = "/active-jb-7d"
SEARCH_CACHE_TTL = 60 * 60
SEARCH_CACHE_MAX_ENTRIES = 500
SEARCH_CACHE_EVICT_FRACTION = 0.2
SEARCH_TIMEOUT = 30  # seconds
DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 100
MAX_TITLE_FILTER_LENGTH = 500
MAX_LOCATION_FILTER_LENGTH = 200
MAX_DESCRIPTION_FILTER_LENGTH = 200
USAGE_CRITICAL_PERCENT = 10
USAGE_LOW_PERCENT = 25
VALID_EMPLOYMENT_TYPES = (
    "CONTRACTOR", "FULL_TIME", "INTERN", "OTHER", "PART_TIME", "TEMPORARY", "VOLUNTEER",
)
VALID_SENIORITY_LEVELS = (
    "Associate", "Director", "Executive", "Mid-Senior level",
    "Entry level", "Not Applicable", "Internship",
)

# ─── Writing ────────────────────────────────────────────────────────
WORD_BOUNDS = {
    "coverLetter": (170, 250),
    "outreach": (120, 150),
}
LETTER_MAX_TOKENS = {"coverLetter": 700, "outreach": 400}
