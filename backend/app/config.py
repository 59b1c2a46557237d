"""Application settings loaded from environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.constants import DEFAULT_LLM_MODEL, GEMINI_MODEL


class Settings(BaseSettings):
    openai_api_key: str = ""
    google_ai_api_key: str = ""
    langfuse_secret_key: str = ""
    langfuse_public_key: str = ""
    langfuse_host: str = "https://cloud.langfuse.com"
    langfuse_prompt_label: str = "production"
    llm_model: str = DEFAULT_LLM_MODEL
    gemini_model: str = GEMINI_MODEL

    database_url: str = "sqlite:///./techrec.db"
    redis_url: str = ""

    storage_backend: str = "local"  # "local" or "s3"
    storage_dir: str = "uploads"
    s3_bucket: str = ""
    s3_region: str = "us-east-1"

    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"

    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    rapidapi_key: str = ""
    rapidapi_host: str = "linkedin-job-search-api.p.rapidapi.com"

    allowed_origins: str = "http://localhost:3000"
    log_level: str = "INFO"
    log_format: str = "console"  # "console" or "json"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


_settings: Settings | None = None


def load_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
