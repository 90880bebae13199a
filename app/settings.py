import os
from pydantic import BaseModel, model_validator
from functools import lru_cache
from dotenv import load_dotenv
load_dotenv()


class Settings(BaseModel):
    APP_NAME: str = os.getenv("APP_NAME", "Candidate Profile Engine")
    ENV: str = os.getenv("ENV", "development")
    API_PREFIX: str = os.getenv("API_PREFIX", "/api")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    SQLITE_PATH: str = os.getenv("SQLITE_PATH", "profiles.sqlite3")

    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY") or None
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o")
    OPENROUTER_API_KEY: str | None = os.getenv("OPENROUTER_API_KEY") or None
    OPENROUTER_MODEL: str = os.getenv("OPENROUTER_MODEL", "openai/gpt-4o")

    ANALYSIS_TEMPERATURE: float = float(os.getenv("ANALYSIS_TEMPERATURE", "0.3"))
    ANALYSIS_TIMEOUT_SECONDS: float = float(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "15"))
    ANALYSIS_MAX_RETRIES: int = int(os.getenv("ANALYSIS_MAX_RETRIES", "2"))
    ANALYSIS_BACKOFF_SECONDS: float = float(os.getenv("ANALYSIS_BACKOFF_SECONDS", "1.0"))

    PROFILE_IDEMPOTENCY_WINDOW_SECONDS: float = float(
        os.getenv("PROFILE_IDEMPOTENCY_WINDOW_SECONDS", "300"))
    PROFILE_JOIN_TIMEOUT_SECONDS: float = float(
        os.getenv("PROFILE_JOIN_TIMEOUT_SECONDS", "30"))
    PROFILE_LOCK_MAX_AGE_SECONDS: float = float(
        os.getenv("PROFILE_LOCK_MAX_AGE_SECONDS", "60"))
    PROFILE_LOCK_SWEEP_INTERVAL_SECONDS: float = float(
        os.getenv("PROFILE_LOCK_SWEEP_INTERVAL_SECONDS", "30"))
    PROFILE_FAILURE_COOLDOWN_SECONDS: float = float(
        os.getenv("PROFILE_FAILURE_COOLDOWN_SECONDS", "5"))

    PROMPT_TOKEN_CEILING: int = int(os.getenv("PROMPT_TOKEN_CEILING", "6000"))
    PROMPT_CHARS_PER_TOKEN: int = int(os.getenv("PROMPT_CHARS_PER_TOKEN", "4"))

    @property
    def analysis_model(self) -> str:
        if self.OPENAI_API_KEY:
            return self.OPENAI_MODEL
        return self.OPENROUTER_MODEL

    @model_validator(mode="after")
    def _owner_outlives_analysis(self):
        # the sweep must never evict an owner that is still inside its retry budget
        worst = worst_case_analysis_seconds(
            self.ANALYSIS_TIMEOUT_SECONDS, self.ANALYSIS_MAX_RETRIES, self.ANALYSIS_BACKOFF_SECONDS)
        if worst >= self.PROFILE_LOCK_MAX_AGE_SECONDS:
            raise ValueError(
                f"analysis may run {worst:g}s but PROFILE_LOCK_MAX_AGE_SECONDS is "
                f"{self.PROFILE_LOCK_MAX_AGE_SECONDS:g}s; lower ANALYSIS_TIMEOUT_SECONDS or raise the lock age"
            )
        return self


def worst_case_analysis_seconds(timeout: float, max_retries: int, backoff: float) -> float:
    """Longest a single analysis call can take: every attempt times out, plus linear backoff."""
    attempts = max_retries + 1
    return attempts * timeout + sum(backoff * (i + 1) for i in range(max_retries))


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
