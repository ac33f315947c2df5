"""
MediVision Verifier – Configuration Loader
Loads all settings from .env via environment variables.
No secret may be hard-coded anywhere in the codebase.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env from project root
_env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(dotenv_path=_env_path)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Base configuration – values sourced exclusively from environment."""

    # --- Secrets ---
    OPENAI_API_KEY: str = os.environ.get("OPENAI_API_KEY", "")

    # --- App ---
    APP_ENV: str = os.environ.get("APP_ENV", "development")
    DEBUG: bool = APP_ENV == "development"
    RATE_LIMIT_DEFAULT: str = os.environ.get("RATE_LIMIT_DEFAULT", "100/hour")

    # --- Feature flags ---
    VERIFY_RXNORM: bool = _env_bool("VERIFY_RXNORM", True)
    ENABLE_METRICS: bool = _env_bool("ENABLE_METRICS", True)
    ENABLE_SCHEDULER: bool = _env_bool("ENABLE_SCHEDULER", True)

    # --- Reference service (RxNav) ---
    RXNORM_BASE_URL: str = os.environ.get("RXNORM_BASE_URL", "https://rxnav.nlm.nih.gov/REST")
    RXNORM_TIMEOUT: float = float(os.environ.get("RXNORM_TIMEOUT", "10"))

    # --- Resilience ---
    RETRY_MAX_ATTEMPTS: int = int(os.environ.get("RETRY_MAX_ATTEMPTS", "3"))
    RETRY_BASE_DELAY: float = float(os.environ.get("RETRY_BASE_DELAY", "0.5"))
    RETRY_MAX_JITTER: float = float(os.environ.get("RETRY_MAX_JITTER", "0.1"))
    BREAKER_FAILURE_THRESHOLD: int = int(os.environ.get("BREAKER_FAILURE_THRESHOLD", "5"))
    BREAKER_COOLDOWN: float = float(os.environ.get("BREAKER_COOLDOWN", "30"))

    # --- Verification cache ---
    CACHE_TTL_DAYS: float = float(os.environ.get("CACHE_TTL_DAYS", "7"))
    CACHE_DATABASE_URL: str = os.environ.get("CACHE_DATABASE_URL", "")
    CACHE_PURGE_HOURS: float = float(os.environ.get("CACHE_PURGE_HOURS", "12"))

    # --- Batch verification ---
    BATCH_CONCURRENCY: int = int(os.environ.get("BATCH_CONCURRENCY", "5"))

    # --- Optical re-read ---
    REREAD_MODEL_NAME: str = os.environ.get("REREAD_MODEL_NAME", "gpt-4o-mini")

    # --- Validation ---
    @classmethod
    def validate(cls) -> None:
        """Raise on settings that would make the verification pipeline unusable."""
        positive = [
            "RETRY_MAX_ATTEMPTS", "BREAKER_FAILURE_THRESHOLD", "BREAKER_COOLDOWN",
            "CACHE_TTL_DAYS", "BATCH_CONCURRENCY", "RXNORM_TIMEOUT",
        ]
        invalid = [k for k in positive if getattr(cls, k) <= 0]
        if cls.RETRY_BASE_DELAY < 0 or cls.RETRY_MAX_JITTER < 0:
            invalid.append("RETRY_BASE_DELAY/RETRY_MAX_JITTER")
        if invalid:
            raise EnvironmentError(
                f"Invalid configuration values: {', '.join(invalid)}. "
                "Numeric settings must be positive."
            )
