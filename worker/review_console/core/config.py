"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

RUN_MODES = ("sync", "async")
MAX_SYNC_WAIT_SECONDS = 60


@dataclass(frozen=True)
class Settings:
    apify_token: str
    actor_id: str = "compass/crawler-google-places"
    api_base_url: str = "https://api.apify.com/v2"
    run_mode: str = "async"
    sync_wait_seconds: int = 30
    poll_interval_seconds: float = 2.0
    poll_timeout_seconds: float = 120.0
    request_timeout_seconds: float = 30.0
    location_query: str = "Ireland"
    language: str = "en"
    max_results_limit: int = 25
    max_reviews_limit: int = 50
    max_age_days_limit: int = 36500
    default_max_results: int = 8
    default_max_reviews: int = 20
    server_port: int = 8080


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer; using %s", name, raw, default)
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("%s=%r is not a number; using %s", name, raw, default)
        return default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    apify_token = os.getenv("APIFY_TOKEN", "").strip()
    run_mode = os.getenv("RUN_MODE", "async").strip().lower()
    if run_mode not in RUN_MODES:
        logger.warning("RUN_MODE=%r is not one of %s; falling back to async.", run_mode, RUN_MODES)
        run_mode = "async"

    sync_wait_seconds = min(max(_int_env("SYNC_WAIT_SECONDS", 30), 0), MAX_SYNC_WAIT_SECONDS)
    max_results_limit = max(_int_env("MAX_RESULTS_LIMIT", 25), 1)
    max_reviews_limit = max(_int_env("MAX_REVIEWS_LIMIT", 50), 0)

    if not apify_token:
        logger.warning("APIFY_TOKEN is not configured; scrape runs will be refused.")

    return Settings(
        apify_token=apify_token,
        actor_id=os.getenv("APIFY_ACTOR_ID") or "compass/crawler-google-places",
        api_base_url=(os.getenv("APIFY_BASE_URL") or "https://api.apify.com/v2").rstrip("/"),
        run_mode=run_mode,
        sync_wait_seconds=sync_wait_seconds,
        poll_interval_seconds=_float_env("POLL_INTERVAL_SECONDS", 2.0),
        poll_timeout_seconds=_float_env("POLL_TIMEOUT_SECONDS", 120.0),
        request_timeout_seconds=_float_env("REQUEST_TIMEOUT_SECONDS", 30.0),
        location_query=os.getenv("LOCATION_QUERY", "Ireland"),
        language=os.getenv("SCRAPE_LANGUAGE") or "en",
        max_results_limit=max_results_limit,
        max_reviews_limit=max_reviews_limit,
        max_age_days_limit=min(max(_int_env("MAX_AGE_DAYS_LIMIT", 36500), 1), 36500),
        default_max_results=min(max(_int_env("DEFAULT_MAX_RESULTS", 8), 1), max_results_limit),
        default_max_reviews=min(max(_int_env("DEFAULT_MAX_REVIEWS", 20), 0), max_reviews_limit),
        server_port=_int_env("PORT", 8080),
    )
