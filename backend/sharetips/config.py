"""
backend/sharetips/config.py

Purpose:
    Central settings loading for the settlement engine and its workers.

Dependencies:
    - pydantic-settings
    - pathlib
"""

from pathlib import Path

from pydantic_settings import BaseSettings

# Prefer backend/.env, fallback to project-root .env.
_BACKEND_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"
_ROOT_ENV_FILE = Path(__file__).resolve().parent.parent.parent / ".env"


class Settings(BaseSettings):
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB: str = "sharetips"

    # TheOddsAPI (scores)
    ODDSAPIKEY: str = ""
    THEODDSAPI_BASE_URL: str = "https://api.the-odds-api.com/v4"
    ENABLED_SPORT_KEYS: str = (
        "soccer_france_ligue_one,soccer_epl,soccer_italy_serie_a,"
        "soccer_spain_la_liga,soccer_germany_bundesliga,soccer_uefa_champs_league,"
        "basketball_nba"
    )
    PROVIDER_TIMEOUT_SECONDS: float = 15.0
    PROVIDER_MAX_RETRIES: int = 1
    PROVIDER_RETRY_BASE_DELAY_SECONDS: float = 2.0
    PROVIDER_QUOTA_WARN_THRESHOLD: int = 50
    PROVIDER_CIRCUIT_FAILURE_THRESHOLD: int = 3
    PROVIDER_CIRCUIT_RECOVERY_SECONDS: float = 300.0

    # Score sync (disable in dev to conserve API credits)
    SCORE_SYNC_ENABLED: bool = True
    SCORE_SYNC_INTERVAL_MINUTES: int = 5
    SCORE_SYNC_HISTORY_AFTER_HOURS: int = 2
    SCORE_SYNC_LEAGUE_TIMEOUT_SECONDS: float = 60.0

    # Ticket locking / settlement
    TICKET_LOCK_INTERVAL_SECONDS: int = 60
    SETTLEMENT_INTERVAL_MINUTES: int = 5
    SETTLEMENT_PAGE_SIZE: int = 500  # tickets read per query; every cycle walks all pages

    # Subscriptions
    SUBSCRIPTION_EXPIRATION_INTERVAL_MINUTES: int = 5

    # Notifications
    NOTIFICATION_DUPLICATE_WINDOW_MINUTES: int = 5
    NOTIFICATION_BATCH_SIZE: int = 100

    # Transactional email (leave EMAIL_API_KEY empty to disable sending)
    EMAIL_API_KEY: str = ""
    EMAIL_API_URL: str = "https://api.resend.com/emails"
    EMAIL_FROM: str = "ShareTips <no-reply@sharetips.app>"
    EMAIL_TIMEOUT_SECONDS: float = 10.0

    # Operations
    ADMIN_API_KEY: str = ""
    SHUTDOWN_GRACE_SECONDS: float = 30.0

    model_config = {
        "env_file": (str(_BACKEND_ENV_FILE), str(_ROOT_ENV_FILE)),
        "extra": "ignore",
    }

    @property
    def sport_keys(self) -> list[str]:
        return [k.strip() for k in self.ENABLED_SPORT_KEYS.split(",") if k.strip()]


settings = Settings()
