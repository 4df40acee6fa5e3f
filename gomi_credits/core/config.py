from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:8081", "http://localhost:19006"]


def _parse_cors_origins(v: Any) -> List[str]:
    if v is None or v == "":
        return _DEFAULT_CORS.copy()
    if isinstance(v, list):
        return [x for x in v if isinstance(x, str) and x.strip()]
    s = str(v).strip()
    if s.startswith("["):
        import json
        try:
            out = json.loads(s)
        except ValueError:
            return _DEFAULT_CORS.copy()
        return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
    return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")
    admin_api_key: str = Field(default="", alias="ADMIN_API_KEY")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="gomi_credits", alias="MONGODB_DB_NAME")

    # Redis (worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Firebase Auth (ID token audience)
    firebase_project_id: str = Field(default="", alias="FIREBASE_PROJECT_ID")

    # Billing provider webhook (HMAC-SHA256)
    billing_webhook_secret: str = Field(default="", alias="BILLING_WEBHOOK_SECRET")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:8081,http://localhost:19006",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    # Trial credits
    trial_first_grant: int = 500
    trial_second_grant_high: int = 300
    trial_second_grant_low: int = 100
    trial_second_grant_threshold: int = 300
    trial_expiry_days: int = 14

    # Ad watch bonus
    ad_watch_bonus: int = 50
    ad_watch_threshold: int = 50  # offered only while total < threshold
    ad_watch_video_count: int = 4

    # Subscription allotments (replace, never accumulate)
    monthly_credits_pro: int = 3000
    monthly_credits_ultra: int = 10000
    monthly_period_days: int = 30

    # Anti-abuse limits
    ip_account_limit: int = 3
    ip_window_hours: int = 24
    device_abuse_threshold: int = 10  # flag once more than this many users logged in

    # Ledger commit
    ledger_commit_attempts: int = 5
    idempotency_keys_kept: int = 100

    def monthly_allotment(self, tier: str) -> int:
        return {"PRO": self.monthly_credits_pro, "ULTRA": self.monthly_credits_ultra}.get(tier, 0)


@lru_cache
def get_settings() -> Settings:
    return Settings()
