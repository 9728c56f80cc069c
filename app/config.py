from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False

    # Supabase settings
    SUPABASE_URL: str
    SUPABASE_JWKS_URL: str | None = None
    SUPABASE_DB_URL: str

    # Shared secret for cron endpoints (x-admin-key header)
    ADMIN_API_KEY: str | None = None

    # =================================================================
    # ELIGIBILITY ENGINE
    # =================================================================
    ELIG_WINDOW_PAST_HOURS: float = 6.0
    ELIG_WINDOW_FUTURE_HOURS: float = 48.0
    ELIG_ARRIVAL_BUFFER_MIN: int = 20
    ELIG_MIN_DELAY_MINUTES: int = 15
    ELIG_EVENT_WINDOW_HOURS: float = 2.0
    ELIG_BATCH_SIZE: int = 300

    # =================================================================
    # TRIP LINKER
    # =================================================================
    LINK_WINDOW_PAST_DAYS: int = 7
    LINK_WINDOW_FUTURE_DAYS: int = 1
    LINK_MAX_SCORE_SECONDS: int = 5400  # 90 minutes
    LINK_MIN_MARGIN_SECONDS: int = 0  # 0 disables the ambiguity check
    LINK_BATCH_SIZE: int = 50

    # =================================================================
    # CLAIMS + SUBMISSION QUEUE
    # =================================================================
    FEE_PCT: float = 20
    SUBMIT_LIVE: bool = False
    AUTOMATION_ENABLED: bool = True
    CLAIM_QUEUE_MAX_ATTEMPTS: int = 8
    CLAIM_CHECK_DELAY_HOURS: float = 24.0
    CLAIM_DRY_RUN_DELAY_HOURS: float = 6.0
    CLAIM_MISSING_DELAY_HOURS: float = 1.0
    CLAIM_CHECK_BATCH_SIZE: int = 200
    SUBMISSION_TIMEOUT_SECONDS: float = 180.0

    # Browser automation
    BROWSER_HEADLESS: bool = True
    BROWSER_ACTION_TIMEOUT_MS: int = 30_000
    BROWSER_NAVIGATION_TIMEOUT_MS: int = 60_000
    BROWSER_SCREENSHOT_DIR: str | None = None

    # =================================================================
    # NOTIFICATION OUTBOX
    # =================================================================
    RESEND_API_KEY: str | None = None
    EMAIL_FROM: str | None = None
    EMAIL_REPLY_TO: str | None = None
    APP_PUBLIC_URL: str = ""
    NOTIFY_BATCH_SIZE: int = 25
    NOTIFY_MAX_ATTEMPTS: int = 7
    NOTIFY_LOCK_KEY: int = 92233721

    # =================================================================
    # WORKER CADENCE (seconds between ticks)
    # =================================================================
    ELIGIBILITY_INTERVAL_SECONDS: float = 300.0
    TRIP_LINK_INTERVAL_SECONDS: float = 15.0
    CLAIM_QUEUE_INTERVAL_SECONDS: float = 30.0
    CLAIM_CHECK_INTERVAL_SECONDS: float = 300.0
    NOTIFY_INTERVAL_SECONDS: float = 5.0

    # =================================================================
    # DATABASE POOL SETTINGS - Simple and configurable
    # =================================================================
    DB_POOL_MIN_SIZE: int = 3
    DB_POOL_MAX_SIZE: int = 12
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # derive sensible defaults if not provided
    def jwks_url(self) -> str:
        if self.SUPABASE_JWKS_URL:
            return self.SUPABASE_JWKS_URL
        base = self.SUPABASE_URL.rstrip("/")
        return f"{base}/auth/v1/.well-known/jwks.json"

    def fee_pct(self) -> int:
        """Service fee percentage clamped to 0..100."""
        return int(round(min(100.0, max(0.0, float(self.FEE_PCT)))))

    def email_configured(self) -> bool:
        return bool(self.RESEND_API_KEY and self.EMAIL_FROM)

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            # Workers and the API share the free-tier connection limit locally
            config.update(
                {
                    "min_size": 2,
                    "max_size": 6,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
