"""Application configuration with environment variables."""

from uuid import UUID

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str

    # Read cache TTLs (seconds). Staleness after a missed invalidation is bounded by these.
    CACHE_THREAD_TTL_SECONDS: int = 30
    CACHE_INBOX_TTL_SECONDS: int = 30
    CACHE_OVERVIEW_TTL_SECONDS: int = 45

    # Post-commit fan-out pool
    FANOUT_MAX_WORKERS: int = 4
    FANOUT_MAX_PENDING: int = 1000

    # Realtime forwarding (only used when REDIS_URL is configured)
    EVENT_REDIS_CHANNEL: str = "messaging:events"

    # Support escalation roster (comma-separated user ids)
    SUPPORT_NOTIFICATION_USER_IDS: str = ""

    # Retention worker
    RETENTION_WORKER_ENABLED: bool = True
    RETENTION_INTERVAL_SECONDS: int = 3600
    RETENTION_BATCH_SIZE: int = 500
    RETENTION_MAX_THREADS: int = 200
    RETENTION_AUDIT_TTL_DAYS: int = 365
    RETENTION_AUDIT_GRACE_DAYS: int = 30

    # Auto-reply dedupe window (number of message ids remembered)
    AUTO_REPLY_MAX_TRACKED: int = 5000

    @property
    def support_notification_user_ids(self) -> list[UUID]:
        """Parse SUPPORT_NOTIFICATION_USER_IDS into UUIDs, skipping malformed entries."""
        ids: list[UUID] = []
        for raw in self.SUPPORT_NOTIFICATION_USER_IDS.split(","):
            raw = raw.strip()
            if not raw:
                continue
            try:
                ids.append(UUID(raw))
            except ValueError:
                continue
        return ids

    @property
    def is_dev(self) -> bool:
        return self.ENV == "dev"


settings = Settings()
