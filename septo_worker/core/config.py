"""Worker configuration, read from the environment (and ``.env``)."""

from pydantic_settings import BaseSettings, SettingsConfigDict

# Default job ceiling for rows created without an explicit max_retries.
DEFAULT_MAX_RETRIES = 3


class Settings(BaseSettings):
    # Data store
    DATABASE_URL: str

    # Claim loop
    USE_MOCK: bool = False
    POLL_INTERVAL: int = 5000  # ms
    MAX_CONCURRENT: int = 1
    JOB_TIMEOUT_SECONDS: float = 60.0
    STALE_CLAIM_MS: int | None = None
    SHUTDOWN_GRACE_SECONDS: float | None = None

    # Retry/backoff
    RETRY_BASE_DELAY_MS: int | None = None  # defaults to POLL_INTERVAL
    RETRY_MAX_DELAY_MS: int = 300_000

    # Local scrapers
    SCRAPE_REQUEST_TIMEOUT: int = 30  # seconds, per HTTP request
    PROBE_TIMEOUT_SECONDS: float = 15.0

    # Cloud-delegated scraper (Apify)
    USE_APIFY: bool = False
    APIFY_ACTOR_ID: str = ""
    APIFY_API_TOKEN: str = ""
    APIFY_BASE_URL: str = "https://api.apify.com/v2"
    APIFY_TIMEOUT: int = 30_000  # ms
    APIFY_POLL_INTERVAL: int = 2000  # ms

    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def poll_interval_seconds(self) -> float:
        return self.POLL_INTERVAL / 1000

    @property
    def stale_claim_seconds(self) -> float:
        """
        Age after which a ``processing`` row is considered abandoned.

        Must stay above the per-job deadline, otherwise a live claim held by
        another worker could be reclaimed.
        """
        if self.STALE_CLAIM_MS is not None:
            return self.STALE_CLAIM_MS / 1000
        return max(
            2 * self.poll_interval_seconds * DEFAULT_MAX_RETRIES,
            2 * self.JOB_TIMEOUT_SECONDS,
        )

    @property
    def retry_base_delay_seconds(self) -> float:
        if self.RETRY_BASE_DELAY_MS is None:
            return self.poll_interval_seconds
        return self.RETRY_BASE_DELAY_MS / 1000


settings = Settings()
