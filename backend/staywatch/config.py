from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    env: str = "dev"
    database_url: str = "sqlite:///./data/staywatch.db"

    scheduler_enabled: bool = True
    scheduler_tick_minutes: int = 5
    scheduler_jitter_seconds: int = 30

    # Worker pool
    worker_count: int = 3
    job_queue_size: int = 100
    job_start_jitter_seconds: float = 5.0
    job_timeout_seconds: float = 180.0
    backoff_base_minutes: float = 30.0
    backoff_max_minutes: float = 720.0

    # Offers-page scan
    offers_scan_enabled: bool = True
    offers_scan_hour: int = 9

    # Browser session pool
    browser_headless: bool = True
    session_pool_size: int = 2
    session_cookie_ttl_minutes: int = 60
    challenge_timeout_seconds: float = 30.0
    navigation_timeout_seconds: float = 45.0
    intercept_wait_seconds: float = 20.0
    artifacts_dir: str = ""

    # Circuit breaker
    circuit_failure_threshold: int = 5
    circuit_cooldown_minutes: float = 30.0
    rate_limit_cooldown_minutes: float = 120.0

    # Insight thresholds
    lowest_window_days: int = 180
    price_drop_threshold_percent: float = 10.0
    risk_window: int = 3
    risk_rise_threshold_percent: float = 5.0
    insight_cooldown_hours: float = 24.0
    insight_cooldown_overrides: dict[str, float] = {}

    # Plausible GBP range for a single stay
    min_plausible_price: float = 20.0
    max_plausible_price: float = 20000.0

    def model_post_init(self, __context):
        if self.env == "prod" and self.database_url.startswith("sqlite"):
            raise ValueError(
                "Production requires explicit DATABASE_URL (not SQLite)"
            )

    def cooldown_hours_for(self, insight_type: str) -> float:
        return self.insight_cooldown_overrides.get(insight_type, self.insight_cooldown_hours)

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
