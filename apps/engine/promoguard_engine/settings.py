"""Application settings and configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "json"

    # Database
    database_url: Optional[str] = None
    sqlite_path: str = "./promoguard.db"

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout_seconds: float = 5.0

    # Backends
    ledger_backend: str = "memory"  # memory, sql
    sample_store_backend: str = "memory"  # memory, sql
    alert_store_backend: str = "memory"  # memory, redis

    # Scoring thresholds
    view_like_ratio: float = 10.0
    view_comment_ratio: float = 100.0
    spike_percentage: float = 500.0
    spike_time_window_seconds: int = 300
    analysis_window_seconds: int = 600
    timing_cv_threshold: float = 0.05

    # Scoring penalties (tunable defaults, not business rules)
    view_like_penalty: int = 30
    view_comment_penalty: int = 25
    zero_engagement_penalty: int = 60
    spike_base_penalty: int = 45
    spike_max_penalty: int = 60
    timing_penalty: int = 15
    velocity_pair_penalty: int = 10
    negative_delta_penalty: int = 5
    velocity_cap: int = 25

    # Confidence bands
    ban_threshold: int = 90
    warning_threshold: int = 50
    monitor_threshold: int = 20
    auto_execute: bool = True

    # Alerting
    alert_window_minutes: int = 60
    warning_alert_count: int = 5
    monitor_alert_count: int = 10
    critical_bot_score: int = 90
    alert_retention_hours: int = 24 * 7
    alert_store_max_retries: int = 2
    alert_store_backoff_seconds: float = 0.1

    # Delivery
    channel_timeout_seconds: float = 10.0
    channel_max_retries: int = 3
    channel_retry_backoff_seconds: float = 0.5
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    dashboard_feed_size: int = 500

    # Ledger
    ledger_max_retries: int = 3
    ledger_retry_backoff_seconds: float = 0.2
    ledger_pending_limit: int = 10_000
    history_limit: int = 100

    # Workers
    analysis_shards: int = 4
    io_workers: int = 4

    # Retention
    sample_retention_hours: int = 24

    # Reports
    report_path: str = "./reports/bot-detection"

    @property
    def database_url_computed(self) -> str:
        """Compute database URL if not explicitly set."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{self.sqlite_path}"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() in ("development", "dev", "test")

    def scoring_config(self):
        from promoguard_engine.scoring.config import ScoringConfig

        return ScoringConfig(
            view_like_ratio=self.view_like_ratio,
            view_comment_ratio=self.view_comment_ratio,
            spike_percentage=self.spike_percentage,
            spike_time_window_seconds=self.spike_time_window_seconds,
            analysis_window_seconds=self.analysis_window_seconds,
            timing_cv_threshold=self.timing_cv_threshold,
            view_like_penalty=self.view_like_penalty,
            view_comment_penalty=self.view_comment_penalty,
            zero_engagement_penalty=self.zero_engagement_penalty,
            spike_base_penalty=self.spike_base_penalty,
            spike_max_penalty=self.spike_max_penalty,
            timing_penalty=self.timing_penalty,
            velocity_pair_penalty=self.velocity_pair_penalty,
            negative_delta_penalty=self.negative_delta_penalty,
            velocity_cap=self.velocity_cap,
        )

    def action_thresholds(self):
        from promoguard_engine.policy.engine import ActionThresholds

        return ActionThresholds(
            ban=self.ban_threshold,
            warning=self.warning_threshold,
            monitor=self.monitor_threshold,
        )

    def alert_policy(self):
        from promoguard_engine.alerts.dispatcher import AlertPolicy

        return AlertPolicy(
            window_minutes=self.alert_window_minutes,
            warning_alert_count=self.warning_alert_count,
            monitor_alert_count=self.monitor_alert_count,
            critical_bot_score=self.critical_bot_score,
            store_max_retries=self.alert_store_max_retries,
            store_backoff_seconds=self.alert_store_backoff_seconds,
        )

    def delivery_policy(self):
        from promoguard_engine.alerts.dispatcher import DeliveryPolicy

        return DeliveryPolicy(
            timeout_seconds=self.channel_timeout_seconds,
            max_retries=self.channel_max_retries,
            backoff_seconds=self.channel_retry_backoff_seconds,
        )

    def ledger_policy(self):
        from promoguard_engine.ledger.service import LedgerPolicy

        return LedgerPolicy(
            max_retries=self.ledger_max_retries,
            backoff_seconds=self.ledger_retry_backoff_seconds,
            pending_limit=self.ledger_pending_limit,
            history_limit=self.history_limit,
        )

    def validate_production_settings(self):
        """Validate settings for production environment."""
        if self.is_development:
            return
        if self.ledger_backend == "memory":
            raise ValueError(
                "LEDGER_BACKEND=memory is not allowed in production. "
                "Use LEDGER_BACKEND=sql."
            )
        if self.alert_store_backend == "memory" and self.analysis_shards > 1:
            raise ValueError(
                "ALERT_STORE_BACKEND=memory cannot be shared across worker processes. "
                "Use ALERT_STORE_BACKEND=redis."
            )
        if self.webhook_url and not self.webhook_secret:
            raise ValueError("WEBHOOK_SECRET is required when WEBHOOK_URL is set.")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
