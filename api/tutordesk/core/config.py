from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "tutordesk-api"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    database_command_timeout_seconds: float = 15.0
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    auth_timeout_seconds: float = 5.0
    notification_feed_limit: int = 5
    conversation_page_size: int = 50
    response_time_sample_size: int = 100
    realtime_enabled: bool = True
    realtime_channel: str = "tutordesk_changes"
    realtime_reconnect_initial_seconds: float = 0.5
    realtime_reconnect_max_seconds: float = 30.0
    otel_enabled: bool = True
    otel_service_name: str = "tutordesk-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="TD_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
