from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    debug: bool = False
    log_level: str | None = None
    sql_echo: bool = False
    app_name: str = "Campus Market"
    api_v1_prefix: str = "/v1"
    database_url: str = "sqlite:///./campus_market.db"

    secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 30

    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173", "http://localhost:8080"])
    admin_emails: list[str] = Field(default_factory=list)

    message_max_length: int = 2000
    auth_rate_limit_window_seconds: int = 60
    auth_rate_limit_max_requests: int = 12

    ws_heartbeat_sec: int = 25
    ws_idle_timeout_sec: int = 90
    ws_rate_limit_window_sec: int = 10
    ws_rate_limit_max_commands: int = 30
    ws_max_command_bytes: int = 4096
    ws_max_subscriptions_per_connection: int = 8

    realtime_dispatcher_enabled: bool = True
    realtime_dispatcher_poll_ms: int = 50
    realtime_dispatcher_batch_size: int = 100

    read_sync_max_attempts: int = 3
    read_sync_base_delay_sec: float = 0.5
    read_sync_max_delay_sec: float = 5.0

    @field_validator("cors_origins", "admin_emails", mode="before")
    @classmethod
    def parse_csv_list(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return []


@lru_cache
def get_settings() -> Settings:
    return Settings()
