"""Application settings and configuration.

This module defines all configuration options for the HireChat sync service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files. The
    chat integration stays disabled unless every required chat value is set.
    """

    # Application metadata
    app_name: str = Field(default="HireChat Sync", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./hirechat.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Remote chat server integration
    chat_enabled: bool = Field(default=False, alias="CHAT_ENABLED")
    chat_base_url: str | None = Field(default=None, alias="CHAT_BASE_URL")
    chat_server_name: str | None = Field(default=None, alias="CHAT_SERVER_NAME")
    chat_admin_token: str | None = Field(default=None, alias="CHAT_ADMIN_TOKEN")
    # 32-byte AES key, base64 or hex encoded. Never derived from user input.
    chat_encryption_key: str | None = Field(default=None, alias="CHAT_ENCRYPTION_KEY")
    chat_http_timeout_seconds: float = Field(
        default=10.0,
        alias="CHAT_HTTP_TIMEOUT_SECONDS",
    )
    chat_max_retries: int = Field(default=3, alias="CHAT_MAX_RETRIES")
    chat_retry_base_delay_seconds: float = Field(
        default=1.0,
        alias="CHAT_RETRY_BASE_DELAY_SECONDS",
    )
    chat_room_alias_prefix: str = Field(default="job", alias="CHAT_ROOM_ALIAS_PREFIX")
    chat_circuit_failure_threshold: int = Field(
        default=5,
        alias="CHAT_CIRCUIT_FAILURE_THRESHOLD",
    )
    chat_circuit_recovery_seconds: float = Field(
        default=60.0,
        alias="CHAT_CIRCUIT_RECOVERY_SECONDS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()
