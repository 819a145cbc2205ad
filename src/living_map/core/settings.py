"""Application settings and configuration.

This module defines all configuration options for the Living Map core.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Living Map Core", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    # Security and authentication
    secret_key: str = Field(alias="SECRET_KEY")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./living_map.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # JWT authentication settings
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 30,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )

    # Viewport engine
    viewport_padding_ratio: float = Field(default=0.2, alias="VIEWPORT_PADDING_RATIO")
    viewport_default_limit: int = Field(default=500, alias="VIEWPORT_DEFAULT_LIMIT")
    viewport_max_limit: int = Field(default=2000, alias="VIEWPORT_MAX_LIMIT")
    cluster_cell_size: float = Field(default=0.01, alias="CLUSTER_CELL_SIZE")
    cluster_max_individual: int = Field(default=200, alias="CLUSTER_MAX_INDIVIDUAL")
    density_grid_size: float = Field(default=0.1, alias="DENSITY_GRID_SIZE")
    connection_strength_half_life_days: float = Field(
        default=30.0,
        alias="CONNECTION_STRENGTH_HALF_LIFE_DAYS",
    )

    # Memorial connections keep a legacy expiry stamp for older clients only.
    legacy_connection_ttl_days: int = Field(default=365, alias="LEGACY_CONNECTION_TTL_DAYS")

    # Notification fanout
    notification_cooldown_minutes: int = Field(default=60, alias="NOTIFICATION_COOLDOWN_MINUTES")
    notification_radius_km_default: float = Field(
        default=48.28,
        alias="NOTIFICATION_RADIUS_KM_DEFAULT",
    )
    fanout_batch_cap: int = Field(default=100, alias="FANOUT_BATCH_CAP")
    notification_preview_chars: int = Field(default=100, alias="NOTIFICATION_PREVIEW_CHARS")
    notification_retention_days: int = Field(default=90, alias="NOTIFICATION_RETENTION_DAYS")

    # Prayer lifecycle
    prayer_expiration_days: int = Field(default=30, alias="PRAYER_EXPIRATION_DAYS")

    # Retry queue
    queue_max_retries: int = Field(default=3, alias="QUEUE_MAX_RETRIES")
    queue_stale_timeout_minutes: int = Field(default=30, alias="QUEUE_STALE_TIMEOUT_MINUTES")
    queue_batch_size: int = Field(default=10, alias="QUEUE_BATCH_SIZE")
    queue_poll_interval_seconds: float = Field(default=2.0, alias="QUEUE_POLL_INTERVAL_SECONDS")

    # CORS configuration for the map client
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()  # type: ignore[call-arg]
