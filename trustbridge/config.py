"""Application configuration."""

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


MIN_BCRYPT_ROUNDS = 12


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="TrustBridge Health API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")

    # Redis
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_decode_responses: bool = Field(default=True, alias="REDIS_DECODE_RESPONSES")

    # Session tokens
    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    session_token_expire_days: int = Field(default=7, alias="SESSION_TOKEN_EXPIRE_DAYS")
    session_cookie_name: str = Field(default="token", alias="SESSION_COOKIE_NAME")
    session_cookie_secure: bool = Field(default=True, alias="SESSION_COOKIE_SECURE")

    # Passwords
    bcrypt_rounds: int = Field(default=12, ge=4, le=31, alias="BCRYPT_ROUNDS")

    # Account lockout (per account, independent of client IP)
    max_login_attempts: int = Field(default=5, ge=1, alias="MAX_LOGIN_ATTEMPTS")
    lockout_minutes: int = Field(default=15, ge=1, alias="LOCKOUT_MINUTES")

    # Two-factor authentication
    totp_issuer: str = Field(default="TrustBridge Health", alias="TOTP_ISSUER")
    # Accepted drift in 30 second steps on either side of the current step
    totp_valid_window: int = Field(default=2, ge=0, alias="TOTP_VALID_WINDOW")
    backup_code_count: int = Field(default=10, ge=1, alias="BACKUP_CODE_COUNT")

    # Rate limiting
    rate_limit_backend: str = Field(default="memory", alias="RATE_LIMIT_BACKEND")
    login_rate_limit: int = Field(default=30, alias="LOGIN_RATE_LIMIT")
    login_rate_window_seconds: int = Field(default=900, alias="LOGIN_RATE_WINDOW_SECONDS")
    two_factor_rate_limit: int = Field(default=10, alias="TWO_FACTOR_RATE_LIMIT")
    two_factor_rate_window_seconds: int = Field(
        default=300, alias="TWO_FACTOR_RATE_WINDOW_SECONDS"
    )

    # Object storage
    s3_bucket: str = Field(default="trustbridge-health-files", alias="S3_BUCKET")
    s3_region: str = Field(default="us-east-2", alias="S3_REGION")
    s3_endpoint_url: str | None = Field(default=None, alias="S3_ENDPOINT_URL")
    s3_access_key_id: str | None = Field(default=None, alias="S3_ACCESS_KEY_ID")
    s3_secret_access_key: str | None = Field(default=None, alias="S3_SECRET_ACCESS_KEY")
    presigned_url_expire_seconds: int = Field(default=3600, alias="PRESIGNED_URL_EXPIRE_SECONDS")

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @property
    def uses_redis(self) -> bool:
        """Whether rate-limit counters live in Redis."""
        return self.rate_limit_backend.lower() == "redis"

    @property
    def is_testing(self) -> bool:
        """Check if running under the test suite."""
        return self.environment.lower() == "test"

    @model_validator(mode="after")
    def check_bcrypt_cost(self) -> "Settings":
        """Low bcrypt costs are only for fast test runs."""
        if self.bcrypt_rounds < MIN_BCRYPT_ROUNDS and not self.is_testing:
            raise ValueError(
                f"BCRYPT_ROUNDS must be at least {MIN_BCRYPT_ROUNDS} outside the test environment"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
