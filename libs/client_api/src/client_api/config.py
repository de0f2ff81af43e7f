"""Client configuration: per-client options and environment-backed settings."""

import logging
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from client_api.http.transport import RequestOptions
from client_api.retry import DEFAULT_RETRY_CONFIG, ErrorHandler, RetryConfig


class ClientApiOptions(BaseModel):
    """Options bound to one :class:`~client_api.operations.ClientApi`.

    Attributes:
        read_authenticated: Send single-item reads (``get``, ``one``) authenticated.
        all_authenticated: Send collection queries (``all``, ``find``,
            ``find_one``) authenticated.
        write_authenticated: Send mutations, actions and facets authenticated.
        retry_config: Base retry policy for every operation.
        error_handler: Called once per failed operation with the final error.
        get_options: Base options for GET requests.
        post_options: Base options for POST requests.
        put_options: Base options for PUT requests.
        delete_options: Base options for DELETE requests.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    read_authenticated: bool = False
    all_authenticated: bool = False
    write_authenticated: bool = True
    retry_config: RetryConfig = DEFAULT_RETRY_CONFIG
    error_handler: ErrorHandler | None = None
    get_options: RequestOptions = Field(default_factory=RequestOptions)
    post_options: RequestOptions = Field(default_factory=RequestOptions)
    put_options: RequestOptions = Field(default_factory=RequestOptions)
    delete_options: RequestOptions = Field(default_factory=RequestOptions)


class ClientApiSettings(BaseSettings):
    """Environment configuration for building clients (``CLIENT_API_*``)."""

    model_config = SettingsConfigDict(
        env_prefix="CLIENT_API_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    base_url: str = Field(
        default="http://localhost:3000", description="Base URL of the REST API"
    )
    request_timeout_s: float = Field(
        default=30.0, gt=0, description="Total timeout per HTTP request in seconds"
    )
    auth_token: str | None = Field(
        default=None, description="Static bearer token for authenticated requests"
    )

    read_authenticated: bool = Field(default=False)
    all_authenticated: bool = Field(default=False)
    write_authenticated: bool = Field(default=True)

    # Retry defaults
    retry_max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    retry_initial_delay_ms: int = Field(default=1000, gt=0)
    retry_max_delay_ms: int = Field(default=30000, gt=0)
    retry_backoff_multiplier: float = Field(default=2.0, gt=1.0)
    retry_enable_jitter: bool = Field(default=True)

    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    def to_retry_config(self) -> RetryConfig:
        """Build the retry policy described by these settings."""
        return RetryConfig.from_settings(self)

    def to_options(self, error_handler: ErrorHandler | None = None) -> ClientApiOptions:
        """Build client options from these settings.

        Args:
            error_handler: Optional final-failure handler to attach.

        Returns:
            Options with the configured auth flags, retry policy and timeout.
        """
        base = RequestOptions(timeout_s=self.request_timeout_s)
        return ClientApiOptions(
            read_authenticated=self.read_authenticated,
            all_authenticated=self.all_authenticated,
            write_authenticated=self.write_authenticated,
            retry_config=self.to_retry_config(),
            error_handler=error_handler,
            get_options=base,
            post_options=base,
            put_options=base,
            delete_options=base,
        )


@lru_cache
def get_settings() -> ClientApiSettings:
    """Get cached ClientApiSettings instance populated from environment variables.

    Environment variables are automatically read by Pydantic BaseSettings:
        CLIENT_API_BASE_URL (default: "http://localhost:3000")
        CLIENT_API_REQUEST_TIMEOUT_S (default: 30)
        CLIENT_API_AUTH_TOKEN (default: unset)
        CLIENT_API_RETRY_MAX_RETRIES (default: 3)
        CLIENT_API_RETRY_INITIAL_DELAY_MS, CLIENT_API_RETRY_MAX_DELAY_MS, ...
        CLIENT_API_LOG_LEVEL (default: "INFO")

    Returns:
        Cached ClientApiSettings instance.

    Note:
        Uses @lru_cache for singleton pattern. For testing, call
        get_settings.cache_clear() to reset the cache.
    """
    return ClientApiSettings()


def configure_logging(settings: ClientApiSettings) -> None:
    """Apply the settings' log level and format to the root logger."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level), format=settings.log_format
    )
