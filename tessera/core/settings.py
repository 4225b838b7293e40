"""Application settings loaded from environment variables."""

from datetime import timedelta

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ACCESS_TOKEN_TTL_DEFAULT = 900
CLOCK_SKEW_DEFAULT = 30
KEY_ROTATION_GRACE_DEFAULT = 3600
JWKS_MAX_AGE_DEFAULT = 300
RETIRE_CHECK_INTERVAL_DEFAULT = 60
JWKS_CACHE_TTL_DEFAULT = 300
JWKS_FETCH_TIMEOUT_DEFAULT = 5.0
JWKS_FETCH_ATTEMPTS_DEFAULT = 3
JWKS_RETRY_BACKOFF_DEFAULT = 0.5
JWKS_REFRESH_MIN_INTERVAL_DEFAULT = 10.0
DB_POOL_SIZE_DEFAULT = 5
DB_MAX_OVERFLOW_DEFAULT = 10
DB_PORT_DEFAULT = 5432


class DatabaseSettings(BaseSettings):
    """Database holding the encrypted signing keys.

    ``url`` overrides the PostgreSQL parts when set, e.g. for SQLite.
    """

    model_config = SettingsConfigDict(env_prefix="AUTH_DB_")

    url: str = ""
    host: str = "localhost"
    port: int = DB_PORT_DEFAULT
    user: str = "tessera"
    password: str = "tessera"
    database: str = "tessera"
    pool_size: int = DB_POOL_SIZE_DEFAULT
    max_overflow: int = DB_MAX_OVERFLOW_DEFAULT

    @property
    def async_url(self) -> str:
        """Build async PostgreSQL connection URL."""
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )


class IssuerSettings(BaseSettings):
    """Authentication service settings: issuance, rotation, and publication."""

    model_config = SettingsConfigDict(env_prefix="AUTH_")

    issuer_url: str = "http://localhost:8000"
    access_token_ttl: int = ACCESS_TOKEN_TTL_DEFAULT
    clock_skew: int = CLOCK_SKEW_DEFAULT
    key_rotation_grace: int = KEY_ROTATION_GRACE_DEFAULT
    jwks_max_age: int = JWKS_MAX_AGE_DEFAULT
    retire_check_interval: int = RETIRE_CHECK_INTERVAL_DEFAULT
    signing_key_encryption_key: str = ""
    admin_token: str = ""
    log_level: str = "info"
    log_json: bool = True

    @model_validator(mode="after")
    def _check_lifetimes(self) -> "IssuerSettings":
        if self.access_token_ttl <= 0:
            raise ValueError("access_token_ttl must be positive")
        if self.clock_skew < 0:
            raise ValueError("clock_skew must not be negative")
        if self.key_rotation_grace < self.access_token_ttl + self.clock_skew:
            raise ValueError(
                "key_rotation_grace must cover access_token_ttl + clock_skew"
            )
        return self

    @property
    def token_lifetime(self) -> timedelta:
        return timedelta(seconds=self.access_token_ttl)

    @property
    def grace_period(self) -> timedelta:
        return timedelta(seconds=self.key_rotation_grace)

    @property
    def persists_keys(self) -> bool:
        """Keys are written to the database only when they can be encrypted."""
        return bool(self.signing_key_encryption_key)


class ResourceSettings(BaseSettings):
    """Resource service settings: key-set fetching and role policies."""

    model_config = SettingsConfigDict(env_prefix="RESOURCE_")

    jwks_url: str = "http://localhost:8000/.well-known/jwks.json"
    expected_issuer: str = "http://localhost:8000"
    clock_skew: int = CLOCK_SKEW_DEFAULT
    jwks_cache_ttl: int = JWKS_CACHE_TTL_DEFAULT
    jwks_fetch_timeout: float = JWKS_FETCH_TIMEOUT_DEFAULT
    jwks_fetch_attempts: int = JWKS_FETCH_ATTEMPTS_DEFAULT
    jwks_retry_backoff: float = JWKS_RETRY_BACKOFF_DEFAULT
    jwks_refresh_min_interval: float = JWKS_REFRESH_MIN_INTERVAL_DEFAULT
    role_policies: dict[str, list[str]] = {}
    log_level: str = "info"
    log_json: bool = True

    @property
    def skew(self) -> timedelta:
        return timedelta(seconds=self.clock_skew)
