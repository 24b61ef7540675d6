"""Process configuration for the URL shortener service.

Every knob is an environment variable (case-sensitive, optionally read from
``.env``) parsed once into a ``Settings`` instance. ``get_settings()`` is
``lru_cache``d, so tests that need different values build a copy with
``settings.model_copy(update={...})`` instead of mutating the shared one.

Groups:
    Durable store:  ``DATABASE_*``
    Cache:  ``CACHE_*``, ``REDIS_URL``, ``HIT_DELTA_KEY_PREFIX``
    Short codes:  ``SHORT_CODE_LENGTH``, ``CODE_GENERATION_MAX_ATTEMPTS``
    Write-back:  ``HIT_FLUSH_INTERVAL_SECONDS``
    Identity:  ``JWT_*``, ``ACCESS_TOKEN_*``
"""

__all__ = ["CacheBackend", "Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from shortener.enums import CacheBackend


class Settings(BaseSettings):
    APP_NAME: str = "url-shortener"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Durable store
    DATABASE_URL: str = "postgresql+asyncpg://urlshortener:urlshortener@db:5432/urlshortener"
    DATABASE_TIMEOUT_SECONDS: float = 2.0
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Cache
    CACHE_BACKEND: CacheBackend = CacheBackend.REDIS
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_TTL_SECONDS: int = 3600
    CACHE_TIMEOUT_SECONDS: float = 0.5
    CACHE_MAX_ENTRIES: int = 100_000
    CACHE_KEY_PREFIX: str = "url"
    HIT_DELTA_KEY_PREFIX: str = "hits"
    CACHE_WARM_ON_CREATE: bool = True
    TOMBSTONE_KEY_PREFIX: str = "tomb"
    DELETE_TOMBSTONE_TTL_SECONDS: int = 300

    # Short code generation
    SHORT_CODE_LENGTH: int = 8
    CODE_GENERATION_MAX_ATTEMPTS: int = 5

    # Hit write-back
    HIT_FLUSH_INTERVAL_SECONDS: float = 5.0

    # Identity collaborator
    JWT_KEY: str = "testKey"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_COOKIE: str = "accessToken"
    ACCESS_TOKEN_TTL_SECONDS: int = 86400

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
