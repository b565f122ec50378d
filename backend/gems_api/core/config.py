from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    env: Literal["local", "prod", "test"] = Field(default="local", alias="ENV")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    db_url: str = Field(
        default="sqlite+aiosqlite:///./gems.db",
        alias="DATABASE_URL",
    )

    jwt_secret_key: str = Field(default="secret-key-change-me", alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(default=60 * 24, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    admin_username: str = Field(default="admin", alias="ADMIN_USERNAME")
    admin_password_hash: str | None = Field(default=None, alias="ADMIN_PASSWORD_HASH")

    # Object store credentials are validated on first authorization, not at load time.
    b2_key_id: str | None = Field(default=None, alias="B2_APPLICATION_KEY_ID")
    b2_application_key: str | None = Field(default=None, alias="B2_APPLICATION_KEY")
    b2_bucket_id: str | None = Field(default=None, alias="B2_BUCKET_ID")
    b2_bucket_name: str | None = Field(default=None, alias="B2_BUCKET_NAME")
    b2_bucket_url: str | None = Field(default=None, alias="B2_BUCKET_URL")
    b2_api_url: str = Field(default="https://api.backblazeb2.com", alias="B2_API_URL")
    b2_timeout_seconds: float = Field(default=8.0, alias="B2_TIMEOUT_SECONDS")

    image_max_bytes: int = Field(default=10 * 1024 * 1024, alias="IMAGE_MAX_BYTES")
    image_cleanup_on_failure: bool = Field(default=False, alias="IMAGE_CLEANUP_ON_FAILURE")
    max_parallel_cleanups: int = Field(default=2, alias="MAX_PARALLEL_CLEANUPS")


@lru_cache
def get_settings() -> Settings:
    return Settings()
