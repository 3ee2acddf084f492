from typing import List, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # API Configuration
    api_v1_prefix: str = Field(default="/api/v1")
    api_title: str = Field(default="Seller Onboarding API")
    api_version: str = Field(default="1.0.0")
    port: int = Field(default=8000)
    log_level: str = Field(default="INFO")
    environment: str = Field(default="development")

    # Supabase (identity, document store, storage)
    supabase_url: str = Field(default="http://localhost:54321")
    supabase_anon_key: str = Field(default="")
    supabase_service_key: str = Field(default="")

    # Document store
    sellers_collection: str = Field(default="sellers")

    # Blob storage
    storage_bucket: str = Field(default="seller-documents")
    # Supabase resumable uploads only accept 6 MiB chunks
    upload_chunk_size: int = Field(default=6 * 1024 * 1024)
    upload_stream_block_size: int = Field(default=256 * 1024)
    upload_max_resume_attempts: int = Field(default=3)
    upload_timeout_seconds: float = Field(default=300.0)

    # Onboarding sessions with nothing in flight are dropped after this long unused
    onboarding_session_idle_seconds: float = Field(default=1800.0)

    # KYC document constraints
    max_document_size: int = Field(default=5 * 1024 * 1024)
    allowed_document_types: Union[str, List[str]] = Field(
        default="application/pdf,image/jpeg,image/jpg,image/png"
    )

    # CORS
    cors_origins: Union[str, List[str]] = Field(default="http://localhost:5173")
    cors_allow_credentials: bool = Field(default=True)

    # Rate Limiting
    rate_limit_requests: int = Field(default=100)
    rate_limit_auth_requests: int = Field(default=5)
    rate_limit_auth_period: int = Field(default=60)

    # Sentry (optional, disabled if empty)
    sentry_dsn: str = Field(default="")

    @field_validator("cors_origins", "allowed_document_types", mode="before")
    @classmethod
    def parse_comma_separated(cls, v):
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v


settings = Settings()
