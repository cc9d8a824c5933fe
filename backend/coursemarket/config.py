from decimal import Decimal
from urllib.parse import urlparse

from pydantic import AliasChoices, AnyUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _cors_origin_from_url(value: str | None) -> str | None:
    if not value:
        return None
    raw = value.strip()
    if not raw:
        return None
    parsed = urlparse(raw)
    scheme = (parsed.scheme or "").lower().strip()
    if scheme not in {"http", "https"}:
        return None
    hostname = (parsed.hostname or "").strip()
    if not hostname:
        return None
    port = parsed.port
    if port and not ((scheme == "http" and port == 80) or (scheme == "https" and port == 443)):
        return f"{scheme}://{hostname}:{port}"
    return f"{scheme}://{hostname}"


# Stripe charges these in whole units; course prices are stored the same way.
ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
        "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
    }
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", "../.env"), extra="ignore")

    database_url: AnyUrl | None = None
    supabase_db_url: AnyUrl | None = None
    supabase_url: AnyUrl | None = None
    supabase_jwks_url: AnyUrl | None = Field(
        default=None, validation_alias=AliasChoices("SUPABASE_JWKS_URL")
    )
    supabase_jwt_issuer: str | None = Field(
        default=None, validation_alias=AliasChoices("SUPABASE_JWT_ISSUER")
    )
    supabase_service_role_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SECRET_API_KEY"),
    )
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    frontend_base_url: str | None = "http://localhost:3000"

    # Payment gateway (Stripe Checkout)
    stripe_secret_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "STRIPE_SECRET_KEY",
            "STRIPE_TEST_SECRET_KEY",
            "STRIPE_LIVE_SECRET_KEY",
        ),
    )
    stripe_webhook_secret: str | None = Field(
        default=None,
        validation_alias=AliasChoices("STRIPE_WEBHOOK_SECRET", "STRIPE_TEST_WEBHOOK_SECRET"),
    )
    checkout_currency: str = "krw"
    checkout_success_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CHECKOUT_SUCCESS_URL", "STRIPE_CHECKOUT_SUCCESS_URL"),
    )
    checkout_cancel_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CHECKOUT_CANCEL_URL", "STRIPE_CHECKOUT_CANCEL_URL"),
    )

    # Video host (Cloudflare Stream)
    cf_account_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CLOUDFLARE_ACCOUNT_ID", "CF_ACCOUNT_ID"),
    )
    cf_api_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CLOUDFLARE_API_TOKEN", "CF_API_TOKEN"),
    )
    cf_stream_key_id: str | None = None
    cf_stream_signing_key: str | None = None
    cf_stream_customer_subdomain: str | None = None
    cf_api_base_url: str = "https://api.cloudflare.com/client/v4"
    playback_token_mode: str = "signing_key"
    playback_token_ttl_seconds: int = 3600
    video_host_timeout_seconds: float = 10.0

    # E-book files (Supabase Storage, private bucket)
    ebook_files_bucket: str = "ebook-files"
    ebook_download_ttl_seconds: int = 300
    storage_timeout_seconds: float = 10.0

    # Commerce rules
    platform_commission_rate: Decimal = Field(
        default=Decimal("0.30"),
        validation_alias=AliasChoices("PLATFORM_COMMISSION_RATE", "COMMISSION_RATE"),
    )
    course_tags_min: int = 1
    course_tags_max: int = 5
    reporting_timezone: str = "Asia/Seoul"

    cors_allow_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    cors_allow_origin_regex: str | None = r"http://(localhost|127\.0\.0\.1)(:\d+)?"
    sentry_dsn: str | None = Field(
        default=None, validation_alias=AliasChoices("SENTRY_DSN", "BACKEND_SENTRY_DSN")
    )
    sentry_traces_sample_rate: float = 0.0

    @model_validator(mode="after")
    def _populate_database_url(self):
        if self.database_url is None:
            if self.supabase_db_url is None:
                raise ValueError("DATABASE_URL or SUPABASE_DB_URL is required")
            self.database_url = self.supabase_db_url

        if self.course_tags_min > self.course_tags_max:
            raise ValueError("COURSE_TAGS_MIN must not exceed COURSE_TAGS_MAX")

        frontend_origin = _cors_origin_from_url(self.frontend_base_url)
        if frontend_origin:
            existing = {origin.strip().lower() for origin in self.cors_allow_origins if origin}
            if frontend_origin.strip().lower() not in existing:
                self.cors_allow_origins.append(frontend_origin)

        return self

    @field_validator("platform_commission_rate")
    @classmethod
    def _check_commission_rate(cls, value: Decimal) -> Decimal:
        if value < 0 or value > 1:
            raise ValueError("platform commission rate must be between 0 and 1")
        return value

    @field_validator("checkout_currency")
    @classmethod
    def _check_currency(cls, value: str) -> str:
        normalized = (value or "").strip().lower()
        if normalized not in ZERO_DECIMAL_CURRENCIES:
            raise ValueError(
                "CHECKOUT_CURRENCY must be a zero-decimal currency (prices are whole units)"
            )
        return normalized

    @field_validator("playback_token_mode")
    @classmethod
    def _check_token_mode(cls, value: str) -> str:
        normalized = (value or "").strip().lower()
        if normalized not in {"signing_key", "api"}:
            raise ValueError("PLAYBACK_TOKEN_MODE must be 'signing_key' or 'api'")
        return normalized

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


settings = Settings()
