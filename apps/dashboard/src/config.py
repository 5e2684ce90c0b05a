from pathlib import Path
from typing import List, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Load apps/dashboard/.env and accept env keys in any case
    _env_file = Path(__file__).resolve().parent.parent / ".env"
    model_config = SettingsConfigDict(env_file=str(_env_file), extra="ignore", case_sensitive=False)

    app_name: str = "Solar Telemetry Dashboard"
    app_version: str = "0.1.0"
    debug: bool = True
    environment: Literal["development", "production", "test"] = "development"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    port: int = 8000
    site_url: str = Field(
        default="http://localhost:3000",
        description="Public origin used when building links in account emails.",
    )

    # Document store
    telemetry_backend: Literal["mongo", "memory", "none"] = Field(
        default="mongo",
        description="Where telemetry is persisted. 'none' serves demo data only.",
    )
    mongodb_uri: str | None = Field(default=None, description="MongoDB connection string.")
    mongodb_db: str = Field(default="solar", min_length=1)
    telemetry_collection: str = Field(default="telemetry", min_length=1)
    mongodb_timeout_ms: int = Field(
        default=3000,
        ge=100,
        description="Server selection and socket timeout for MongoDB calls.",
    )

    # Hardware ingestion
    ingest_api_key: str | None = Field(
        default=None,
        min_length=16,
        description="Shared secret expected in the X-API-Key header. Unset disables ingestion.",
    )
    rate_limit_window_seconds: float = Field(default=60.0, gt=0.0)
    rate_limit_max_requests: int = Field(default=120, ge=1)

    # Demo telemetry
    demo_timezone: str = Field(default="UTC", description="IANA zone used for hour-of-day and hourly buckets.")
    demo_midday_hour: float = Field(default=12.0, ge=0.0, lt=24.0)
    demo_profile: Literal["small", "large"] = "small"
    demo_device_id: str = Field(default="demo-device", min_length=1, max_length=50)

    # Sessions
    auth_jwt_secret: str = Field(default="dev-only-change-me", min_length=8)
    auth_jwt_issuer: str = "solar-dashboard"
    auth_jwt_audience: str = "solar-dashboard-web"
    auth_jwt_algorithm: str = "HS256"
    auth_access_token_ttl_seconds: int = Field(default=3600, ge=60)
    session_cookie_name: str = "solar_session"
    dev_admin_auth: bool = Field(default=False, description="Allow admin/admin dev login outside production.")
    password_reset_ttl_seconds: int = Field(default=3600, ge=60)
    demo_user_email: str = "operator@example.com"
    demo_user_password: str = Field(default="solar-demo-2024", min_length=8)

    # Account email delivery
    mail_webhook_url: str | None = Field(
        default=None,
        description="Optional webhook endpoint that receives verification and reset links.",
    )
    mail_smtp_host: str | None = Field(default=None, description="SMTP server for account emails.")
    mail_smtp_port: int = Field(default=587)
    mail_smtp_username: str | None = None
    mail_smtp_password: str | None = None
    mail_smtp_tls: bool = True
    mail_from: str | None = Field(default=None, description="Sender address for account emails.")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def normalize_cors(cls, v):
        if isinstance(v, str):
            s = v.strip()
            if s.startswith("["):
                import json
                return json.loads(s)
            if s in ("", "*"):
                return ["*"]
            return [p.strip() for p in s.split(",")]
        return v

    @field_validator("ingest_api_key", "mongodb_uri", "mail_webhook_url", "mail_smtp_host", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def production(self) -> bool:
        return self.environment == "production"

settings = Settings()
