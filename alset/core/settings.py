"""
Application settings and configuration management.
"""
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Supabase Configuration
    supabase_url: str
    supabase_anon_key: str
    supabase_service_role_key: str
    supabase_jwt_secret: str

    # Database (used by the SQL credit store)
    database_url: str

    # Credit ledger
    credit_store_backend: str = "supabase"  # "supabase" or "sql"
    credit_store_timeout_seconds: float = 5.0
    credit_store_max_attempts: int = 3
    credit_store_retry_delays: str = "0.1,0.5"
    signup_grant_credits: int = 5

    # Property lookup (RapidAPI / Zillow)
    rapidapi_key: str = ""
    rapidapi_host: str = "zillow56.p.rapidapi.com"
    property_lookup_timeout_seconds: float = 10.0

    # Application Settings
    environment: str = "development"
    app_version: str = "1.0.0"

    # CORS Settings
    allowed_origins: str = "http://localhost:3000"

    # Logging
    log_level: str = "INFO"

    # Monitoring & Observability
    sentry_dsn: str = ""
    sentry_traces_sample_rate: float = 0.1
    sentry_profiles_sample_rate: float = 0.1
    release_version: str = "v1.0.0"
    enable_metrics: bool = True

    # Rate Limiting
    enable_rate_limiting: bool = True
    rate_limit_storage_uri: str = "memory://"
    search_rate_limit: str = "30/minute"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    @field_validator("allowed_origins")
    def validate_origins(cls, v):
        """Convert comma-separated origins string to list."""
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    @field_validator("credit_store_retry_delays")
    def validate_retry_delays(cls, v):
        """Convert comma-separated delay string to list of seconds."""
        if not v:
            return [0.1, 0.5]
        return [float(delay.strip()) for delay in v.split(",")]

    @field_validator("credit_store_backend")
    def validate_store_backend(cls, v):
        """Only the Supabase RPC store and the SQL store are supported."""
        backend = v.strip().lower()
        if backend not in ("supabase", "sql"):
            raise ValueError(f"Unsupported credit store backend: {v}")
        return backend

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    def validate_production_config(self) -> List[str]:
        """Validate production configuration and return list of issues."""
        issues = []

        if self.is_production:
            if "localhost" in str(self.allowed_origins):
                issues.append("Localhost origins should be removed in production")

            if len(self.supabase_jwt_secret) < 32:
                issues.append("Supabase JWT secret should be at least 32 characters long")

            if not self.rapidapi_key:
                issues.append("RAPIDAPI_KEY must be set for smart searches")

            if self.credit_store_max_attempts < 1:
                issues.append("CREDIT_STORE_MAX_ATTEMPTS must be at least 1")

        return issues


# Global settings instance
settings = Settings()
