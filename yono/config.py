from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List, Optional


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./yono.db",
        alias="DATABASE_URL"
    )

    # Which row store backs the engine: "sql" (SQLAlchemy) or "supabase" (PostgREST)
    data_store_backend: str = Field(default="sql", alias="DATA_STORE_BACKEND")

    # Supabase REST (server-side only, service role key must never reach a browser)
    supabase_url: str = Field(default="", alias="SUPABASE_URL")
    supabase_service_role_key: str = Field(default="", alias="SUPABASE_SERVICE_ROLE_KEY")

    # Security
    secret_key: str = Field(default="dev-secret-key-at-least-32-characters-long-for-development", alias="SECRET_KEY")
    algorithm: str = "HS256"
    internal_api_token: str = Field(default="", alias="INTERNAL_API_TOKEN")

    # CORS - Frontend URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        alias="ALLOWED_ORIGINS"
    )

    # ==============================================
    # Payments
    # ==============================================
    # Provider used when creating new payment intents
    payment_provider: str = Field(default="manual", alias="PAYMENT_PROVIDER")

    # Provider assumed for webhook deliveries that do not name one
    default_webhook_provider: str = Field(default="razorpay", alias="DEFAULT_WEBHOOK_PROVIDER")

    # Webhook secrets. Provider-specific secrets fall back to the generic one.
    payment_webhook_secret: str = Field(default="", alias="PAYMENT_WEBHOOK_SECRET")
    razorpay_webhook_secret: str = Field(default="", alias="RAZORPAY_WEBHOOK_SECRET")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")

    # Razorpay API credentials
    razorpay_key_id: str = Field(default="", alias="RAZORPAY_KEY_ID")
    razorpay_key_secret: str = Field(default="", alias="RAZORPAY_KEY_SECRET")
    razorpay_base_url: str = Field(default="https://api.razorpay.com/v1", alias="RAZORPAY_BASE_URL")

    # ==============================================
    # Timeouts (seconds, not minutes)
    # ==============================================
    http_timeout_seconds: float = Field(default=8.0, alias="HTTP_TIMEOUT_SECONDS")
    store_timeout_seconds: float = Field(default=5.0, alias="STORE_TIMEOUT_SECONDS")
    webhook_lock_timeout_seconds: float = Field(default=3.0, alias="WEBHOOK_LOCK_TIMEOUT_SECONDS")

    # In-process guard for duplicate webhook deliveries (seconds)
    webhook_inflight_ttl_seconds: int = Field(default=300, alias="WEBHOOK_INFLIGHT_TTL_SECONDS")
    # A ledger row left "processing" this long is treated as abandoned
    webhook_processing_stale_seconds: int = Field(default=600, alias="WEBHOOK_PROCESSING_STALE_SECONDS")

    # Rate limiting: "memory://" for a single instance, "redis://..." when scaled out
    rate_limit_storage_uri: str = Field(default="memory://", alias="RATE_LIMIT_STORAGE_URI")
    webhook_rate_limit: str = Field(default="120/minute", alias="WEBHOOK_RATE_LIMIT")

    # Automation retry worker
    automation_retry_max_attempts: int = Field(default=3, alias="AUTOMATION_RETRY_MAX_ATTEMPTS")
    automation_retry_batch_size: int = Field(default=10, alias="AUTOMATION_RETRY_BATCH_SIZE")

    # Health: a payment webhook heartbeat older than this is "stale"
    webhook_heartbeat_stale_minutes: int = Field(default=60, alias="WEBHOOK_HEARTBEAT_STALE_MINUTES")

    @field_validator('secret_key')
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        """Validate SECRET_KEY is strong enough"""
        if not v:
            raise ValueError("SECRET_KEY is required and cannot be empty")
        if len(v) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def has_supabase_config(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_role_key)

    @property
    def has_razorpay_config(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)

    def webhook_secret_for(self, provider: str) -> Optional[str]:
        """Secret used to verify webhooks from the given provider."""
        provider = (provider or "").lower()
        if provider == "razorpay":
            return self.razorpay_webhook_secret or self.payment_webhook_secret or None
        if provider == "stripe":
            return self.stripe_webhook_secret or self.payment_webhook_secret or None
        return self.payment_webhook_secret or None

    @property
    def cors_origins(self) -> List[str]:
        """
        Parse allowed origins from comma-separated string.
        Returns a list suitable for CORSMiddleware.
        """
        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)
        return origins or ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
