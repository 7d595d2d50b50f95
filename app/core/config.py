"""
Application configuration.
All settings are loaded from environment variables (or .env).
Defaults are safe for local development; payment keys must be set in production.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Paystack keys have no usable defaults - payments fail with
    ProviderInvocationError until they are set.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"

    # ===========================================
    # DATABASE
    # ===========================================
    database_url: str = "sqlite:///./entitlements.db"

    # ===========================================
    # REDIS (optional: shared circuit breaker state)
    # ===========================================
    redis_url: str = ""

    # ===========================================
    # PAYMENT PROVIDER
    # ===========================================
    payment_provider: str = "paystack"
    paystack_public_key: str = ""
    paystack_secret_key: str = ""
    paystack_api_url: str = "https://api.paystack.co"
    payment_currency: str = "NGN"
    # Multiplier major -> minor units (kobo, cents)
    payment_minor_unit_factor: int = 100
    payment_reference_prefix: str = "SUB"

    # ===========================================
    # PAYMENT RECONCILIATION
    # ===========================================
    # Poll verify(reference) every N seconds, up to M times (3s * 60 = 3 min)
    payment_poll_interval_seconds: float = 3.0
    payment_poll_max_attempts: int = 60
    # 0 = popup dismissal commits "cancelled" immediately (late poll success is dropped).
    # >0 = wait this long for a poll confirmation before committing the cancel.
    payment_dismiss_settle_seconds: float = 0.0

    # ===========================================
    # ENTITLEMENT POLICY
    # ===========================================
    # Fixed-length month: expiry = purchase + months * days_per_month days
    subscription_days_per_month: int = 30
    days_remaining_cap: int = 999
    # Python weekday(): Monday=0 ... Sunday=6. Empty = no free day.
    free_access_weekday: int | None = 6
    free_access_timezone: str = "UTC"
    # Comma-separated variant ids always available to free users
    free_variants: str = "asv"
    # Comma-separated feature ids that follow the free-day rule
    calendar_gated_features: str = "daily_content"
    # Path to YAML plan catalog. Empty = bundled app/paywall/catalog.yaml
    plan_catalog_path: str = ""

    # ===========================================
    # REMOTE SYNC (Supabase / PostgREST)
    # ===========================================
    remote_sync_url: str = ""
    remote_sync_api_key: str = ""
    remote_sync_table: str = "payments"

    # ===========================================
    # HTTP
    # ===========================================
    http_client_timeout: float = 10.0

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("free_access_weekday", mode="before")
    @classmethod
    def parse_weekday(cls, v: object) -> object:
        """Empty string from env disables the free day."""
        if v == "" or v is None:
            return None
        return v

    @field_validator("free_access_weekday")
    @classmethod
    def validate_weekday(cls, v: int | None) -> int | None:
        if v is not None and not 0 <= v <= 6:
            raise ValueError("free_access_weekday must be between 0 (Monday) and 6 (Sunday)")
        return v

    @field_validator("payment_poll_max_attempts", "payment_minor_unit_factor", "subscription_days_per_month")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("payment_currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper().strip()

    @property
    def free_variants_set(self) -> frozenset[str]:
        """Free variant ids, lowercased."""
        return frozenset(v.strip().lower() for v in self.free_variants.split(",") if v.strip())

    @property
    def calendar_gated_features_set(self) -> frozenset[str]:
        return frozenset(f.strip() for f in self.calendar_gated_features.split(",") if f.strip())

    @property
    def remote_sync_enabled(self) -> bool:
        return bool(self.remote_sync_url and self.remote_sync_api_key)

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
