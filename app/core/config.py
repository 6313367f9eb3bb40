"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Credentials have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # Comma separated, e.g. http://localhost:3000,https://app.example.com. Empty = default list in main.py.
    cors_origins: str = ""
    # Trusted proxy IPs (comma-separated). Used for X-Forwarded-For in production.
    trusted_proxy_ips: str = ""

    # ===========================================
    # DATABASE (PostgreSQL)
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str  # Required, no default
    celery_broker_url: str  # Required, no default
    celery_result_backend: str  # Required, no default

    # ===========================================
    # AUTH (JWT)
    # ===========================================
    jwt_secret_key: str  # Required, no default
    jwt_algorithm: str = "HS256"
    jwt_expiration_hours: int = 24 * 7

    # Login rate limit (brute-force protection)
    login_rate_limit_attempts: int = 5
    login_rate_limit_window_seconds: int = 900  # 15 min

    # ===========================================
    # STRIPE
    # ===========================================
    # Empty key disables payment endpoints (503).
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    # ===========================================
    # IMAGE GENERATION - PROVIDER SELECTION
    # ===========================================
    ai_provider: str = "mock"  # mock, openai
    ai_timeout: float = 30.0  # seconds
    ai_retries: int = 3  # max attempts per generation
    ai_retry_backoff_seconds: float = 2.0

    # Mock provider behaviour (simulated latency and failures)
    mock_min_delay_seconds: float = 1.0
    mock_max_delay_seconds: float = 3.0
    mock_failure_rate: float = 0.05

    # ===========================================
    # OPENAI API (Provider: openai)
    # ===========================================
    openai_api_key: str = ""
    openai_organization: str = ""
    openai_model: str = "dall-e-3"

    # ===========================================
    # IMAGE GENERATION - COMMON SETTINGS
    # ===========================================
    default_image_style: str = "realistic"
    default_image_size: str = "512x512"
    # Failed generations give the debited tokens back.
    refund_failed_generations: bool = True
    # Images still "generating" after this many minutes are failed by the watchdog.
    generation_stuck_minutes: int = 15

    # ===========================================
    # STORAGE (AWS S3, local fallback)
    # ===========================================
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    aws_region: str = "us-east-1"
    aws_s3_bucket: str = ""
    storage_base_path: str = "/data/uploads"
    storage_public_url: str = "http://localhost:8000/media"
    signed_url_ttl_seconds: int = 3600
    max_file_size_mb: int = 10
    max_files_per_upload: int = 5
    max_avatar_size_mb: int = 5
    allowed_upload_mime_types: str = (
        "image/jpeg,image/jpg,image/png,image/gif,image/webp,"
        "video/mp4,video/avi,video/mov,video/wmv,"
        "application/pdf,text/plain,application/msword,"
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    )

    # ===========================================
    # NOTIFICATIONS (SMTP + Firebase Cloud Messaging)
    # ===========================================
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_secure: bool = False  # True = implicit TLS (port 465)
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = "no-reply@localhost"

    firebase_service_account_key: str = ""  # JSON of the service account
    firebase_project_id: str = ""
    push_ttl_seconds: int = 86400

    notification_max_attempts: int = 3
    notification_retry_delay_seconds: int = 60
    notification_retention_days: int = 90
    low_token_threshold: int = 10

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30

    # ===========================================
    # LOGGING
    # ===========================================
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("ai_provider")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        return (v or "mock").strip().lower()

    @field_validator("jwt_secret_key")
    @classmethod
    def validate_jwt_secret(cls, v: str) -> str:
        """Ensure JWT secret is reasonably secure."""
        if len(v) < 16:
            raise ValueError("jwt_secret_key must be at least 16 characters")
        if v in ("changeme", "secret", "password"):
            raise ValueError("jwt_secret_key is too weak, please change it")
        return v

    @property
    def allowed_upload_mime_types_set(self) -> set[str]:
        return {m.strip().lower() for m in self.allowed_upload_mime_types.split(",") if m.strip()}

    @property
    def trusted_proxy_ips_set(self) -> set[str]:
        """Get trusted proxy IPs as a set."""
        return {ip.strip() for ip in self.trusted_proxy_ips.split(",") if ip.strip()}

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key)

    @property
    def s3_configured(self) -> bool:
        return bool(self.aws_access_key_id and self.aws_secret_access_key and self.aws_s3_bucket)

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
