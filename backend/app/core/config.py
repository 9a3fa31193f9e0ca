from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = "Jewellery Commerce API"
    version: str = "0.1.0"
    APP_DATABASE_DSN: str = "sqlite:////tmp/database.db"
    REDIS_URL: str = "redis://localhost:6379"

    # Public origins used to build links inside recovery messages
    CLIENT_BASE_URL: str = "http://localhost:5173"
    API_BASE_URL: str = "http://localhost:8000"

    # Bearer tokens issued by the auth service
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"

    DEFAULT_CURRENCY: str = "INR"

    # Razorpay
    razorpay_key_id: str = ""
    razorpay_key_secret: str = ""
    razorpay_webhook_secret: str = ""
    razorpay_base_url: str = "https://api.razorpay.com/v1"

    # SMTP
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_FROM_EMAIL: str = "noreply@example.com"
    SMTP_FROM_NAME: str = "Jewellery Store"

    WHATSAPP_ENABLED: bool = False

    # Abandoned cart recovery
    RECOVERY_SCHEDULER_IN_API: bool = False
    RECOVERY_JOB_INTERVAL_SECONDS: int = 60
    RECOVERY_BOOTSTRAP_DELAY_SECONDS: int = 5
    RECOVERY_MAINTENANCE_INTERVAL_SECONDS: int = 180
    RECOVERY_BATCH_LIMIT: int = 30
    RECOVERY_MAX_BATCHES: int = 100
    CART_ACTIVITY_DEBOUNCE_SECONDS: float = 3.0

    # Checkout
    PAYMENT_ATTEMPT_TTL_MINUTES: int = 30
    PAYMENT_VERIFY_LOCK_SECONDS: int = 60

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    @property
    def recovery_interval_seconds(self) -> int:
        return max(30, self.RECOVERY_JOB_INTERVAL_SECONDS)


settings = Settings()
