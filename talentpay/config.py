from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str
    PROJECT_NAME: str = "Talent Competition Payments API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    ALLOWED_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:10000",
        "https://jotcomps.com",
        "https://www.jotcomps.com",
    ]

    # Logging configuration
    LOG_DIR: str = "logs"
    LOG_MAX_FILES: int = 5
    LOG_MAX_SIZE_MB: int = 5
    LOG_EXCLUDED_PATHS: list[str] = [
        "/health",
        "/docs",
        "/redoc",
        "/openapi.json",
    ]
    LOG_LEVEL: str = "INFO"

    # JWT configuration (tokens issued by the session provider)
    JWT_SECRET_KEY: str  # Required, generate with: openssl rand -hex 32
    JWT_ALGORITHM: str = "HS256"
    ADMIN_EMAIL: str = ""

    # ioTec collections API configuration
    IOTEC_CLIENT_ID: str  # Required
    IOTEC_CLIENT_SECRET: str  # Required
    IOTEC_WALLET_ID: str  # Required
    IOTEC_TOKEN_URL: str = "https://id.iotec.io/connect/token"
    IOTEC_BASE_URL: str = "https://pay.iotec.io/api"
    IOTEC_TIMEOUT_SECONDS: int = 30
    IOTEC_WEBHOOK_SECRET: str = ""  # Empty disables webhook authentication
    IOTEC_STATUS_MAX_ATTEMPTS: int = 3
    IOTEC_STATUS_RETRY_DELAY_SECONDS: float = 1.0  # Doubled after each retry
    IOTEC_STATUS_MAX_RETRY_DELAY_SECONDS: float = 30.0

    # Payment defaults
    PAYMENT_METHOD: str = "MobileMoney"
    PAYMENT_CURRENCY: str = "UGX"
    PAYER_NOTE: str = "Jot Talent Competition Entry Fee"
    DEFAULT_COMPETITION_ID: str = "firstRound"
    PAYMENT_MAX_AMOUNT: float = 10_000_000
    IDEMPOTENCY_WINDOW_HOURS: int = 24  # Identical /pay requests inside this window are duplicates

    # Email verification codes
    VERIFICATION_CODE_TTL_MINUTES: int = 10
    VERIFICATION_MAX_ATTEMPTS: int = 5

    # Background side effects (notifications)
    SIDE_EFFECT_MAX_RETRIES: int = 3
    SIDE_EFFECT_RETRY_DELAY_SECONDS: float = 1.0

    # Client polling schedule
    POLL_INTERVAL_SECONDS: float = 5.0
    POLL_MAX_ATTEMPTS: int = 24  # 2 minutes at the default interval

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
