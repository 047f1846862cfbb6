from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # API Settings
    PROJECT_NAME: str = "Payout Ledger"
    API_V1_STR: str = "/api/v1"
    PROJECT_VERSION: str = "0.1.0"
    DESCRIPTION: str = "Payment settlement and multi-party payout ledger"

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "payout_ledger"

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_CONNECT_WEBHOOK_SECRET: str = ""
    WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Fees
    PROCESSING_FEE_PERCENT: Decimal = Decimal("0.014")
    PROCESSING_FEE_FIXED_CENTS: int = 20
    PLATFORM_FEE_MUSIC: Decimal = Decimal("0.01")
    PLATFORM_FEE_CRATE: Decimal = Decimal("0.01")
    PLATFORM_FEE_MERCH: Decimal = Decimal("0.05")
    DEFAULT_CURRENCY: str = "gbp"

    # Payouts
    AUTO_PAYOUTS_ENABLED: bool = True
    PAYOUT_SWEEP_BATCH_SIZE: int = 50
    TRANSFER_TIMEOUT_SECONDS: float = 20.0

    # Refunds
    FULL_REFUND_THRESHOLD: Decimal = Decimal("0.99")

    # Operator endpoints
    ADMIN_API_KEY: str = "change-this-in-production"

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env"
    )

settings = Settings()
