from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = Field("Fee Voucher Backend", alias="APP_NAME")
    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(15, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_format: str = Field("json", alias="LOG_FORMAT")  # json | text

    # Remainder at or below this is treated as fully paid
    payment_rounding_epsilon: Decimal = Field(Decimal("0.01"), ge=0, alias="PAYMENT_ROUNDING_EPSILON")
    # How far paid_amount may exceed total_due before a payment is rejected
    overpayment_allowance: Decimal = Field(Decimal("0.00"), ge=0, alias="OVERPAYMENT_ALLOWANCE")
    payment_max_retries: int = Field(3, ge=1, alias="PAYMENT_MAX_RETRIES")

    voucher_default_due_day: int = Field(20, ge=1, le=31, alias="VOUCHER_DEFAULT_DUE_DAY")
    voucher_generation_concurrency: int = Field(4, ge=1, alias="VOUCHER_GENERATION_CONCURRENCY")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
