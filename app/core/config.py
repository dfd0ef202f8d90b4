from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Days past an obligation's due date before it is flagged overdue (display only).
    fee_overdue_grace_days: int = Field(0, alias="FEE_OVERDUE_GRACE_DAYS", ge=0)
    fee_receipt_prefix: str = Field("REC", alias="FEE_RECEIPT_PREFIX")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
