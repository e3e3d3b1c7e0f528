from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database configuration
    DATABASE_URL: str = Field(default="sqlite://", description="SQLAlchemy URL; the default is a process-local in-memory database")
    DB_ECHO: bool = Field(default=False, description="Log every SQL statement")

    BASE_CURRENCY: str = Field(default="USD", min_length=3, max_length=3, description="Default run currency")

    # Workflow configuration
    HIGH_RISK_SCORE_THRESHOLD: int = Field(default=70, ge=0, le=100)
    PAYMENT_REFERENCE_PREFIX: str = Field(default="PAY", min_length=1)

    # Aggregation configuration
    AGGREGATION_MAX_WORKERS: int = Field(default=4, ge=1, le=64)

    # Listing configuration
    DEFAULT_PAGE_SIZE: int = Field(default=10, ge=1)
    MAX_PAGE_SIZE: int = Field(default=100, ge=1)

    # Transition event feed: only the most recent events are kept in memory
    EVENT_RETENTION: int = Field(default=10_000, ge=1)

    LOG_LEVEL: str = Field(default="INFO", description="Root log level for the service")


settings = Settings()


# Minor units used when presenting amounts; anything not listed uses 2
CURRENCY_MINOR_UNITS = {
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "MXN": 2,
    "BRL": 2,
    "COP": 2,
    "JPY": 0,
    "KRW": 0,
    "BHD": 3,
}

# Days until an approval request falls overdue, by priority
APPROVAL_DUE_DAYS = {
    "urgent": 1,
    "high": 3,
    "medium": 7,
    "low": 7,
}
