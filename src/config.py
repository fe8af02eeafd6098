from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    # Database
    DATABASE_URL: Optional[str] = None
    PGHOST: Optional[str] = None
    PGDATABASE: Optional[str] = None
    PGUSER: Optional[str] = None
    PGPASSWORD: Optional[str] = None
    PGSSLMODE: str = "require"
    SQLITE_FALLBACK_URL: str = "sqlite:///./ticketing.db"

    # Booking rules
    TAX_RATE: float = 0.05
    CURRENCY: str = "GHS"
    BOOKING_ID_PREFIX: str = "BKG-"
    BOOKING_ID_MAX_ATTEMPTS: int = 5
    TRANSACTION_MODE: str = "auto"  # auto | atomic | compensating
    PENDING_BOOKING_TTL_MINUTES: int = 30
    REFUND_FULL_WINDOW_HOURS: int = 2
    REFUND_EARLY_PERCENT: int = 90
    REFUND_LATE_PERCENT: int = 50

    # Travel credentials
    TICKET_SIGNING_KEY: str = "dev-ticket-signing-key"
    TICKET_GRACE_MINUTES: int = 60

    # Payments
    PAYMENT_MODE: str = "LIVE"
    PAWAPAY_API_URL: str = "https://api.sandbox.pawapay.io"
    PAWAPAY_API_TOKEN: str = ""
    PAWAPAY_TIMEOUT_SECONDS: float = 15.0

    # Application
    PROJECT_NAME: str = "Intercity Bus Ticketing Service"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if self.PGHOST and self.PGDATABASE:
            return f"postgresql://{self.PGUSER}:{self.PGPASSWORD}@{self.PGHOST}/{self.PGDATABASE}?sslmode={self.PGSSLMODE}"
        return self.SQLITE_FALLBACK_URL

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
