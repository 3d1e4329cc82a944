import os
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="../.env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    TRANSACTIONS_DB_USER: str      = os.getenv("TRANSACTIONS_DB_USER", "")
    TRANSACTIONS_DB_PASSWORD: str  = os.getenv("TRANSACTIONS_DB_PASSWORD", "")
    TRANSACTIONS_DB_NAME: str      = os.getenv("TRANSACTIONS_DB_NAME", "")
    TRANSACTIONS_DB_HOST: str      = os.getenv("TRANSACTIONS_DB_HOST", "")
    TRANSACTIONS_DB_PORT: int      = int(os.getenv("TRANSACTIONS_DB_PORT", "5432"))
    # full URL wins over the parts above (sqlite in tests)
    TRANSACTIONS_DATABASE_URL: str = os.getenv("TRANSACTIONS_DATABASE_URL", "")
    DB_ECHO: bool                  = os.getenv("DB_ECHO", "false").lower() == "true"

    RABBIT_USER: str               = os.getenv("RABBIT_USER", "")
    RABBIT_PASSWORD: str           = os.getenv("RABBIT_PASSWORD", "")
    RABBIT_HOST: str               = os.getenv("RABBIT_HOST", "")
    RABBIT_PORT: int               = int(os.getenv("RABBIT_PORT", "5672"))

    MESSAGING_ENABLED: bool             = os.getenv("MESSAGING_ENABLED", "true").lower() == "true"
    OUTBOX_POLL_INTERVAL: int           = int(os.getenv("OUTBOX_POLL_INTERVAL", "1"))
    SETTLEMENT_CONSUMER_PREFETCH: int   = int(os.getenv("SETTLEMENT_CONSUMER_PREFETCH", "10"))

    @property
    def database_url(self) -> str:
        if self.TRANSACTIONS_DATABASE_URL:
            return self.TRANSACTIONS_DATABASE_URL
        return (
            f"postgresql+asyncpg://"
            f"{self.TRANSACTIONS_DB_USER}:"
            f"{self.TRANSACTIONS_DB_PASSWORD}"
            f"@{self.TRANSACTIONS_DB_HOST}:"
            f"{self.TRANSACTIONS_DB_PORT}/"
            f"{self.TRANSACTIONS_DB_NAME}"
        )

    @property
    def rabbit_url(self) -> str:
        return f"amqp://{self.RABBIT_USER}:{self.RABBIT_PASSWORD}@{self.RABBIT_HOST}:{self.RABBIT_PORT}/"

settings = Settings()
