from typing import Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Full SQLAlchemy URL; when empty the PostgreSQL fields below are used
    database_url: Optional[str] = None

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "connection_logs"
    postgres_user: str = "connection_logs"
    postgres_password: str = ""

    # Seconds before an unavailable store is probed again (0 = never)
    store_reprobe_interval: float = 0.0

    # Telegram: notifications are disabled while token or chat id is empty
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_api_base_url: str = "https://api.telegram.org"

    notify_timeout: float = 10.0
    notify_max_in_flight: int = 4
    notify_max_pending: int = 100

    recent_limit: int = 50

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url:
            return self.database_url
        password = quote_plus(self.postgres_password)
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)


settings = Settings()
