# messenger/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import List, Literal, Optional


class Settings(BaseSettings):
    # Core
    APP_NAME: str = "Messenger"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Persistence: "mongo" for motor/beanie, "memory" for a single-process dev store
    STORE_BACKEND: Literal["mongo", "memory"] = "mongo"
    MONGODB_URL: str = Field(
        default="mongodb://127.0.0.1:27017",
        validation_alias="MONGODB_URL",
    )
    DATABASE_NAME: str = "messenger"

    # Optional presence mirror, unset disables it
    REDIS_URL: Optional[str] = None
    PRESENCE_TTL: int = 300  # seconds

    # Auth
    SECRET_KEY: str = "change-me-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # WebSocket
    TYPING_TIMEOUT: float = 5.0  # seconds
    RATE_LIMIT_PER_MINUTE: int = 120

    # Message Limits
    MAX_MESSAGE_LENGTH: int = 4000
    HISTORY_PAGE_SIZE: int = 50
    HISTORY_MAX_PAGE_SIZE: int = 200

    # Moderation, empty list disables the keyword flagger
    SENSITIVE_KEYWORDS: List[str] = Field(default_factory=list)

    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:3001"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
    )


settings = Settings()
