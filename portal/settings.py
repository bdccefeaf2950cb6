from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .session_store import ConnectionParams


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PORTAL_", env_file=".env", extra="ignore")

    # API
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    # MongoDB (either a full url, or discrete parts; not both)
    MONGO_URL: Optional[str] = Field(default=None)
    MONGO_HOST: Optional[str] = Field(default=None)
    MONGO_PORT: Optional[int] = Field(default=None)
    MONGO_DB: Optional[str] = Field(default=None)
    MONGO_SSL: Optional[bool] = Field(default=None)
    MONGO_USER: Optional[str] = Field(default=None)
    MONGO_PASSWORD: Optional[str] = Field(default=None)

    # Collections
    SESSION_COLLECTION: str = "sessions"
    COL_USERS: str = "users"
    # users live in the session database unless set
    USERS_DB: Optional[str] = Field(default=None)

    # Session cookie
    SESSION_COOKIE_NAME: str = "portal.sid"
    SESSION_SIGNING_SECRET: str = Field(default="your-session-secret")
    SESSION_MAX_AGE_MS: int = 86400 * 1000
    COOKIE_SECURE: bool = False
    COOKIE_SAMESITE: str = "lax"

    # Creates test/test on startup when missing
    SEED_TEST_USER: bool = True

    def session_store_options(self) -> ConnectionParams:
        return ConnectionParams(
            url=self.MONGO_URL,
            user=self.MONGO_USER,
            password=self.MONGO_PASSWORD,
            host=self.MONGO_HOST,
            port=self.MONGO_PORT,
            db=self.MONGO_DB,
            ssl=self.MONGO_SSL,
        )


settings = Settings()
