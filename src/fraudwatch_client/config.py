# src/fraudwatch_client/config.py

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# .env is at the project root, two levels up from src/fraudwatch_client/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"

if ENV_FILE_PATH.exists():
    load_dotenv(dotenv_path=ENV_FILE_PATH, override=False)
    logger.debug("Loaded .env file from: %s", ENV_FILE_PATH)


class Settings(BaseSettings):
    # === Back-office API ===
    API_BASE_URL: AnyHttpUrl = "http://localhost:3000/api/v1"
    API_TIMEOUT: float = 30.0  # seconds, applies to every call incl. refresh

    # === Auth endpoints (backend contract) ===
    LOGIN_PATH: str = "/auth/login"
    REFRESH_PATH: str = "/auth/refresh"
    LOGOUT_PATH: str = "/auth/logout"
    PROFILE_PATH: str = "/auth/profile"

    # === Session persistence ===
    # Unset means the session only lives in memory.
    SESSION_STORAGE_PATH: Optional[Path] = None
    SESSION_STORAGE_KEY: str = "auth-storage"

    # Apply a rotated refresh token when the refresh response carries one.
    ROTATE_REFRESH_TOKEN: bool = True

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    @property
    def BASE_URL(self) -> str:
        return str(self.API_BASE_URL).rstrip("/")

    @field_validator("LOGIN_PATH", "REFRESH_PATH", "LOGOUT_PATH", "PROFILE_PATH", mode="before")
    @classmethod
    def ensure_leading_slash(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("Endpoint paths must be non-empty strings.")
        v = v.strip()
        return v if v.startswith("/") else f"/{v}"

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> str:
        return str(v).strip().upper() if v else "INFO"

    @model_validator(mode="after")
    def check_timeout(self) -> "Settings":
        if self.API_TIMEOUT <= 0:
            raise ValueError(f"API_TIMEOUT must be positive, got {self.API_TIMEOUT}.")
        if not self.SESSION_STORAGE_KEY.strip():
            raise ValueError("SESSION_STORAGE_KEY must not be empty.")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    try:
        settings = Settings()
    except Exception as e:
        logger.error("Error instantiating Settings: %s", e)
        raise
    logger.debug("API base URL: %s (timeout %ss)", settings.BASE_URL, settings.API_TIMEOUT)
    return settings
