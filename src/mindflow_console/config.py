# src/mindflow_console/config.py

from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .environments import Environment, base_url_for, sanitize_docs_url

# .env is at the project root, two levels up from src/mindflow_console/
CONFIG_FILE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT_DIR = CONFIG_FILE_DIR.parent.parent
ENV_FILE_PATH = PROJECT_ROOT_DIR / ".env"


class Settings(BaseSettings):
    # === Backend selection ===
    MINDFLOW_DEFAULT_ENVIRONMENT: Environment = Environment.LOCAL
    # Optional explicit override; may be a Swagger URL, it is reduced to its origin
    MINDFLOW_API_BASE_URL: Optional[str] = None

    # === Fixed development identity ===
    MINDFLOW_SIGNIN_EMAIL: str = "user@mindflowai.com"
    MINDFLOW_SIGNIN_PASSWORD: str = "User@123"

    # === Session persistence ===
    # Empty means the session only lives in memory for this process
    MINDFLOW_SESSION_FILE: Optional[Path] = None

    # === HTTP ===
    MINDFLOW_HTTP_TIMEOUT_SECONDS: float = 10.0
    # The local backend runs with a self-signed certificate
    MINDFLOW_VERIFY_TLS: bool = False

    # === Display / logging ===
    MINDFLOW_DEFAULT_TIMEZONE: str = "UTC"
    MINDFLOW_LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("MINDFLOW_DEFAULT_ENVIRONMENT", mode="before")
    @classmethod
    def parse_environment(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("MINDFLOW_API_BASE_URL", "MINDFLOW_SESSION_FILE", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def check_timeout(self) -> "Settings":
        if self.MINDFLOW_HTTP_TIMEOUT_SECONDS <= 0:
            raise ValueError("MINDFLOW_HTTP_TIMEOUT_SECONDS must be positive.")
        return self

    @property
    def DEFAULT_BASE_URL(self) -> str:
        if self.MINDFLOW_API_BASE_URL:
            return sanitize_docs_url(self.MINDFLOW_API_BASE_URL.strip())
        return base_url_for(self.MINDFLOW_DEFAULT_ENVIRONMENT)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    if ENV_FILE_PATH.exists():
        load_dotenv(dotenv_path=ENV_FILE_PATH, override=True)
    return Settings()
