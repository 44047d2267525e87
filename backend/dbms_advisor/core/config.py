"""
Configuration management using Pydantic Settings
"""
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env from project root
# config.py is at: backend/dbms_advisor/core/config.py
# Project root is: backend/dbms_advisor/core/../../../
_current_file = Path(__file__).resolve()
_backend_dir = _current_file.parent.parent.parent
_project_root = _backend_dir.parent
ENV_FILE = _project_root / ".env"
# Fallback: try in backend/ directory if not found in project root
if not ENV_FILE.exists():
    ENV_FILE = _backend_dir / ".env"
if ENV_FILE.exists():
    load_dotenv(ENV_FILE, override=False)


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "DBMS Deployment Advisor"
    app_env: str = Field(default="development", description="Application environment")
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8080, ge=1, le=65535, description="API port")
    allowed_origins: str = Field(
        default="http://localhost:8080",
        description="Allowed CORS origins (comma-separated)"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_sqlalchemy: bool = Field(default=False, description="Enable SQLAlchemy query logging")
    log_module_levels: Optional[str] = Field(
        default=None,
        description='Module-specific log levels (JSON string, e.g., {"dbms_advisor.core": "DEBUG"})'
    )
    log_format: str = Field(
        default="json",
        description="Log format: 'json' for structured logging, 'text' for plain text"
    )
    log_file_enabled: bool = Field(default=False, description="Enable file logging")
    log_file_path: str = Field(
        default="logs/advisor.log",
        description="Path to log file (relative to project root)"
    )
    log_file_retention: int = Field(
        default=30,
        ge=1,
        description="Number of days to keep log files"
    )
    log_sensitive_data: bool = Field(
        default=False,
        description="Enable logging of sensitive data (passwords, tokens) - NOT RECOMMENDED"
    )

    # Database
    database_url_override: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("database_url", "database_url_override"),
        description="Full SQLAlchemy URL; takes precedence over POSTGRES_* settings"
    )
    postgres_host: Optional[str] = Field(default=None, description="PostgreSQL host")
    postgres_db: str = Field(default="db", description="PostgreSQL database name")
    postgres_user: Optional[str] = Field(default=None, description="PostgreSQL user")
    postgres_password: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("postgres_password", "db_password"),
        description="PostgreSQL password"
    )
    postgres_port: int = Field(default=6432, ge=1, le=65535, description="PostgreSQL port")
    postgres_sslrootcert: Optional[str] = Field(
        default=None,
        description="Root certificate for sslmode=verify-full (managed PostgreSQL)"
    )
    sqlite_path: str = Field(
        default="data/answers.db",
        description="SQLite file used when PostgreSQL is not configured"
    )
    database_pool_size: int = Field(default=5, ge=1, description="Database pool size")
    database_max_overflow: int = Field(default=10, ge=0, description="Database max overflow")

    # Telegram
    telegram_bot_token: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("telegram_bot_token", "bot_token"),
        description="Telegram bot token"
    )
    telegram_api_url: str = Field(default="https://api.telegram.org", description="Telegram Bot API base URL")
    telegram_poll_timeout: int = Field(
        default=60,
        ge=0,
        le=120,
        description="Long polling timeout for getUpdates (seconds)"
    )

    # YandexGPT
    yandex_api_key: Optional[str] = Field(default=None, description="YandexGPT API key")
    yandex_folder_id: Optional[str] = Field(default=None, description="Yandex Cloud folder ID")
    yandex_gpt_url: str = Field(
        default="https://llm.api.cloud.yandex.net/foundationModels/v1/completion",
        description="YandexGPT completion endpoint"
    )
    yandex_gpt_model: str = Field(default="yandexgpt-32k/rc", description="Model name inside the folder")
    llm_temperature: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Температура LLM (ниже = более предсказуемый ответ)"
    )
    llm_max_tokens: int = Field(
        default=1500,
        ge=50,
        le=8000,
        description="Максимальное количество токенов в ответе LLM"
    )
    llm_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Максимальное время ожидания ответа LLM (секунды)"
    )

    # Wizard
    session_ttl_seconds: int = Field(
        default=86400,
        ge=60,
        description="Незавершённые сессии старше этого срока удаляются"
    )
    session_sweep_interval_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Как часто искать просроченные сессии (секунды)"
    )

    @property
    def database_url(self) -> str:
        """Construct database URL"""
        if self.database_url_override:
            return self.database_url_override
        if self.postgres_host and self.postgres_user:
            return (
                f"postgresql://{self.postgres_user}:{self.postgres_password or ''}"
                f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            )
        sqlite_path = Path(self.sqlite_path)
        if not sqlite_path.is_absolute():
            sqlite_path = _project_root / sqlite_path
        return f"sqlite:///{sqlite_path}"

    @property
    def database_connect_args(self) -> Dict[str, object]:
        """Driver-specific connection arguments"""
        url = self.database_url
        if url.startswith("sqlite"):
            return {"check_same_thread": False}
        args: Dict[str, object] = {
            "connect_timeout": 5,
            "target_session_attrs": "read-write",
        }
        if self.postgres_sslrootcert:
            args["sslmode"] = "verify-full"
            args["sslrootcert"] = self.postgres_sslrootcert
        return args

    @property
    def advisor_enabled(self) -> bool:
        """YandexGPT is consulted only when both credentials are present"""
        return bool(self.yandex_api_key and self.yandex_folder_id)

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token)

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
        populate_by_name=True,
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
