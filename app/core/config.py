# /app/core/config.py

import json
import logging
from typing import Literal
from urllib.parse import urlparse

from pydantic import (
    AliasChoices,
    Field,
    PostgresDsn,
    RedisDsn,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", case_sensitive=False
    )

    # --- Environment & Debug ---
    ENVIRONMENT: Literal["development", "staging", "production"] = Field(
        default="development", validation_alias="APP_ENV"
    )
    DEBUG: bool = Field(default=False, validation_alias=AliasChoices("DEBUG_MODE", "DEBUG"))
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
    )
    SECURITY_LOG_PATH: str = Field(
        default="logs/security.log",
        description="Rotating file for security events (fail2ban format)",
        validation_alias="SECURITY_LOG_PATH",
    )

    # --- Server Configuration ---
    SERVER_HOST: str = Field(default="0.0.0.0", validation_alias="SERVER_HOST")
    SERVER_PORT: int = Field(default=8000, validation_alias="SERVER_PORT")
    FRONTEND_URL: str = Field(
        default="http://localhost:5173",
        description="Browser origin of the web client",
        validation_alias="FRONTEND_URL",
    )

    # --- Core Application Settings ---
    APP_NAME: str = Field(default="Passkey Auth", validation_alias="APP_NAME")
    APP_VERSION: str = Field(default="0.1.0", validation_alias="APP_VERSION")
    APP_DESCRIPTION: str = Field(
        default="Passkey (WebAuthn) authentication with federated login and second-factor gating.",
        validation_alias="APP_DESCRIPTION",
    )
    API_V1_STR: str = Field(default="/api/v1", validation_alias="API_V1_STR")

    # --- JWT & Session Settings ---
    SECRET_KEY: str = Field(validation_alias=AliasChoices("JWT_SECRET_KEY", "SECRET_KEY"))
    ALGORITHM: str = Field(default="HS256", validation_alias="ALGORITHM")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(
        default=60, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES"
    )
    TEMP_TOKEN_EXPIRE_MINUTES: int = Field(
        default=5,
        description="Lifetime of the restricted token issued while a second factor is pending",
        validation_alias="TEMP_TOKEN_EXPIRE_MINUTES",
    )
    ACCESS_TOKEN_COOKIE_NAME: str = Field(
        default="accessToken", validation_alias="ACCESS_TOKEN_COOKIE_NAME"
    )
    COOKIE_SECURE: bool = Field(default=True, validation_alias="COOKIE_SECURE")
    COOKIE_SAMESITE: Literal["lax", "strict", "none"] = Field(
        default="strict", validation_alias="COOKIE_SAMESITE"
    )

    # --- WebAuthn Relying Party ---
    WEBAUTHN_RP_ID: str | None = Field(default=None, validation_alias="WEBAUTHN_RP_ID")
    WEBAUTHN_RP_NAME: str = Field(default="Passkey Auth", validation_alias="WEBAUTHN_RP_NAME")
    WEBAUTHN_ORIGIN: str | None = Field(default=None, validation_alias="WEBAUTHN_ORIGIN")
    WEBAUTHN_TIMEOUT_MS: int = Field(default=60000, validation_alias="WEBAUTHN_TIMEOUT_MS")

    # --- Federated Identity (Firebase) ---
    FIREBASE_PROJECT_ID: str | None = Field(default=None, validation_alias="FIREBASE_PROJECT_ID")
    FIREBASE_CREDENTIALS_PATH: str | None = Field(
        default=None,
        description="Service account JSON; application default credentials are used when unset",
        validation_alias=AliasChoices("FIREBASE_CREDENTIALS_PATH", "FIREBASE_SA_PATH"),
    )

    # --- Database Settings ---
    PRIMARY_DATABASE_URL_ENV: PostgresDsn | None = Field(
        default=None, validation_alias="DATABASE_URL"
    )
    ASYNC_SQLALCHEMY_DATABASE_URL_WORKER_ENV: PostgresDsn | None = Field(
        default=None, validation_alias="ASYNC_SQLALCHEMY_DATABASE_URL_WORKER"
    )
    POSTGRES_SERVER: str = Field(default="db", validation_alias="POSTGRES_SERVER")
    POSTGRES_USER: str = Field(default="passkey", validation_alias="POSTGRES_USER")
    POSTGRES_PASSWORD: str = Field(default="passkey", validation_alias="POSTGRES_PASSWORD")
    POSTGRES_DB: str = Field(default="passkeydb", validation_alias="POSTGRES_DB")
    POSTGRES_PORT: int = Field(default=5432, validation_alias="POSTGRES_PORT")
    DB_ECHO: bool = Field(default=False, validation_alias="DB_ECHO")
    DB_ECHO_WORKER: bool = Field(default=False, validation_alias="DB_ECHO_WORKER")

    # --- Celery & Redis Settings ---
    REDIS_HOST: str = Field(default="redis", validation_alias="REDIS_HOST")
    REDIS_PORT: int = Field(default=6379, validation_alias="REDIS_PORT")
    CELERY_BROKER_URL_ENV: RedisDsn | None = Field(
        default=None, validation_alias="CELERY_BROKER_URL"
    )
    CELERY_RESULT_BACKEND_ENV: RedisDsn | None = Field(
        default=None, validation_alias="CELERY_RESULT_BACKEND"
    )
    TIMEZONE: str = Field(default="UTC", validation_alias="CELERY_TIMEZONE")
    CELERY_RESULT_EXPIRES: int = Field(default=3600, validation_alias="CELERY_RESULT_EXPIRES")
    CHALLENGE_SWEEP_INTERVAL_SECONDS: int = Field(
        default=900, validation_alias="CHALLENGE_SWEEP_INTERVAL_SECONDS"
    )

    # --- Fields for complex parsing ---
    backend_cors_origins_env_str: str | None = Field(
        default='["http://localhost:5173","http://localhost:8000"]',
        validation_alias=AliasChoices("BACKEND_CORS_ORIGINS", "BACKEND_CORS_ORIGINS_ENV"),
    )

    # --- Private storage for parsed values ---
    _parsed_backend_cors_origins: list[str] = []

    def _parse_string_list_input_helper(
        self, input_str: str | None, field_name_for_log: str
    ) -> list[str]:
        parsed_list: list[str] = []
        if not input_str or not input_str.strip():
            return parsed_list
        try:
            loaded_items = json.loads(input_str)
            if isinstance(loaded_items, list):
                parsed_list = [str(item).strip() for item in loaded_items if str(item).strip()]
            else:
                parsed_list = [item.strip() for item in input_str.split(",") if item.strip()]
        except json.JSONDecodeError:
            logger.debug(
                "JSONDecodeError for %s. Falling back to comma separation.", field_name_for_log
            )
            parsed_list = [item.strip() for item in input_str.split(",") if item.strip()]

        if not parsed_list:
            logger.warning("Env var %s resulted in an empty parsed list.", field_name_for_log)
        return parsed_list

    @model_validator(mode="after")
    def _process_complex_fields_and_debug_overrides(self) -> "Settings":
        self._parsed_backend_cors_origins = self._parse_string_list_input_helper(
            self.backend_cors_origins_env_str, "BACKEND_CORS_ORIGINS"
        )

        if self.DEBUG:
            if self.LOG_LEVEL != "DEBUG":
                logger.info("DEBUG mode is ON. Overriding LOG_LEVEL to DEBUG.")
                self.LOG_LEVEL = "DEBUG"
            if not self.DB_ECHO:
                logger.info("DEBUG mode is ON. Overriding DB_ECHO to True.")
                self.DB_ECHO = True
            if self.COOKIE_SECURE:  # http://localhost cannot carry secure cookies
                logger.info("DEBUG mode is ON. Overriding COOKIE_SECURE to False.")
                self.COOKIE_SECURE = False
        elif self.ENVIRONMENT != "development" and not self.COOKIE_SECURE:
            logger.warning(
                "Non-development environment with COOKIE_SECURE=False. Access cookies will travel over plain HTTP."
            )
        return self

    @property
    def BACKEND_CORS_ORIGINS(self) -> list[str]:
        return self._parsed_backend_cors_origins

    @property
    def RP_ID(self) -> str:
        """Relying Party ID, explicit or derived from the frontend hostname."""
        if self.WEBAUTHN_RP_ID:
            return self.WEBAUTHN_RP_ID
        return urlparse(self.FRONTEND_URL).hostname or "localhost"

    @property
    def RP_ORIGIN(self) -> str:
        """Exact origin (scheme, host, port) the browser must report."""
        if self.WEBAUTHN_ORIGIN:
            return self.WEBAUTHN_ORIGIN.rstrip("/")
        return self.FRONTEND_URL.rstrip("/")

    def _build_postgres_dsn(self, base_dsn: PostgresDsn | None, use_async: bool) -> str:
        driver_prefix = "postgresql+asyncpg://" if use_async else "postgresql://"

        if base_dsn:
            db_url_str = str(base_dsn)
            if db_url_str.startswith(driver_prefix):
                return db_url_str
            if "://" in db_url_str:
                return driver_prefix + db_url_str.split("://", 1)[1]
            raise ValueError(f"Malformed base DSN for DB (missing scheme?): {db_url_str}")
        return (
            f"{driver_prefix}{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def ASYNC_SQLALCHEMY_DATABASE_URL(self) -> str:
        return self._build_postgres_dsn(self.PRIMARY_DATABASE_URL_ENV, use_async=True)

    @property
    def ASYNC_SQLALCHEMY_DATABASE_URL_WORKER(self) -> str:
        base_for_worker = (
            self.ASYNC_SQLALCHEMY_DATABASE_URL_WORKER_ENV or self.PRIMARY_DATABASE_URL_ENV
        )
        return self._build_postgres_dsn(base_for_worker, use_async=True)

    @property
    def SYNC_SQLALCHEMY_DATABASE_URL(self) -> str:
        return self._build_postgres_dsn(self.PRIMARY_DATABASE_URL_ENV, use_async=False)

    @property
    def CELERY_BROKER_URL(self) -> str:
        if self.CELERY_BROKER_URL_ENV:
            return str(self.CELERY_BROKER_URL_ENV)
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/0"

    @property
    def CELERY_RESULT_BACKEND(self) -> str:
        if self.CELERY_RESULT_BACKEND_ENV:
            return str(self.CELERY_RESULT_BACKEND_ENV)
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/1"


settings = Settings()
