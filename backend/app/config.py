"""Application configuration management"""

import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List, Optional
from urllib.parse import quote_plus, urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode

# Base directory: backend/
_BASE_DIR = Path(__file__).resolve().parent.parent

_DEFAULT_ACCESS_SECRET = "dev-access-secret-change-in-production-use-openssl-rand-hex-32"
_DEFAULT_REFRESH_SECRET = "dev-refresh-secret-change-in-production-use-openssl-rand-hex-32"


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application
    APP_NAME: str = "Learning Platform"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4
    FRONTEND_URL: str = "http://localhost:5000"

    # Database (PostgreSQL)
    DATABASE_URL: str = ""
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "learning_platform"
    POSTGRES_USER: str = "learning"
    POSTGRES_PASSWORD: str = "learning"
    DATABASE_POOL_SIZE: int = 30
    DATABASE_MAX_OVERFLOW: int = 20

    # Token signing (access and refresh secrets must differ)
    JWT_ACCESS_SECRET: str = _DEFAULT_ACCESS_SECRET
    JWT_REFRESH_SECRET: str = _DEFAULT_REFRESH_SECRET
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "lms-auth"
    JWT_AUDIENCE: str = "lms-api"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Credentials
    BCRYPT_ROUNDS: int = 12
    PASSWORD_MIN_LENGTH: int = 8
    PASSWORD_MAX_LENGTH: int = 128
    EMAIL_BLOCKED_DOMAINS: Annotated[List[str], NoDecode] = [
        "test.com",
        "fake.com",
        "invalid.com",
        "dummy.com",
        "temp.com",
        "throwaway.email",
        "10minutemail.com",
        "mailinator.com",
        "guerrillamail.com",
    ]
    EMAIL_BLOCKED_LOCAL_PATTERNS: Annotated[List[str], NoDecode] = [
        r"^\d+$",
        r"^test\d*$",
        r"^fake",
        r"^dummy",
        r"^invalid",
    ]

    # One-time tokens
    PASSWORD_RESET_EXPIRE_MINUTES: int = 30
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 24

    # Refresh cookie
    REFRESH_COOKIE_NAME: str = "refresh_token"
    REFRESH_COOKIE_PATH: str = "/api/v1/auth"
    COOKIE_DOMAIN: str = "localhost"

    # Google OAuth
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    OAUTH_CALLBACK_URL: str = "http://localhost:8000/api/v1/auth/google/callback"
    OAUTH_STATE_COOKIE_NAME: str = "oauth_state"
    OAUTH_STATE_MAX_AGE_SECONDS: int = 600

    # Email (SMTP)
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_FROM: str = ""
    SMTP_FROM_NAME: str = "Learning Platform"

    # Rate Limiting
    RATE_LIMIT_PER_MINUTE: int = 100
    RATE_LIMIT_PER_HOUR: int = 1000
    LOGIN_RATE_LIMIT_PER_MINUTE: int = 10
    LOGIN_RATE_LIMIT_PER_HOUR: int = 50
    REGISTER_RATE_LIMIT_PER_HOUR: int = 20
    PASSWORD_RESET_RATE_LIMIT_PER_HOUR: int = 5

    # Token cleanup worker
    RUN_EMBEDDED_CLEANUP_WORKER: bool = True
    TOKEN_CLEANUP_INTERVAL_SECONDS: float = 3600.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # CORS
    CORS_ORIGINS: Annotated[List[str], NoDecode] = ["http://localhost:5000"]

    # Bootstrap admin
    ADMIN_EMAIL: str = "admin@learning-platform.com"
    ADMIN_PASSWORD: Optional[str] = None

    # Database initialization discipline
    DB_INIT_MODE: str = "migrate"  # migrate | create_all | off
    DB_REQUIRE_HEAD: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True

    @field_validator("CORS_ORIGINS", "EMAIL_BLOCKED_DOMAINS", "EMAIL_BLOCKED_LOCAL_PATTERNS", mode="before")
    @classmethod
    def _parse_list(cls, value: Any) -> Any:
        """
        Accept JSON array or comma-separated values from env.

        Examples:
            CORS_ORIGINS=["http://localhost:3000","http://example.com"]
            EMAIL_BLOCKED_DOMAINS=test.com,fake.com
        """
        if not isinstance(value, str):
            return value

        raw = value.strip()
        if not raw:
            return []

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None

        if isinstance(parsed, str):
            return [parsed]
        if isinstance(parsed, list):
            return [str(item).strip() for item in parsed if str(item).strip()]

        return [item.strip() for item in raw.split(",") if item.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def cookie_domain(self) -> Optional[str]:
        """Cookie domain attribute; host-only cookies for localhost."""
        domain = self.COOKIE_DOMAIN.strip()
        if not domain or domain == "localhost":
            return None
        return domain

    def get_log_file(self) -> str:
        p = self.LOG_FILE
        if not p or p.startswith(".."):
            return str(_BASE_DIR.parent / "logs" / "app.log")
        return p

    def get_database_url(self) -> str:
        """
        Resolve database URL.

        Priority:
          1) Explicit DATABASE_URL
          2) Construct from POSTGRES_* parts with safe URL encoding
        """
        if self.DATABASE_URL:
            return self.DATABASE_URL

        user = quote_plus(self.POSTGRES_USER)
        password = quote_plus(self.POSTGRES_PASSWORD)
        return (
            f"postgresql://{user}:{password}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    def validate_security_settings(self) -> None:
        """
        Validate token secrets and production deployment settings.

        Raises:
            ValueError: If the secrets collide or insecure defaults are
                detected in production.
        """
        if self.JWT_ACCESS_SECRET == self.JWT_REFRESH_SECRET:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ.")

        if not self.is_production:
            return

        insecure_secret_markers = {
            "",
            _DEFAULT_ACCESS_SECRET,
            _DEFAULT_REFRESH_SECRET,
            "your-super-secret-key-change-this-in-production",
            "change-me",
        }
        insecure_admin_passwords = {
            "admin123",
            "change_this_password_immediately",
        }

        for name in ("JWT_ACCESS_SECRET", "JWT_REFRESH_SECRET"):
            secret = getattr(self, name)
            if secret in insecure_secret_markers or len(secret) < 32:
                raise ValueError(
                    f"Insecure {name} for production. Use a strong key (e.g. `openssl rand -hex 32`)."
                )

        if urlparse(self.FRONTEND_URL).hostname in {"localhost", "127.0.0.1"}:
            raise ValueError("FRONTEND_URL cannot point at localhost in production.")

        if self.ADMIN_PASSWORD is not None and (
            self.ADMIN_PASSWORD in insecure_admin_passwords or len(self.ADMIN_PASSWORD) < 10
        ):
            raise ValueError(
                "Insecure ADMIN_PASSWORD for production. Set a strong admin password before startup."
            )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
