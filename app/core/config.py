from functools import lru_cache
from pathlib import Path
from typing import List
from urllib.parse import urlparse
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = Path(__file__).resolve().parents[2] / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=str(ENV_FILE), case_sensitive=False)

    APP_NAME: str = "Visitor Management Backend"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    API_V1_PREFIX: str = "/api/v1"
    BACKEND_HOST: str = "0.0.0.0"
    BACKEND_PORT: int = 5000

    DATABASE_URL: str = "sqlite:///./vms.db"

    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 24 * 60

    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    SOCKET_PATH: str = "/socket.io"
    DASHBOARD_NAMESPACE: str = "/realtime/dashboard"

    UPLOAD_DIR: str = "uploads"
    MAX_PHOTO_BYTES: int = 5 * 1024 * 1024

    # Visit policy
    PRE_APPROVAL_MAX_WINDOW_HOURS: int = 24
    REQUIRE_COMPANY: bool = True
    REQUIRE_WALK_IN_PHOTO: bool = True
    CHECK_IN_ON_APPROVAL: bool = False

    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_SSL: bool = False
    SMTP_TIMEOUT_SECONDS: int = 10
    EMAIL_FROM: str = "VMS System <no-reply@vms.local>"
    FRONTEND_BASE_URL: str = "http://localhost:3000"

    @property
    def cors_origins(self) -> List[str]:
        origins: list[str] = []
        for raw in self.CORS_ORIGINS.split(","):
            value = raw.strip()
            if not value:
                continue
            parsed = urlparse(value)
            if parsed.scheme and parsed.netloc:
                value = f"{parsed.scheme}://{parsed.netloc}"
            origins.append(value.rstrip("/"))
        return origins

    @property
    def email_configured(self) -> bool:
        return bool(self.SMTP_HOST.strip())


@lru_cache
def get_settings() -> Settings:
    return Settings()
