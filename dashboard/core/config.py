from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    # Use consistent uppercase to match .env
    DATABASE_URL: str
    ENCRYPTION_KEY: str
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # WhatsApp Cloud API (Meta Graph)
    META_GRAPH_URL: str = "https://graph.facebook.com"
    META_APP_VERSION: str = "v21.0"
    META_HTTP_TIMEOUT: float = 20.0
    META_WEBHOOK_VERIFY_TOKEN: Optional[str] = None
    # When set, inbound webhook bodies must carry a valid X-Hub-Signature-256
    META_CLIENT_SECRET: Optional[str] = None

    REDIS_URL: str = "redis://localhost:6379/0"

    # Tenancy resolution
    PUBLIC_ROUTE_PREFIXES: List[str] = [
        "/health",
        "/status",
        "/docs",
        "/redoc",
        "/openapi.json",
        "/api/auth/login",
        "/api/auth/register",
        "/api/auth/forgot-password",
        "/api/auth/reset-password",
        "/api/webhooks",
    ]
    NON_TENANT_SUBDOMAINS: List[str] = ["www", "api", "app"]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @field_validator("DATABASE_URL", "ENCRYPTION_KEY", "SECRET_KEY")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Field cannot be empty or just whitespace")
        return v

    @property
    def graph_base_url(self) -> str:
        return f"{self.META_GRAPH_URL.rstrip('/')}/{self.META_APP_VERSION}"

settings = Settings()
