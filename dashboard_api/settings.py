import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    # Backend resolution
    backend_url: str | None = Field(default=None, alias="BACKEND_URL")
    app_env: str = Field(default="development", alias="APP_ENV")
    production_proxy_url: str = Field(
        default="https://sbdistribution.store/.netlify/functions/api-proxy",
        alias="PRODUCTION_PROXY_URL",
    )
    development_url: str = Field(
        default="http://localhost:3001", alias="DEVELOPMENT_URL"
    )
    client_name: str = Field(default="marudham", alias="CLIENT_NAME")

    # Request behaviour
    request_timeout: float = Field(default=10.0, alias="REQUEST_TIMEOUT")
    cache_ttl_seconds: int = Field(default=300, alias="CACHE_TTL_SECONDS")
    cache_max_size: int = Field(default=100, alias="CACHE_MAX_SIZE")

    # Credential persistence
    credential_ttl_days: float = Field(default=5, alias="CREDENTIAL_TTL_DAYS")
    storage_path: str = Field(
        default="~/.dashboard_api/storage.json", alias="STORAGE_PATH"
    )
    login_path: str = Field(default="/login", alias="LOGIN_PATH")
    # Renew this long before the access token's exp claim
    token_refresh_lead_seconds: int = Field(
        default=300, alias="TOKEN_REFRESH_LEAD_SECONDS"
    )

    debug: bool = Field(default=False, alias="API_DEBUG")


def resolve_base_url(settings: Settings) -> str:
    """Pick the backend base URL: explicit override, production proxy, local."""
    override = (settings.backend_url or "").strip().rstrip("/")
    if override:
        return override
    if settings.app_env == "production":
        return settings.production_proxy_url.rstrip("/")
    return settings.development_url.rstrip("/")


global_settings = Settings.model_validate(dict(os.environ))

# Resolved once at import, not per call
BASE_URL = resolve_base_url(global_settings)
