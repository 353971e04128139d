from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

API_KEY_PLACEHOLDER = "your-rydora-api-key-here"
DEFAULT_API_BASE_URL = "https://agsm-back.azurewebsites.net"
DEFAULT_API_BASE_URL_PROD = "https://agsm-rydora-production-api.azurewebsites.net"
DEFAULT_NYC_OPEN_DATA_URL = "https://data.cityofnewyork.us/resource/nc67-uf89.json"


class Settings(BaseSettings):
    app_env: str = "development"
    rydora_api_base_url: str = DEFAULT_API_BASE_URL
    rydora_api_base_dev_url: str | None = None
    rydora_api_base_url_prod: str | None = DEFAULT_API_BASE_URL_PROD
    rydora_api_key: str = API_KEY_PLACEHOLDER
    upstream_timeout_seconds: float = 30.0
    upstream_paths_config_path: str | None = None
    nyc_open_data_url: str = DEFAULT_NYC_OPEN_DATA_URL
    session_cookie_name: str = "rydora.sid"
    session_cookie_samesite: str | None = None
    session_cookie_domain: str | None = None
    session_ttl_seconds: int = 3600
    redis_url: str | None = None
    jwt_secret: str = "rydora-jwt-secret-change-in-production"
    mock_auth_enabled: bool | None = None
    host: str = "0.0.0.0"
    port: int = 5000

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() == "production"

    @property
    def cookie_secure(self) -> bool:
        return self.is_production

    @property
    def cookie_samesite(self) -> str:
        if self.session_cookie_samesite and self.session_cookie_samesite.strip():
            return self.session_cookie_samesite.strip().lower()
        return "none" if self.is_production else "lax"

    @property
    def static_api_key(self) -> str | None:
        key = self.rydora_api_key.strip()
        if not key or key == API_KEY_PLACEHOLDER:
            return None
        return key

    @property
    def mock_auth_active(self) -> bool:
        if self.mock_auth_enabled is not None:
            return self.mock_auth_enabled
        return not self.is_production


@lru_cache
def get_settings() -> Settings:
    return Settings()
