from __future__ import annotations

import warnings
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    jwt_secret: str = ""  # HS256 signing secret for access and refresh tokens
    allow_insecure_jwt: bool = False

    @model_validator(mode="after")
    def _check_jwt_secret(self) -> Settings:
        self.jwt_secret = self.jwt_secret.strip()
        if not self.jwt_secret:
            if self.allow_insecure_jwt:
                warnings.warn(
                    "JWT_SECRET is empty but ALLOW_INSECURE_JWT is set; "
                    "this is INSECURE and should only be used for development.",
                    stacklevel=2,
                )
            else:
                raise ValueError(
                    "JWT_SECRET is not set. An empty JWT secret allows attackers to "
                    "forge access tokens. Set JWT_SECRET in .env or set "
                    "ALLOW_INSECURE_JWT=1 for development."
                )
        return self

    @model_validator(mode="after")
    def _check_search_limits(self) -> Settings:
        if self.search_max_limit < 1:
            raise ValueError("SEARCH_MAX_LIMIT must be >= 1")
        if not 1 <= self.search_default_limit <= self.search_max_limit:
            raise ValueError(
                "SEARCH_DEFAULT_LIMIT must be between 1 and SEARCH_MAX_LIMIT"
            )
        return self

    jwt_access_token_expire_minutes: int = 60
    jwt_refresh_token_expire_days: int = 7
    # Access tokens closer than this to expiry get a replacement in X-New-Token
    token_refresh_threshold_minutes: int = 15
    rotate_refresh_tokens: bool = False

    data_dir: Path = Path("/app/data")
    db_url: str = "sqlite:////app/data/figures.db"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]
    log_level: str = "INFO"

    # External page-scraper service (MFC item pages)
    scraper_service_url: str = "http://page-scraper:3000"
    scraper_timeout_seconds: float = 30.0

    # Search
    search_default_limit: int = 10
    search_max_limit: int = 50
    search_min_query_length: int = 2
    # Users whose word-wheel index stays in memory; least recently used are dropped
    search_index_max_sections: int = 1000


@lru_cache
def get_settings() -> Settings:
    return Settings()
