from __future__ import annotations

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FORUMFLOW_", extra="ignore")

    # Remote forum/wiki service (Answer + forum extensions)
    api_base_url: str = "http://localhost:9080"
    api_timeout_s: float = 8.0

    # development|production. Production disables the dev fallback and endpoint probing.
    app_env: str = "development"

    # When a read exhausts every endpoint candidate outside production, return the
    # caller's empty default instead of raising.
    dev_fallback_enabled: bool = True

    # Append dev_base_urls to the candidate list for reads (outside production only).
    dev_endpoint_probing: bool = False
    dev_base_urls: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:9080",
            "http://127.0.0.1:9080",
            "http://localhost:8080",
        ]
    )

    # Route prefixes. Reads may be retried on the sibling prefix; writes never are.
    public_prefix: str = "/api/v1"
    legacy_prefix: str = "/answer/api/v1"

    # Bearer token cookie used by the HTTP action surface.
    token_cookie_name: str = "answer_token"
    token_cookie_max_age_s: int = 7 * 24 * 3600

    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() in ("production", "prod")
