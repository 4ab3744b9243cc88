"""
Configuration for the accessibility analyzer service.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEV_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:3001",
]

AXE_CDN_URL = "https://cdnjs.cloudflare.com/ajax/libs/axe-core/4.9.1/axe.min.js"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    environment: str = Field(default="development", description="development or production")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000)
    log_level: str = Field(default="INFO")
    app_version: str = Field(default="1.0.0")

    # CORS
    frontend_url: Optional[str] = Field(default=None, description="Allowed frontend origin in production")
    extra_cors_origins: List[str] = Field(default_factory=list)

    # Report store (MongoDB). No URI means reports are not persisted.
    mongodb_uri: Optional[str] = Field(default=None)
    mongodb_database: str = Field(default="accessibility")
    mongodb_timeout_ms: int = Field(default=5000)
    stored_input_max_chars: int = Field(default=1000)

    # Rendering
    chromium_path: Optional[str] = Field(default=None, description="Use a system Chromium instead of Playwright's")
    navigation_timeout_ms: Optional[int] = Field(default=None)
    settle_delay_ms: int = Field(default=2000, description="Pause after network idle for late async content")
    post_load_delay_ms: int = Field(default=1000)
    browser_pool_size: int = Field(default=2, ge=1)
    rendering_backends: List[str] = Field(default_factory=lambda: ["pool", "fetch"])
    fallback_enabled: bool = Field(default=True)
    remote_render_url: Optional[str] = Field(default=None, description="Browser-as-a-service base URL")
    remote_render_token: Optional[str] = Field(default=None)
    max_response_bytes: int = Field(default=10 * 1024 * 1024)
    user_agent: str = Field(default=DEFAULT_USER_AGENT)
    viewport_width: int = Field(default=1280)
    viewport_height: int = Field(default=720)

    # Rule engine
    axe_script_path: Optional[str] = Field(default=None)
    axe_script_url: str = Field(default=AXE_CDN_URL)
    rule_engine_timeout_ms: int = Field(default=30000)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @computed_field
    @property
    def cors_origins(self) -> List[str]:
        if self.is_production:
            origins = [self.frontend_url] if self.frontend_url else []
            return origins + list(self.extra_cors_origins)
        return DEV_ORIGINS + list(self.extra_cors_origins)

    @computed_field
    @property
    def effective_navigation_timeout_ms(self) -> int:
        if self.navigation_timeout_ms:
            return self.navigation_timeout_ms
        return 30000 if self.is_production else 60000


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
