"""
Application configuration from environment variables.
"""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class AppConfig(BaseSettings):
    # Marker file written by the SPA launch manager; forwarding is off without it
    spa_proxy_marker_file: str = "spa.proxy.json"
    # Overrides the ClientUrl found in the marker file
    spa_proxy_client_url: Optional[str] = None
    # Upper bound in seconds for a single forward (send + response headers)
    spa_proxy_timeout: float = 100.0
    spa_proxy_log_level: str = "DEBUG"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8"
    )


@lru_cache
def get_config() -> AppConfig:
    return AppConfig()
