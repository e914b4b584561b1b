# config.py
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    # Remote storage (PostgREST-compatible) holding one user_graph_data row per user
    storage_base_url: str = ""
    storage_anon_key: str = ""
    storage_table: str = "user_graph_data"
    profiles_table: str = "profiles"

    # External schema provider
    notion_api_url: str = "https://api.notion.com/v1"
    notion_version: str = "2022-06-28"
    schema_page_size: int = 100
    schema_proxy_url: Optional[str] = None
    untitled_placeholder: str = "Untitled"

    # Local cache
    app_prefix: str = "linka"
    local_store_url: str = "sqlite:///linka_local.db"

    # Network timeouts (seconds). Every suspension point races one of these.
    primary_write_timeout: float = 4.0
    primary_read_timeout: float = 3.0
    refresh_timeout: float = 3.0
    http_timeout: float = 10.0

    # Undo/redo
    history_debounce_ms: int = 500
    history_max_size: int = 50

    # Plan limits
    free_tier_table_limit: int = 4

    # Proxy session verification
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_audience: Optional[str] = "authenticated"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_prefix="LINKA_", extra="ignore")

    @property
    def rest_url(self) -> str:
        return f"{self.storage_base_url.rstrip('/')}/rest/v1"


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read once from the environment / .env file."""
    return Settings()
