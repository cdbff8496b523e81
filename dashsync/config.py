"""Configuration settings for dashsync."""

import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings

# Remote table holding one snapshot row per user
USER_DATA_TABLE = "user_data"


class ConfigurationError(ValueError):
    """Required settings are missing or invalid."""


def get_dashsync_home() -> Path:
    """Directory for local dashsync state (``DASHSYNC_HOME`` or ``~/.dashsync``)."""
    home = os.environ.get("DASHSYNC_HOME")
    if home:
        return Path(home).expanduser()
    return Path.home() / ".dashsync"


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Supabase
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None  # anon/publishable key or a user access token
    table: str = USER_DATA_TABLE

    # Identity used by the CLI when no auth session is available
    user_id: Optional[str] = None

    # Engine timing
    debounce_ms: int = 180  # near real-time coalescing of local edits
    periodic_pull_seconds: float = 60.0  # catch edits missed by realtime
    flush_timeout_seconds: float = 2.0

    # Local state
    state_path: Optional[Path] = None

    log_level: str = "WARNING"

    class Config:
        env_prefix = "DASHSYNC_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    def resolved_state_path(self) -> Path:
        return self.state_path or get_dashsync_home() / "state.json"

    def require_supabase(self) -> tuple:
        """Return ``(url, key)`` or raise when Supabase is not configured."""
        if not self.supabase_url or not self.supabase_key:
            raise ConfigurationError("DASHSYNC_SUPABASE_URL and DASHSYNC_SUPABASE_KEY must be set")
        return self.supabase_url, self.supabase_key


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
