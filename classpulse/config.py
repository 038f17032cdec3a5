"""
Configuration management for the application
"""

import tomllib
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from classpulse.models import SortOrder


class ViewPolicy:
    """Display and celebration rules for one kind of viewer"""

    def __init__(self, name: str, data: dict[str, Any]) -> None:
        self.name = name
        self.min_total: int = data.get("min_total", 0)
        # Keep only topics that need attention (bad > 40% or good >= 60%)
        self.attention_only: bool = data.get("attention_only", False)
        self.hide_archived: bool = data.get("hide_archived", False)
        self.sort: SortOrder = SortOrder(data.get("sort", SortOrder.PRIORITY.value))
        self.celebrate: bool = data.get("celebrate", True)
        self.celebration_min_total: int = data.get("celebration_min_total", 1)
        self.celebration_requires_critical: bool = data.get(
            "celebration_requires_critical", False
        )


DEFAULT_VIEWS: dict[str, dict[str, Any]] = {
    "dashboard": {
        "min_total": 1,
        "hide_archived": True,
        "celebration_min_total": 3,
        "celebration_requires_critical": True,
    },
    "projector": {
        "min_total": 0,
        "celebration_min_total": 1,
    },
    "student": {
        "min_total": 0,
        "sort": "votes",
        "celebration_min_total": 1,
    },
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Redis configuration
    redis_url: str = Field(default="redis://localhost:6379", description="Redis connection URL")

    # Security
    secret_key: str = Field(
        default="dev-secret-key-change-in-production",
        description="Secret key for signing participant cookies",
    )
    token_cookie_max_age: int = Field(
        default=10 * 365 * 86400,
        description="Lifetime of the participant token cookie (seconds)",
    )

    # Voting
    vote_cooldown: float = Field(
        default=1.5, description="Minimum seconds between vote changes on one topic"
    )
    atomic_vote_writes: bool = Field(
        default=False,
        description="Apply vote changes in a single Redis transaction",
    )
    topic_name_max_length: int = Field(default=100, description="Maximum topic name length")

    # Synchronization
    poll_interval: float = Field(default=1.0, description="Seconds between topic polls")
    celebration_notification_ttl: float = Field(
        default=6.0, description="Seconds a celebration notification stays visible"
    )
    celebration_archive_delay: float = Field(
        default=6.5, description="Seconds before a celebrated topic is archived"
    )
    celebration_claim_ttl: int = Field(
        default=3600, description="Seconds before an unreleased celebration claim lapses"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Minimum log level")
    environment: str = Field(
        default="development", description="'production' switches logs to JSON"
    )

    # View policies file path (built-in defaults when unset)
    views_file: str | None = Field(default=None, description="Path to views TOML file")

    # Views cache
    _views: dict[str, ViewPolicy] | None = None

    def load_views(self) -> dict[str, ViewPolicy]:
        """Load view policies, overlaying the TOML file on the defaults"""
        if self._views is not None:
            return self._views

        overrides: dict[str, dict[str, Any]] = {}
        if self.views_file is not None:
            views_path = Path(self.views_file)
            if not views_path.exists():
                raise FileNotFoundError(f"Views file not found: {self.views_file}")

            with open(views_path, "rb") as f:
                data = tomllib.load(f)

            if "views" not in data:
                raise ValueError("Invalid views file: missing 'views' section")
            overrides = data["views"]

        names = list(DEFAULT_VIEWS) + [n for n in overrides if n not in DEFAULT_VIEWS]
        self._views = {
            name: ViewPolicy(name, {**DEFAULT_VIEWS.get(name, {}), **overrides.get(name, {})})
            for name in names
        }

        return self._views

    def get_view(self, name: str) -> ViewPolicy | None:
        """Get view policy by name"""
        views = self.load_views()
        return views.get(name)


# Global settings instance
settings = Settings()
