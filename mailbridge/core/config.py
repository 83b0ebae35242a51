"""
Centralized Configuration Management for MailBridge

Provides pydantic-based configuration with:
- Environment variable loading (.env support)
- Type validation
- Default values

Usage:
    from mailbridge.core.config import get_config

    config = get_config()
    print(config.email_label)
    print(config.poll_interval_seconds)
"""

import shlex
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mailbridge.core.storage.paths import component_db_path, default_workspaces_dir


class MailBridgeConfig(BaseSettings):
    """
    Central configuration for MailBridge

    All settings can be overridden via environment variables with MAILBRIDGE_ prefix.
    For example: MAILBRIDGE_EMAIL_LABEL, MAILBRIDGE_POLL_INTERVAL_SECONDS, etc.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="MAILBRIDGE_",
        case_sensitive=False,
        extra="ignore",
    )

    # ============================================
    # Mailbox Configuration
    # ============================================

    email_label: str = Field(
        default="agent",
        description="Gmail label watched for unread messages"
    )

    poll_interval_seconds: int = Field(
        default=60,
        description="Seconds between poll cycles (clamped to 30-3600)"
    )

    credentials_dir: Path = Field(
        default_factory=lambda: Path.home() / ".gmail-mcp",
        description="Directory holding gcp-oauth.keys.json and credentials.json"
    )

    # ============================================
    # Storage Configuration
    # ============================================

    workspaces_dir: Path = Field(
        default_factory=default_workspaces_dir,
        description="Root directory for per-sender conversation workspaces"
    )

    database_path: Optional[Path] = Field(
        default=None,
        description="SQLite database for idempotency records and sessions"
    )

    # ============================================
    # Agent Configuration
    # ============================================

    agent_command: str = Field(
        default="",
        description="Command line of the agent executor (JSON on stdin/stdout)"
    )

    agent_timeout_seconds: float = Field(
        default=600.0,
        description="Deadline for a single agent invocation"
    )

    # ============================================
    # Application Configuration
    # ============================================

    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )

    @property
    def resolved_database_path(self) -> Path:
        """Database path (uses unified path management if not overridden)."""
        if self.database_path:
            return Path(self.database_path).expanduser()
        return component_db_path("mailbridge")

    @property
    def agent_argv(self) -> List[str]:
        """Agent command split into argv."""
        return shlex.split(self.agent_command)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(
                f"log_level must be one of: {', '.join(valid_levels)}"
            )
        return v.upper()

    @field_validator("agent_timeout_seconds")
    @classmethod
    def validate_agent_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("agent_timeout_seconds must be positive")
        return v

    @field_validator("credentials_dir", "workspaces_dir")
    @classmethod
    def expand_user(cls, v: Path) -> Path:
        return Path(v).expanduser()


# Global config instance
_config: Optional[MailBridgeConfig] = None


def get_config(force_reload: bool = False) -> MailBridgeConfig:
    """
    Get the global configuration instance

    Args:
        force_reload: Force reload configuration from environment

    Returns:
        MailBridgeConfig instance
    """
    global _config

    if _config is None or force_reload:
        _config = MailBridgeConfig()

    return _config
