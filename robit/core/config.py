"""
Configuration Settings.

This module defines the process configuration using Pydantic's BaseSettings.
Values are bound from ``ROBIT_*`` environment variables and an optional
``.env`` file in the working directory.

The policy document itself (capabilities, roots, approval routing) is not
part of these settings; ``config_path`` only tells the policy loader where to
find it. See ``robit.agent_core.policy.loader``.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RobitSettings(BaseSettings):
    """
    Process settings model.

    All properties are automatically bound from environment variables and .env file.
    Pydantic's BaseSettings handles dotenv loading automatically via model_config.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
        populate_by_name=True,
    )

    # =====================================================================
    # Policy document
    # =====================================================================
    config_path: Optional[str] = Field(
        default=None,
        description="Path of the TOML policy document; takes priority over working-directory files",
        alias="ROBIT_CONFIG_PATH",
    )

    # =====================================================================
    # Logging
    # =====================================================================
    log_level: str = Field(
        default="INFO",
        description="Console logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
        alias="ROBIT_LOG_LEVEL",
    )
    log_format: str = Field(
        default="detailed",
        description="Log line format: simple, detailed or json",
        alias="ROBIT_LOG_FORMAT",
    )
    log_file_dir: str = Field(
        default="logs",
        description="Directory for the robit.log file when file logging is enabled",
        alias="ROBIT_LOG_FILE_DIR",
    )
    enable_file_logging: bool = Field(
        default=False,
        description="Also write DEBUG-level logs to <log_file_dir>/robit.log",
        alias="ROBIT_ENABLE_FILE_LOGGING",
    )

    # =====================================================================
    # Persistence
    # =====================================================================
    database_url: Optional[str] = Field(
        default=None,
        description="Async SQLAlchemy URL for sessions and audit events; in-memory storage when unset",
        alias="ROBIT_DATABASE_URL",
    )

    # =====================================================================
    # Web search
    # =====================================================================
    brave_api_key: Optional[str] = Field(
        default=None,
        description="Brave Search subscription token used by web.search_brave when a step passes none",
        alias="ROBIT_BRAVE_API_KEY",
    )

    # =====================================================================
    # Stdin adapter
    # =====================================================================
    prompt: str = Field(
        default="robit> ",
        description="Prompt printed by the stdin adapter",
        alias="ROBIT_PROMPT",
    )


settings = RobitSettings()
