"""
Configuration management for the LLM-OS action event system.
Handles environment variables and configuration validation.
"""
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Approval gating
    default_autonomy_level: int = Field(2, description="Autonomy level used when a producer does not pass one (1-4)")

    # Action log retention
    action_retention: int = Field(50, description="Records kept by ActionRegistry.cleanup()")
    monitor_recent_limit: int = Field(20, description="Recent actions shown by the monitor")

    # Async delivery
    stream_queue_size: int = Field(1000, description="Max buffered records per ActionStream")

    # Logging Configuration
    log_level: str = "INFO"
    log_file: Optional[str] = "logs/llmos.log"

    # API Configuration
    api_host: str = "127.0.0.1"
    api_port: int = 8000


def get_settings() -> Settings:
    """Get application settings instance."""
    return Settings()


def validate_autonomy_level(level: int) -> int:
    """Validate an autonomy level (1 = suggest only, 4 = full autonomy)."""
    if not 1 <= level <= 4:
        raise ValueError(f"Invalid autonomy level: {level} (expected 1-4)")
    return level


def validate_configuration(config: Optional[Settings] = None) -> Settings:
    """Validate all configuration settings on startup."""
    settings = config or get_settings()

    validate_autonomy_level(settings.default_autonomy_level)

    # Validate log level
    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if settings.log_level.upper() not in valid_log_levels:
        raise ValueError(f"Invalid log level: {settings.log_level}")

    if settings.action_retention < 0:
        raise ValueError(f"Invalid action retention: {settings.action_retention}")

    return settings


# Global settings instance
settings = None

def init_settings() -> Settings:
    """Initialize and validate settings."""
    global settings
    if settings is None:
        settings = validate_configuration()
    return settings
