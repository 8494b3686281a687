"""Configuration management for MCP Chat Gateway"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Model provider
    anthropic_api_key: str | None = None
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    anthropic_version: str = "2023-06-01"
    request_timeout: float = 120.0
    default_model: str = "claude-4-sonnet"
    max_output_tokens: int = 4096

    # Request orchestration
    connection_timeout: float = 30.0
    max_attempts: int = 3
    max_steps: int = 5
    smooth_stream_delay_ms: int = 50

    # File paths
    config_path: str = "config/chat_gateway.yaml"
    log_dir: str = "run"

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8001
    log_level: str = "info"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    @property
    def has_anthropic_key(self) -> bool:
        """Check if Anthropic API key is configured"""
        return bool(self.anthropic_api_key)


# Global settings instance
settings = Settings()


def get_config() -> Settings:
    """Get the global configuration instance."""
    return settings
