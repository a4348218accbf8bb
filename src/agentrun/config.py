"""Configuration settings for agentrun."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for agentrun."""

    # These will be loaded from environment variables or a .env file if not provided
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # Model / backend configuration
    DEFAULT_MODEL: str = "gpt-4o-mini"
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    REQUEST_TIMEOUT: float = 600.0  # seconds
    OPENAI_MAX_RETRIES: int = 2

    # Orchestration
    MAX_HANDOFF_DEPTH: int = 8

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
