"""Configuration settings for the application."""

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 3001
    DEBUG: bool = False
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical
    CORS_ORIGINS: List[str] = ["http://localhost:3002", "http://127.0.0.1:3002"]

    # Model configuration
    MODEL_PROVIDER: str = "openai"  # Options: openai, anthropic, echo
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_MODEL: str = "claude-3-5-haiku-latest"
    TEMPERATURE: float = 0.1
    MAX_TOKENS: int = 1000

    # Orchestration
    MAX_TOOL_ITERATIONS: int = 5  # Tool rounds allowed before a turn fails
    ALLOW_TOOL_OVERRIDE: bool = True  # Re-registering a tool name replaces it

    # Tool providers
    PRODUCTS_FILE: str = "data/products.json"
    MOMENTS_API_ENDPOINT: str | None = None
    MOMENTS_ENGINE_ID: str | None = None
    MOMENTS_ATTRIBUTE_ID: str = "5447"
    MOMENTS_TIMEOUT: float = 10.0

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
