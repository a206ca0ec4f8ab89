"""Configuration settings for the application."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Pydantic settings class for the application."""

    # Define the settings with default values and types
    # These will be loaded from environment variables or a .env file if not provided
    API_PORT: int = 8000
    DEBUG: bool = False
    DATA_DIR: str = "./data"
    LOG_LEVEL: str = "info"  # Options: debug, info, warning, error, critical

    # LLM Configuration
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o"
    MAX_ITERATIONS: int = 50

    # MCP (Playwright tool server) Configuration
    SKIP_MCP: bool = False  # Local tools only
    MCP_PACKAGE: str = "@playwright/mcp@latest"
    PLAYWRIGHT_BROWSERS_PATH: str | None = None  # Defaults to ~/.cache/ms-playwright
    BROWSER_INSTALL_TIMEOUT: int = 120

    # Generated test suite
    PROJECT_DIR: str = "."  # Where `npx playwright test` is run
    TESTS_DIR: str = "tests"  # Relative to PROJECT_DIR unless absolute
    TEST_TIMEOUT: int = 300

    class Config:
        """Configuration for Pydantic settings."""

        # Load environment variables from a .env file
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
