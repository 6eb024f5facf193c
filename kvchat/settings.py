from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration for the chat service."""

    POLL_INTERVAL_SECONDS: float = 2.0
    STORE_URL: str | None = None
    STORE_API_KEY: str | None = None
    STORE_TIMEOUT: float = 10.0
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


def get_settings() -> Settings:
    """Load configuration values from the environment."""
    return Settings()


settings = get_settings()
