import os
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application settings
    app_name: str = "Budget API"
    app_description: str = "Simple budget tracking REST API"
    app_version: str = "1.0.0"
    debug: bool = False

    # Server settings
    host: str = "0.0.0.0"
    port: int = 5000
    api_prefix: str = "/api"

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_per_minute: int = 60

    # CORS: loopback and localhost origins only
    allowed_origin_regex: str = r"http://(127(\.\d{1,3}){3}|localhost)(:\d+)?"

    # Store
    seed_demo_data: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Environment-specific configurations
class DevelopmentSettings(Settings):
    debug: bool = True
    log_level: str = "DEBUG"
    log_format: str = "text"
    seed_demo_data: bool = True
    rate_limit_per_minute: int = 300


class ProductionSettings(Settings):
    debug: bool = False
    log_level: str = "INFO"
    rate_limit_per_minute: int = 60


class TestingSettings(Settings):
    debug: bool = True
    log_level: str = "WARNING"  # Reduce noise in tests
    rate_limit_enabled: bool = False
    seed_demo_data: bool = False


def get_settings_for_environment(env: str = "development") -> Settings:
    """Get settings for specific environment."""
    settings_map = {
        "development": DevelopmentSettings,
        "production": ProductionSettings,
        "testing": TestingSettings,
    }

    settings_class = settings_map.get(env.lower(), Settings)
    return settings_class()


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings for the environment named by APP_ENV."""
    return get_settings_for_environment(os.getenv("APP_ENV", "development"))
