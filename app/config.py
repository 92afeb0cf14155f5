from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Read replica of the product database (activity sources)
    DATABASE_URL: str = "postgresql://localhost:5432/analytics"

    # Redis settings (chart series cache)
    REDIS_URL: str = "redis://localhost:6379/0"

    # =================================================================
    # DATABASE POOL SETTINGS - Simple and configurable
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    # =================================================================
    # ANALYTICS SETTINGS
    # =================================================================
    # Wallet addresses starting with any of these belong to internal testers
    ANALYTICS_TEST_WALLET_PREFIXES: list[str] = [
        "3cdea198",
        "5ada04cd",
        "44b0c8fd",
        "c9e86577",
        "496a071a",
        "a3b8a5ba",
        "2fbe2485",
    ]
    # Sessions against this counterparty are internal test conversations
    ANALYTICS_TEST_ARTIST_NAME: str = "sweetman_eth"

    ANALYTICS_CACHE_TTL_S: int = 300  # 5 minutes
    ANALYTICS_CACHE_STALE_TTL_S: int = 3600  # stale copy kept for fallback
    ANALYTICS_CACHE_REFRESH_WAIT_S: float = 20.0
    ANALYTICS_UPSTREAM_TIMEOUT_S: float = 15.0
    ANALYTICS_MAX_CONCURRENCY: int = 8

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            # Chart endpoints fan out per sub-interval; keep local pools small
            config.update(
                {
                    "min_size": 1,
                    "max_size": 4,
                    "timeout": 15.0,
                }
            )

        return config


settings = Settings()
