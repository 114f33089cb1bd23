from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Background cleanup of expired limiter windows and cache entries
    cleanup_interval_seconds: float = 60.0
    enable_background_sweep: bool = True

    # Honour `x-test-bypass: true` on rate-limited routes (dev / automated tests only)
    allow_test_bypass: bool = False

    # Bearer token for the monitoring routes; monitoring is disabled when unset
    admin_token: str | None = None

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="POSTGUARD_", env_file=".env", env_file_encoding="utf-8", extra="ignore")


settings = Settings()
