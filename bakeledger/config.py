from pydantic_settings import BaseSettings, SettingsConfigDict
class Settings(BaseSettings):
    APP_ENV: str = "dev"
    APP_SECRET: str = "dev-secret-change-me"
    JWT_ISS: str = "bakeledger"
    JWT_EXP_MIN: int = 12*60
    REMOTE_DB_URL: str = "sqlite:///./remote.sqlite3"
    LOCAL_DB_URL: str = "sqlite:///./mirror.sqlite3"
    RATE_API_URL: str = "https://pydolarve.org/api/v2/dollar/history"
    RATE_API_TOKEN: str = ""
    RATE_MAX_RETRIES: int = 5
    RATE_HTTP_TIMEOUT: float = 10.0
    TZ: str = "UTC"
    LOG_LEVEL: str = "INFO"
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
settings = Settings()
