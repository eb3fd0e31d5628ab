from pydantic_settings import BaseSettings, SettingsConfigDict
class Settings(BaseSettings):
    APP_ENV: str = "dev"
    APP_SECRET: str
    DB_URL: str
    JWT_ISS: str = "swms"
    TZ: str = "UTC"
    LOG_LEVEL: str = "INFO"
    STATEMENT_TIMEOUT_MS: int = 15000
    # anomaly / dashboard thresholds
    WEIGHING_DEVIATION_PCT: float = 20.0
    AGING_BUCKETS_DAYS: list[int] = [30, 60, 90]
    DWELL_ALERT_HOURS: float = 24.0
    ANOMALY_WINDOW_DAYS: int = 7
    SETTLEMENT_VAT_RATE: float = 0.1
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
settings = Settings()
