from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "SubTracker"
    VERSION: str = "1.0.0"

    # Remote REST API (serverless handlers)
    API_BASE_URL: str = "http://localhost:3000/api"
    API_TIMEOUT: int = 10

    # On-device cache
    DATABASE_URL: str = "sqlite:///./subtracker.db"

    # Offline sync
    TEMP_ID_PREFIX: str = "temp-"
    SYNC_ON_ENQUEUE: bool = True  # Flush right after enqueue when online

    # Billing reminders
    PAYMENT_REMINDER_DAYS: int = 7
    DUE_SOON_DAYS: int = 2

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"


settings = Settings()
