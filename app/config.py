from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "Stock Ledger"
    DATABASE_URL: str = "sqlite:///./stock_ledger.db"

    # JWT auth
    SECRET_KEY: str = "change-me"
    ACCESS_TOKEN_EXPIRE_HOURS: int = 72

    # Created on startup when the users table is empty
    DEFAULT_ADMIN_USERNAME: str = "admin"
    DEFAULT_ADMIN_PASSWORD: str = "admin"

    # Used when an inventory row has no threshold of its own
    DEFAULT_LOW_STOCK_THRESHOLD: int = 5

    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env"}


settings = Settings()
