from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "Travel Platform API"
    APP_ENV: str = "local"
    LOG_FORMAT: str = ""

    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "travel_platform"

    # Auth
    SECRET_KEY: str = "supersecretkey"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 24 * 60

    # Prices are stored in BASE_CURRENCY and converted on read
    BASE_CURRENCY: str = "EGP"
    EXCHANGE_RATES_URL: str = "https://open.er-api.com/v6/latest"
    EXCHANGE_RATES_TIMEOUT: float = 10.0

    # Loyalty: points earned per base-currency unit spent, wallet credit per point redeemed
    LOYALTY_POINTS_PER_UNIT: float = 0.5
    LOYALTY_REDEEM_RATE: float = 0.01

    CORS_ORIGINS: List[str] = ["*"]


@lru_cache
def get_settings() -> Settings:
    return Settings()
