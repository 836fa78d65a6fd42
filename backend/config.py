from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List


class Settings(BaseSettings):
    # App
    APP_ENV: str = "development"
    DEBUG: bool = True
    CORS_ORIGINS: List[str] = ["https://pos.example.com"]

    # MongoDB
    MONGO_URL: str = "mongodb://localhost:27017"
    DB_NAME: str = "pos_promotions"

    # JWT (tokens émis par le service d'auth du POS)
    JWT_SECRET: str = "changeme_minimum_32_chars_here_please"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 120

    # Promotions
    BUSINESS_TIMEZONE: str = "UTC"       # heure locale du restaurant pour happy hours / jours
    CURRENCY: str = "USD"
    STRICT_USAGE_LIMITS: bool = True     # incrément conditionnel atomique des compteurs
    CATALOG_FETCH_LIMIT: int = 500       # promos max chargées par tenant et par calcul
    PREVIEW_RATE_LIMIT: str = "30/minute"
    ANALYTICS_DEFAULT_DAYS: int = 30     # période par défaut des statistiques d'usage

    model_config = SettingsConfigDict(
        env_file=[".env", "../.env"],  # cherche dans backend/ puis dans la racine
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
