"""All settings, loaded from the environment or the .env file."""
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    app_url: str = "http://localhost:3000"
    cors_origins: List[str] = ["*"]
    production: bool = False
    log_level: str = "INFO"

    # MongoDB
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "carrental"

    # Auth
    password_reset_ttl_minutes: int = 60

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
