"""
Configuration management for the Renovation Subsidy Project Management System
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Renovation Project Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Persistence
    MAX_CONFLICT_RETRIES: int = 3  # re-run a mutation this many times on a version conflict

    # Interventions
    SEED_DEFAULT_STAGES: bool = True
    DEFAULT_STAGE_OFFSETS_DAYS: list[int] = [10, 20, 35, 45]  # days from "now", capped at project deadline

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    return Settings()
