from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    APP_NAME: str = "CRM Prep API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Header matching
    HEADER_MATCH_THRESHOLD: float = 0.4
    HEADER_TIE_DELTA: float = 0.05

    # Rule defaults
    DEFAULT_COUNTRY_CODE: str = "1"
    DATE_OUTPUT_FORMAT: str = "%Y-%m-%d"
    DATETIME_OUTPUT_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    DATE_DAYFIRST: bool = False

    # Custom rule scripts
    CUSTOM_SCRIPT_MAX_LENGTH: int = 2000
    CUSTOM_SCRIPT_MAX_STEPS: int = 10000

    # Enrichment
    OPENAI_API_KEY: str = ""
    ENRICHMENT_MODEL: str = "gpt-4o"
    ENRICHMENT_MAX_TOKENS: int = 200

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
