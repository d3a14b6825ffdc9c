import logging
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = Field("sqlite:///./family_meals.db", alias="DATABASE_URL")
    llm_base_url: str | None = Field(None, alias="LLM_BASE_URL")
    llm_model_name: str = Field("full", alias="LLM_MODEL_NAME")
    llm_app_id: str | None = Field(None, alias="LLM_APP_ID")
    llm_app_key: str | None = Field(None, alias="LLM_APP_KEY")
    llm_timeout_seconds: int = Field(120, alias="LLM_TIMEOUT_SECONDS")
    llm_max_tokens: int = Field(4096, alias="LLM_MAX_TOKENS")
    generation_max_attempts: int = Field(3, alias="GENERATION_MAX_ATTEMPTS")
    generation_retry_backoff_seconds: float = Field(1.0, alias="GENERATION_RETRY_BACKOFF_SECONDS")
    recipe_pool_limit: int = Field(50, alias="RECIPE_POOL_LIMIT")
    history_lookback_days: int = Field(28, alias="HISTORY_LOOKBACK_DAYS")
    default_servings: int = Field(2, alias="DEFAULT_SERVINGS")

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")


logger = logging.getLogger(__name__)


@lru_cache
def get_settings() -> Settings:
    try:
        settings = Settings()
    except PermissionError:
        logger.warning("Unable to read .env; continuing with environment variables only")
        settings = Settings(_env_file=None)
    return settings
