from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "dev"
    SERVICE_PORT: int = 8080
    LOG_JSON: bool = True
    # Largest accepted request body (rule definitions and records)
    MAX_RECORD_SIZE: int = 65536
    # Success rate at or above which a rule counts as effective
    EFFECTIVENESS_THRESHOLD: float = 0.8
    # Optional JSON file of rules loaded into the repository at startup
    SEED_RULES_PATH: str | None = None

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
