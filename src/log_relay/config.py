from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from log_relay.correlation.sql import DEFAULT_IGNORE_PATTERNS


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LOG_RELAY_", env_file=".env", case_sensitive=False, extra="ignore")

    LOG_STACK: str = "index_file,search"
    SERVICE_NAME: Optional[str] = None
    ENVIRONMENT: str = "production"

    SEARCH_URL: Optional[str] = None
    SEARCH_DEFAULT_INDEX: str = "general_log"
    SEARCH_USERNAME: Optional[str] = None
    SEARCH_PASSWORD: Optional[str] = None
    SEARCH_VERIFY_TLS: bool = True
    SEARCH_TIMEOUT: float = 2.0
    SEARCH_SILENT: bool = True
    SEARCH_MAX_RETRIES: int = 3

    BROKER_URL: Optional[str] = None
    BROKER_TOPIC: str = "application-logs"
    BROKER_TIMEOUT: float = 2.0
    BROKER_SILENT: bool = True

    ORM_ENABLED: bool = True
    ORM_LOG_READ_OPERATIONS: bool = False
    ORM_SLOW_QUERY_THRESHOLD_MS: int = 1000
    ORM_IGNORE_PATTERNS: List[str] = list(DEFAULT_IGNORE_PATTERNS)
    ORM_MODEL_NAMESPACE: Optional[str] = None
    MAX_BINDINGS_SIZE: int = 2048

    DEFERRED_MAX_LOGS: int = 1000
    DEFERRED_WARN_ON_LIMIT: bool = True

    INDEX_FILE_DIR: str = "logs/log-relay"
    INDEX_FILE_RETENTION_DAYS: int = 14

    @property
    def channels(self) -> List[str]:
        return [c.strip() for c in self.LOG_STACK.split(",") if c.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
