import os
from typing import Optional
from pydantic import BaseModel, Field, PositiveInt

DEFAULT_SEARCH_LIMIT = 100
# Below this many prefix hits the search engine also runs a substring scan.
DEFAULT_SEARCH_FALLBACK_THRESHOLD = 20

class RegistrySettings(BaseModel):
    """
    Runtime settings for the registry core, read from the environment.
    Call load_dotenv() first if values should come from a .env file.
    """

    database_url: Optional[str] = Field(None, description="SQLAlchemy async URL, e.g. postgresql+asyncpg://...")
    search_limit: PositiveInt = Field(DEFAULT_SEARCH_LIMIT, description="Default cap for each search channel")
    search_fallback_threshold: int = Field(
        DEFAULT_SEARCH_FALLBACK_THRESHOLD, ge=0,
        description="Prefix-hit count under which the substring fallback runs"
    )
    echo_sql: bool = Field(False, description="Log every SQL statement")
    log_level: str = Field("INFO", description="Root logging level")

    @classmethod
    def from_env(cls) -> "RegistrySettings":
        values = {
            "database_url": os.getenv("DATABASE_URL"),
            "search_limit": os.getenv("REGISTRY_SEARCH_LIMIT"),
            "search_fallback_threshold": os.getenv("REGISTRY_SEARCH_FALLBACK_THRESHOLD"),
            "echo_sql": os.getenv("REGISTRY_ECHO_SQL"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        # Unset variables fall back to the field defaults.
        return cls(**{key: value for key, value in values.items() if value is not None})
