from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    omdb_api_key: Optional[str] = None
    omdb_base_url: str = "http://www.omdbapi.com/"
    request_timeout: float = 10.0
    max_concurrent_requests: int = 10
    cache_ttl_hours: int = 24
    database_path: Path = Path("data/movies.db")
    cleanup_schedule: str = "0 2 * * *"
    dev_cleanup_schedule: str = "0 */6 * * *"
    environment: str = "production"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


settings = Settings()
