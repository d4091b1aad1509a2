from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./liftlog.db"
    local_storage_key: str = "workouts"
    local_quota_bytes: int = 5 * 1024 * 1024  # browser localStorage default
    remote_base_url: str = "https://liftlog-default-rtdb.firebaseio.com"
    remote_auth_token: str | None = None  # passed as ?auth= on every request
    remote_timeout: float = 30.0
    catalog_base_url: str = "https://wger.de/api/v2"
    catalog_api_key: str | None = None
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_prefix = "LIFTLOG_"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    return Settings()
