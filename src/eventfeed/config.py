from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    api_base_url: str = "http://localhost:8080"
    database_url: str = "sqlite:///./eventfeed.db"
    downloads_dir: Path = Path.home() / ".eventfeed" / "downloads"
    secure_store_dir: Path = Path.home() / ".eventfeed" / "secure"
    page_size: int = 20
    polling_interval_seconds: float = 30.0
    request_timeout_seconds: float = 10.0

    # Demo backend (python -m eventfeed serve)
    backend_jwt_secret: str = "dev-secret-change-me"
    backend_token_ttl_minutes: int = 60 * 24
    backend_files_dir: Path = Path("./files")
    backend_port: int = 8080

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
