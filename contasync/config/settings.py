from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from pathlib import Path
from typing import Optional


BASE_DIR = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        env_prefix="CONTASYNC_",
        extra="ignore",
    )

    # Database
    database_url: str = f"sqlite:///{BASE_DIR}/data/db/contasync.db"

    # Server
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    log_file: Optional[Path] = BASE_DIR / "contasync.log"

    # Sync Engine
    sync_enabled: bool = False
    sync_endpoint: str = "https://api.contavepro.com/sync"
    sync_auth_token: str = ""
    sync_interval_seconds: float = 300.0               # 5 minutes
    sync_timeout_seconds: float = 30.0
    sync_changelog_capacity: int = 1000
    sync_changelog_retention_days: int = 30
    sync_syncable_types: list[str] = Field(
        default_factory=lambda: ["transaction", "provider", "voucher"]
    )

    # Hosted backend (ordinary record reads)
    records_endpoint: str = "https://api.contavepro.com"

    def model_post_init(self, __context):
        if self.database_url.startswith("sqlite:///") and ":memory:" not in self.database_url:
            Path(self.database_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)


settings = Settings()
