from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
from pathlib import Path
from typing import Optional

root_dir = Path(__file__).parent.parent
env_path = root_dir / ".env"
load_dotenv(env_path)

DEV_ENCRYPTION_KEY = "appdeck-development-key-please-change"


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "AppDeck"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # Stockage
    PROJECTS_DIR: str = str(root_dir.parent / "projects")
    BACKUPS_DIR: str = str(root_dir.parent / "backups")
    DB_PATH: str = str(root_dir / "appdeck.db")

    # Secrets
    ENCRYPTION_KEY: Optional[str] = None
    ENCRYPTION_SALT: str = "appdeck-salt"

    # Processus
    PROCESS_PREFIX: str = "appdeck-"
    DEFAULT_PORT: int = 3000
    PM2_BINARY: str = "pm2"
    SUPERVISOR_TIMEOUT_SECONDS: float = 60.0

    # Nettoyage différé
    SWEEP_INTERVAL_SECONDS: float = 300.0
    SWEEP_MAX_ATTEMPTS: Optional[int] = 100

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.DB_PATH}"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=True,
    )
