import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()

BACKEND_DIR = os.path.dirname(os.path.abspath(__file__))


@dataclass(frozen=True)
class SyncSettings:
    """Timing policy for the remote override mirror"""
    debounce_seconds: float = 30.0
    poll_seconds: float = 300.0
    max_retries: int = 3
    retry_delay_seconds: float = 1.0
    backoff_base_seconds: float = 30.0
    backoff_max_seconds: float = 300.0
    tick_seconds: float = 1.0


class Config:
    # Supabase (shared override document)
    SUPABASE_URL = os.getenv("SUPABASE_URL")
    SUPABASE_KEY = os.getenv("SUPABASE_KEY")
    SUPABASE_TABLE = os.getenv("SUPABASE_TABLE", "shared_documents")

    # Local key-value store (SQLite)
    LOCAL_DB_PATH = os.getenv("LOCAL_DB_PATH", "./rack_quote_local.db")

    # Catalog tables
    CATALOG_DIR = os.getenv("CATALOG_DIR", os.path.join(BACKEND_DIR, "data"))

    # Sync policy
    SYNC_DEBOUNCE_SECONDS = float(os.getenv("SYNC_DEBOUNCE_SECONDS", "30"))
    SYNC_POLL_SECONDS = float(os.getenv("SYNC_POLL_SECONDS", "300"))
    SYNC_MAX_RETRIES = int(os.getenv("SYNC_MAX_RETRIES", "3"))
    SYNC_RETRY_DELAY_SECONDS = float(os.getenv("SYNC_RETRY_DELAY_SECONDS", "1.0"))
    SYNC_BACKOFF_BASE_SECONDS = float(os.getenv("SYNC_BACKOFF_BASE_SECONDS", "30"))
    SYNC_BACKOFF_MAX_SECONDS = float(os.getenv("SYNC_BACKOFF_MAX_SECONDS", "300"))
    SYNC_TICK_SECONDS = float(os.getenv("SYNC_TICK_SECONDS", "1.0"))

    # API Server
    API_HOST = os.getenv("API_HOST", "127.0.0.1")
    API_PORT = int(os.getenv("API_PORT", "8000"))

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    @staticmethod
    def validate():
        """Ensure remote credentials are present"""
        missing = []
        if not Config.SUPABASE_URL:
            missing.append("SUPABASE_URL")
        if not Config.SUPABASE_KEY:
            missing.append("SUPABASE_KEY")

        if missing:
            raise EnvironmentError(f"Missing required environment variables: {', '.join(missing)}")

        return True

    @staticmethod
    def remote_configured() -> bool:
        try:
            return Config.validate()
        except EnvironmentError:
            return False

    @staticmethod
    def sync_settings() -> SyncSettings:
        return SyncSettings(
            debounce_seconds=Config.SYNC_DEBOUNCE_SECONDS,
            poll_seconds=Config.SYNC_POLL_SECONDS,
            max_retries=Config.SYNC_MAX_RETRIES,
            retry_delay_seconds=Config.SYNC_RETRY_DELAY_SECONDS,
            backoff_base_seconds=Config.SYNC_BACKOFF_BASE_SECONDS,
            backoff_max_seconds=Config.SYNC_BACKOFF_MAX_SECONDS,
            tick_seconds=Config.SYNC_TICK_SECONDS,
        )
