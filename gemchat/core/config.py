import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///chat.db"
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_API_URL = "http://localhost:8000"

LOG_LEVELS = {
    "prod": logging.WARNING,
    "release": logging.INFO,
    "debug": logging.DEBUG,
}


# ------------------------------------------------------------------------------
# Settings
# ------------------------------------------------------------------------------
@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    gemini_api_key: Optional[str] = None
    gemini_model: str = DEFAULT_MODEL
    environment: str = "prod"
    api_url: str = DEFAULT_API_URL
    state_file: Path = Path.home() / ".gemchat" / "state.json"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """Build settings from environment variables (and .env if present)"""
        if dotenv:
            load_dotenv()
        environment = os.environ.get("ENVIRONMENT", "prod")
        if environment not in LOG_LEVELS:
            logger.warning(f"Unknown ENVIRONMENT '{environment}', falling back to prod")
            environment = "prod"
        state_file = os.environ.get("GEMCHAT_STATE_FILE")
        return cls(
            database_url=normalize_database_url(
                os.environ.get("DATABASE_URL") or DEFAULT_DATABASE_URL
            ),
            gemini_api_key=os.environ.get("GEMINI_API_KEY") or None,
            gemini_model=os.environ.get("GEMINI_MODEL") or DEFAULT_MODEL,
            environment=environment,
            api_url=(os.environ.get("GEMCHAT_API_URL") or DEFAULT_API_URL).rstrip("/"),
            state_file=Path(state_file).expanduser() if state_file else cls.state_file,
        )


def normalize_database_url(url: str) -> str:
    """Map plain sqlite/postgres URLs onto their async drivers"""
    if url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + url[len("sqlite://"):]
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


def setup_logging(environment: str = "prod"):
    """Setup logging configuration based on the environment"""
    logging.basicConfig(
        level=LOG_LEVELS.get(environment, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
