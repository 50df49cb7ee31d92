"""Environment-driven settings for the label service."""
import os
from typing import FrozenSet, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_locations(name: str) -> Optional[FrozenSet[str]]:
    raw = os.getenv(name, "")
    names = [part.strip() for part in raw.split(",") if part.strip()]
    # Empty means free-text locations are accepted
    return frozenset(names) if names else None


class Settings:
    # Use PostgreSQL in production (from DATABASE_URL env var), SQLite locally
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./labeltrack.db")
    database_echo: bool = _env_bool("DATABASE_ECHO")

    # Label code format: PREFIX-XXXXXXXX
    label_code_prefix: str = os.getenv("LABEL_CODE_PREFIX", "BM")
    label_code_length: int = int(os.getenv("LABEL_CODE_LENGTH", "8"))
    label_code_max_attempts: int = int(os.getenv("LABEL_CODE_MAX_ATTEMPTS", "100"))
    label_write_retries: int = int(os.getenv("LABEL_WRITE_RETRIES", "3"))

    # Generate quantity bounds
    label_batch_min: int = int(os.getenv("LABEL_BATCH_MIN", "1"))
    label_batch_max: int = int(os.getenv("LABEL_BATCH_MAX", "500"))

    known_locations: Optional[FrozenSet[str]] = _env_locations("LABEL_KNOWN_LOCATIONS")

    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
