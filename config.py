"""
Configuration for mayfile.
Loads environment variables (optionally from a .env file) into a Settings object.
"""
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

DEFAULT_EXPIRES_SECS = 86400
DEFAULT_EXPIRES_OPTIONS = [300, 3600, 86400, 604800]
DEFAULT_TOKEN_LENGTH = 6
DEFAULT_TOKEN_LENGTHS = [4, 6, 8, 12]


def default_db_path() -> str:
    # default to ./pastes/pastes.db
    return os.path.abspath(os.path.join(os.getcwd(), "pastes", "pastes.db"))


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    v = os.getenv(name)
    if not v:
        return default
    try:
        n = int(v)
    except ValueError:
        return default
    if n < minimum:
        return default
    return n


def _int_list_env(name: str, default: List[int]) -> List[int]:
    v = os.getenv(name)
    if not v:
        return list(default)
    try:
        values = [int(part) for part in v.split(",") if part.strip()]
    except ValueError:
        return list(default)
    values = [n for n in values if n > 0]
    return values or list(default)


class Settings(BaseModel):
    """Application settings."""

    db_path: str
    db_url: str
    default_expires_secs: int = DEFAULT_EXPIRES_SECS
    expires_options_secs: List[int] = DEFAULT_EXPIRES_OPTIONS
    default_token_length: int = DEFAULT_TOKEN_LENGTH
    token_lengths: List[int] = DEFAULT_TOKEN_LENGTHS
    max_content_length: int = 50000
    max_total_content_length: int = 50_000_000
    max_pastes: int = 10000
    create_per_min: int = 10
    disable_rate_limit: bool = False
    trust_proxy_headers: bool = False
    host: str = "0.0.0.0"
    port: int = 3000

    @classmethod
    def from_env(cls, db_path: Optional[str] = None, **overrides) -> "Settings":
        db_path = db_path or os.getenv("DATABASE_PATH") or default_db_path()
        values = {
            "db_path": db_path,
            "db_url": os.getenv("DB_URL", f"sqlite+aiosqlite:///{db_path}"),
            "default_expires_secs": _int_env("PASTE_DEFAULT_EXPIRES_SECS", DEFAULT_EXPIRES_SECS, 1),
            "expires_options_secs": _int_list_env("PASTE_EXPIRES_OPTIONS_SECS", DEFAULT_EXPIRES_OPTIONS),
            "default_token_length": _int_env("PASTE_DEFAULT_TOKEN_LENGTH", DEFAULT_TOKEN_LENGTH, 1),
            "token_lengths": _int_list_env("PASTE_TOKEN_LENGTHS", DEFAULT_TOKEN_LENGTHS),
            "max_content_length": _int_env("MAX_CHAR_CONTENT", 50000, 1),
            "max_total_content_length": _int_env("MAX_TOTAL_CONTENT_BYTES", 50_000_000, 1),
            "max_pastes": _int_env("MAX_PASTES", 10000, 1),
            "create_per_min": _int_env("CREATE_PER_MIN", 10, 1),
            "disable_rate_limit": os.getenv("DISABLE_RATE_LIMIT") == "1",
            "trust_proxy_headers": os.getenv("TRUST_PROXY_HEADERS") == "1",
            "host": os.getenv("HOST", "0.0.0.0"),
            "port": _int_env("PORT", 3000, 1),
        }
        values.update(overrides)
        return cls(**values)

    @property
    def max_expires_secs(self) -> int:
        return max(self.expires_options_secs, default=86400 * 7)
