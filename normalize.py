"""
Coercion of user-supplied paste options.

Out-of-range cosmetic choices are never errors; they fall back to the
configured default. Only content size is a hard rejection.
"""
from typing import Optional, Union

from config import Settings
from errors import ValidationRejected

LANGUAGES = (
    "auto", "plaintext", "rust", "python", "javascript", "typescript", "go", "java",
    "cpp", "html", "css", "json", "yaml", "sql", "bash",
)

TITLE_MAX_CHARS = 80


def _as_int(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def normalize_expires_in(expires_in, settings: Settings) -> int:
    value = _as_int(expires_in)
    if value in settings.expires_options_secs:
        return value
    return settings.default_expires_secs


def normalize_token_length(token_length, settings: Settings) -> int:
    value = _as_int(token_length)
    if value in settings.token_lengths:
        return value
    return settings.default_token_length


def is_allowed_language(value: str) -> bool:
    return value in LANGUAGES


def normalize_language(language: Optional[str]) -> str:
    value = (language or "auto").strip().lower()
    return value if is_allowed_language(value) else "auto"


def normalize_title(title: Optional[str], content: str) -> str:
    trimmed = (title or "").strip()
    if trimmed:
        return trimmed
    lines = content.splitlines()
    first_line = lines[0].strip() if lines else ""
    if not first_line:
        return "Untitled"
    return first_line[:TITLE_MAX_CHARS]


def normalize_max_views(max_views) -> Optional[int]:
    value = _as_int(max_views)
    if value is None or value <= 0:
        return None
    return value


def normalize_is_public(is_public: Union[str, bool, None], max_views: Optional[int]) -> bool:
    """A burn-limited paste never shows up in the public listing."""
    if isinstance(is_public, str):
        flag = is_public.strip().lower() in ("on", "true", "1", "yes")
    else:
        flag = bool(is_public)
    return flag and max_views is None


def content_size(content: str) -> int:
    return len(content.encode("utf-8"))


def validate_content(content: Optional[str], settings: Settings) -> str:
    if content is None or content.strip() == "":
        raise ValidationRejected("Content must not be empty")
    if len(content) > settings.max_content_length:
        raise ValidationRejected(f"Content exceeds {settings.max_content_length} max chars")
    if content_size(content) > settings.max_total_content_length:
        raise ValidationRejected(f"Content exceeds {settings.max_total_content_length} max bytes")
    return content
