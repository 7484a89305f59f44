"""domaingraph configuration: defaults, ignore rules and language detection."""

from domaingraph.config.ignore import DEFAULT_IGNORE_DIRS, load_gitignore, should_ignore
from domaingraph.config.languages import (
    LANGUAGE_EXTENSIONS,
    detect_language,
    get_language,
    is_supported,
)

__all__ = [
    "DEFAULT_IGNORE_DIRS",
    "LANGUAGE_EXTENSIONS",
    "detect_language",
    "get_language",
    "is_supported",
    "load_gitignore",
    "should_ignore",
]
