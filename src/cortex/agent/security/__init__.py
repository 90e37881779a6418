"""Security helpers: client-facing error sanitization."""

from .error_sanitizer import (
    GENERIC_MESSAGE,
    ErrorSanitizer,
    SanitizationResult,
    get_sanitizer,
    sanitize_error_message,
)

__all__ = [
    "GENERIC_MESSAGE",
    "ErrorSanitizer",
    "SanitizationResult",
    "get_sanitizer",
    "sanitize_error_message",
]
