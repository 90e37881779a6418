"""Exception hierarchy for the Cortex agent.

Exception Hierarchy:
    CortexError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── ToolError (turned into a text result, never reaches the caller)
    │   ├── ToolValidationError
    │   ├── ToolTimeoutError
    │   └── ReadOnlyViolationError
    ├── RetrievalError (semantic tier failure, falls back to keyword tier)
    └── MemoryStoreError (long-term memory write/read failure)

Provider failures use LLMProviderError in providers/base.py, which carries
an ErrorType for the streamed error event.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================


class CortexError(Exception):
    """Base exception for all agent errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "TOOL_TIMEOUT")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether this error might be recoverable with retry
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.utcnow()
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================
# Configuration Errors (Unrecoverable)
# ============================================


class ConfigurationError(CortexError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Tool Errors
# ============================================


class ToolError(CortexError):
    """Base class for tool failures.

    Tools raise these internally; BaseTool.run converts them into the
    text handed back to the model.
    """

    def __init__(self, message: str, tool_name: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if tool_name:
            details["tool_name"] = tool_name
        kwargs.setdefault("recoverable", True)
        super().__init__(message, details=details, **kwargs)
        self.tool_name = tool_name


class ToolValidationError(ToolError):
    """Raised when model-supplied arguments do not match the tool schema."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code="TOOL_VALIDATION_ERROR", **kwargs)


class ToolTimeoutError(ToolError):
    """Raised when a tool exceeds its timeout."""

    def __init__(self, message: str, timeout_seconds: float, **kwargs):
        details = kwargs.pop("details", {})
        details["timeout_seconds"] = timeout_seconds
        super().__init__(message, code="TOOL_TIMEOUT", details=details, **kwargs)
        self.timeout_seconds = timeout_seconds


class ReadOnlyViolationError(ToolError):
    """Raised when a SQL statement is not provably read-only."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            code="READ_ONLY_VIOLATION",
            **kwargs,
        )


# ============================================
# Retrieval and Memory Errors
# ============================================


class RetrievalError(CortexError):
    """Raised when the semantic retrieval tier cannot serve a query."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, code="RETRIEVAL_ERROR", **kwargs)


class MemoryStoreError(CortexError):
    """Raised when long-term memory cannot be read or written."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, code="MEMORY_STORE_ERROR", **kwargs)
