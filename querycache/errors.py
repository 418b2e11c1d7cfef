"""
Error types for the query cache layer.
"""

from typing import Dict, Any, Optional


class QueryCacheError(Exception):
    """Base exception for the query cache layer."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for structured logs."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(QueryCacheError):
    """Invalid builder or settings arguments, raised at call time."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class StoreUnavailableError(QueryCacheError):
    """The key-value store could not be reached or returned garbage."""

    def __init__(self, message: str = "Key-value store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_UNAVAILABLE", message, details)


class QueryEngineError(QueryCacheError):
    """Raised by query engine adapters; the cache layer never interprets it."""

    def __init__(self, message: str = "Query execution failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("QUERY_ENGINE_ERROR", message, details)


class PreconditionError(QueryCacheError):
    """A component was used before its dependencies were configured."""

    def __init__(self, message: str = "Required dependency not configured", details: Optional[Dict[str, Any]] = None):
        super().__init__("PRECONDITION_ERROR", message, details)
