"""
Exceptions for apollo-sync.
"""


class ApolloSyncError(Exception):
    """Base exception for apollo-sync operations."""


class ConfigurationError(ApolloSyncError):
    """Raised when the endpoint or credentials are missing or invalid."""


class RemoteError(ApolloSyncError):
    """Base exception for failures talking to the Apollo host."""


class AuthenticationError(RemoteError):
    """Raised on bad credentials or an expired session (HTTP 401)."""


class ConnectivityError(RemoteError):
    """Raised when the host is unreachable (refused, timed out, DNS)."""


class ApiError(RemoteError):
    """Raised when the host answers with an unexpected status code."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(ApolloSyncError):
    """Raised when a local catalog, cache file or response has the wrong shape."""


class LocalStoreError(ApolloSyncError):
    """Raised when a local JSON file cannot be read or written."""


class CacheError(ApolloSyncError):
    """Raised when the baseline cache cannot be written or cleared."""


class ApplicationError(ApolloSyncError):
    """Raised when a single entry's operation fails to apply."""

    def __init__(self, message: str, name: str | None = None, operation: str | None = None):
        super().__init__(message)
        self.name = name
        self.operation = operation
