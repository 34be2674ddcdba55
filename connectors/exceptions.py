"""
Exception types for data source operations.
"""


class ConnectorException(Exception):
    """Base exception for all data source errors."""

    pass


class RateLimitException(ConnectorException):
    """Raised when the tool endpoint throttles requests."""

    pass


class AuthenticationException(ConnectorException):
    """Raised when the tool endpoint rejects the API key."""

    pass


class NotFoundException(ConnectorException):
    """Raised when the endpoint or tool does not exist."""

    pass


class APIException(ConnectorException):
    """Raised when the endpoint returns an error or an unusable payload."""

    pass
