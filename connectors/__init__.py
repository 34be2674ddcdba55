"""
Data sources for pull-request audit ingestion.

Provides the tool-endpoint data source used in production and an offline
sample source for demos and tests.
"""

from .base import DataSource
from .exceptions import (APIException, AuthenticationException,
                         ConnectorException, NotFoundException,
                         RateLimitException)
from .mcp import McpDataSource, McpToolClient
from .sample import SampleDataSource

__all__ = [
    # Data sources
    "DataSource",
    "McpDataSource",
    "McpToolClient",
    "SampleDataSource",
    # Exceptions
    "ConnectorException",
    "RateLimitException",
    "AuthenticationException",
    "NotFoundException",
    "APIException",
]
