"""
REST API helper utilities.

Provides a small JSON-over-HTTP client used by the tool-invocation data source.
"""

import logging
from typing import Any, Dict, Optional

import requests

from connectors.exceptions import (APIException, AuthenticationException,
                                   NotFoundException, RateLimitException)
from connectors.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class RESTClient:
    """
    Generic REST API client with retry and rate limit handling.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = 30,
        headers: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize REST client.

        :param base_url: Base URL for the API.
        :param token: Optional bearer token.
        :param timeout: Request timeout in seconds.
        :param headers: Optional additional headers.
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.headers = dict(headers or {})

        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    def _url(self, endpoint: str) -> str:
        if not endpoint:
            return self.base_url
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    @staticmethod
    def _raise_for_status(response: requests.Response, url: str) -> None:
        if response.status_code == 401:
            raise AuthenticationException("Authentication failed")
        elif response.status_code == 403:
            raise APIException(f"Forbidden: {response.text}")
        elif response.status_code == 404:
            raise NotFoundException(f"Not found: {url}")
        elif response.status_code == 429:
            raise RateLimitException("API rate limit exceeded")
        elif not 200 <= response.status_code < 300:
            raise APIException(f"API error: {response.status_code} - {response.text}")

    @retry_with_backoff(
        max_retries=3,
        initial_delay=1.0,
        max_delay=30.0,
        exceptions=(RateLimitException, APIException),
    )
    def post(
        self,
        endpoint: str = "",
        payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Optional[Any]:
        """
        POST a JSON payload and return the decoded JSON response.

        :param endpoint: API endpoint (relative to base_url); empty posts to base_url.
        :param payload: JSON-serializable request body.
        :param headers: Optional additional headers.
        :return: Decoded response, or None for an empty body.
        :raises AuthenticationException: If authentication fails.
        :raises NotFoundException: If the endpoint does not exist.
        :raises RateLimitException: If rate limit is exceeded.
        :raises APIException: If the API returns an error or invalid JSON.
        """
        url = self._url(endpoint)
        request_headers = {**self.headers, **(headers or {})}

        try:
            response = requests.post(
                url,
                json=payload,
                headers=request_headers,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            raise APIException("Request timeout")
        except requests.exceptions.RequestException as e:
            raise APIException(f"Request failed: {e}")

        self._raise_for_status(response, url)

        if not response.content or not response.text.strip():
            return None
        try:
            return response.json()
        except ValueError as e:
            raise APIException(f"Invalid JSON response from {url}: {e}")
