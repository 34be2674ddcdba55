"""
Data source backed by an MCP-style tool invocation endpoint.

The endpoint accepts `POST {"name": <tool>, "arguments": {...}}` and answers
with `{"result": {...}}`. Four tools are used: one listing repositories, one
listing pull requests updated since a timestamp, and one each for the reviews
and events of a single pull request.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from connectors.utils.rest import RESTClient
from models import (EventRecord, PullRequestRecord, PullRequestState,
                    ReviewRecord)
from utils import format_timestamp, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://localhost:8080/tools/invoke"
DEFAULT_LIST_REPOSITORIES_TOOL = "list_repositories"
DEFAULT_LIST_PULL_REQUESTS_TOOL = "list_pull_requests"
DEFAULT_LIST_REVIEWS_TOOL = "list_reviews"
DEFAULT_LIST_EVENTS_TOOL = "list_pull_request_events"


class McpToolClient:
    """Invokes named tools on the endpoint and returns the decoded response."""

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        api_key: Optional[str] = None,
        timeout: int = 30,
        rest_client: Optional[RESTClient] = None,
    ):
        self.endpoint = endpoint
        self.rest = rest_client or RESTClient(
            base_url=endpoint,
            token=api_key or None,
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    def invoke_tool(self, name: str, arguments: Dict[str, Any]) -> Optional[Any]:
        """
        Invoke a tool synchronously.

        :param name: Tool name.
        :param arguments: Tool arguments.
        :return: Decoded JSON response, or None when the body is empty.
        """
        logger.debug("Invoking tool %s with %s", name, arguments)
        return self.rest.post(payload={"name": name, "arguments": arguments})


def _result_list(response: Any, field_name: str) -> List[Any]:
    if not isinstance(response, dict):
        return []
    result = response.get("result")
    if not isinstance(result, dict):
        return []
    items = result.get(field_name)
    return items if isinstance(items, list) else []


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _as_text(value: Any, default: str) -> str:
    if value is None:
        return default
    return str(value)


def parse_state(node: Dict[str, Any]) -> PullRequestState:
    """A merge timestamp wins; otherwise `open` (any case) is Open and all else Closed."""
    if parse_timestamp(node.get("merged_at")) is not None:
        return PullRequestState.MERGED
    state = node.get("state")
    if isinstance(state, str) and state.casefold() == "open":
        return PullRequestState.OPEN
    return PullRequestState.CLOSED


class McpDataSource:
    """
    DataSource implementation that calls the tool endpoint.

    Tool calls are blocking HTTP requests and run in worker threads.
    """

    def __init__(
        self,
        client: McpToolClient,
        organization: Optional[str] = None,
        repositories: Optional[Sequence[str]] = None,
        list_repositories_tool: str = DEFAULT_LIST_REPOSITORIES_TOOL,
        list_pull_requests_tool: str = DEFAULT_LIST_PULL_REQUESTS_TOOL,
        list_reviews_tool: str = DEFAULT_LIST_REVIEWS_TOOL,
        list_events_tool: str = DEFAULT_LIST_EVENTS_TOOL,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.client = client
        self.organization = organization
        self.repositories = [r for r in (repositories or []) if r and r.strip()]
        self.list_repositories_tool = list_repositories_tool
        self.list_pull_requests_tool = list_pull_requests_tool
        self.list_reviews_tool = list_reviews_tool
        self.list_events_tool = list_events_tool
        self._clock = clock

    async def _invoke(self, name: str, arguments: Dict[str, Any]) -> Optional[Any]:
        return await asyncio.to_thread(self.client.invoke_tool, name, arguments)

    async def list_repositories(self) -> List[str]:
        if self.repositories:
            return list(self.repositories)

        response = await self._invoke(
            self.list_repositories_tool, {"organization": self.organization}
        )
        return [
            value
            for value in _result_list(response, "repositories")
            if isinstance(value, str) and value.strip()
        ]

    async def list_pull_requests_updated_since(
        self, repository: str, since: datetime
    ) -> List[PullRequestRecord]:
        response = await self._invoke(
            self.list_pull_requests_tool,
            {
                "repository": repository,
                "state": "all",
                "updated_since": format_timestamp(since),
            },
        )

        records: List[PullRequestRecord] = []
        for node in _result_list(response, "pull_requests"):
            if not isinstance(node, dict):
                continue

            number = _as_int(node.get("number"))
            if number <= 0:
                continue

            updated_at = parse_timestamp(node.get("updated_at")) or self._clock()
            if updated_at < since:
                continue

            reviews = await self._fetch_reviews(repository, number)
            events = await self._fetch_events(repository, number)

            records.append(
                PullRequestRecord(
                    repository=repository,
                    number=number,
                    title=_as_text(node.get("title"), ""),
                    author=_as_text(node.get("author"), "unknown"),
                    state=parse_state(node),
                    created_at=parse_timestamp(node.get("created_at")) or updated_at,
                    updated_at=updated_at,
                    merged_at=parse_timestamp(node.get("merged_at")),
                    reviews=reviews,
                    events=events,
                )
            )

        logger.debug(
            "Tool returned %d pull requests for %s since %s",
            len(records),
            repository,
            since,
        )
        return records

    async def _fetch_reviews(self, repository: str, number: int) -> List[ReviewRecord]:
        response = await self._invoke(
            self.list_reviews_tool,
            {"repository": repository, "pull_request_number": number},
        )
        return [
            ReviewRecord(
                reviewer=_as_text(node.get("reviewer"), "unknown"),
                state=_as_text(node.get("state"), "UNKNOWN"),
                submitted_at=parse_timestamp(node.get("submitted_at")) or self._clock(),
            )
            for node in _result_list(response, "reviews")
            if isinstance(node, dict)
        ]

    async def _fetch_events(self, repository: str, number: int) -> List[EventRecord]:
        response = await self._invoke(
            self.list_events_tool,
            {"repository": repository, "pull_request_number": number},
        )
        return [
            EventRecord(
                event_type=_as_text(node.get("event_type"), "UNKNOWN"),
                actor=_as_text(node.get("actor"), "unknown"),
                occurred_at=parse_timestamp(node.get("occurred_at")) or self._clock(),
            )
            for node in _result_list(response, "events")
            if isinstance(node, dict)
        ]
