"""
Data source contract consumed by the ingestion orchestrator.
"""

from datetime import datetime
from typing import List, Protocol, runtime_checkable

from models import PullRequestRecord


@runtime_checkable
class DataSource(Protocol):
    """Source of repositories and pull-request snapshots."""

    async def list_repositories(self) -> List[str]:
        """Return the repositories to audit, in processing order."""
        ...

    async def list_pull_requests_updated_since(
        self, repository: str, since: datetime
    ) -> List[PullRequestRecord]:
        """
        Return every pull request of `repository` updated at or after `since`.

        Records carry their full review and event lists.
        """
        ...
