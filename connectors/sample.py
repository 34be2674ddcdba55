"""
Offline data source with a fixed set of pull requests per repository.
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from models import (EventRecord, PullRequestRecord, PullRequestState,
                    ReviewRecord)
from utils import utc_now

DEFAULT_SAMPLE_REPOSITORIES = ("org/platform-service", "org/payments-api")


def build_sample_pull_requests(
    repository: str, base_time: datetime
) -> List[PullRequestRecord]:
    """One open, one merged and one closed pull request anchored at `base_time`."""
    return [
        PullRequestRecord(
            repository=repository,
            number=101,
            title="Harden release branch checks",
            author="alice",
            state=PullRequestState.OPEN,
            created_at=base_time - timedelta(days=12),
            updated_at=base_time - timedelta(hours=5),
            reviews=(
                ReviewRecord("bob", "COMMENTED", base_time - timedelta(days=10)),
                ReviewRecord("claire", "APPROVED", base_time - timedelta(days=9)),
            ),
            events=(EventRecord("labeled", "alice", base_time - timedelta(days=12)),),
        ),
        PullRequestRecord(
            repository=repository,
            number=102,
            title="Fix changelog generation for hotfixes",
            author="bob",
            state=PullRequestState.MERGED,
            created_at=base_time - timedelta(days=8),
            updated_at=base_time - timedelta(days=2),
            merged_at=base_time - timedelta(days=2),
            reviews=(
                ReviewRecord("alice", "APPROVED", base_time - timedelta(days=3)),
                ReviewRecord("claire", "APPROVED", base_time - timedelta(days=3)),
            ),
            events=(
                EventRecord("merged", "release-bot", base_time - timedelta(days=2)),
            ),
        ),
        PullRequestRecord(
            repository=repository,
            number=103,
            title="Retire deprecated branch policy",
            author="claire",
            state=PullRequestState.CLOSED,
            created_at=base_time - timedelta(days=20),
            updated_at=base_time - timedelta(days=6),
            reviews=(
                ReviewRecord(
                    "alice", "CHANGES_REQUESTED", base_time - timedelta(days=7)
                ),
            ),
            events=(EventRecord("closed", "claire", base_time - timedelta(days=6)),),
        ),
    ]


class SampleDataSource:
    """DataSource returning deterministic demo data relative to the clock."""

    def __init__(
        self,
        repositories: Optional[Sequence[str]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repositories = [r for r in (repositories or []) if r and r.strip()]
        self._clock = clock

    async def list_repositories(self) -> List[str]:
        return list(self.repositories or DEFAULT_SAMPLE_REPOSITORIES)

    async def list_pull_requests_updated_since(
        self, repository: str, since: datetime
    ) -> List[PullRequestRecord]:
        return [
            pr
            for pr in build_sample_pull_requests(repository, self._clock())
            if pr.updated_at >= since
        ]
