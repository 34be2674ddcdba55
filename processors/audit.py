import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from connectors.base import DataSource
from metrics.reports import (build_open_pr_report, build_release_audit_summary,
                             build_repository_report, build_user_stats)
from metrics.schemas import (IngestionRunResult, OpenPrSummary,
                             ReleaseAuditSummary, RepositoryReport,
                             UserStatSummary)
from models import PullRequestState, RepositoryCursor, to_utc
from storage import AuditStore
from utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 30


class PrAuditOrchestrator:
    """
    Incremental pull-request sync plus the report facade over the audit store.

    Each repository is checkpointed on its own: its cursor only moves forward
    after its pull requests are stored, so a failed repository is fetched again
    from the same cursor on the next run.
    """

    def __init__(
        self,
        store: AuditStore,
        data_source: DataSource,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        max_concurrency: int = 1,
        clock: Callable[[], datetime] = utc_now,
    ):
        if lookback_days < 1:
            raise ValueError("lookback_days must be at least 1")
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.store = store
        self.data_source = data_source
        self.lookback_days = lookback_days
        self.max_concurrency = max_concurrency
        self._clock = clock

    async def run_ingestion(self) -> IngestionRunResult:
        started_at = self._clock()
        repositories = await self.data_source.list_repositories()
        logger.info("Starting ingestion for %d repositories", len(repositories))

        if self.max_concurrency == 1:
            outcomes = [await self._sync_repository(repo) for repo in repositories]
        else:
            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def _bounded(repo: str) -> Tuple[int, Optional[str]]:
                async with semaphore:
                    return await self._sync_repository(repo)

            # gather keeps input order, so errors follow the repository list
            outcomes = list(
                await asyncio.gather(*(_bounded(repo) for repo in repositories))
            )

        pull_request_count = sum(count for count, _ in outcomes)
        errors = tuple(error for _, error in outcomes if error is not None)
        completed_at = self._clock()

        result = IngestionRunResult(
            started_at=started_at,
            completed_at=completed_at,
            repository_count=len(repositories),
            pull_request_count=pull_request_count,
            error_count=len(errors),
            errors=errors,
        )
        logger.info(
            "Ingestion finished: %d repositories, %d pull requests, %d errors",
            result.repository_count,
            result.pull_request_count,
            result.error_count,
        )
        return result

    async def _sync_repository(self, repository: str) -> Tuple[int, Optional[str]]:
        """
        Sync one repository.

        Returns (pull requests fetched, error or None). The fetched count is
        kept even when a later store step fails.
        """
        # Captured before the fetch so updates made during it land in the next window.
        now = self._clock()
        fetched = 0
        try:
            cursor = await self.store.get_cursor(repository)
            if cursor is not None:
                since = to_utc(cursor.last_successful_sync_utc)
            else:
                since = now - timedelta(days=self.lookback_days)

            pull_requests = await self.data_source.list_pull_requests_updated_since(
                repository, since
            )
            fetched = len(pull_requests)
            if pull_requests:
                await self.store.upsert_pull_requests(pull_requests)

            await self.store.save_cursor(
                RepositoryCursor(repository=repository, last_successful_sync_utc=now)
            )
        except Exception as e:
            logger.warning("Ingestion failed for %s: %s", repository, e)
            return fetched, f"{repository}: {e}"

        logger.info(
            "Synced %d pull requests for %s since %s",
            len(pull_requests),
            repository,
            since.isoformat(),
        )
        return len(pull_requests), None

    async def get_open_pr_report(
        self, repository: Optional[str] = None, older_than_days: int = 0
    ) -> List[OpenPrSummary]:
        prs = await self.store.list_pull_requests_by_state(
            PullRequestState.OPEN, repository
        )
        return build_open_pr_report(
            prs,
            now=self._clock(),
            older_than_days=older_than_days,
            repository=repository,
        )

    async def get_user_stats(
        self, start: datetime, end: datetime
    ) -> List[UserStatSummary]:
        prs = await self.store.list_pull_requests_by_date_range(start, end)
        return build_user_stats(prs, start=start, end=end)

    async def get_release_audit_summary(
        self, start: datetime, end: datetime
    ) -> ReleaseAuditSummary:
        prs = await self.store.list_pull_requests_by_date_range(start, end)
        return build_release_audit_summary(prs, start=start, end=end)

    async def get_repository_report(
        self, start: datetime, end: datetime
    ) -> List[RepositoryReport]:
        prs = await self.store.list_pull_requests_by_date_range(start, end)
        return build_repository_report(prs, start=start, end=end)
