import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional

from metrics.schemas import (IngestionRunResult, OpenPrSummary,
                             ReleaseAuditSummary, RepositoryReport,
                             UserStatSummary)
from models import repository_key, to_utc
from processors.audit import PrAuditOrchestrator
from services.cache import TTLCache

logger = logging.getLogger(__name__)

DEFAULT_REPORT_TTL_SECONDS = 300
CACHE_KEY_PREFIX = "pr-audit"


def _stamp(value: datetime) -> str:
    return to_utc(value).isoformat()


class CachedPrAuditOrchestrator:
    """Read-through report cache in front of a PrAuditOrchestrator."""

    def __init__(
        self, inner: PrAuditOrchestrator, cache: Optional[TTLCache] = None
    ) -> None:
        self.inner = inner
        if cache is None:
            cache = TTLCache(ttl_seconds=DEFAULT_REPORT_TTL_SECONDS)
        self.cache = cache

    async def run_ingestion(self) -> IngestionRunResult:
        try:
            return await self.inner.run_ingestion()
        finally:
            # A failed run may still have stored some repositories.
            self.cache.invalidate()

    async def _cached(
        self, cache_key: str, compute: Callable[[], Awaitable[Any]]
    ) -> Any:
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        logger.debug("Report cache miss for %s", cache_key)
        value = await compute()
        self.cache.set(cache_key, value)
        return value

    async def get_open_pr_report(
        self, repository: Optional[str] = None, older_than_days: int = 0
    ) -> List[OpenPrSummary]:
        cache_key = self.cache.key(
            CACHE_KEY_PREFIX,
            "open-prs",
            repository_key(repository) if repository else "*",
            older_than_days,
        )
        return await self._cached(
            cache_key,
            lambda: self.inner.get_open_pr_report(repository, older_than_days),
        )

    async def get_user_stats(
        self, start: datetime, end: datetime
    ) -> List[UserStatSummary]:
        cache_key = self.cache.key(
            CACHE_KEY_PREFIX, "user-stats", _stamp(start), _stamp(end)
        )
        return await self._cached(
            cache_key, lambda: self.inner.get_user_stats(start, end)
        )

    async def get_release_audit_summary(
        self, start: datetime, end: datetime
    ) -> ReleaseAuditSummary:
        cache_key = self.cache.key(
            CACHE_KEY_PREFIX, "release-summary", _stamp(start), _stamp(end)
        )
        return await self._cached(
            cache_key, lambda: self.inner.get_release_audit_summary(start, end)
        )

    async def get_repository_report(
        self, start: datetime, end: datetime
    ) -> List[RepositoryReport]:
        cache_key = self.cache.key(
            CACHE_KEY_PREFIX, "repositories", _stamp(start), _stamp(end)
        )
        return await self._cached(
            cache_key, lambda: self.inner.get_repository_report(start, end)
        )
