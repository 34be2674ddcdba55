from __future__ import annotations

import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

from metrics.schemas import (OpenPrSummary, ReleaseAuditSummary,
                             RepositoryReport, UserStatSummary)
from models import PullRequestRecord, PullRequestState, repository_key, to_utc

SECONDS_PER_DAY = 86400.0


def _in_window(value: datetime, start: datetime, end: datetime) -> bool:
    return start <= to_utc(value) <= end


def _window(
    prs: Iterable[PullRequestRecord], start: datetime, end: datetime
) -> List[PullRequestRecord]:
    return [pr for pr in prs if _in_window(pr.updated_at, start, end)]


def age_in_days(created_at: datetime, now: datetime) -> int:
    """Whole days between creation and `now`; partial days are truncated down."""
    return math.floor((to_utc(now) - to_utc(created_at)).total_seconds() / SECONDS_PER_DAY)


def build_open_pr_report(
    prs: Iterable[PullRequestRecord],
    *,
    now: datetime,
    older_than_days: int = 0,
    repository: Optional[str] = None,
) -> List[OpenPrSummary]:
    """
    Open pull requests at least `older_than_days` old.

    Sorted by age (oldest first), then repository (case-insensitive), then
    number. A negative threshold behaves like zero.
    """
    threshold = max(older_than_days, 0)
    wanted_repo = repository_key(repository) if repository else ""

    rows: List[OpenPrSummary] = []
    for pr in prs:
        if pr.state != PullRequestState.OPEN:
            continue
        if wanted_repo and repository_key(pr.repository) != wanted_repo:
            continue
        age_days = age_in_days(pr.created_at, now)
        if age_days < threshold:
            continue
        rows.append(
            OpenPrSummary(
                repository=pr.repository,
                number=pr.number,
                title=pr.title,
                author=pr.author,
                age_days=age_days,
                updated_at=pr.updated_at,
            )
        )

    rows.sort(key=lambda r: (-r.age_days, repository_key(r.repository), r.number))
    return rows


def build_user_stats(
    prs: Iterable[PullRequestRecord], *, start: datetime, end: datetime
) -> List[UserStatSummary]:
    """
    Per-user activity for pull requests updated within [start, end].

    Authors earn opened/merged counts; reviewers earn review/approval counts
    for reviews submitted inside the same window. Names are merged
    case-insensitively, keeping the first spelling seen (authors first).
    """
    start_utc, end_utc = to_utc(start), to_utc(end)
    in_window = _window(prs, start_utc, end_utc)

    names: Dict[str, str] = {}
    counts: Dict[str, List[int]] = {}

    def _bucket(name: str) -> List[int]:
        key = (name or "").casefold()
        if key not in counts:
            names[key] = name
            counts[key] = [0, 0, 0, 0]
        return counts[key]

    for pr in in_window:
        bucket = _bucket(pr.author)
        bucket[0] += 1
        if pr.state == PullRequestState.MERGED:
            bucket[1] += 1

    for pr in in_window:
        for review in pr.reviews:
            if not _in_window(review.submitted_at, start_utc, end_utc):
                continue
            bucket = _bucket(review.reviewer)
            bucket[2] += 1
            if review.is_approval:
                bucket[3] += 1

    return [
        UserStatSummary(
            user=names[key],
            opened_prs=opened,
            merged_prs=merged,
            reviews_submitted=reviews,
            approvals_submitted=approvals,
        )
        for key, (opened, merged, reviews, approvals) in sorted(counts.items())
    ]


def build_release_audit_summary(
    prs: Iterable[PullRequestRecord], *, start: datetime, end: datetime
) -> ReleaseAuditSummary:
    start_utc, end_utc = to_utc(start), to_utc(end)
    open_prs = closed_prs = merged_prs = merged_without_approval = 0

    for pr in _window(prs, start_utc, end_utc):
        if pr.state == PullRequestState.OPEN:
            open_prs += 1
        elif pr.state == PullRequestState.MERGED:
            merged_prs += 1
            if not pr.has_approval:
                merged_without_approval += 1
        else:
            closed_prs += 1

    return ReleaseAuditSummary(
        start=start_utc,
        end=end_utc,
        open_prs=open_prs,
        closed_prs=closed_prs,
        merged_prs=merged_prs,
        merged_without_approval=merged_without_approval,
    )


def build_repository_report(
    prs: Iterable[PullRequestRecord], *, start: datetime, end: datetime
) -> List[RepositoryReport]:
    start_utc, end_utc = to_utc(start), to_utc(end)

    names: Dict[str, str] = {}
    state_counts: Dict[str, Dict[PullRequestState, int]] = {}
    authors: Dict[str, Set[str]] = {}

    for pr in _window(prs, start_utc, end_utc):
        key = repository_key(pr.repository)
        if key not in names:
            names[key] = pr.repository
            state_counts[key] = {state: 0 for state in PullRequestState}
            authors[key] = set()
        state_counts[key][pr.state] += 1
        authors[key].add((pr.author or "").casefold())

    return [
        RepositoryReport(
            repository=names[key],
            open_prs=state_counts[key][PullRequestState.OPEN],
            merged_prs=state_counts[key][PullRequestState.MERGED],
            closed_prs=state_counts[key][PullRequestState.CLOSED],
            active_contributors=len(authors[key]),
        )
        for key in sorted(names)
    ]
