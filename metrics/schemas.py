from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Tuple


@dataclass(frozen=True)
class OpenPrSummary:
    repository: str
    number: int
    title: str
    author: str
    age_days: int  # whole days since creation, floored
    updated_at: datetime


@dataclass(frozen=True)
class UserStatSummary:
    user: str  # first-seen spelling; matching is case-insensitive
    opened_prs: int
    merged_prs: int
    reviews_submitted: int
    approvals_submitted: int


@dataclass(frozen=True)
class ReleaseAuditSummary:
    start: datetime
    end: datetime
    open_prs: int
    closed_prs: int
    merged_prs: int
    merged_without_approval: int


@dataclass(frozen=True)
class RepositoryReport:
    repository: str
    open_prs: int
    merged_prs: int
    closed_prs: int
    active_contributors: int  # distinct authors, case-insensitive


@dataclass(frozen=True)
class IngestionRunResult:
    started_at: datetime
    completed_at: datetime
    repository_count: int
    pull_request_count: int
    error_count: int
    errors: Tuple[str, ...] = field(default_factory=tuple)  # "{repository}: {message}"
