from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple


def to_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are assumed to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def repository_key(repository: str) -> str:
    """Normalized repository identity used for case-insensitive matching."""
    return (repository or "").strip().casefold()


class PullRequestState(str, Enum):
    OPEN = "Open"
    CLOSED = "Closed"
    MERGED = "Merged"

    @classmethod
    def parse(cls, value: Optional[str]) -> "PullRequestState":
        """
        Case-insensitive lookup by value.

        Unknown or empty values map to CLOSED, which is how stored rows with an
        unrecognized state have always been read back.
        """
        normalized = (value or "").strip().casefold()
        for state in cls:
            if state.value.casefold() == normalized:
                return state
        return cls.CLOSED


@dataclass(frozen=True)
class ReviewRecord:
    reviewer: str
    state: str  # APPROVED|CHANGES_REQUESTED|COMMENTED|DISMISSED|...
    submitted_at: datetime

    @property
    def is_approval(self) -> bool:
        return (self.state or "").casefold() == "approved"


@dataclass(frozen=True)
class EventRecord:
    event_type: str
    actor: str
    occurred_at: datetime


@dataclass(frozen=True)
class PullRequestRecord:
    """
    Latest known snapshot of one pull request.

    `(repository, number)` identifies the record, with the repository compared
    case-insensitively. Reviews and events are replaced wholesale whenever a
    newer snapshot of the same pull request is stored.
    """

    repository: str
    number: int
    title: str
    author: str
    state: PullRequestState
    created_at: datetime
    updated_at: datetime
    merged_at: Optional[datetime] = None
    reviews: Tuple[ReviewRecord, ...] = field(default_factory=tuple)
    events: Tuple[EventRecord, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        # Lists handed in by callers are frozen so snapshots stay immutable.
        if not isinstance(self.reviews, tuple):
            object.__setattr__(self, "reviews", tuple(self.reviews))
        if not isinstance(self.events, tuple):
            object.__setattr__(self, "events", tuple(self.events))
        if not isinstance(self.state, PullRequestState):
            object.__setattr__(self, "state", PullRequestState.parse(self.state))

    @property
    def key(self) -> Tuple[str, int]:
        return repository_key(self.repository), int(self.number)

    @property
    def has_approval(self) -> bool:
        return any(review.is_approval for review in self.reviews)


@dataclass(frozen=True)
class RepositoryCursor:
    """Per-repository watermark of the last successful sync."""

    repository: str
    last_successful_sync_utc: datetime
