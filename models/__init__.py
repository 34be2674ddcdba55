from .records import (EventRecord, PullRequestRecord,  # noqa: F401
                      PullRequestState, RepositoryCursor, ReviewRecord,
                      repository_key, to_utc)
from .snapshots import Base, PullRequestSnapshotRow, RepositoryCursorRow  # noqa: F401

__all__ = [
    "Base",
    "EventRecord",
    "PullRequestRecord",
    "PullRequestSnapshotRow",
    "PullRequestState",
    "RepositoryCursor",
    "RepositoryCursorRow",
    "ReviewRecord",
    "repository_key",
    "to_utc",
]
