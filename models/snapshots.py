from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class RepositoryCursorRow(Base):
    __tablename__ = "repository_cursors"
    repository_key = Column(
        String(255),
        primary_key=True,
        comment="case-folded repository name used for lookups",
    )
    repository = Column(
        String(255), nullable=False, comment="repository name as last reported"
    )
    last_successful_sync_utc = Column(
        DateTime(timezone=True),
        nullable=False,
        comment="timestamp of the last successful sync of the repository",
    )


class PullRequestSnapshotRow(Base):
    __tablename__ = "pull_request_snapshots"
    repository_key = Column(
        String(255),
        primary_key=True,
        comment="case-folded repository name used for lookups",
    )
    pr_number = Column(Integer, primary_key=True, comment="pull request number")
    repository = Column(
        String(255), nullable=False, comment="repository name as last reported"
    )
    title = Column(String(512), nullable=False, comment="title of the pull request")
    author = Column(String(255), nullable=False, comment="login of the author")
    pull_request_state = Column(
        String(32), nullable=False, comment="state of the pull request (Open, Closed, Merged)"
    )
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        comment="timestamp when PR was created",
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        comment="timestamp when PR was last updated at the source",
    )
    merged_at = Column(
        DateTime(timezone=True),
        comment="timestamp when PR was merged",
    )
    reviews_json = Column(
        Text, nullable=False, default="[]", comment="serialized review list"
    )
    events_json = Column(
        Text, nullable=False, default="[]", comment="serialized event list"
    )

    __table_args__ = (
        Index("ix_pull_request_snapshots_state", "pull_request_state"),
        Index("ix_pull_request_snapshots_updated_at", "updated_at"),
        Index(
            "ix_pull_request_snapshots_repository_state",
            "repository_key",
            "pull_request_state",
        ),
    )
