"""Shared test fixtures for the test suite."""
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from models import (EventRecord, PullRequestRecord, PullRequestState,
                    ReviewRecord)
from storage import JsonFileStore, SQLAlchemyStore

FIXED_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    """Return a fixed 'now' for deterministic clocks."""
    return FIXED_NOW


@pytest.fixture
def make_pr(now):
    """Return a factory building pull request records relative to `now`."""

    def _make(
        number=1,
        repository="org/repo",
        state=PullRequestState.OPEN,
        author="alice",
        title=None,
        created_days_ago=1.0,
        updated_days_ago=0.0,
        merged_days_ago=None,
        reviews=(),
        events=(),
    ):
        return PullRequestRecord(
            repository=repository,
            number=number,
            title=title if title is not None else f"PR {number}",
            author=author,
            state=state,
            created_at=now - timedelta(days=created_days_ago),
            updated_at=now - timedelta(days=updated_days_ago),
            merged_at=(
                now - timedelta(days=merged_days_ago)
                if merged_days_ago is not None
                else None
            ),
            reviews=reviews,
            events=events,
        )

    return _make


@pytest.fixture
def review(now):
    """Return a factory building reviews submitted `days_ago` before `now`."""

    def _make(reviewer="bob", state="APPROVED", days_ago=0.5):
        return ReviewRecord(
            reviewer=reviewer, state=state, submitted_at=now - timedelta(days=days_ago)
        )

    return _make


@pytest.fixture
def event(now):
    """Return a factory building events that occurred `days_ago` before `now`."""

    def _make(event_type="labeled", actor="alice", days_ago=0.5):
        return EventRecord(
            event_type=event_type,
            actor=actor,
            occurred_at=now - timedelta(days=days_ago),
        )

    return _make


@pytest.fixture
def json_store_path(tmp_path):
    """Return a path for a file-backed store inside a temporary directory."""
    return tmp_path / "state" / "audit.json"


@pytest.fixture
def sqlite_url(tmp_path):
    """Return a SQLite file URL inside a temporary directory."""
    return f"sqlite+aiosqlite:///{tmp_path / 'audit.db'}"


@pytest_asyncio.fixture(params=["json", "sqlite"])
async def store(request, json_store_path, sqlite_url):
    """Yield each audit store backend so contract tests run against both."""
    if request.param == "json":
        instance = JsonFileStore(json_store_path)
    else:
        instance = SQLAlchemyStore(sqlite_url, provider="sqlite")
    async with instance:
        yield instance
