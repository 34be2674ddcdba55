from datetime import datetime, timedelta, timezone

import pytest

from models import (PullRequestRecord, PullRequestState, ReviewRecord,
                    repository_key, to_utc)
from utils import default_window, parse_timestamp


class TestPullRequestState:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Open", PullRequestState.OPEN),
            ("open", PullRequestState.OPEN),
            ("MERGED", PullRequestState.MERGED),
            ("Closed", PullRequestState.CLOSED),
            ("draft", PullRequestState.CLOSED),
            ("", PullRequestState.CLOSED),
            (None, PullRequestState.CLOSED),
        ],
    )
    def test_parse(self, raw, expected):
        """Unknown states read back as Closed."""
        assert PullRequestState.parse(raw) is expected


class TestPullRequestRecord:
    def test_key_is_case_insensitive_on_repository(self, make_pr):
        a = make_pr(number=7, repository="Org/Repo")
        b = make_pr(number=7, repository="org/repo")
        assert a.key == b.key == ("org/repo", 7)

    def test_lists_are_frozen_to_tuples(self, now):
        pr = PullRequestRecord(
            repository="r1",
            number=1,
            title="t",
            author="a",
            state="Merged",
            created_at=now,
            updated_at=now,
            reviews=[ReviewRecord("bob", "approved", now)],
            events=[],
        )
        assert isinstance(pr.reviews, tuple)
        assert isinstance(pr.events, tuple)
        assert pr.state is PullRequestState.MERGED

    def test_has_approval_ignores_case(self, make_pr, review):
        assert make_pr(reviews=[review(state="approved")]).has_approval
        assert make_pr(reviews=[review(state="Approved")]).has_approval
        assert not make_pr(reviews=[review(state="COMMENTED")]).has_approval
        assert not make_pr().has_approval


def test_repository_key_strips_and_casefolds():
    assert repository_key("  Org/Platform-Service ") == "org/platform-service"
    assert repository_key(None) == ""


def test_to_utc_treats_naive_as_utc():
    naive = datetime(2024, 1, 1, 8, 0)
    assert to_utc(naive) == datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)

    offset = datetime(2024, 1, 1, 10, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_utc(offset) == datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)
    assert to_utc(offset).tzinfo == timezone.utc


class TestParseTimestamp:
    def test_iso_with_z_suffix(self):
        assert parse_timestamp("2024-03-01T10:00:00Z") == datetime(
            2024, 3, 1, 10, 0, tzinfo=timezone.utc
        )

    def test_unix_seconds(self):
        assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
        assert parse_timestamp("86400") == datetime(1970, 1, 2, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "   ", "not-a-date", True, {}])
    def test_invalid_values_return_none(self, value):
        assert parse_timestamp(value) is None


def test_default_window_defaults_to_last_30_days(now):
    start, end = default_window(None, now)
    assert end == now
    assert start == now - timedelta(days=30)

    explicit_start = now - timedelta(days=2)
    assert default_window(explicit_start, now) == (explicit_start, now)
