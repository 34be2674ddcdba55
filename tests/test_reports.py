from datetime import timedelta

from metrics.reports import (age_in_days, build_open_pr_report,
                             build_release_audit_summary,
                             build_repository_report, build_user_stats)
from models import PullRequestState


class TestOpenPrReport:
    def test_age_is_floored(self, make_pr, now):
        """10.5 days old counts as 10, never rounded up."""
        [row] = build_open_pr_report([make_pr(created_days_ago=10.5)], now=now)
        assert row.age_days == 10
        assert age_in_days(now - timedelta(days=10, hours=23, minutes=59), now) == 10

    def test_threshold_is_inclusive(self, make_pr, now):
        prs = [
            make_pr(number=1, created_days_ago=4.9),
            make_pr(number=2, created_days_ago=5.0),
            make_pr(number=3, created_days_ago=7.2),
        ]
        rows = build_open_pr_report(prs, now=now, older_than_days=5)
        assert [r.number for r in rows] == [3, 2]

    def test_negative_threshold_behaves_like_zero(self, make_pr, now):
        prs = [make_pr(number=1, created_days_ago=0.1), make_pr(number=2, created_days_ago=-1)]
        rows = build_open_pr_report(prs, now=now, older_than_days=-3)
        assert [r.number for r in rows] == [1]

    def test_only_open_and_sorted(self, make_pr, now):
        prs = [
            make_pr(number=9, repository="b", created_days_ago=3),
            make_pr(number=2, repository="A", created_days_ago=3),
            make_pr(number=1, repository="a", created_days_ago=3),
            make_pr(number=5, repository="c", created_days_ago=8),
            make_pr(number=6, repository="c", created_days_ago=20, state=PullRequestState.CLOSED),
            make_pr(number=7, repository="c", created_days_ago=20, state=PullRequestState.MERGED),
        ]
        rows = build_open_pr_report(prs, now=now)
        assert [(r.repository, r.number) for r in rows] == [
            ("c", 5),
            ("a", 1),
            ("A", 2),
            ("b", 9),
        ]

    def test_repository_filter_is_case_insensitive(self, make_pr, now):
        prs = [make_pr(number=1, repository="Org/One"), make_pr(number=2, repository="org/two")]
        rows = build_open_pr_report(prs, now=now, repository="ORG/ONE")
        assert [r.number for r in rows] == [1]

    def test_row_fields(self, make_pr, now):
        pr = make_pr(number=4, title="Fix", author="dana", created_days_ago=2, updated_days_ago=1)
        [row] = build_open_pr_report([pr], now=now)
        assert (row.title, row.author, row.updated_at) == ("Fix", "dana", pr.updated_at)

    def test_no_data_returns_empty_list(self, now):
        assert build_open_pr_report([], now=now) == []


class TestUserStats:
    def test_merges_authors_and_reviewers_case_insensitively(self, make_pr, review, now):
        prs = [
            make_pr(
                number=1,
                author="Alice",
                state=PullRequestState.MERGED,
                reviews=[review("bob", "approved"), review("ALICE", "COMMENTED")],
            ),
            make_pr(number=2, author="alice", reviews=[review("Bob", "APPROVED")]),
        ]

        stats = build_user_stats(prs, start=now - timedelta(days=1), end=now)

        assert [s.user for s in stats] == ["Alice", "bob"]
        alice, bob = stats
        assert (alice.opened_prs, alice.merged_prs) == (2, 1)
        assert (alice.reviews_submitted, alice.approvals_submitted) == (1, 0)
        assert (bob.opened_prs, bob.merged_prs) == (0, 0)
        assert (bob.reviews_submitted, bob.approvals_submitted) == (2, 2)

    def test_window_bounds_are_inclusive(self, make_pr, review, now):
        start, end = now - timedelta(days=3), now - timedelta(days=1)
        prs = [
            make_pr(
                number=1,
                author="a",
                updated_days_ago=3,
                reviews=[
                    review("r", "APPROVED", days_ago=3),
                    review("r", "APPROVED", days_ago=1),
                    review("r", "APPROVED", days_ago=0.5),
                ],
            ),
            make_pr(number=2, author="b", updated_days_ago=1),
            make_pr(number=3, author="c", updated_days_ago=0.5),
            make_pr(number=4, author="d", updated_days_ago=3.5),
        ]

        stats = {s.user: s for s in build_user_stats(prs, start=start, end=end)}

        assert sorted(stats) == ["a", "b", "r"]
        assert stats["r"].reviews_submitted == 2

    def test_reviews_only_counted_on_prs_in_window(self, make_pr, review, now):
        prs = [make_pr(number=1, author="a", updated_days_ago=10, reviews=[review("r")])]
        assert build_user_stats(prs, start=now - timedelta(days=1), end=now) == []


class TestReleaseAuditSummary:
    def test_counts_and_merged_without_approval(self, make_pr, review, now):
        prs = [
            make_pr(number=1, state=PullRequestState.OPEN),
            make_pr(number=2, state=PullRequestState.CLOSED),
            make_pr(number=3, state=PullRequestState.MERGED, reviews=[review(state="approved")]),
            make_pr(number=4, state=PullRequestState.MERGED, reviews=[review(state="COMMENTED")]),
            make_pr(number=5, state=PullRequestState.MERGED),
            make_pr(number=6, state=PullRequestState.MERGED, updated_days_ago=40),
        ]
        start, end = now - timedelta(days=30), now

        summary = build_release_audit_summary(prs, start=start, end=end)

        assert (summary.start, summary.end) == (start, end)
        assert summary.open_prs == 1
        assert summary.closed_prs == 1
        assert summary.merged_prs == 3
        assert summary.merged_without_approval == 2

    def test_empty_window_is_zeroed(self, now):
        summary = build_release_audit_summary([], start=now, end=now)
        assert (
            summary.open_prs,
            summary.closed_prs,
            summary.merged_prs,
            summary.merged_without_approval,
        ) == (0, 0, 0, 0)


class TestRepositoryReport:
    def test_groups_case_insensitively_and_sorts(self, make_pr, now):
        prs = [
            make_pr(number=1, repository="zeta", author="x"),
            make_pr(number=2, repository="Alpha", author="Dev", state=PullRequestState.MERGED),
            make_pr(number=3, repository="alpha", author="dev", state=PullRequestState.CLOSED),
            make_pr(number=4, repository="ALPHA", author="other"),
            make_pr(number=5, repository="beta", author="x", updated_days_ago=90),
        ]

        rows = build_repository_report(prs, start=now - timedelta(days=30), end=now)

        assert [r.repository.casefold() for r in rows] == ["alpha", "zeta"]
        alpha = rows[0]
        assert (alpha.open_prs, alpha.merged_prs, alpha.closed_prs) == (1, 1, 1)
        assert alpha.active_contributors == 2

    def test_r1_scenario(self, make_pr, review, now):
        prs = [
            make_pr(number=1, repository="r1", author="alice", created_days_ago=12),
            make_pr(
                number=2,
                repository="r1",
                author="bob",
                state=PullRequestState.MERGED,
                reviews=[review(state="APPROVED")],
            ),
        ]
        [row] = build_repository_report(prs, start=now - timedelta(days=30), end=now)
        assert (row.repository, row.open_prs, row.merged_prs, row.closed_prs) == ("r1", 1, 1, 0)
        assert row.active_contributors == 2

        [open_row] = build_open_pr_report(prs, now=now, older_than_days=0)
        assert (open_row.number, open_row.age_days) == (1, 12)
