import json
import os

import pytest

import cli
from connectors import SampleDataSource


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep local .env files and ambient settings out of CLI runs."""
    monkeypatch.setenv("DISABLE_DOTENV", "1")
    for name in (
        "AUDIT_STORE_PROVIDER",
        "AUDIT_STORE_CONNECTION_STRING",
        "DB_CONN_STRING",
        "GITHUB_CONNECTOR_MODE",
        "GITHUB_REPOSITORIES",
        "REPORT_CACHE_TTL_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "audit.json")


def _run(capsys, *argv):
    code = cli.main(list(argv))
    out = capsys.readouterr().out
    return code, json.loads(out) if out.strip() else None


class TestSyncCommand:
    def test_sync_with_sample_source(self, capsys, db_path):
        code, result = _run(capsys, "--db", db_path, "--source", "sample", "sync")

        assert code == 0
        assert result["repository_count"] == 2
        assert result["pull_request_count"] == 6
        assert result["error_count"] == 0
        assert result["errors"] == []

    def test_sync_returns_one_when_a_repository_fails(
        self, capsys, db_path, monkeypatch
    ):
        class BrokenSource(SampleDataSource):
            async def list_pull_requests_updated_since(self, repository, since):
                if repository == "org/payments-api":
                    raise RuntimeError("timeout")
                return await super().list_pull_requests_updated_since(repository, since)

        monkeypatch.setattr(cli, "_build_data_source", lambda settings, source: BrokenSource())

        code, result = _run(capsys, "--db", db_path, "sync")

        assert code == 1
        assert result["errors"] == ["org/payments-api: timeout"]
        assert result["pull_request_count"] == 3

    def test_sync_with_sqlite_store(self, capsys, tmp_path):
        url = f"sqlite:///{tmp_path / 'audit.db'}"
        code, result = _run(capsys, "--db", url, "--source", "sample", "sync")
        assert code == 0
        assert result["pull_request_count"] == 6


class TestReportCommands:
    def test_open_prs_report(self, capsys, db_path):
        _run(capsys, "--db", db_path, "--source", "sample", "sync")

        code, rows = _run(
            capsys,
            "--db",
            db_path,
            "--source",
            "sample",
            "report",
            "open-prs",
            "--repository",
            "ORG/PLATFORM-SERVICE",
            "--older-than-days",
            "12",
        )

        assert code == 0
        assert len(rows) == 1
        assert rows[0]["number"] == 101
        assert rows[0]["age_days"] == 12

    def test_window_reports_default_to_last_30_days(self, capsys, db_path):
        _run(capsys, "--db", db_path, "--source", "sample", "sync")

        _, summary = _run(
            capsys, "--db", db_path, "--source", "sample", "report", "release-summary"
        )
        _, repos = _run(
            capsys, "--db", db_path, "--source", "sample", "report", "repositories"
        )
        _, users = _run(
            capsys, "--db", db_path, "--source", "sample", "report", "user-stats"
        )

        assert summary["open_prs"] == 2
        assert summary["merged_prs"] == 2
        assert summary["closed_prs"] == 2
        assert summary["merged_without_approval"] == 0
        assert [r["repository"] for r in repos] == [
            "org/payments-api",
            "org/platform-service",
        ]
        assert [u["user"] for u in users] == ["alice", "bob", "claire"]

    def test_empty_store_reports_are_empty(self, capsys, db_path):
        code, repos = _run(
            capsys,
            "--db",
            db_path,
            "--source",
            "sample",
            "report",
            "repositories",
            "--from",
            "2024-01-01T00:00:00Z",
            "--to",
            "2024-02-01T00:00:00Z",
        )
        assert code == 0
        assert repos == []

    def test_invalid_timestamp_is_rejected(self, capsys, db_path):
        with pytest.raises(SystemExit) as excinfo:
            cli.main(["--db", db_path, "report", "user-stats", "--from", "yesterday"])
        assert excinfo.value.code == 2

    def test_from_after_to_is_rejected(self, db_path):
        with pytest.raises(SystemExit, match="--from must not be after --to"):
            cli.main(
                [
                    "--db",
                    db_path,
                    "report",
                    "user-stats",
                    "--from",
                    "2024-03-01",
                    "--to",
                    "2024-02-01",
                ]
            )


class TestScheduleCommand:
    def test_single_run(self, db_path, tmp_path):
        code = cli.main(
            ["--db", db_path, "--source", "sample", "schedule", "--max-runs", "1"]
        )
        assert code == 0
        assert (tmp_path / "audit.json").exists()


class TestConfiguration:
    def test_invalid_settings_exit_with_message(self, monkeypatch, db_path):
        monkeypatch.setenv("INGESTION_INTERVAL_MINUTES", "0")
        with pytest.raises(SystemExit, match="INGESTION_INTERVAL_MINUTES"):
            cli.main(["--db", db_path, "sync"])

    def test_unknown_connection_scheme(self):
        with pytest.raises(SystemExit, match="Could not detect audit store type"):
            cli.main(["--db", "mongodb://localhost/audit", "sync"])

    def test_load_dotenv_does_not_override(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "# comment\nexport PR_AUDIT_A='one'\nPR_AUDIT_B=two\nbroken\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("PR_AUDIT_B", "kept")
        monkeypatch.delenv("PR_AUDIT_A", raising=False)

        loaded = cli._load_dotenv(env_file)

        assert loaded == 1
        assert os.environ["PR_AUDIT_A"] == "one"
        assert os.environ["PR_AUDIT_B"] == "kept"
        monkeypatch.delenv("PR_AUDIT_A")
