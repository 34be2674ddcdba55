#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import os
import signal
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

from config import STORE_PROVIDERS, Settings
from connectors import McpDataSource, McpToolClient, SampleDataSource
from processors.audit import PrAuditOrchestrator
from processors.scheduler import run_scheduled_ingestion
from services import CachedPrAuditOrchestrator, TTLCache
from storage import create_store, detect_store_type
from utils import _parse_since, default_window

REPO_ROOT = Path(__file__).resolve().parent

logger = logging.getLogger(__name__)


def _load_dotenv(path: Path) -> int:
    """
    Load a .env file into process environment (without overriding existing vars).

    Keeps dependencies minimal (avoids python-dotenv).
    """
    if not path.exists():
        return 0
    loaded = 0
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key or key in os.environ:
            continue
        if (len(value) >= 2) and ((value[0] == value[-1]) and value[0] in {"'", '"'}):
            value = value[1:-1]
        os.environ[key] = value
        loaded += 1
    return loaded


def _parse_timestamp_arg(value: str) -> datetime:
    try:
        return _parse_since(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _load_settings() -> Settings:
    try:
        return Settings.from_env()
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc


def _resolve_store(ns: argparse.Namespace, settings: Settings) -> tuple:
    conn_string = ns.db or settings.store.connection_string
    if ns.store_type:
        store_type = ns.store_type.lower()
    elif ns.db:
        try:
            store_type = detect_store_type(conn_string)
        except ValueError as exc:
            raise SystemExit(str(exc)) from exc
    else:
        store_type = settings.store.provider
    return conn_string, store_type


def _build_data_source(settings: Settings, source: Optional[str]):
    connector = settings.connector
    mode = (source or connector.mode).lower()
    if mode == "sample":
        return SampleDataSource(repositories=connector.repositories)

    mcp = connector.mcp
    try:
        mcp.validate()
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    client = McpToolClient(endpoint=mcp.endpoint, api_key=mcp.api_key)
    return McpDataSource(
        client,
        organization=connector.organization,
        repositories=connector.repositories,
        list_repositories_tool=mcp.list_repositories_tool,
        list_pull_requests_tool=mcp.list_pull_requests_tool,
        list_reviews_tool=mcp.list_reviews_tool,
        list_events_tool=mcp.list_events_tool,
    )


def _build_orchestrator(store, data_source, settings: Settings):
    orchestrator = PrAuditOrchestrator(
        store,
        data_source,
        lookback_days=settings.ingestion.lookback_days,
        max_concurrency=settings.ingestion.max_concurrency,
    )
    if settings.report_cache_ttl_seconds <= 0:
        return orchestrator
    return CachedPrAuditOrchestrator(
        orchestrator, TTLCache(ttl_seconds=settings.report_cache_ttl_seconds)
    )


def _to_jsonable(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: _to_jsonable(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(k): _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _print_json(value: Any) -> None:
    sys.stdout.write(json.dumps(_to_jsonable(value), indent=2) + "\n")


async def _run_with_orchestrator(ns: argparse.Namespace, handler) -> Any:
    settings = _load_settings()
    conn_string, store_type = _resolve_store(ns, settings)
    try:
        store = create_store(
            conn_string,
            store_type,
            initialize_schema=settings.store.initialize_schema,
        )
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    data_source = _build_data_source(settings, ns.source)
    async with store:
        orchestrator = _build_orchestrator(store, data_source, settings)
        return await handler(orchestrator, settings)


def _cmd_sync(ns: argparse.Namespace) -> int:
    async def _handler(orchestrator, settings):
        return await orchestrator.run_ingestion()

    result = asyncio.run(_run_with_orchestrator(ns, _handler))
    _print_json(result)
    return 1 if result.error_count > 0 else 0


def _cmd_schedule(ns: argparse.Namespace) -> int:
    async def _handler(orchestrator, settings):
        interval = ns.interval_minutes or settings.ingestion.interval_minutes
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except (NotImplementedError, RuntimeError):
                pass  # not supported on this platform
        logger.info("Scheduler started with interval %d minutes", interval)
        return await run_scheduled_ingestion(
            orchestrator,
            interval_minutes=interval,
            stop_event=stop_event,
            max_runs=ns.max_runs,
        )

    asyncio.run(_run_with_orchestrator(ns, _handler))
    return 0


def _cmd_report_open_prs(ns: argparse.Namespace) -> int:
    async def _handler(orchestrator, settings):
        return await orchestrator.get_open_pr_report(
            repository=ns.repository, older_than_days=ns.older_than_days
        )

    _print_json(asyncio.run(_run_with_orchestrator(ns, _handler)))
    return 0


def _window_command(method_name: str):
    def _cmd(ns: argparse.Namespace) -> int:
        start, end = default_window(ns.start, ns.end)
        if start > end:
            raise SystemExit("--from must not be after --to")

        async def _handler(orchestrator, settings):
            return await getattr(orchestrator, method_name)(start, end)

        _print_json(asyncio.run(_run_with_orchestrator(ns, _handler)))
        return 0

    return _cmd


def _add_window_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--from",
        dest="start",
        type=_parse_timestamp_arg,
        help="Window start, ISO-8601 (UTC). Defaults to --to minus 30 days.",
    )
    parser.add_argument(
        "--to",
        dest="end",
        type=_parse_timestamp_arg,
        help="Window end, ISO-8601 (UTC). Defaults to now.",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pr-audit",
        description="Sync pull-request activity and report on review hygiene.",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING). Defaults to env LOG_LEVEL or INFO.",
    )
    parser.add_argument(
        "--db",
        default=None,
        help="Audit store connection string or JSON file path. "
        "Defaults to env AUDIT_STORE_CONNECTION_STRING.",
    )
    parser.add_argument(
        "--store-type",
        choices=list(STORE_PROVIDERS),
        help="Optional audit store backend override.",
    )
    parser.add_argument(
        "--source",
        choices=["mcp", "sample"],
        help="Data source override. Defaults to env GITHUB_CONNECTOR_MODE.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    # ---- sync ----
    sync = sub.add_parser("sync", help="Run one incremental ingestion pass.")
    sync.set_defaults(func=_cmd_sync)

    # ---- schedule ----
    schedule = sub.add_parser("schedule", help="Run ingestion periodically.")
    schedule.add_argument(
        "--interval-minutes",
        type=int,
        choices=range(1, 1441),
        metavar="[1-1440]",
        help="Minutes between runs. Defaults to env INGESTION_INTERVAL_MINUTES.",
    )
    schedule.add_argument(
        "--max-runs", type=int, default=None, help="Stop after N runs."
    )
    schedule.set_defaults(func=_cmd_schedule)

    # ---- report ----
    report = sub.add_parser("report", help="Print a report as JSON.")
    report_sub = report.add_subparsers(dest="report", required=True)

    open_prs = report_sub.add_parser("open-prs", help="Aging of open pull requests.")
    open_prs.add_argument("--repository", help="Only this repository.")
    open_prs.add_argument(
        "--older-than-days",
        type=int,
        default=0,
        help="Only pull requests at least N days old.",
    )
    open_prs.set_defaults(func=_cmd_report_open_prs)

    user_stats = report_sub.add_parser("user-stats", help="Per-user activity.")
    _add_window_args(user_stats)
    user_stats.set_defaults(func=_window_command("get_user_stats"))

    release = report_sub.add_parser(
        "release-summary", help="State counts and merges without approval."
    )
    _add_window_args(release)
    release.set_defaults(func=_window_command("get_release_audit_summary"))

    repos = report_sub.add_parser("repositories", help="Per-repository summary.")
    _add_window_args(repos)
    repos.set_defaults(func=_window_command("get_repository_report"))

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    if os.getenv("DISABLE_DOTENV", "").strip().lower() not in {
        "1",
        "true",
        "yes",
        "on",
    }:
        _load_dotenv(REPO_ROOT / ".env")

    parser = build_parser()
    ns = parser.parse_args(argv)

    level_name = str(getattr(ns, "log_level", "") or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    func = getattr(ns, "func", None)
    if func is None:
        parser.print_help()
        return 2
    return int(func(ns))


if __name__ == "__main__":
    raise SystemExit(main())
