"""
Runtime settings read from environment variables.

`cli.py` loads a local `.env` file into the environment before these are read.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple
from urllib.parse import urlparse

STORE_PROVIDERS = ("json", "sqlite", "postgres", "sqlserver")
CONNECTOR_MODES = ("mcp", "sample")

DEFAULT_CONNECTION_STRING = "sqlite+aiosqlite:///./data/audit.db"
DEFAULT_JSON_PATH = "./data/audit.json"
DEFAULT_MCP_ENDPOINT = "http://localhost:8080/tools/invoke"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _get(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = _get(env, name)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (true/false), got '{raw}'")


def _get_int(
    env: Mapping[str, str],
    name: str,
    default: int,
    minimum: Optional[int] = None,
    maximum: Optional[int] = None,
) -> int:
    raw = _get(env, name)
    if raw is None:
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise ValueError(f"{name} must be an integer, got '{raw}'") from exc
    if minimum is not None and value < minimum:
        raise ValueError(_range_message(name, minimum, maximum))
    if maximum is not None and value > maximum:
        raise ValueError(_range_message(name, minimum, maximum))
    return value


def _range_message(name: str, minimum: Optional[int], maximum: Optional[int]) -> str:
    if maximum is None:
        return f"{name} must be at least {minimum}"
    return f"{name} must be between {minimum} and {maximum}"


def _split_list(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class StoreSettings:
    provider: str = "sqlite"
    connection_string: str = DEFAULT_CONNECTION_STRING
    initialize_schema: bool = True

    def validate(self) -> None:
        if self.provider not in STORE_PROVIDERS:
            raise ValueError(
                "AUDIT_STORE_PROVIDER must be one of: " + ", ".join(STORE_PROVIDERS)
            )
        if len(self.connection_string or "") < 10:
            raise ValueError(
                "AUDIT_STORE_CONNECTION_STRING must be at least 10 characters"
            )


@dataclass(frozen=True)
class McpSettings:
    endpoint: str = DEFAULT_MCP_ENDPOINT
    api_key: Optional[str] = None
    list_repositories_tool: str = "list_repositories"
    list_pull_requests_tool: str = "list_pull_requests"
    list_reviews_tool: str = "list_reviews"
    list_events_tool: str = "list_pull_request_events"

    def validate(self) -> None:
        parsed = urlparse(self.endpoint or "")
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("MCP_ENDPOINT must be a valid http(s) URL")
        tools = {
            "MCP_LIST_REPOSITORIES_TOOL": self.list_repositories_tool,
            "MCP_LIST_PULL_REQUESTS_TOOL": self.list_pull_requests_tool,
            "MCP_LIST_REVIEWS_TOOL": self.list_reviews_tool,
            "MCP_LIST_EVENTS_TOOL": self.list_events_tool,
        }
        for name, value in tools.items():
            if not value:
                raise ValueError(f"{name} is required")


@dataclass(frozen=True)
class ConnectorSettings:
    mode: str = "mcp"
    organization: Optional[str] = None
    repositories: Tuple[str, ...] = ()
    mcp: McpSettings = field(default_factory=McpSettings)

    def validate(self) -> None:
        if self.mode not in CONNECTOR_MODES:
            raise ValueError("GITHUB_CONNECTOR_MODE must be mcp or sample")
        if self.mode == "mcp":
            self.mcp.validate()


@dataclass(frozen=True)
class IngestionSettings:
    interval_minutes: int = 60
    lookback_days: int = 30
    max_concurrency: int = 1


@dataclass(frozen=True)
class Settings:
    store: StoreSettings = field(default_factory=StoreSettings)
    connector: ConnectorSettings = field(default_factory=ConnectorSettings)
    ingestion: IngestionSettings = field(default_factory=IngestionSettings)
    report_cache_ttl_seconds: int = 300
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build and validate settings from environment variables.

        :raises ValueError: naming the offending variable.
        """
        env = os.environ if env is None else env

        provider = (_get(env, "AUDIT_STORE_PROVIDER") or "sqlite").lower()
        connection_string = _get(env, "AUDIT_STORE_CONNECTION_STRING") or _get(
            env, "DB_CONN_STRING"
        )
        if connection_string is None:
            connection_string = (
                DEFAULT_JSON_PATH if provider == "json" else DEFAULT_CONNECTION_STRING
            )
        store = StoreSettings(
            provider=provider,
            connection_string=connection_string,
            initialize_schema=_get_bool(env, "AUDIT_STORE_INITIALIZE_SCHEMA", True),
        )

        mcp = McpSettings(
            endpoint=_get(env, "MCP_ENDPOINT") or DEFAULT_MCP_ENDPOINT,
            api_key=_get(env, "MCP_API_KEY"),
            list_repositories_tool=_get(env, "MCP_LIST_REPOSITORIES_TOOL")
            or "list_repositories",
            list_pull_requests_tool=_get(env, "MCP_LIST_PULL_REQUESTS_TOOL")
            or "list_pull_requests",
            list_reviews_tool=_get(env, "MCP_LIST_REVIEWS_TOOL") or "list_reviews",
            list_events_tool=_get(env, "MCP_LIST_EVENTS_TOOL")
            or "list_pull_request_events",
        )
        connector = ConnectorSettings(
            mode=(_get(env, "GITHUB_CONNECTOR_MODE") or "mcp").lower(),
            organization=_get(env, "GITHUB_ORGANIZATION"),
            repositories=_split_list(_get(env, "GITHUB_REPOSITORIES")),
            mcp=mcp,
        )

        ingestion = IngestionSettings(
            interval_minutes=_get_int(
                env, "INGESTION_INTERVAL_MINUTES", 60, minimum=1, maximum=1440
            ),
            lookback_days=_get_int(env, "INGESTION_LOOKBACK_DAYS", 30, minimum=1),
            max_concurrency=_get_int(env, "INGESTION_MAX_CONCURRENCY", 1, minimum=1),
        )

        settings = cls(
            store=store,
            connector=connector,
            ingestion=ingestion,
            report_cache_ttl_seconds=_get_int(
                env, "REPORT_CACHE_TTL_SECONDS", 300, minimum=0
            ),
            log_level=(_get(env, "LOG_LEVEL") or "INFO").upper(),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        self.store.validate()
        self.connector.validate()
