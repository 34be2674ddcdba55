import asyncio
import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import (Any, Callable, Dict, Iterable, List, Optional, Protocol,
                    Sequence, Tuple, Union)

from sqlalchemy import and_, bindparam, delete, insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from models import (Base, EventRecord, PullRequestRecord,
                    PullRequestSnapshotRow, PullRequestState, RepositoryCursor,
                    RepositoryCursorRow, ReviewRecord, repository_key, to_utc)
from utils import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

STORE_TYPES = ("json", "sqlite", "postgres", "sqlserver")


class AuditStoreError(Exception):
    """Raised when persisted audit state cannot be read."""


class AuditStore(Protocol):
    """
    Persistence contract shared by every audit store backend.

    Every backend must behave identically: repository matching is
    case-insensitive, upserts fully replace a snapshot by (repository, number),
    and listings are sorted by (repository, number).
    """

    async def get_cursor(self, repository: str) -> Optional[RepositoryCursor]: ...

    async def save_cursor(self, cursor: RepositoryCursor) -> None: ...

    async def upsert_pull_requests(
        self, pull_requests: Sequence[PullRequestRecord]
    ) -> None: ...

    async def list_pull_requests(self) -> List[PullRequestRecord]: ...

    async def list_pull_requests_by_state(
        self, state: PullRequestState, repository: Optional[str] = None
    ) -> List[PullRequestRecord]: ...

    async def list_pull_requests_by_date_range(
        self, start: datetime, end: datetime
    ) -> List[PullRequestRecord]: ...

    async def close(self) -> None: ...


def detect_store_type(conn_string: str) -> str:
    """
    Detect the audit store backend from a connection string.

    :param conn_string: Database connection string or JSON file path.
    :return: Store type ('json', 'sqlite', 'postgres' or 'sqlserver').
    :raises ValueError: If the store type cannot be determined.
    """
    if not conn_string:
        raise ValueError("Connection string is required")

    conn_lower = conn_string.strip().lower()

    if conn_lower.startswith("file://") or conn_lower.endswith(".json"):
        return "json"

    if conn_lower.startswith(("postgresql://", "postgres://", "postgresql+")):
        return "postgres"

    if conn_lower.startswith(("mssql://", "mssql+")):
        return "sqlserver"

    if conn_lower.startswith(("sqlite://", "sqlite+aiosqlite://")):
        return "sqlite"

    scheme = conn_string.split("://", 1)[0] if "://" in conn_string else "unknown"
    raise ValueError(
        f"Could not detect audit store type from connection string. "
        f"Supported: *.json or file://, sqlite://, postgresql://, postgres://, "
        f"mssql://, or variations with async drivers. Got scheme: '{scheme}'"
    )


def create_store(
    conn_string: str,
    store_type: Optional[str] = None,
    echo: bool = False,
    initialize_schema: bool = True,
) -> Union["JsonFileStore", "SQLAlchemyStore"]:
    """
    Create an audit store for the connection string.

    :param conn_string: Database connection string or JSON file path.
    :param store_type: Optional explicit type; auto-detected when omitted.
    :param echo: Whether to echo SQL statements.
    :param initialize_schema: Create relational tables lazily on first use.
    :return: A JsonFileStore or SQLAlchemyStore.
    """
    if store_type is None:
        store_type = detect_store_type(conn_string)

    store_type = store_type.lower()

    if store_type == "json":
        path = conn_string
        if path.lower().startswith("file://"):
            path = path[len("file://") :]
        return JsonFileStore(path)
    elif store_type in _DIALECTS:
        return SQLAlchemyStore(
            conn_string,
            provider=store_type,
            echo=echo,
            initialize_schema=initialize_schema,
        )
    else:
        raise ValueError(
            f"Unsupported audit store type: {store_type}. "
            f"Supported types: {', '.join(STORE_TYPES)}"
        )


# --- Storage boundary serialization ---


def _review_to_dict(review: ReviewRecord) -> Dict[str, Any]:
    return {
        "reviewer": review.reviewer,
        "state": review.state,
        "submitted_at": format_timestamp(review.submitted_at),
    }


def _review_from_dict(data: Dict[str, Any]) -> ReviewRecord:
    submitted_at = parse_timestamp(data["submitted_at"])
    if submitted_at is None:
        raise ValueError(f"invalid submitted_at: {data['submitted_at']!r}")
    return ReviewRecord(
        reviewer=str(data["reviewer"]),
        state=str(data["state"]),
        submitted_at=submitted_at,
    )


def _event_to_dict(event: EventRecord) -> Dict[str, Any]:
    return {
        "event_type": event.event_type,
        "actor": event.actor,
        "occurred_at": format_timestamp(event.occurred_at),
    }


def _event_from_dict(data: Dict[str, Any]) -> EventRecord:
    occurred_at = parse_timestamp(data["occurred_at"])
    if occurred_at is None:
        raise ValueError(f"invalid occurred_at: {data['occurred_at']!r}")
    return EventRecord(
        event_type=str(data["event_type"]),
        actor=str(data["actor"]),
        occurred_at=occurred_at,
    )


def _decode_sub_records(
    payload: Any,
    builder: Callable[[Dict[str, Any]], Any],
    field_name: str,
    context: str,
) -> Tuple[Any, ...]:
    """
    Decode a serialized review/event list.

    A payload that cannot be decoded yields an empty tuple for this one record
    so a single bad row never blocks reads of the others.
    """
    if payload is None or payload == "":
        return ()
    try:
        data = json.loads(payload) if isinstance(payload, (str, bytes)) else payload
        if not isinstance(data, list):
            raise TypeError(f"expected a list, got {type(data).__name__}")
        return tuple(builder(item) for item in data)
    except (ValueError, TypeError, KeyError, AttributeError) as exc:
        logger.warning("Discarding unreadable %s for %s: %s", field_name, context, exc)
        return ()


def reviews_to_json(reviews: Iterable[ReviewRecord]) -> str:
    return json.dumps([_review_to_dict(r) for r in reviews])


def reviews_from_json(payload: Any, context: str = "") -> Tuple[ReviewRecord, ...]:
    return _decode_sub_records(payload, _review_from_dict, "reviews", context)


def events_to_json(events: Iterable[EventRecord]) -> str:
    return json.dumps([_event_to_dict(e) for e in events])


def events_from_json(payload: Any, context: str = "") -> Tuple[EventRecord, ...]:
    return _decode_sub_records(payload, _event_from_dict, "events", context)


def pull_request_to_dict(record: PullRequestRecord) -> Dict[str, Any]:
    return {
        "repository": record.repository,
        "number": record.number,
        "title": record.title,
        "author": record.author,
        "state": record.state.value,
        "created_at": format_timestamp(record.created_at),
        "updated_at": format_timestamp(record.updated_at),
        "merged_at": (
            format_timestamp(record.merged_at) if record.merged_at else None
        ),
        "reviews": [_review_to_dict(r) for r in record.reviews],
        "events": [_event_to_dict(e) for e in record.events],
    }


def pull_request_from_dict(data: Dict[str, Any]) -> PullRequestRecord:
    context = f"{data.get('repository')}#{data.get('number')}"
    created_at = parse_timestamp(data.get("created_at"))
    updated_at = parse_timestamp(data.get("updated_at"))
    if created_at is None or updated_at is None:
        raise ValueError(f"pull request {context} is missing created_at/updated_at")
    return PullRequestRecord(
        repository=str(data["repository"]),
        number=int(data["number"]),
        title=data.get("title") or "",
        author=data.get("author") or "",
        state=PullRequestState.parse(data.get("state")),
        created_at=created_at,
        updated_at=updated_at,
        merged_at=parse_timestamp(data.get("merged_at")),
        reviews=reviews_from_json(data.get("reviews"), context=context),
        events=events_from_json(data.get("events"), context=context),
    )


def _sort_key(record: PullRequestRecord) -> Tuple[str, int]:
    return record.key


def _dedupe_by_key(
    pull_requests: Iterable[PullRequestRecord],
) -> List[PullRequestRecord]:
    """Collapse a batch to one record per key; the last occurrence wins."""
    by_key: Dict[Tuple[str, int], PullRequestRecord] = {}
    for record in pull_requests:
        by_key[record.key] = record
    return list(by_key.values())


async def _run_blocking(func: Callable[..., Any], *args: Any) -> Any:
    """
    Run blocking I/O in a worker thread.

    If the caller is cancelled the thread is still awaited before the
    cancellation propagates, so a write never outlives the gate that guards it.
    """
    future = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(future)
    except asyncio.CancelledError:
        await asyncio.wait([future])
        if not future.cancelled() and future.exception() is not None:
            logger.debug("Blocking call failed after cancellation: %s", future.exception())
        raise


# --- File-backed store ---


@dataclass
class _AuditState:
    # repository_key -> (repository, last_successful_sync_utc)
    cursors: Dict[str, Tuple[str, datetime]] = field(default_factory=dict)
    pull_requests: Dict[Tuple[str, int], PullRequestRecord] = field(
        default_factory=dict
    )


class JsonFileStore:
    """
    Audit store persisted as a single JSON document.

    Layout: `{"cursors": {repository: timestamp}, "pull_requests": [...]}`.
    Every mutation rewrites the whole document under the store's gate; the
    new document is written to a temporary file and atomically moved into
    place so the previous version survives a crash mid-write.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        if not str(path):
            raise ValueError("JSON store path is required")
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "JsonFileStore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        return None

    async def get_cursor(self, repository: str) -> Optional[RepositoryCursor]:
        state = await self._snapshot()
        entry = state.cursors.get(repository_key(repository))
        if entry is None:
            return None
        return RepositoryCursor(repository=entry[0], last_successful_sync_utc=entry[1])

    async def save_cursor(self, cursor: RepositoryCursor) -> None:
        def _apply(state: _AuditState) -> None:
            state.cursors[repository_key(cursor.repository)] = (
                cursor.repository,
                to_utc(cursor.last_successful_sync_utc),
            )

        await self._mutate(_apply)

    async def upsert_pull_requests(
        self, pull_requests: Sequence[PullRequestRecord]
    ) -> None:
        if not pull_requests:
            return
        batch = _dedupe_by_key(pull_requests)

        def _apply(state: _AuditState) -> None:
            for record in batch:
                state.pull_requests[record.key] = record

        await self._mutate(_apply)

    async def list_pull_requests(self) -> List[PullRequestRecord]:
        state = await self._snapshot()
        return sorted(state.pull_requests.values(), key=_sort_key)

    async def list_pull_requests_by_state(
        self, state: PullRequestState, repository: Optional[str] = None
    ) -> List[PullRequestRecord]:
        wanted_repo = repository_key(repository) if repository else ""
        return [
            pr
            for pr in await self.list_pull_requests()
            if pr.state == state
            and (not wanted_repo or repository_key(pr.repository) == wanted_repo)
        ]

    async def list_pull_requests_by_date_range(
        self, start: datetime, end: datetime
    ) -> List[PullRequestRecord]:
        start_utc, end_utc = to_utc(start), to_utc(end)
        return [
            pr
            for pr in await self.list_pull_requests()
            if start_utc <= pr.updated_at <= end_utc
        ]

    async def _snapshot(self) -> _AuditState:
        async with self._lock:
            return await _run_blocking(self._read_state)

    async def _mutate(self, mutator: Callable[[_AuditState], None]) -> None:
        async with self._lock:
            await _run_blocking(self._read_modify_write, mutator)

    def _read_modify_write(self, mutator: Callable[[_AuditState], None]) -> None:
        state = self._read_state()
        mutator(state)
        self._write_state(state)

    def _read_state(self) -> _AuditState:
        state = _AuditState()
        if not self.path.exists():
            return state

        try:
            raw = self.path.read_text(encoding="utf-8")
            document = json.loads(raw) if raw.strip() else {}
            if not isinstance(document, dict):
                raise ValueError("top-level JSON value is not an object")

            for name, value in (document.get("cursors") or {}).items():
                timestamp = parse_timestamp(value)
                if timestamp is None:
                    raise ValueError(f"invalid cursor timestamp for {name}: {value!r}")
                state.cursors[repository_key(name)] = (name, timestamp)

            for item in document.get("pull_requests") or []:
                record = pull_request_from_dict(item)
                state.pull_requests[record.key] = record
        except (OSError, ValueError, TypeError, KeyError, AttributeError) as exc:
            raise AuditStoreError(
                f"Unable to read audit state from {self.path}: {exc}"
            ) from exc
        return state

    def _write_state(self, state: _AuditState) -> None:
        cursors = sorted(state.cursors.items())
        document = {
            "cursors": {name: format_timestamp(ts) for _, (name, ts) in cursors},
            "pull_requests": [
                pull_request_to_dict(pr)
                for pr in sorted(state.pull_requests.values(), key=_sort_key)
            ],
        }

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
            raise


# --- Relational store ---


class _UpsertDialect:
    """Builds insert-or-replace statements for one SQL dialect."""

    name = "base"

    async def upsert(
        self,
        session: AsyncSession,
        model: Any,
        rows: List[Dict[str, Any]],
        conflict_columns: List[str],
        update_columns: List[str],
    ) -> None:
        raise NotImplementedError


class _OnConflictDialect(_UpsertDialect):
    insert_factory: Callable[[Any], Any]

    async def upsert(self, session, model, rows, conflict_columns, update_columns):
        table = model.__table__
        stmt = self.insert_factory(table)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c[col] for col in conflict_columns],
            set_={col: stmt.excluded[col] for col in update_columns},
        )
        await session.execute(stmt, rows)


class _SQLiteDialect(_OnConflictDialect):
    name = "sqlite"
    insert_factory = staticmethod(sqlite_insert)


class _PostgresDialect(_OnConflictDialect):
    name = "postgres"
    insert_factory = staticmethod(pg_insert)


class _PortableDialect(_UpsertDialect):
    """
    Delete-then-insert upsert for dialects without an ON CONFLICT clause.

    Both statements run in the caller's transaction, so the replacement is
    atomic with the rest of the batch.
    """

    name = "sqlserver"

    async def upsert(self, session, model, rows, conflict_columns, update_columns):
        table = model.__table__
        criteria = and_(
            *[table.c[col] == bindparam(f"key_{col}") for col in conflict_columns]
        )
        keys = [{f"key_{col}": row[col] for col in conflict_columns} for row in rows]
        await session.execute(delete(table).where(criteria), keys)
        await session.execute(insert(table), rows)


_DIALECTS: Dict[str, Callable[[], _UpsertDialect]] = {
    "sqlite": _SQLiteDialect,
    "postgres": _PostgresDialect,
    "sqlserver": _PortableDialect,
}

_ASYNC_DRIVERS = {
    "sqlite": ("sqlite://", "sqlite+aiosqlite://"),
    "postgres": ("postgresql://", "postgresql+asyncpg://"),
    "sqlserver": ("mssql://", "mssql+aioodbc://"),
}


def _async_url(conn_string: str, provider: str) -> str:
    """Swap a plain driver-less URL for the async driver of the provider."""
    url = conn_string.strip()
    if url.lower().startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://") :]
    plain, async_prefix = _ASYNC_DRIVERS[provider]
    if url.lower().startswith(plain):
        return async_prefix + url[len(plain) :]
    return url


class SQLAlchemyStore:
    """Async audit store backed by SQLAlchemy (SQLite, PostgreSQL or SQL Server)."""

    def __init__(
        self,
        conn_string: str,
        provider: Optional[str] = None,
        echo: bool = False,
        initialize_schema: bool = True,
    ) -> None:
        provider = (provider or detect_store_type(conn_string)).lower()
        if provider not in _DIALECTS:
            raise ValueError(
                f"Unsupported SQL provider: {provider}. "
                f"Supported providers: {', '.join(sorted(_DIALECTS))}"
            )
        self.provider = provider
        self.dialect = _DIALECTS[provider]()

        url = _async_url(conn_string, provider)
        engine_kwargs: Dict[str, Any] = {"echo": echo}
        if provider == "sqlite":
            database = make_url(url).database
            if database and database != ":memory:" and not database.startswith("file:"):
                Path(database).parent.mkdir(parents=True, exist_ok=True)
        else:
            engine_kwargs.update(
                {
                    "pool_size": 5,
                    "max_overflow": 10,
                    "pool_pre_ping": True,  # Verify connections before using
                    "pool_recycle": 3600,  # Recycle connections after 1 hour
                }
            )

        self.engine = create_async_engine(url, **engine_kwargs)
        self.session_factory = sessionmaker(
            self.engine, expire_on_commit=False, class_=AsyncSession
        )
        self.initialize_schema = initialize_schema
        self._schema_initialized = False
        self._schema_lock = asyncio.Lock()
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> "SQLAlchemyStore":
        await self._ensure_schema()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.engine.dispose()

    async def _ensure_schema(self) -> None:
        if self._schema_initialized or not self.initialize_schema:
            return

        async with self._schema_lock:
            if self._schema_initialized:
                return
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self._schema_initialized = True
            logger.info("Audit SQL schema ensured using provider %s", self.provider)

    async def get_cursor(self, repository: str) -> Optional[RepositoryCursor]:
        await self._ensure_schema()
        async with self.session_factory() as session:
            result = await session.execute(
                select(RepositoryCursorRow).where(
                    RepositoryCursorRow.repository_key == repository_key(repository)
                )
            )
            row = result.scalar_one_or_none()
        if row is None:
            return None
        return RepositoryCursor(
            repository=row.repository,
            last_successful_sync_utc=to_utc(row.last_successful_sync_utc),
        )

    async def save_cursor(self, cursor: RepositoryCursor) -> None:
        await self._ensure_schema()
        row = {
            "repository_key": repository_key(cursor.repository),
            "repository": cursor.repository,
            "last_successful_sync_utc": to_utc(cursor.last_successful_sync_utc),
        }
        async with self._lock:
            async with self.session_factory() as session, session.begin():
                await self.dialect.upsert(
                    session,
                    RepositoryCursorRow,
                    [row],
                    conflict_columns=["repository_key"],
                    update_columns=["repository", "last_successful_sync_utc"],
                )

    async def upsert_pull_requests(
        self, pull_requests: Sequence[PullRequestRecord]
    ) -> None:
        if not pull_requests:
            return
        await self._ensure_schema()

        rows: List[Dict[str, Any]] = []
        for item in _dedupe_by_key(pull_requests):
            rows.append(
                {
                    "repository_key": repository_key(item.repository),
                    "pr_number": int(item.number),
                    "repository": item.repository,
                    "title": item.title or "",
                    "author": item.author or "",
                    "pull_request_state": item.state.value,
                    "created_at": to_utc(item.created_at),
                    "updated_at": to_utc(item.updated_at),
                    "merged_at": to_utc(item.merged_at) if item.merged_at else None,
                    "reviews_json": reviews_to_json(item.reviews),
                    "events_json": events_to_json(item.events),
                }
            )

        async with self._lock:
            async with self.session_factory() as session, session.begin():
                await self.dialect.upsert(
                    session,
                    PullRequestSnapshotRow,
                    rows,
                    conflict_columns=["repository_key", "pr_number"],
                    update_columns=[
                        "repository",
                        "title",
                        "author",
                        "pull_request_state",
                        "created_at",
                        "updated_at",
                        "merged_at",
                        "reviews_json",
                        "events_json",
                    ],
                )

    async def list_pull_requests(self) -> List[PullRequestRecord]:
        return await self._query_pull_requests()

    async def list_pull_requests_by_state(
        self, state: PullRequestState, repository: Optional[str] = None
    ) -> List[PullRequestRecord]:
        criteria = [PullRequestSnapshotRow.pull_request_state == state.value]
        if repository and repository.strip():
            criteria.append(
                PullRequestSnapshotRow.repository_key == repository_key(repository)
            )
        return await self._query_pull_requests(*criteria)

    async def list_pull_requests_by_date_range(
        self, start: datetime, end: datetime
    ) -> List[PullRequestRecord]:
        return await self._query_pull_requests(
            PullRequestSnapshotRow.updated_at >= to_utc(start),
            PullRequestSnapshotRow.updated_at <= to_utc(end),
        )

    async def _query_pull_requests(self, *criteria: Any) -> List[PullRequestRecord]:
        await self._ensure_schema()
        stmt = select(PullRequestSnapshotRow)
        if criteria:
            stmt = stmt.where(*criteria)
        stmt = stmt.order_by(
            PullRequestSnapshotRow.repository_key, PullRequestSnapshotRow.pr_number
        )
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
        return [self._row_to_record(row) for row in rows]

    @staticmethod
    def _row_to_record(row: PullRequestSnapshotRow) -> PullRequestRecord:
        context = f"{row.repository}#{row.pr_number}"
        return PullRequestRecord(
            repository=row.repository,
            number=row.pr_number,
            title=row.title or "",
            author=row.author or "",
            state=PullRequestState.parse(row.pull_request_state),
            created_at=to_utc(row.created_at),
            updated_at=to_utc(row.updated_at),
            merged_at=to_utc(row.merged_at) if row.merged_at else None,
            reviews=reviews_from_json(row.reviews_json, context=context),
            events=events_from_json(row.events_json, context=context),
        )
