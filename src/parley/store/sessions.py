"""SQLite-backed session, statistics, and error-log store."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite
import structlog
from ulid import ULID

from parley.models.config import StoreConfig
from parley.models.content import StatisticEvent
from parley.models.session import BufferedItem, Session, SessionState, SessionUpdate

# ── Exceptions ─────────────────────────────────────────────────────────────────


class ParleyStoreError(Exception):
    """Base class for store errors."""


class StoreNotInitializedError(ParleyStoreError):
    """Raised when the store is used before ``initialize()``."""


class SessionNotFoundError(ParleyStoreError):
    """Raised when an update targets a user without a session row."""

    def __init__(self, user_id: int) -> None:
        super().__init__(f"Session not found for user {user_id!r}")
        self.user_id = user_id


def make_id(prefix: str) -> str:
    """
    Generate a ULID-based sortable identifier.

    Returns:
        ID string in the format ``"{prefix}_{ulid}"``.
    """
    return f"{prefix}_{ULID()}"


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionStore:
    """
    Sole writer of persisted session state.

    Every write runs inside a ``BEGIN IMMEDIATE`` transaction under a per-store
    write lock: SQLite takes its write lock before the first read, so the
    read-modify-write of a buffer append is atomic against any other writer,
    including other processes sharing the database file.

    Usage::

        store = SessionStore(StoreConfig(db_path="/tmp/parley.db"))
        await store.initialize()
        try:
            session, _ = await store.create_or_get_session(42)
            await store.append_message_sorted(42, item)
        finally:
            await store.close()
    """

    def __init__(self, config: StoreConfig) -> None:
        self._config = config
        self._db_path = str(Path(config.db_path).expanduser())
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()
        self._logger = structlog.get_logger("parley.store")

    async def initialize(self) -> None:
        """
        Open the database connection and apply the schema.

        Idempotent: a second call on an open store is a no-op.

        Raises:
            aiosqlite.Error: If the database cannot be opened or the schema fails.
        """
        if self._conn is not None:
            return
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(
            self._db_path, timeout=self._config.connection_timeout, isolation_level=None
        )
        try:
            conn.row_factory = aiosqlite.Row
            if self._config.wal_mode:
                await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA synchronous=NORMAL")
            schema = (Path(__file__).parent / "schema.sql").read_text()
            await conn.executescript(schema)
            await conn.commit()
        except Exception:
            await conn.close()
            raise

        self._conn = conn
        self._logger.info("store_initialized", db_path=self._db_path)

    async def close(self) -> None:
        """Close the database connection. Safe to call twice."""
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None
        self._logger.debug("store_closed", db_path=self._db_path)

    def _conn_or_raise(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreNotInitializedError("Store is not initialized. Call initialize() first.")
        return self._conn

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialise a write transaction; commit on success, roll back on error."""
        conn = self._conn_or_raise()
        async with self._write_lock:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    @staticmethod
    async def _fetch_row(conn: aiosqlite.Connection, user_id: int) -> aiosqlite.Row | None:
        async with conn.execute("SELECT * FROM sessions WHERE user_id = ?", (user_id,)) as cursor:
            return await cursor.fetchone()

    # ── Session Methods ────────────────────────────────────────────────────────

    async def get_session(self, user_id: int) -> Session | None:
        """Return the user's session, or ``None`` when no row exists."""
        row = await self._fetch_row(self._conn_or_raise(), user_id)
        return self._row_to_session(row) if row is not None else None

    async def create_or_get_session(
        self, user_id: int, initial_state: SessionState = SessionState.COLLECTING
    ) -> tuple[Session, bool]:
        """
        Return the user's session, inserting an empty one if absent.

        Returns:
            ``(session, created)`` where ``created`` is True when a new row was inserted.
        """
        now = _now_ms()
        async with self._transaction() as conn:
            cursor = await conn.execute(
                "INSERT OR IGNORE INTO sessions (user_id, state, messages, created_at, updated_at)"
                " VALUES (?, ?, '[]', ?, ?)",
                (user_id, initial_state.value, now, now),
            )
            created = cursor.rowcount > 0
            await cursor.close()
            row = await self._fetch_row(conn, user_id)
            if row is None:
                raise SessionNotFoundError(user_id)
        return self._row_to_session(row), created

    async def reset_session(
        self, user_id: int, state: SessionState = SessionState.COLLECTING
    ) -> Session:
        """
        Empty the buffer and clear instruction/progress handles.

        Raises:
            SessionNotFoundError: If the user has no session.
        """
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE sessions
                SET state = ?, messages = '[]', last_instruction = NULL,
                    last_message_id = NULL, updated_at = ?
                WHERE user_id = ?
                """,
                (state.value, _now_ms(), user_id),
            )
            await cursor.close()
            row = await self._fetch_row(conn, user_id)
        if row is None:
            raise SessionNotFoundError(user_id)
        return self._row_to_session(row)

    async def update_session(self, user_id: int, update: SessionUpdate) -> Session:
        """
        Write only the fields explicitly set on ``update``.

        Raises:
            SessionNotFoundError: If the user has no session.
        """
        columns = update.columns()
        assignments = ", ".join(f"{name} = ?" for name in columns)
        values = [v.value if isinstance(v, SessionState) else v for v in columns.values()]
        async with self._transaction() as conn:
            cursor = await conn.execute(
                f"UPDATE sessions SET {assignments}, updated_at = ? WHERE user_id = ?",
                (*values, _now_ms(), user_id),
            )
            await cursor.close()
            row = await self._fetch_row(conn, user_id)
        if row is None:
            raise SessionNotFoundError(user_id)
        return self._row_to_session(row)

    async def delete_session(self, user_id: int) -> bool:
        """Delete the user's session. Returns True if a row was removed."""
        async with self._transaction() as conn:
            cursor = await conn.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,))
            deleted = cursor.rowcount > 0
            await cursor.close()
        return deleted

    async def append_message_sorted(self, user_id: int, item: BufferedItem) -> Session:
        """
        Merge ``item`` into the buffer at its chronological position.

        The sort is stable, so items sharing a timestamp keep arrival order.

        Raises:
            SessionNotFoundError: If the user has no session.
        """
        async with self._transaction() as conn:
            row = await self._fetch_row(conn, user_id)
            if row is None:
                raise SessionNotFoundError(user_id)
            merged = json.loads(row["messages"])
            merged.append(item.model_dump(mode="json"))
            merged.sort(key=lambda m: m["timestamp"])
            cursor = await conn.execute(
                "UPDATE sessions SET messages = ?, updated_at = ? WHERE user_id = ?",
                (json.dumps(merged, ensure_ascii=False), _now_ms(), user_id),
            )
            await cursor.close()
            row = await self._fetch_row(conn, user_id)
            if row is None:
                raise SessionNotFoundError(user_id)
        return self._row_to_session(row)

    # ── Statistics & Logs ──────────────────────────────────────────────────────

    async def log_statistic(self, event: StatisticEvent) -> None:
        """Insert a statistics row. Failures are logged and swallowed."""
        try:
            conn = self._conn_or_raise()
            async with self._write_lock:
                await conn.execute(
                    """
                    INSERT INTO statistics
                        (id, user_id, action_type, action_data, session_messages_count,
                         model_used, tokens_used, response_time_ms, error_occurred,
                         error_message, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        make_id("stat"),
                        event.user_id,
                        event.action_type,
                        json.dumps(event.action_data) if event.action_data is not None else None,
                        event.session_messages_count,
                        event.model_used,
                        event.tokens_used,
                        event.response_time_ms,
                        1 if event.error_occurred else 0,
                        event.error_message,
                        event.created_at,
                    ),
                )
                await conn.commit()
        except Exception as exc:
            self._logger.error(
                "log_statistic_failed",
                user_id=event.user_id,
                action_type=event.action_type,
                error=str(exc),
            )

    async def log_error(self, level: str, message: str, context: dict[str, Any] | None = None) -> None:
        """Insert a ``logs`` row. Failures are logged at warning level and swallowed."""
        try:
            conn = self._conn_or_raise()
            async with self._write_lock:
                await conn.execute(
                    "INSERT INTO logs (id, level, message, context, created_at)"
                    " VALUES (?, ?, ?, ?, ?)",
                    (
                        make_id("log"),
                        level,
                        message,
                        json.dumps(context or {}, default=str),
                        _now_ms(),
                    ),
                )
                await conn.commit()
        except Exception as exc:
            self._logger.warning("log_error_failed", error=str(exc))

    async def list_statistics(
        self, user_id: int | None = None, *, limit: int = 100
    ) -> list[StatisticEvent]:
        """Return statistics rows oldest first, optionally for a single user."""
        conn = self._conn_or_raise()
        where = "WHERE user_id = ?" if user_id is not None else ""
        params: tuple[Any, ...] = (user_id, limit) if user_id is not None else (limit,)
        async with conn.execute(
            f"SELECT * FROM statistics {where} ORDER BY created_at, id LIMIT ?", params
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            StatisticEvent(
                user_id=r["user_id"],
                action_type=r["action_type"],
                action_data=json.loads(r["action_data"]) if r["action_data"] else None,
                session_messages_count=r["session_messages_count"],
                model_used=r["model_used"],
                tokens_used=r["tokens_used"],
                response_time_ms=r["response_time_ms"],
                error_occurred=bool(r["error_occurred"]),
                error_message=r["error_message"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    async def list_logs(self, *, limit: int = 100) -> list[dict[str, Any]]:
        """Return ``logs`` rows oldest first."""
        conn = self._conn_or_raise()
        async with conn.execute(
            "SELECT * FROM logs ORDER BY created_at, id LIMIT ?", (limit,)
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            {
                "level": r["level"],
                "message": r["message"],
                "context": json.loads(r["context"]) if r["context"] else {},
                "created_at": r["created_at"],
            }
            for r in rows
        ]

    # ── Row conversion ─────────────────────────────────────────────────────────

    @staticmethod
    def _row_to_session(row: aiosqlite.Row) -> Session:
        return Session(
            user_id=row["user_id"],
            state=SessionState(row["state"]),
            messages=[BufferedItem.model_validate(m) for m in json.loads(row["messages"])],
            last_instruction=row["last_instruction"],
            last_message_id=row["last_message_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
