"""Oracle Autonomous Database session authenticated with an OAuth token.

Pattern: Single-Owner Connection
---------------------------------
A ``DatabaseSession`` owns exactly one ``oracledb`` async connection.  The
connection is opened lazily on first use and released exactly once on
``close()`` (or on leaving ``async with``), whichever exit path is taken.
After release the session refuses further work instead of silently
reconnecting.

All connection settings (connection alias, ``tnsnames.ora`` directory, wallet
location and password) are carried per session and passed straight to
``oracledb.connect_async``.  Nothing is written to ``oracledb.defaults`` or
``TNS_ADMIN``, so sessions with different wallets can coexist in one process.
"""

from __future__ import annotations

import dataclasses
import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

import oracledb

logger = logging.getLogger(__name__)

Params = Mapping[str, Any] | Sequence[Any] | None
RowHandler = Callable[[dict[str, Any]], Awaitable[None] | None]


class DbError(Exception):
    """Raised on any connection or execution failure.

    ``code`` carries the driver's error code (``ORA-01017``, ``DPY-6005``...)
    when one is available.
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


@dataclasses.dataclass(frozen=True)
class QueryResult:
    """Materialised result set: ordered column names and ordered rows."""

    columns: tuple[str, ...]
    rows: list[tuple[Any, ...]]

    def as_dicts(self) -> list[dict[str, Any]]:
        return [dict(zip(self.columns, row)) for row in self.rows]

    def __len__(self) -> int:
        return len(self.rows)


def _wrap(exc: oracledb.Error, action: str) -> DbError:
    error = exc.args[0] if exc.args else None
    code = getattr(error, "full_code", None)
    message = getattr(error, "message", None) or str(exc)
    return DbError(f"{action} failed: {message}", code=code)


def _columns(cursor: Any) -> tuple[str, ...]:
    return tuple(col[0] for col in (cursor.description or ()))


class DatabaseSession:
    """One token-authenticated connection to an Oracle database."""

    def __init__(
        self,
        alias: str,
        access_token: str,
        config_dir: str,
        user: str | None = None,
        wallet_location: str | None = None,
        wallet_password: str | None = None,
    ) -> None:
        self._alias = alias
        self._access_token = access_token
        self._config_dir = config_dir
        self._user = user
        self._wallet_location = wallet_location or config_dir
        self._wallet_password = wallet_password
        self._connection: Any = None
        self._closed = False

    @property
    def alias(self) -> str:
        return self._alias

    @property
    def is_open(self) -> bool:
        return self._connection is not None and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _connect_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "dsn": self._alias,
            "access_token": self._access_token,
            "config_dir": self._config_dir,
            "wallet_location": self._wallet_location,
        }
        if self._user:
            kwargs["user"] = self._user
        if self._wallet_password:
            kwargs["wallet_password"] = self._wallet_password
        return kwargs

    # -- lifecycle -----------------------------------------------------------

    async def open(self) -> None:
        """Open the connection.  A no-op when it is already open."""
        if self._closed:
            raise DbError(f"Session for {self._alias} has been closed")
        if self._connection is not None:
            return
        try:
            connection = await oracledb.connect_async(**self._connect_kwargs())
        except oracledb.Error as exc:
            raise _wrap(exc, f"Connecting to {self._alias}") from exc
        connection.autocommit = True
        self._connection = connection
        logger.info("Connected to %s (config_dir=%s)", self._alias, self._config_dir)

    async def close(self) -> None:
        """Release the connection.  Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            await connection.close()
        except oracledb.Error as exc:
            raise _wrap(exc, f"Closing connection to {self._alias}") from exc
        logger.info("Closed connection to %s", self._alias)

    async def __aenter__(self) -> DatabaseSession:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _ensure_connected(self) -> Any:
        if self._closed:
            raise DbError(f"Session for {self._alias} has been closed")
        if self._connection is None:
            await self.open()
        return self._connection

    # -- execution -----------------------------------------------------------

    async def execute_query(self, sql: str, params: Params = None) -> QueryResult:
        """Run *sql* and return the whole result set."""
        connection = await self._ensure_connected()
        try:
            with connection.cursor() as cursor:
                await cursor.execute(sql, params)
                rows = await cursor.fetchall()
                return QueryResult(columns=_columns(cursor), rows=list(rows))
        except oracledb.Error as exc:
            raise _wrap(exc, "Query") from exc

    async def execute_scalar(
        self,
        sql: str,
        params: Params = None,
        as_type: Callable[[Any], Any] | None = None,
    ) -> Any:
        """Return the first column of the first row, or ``None``.

        ``None`` is returned for an empty result and for SQL NULL.  When
        *as_type* is given the value is converted with it unless it already is
        an instance of that type.
        """
        connection = await self._ensure_connected()
        try:
            with connection.cursor() as cursor:
                await cursor.execute(sql, params)
                row = await cursor.fetchone()
        except oracledb.Error as exc:
            raise _wrap(exc, "Scalar query") from exc

        if row is None or row[0] is None:
            return None
        value = row[0]
        if as_type is None or (isinstance(as_type, type) and isinstance(value, as_type)):
            return value
        try:
            return as_type(value)
        except (TypeError, ValueError) as exc:
            raise DbError(f"Cannot convert {value!r} with {as_type!r}") from exc

    async def execute_non_query(self, sql: str, params: Params = None) -> int:
        """Run a DML/DDL statement and return the affected row count."""
        connection = await self._ensure_connected()
        try:
            with connection.cursor() as cursor:
                await cursor.execute(sql, params)
                return cursor.rowcount
        except oracledb.Error as exc:
            raise _wrap(exc, "Statement") from exc

    async def stream_query(self, sql: str, on_row: RowHandler, params: Params = None) -> int:
        """Call *on_row* for each row without buffering the result set.

        *on_row* receives a ``{column: value}`` dict and may be a plain or an
        async function.  Returns the number of rows delivered.
        """
        connection = await self._ensure_connected()
        count = 0
        try:
            with connection.cursor() as cursor:
                await cursor.execute(sql, params)
                columns = _columns(cursor)
                async for row in cursor:
                    outcome = on_row(dict(zip(columns, row)))
                    if inspect.isawaitable(outcome):
                        await outcome
                    count += 1
        except oracledb.Error as exc:
            raise _wrap(exc, "Streaming query") from exc
        return count

    # -- convenience queries -------------------------------------------------

    async def test_connection(self) -> bool:
        """Return True when ``SELECT 1 FROM DUAL`` answers 1."""
        try:
            return await self.execute_scalar("SELECT 1 FROM DUAL", as_type=int) == 1
        except DbError as exc:
            logger.warning("Connection test against %s failed: %s", self._alias, exc)
            return False

    async def current_user(self) -> str | None:
        return await self.execute_scalar("SELECT USER FROM DUAL", as_type=str)

    async def database_version(self) -> str | None:
        return await self.execute_scalar(
            "SELECT BANNER FROM V$VERSION WHERE ROWNUM = 1", as_type=str
        )
