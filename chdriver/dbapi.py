"""A DB-API style interface over a single native connection."""

from __future__ import annotations

import itertools
import re
from collections.abc import Mapping
from typing import Any, Callable, Iterable

from chdriver.bind import rebind
from chdriver.connection import Codec, Connection as NativeConnection, dial
from chdriver.errors import ClickHouseError, NoRowsError
from chdriver.options import ConnOpenStrategy, Options, parse_dsn
from chdriver.rows import Rows

apilevel = "2.0"
threadsafety = 1
paramstyle = "numeric"

CodecFactory = Callable[[Any], Codec]

_ids = itertools.count(1)

_RESULT_QUERY_RE = re.compile(
    r"\s*\(*\s*(?:select|with|show|describe|desc|exists|explain)\b", re.IGNORECASE
)
_WRAPPER_RE = re.compile(r"(?:Nullable|Array|LowCardinality)\((.*)\)")
_DECIMAL_RE = re.compile(r"Decimal\(\s*(\d+)\s*,\s*(\d+)\s*\)")
_SIZED_DECIMAL_RE = re.compile(r"Decimal(32|64|128|256)\(\s*(\d+)\s*\)")
_SIZED_PRECISION = {"32": 9, "64": 18, "128": 38, "256": 76}


def _noop_release(conn: NativeConnection, err: BaseException | None) -> None:
    pass


def _dial(options: Options, codec_factory: CodecFactory) -> NativeConnection:
    conn_id = next(_ids)
    addrs = options.addr
    if not addrs:
        raise ClickHouseError("clickhouse: no server address")
    err: BaseException | None = None
    for num in range(len(addrs)):
        if options.conn_open_strategy == ConnOpenStrategy.ROUND_ROBIN:
            num = conn_id % len(addrs)
        try:
            return dial(addrs[num], conn_id, options, codec_factory)
        except Exception as exc:
            err = exc
    assert err is not None
    raise err


def _decimal_size(type_name: str) -> tuple[int | None, int | None]:
    while (match := _WRAPPER_RE.fullmatch(type_name)) is not None:
        type_name = match.group(1)
    if (match := _DECIMAL_RE.fullmatch(type_name)) is not None:
        return int(match.group(1)), int(match.group(2))
    if (match := _SIZED_DECIMAL_RE.fullmatch(type_name)) is not None:
        return _SIZED_PRECISION[match.group(1)], int(match.group(2))
    return None, None


class Connection:
    """One server connection; ``commit`` sends the batch prepared last."""

    def __init__(self, native: NativeConnection) -> None:
        self._native = native
        self._commit: Callable[[], None] | None = None

    def cursor(self) -> Cursor:
        """A new cursor on this connection."""
        return Cursor(self)

    def ping(self) -> None:
        """Check that the server answers."""
        self._native.ping()

    def commit(self) -> None:
        """Send the pending batch, if there is one."""
        send = self._commit
        if send is None:
            return
        try:
            send()
        finally:
            self._commit = None

    def rollback(self) -> None:
        """Drop the pending batch; the connection is closed and cannot be reused."""
        self._commit = None
        self._native.close()

    def close(self) -> None:
        """Close the connection."""
        self._native.close()


class Cursor:
    """Runs statements and reads their results.

    Set ``async_insert`` to False or True to run statements as asynchronous
    inserts, without or with waiting for the server to write them.
    """

    arraysize = 1

    def __init__(self, connection: Connection) -> None:
        self.connection = connection
        self.async_insert: bool | None = None
        self.rowcount = -1
        self._rows: Rows | None = None
        self._totals: list[tuple[Any, ...]] | None = None
        self._closed = False

    def _check(self) -> NativeConnection:
        if self._closed:
            raise ClickHouseError("clickhouse: cursor is closed")
        return self.connection._native

    def _reset(self) -> None:
        rows, self._rows = self._rows, None
        self._totals = None
        if rows is not None:
            try:
                rows.close()
            except Exception:
                pass

    def _result(self) -> Rows:
        if self._rows is None:
            raise ClickHouseError("clickhouse: no result set")
        return self._rows

    def execute(self, query: str, params: Mapping[str, Any] | Iterable[Any] | None = None) -> None:
        """Run one statement; queries that return rows can then be fetched."""
        native = self._check()
        self._reset()
        args = rebind(params) if params is not None else []
        if self.async_insert is not None:
            if args:
                raise ClickHouseError(
                    "clickhouse: you can't use parameters in an asynchronous insert"
                )
            native.async_insert(query, self.async_insert)
            return
        if _RESULT_QUERY_RE.match(query):
            self._rows = native.query(_noop_release, query, *args)
        else:
            native.exec(query, *args)

    def executemany(self, query: str, seq_of_params: Iterable[Any]) -> None:
        """Add rows to a batch INSERT; the connection's ``commit`` sends it."""
        native = self._check()
        self._reset()
        batch = native.prepare_batch(query, _noop_release)
        self.connection._commit = batch.send
        for params in seq_of_params:
            if isinstance(params, Mapping):
                batch.append_dict(params)
            else:
                batch.append(*params)

    @property
    def description(self) -> list[tuple[Any, ...]] | None:
        """Name, type, sizes, precision, scale and nullability of each result column."""
        if self._rows is None:
            return None
        return [
            (
                column.name,
                column.database_type,
                None,
                None,
                *_decimal_size(column.database_type),
                column.nullable,
            )
            for column in self._rows.column_types()
        ]

    def fetchone(self) -> tuple[Any, ...] | None:
        """The next row, or None when there are no more."""
        if self._totals is not None:
            return self._totals.pop(0) if self._totals else None
        rows = self._result()
        if rows.next():
            return rows.scan()
        err = rows.err()
        if err is not None:
            raise err
        return None

    def fetchmany(self, size: int | None = None) -> list[tuple[Any, ...]]:
        """Up to ``size`` further rows (``arraysize`` by default)."""
        size = self.arraysize if size is None else size
        result = []
        for _ in range(size):
            row = self.fetchone()
            if row is None:
                break
            result.append(row)
        return result

    def fetchall(self) -> list[tuple[Any, ...]]:
        """All remaining rows."""
        return list(iter(self.fetchone, None))

    def nextset(self) -> bool | None:
        """Move to the totals row of a ``WITH TOTALS`` query; None when there is none."""
        rows = self._result()
        if self._totals is not None:
            return None
        while rows.next():
            pass
        err = rows.err()
        if err is not None:
            raise err
        try:
            totals = rows.totals()
        except NoRowsError:
            return None
        self._totals = [totals]
        return True

    def close(self) -> None:
        """Discard the current result; raise the error it ended with, if any."""
        rows, self._rows = self._rows, None
        self._totals = None
        self._closed = True
        if rows is not None:
            rows.close()


def connect(dsn: str, codec_factory: CodecFactory) -> Connection:
    """Open a connection described by a DSN."""
    options = parse_dsn(dsn)
    return Connection(_dial(options, codec_factory))


def open_db(options: Options, codec_factory: CodecFactory) -> Connection:
    """Open a connection from options; pooling options are rejected."""
    invalid = [
        name
        for name, given in (
            ("max_idle_conns", options.max_idle_conns > 0),
            ("max_open_conns", options.max_open_conns > 0),
            ("conn_max_lifetime", options.conn_max_lifetime > 0),
        )
        if given
    ]
    if invalid:
        raise ClickHouseError(
            "cannot connect. invalid settings. pooling is not available on a single "
            f"connection: {','.join(invalid)}"
        )
    options.set_defaults()
    return Connection(_dial(options, codec_factory))