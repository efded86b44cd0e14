"""A pool of native connections shared by many callers."""

from __future__ import annotations

import itertools
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

from chdriver.batch import Batch
from chdriver.connection import Codec, Connection, ServerInfo, dial
from chdriver.errors import AcquireConnTimeoutError, ClickHouseError
from chdriver.options import ConnOpenStrategy, Options
from chdriver.rows import Row, Rows

CodecFactory = Callable[[Any], Codec]


@dataclass(frozen=True)
class Stats:
    """Counters describing the state of a client's pool."""

    open: int
    idle: int
    max_open_conns: int
    max_idle_conns: int


class Client:
    """Runs queries over a bounded pool of connections.

    At most ``max_open_conns`` connections are in use at once; up to
    ``max_idle_conns`` finished connections are kept for reuse.
    """

    def __init__(self, options: Options, codec_factory: CodecFactory) -> None:
        options.set_defaults()
        self.options = options
        self._codec_factory = codec_factory
        self._idle: deque[Connection] = deque()
        self._open = 0
        self._cond = threading.Condition()
        self._ids = itertools.count(1)

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _dial(self) -> Connection:
        conn_id = next(self._ids)
        addrs = self.options.addr
        if not addrs:
            raise ClickHouseError("clickhouse: no server address")
        err: BaseException | None = None
        for num in range(len(addrs)):
            if self.options.conn_open_strategy == ConnOpenStrategy.ROUND_ROBIN:
                num = conn_id % len(addrs)
            try:
                return dial(addrs[num], conn_id, self.options, self._codec_factory)
            except Exception as exc:
                err = exc
        assert err is not None
        raise err

    def _free_slot(self) -> None:
        with self._cond:
            if self._open > 0:
                self._open -= 1
            self._cond.notify()

    def _acquire(self) -> Connection:
        deadline = time.monotonic() + self.options.dial_timeout
        with self._cond:
            while self._open >= self.options.max_open_conns:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise AcquireConnTimeoutError()
                self._cond.wait(remaining)
            self._open += 1
            conn = self._idle.popleft() if self._idle else None
        try:
            if conn is not None and conn.is_bad():
                conn.close()
                conn = None
            if conn is None:
                conn = self._dial()
        except BaseException:
            self._free_slot()
            raise
        conn.released = False
        return conn

    def _release(self, conn: Connection, err: BaseException | None) -> None:
        if conn.released:
            return
        conn.released = True
        with self._cond:
            if self._open > 0:
                self._open -= 1
            self._cond.notify()
            expired = time.monotonic() - conn.connected_at >= self.options.conn_max_lifetime
            if err is None and not expired and len(self._idle) < self.options.max_idle_conns:
                self._idle.append(conn)
                return
        conn.close()

    def server_version(self) -> ServerInfo:
        """What the server reported about itself in the handshake."""
        conn = self._acquire()
        self._release(conn, None)
        return conn.server

    def query(self, query: str, *args: Any) -> Rows:
        """Run a query; the connection returns to the pool once the rows are read."""
        conn = self._acquire()
        return conn.query(self._release, query, *args)

    def query_row(self, query: str, *args: Any) -> Row:
        """Run a query and return its first row, or the error it failed with."""
        try:
            conn = self._acquire()
        except Exception as exc:
            return Row(err=exc)
        return conn.query_row(self._release, query, *args)

    def exec(self, query: str, *args: Any) -> None:
        """Run a statement that returns no rows."""
        conn = self._acquire()
        try:
            conn.exec(query, *args)
        except BaseException as exc:
            self._release(conn, exc)
            raise
        self._release(conn, None)

    def prepare_batch(self, query: str) -> Batch:
        """Start an INSERT; the connection is held until the batch is sent or aborted."""
        conn = self._acquire()
        return conn.prepare_batch(query, self._release)

    def async_insert(self, query: str, wait: bool) -> None:
        """Run an insert in the server's asynchronous insert mode."""
        conn = self._acquire()
        try:
            conn.async_insert(query, wait)
        except BaseException as exc:
            self._release(conn, exc)
            raise
        self._release(conn, None)

    def ping(self) -> None:
        """Check that a connection to the server works."""
        conn = self._acquire()
        try:
            conn.ping()
        except BaseException as exc:
            self._release(conn, exc)
            raise
        self._release(conn, None)

    def stats(self) -> Stats:
        """Current pool counters."""
        with self._cond:
            return Stats(
                open=self._open,
                idle=len(self._idle),
                max_open_conns=self.options.max_open_conns,
                max_idle_conns=self.options.max_idle_conns,
            )

    def close(self) -> None:
        """Close every idle connection."""
        with self._cond:
            idle = list(self._idle)
            self._idle.clear()
        for conn in idle:
            conn.close()


def open_client(options: Options, codec_factory: CodecFactory) -> Client:
    """Create a client; connections are opened lazily."""
    return Client(options, codec_factory)