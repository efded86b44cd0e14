"""A single connection to a ClickHouse server speaking the native protocol."""

from __future__ import annotations

import enum
import logging
import socket
import ssl
import time
from collections import deque
from dataclasses import dataclass
from datetime import tzinfo
from typing import Any, Callable, Iterator, Protocol

from chdriver.batch import Batch, split_insert
from chdriver.bind import bind
from chdriver.block import Block, Log, logs_from_block
from chdriver.errors import ClickHouseError, OpError, UnsupportedServerRevisionError
from chdriver.options import Options
from chdriver.rows import Row, Rows

CLIENT_TCP_PROTOCOL_VERSION = 54451
MIN_REVISION_WITH_CLIENT_INFO = 54032

_log = logging.getLogger(__name__)


class ClientPacket(enum.IntEnum):
    """Packet kinds sent by the client."""

    HELLO = 0
    QUERY = 1
    DATA = 2
    CANCEL = 3
    PING = 4


class ServerPacket(enum.IntEnum):
    """Packet kinds sent by the server."""

    HELLO = 0
    DATA = 1
    EXCEPTION = 2
    PROGRESS = 3
    PONG = 4
    END_OF_STREAM = 5
    PROFILE_INFO = 6
    TOTALS = 7
    EXTREMES = 8
    TABLES_STATUS = 9
    LOG = 10
    TABLE_COLUMNS = 11
    PART_UUIDS = 12
    READ_TASK_REQUEST = 13
    PROFILE_EVENTS = 14


@dataclass
class ServerInfo:
    """What the server reports about itself in the handshake."""

    name: str = ""
    display_name: str = ""
    major: int = 0
    minor: int = 0
    patch: int = 0
    revision: int = 0
    timezone: tzinfo | None = None

    def __str__(self) -> str:
        return f"{self.name} {self.major}.{self.minor}.{self.patch} ({self.timezone})"


class Codec(Protocol):
    """Wire encoding of packets over one transport."""

    def write_byte(self, value: int) -> None: ...

    def write_uvarint(self, value: int) -> None: ...

    def write_string(self, value: str) -> None: ...

    def write_client_hello(self) -> None: ...

    def write_query(
        self, query: str, settings: list[tuple[str, Any]], revision: int, compression: bool
    ) -> None: ...

    def write_block(self, block: Block, revision: int) -> None: ...

    def flush(self) -> None: ...

    def read_byte(self) -> int: ...

    def read_string(self) -> str: ...

    def read_server_info(self) -> ServerInfo: ...

    def read_exception(self) -> BaseException: ...

    def read_progress(self, revision: int) -> Any: ...

    def read_profile_info(self, revision: int) -> Any: ...

    def read_table_columns(self, revision: int) -> Any: ...

    def read_profile_events(self, revision: int) -> list[Any]: ...

    def read_block(self, revision: int) -> Block: ...

    def set_compression(self, enabled: bool) -> None: ...

    def set_timeout(self, seconds: float | None) -> None: ...

    def close(self) -> None: ...


@dataclass
class OnProcess:
    """Callbacks for packets received while a query runs."""

    data: Callable[[Block], None] | None = None
    logs: Callable[[list[Log]], None] | None = None
    progress: Callable[[Any], None] | None = None
    profile_info: Callable[[Any], None] | None = None
    profile_events: Callable[[list[Any]], None] | None = None


Release = Callable[["Connection", "BaseException | None"], None]


class Connection:
    """One open connection: handshake, queries, inserts and pings."""

    def __init__(self, codec: Codec, options: Options, conn_id: int) -> None:
        self.codec = codec
        self.options = options
        self.conn_id = conn_id
        self.server = ServerInfo()
        self.closed = False
        self.released = False
        self.revision = CLIENT_TCP_PROTOCOL_VERSION
        self.compression = options.compression is not None
        self.connected_at = time.monotonic()

    def _debug(self, message: str, *args: Any) -> None:
        if self.options.debug:
            _log.debug("[clickhouse][conn=%d]" + message, self.conn_id, *args)

    def settings(self, query_settings: dict[str, Any] | None) -> list[tuple[str, Any]]:
        """Connection settings followed by the settings of one query."""
        merged = list(self.options.settings.items())
        if query_settings:
            merged.extend(query_settings.items())
        return merged

    def handshake(self, database: str, username: str, password: str) -> None:
        """Introduce the client and read the server's hello."""
        self._debug("[handshake] -> client hello")
        self.codec.set_timeout(self.options.dial_timeout or None)
        try:
            self.codec.write_byte(ClientPacket.HELLO)
            self.codec.write_client_hello()
            self.codec.write_string(database)
            self.codec.write_string(username)
            self.codec.write_string(password)
            self.codec.flush()
            packet = self.codec.read_byte()
            if packet == ServerPacket.EXCEPTION:
                raise self._exception()
            if packet == ServerPacket.END_OF_STREAM:
                self._debug("[handshake] <- end of stream")
                return
            if packet != ServerPacket.HELLO:
                raise ClickHouseError(f"[handshake] unexpected packet [{packet}] from server")
            self.server = self.codec.read_server_info()
        finally:
            self.codec.set_timeout(None)
        if self.server.revision < MIN_REVISION_WITH_CLIENT_INFO:
            raise UnsupportedServerRevisionError()
        if self.revision > self.server.revision:
            self.revision = self.server.revision
            self._debug("[handshake] downgrade client proto")
        self._debug("[handshake] <- %s", self.server)

    def ping(self) -> None:
        """Send a ping and wait for the pong."""
        self._debug("[ping] -> ping")
        self.codec.write_byte(ClientPacket.PING)
        self.codec.flush()
        while True:
            packet = self.codec.read_byte()
            if packet == ServerPacket.PROGRESS:
                self._progress()
            elif packet == ServerPacket.PONG:
                self._debug("[ping] <- pong")
                return
            else:
                raise ClickHouseError(f"unexpected packet {packet}")

    def is_bad(self) -> bool:
        """Whether the connection is closed or no longer answers a ping."""
        if self.closed:
            return True
        self.codec.set_timeout(1.0)
        try:
            self.ping()
        except Exception:
            return True
        finally:
            self.codec.set_timeout(None)
        return False

    def close(self) -> None:
        """Close the connection; closing twice does nothing."""
        if self.closed:
            return
        self.closed = True
        self.codec.close()

    def _progress(self) -> Any:
        progress = self.codec.read_progress(self.revision)
        self._debug("[progress] %s", progress)
        return progress

    def _exception(self) -> BaseException:
        exc = self.codec.read_exception()
        self._debug("[exception] %s", exc)
        return exc

    def send_data(self, block: Block, name: str) -> None:
        """Write one data packet and flush it."""
        self._debug("[send data] compression=%s", self.compression)
        self.codec.write_byte(ClientPacket.DATA)
        self.codec.write_string(name)
        if self.compression:
            self.codec.set_compression(True)
            try:
                self.codec.write_block(block, self.revision)
            finally:
                self.codec.set_compression(False)
        else:
            self.codec.write_block(block, self.revision)
        self.codec.flush()

    def read_data(self, packet: int, compressible: bool) -> Block:
        """Read the block of a data-like packet."""
        self.codec.read_string()
        if compressible and self.compression:
            self.codec.set_compression(True)
            try:
                block = self.codec.read_block(self.revision)
            finally:
                self.codec.set_compression(False)
        else:
            block = self.codec.read_block(self.revision)
        block.packet = packet
        self._debug(
            "[read data] compression=%s. block: columns=%d, rows=%d",
            self.compression,
            len(block.columns),
            block.rows(),
        )
        return block

    def first_block(self, on: OnProcess) -> Block:
        """Read packets until the first data block and return it."""
        while True:
            packet = self.codec.read_byte()
            if packet == ServerPacket.DATA:
                return self.read_data(packet, True)
            if packet == ServerPacket.END_OF_STREAM:
                self._debug("[end of stream]")
                raise EOFError("end of stream")
            self.handle(packet, on)

    def process(self, on: OnProcess | None) -> None:
        """Handle packets until the server ends the stream."""
        on = on or OnProcess()
        while True:
            packet = self.codec.read_byte()
            if packet == ServerPacket.END_OF_STREAM:
                self._debug("[end of stream]")
                return
            self.handle(packet, on)

    def handle(self, packet: int, on: OnProcess) -> None:
        """Handle one packet that is not the end of the stream."""
        if packet in (ServerPacket.DATA, ServerPacket.TOTALS, ServerPacket.EXTREMES):
            block = self.read_data(packet, True)
            if block.rows() != 0 and on.data is not None:
                on.data(block)
        elif packet == ServerPacket.EXCEPTION:
            raise self._exception()
        elif packet == ServerPacket.PROFILE_INFO:
            info = self.codec.read_profile_info(self.revision)
            self._debug("[profile info] %s", info)
            if on.profile_info is not None:
                on.profile_info(info)
        elif packet == ServerPacket.TABLE_COLUMNS:
            self.codec.read_table_columns(self.revision)
            self._debug("[table columns]")
        elif packet == ServerPacket.PROFILE_EVENTS:
            events = self.codec.read_profile_events(self.revision)
            if on.profile_events is not None:
                on.profile_events(events)
        elif packet == ServerPacket.LOG:
            block = self.read_data(packet, False)
            self._debug("[logs] rows=%d", block.rows())
            logs = logs_from_block(block)
            if on.logs is not None:
                on.logs(logs)
        elif packet == ServerPacket.PROGRESS:
            progress = self._progress()
            if on.progress is not None:
                on.progress(progress)
        else:
            raise OpError("process", ClickHouseError(f"unexpected packet {packet}"))

    def cancel(self) -> None:
        """Ask the server to stop the running query; the connection is then unusable."""
        self.codec.set_timeout(2.0)
        self._debug("[cancel]")
        self.closed = True
        self.codec.write_uvarint(ClientPacket.CANCEL)
        self.codec.flush()

    def _send_query(self, query: str, query_settings: dict[str, Any] | None) -> None:
        self.codec.write_byte(ClientPacket.QUERY)
        self.codec.write_query(query, self.settings(query_settings), self.revision, self.compression)
        self.send_data(Block(), "")

    def exec(self, query: str, *args: Any, settings: dict[str, Any] | None = None) -> None:
        """Run a statement that returns no rows."""
        body = bind(self.server.timezone, query, *args)
        self._send_query(body, settings)
        self.process(OnProcess())

    def async_insert(self, query: str, wait: bool, settings: dict[str, Any] | None = None) -> None:
        """Run an insert with the server's asynchronous insert mode."""
        merged = dict(settings or {})
        merged["async_insert"] = 1
        merged["wait_for_async_insert"] = 1 if wait else 0
        self._send_query(query, merged)
        self.process(OnProcess())

    def _stream(self, release: Release) -> Iterator[Block]:
        pending: deque[Block] = deque()
        on = OnProcess(data=pending.append)
        err: BaseException | None = None
        done = False
        try:
            while True:
                packet = self.codec.read_byte()
                if packet == ServerPacket.END_OF_STREAM:
                    self._debug("[end of stream]")
                    done = True
                    break
                self.handle(packet, on)
                while pending:
                    yield pending.popleft()
        except Exception as exc:
            err = exc
            raise
        finally:
            if err is None and not done:
                err = ClickHouseError("clickhouse: query result was not read to the end")
            release(self, err)

    def query(
        self, release: Release, query: str, *args: Any, settings: dict[str, Any] | None = None
    ) -> Rows:
        """Run a query and return its rows; ``release`` is called once they are read."""
        try:
            body = bind(self.server.timezone, query, *args)
            self._send_query(body, settings)
            header = self.first_block(OnProcess())
        except Exception as exc:
            release(self, exc)
            raise
        return Rows(header, self._stream(release))

    def query_row(
        self, release: Release, query: str, *args: Any, settings: dict[str, Any] | None = None
    ) -> Row:
        """Run a query and return its first row, or the error it failed with."""
        try:
            rows = self.query(release, query, *args, settings=settings)
        except Exception as exc:
            return Row(err=exc)
        return Row(rows)

    def prepare_batch(
        self, query: str, release: Release, settings: dict[str, Any] | None = None
    ) -> Batch:
        """Start an INSERT and return a batch to fill."""
        query = split_insert(query)
        on = OnProcess()
        try:
            self._send_query(query, settings)
            block = self.first_block(on)
        except Exception as exc:
            release(self, exc)
            raise
        return Batch(self, block, lambda err: release(self, err), on)


def _split_host_port(addr: str) -> tuple[str, int]:
    if addr.startswith("["):
        host, _, rest = addr[1:].partition("]")
        port = rest.removeprefix(":")
    else:
        host, _, port = addr.rpartition(":")
    if not port.isdigit():
        raise ClickHouseError(f"missing port in address {addr}")
    return host, int(port)


def _open_transport(addr: str, options: Options) -> Any:
    if options.dial_context is not None:
        return options.dial_context(addr)
    host, port = _split_host_port(addr)
    sock = socket.create_connection((host, port), timeout=options.dial_timeout or None)
    if options.tls is None:
        return sock
    context = ssl.create_default_context()
    if options.tls.insecure_skip_verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    try:
        return context.wrap_socket(sock, server_hostname=host)
    except Exception:
        sock.close()
        raise


def dial(
    addr: str, conn_id: int, options: Options, codec_factory: Callable[[Any], Codec]
) -> Connection:
    """Open a transport to ``addr``, wrap it in a codec and perform the handshake."""
    transport = _open_transport(addr, options)
    conn = Connection(codec_factory(transport), options, conn_id)
    try:
        conn.handshake(options.auth.database, options.auth.username, options.auth.password)
    except Exception:
        conn.close()
        raise
    return conn