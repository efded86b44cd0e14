"""Batched inserts."""

from __future__ import annotations

import re
from typing import Any, Callable, Iterable, Mapping

from chdriver.block import Block, Column
from chdriver.errors import BatchAlreadySentError, ClickHouseError, OpError

_SPLIT_INSERT_RE = re.compile(r"\sVALUES\s*\(", re.IGNORECASE)

Release = Callable[["BaseException | None"], None]


def split_insert(query: str) -> str:
    """Cut an INSERT query before its values and make it end in ``VALUES``."""
    head = _SPLIT_INSERT_RE.split(query)[0]
    if not head.upper().strip().endswith("VALUES"):
        head += " VALUES"
    return head


class Batch:
    """Rows collected on the client and sent to the server in one block.

    ``conn`` must provide ``send_data(block, name)``, which writes and flushes a
    data packet, and ``process(on_process)``, which reads the server's answer.
    ``release`` is called with the error, or None, once the batch is done.
    """

    def __init__(self, conn: Any, block: Block, release: Release, on_process: Any = None) -> None:
        self._conn = conn
        self.block = block
        self._release = release
        self._on_process = on_process
        self.sent = False
        self._err: BaseException | None = None

    def abort(self) -> None:
        """Give the batch up without sending it."""
        try:
            if self.sent:
                raise BatchAlreadySentError()
        finally:
            self.sent = True
            self._release(ClickHouseError("clickhouse: batch aborted"))

    def append(self, *args: Any) -> None:
        """Append one row."""
        if self.sent:
            raise BatchAlreadySentError()
        try:
            self.block.append(*args)
        except ClickHouseError as exc:
            self._release(exc)
            raise

    def append_dict(self, mapping: Mapping[str, Any]) -> None:
        """Append one row given as a mapping from column name to value."""
        values = []
        for name in self.block.column_names():
            if name not in mapping:
                raise OpError(
                    "AppendStruct", ClickHouseError(f"missing destination name {name!r}")
                )
            values.append(mapping[name])
        self.append(*values)

    def column(self, index: int) -> BatchColumn:
        """Access one column for columnar appends."""
        if not 0 <= index < len(self.block.columns):
            self._release(None)
            return BatchColumn(
                self,
                None,
                err=OpError("batch.Column", ClickHouseError(f"invalid column index {index}")),
            )
        return BatchColumn(self, self.block.columns[index])

    def _fail(self, err: BaseException) -> None:
        self._err = err
        self._release(err)

    def send(self) -> None:
        """Send the collected rows and wait for the server to accept them."""
        err: BaseException | None = None
        try:
            if self.sent:
                raise BatchAlreadySentError()
            if self._err is not None:
                raise self._err
            if self.block.rows() != 0:
                self._conn.send_data(self.block, "")
            self._conn.send_data(Block(), "")
            self._conn.process(self._on_process)
        except BaseException as exc:
            err = exc
            self.sent = False
            raise
        else:
            self.sent = True
        finally:
            self._release(err)


class BatchColumn:
    """One column of a batch, filled with many values at a time."""

    def __init__(self, batch: Batch, column: Column | None, err: BaseException | None = None) -> None:
        self._batch = batch
        self._column = column
        self._err = err

    def append(self, values: Iterable[Any]) -> None:
        """Append a sequence of values to the column."""
        if self._batch.sent:
            raise BatchAlreadySentError()
        if self._err is not None:
            self._batch._fail(self._err)
            raise self._err
        try:
            self._column.extend(values)
        except ClickHouseError as exc:
            self._batch._fail(exc)
            raise