"""Iteration over query results."""

from __future__ import annotations

from typing import Any, Iterable, Iterator

from chdriver.block import Block, ColumnType
from chdriver.errors import NoRowsError

_SERVER_TOTALS = 7


class Rows:
    """Result rows of a query, read block by block from a stream.

    ``stream`` yields further blocks; an exception raised by it is kept as the
    result's error. A block whose packet is the totals packet ends the rows and
    is kept for :meth:`totals`.
    """

    def __init__(self, block: Block | None, stream: Iterable[Block | None] = ()) -> None:
        self._block = block
        self._header = block
        self._stream: Iterator[Block | None] = iter(stream)
        self._row = 0
        self._totals: Block | None = None
        self._err: BaseException | None = None
        self._drained = False

    def __iter__(self) -> Iterator[tuple[Any, ...]]:
        while self.next():
            yield self.scan()

    def next(self) -> bool:
        """Advance to the next row; return False when there are none left."""
        if self._block is None:
            self._drain()
            return False
        while self._row >= self._block.rows():
            try:
                block = next(self._stream)
            except StopIteration:
                block = None
            except Exception as exc:
                self._err = exc
                self._drain()
                return False
            if block is None:
                self._drain()
                return False
            if block.packet == _SERVER_TOTALS:
                self._row, self._block, self._totals = 0, None, block
                self._drain()
                return False
            self._row, self._block = 0, block
        self._row += 1
        return True

    def scan(self) -> tuple[Any, ...]:
        """Values of the current row."""
        if self._block is None or self._row == 0:
            raise EOFError("no current row")
        return self._block.row(self._row - 1)

    def scan_dict(self) -> dict[str, Any]:
        """Values of the current row keyed by column name."""
        return dict(zip(self.columns(), self.scan()))

    def totals(self) -> tuple[Any, ...]:
        """The row of a ``WITH TOTALS`` query."""
        if self._totals is None:
            raise NoRowsError()
        return self._totals.row(0)

    def columns(self) -> list[str]:
        """Names of the result columns."""
        return self._header.column_names() if self._header is not None else []

    def column_types(self) -> list[ColumnType]:
        """Descriptions of the result columns."""
        return self._header.column_types() if self._header is not None else []

    def _drain(self) -> None:
        if self._drained:
            return
        self._drained = True
        while True:
            try:
                next(self._stream)
            except StopIteration:
                return
            except Exception as exc:
                self._err = exc
                return

    def close(self) -> None:
        """Discard what is left of the stream; raise the error it ended with, if any."""
        self._drain()
        if self._err is not None:
            raise self._err

    def err(self) -> BaseException | None:
        """The error the stream ended with, or None."""
        return self._err


class Row:
    """The first row of a query, or the error that prevented running it."""

    def __init__(self, rows: Rows | None = None, err: BaseException | None = None) -> None:
        self._rows = rows
        self._err = err

    def scan(self) -> tuple[Any, ...]:
        """Values of the first row; raises NoRowsError when there is none."""
        if self._err is not None:
            raise self._err
        rows = self._rows
        if rows is None or not rows.next():
            if rows is not None:
                rows.close()
            raise NoRowsError()
        values = rows.scan()
        rows.close()
        return values

    def scan_dict(self) -> dict[str, Any]:
        """Values of the first row keyed by column name."""
        values = self.scan()
        columns = self._rows.columns() if self._rows is not None else []
        return dict(zip(columns, values))