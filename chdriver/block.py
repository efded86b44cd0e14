"""Column-oriented data blocks and server log records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from chdriver.errors import ClickHouseError, ColumnConverterError, OpError


@dataclass
class Column:
    """One named, typed column holding a value per row."""

    name: str
    type: str
    values: list[Any] = field(default_factory=list)

    @property
    def nullable(self) -> bool:
        """Whether the column type is ``Nullable(...)``."""
        return self.type.startswith("Nullable(")

    def _accepts_null(self) -> bool:
        return self.nullable or self.type.startswith("LowCardinality(Nullable(")

    def _check(self, value: Any) -> None:
        if value is None and not self._accepts_null():
            raise ColumnConverterError("Append", "None", self.type)

    def append(self, value: Any) -> None:
        """Append one value as a new row."""
        self._check(value)
        self.values.append(value)

    def extend(self, values: Iterable[Any]) -> None:
        """Append many values at once; nothing is added if any value is rejected."""
        items = list(values)
        for item in items:
            self._check(item)
        self.values.extend(items)

    def row(self, index: int) -> Any:
        """Return the value stored at ``index``."""
        return self.values[index]

    def __len__(self) -> int:
        return len(self.values)


@dataclass(frozen=True)
class ColumnType:
    """Description of a result column."""

    name: str
    database_type: str
    nullable: bool


@dataclass
class Block:
    """A set of equally long columns, as exchanged with the server."""

    columns: list[Column] = field(default_factory=list)
    packet: int | None = None

    def rows(self) -> int:
        """Number of rows in the block."""
        return len(self.columns[0]) if self.columns else 0

    def column_names(self) -> list[str]:
        """Names of the columns, in order."""
        return [column.name for column in self.columns]

    def append(self, *args: Any) -> None:
        """Append one row; the block is left unchanged if any value is rejected."""
        if len(args) != len(self.columns):
            raise OpError(
                "Append",
                ClickHouseError(
                    f"clickhouse: expected {len(self.columns)} arguments, got {len(args)}"
                ),
            )
        appended: list[Column] = []
        try:
            for column, value in zip(self.columns, args):
                try:
                    column.append(value)
                except ClickHouseError as exc:
                    raise OpError("AppendRow", exc, column.name) from exc
                appended.append(column)
        except OpError:
            for column in appended:
                column.values.pop()
            raise

    def row(self, index: int) -> tuple[Any, ...]:
        """Return the values of one row as a tuple."""
        return tuple(column.row(index) for column in self.columns)

    def column_types(self) -> list[ColumnType]:
        """Describe every column of the block."""
        return [
            ColumnType(name=column.name, database_type=column.type, nullable=column.nullable)
            for column in self.columns
        ]


@dataclass
class Log:
    """One server log record sent while a query runs."""

    time: datetime | None = None
    time_micro: int = 0
    hostname: str = ""
    query_id: str = ""
    thread_id: int = 0
    priority: int = 0
    source: str = ""
    text: str = ""


_LOG_FIELDS = {
    "event_time": "time",
    "event_time_microseconds": "time_micro",
    "host_name": "hostname",
    "query_id": "query_id",
    "thread_id": "thread_id",
    "priority": "priority",
    "source": "source",
    "text": "text",
}


def logs_from_block(block: Block) -> list[Log]:
    """Turn a server log block into log records; unknown columns are ignored."""
    known = [column for column in block.columns if column.name in _LOG_FIELDS]
    return [
        Log(**{_LOG_FIELDS[column.name]: column.row(index) for column in known})
        for index in range(block.rows())
    ]