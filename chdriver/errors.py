"""Exception types raised by the driver."""

from __future__ import annotations


class ClickHouseError(Exception):
    """Base class for every error the driver raises."""


class _FixedMessageError(ClickHouseError):
    message = ""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class BatchAlreadySentError(_FixedMessageError):
    """The batch was already sent or aborted."""

    message = "clickhouse: batch has already been sent"


class AcquireConnTimeoutError(_FixedMessageError):
    """No connection became available within the dial timeout."""

    message = (
        "clickhouse: acquire conn timeout. you can increase the number of "
        "max open conn or the dial timeout"
    )


class UnsupportedServerRevisionError(_FixedMessageError):
    """The server speaks a protocol revision that is too old."""

    message = "clickhouse: unsupported server revision"


class BindMixedParamsError(_FixedMessageError):
    """Named and positional query parameters were mixed in one call."""

    message = "clickhouse [bind]: mixed named and numeric parameters"


class NoRowsError(_FixedMessageError):
    """A single-row query returned no rows."""

    message = "clickhouse: no rows in result set"


class ColumnError(ClickHouseError):
    """A value could not be stored in or read from a column."""

    def __init__(self, column_type: str, err: object) -> None:
        self.column_type = column_type
        self.err = err
        super().__init__(f"{column_type}: {err}")


class ColumnConverterError(ClickHouseError):
    """A value of one type cannot be converted to a column type."""

    def __init__(self, op: str, from_type: str, to_type: str, hint: str = "") -> None:
        self.op = op
        self.from_type = from_type
        self.to_type = to_type
        self.hint = hint
        suffix = f". {hint}" if hint else ""
        super().__init__(
            f"clickhouse [{op}]: converting {from_type} to {to_type} is unsupported{suffix}"
        )


class OpError(ClickHouseError):
    """An error raised while performing a named operation."""

    def __init__(self, op: str, err: object, column_name: str = "") -> None:
        self.op = op
        self.err = err
        self.column_name = column_name
        super().__init__(op, err, column_name)

    def __str__(self) -> str:
        err = self.err
        if isinstance(err, ColumnError):
            return f"clickhouse [{self.op}]: ({self.column_name} {err.column_type}) {err.err}"
        if isinstance(err, ColumnConverterError):
            hint = f". {err.hint}" if err.hint else ""
            return (
                f"clickhouse [{err.op}]: ({self.column_name}) converting "
                f"{err.from_type} to {err.to_type} is unsupported{hint}"
            )
        return f"clickhouse [{self.op}]: {err}"