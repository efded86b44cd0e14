import pytest

from chdriver.errors import (
    AcquireConnTimeoutError,
    BatchAlreadySentError,
    BindMixedParamsError,
    ClickHouseError,
    ColumnConverterError,
    ColumnError,
    NoRowsError,
    OpError,
    UnsupportedServerRevisionError,
)


@pytest.mark.parametrize(
    "cls, message",
    [
        (BatchAlreadySentError, "clickhouse: batch has already been sent"),
        (
            AcquireConnTimeoutError,
            "clickhouse: acquire conn timeout. you can increase the number of "
            "max open conn or the dial timeout",
        ),
        (UnsupportedServerRevisionError, "clickhouse: unsupported server revision"),
        (BindMixedParamsError, "clickhouse [bind]: mixed named and numeric parameters"),
    ],
)
def test_fixed_messages(cls, message):
    error = cls()
    assert str(error) == message
    assert isinstance(error, ClickHouseError)


def test_fixed_message_can_be_overridden():
    assert str(BatchAlreadySentError("custom")) == "custom"


def test_no_rows_error_is_clickhouse_error():
    error = NoRowsError()
    assert isinstance(error, ClickHouseError)
    assert "no rows" in str(error)


def test_op_error_with_plain_error():
    inner = ValueError("unexpected packet 9")
    error = OpError("process", inner)
    assert str(error) == "clickhouse [process]: unexpected packet 9"
    assert error.err is inner


def test_op_error_with_column_error():
    error = OpError("Append", ColumnError("UInt8", "overflow"), "Col1")
    assert str(error) == "clickhouse [Append]: (Col1 UInt8) overflow"


def test_op_error_with_converter_error_and_hint():
    inner = ColumnConverterError("Append", "str", "UInt8", "use int")
    error = OpError("batch", inner, "Col1")
    assert str(error) == "clickhouse [Append]: (Col1) converting str to UInt8 is unsupported. use int"


def test_op_error_with_converter_error_without_hint():
    inner = ColumnConverterError("ScanRow", "String", "int", "")
    text = str(OpError("scan", inner, "name"))
    assert text.endswith("converting String to int is unsupported")
    assert text.startswith("clickhouse [ScanRow]: (name)")


def test_column_error_keeps_fields():
    error = ColumnError("Date", "out of range")
    assert error.column_type == "Date"
    assert error.err == "out of range"
    assert issubclass(ColumnError, ClickHouseError)