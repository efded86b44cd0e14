import pytest

from chdriver.errors import ClickHouseError
from chdriver.options import (
    Auth,
    CompressionMethod,
    ConnOpenStrategy,
    Options,
    parse_dsn,
    parse_duration,
)


def test_parse_dsn_full():
    opt = parse_dsn(
        "clickhouse://user:password@h1:9000,h2:9000/analytics"
        "?debug=true&compress=1&dial_timeout=250ms&secure=true&skip_verify=true"
        "&connection_open_strategy=round_robin&max_execution_time=60"
        "&flag=true&off=FALSE&junk=abc"
    )
    assert opt.addr == ["h1:9000", "h2:9000"]
    assert opt.auth.username == "user"
    assert opt.auth.password == "password"
    assert opt.auth.database == "analytics"
    assert opt.debug is True
    assert opt.compression.method is CompressionMethod.LZ4
    assert opt.dial_timeout == parse_duration("250ms")
    assert opt.tls.insecure_skip_verify is True
    assert opt.conn_open_strategy is ConnOpenStrategy.ROUND_ROBIN
    assert opt.settings == {"max_execution_time": 60, "flag": 1, "off": 0}


def test_parse_dsn_defaults():
    opt = parse_dsn("tcp://127.0.0.1:9000?debug=false")
    assert opt.addr == ["127.0.0.1:9000"]
    assert opt.auth.database == "default"
    assert opt.auth.username == "default"
    assert opt.debug is False
    assert opt.tls is None
    assert opt.compression is None
    assert opt.max_idle_conns == 5
    assert opt.max_open_conns == opt.max_idle_conns + 5
    assert opt.dial_timeout == parse_duration("1s")
    assert opt.conn_max_lifetime == parse_duration("1h")
    assert opt.conn_open_strategy is ConnOpenStrategy.IN_ORDER


def test_parse_dsn_secure_without_skip_verify():
    opt = parse_dsn("clickhouse://localhost:9440?secure=true")
    assert opt.tls.insecure_skip_verify is False


def test_parse_dsn_compress_off():
    opt = parse_dsn("clickhouse://localhost:9000?compress=false")
    assert opt.compression is None


def test_parse_dsn_in_order_strategy():
    opt = parse_dsn("clickhouse://localhost:9000?connection_open_strategy=in_order")
    assert opt.conn_open_strategy is ConnOpenStrategy.IN_ORDER


def test_parse_dsn_bad_dial_timeout():
    with pytest.raises(ClickHouseError, match="dial timeout"):
        parse_dsn("clickhouse://localhost:9000?dial_timeout=abc")


def test_set_defaults_keeps_explicit_values():
    opt = Options(
        auth=Auth(database="db", username="user"),
        max_idle_conns=2,
        max_open_conns=3,
        dial_timeout=4.0,
        conn_max_lifetime=7.0,
    )
    opt.set_defaults()
    assert opt.auth.database == "db"
    assert opt.auth.username == "user"
    assert opt.max_idle_conns == 2
    assert opt.max_open_conns == 3
    assert opt.dial_timeout == 4.0
    assert opt.conn_max_lifetime == 7.0


def test_set_defaults_derives_open_from_idle():
    opt = Options(max_idle_conns=7)
    opt.set_defaults()
    assert opt.max_open_conns == opt.max_idle_conns + 5


def test_parse_duration_relations():
    assert parse_duration("1s") == 1.0
    assert parse_duration("0") == 0.0
    assert parse_duration("1h") == 60 * parse_duration("1m")
    assert parse_duration("1.5s") == parse_duration("1500ms")
    assert parse_duration("1h30m") == parse_duration("90m")
    assert parse_duration("-2s") == -parse_duration("2s")
    assert parse_duration("1000us") == parse_duration("1ms")
    assert parse_duration("1000\u00b5s") == parse_duration("1ms")


@pytest.mark.parametrize(
    "text, message",
    [
        ("", "invalid duration"),
        ("abc", "invalid duration"),
        (".s", "invalid duration"),
        ("1", "missing unit"),
        ("1x", "unknown unit"),
    ],
)
def test_parse_duration_errors(text, message):
    with pytest.raises(ValueError, match=message):
        parse_duration(text)