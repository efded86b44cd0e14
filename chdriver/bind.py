"""Binding of query parameters into SQL text."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Callable, Iterable

from chdriver.errors import BindMixedParamsError, ClickHouseError

_NUMERIC_RE = re.compile(r"\$[0-9]+")
_NAMED_RE = re.compile(r"@[a-zA-Z0-9_]+")
_TIME_LAYOUT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class NamedValue:
    """A query parameter bound by name (``@name`` in the query)."""

    name: str
    value: Any


def named(name: str, value: Any) -> NamedValue:
    """Create a named parameter."""
    return NamedValue(name, value)


def _resolve(value: Any) -> Any:
    """Let objects provide their own SQL value through ``sql_value()``."""
    method = getattr(value, "sql_value", None)
    if callable(method):
        return method()
    return value


def bind(tz: tzinfo | None, query: str, *args: Any) -> str:
    """Substitute ``$N`` or ``@name`` placeholders in ``query`` with literals."""
    if not args:
        return query
    has_named = has_numeric = False
    for arg in args:
        if isinstance(arg, NamedValue):
            has_named = True
        else:
            has_numeric = True
        if has_named and has_numeric:
            raise BindMixedParamsError()
    if has_named:
        params = {f"@{arg.name}": format_value(tz, _resolve(arg.value)) for arg in args}
        return _substitute(_NAMED_RE, query, params, lambda token: f'"{token}"')
    params = {f"${i}": format_value(tz, _resolve(arg)) for i, arg in enumerate(args, 1)}
    return _substitute(_NUMERIC_RE, query, params, lambda token: token)


def _substitute(
    pattern: re.Pattern[str],
    query: str,
    params: dict[str, str],
    describe: Callable[[str], str],
) -> str:
    missing: list[str] = []

    def replace(match: re.Match[str]) -> str:
        token = match.group(0)
        if token in params:
            return params[token]
        missing.append(token)
        return ""

    result = pattern.sub(replace, query)
    if missing:
        raise ClickHouseError(f"have no arg for {describe(missing[0])} param")
    return result


def _quote(text: str) -> str:
    return "'" + text.replace("\\", "\\\\").replace("'", "\\'") + "'"


def _format_time(tz: tzinfo | None, value: datetime) -> str:
    if value.utcoffset() is None:
        return f"toDateTime({int(value.timestamp())})"
    zone = str(value.tzinfo)
    stamp = value.strftime(_TIME_LAYOUT)
    if tz is not None and zone == str(tz):
        return f"toDateTime('{stamp}')"
    return f"toDateTime('{stamp}', '{zone}')"


def _join(tz: tzinfo | None, values: Iterable[Any]) -> str:
    return ", ".join(format_value(tz, item) for item in values)


def format_value(tz: tzinfo | None, value: Any) -> str:
    """Render a Python value as a ClickHouse SQL literal.

    Tuples become ``(a, b)``; lists and other sequences become ``a, b``.
    Naive datetimes are treated as local time.
    """
    if value is None:
        return "NULL"
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, datetime):
        return _format_time(tz, value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(int(value))
    if isinstance(value, float):
        return repr(float(value))
    if isinstance(value, tuple):
        return "(" + _join(tz, value) + ")"
    if isinstance(value, Sequence):
        return _join(tz, value)
    return _quote(str(value))


def rebind(values: Mapping[str, Any] | Iterable[Any]) -> list[Any]:
    """Turn DB-API style parameters into arguments for :func:`bind`."""
    if isinstance(values, Mapping):
        return [NamedValue(name, value) for name, value in values.items()]
    args: list[Any] = []
    for value in values:
        if isinstance(value, NamedValue) and not value.name:
            args.append(value.value)
        else:
            args.append(value)
    return args