"""Identifier sanitizer and quoter.

Schema, table and column names cannot be bound as parameters, so they are
the only pieces of user input interpolated into SQL text.  Every such name
goes through :func:`ensure_identifier` and then :func:`quote_identifier`.
"""

from __future__ import annotations

import re

from weebase.dialects import Dialect, normalize
from weebase.exceptions import ValidationError

_SEGMENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# open quote, close quote
_QUOTES: dict[Dialect | str, tuple[str, str]] = {
    Dialect.POSTGRES: ('"', '"'),
    Dialect.SQLITE: ('"', '"'),
    Dialect.MYSQL: ("`", "`"),
    Dialect.SQLSERVER: ("[", "]"),
}
_DEFAULT_QUOTES = ('"', '"')


def is_valid_identifier(name: str, *, allow_dot: bool = False) -> bool:
    """Return True if *name* is safe to quote and interpolate.

    Letters, digits and underscore only, not starting with a digit.  With
    *allow_dot*, ``schema.table`` style names are accepted when every segment
    is valid on its own.
    """
    if not name:
        return False
    segments = name.split(".") if allow_dot else [name]
    return all(_SEGMENT.fullmatch(s) for s in segments)


def ensure_identifier(name: str, *, allow_dot: bool = False, kind: str = "identifier") -> str:
    """Return *name* unchanged or raise :class:`ValidationError`."""
    if not is_valid_identifier(name, allow_dot=allow_dot):
        raise ValidationError(f"invalid {kind}: {name!r}", context={kind: name})
    return name


def _quotes_for(dialect: Dialect | str) -> tuple[str, str]:
    return _QUOTES.get(normalize(dialect), _DEFAULT_QUOTES)


def quote_identifier(dialect: Dialect | str, ident: str) -> str:
    """Quote *ident* for *dialect*, doubling any embedded closing quote.

    Dotted names are split and each segment is quoted on its own.
    """
    open_q, close_q = _quotes_for(dialect)
    parts = []
    for segment in ident.split("."):
        parts.append(open_q + segment.replace(close_q, close_q * 2) + close_q)
    return ".".join(parts)


def unquote_identifier(dialect: Dialect | str, quoted: str) -> str:
    """Parse a single quoted identifier the way *dialect*'s lexer would.

    Inverse of :func:`quote_identifier` for undotted names.
    """
    open_q, close_q = _quotes_for(dialect)
    if len(quoted) < 2 or quoted[0] != open_q or quoted[-1] != close_q:
        raise ValidationError(f"not a quoted identifier: {quoted!r}")
    body = quoted[1:-1]
    out: list[str] = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == close_q:
            if i + 1 < len(body) and body[i + 1] == close_q:
                out.append(close_q)
                i += 2
                continue
            raise ValidationError(f"unescaped quote in identifier: {quoted!r}")
        out.append(ch)
        i += 1
    return "".join(out)


def qualify(dialect: Dialect | str, schema: str | None, name: str, *, kind: str = "table") -> str:
    """Validate and quote ``schema.name`` (or just ``name`` without a schema)."""
    ensure_identifier(name, kind=kind)
    if schema:
        ensure_identifier(schema, kind="schema")
        return quote_identifier(dialect, f"{schema}.{name}")
    return quote_identifier(dialect, name)
