"""
SQL literal formatting helpers.

These render values as literal SQL text. Queries sent to the database carry
user input as bound parameters; literal rendering is used for fixed constants
and for the human-readable query shown in debugging output.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Sequence

# A quoted string literal, or a $N placeholder (group 1) as a whole token
_TOKEN_PATTERN = re.compile(r"'(?:[^']|'')*'|\$(\d+)(?!\d)")


def safe_string(value: str) -> str:
    """Escape single quotes by doubling them"""
    if value is None:
        return ""
    return str(value).replace("'", "''")


def escape_like(value: str) -> str:
    """Escape LIKE/ILIKE wildcards so the value matches literally"""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def to_sql_literal(value: Any) -> str:
    """
    Render a Python value as a PostgreSQL literal.

    Strings are quoted with single quotes doubled, sequences become ARRAY[...]
    with each element rendered the same way. Unknown types fall back to their
    string form, quoted and escaped.
    """
    if value is None:
        return "NULL"
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, str):
        return f"'{safe_string(value)}'"
    if isinstance(value, (datetime, date)):
        return f"'{value.isoformat()}'"
    if isinstance(value, (list, tuple)):
        return "ARRAY[" + ", ".join(to_sql_literal(item) for item in value) + "]"
    return f"'{safe_string(str(value))}'"


def interpolate_query(query_text: str, params: Sequence[Any]) -> str:
    """
    Replace $N placeholders with literal values for display.

    All placeholders are substituted in one pass over the original text, so a
    value that itself contains "$1" is never rewritten again. Placeholders
    inside string literals and indices with no bound value are left as they
    are. Never execute the output.
    """
    if not params:
        return query_text

    def replace(match):
        index = match.group(1)
        if index is None or not 1 <= int(index) <= len(params):
            return match.group(0)
        return to_sql_literal(params[int(index) - 1])

    return _TOKEN_PATTERN.sub(replace, query_text)
