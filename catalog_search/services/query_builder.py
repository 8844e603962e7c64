"""
Query fragment builder.

Every query in the search services is assembled from the pieces defined here:
a QueryParams cursor that hands out $N placeholders, named CTEs and a
SelectQuery that renders them into one statement. Placeholder indices are
only ever allocated by QueryParams.add, in the order values are bound.
"""

import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

_PLACEHOLDER_PATTERN = re.compile(r"\$(\d+)(?!\d)")
_STRING_LITERAL_PATTERN = re.compile(r"'(?:[^']|'')*'")


class QueryCompositionError(Exception):
    """Raised when query text and its bound parameters disagree"""


class QueryParams:
    """Ordered list of bound values; position N-1 holds the value for $N"""

    def __init__(self, start_index: int = 1):
        if start_index < 1:
            raise QueryCompositionError(f"Placeholder indices start at 1, got {start_index}")
        self._start_index = start_index
        self._values: List[Any] = []

    def add(self, value: Any) -> str:
        """Bind a value and return its placeholder"""
        self._values.append(value)
        return f"${self._start_index + len(self._values) - 1}"

    @property
    def next_index(self) -> int:
        return self._start_index + len(self._values)

    @property
    def values(self) -> List[Any]:
        return list(self._values)

    def __len__(self) -> int:
        return len(self._values)


@dataclass
class CommonTableExpression:
    name: str
    body: str

    def render(self) -> str:
        return f"{self.name} AS (\n{indent(self.body.strip())}\n)"


@dataclass
class SelectQuery:
    """A single SELECT with optional leading CTEs"""
    columns: List[str]
    from_clause: str
    ctes: List[CommonTableExpression] = field(default_factory=list)
    where: List[str] = field(default_factory=list)
    order_by: List[str] = field(default_factory=list)
    limit: Optional[int] = None

    def render(self) -> str:
        parts = []
        if self.ctes:
            parts.append("WITH " + ",\n".join(cte.render() for cte in self.ctes))
        parts.append("SELECT\n" + indent(",\n".join(self.columns)))
        parts.append(f"FROM {self.from_clause}")
        conditions = [condition for condition in self.where if condition]
        if conditions:
            parts.append("WHERE " + and_all(conditions))
        if self.order_by:
            parts.append("ORDER BY " + ", ".join(self.order_by))
        if self.limit is not None:
            parts.append(f"LIMIT {int(self.limit)}")
        return "\n".join(parts)


def and_all(conditions: Sequence[str]) -> str:
    """AND together non-empty predicates; empty input yields an empty string"""
    conditions = [condition for condition in conditions if condition]
    if not conditions:
        return ""
    if len(conditions) == 1:
        return conditions[0]
    return " AND ".join(f"({condition})" for condition in conditions)


def or_any(conditions: Sequence[str]) -> str:
    conditions = [condition for condition in conditions if condition]
    if not conditions:
        return ""
    if len(conditions) == 1:
        return conditions[0]
    return "(" + " OR ".join(conditions) + ")"


def placeholder_indices(query_text: str) -> List[int]:
    """Distinct placeholder indices referenced outside string literals, ascending"""
    code = _STRING_LITERAL_PATTERN.sub("''", query_text)
    return sorted({int(match) for match in _PLACEHOLDER_PATTERN.findall(code)})


def check_placeholders(query_text: str, params: Sequence[Any]) -> None:
    """Fail when the query does not reference exactly $1..$len(params)"""
    expected = list(range(1, len(params) + 1))
    found = placeholder_indices(query_text)
    if found != expected:
        raise QueryCompositionError(
            f"Query references placeholders {found} but {len(params)} parameters are bound"
        )


def indent(text: str, prefix: str = "    ") -> str:
    return "\n".join(prefix + line if line else line for line in text.splitlines())
