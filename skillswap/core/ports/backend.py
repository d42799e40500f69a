from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping


class Op(str, Enum):
    eq = "eq"
    neq = "neq"
    gt = "gt"
    gte = "gte"
    lt = "lt"
    lte = "lte"
    in_ = "in"
    ilike = "ilike"
    is_ = "is"


def _coerce(left: Any, right: Any) -> tuple[Any, Any]:
    # row images carry ISO strings, filter values may be datetimes (and vice versa)
    if isinstance(left, datetime) and isinstance(right, str):
        return left, datetime.fromisoformat(right)
    if isinstance(left, str) and isinstance(right, datetime):
        return datetime.fromisoformat(left), right
    return left, right


def _like_regex(pattern: str) -> re.Pattern[str]:
    parts = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True, slots=True)
class Filter:
    column: str
    op: Op
    value: Any

    def matches(self, row: Mapping[str, Any]) -> bool:
        actual = row.get(self.column)
        if self.op is Op.is_:
            return actual is None if self.value is None else actual == self.value
        if self.op is Op.in_:
            return str(actual) in {str(v) for v in self.value}
        if actual is None:
            return False
        if self.op is Op.ilike:
            return bool(_like_regex(str(self.value)).match(str(actual)))
        a, b = _coerce(actual, self.value)
        if self.op in (Op.eq, Op.neq) and not isinstance(a, datetime):
            a, b = str(a), str(b)
        if self.op is Op.eq:
            return a == b
        if self.op is Op.neq:
            return a != b
        if self.op is Op.gt:
            return a > b
        if self.op is Op.gte:
            return a >= b
        if self.op is Op.lt:
            return a < b
        return a <= b


def eq(column: str, value: Any) -> Filter:
    return Filter(column, Op.eq, value)


@dataclass(slots=True)
class Query:
    """Select description understood by every :class:`BackendClient`.

    ``filters`` are AND-ed; ``any_of`` is a single OR group AND-ed with them.
    """
    table: str
    columns: str = "*"
    filters: list[Filter] = field(default_factory=list)
    any_of: list[Filter] = field(default_factory=list)
    order: list[tuple[str, bool]] = field(default_factory=list)
    limit: int | None = None

    def where(self, column: str, op: Op, value: Any) -> "Query":
        self.filters.append(Filter(column, op, value))
        return self

    def eq(self, column: str, value: Any) -> "Query":
        return self.where(column, Op.eq, value)

    def neq(self, column: str, value: Any) -> "Query":
        return self.where(column, Op.neq, value)

    def gt(self, column: str, value: Any) -> "Query":
        return self.where(column, Op.gt, value)

    def in_(self, column: str, values: Iterable[Any]) -> "Query":
        return self.where(column, Op.in_, list(values))

    def ilike(self, column: str, pattern: str) -> "Query":
        return self.where(column, Op.ilike, pattern)

    def or_(self, *filters: Filter) -> "Query":
        self.any_of.extend(filters)
        return self

    def order_by(self, column: str, desc: bool = False) -> "Query":
        self.order.append((column, desc))
        return self

    def take(self, n: int) -> "Query":
        self.limit = n
        return self

    def matches(self, row: Mapping[str, Any]) -> bool:
        if not all(f.matches(row) for f in self.filters):
            return False
        if self.any_of and not any(f.matches(row) for f in self.any_of):
            return False
        return True


class BackendClient(ABC):
    """Table and procedure access on behalf of one authenticated user."""

    @property
    @abstractmethod
    def user_id(self) -> str:
        raise NotImplementedError

    @abstractmethod
    async def select(self, query: Query) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def insert(self, table: str, values: dict[str, Any]) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def update(self, table: str, values: dict[str, Any], filters: list[Filter]) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, table: str, filters: list[Filter]) -> list[dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    async def rpc(self, name: str, params: dict[str, Any]) -> Any:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None
