import dataclasses
import sys
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, Optional, Type, TypeVar, Union

if sys.version_info >= (3, 11):
    from typing import Self, TypeAlias
else:
    from typing_extensions import Self, TypeAlias

from pycouch.query.expressions import (
    AndExpression,
    FieldExpression,
    LogicalExpression,
    SortExpression,
)
from pycouch.query.options import QueryOptions
from pycouch.query.translator import QueryDocument, translate
from pycouch.query.utils import SortDirection

if TYPE_CHECKING:
    from pycouch.connection.session import CouchSession, QueryResult
    from pycouch.orm.models import CouchDocument

TDocument = TypeVar("TDocument", bound="CouchDocument")

SortParams: TypeAlias = Union[str, FieldExpression, SortExpression]
FieldParams: TypeAlias = Union[str, FieldExpression]


def _to_sort(expr: SortParams, direction: Optional[SortDirection] = None) -> SortExpression:
    if isinstance(expr, SortExpression):
        if direction is not None and direction != expr.direction:
            return ~expr
        return expr
    if isinstance(expr, str):
        expr = FieldExpression(expr)
    if not isinstance(expr, FieldExpression):
        raise TypeError(f"cannot sort by {expr!r}")
    return SortExpression(expr, direction or SortDirection.ASC)


def _to_path(expr: FieldParams) -> str:
    if isinstance(expr, FieldExpression):
        return expr.path
    return FieldExpression(expr).path


@dataclass(frozen=True)
class MangoQuery(Generic[TDocument]):
    """
    Immutable query over a database.

    Every composition method returns a new query, so a partially built query can
    be shared and extended in different directions::

        adults = MangoQuery(User).where(User.age >= 18)
        by_name = adults.order_by(User.name).take(10)
        oldest = adults.order_by_descending(User.age).take(1)
    """

    model: Optional[Type[TDocument]] = None
    selector: Optional[LogicalExpression] = None
    sort: tuple[SortExpression, ...] = ()
    fields: tuple[str, ...] = ()
    skip_count: int = 0
    limit_count: Optional[int] = None
    options: QueryOptions = field(default_factory=QueryOptions)

    def __repr__(self):
        parts = [f"SELECT {', '.join(self.fields) or '*'}"]
        if self.model is not None:
            parts.append(f"FROM {self.model.__name__}")
        if self.selector is not None:
            parts.append(f"WHERE {self.selector!r}")
        if self.sort:
            parts.append(f"ORDER BY {', '.join(repr(i) for i in self.sort)}")
        if self.skip_count:
            parts.append(f"SKIP {self.skip_count}")
        if self.limit_count is not None:
            parts.append(f"LIMIT {self.limit_count}")
        return " ".join(parts)

    def _replace(self, **changes: Any) -> Self:
        return dataclasses.replace(self, **changes)

    def _with_options(self, **changes: Any) -> Self:
        return self._replace(options=dataclasses.replace(self.options, **changes))

    def where(self, *conditions: LogicalExpression) -> Self:
        if not conditions:
            return self
        for condition in conditions:
            if not isinstance(condition, LogicalExpression):
                raise TypeError(f"expected a predicate, got {condition!r}")
        operands = conditions if self.selector is None else (self.selector, *conditions)
        selector = operands[0] if len(operands) == 1 else AndExpression.of(*operands)
        return self._replace(selector=selector)

    filter = where

    def order_by(self, *sort_list: SortParams) -> Self:
        if not sort_list:
            raise ValueError("order_by requires at least one field")
        return self._replace(sort=tuple(_to_sort(i) for i in sort_list))

    def order_by_descending(self, field_: FieldParams) -> Self:
        return self._replace(sort=(_to_sort(field_, SortDirection.DESC),))

    def then_by(self, field_: SortParams) -> Self:
        if not self.sort:
            raise ValueError("then_by requires a preceding order_by")
        return self._replace(sort=(*self.sort, _to_sort(field_)))

    def then_by_descending(self, field_: FieldParams) -> Self:
        if not self.sort:
            raise ValueError("then_by_descending requires a preceding order_by")
        return self._replace(sort=(*self.sort, _to_sort(field_, SortDirection.DESC)))

    def skip(self, count: int) -> Self:
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ValueError(f"skip expects a non-negative integer, got {count!r}")
        return self._replace(skip_count=count)

    def take(self, count: int) -> Self:
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise ValueError(f"take expects a positive integer, got {count!r}")
        return self._replace(limit_count=count)

    limit = take

    def select(self, *fields: FieldParams) -> Self:
        paths: list[str] = []
        for i in fields:
            path = _to_path(i)
            if path not in paths:
                paths.append(path)
        return self._replace(fields=tuple(paths))

    def use_index(self, design_document: str, index_name: Optional[str] = None) -> Self:
        if index_name is None:
            return self._with_options(use_index=design_document)
        return self._with_options(use_index=(design_document, index_name))

    def include_conflicts(self) -> Self:
        return self._with_options(conflicts=True)

    def include_execution_stats(self) -> Self:
        return self._with_options(execution_stats=True)

    def use_bookmark(self, bookmark: str) -> Self:
        return self._with_options(bookmark=bookmark)

    def with_read_quorum(self, quorum: int) -> Self:
        if quorum < 1:
            raise ValueError("read quorum must be at least 1")
        return self._with_options(r=quorum)

    def without_index_update(self) -> Self:
        return self._with_options(update=False)

    def from_stable(self) -> Self:
        return self._with_options(stable=True)

    def translate(self) -> QueryDocument:
        return translate(self)

    async def execute(self, session: "CouchSession") -> "QueryResult[TDocument]":
        return await session.execute(self)
