import re
from abc import ABC
from copy import deepcopy
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Union

from pycouch.connection.exceptions import TranslationUnsupportedError
from pycouch.query.consts import JSON_TYPES
from pycouch.query.utils import SortDirection


class Operator(str, Enum):
    EQ = "$eq"
    NE = "$ne"
    GT = "$gt"
    GTE = "$gte"
    LT = "$lt"
    LTE = "$lte"
    IN = "$in"
    NIN = "$nin"
    EXISTS = "$exists"
    TYPE = "$type"
    SIZE = "$size"
    MOD = "$mod"
    REGEX = "$regex"
    BEGINS_WITH = "$beginsWith"
    ALL = "$all"
    ELEM_MATCH = "$elemMatch"
    ALL_MATCH = "$allMatch"
    KEY_MAP_MATCH = "$keyMapMatch"


SUB_SELECTOR_OPERATORS = frozenset({Operator.ELEM_MATCH, Operator.ALL_MATCH, Operator.KEY_MAP_MATCH})


class Expression(ABC):
    """
    Base class for query expression nodes
    """


class LogicalExpression(Expression, ABC):
    """
    Base class for predicate nodes, composable with ``&``, ``|`` and ``~``
    """

    def __and__(self, other: "LogicalExpression") -> "AndExpression":
        return AndExpression.of(self, _ensure_logical(other))

    def __or__(self, other: "LogicalExpression") -> "OrExpression":
        return OrExpression.of(self, _ensure_logical(other))

    def __invert__(self) -> "NotExpression":
        return NotExpression(self)

    def __bool__(self):
        raise TypeError("predicates cannot be used as booleans, combine them with `&`, `|` and `~`")


class FieldExpression(Expression):
    """
    Expression class for a dotted field path of a document.

    Comparison operators build :class:`ConditionExpression` leaves, attribute
    access walks into nested objects (``FieldExpression("address").city``).
    """

    __slots__ = ("path",)

    def __init__(self, path: str):
        if not isinstance(path, str) or not path or any(not segment for segment in path.split(".")):
            raise ValueError(f"invalid field path: {path!r}")
        object.__setattr__(self, "path", path)

    def __setattr__(self, key, value):
        raise AttributeError(f"{self.__class__.__name__} is immutable")

    def __getattr__(self, item) -> "FieldExpression":
        if item.startswith("__"):
            raise AttributeError(item)
        return FieldExpression(f"{self.path}.{item}")

    def __getitem__(self, item: str) -> "FieldExpression":
        return FieldExpression(f"{self.path}.{item}")

    def __repr__(self):
        return f"<FieldExpression: {self.path}>"

    def __hash__(self):
        return hash((self.__class__, self.path))

    def __pos__(self) -> "SortExpression":
        return SortExpression(self, SortDirection.ASC)

    def __neg__(self) -> "SortExpression":
        return SortExpression(self, SortDirection.DESC)

    def asc(self) -> "SortExpression":
        return SortExpression(self, SortDirection.ASC)

    def desc(self) -> "SortExpression":
        return SortExpression(self, SortDirection.DESC)

    def __eq__(self, other) -> "ConditionExpression":  # type: ignore[override]
        return _set_operator(self, Operator.EQ, other)

    def __ne__(self, other) -> "ConditionExpression":  # type: ignore[override]
        return _set_operator(self, Operator.NE, other)

    def __gt__(self, other) -> "ConditionExpression":
        return _set_operator(self, Operator.GT, other)

    def __ge__(self, other) -> "ConditionExpression":
        return _set_operator(self, Operator.GTE, other)

    def __lt__(self, other) -> "ConditionExpression":
        return _set_operator(self, Operator.LT, other)

    def __le__(self, other) -> "ConditionExpression":
        return _set_operator(self, Operator.LTE, other)

    def in_(self, values: Iterable[Any]) -> "ConditionExpression":
        return _set_operator(self, Operator.IN, _as_array(values, Operator.IN))

    def not_in(self, values: Iterable[Any]) -> "ConditionExpression":
        return _set_operator(self, Operator.NIN, _as_array(values, Operator.NIN))

    def exists(self, flag: bool = True) -> "ConditionExpression":
        return _set_operator(self, Operator.EXISTS, bool(flag))

    def is_type(self, json_type: str) -> "ConditionExpression":
        if json_type not in JSON_TYPES:
            raise TranslationUnsupportedError(f"{json_type!r} is not one of {sorted(JSON_TYPES)}")
        return _set_operator(self, Operator.TYPE, json_type)

    def size(self, length: int) -> "ConditionExpression":
        if isinstance(length, bool) or not isinstance(length, int) or length < 0:
            raise TranslationUnsupportedError(f"$size expects a non-negative integer, got {length!r}")
        return _set_operator(self, Operator.SIZE, length)

    def mod(self, divisor: int, remainder: int) -> "ConditionExpression":
        if not all(isinstance(i, int) and not isinstance(i, bool) for i in (divisor, remainder)):
            raise TranslationUnsupportedError("$mod expects integer divisor and remainder")
        if divisor == 0:
            raise TranslationUnsupportedError("$mod divisor cannot be zero")
        return _set_operator(self, Operator.MOD, (divisor, remainder))

    def matches(self, pattern: Union[str, "re.Pattern[str]"]) -> "ConditionExpression":
        if isinstance(pattern, re.Pattern):
            pattern = pattern.pattern
        if not isinstance(pattern, str):
            raise TranslationUnsupportedError(f"$regex expects a string pattern, got {pattern!r}")
        return _set_operator(self, Operator.REGEX, pattern)

    def begins_with(self, prefix: str) -> "ConditionExpression":
        if not isinstance(prefix, str):
            raise TranslationUnsupportedError(f"$beginsWith expects a string, got {prefix!r}")
        return _set_operator(self, Operator.BEGINS_WITH, prefix)

    def contains_all(self, values: Iterable[Any]) -> "ConditionExpression":
        return _set_operator(self, Operator.ALL, _as_array(values, Operator.ALL))

    def contains(self, value: Any) -> "ConditionExpression":
        return _set_operator(self, Operator.ALL, (value,))

    def elem_match(self, condition: LogicalExpression) -> "ConditionExpression":
        return _set_operator(self, Operator.ELEM_MATCH, _ensure_logical(condition))

    def all_match(self, condition: LogicalExpression) -> "ConditionExpression":
        return _set_operator(self, Operator.ALL_MATCH, _ensure_logical(condition))

    def key_map_match(self, condition: LogicalExpression) -> "ConditionExpression":
        return _set_operator(self, Operator.KEY_MAP_MATCH, _ensure_logical(condition))


class ElementExpression(FieldExpression):
    """
    The anonymous array element inside ``elem_match``/``all_match``/``key_map_match``.

    ``FieldExpression("tags").elem_match(ELEMENT == "x")`` and, for arrays of
    objects, ``FieldExpression("items").elem_match(ELEMENT.price > 10)``.
    """

    __slots__ = ()

    def __init__(self):
        object.__setattr__(self, "path", "")

    def __getattr__(self, item) -> FieldExpression:
        if item.startswith("__"):
            raise AttributeError(item)
        return FieldExpression(item)

    def __getitem__(self, item: str) -> FieldExpression:
        return FieldExpression(item)

    def __repr__(self):
        return "<ElementExpression>"


ELEMENT = ElementExpression()


@dataclass(frozen=True, eq=False)
class ConditionExpression(LogicalExpression):
    """
    Leaf predicate: ``field operator literal``
    """

    field: FieldExpression
    operator: Operator
    value: Any

    def __repr__(self):
        return f"{self.field.path or '<element>'} {self.operator.value} {self.value!r}"


@dataclass(frozen=True, eq=False)
class AndExpression(LogicalExpression):
    operands: tuple[LogicalExpression, ...]

    @classmethod
    def of(cls, *operands: LogicalExpression) -> "AndExpression":
        flat: list[LogicalExpression] = []
        for operand in operands:
            if isinstance(operand, AndExpression):
                flat.extend(operand.operands)
            else:
                flat.append(operand)
        return cls(tuple(flat))

    def __repr__(self):
        return f"({' && '.join(repr(i) for i in self.operands)})"


@dataclass(frozen=True, eq=False)
class OrExpression(LogicalExpression):
    operands: tuple[LogicalExpression, ...]

    @classmethod
    def of(cls, *operands: LogicalExpression) -> "OrExpression":
        flat: list[LogicalExpression] = []
        for operand in operands:
            if isinstance(operand, OrExpression):
                flat.extend(operand.operands)
            else:
                flat.append(operand)
        return cls(tuple(flat))

    def __repr__(self):
        return f"({' || '.join(repr(i) for i in self.operands)})"


@dataclass(frozen=True, eq=False)
class NorExpression(LogicalExpression):
    operands: tuple[LogicalExpression, ...]

    def __repr__(self):
        return f"NOR({', '.join(repr(i) for i in self.operands)})"


@dataclass(frozen=True, eq=False)
class NotExpression(LogicalExpression):
    operand: LogicalExpression

    def __invert__(self) -> LogicalExpression:  # type: ignore[override]
        return self.operand

    def __repr__(self):
        return f"NOT({self.operand!r})"


def nor(*conditions: LogicalExpression) -> NorExpression:
    if not conditions:
        raise ValueError("nor requires at least one condition")
    return NorExpression(tuple(_ensure_logical(i) for i in conditions))


@dataclass(frozen=True, eq=False)
class SortExpression(Expression):
    field: FieldExpression
    direction: SortDirection = SortDirection.ASC

    def __invert__(self) -> "SortExpression":
        if self.direction == SortDirection.ASC:
            return SortExpression(self.field, SortDirection.DESC)
        return SortExpression(self.field, SortDirection.ASC)

    def __repr__(self):
        return f"{self.field.path} {self.direction.value}"


def _ensure_logical(other: Any) -> LogicalExpression:
    if not isinstance(other, LogicalExpression):
        raise TranslationUnsupportedError(f"expected a predicate, got {other!r}")
    return other


def _as_array(values: Iterable[Any], operator: Operator) -> tuple:
    if isinstance(values, (str, bytes, Mapping)) or not isinstance(values, Iterable):
        raise TranslationUnsupportedError(f"{operator.value} expects an array of values, got {values!r}")
    return tuple(values)


def _set_operator(field: FieldExpression, operator: Operator, other: Any) -> ConditionExpression:
    if isinstance(other, FieldExpression):
        raise TranslationUnsupportedError(
            f"comparing field {field.path!r} to field {other.path!r} is not supported, compare against a literal"
        )
    if isinstance(other, Expression) and operator not in SUB_SELECTOR_OPERATORS:
        raise TranslationUnsupportedError(f"{operator.value} expects a literal value, got {other!r}")
    if not isinstance(other, Expression):
        other = deepcopy(other)
    return ConditionExpression(field, operator, other)
