"""
Translation of query expressions into Mango query documents.

Every predicate node kind is handled in :func:`translate_selector`; an
unknown node kind is a :class:`TranslationUnsupportedError`, never a silent
pass-through.

Rules:

* a leaf becomes ``{field: {operator: value}}``, collapsed to ``{field: value}``
  for a lone ``$eq`` whose value is not an object
* leaves of one AND on the same field merge into one entry with several
  operator keys; the same operator with two different values is a
  :class:`ConflictingConditionsError`
* OR, NOR and NOT use the ``$or``, ``$nor`` and ``$not`` combinators; an AND
  holding several combinators of the same kind nests them under ``$and``
"""
import json
import logging
from typing import TYPE_CHECKING, Any, Iterable, Optional

from pycouch.connection.exceptions import ConflictingConditionsError, TranslationUnsupportedError
from pycouch.orm.encoders import jsonable_encoder
from pycouch.query.consts import AND, NOR, NOT, OR
from pycouch.query.expressions import (
    AndExpression,
    ConditionExpression,
    ElementExpression,
    Expression,
    FieldExpression,
    LogicalExpression,
    NorExpression,
    NotExpression,
    Operator,
    OrExpression,
    SUB_SELECTOR_OPERATORS,
)
from pycouch.query.types import JsonType, Selector

if TYPE_CHECKING:
    from pycouch.query.query import MangoQuery

logger = logging.getLogger(__name__)


class QueryDocument(dict):
    """
    A translated ``_find`` request body.

    ``unindexed_sort_fields`` lists the sort fields that the selector does not
    constrain; the server only sorts on indexed fields, so such a query needs
    an index covering them.
    """

    def __init__(self, *args, unindexed_sort_fields: Iterable[str] = (), **kwargs):
        super().__init__(*args, **kwargs)
        self.unindexed_sort_fields: tuple[str, ...] = tuple(unindexed_sort_fields)

    def to_json(self) -> str:
        return json.dumps(self, separators=(",", ":"))


def translate(query: "MangoQuery") -> QueryDocument:
    selector = translate_selector(query.selector)
    document: dict[str, JsonType] = {"selector": selector}

    if query.fields:
        document["fields"] = list(query.fields)

    if query.sort:
        seen: set[str] = set()
        sort: list[JsonType] = []
        for expr in query.sort:
            if expr.field.path in seen:
                raise TranslationUnsupportedError(f"field {expr.field.path!r} is sorted more than once")
            seen.add(expr.field.path)
            sort.append({expr.field.path: expr.direction.value})
        document["sort"] = sort

    if query.limit_count is not None:
        document["limit"] = query.limit_count
    if query.skip_count:
        document["skip"] = query.skip_count

    document.update(query.options.translate())

    constrained = _constrained_fields(selector)
    unindexed = [expr.field.path for expr in query.sort if expr.field.path not in constrained]
    if unindexed:
        logger.debug("sort fields are not part of the selector", extra={"fields": unindexed})
    return QueryDocument(document, unindexed_sort_fields=unindexed)


def translate_selector(node: Optional[LogicalExpression], *, element_scope: bool = False) -> Selector:
    if node is None:
        return {}
    if isinstance(node, ConditionExpression):
        return _translate_and((node,), element_scope)
    if isinstance(node, AndExpression):
        return _translate_and(node.operands, element_scope)
    if isinstance(node, OrExpression):
        return {OR: [translate_selector(i, element_scope=element_scope) for i in node.operands]}
    if isinstance(node, NorExpression):
        return {NOR: [translate_selector(i, element_scope=element_scope) for i in node.operands]}
    if isinstance(node, NotExpression):
        return {NOT: translate_selector(node.operand, element_scope=element_scope)}
    raise TranslationUnsupportedError(f"cannot translate {node!r} ({type(node).__name__})")


def _translate_and(operands: Iterable[LogicalExpression], element_scope: bool) -> Selector:
    entries: dict[str, dict[str, JsonType]] = {}
    combinators: list[Selector] = []

    for operand in _flatten(operands):
        if isinstance(operand, ConditionExpression):
            path = _leaf_path(operand, element_scope)
            operator = operand.operator.value
            value = _translate_value(operand)
            entry = entries.setdefault(path, {})
            if operator in entry:
                if entry[operator] != value:
                    raise ConflictingConditionsError(path or "<element>", operator, entry[operator], value)
                continue
            entry[operator] = value
        else:
            combinators.append(translate_selector(operand, element_scope=element_scope))

    selector: Selector = {}
    for path, entry in entries.items():
        if not path:
            selector.update(entry)
        elif len(entry) == 1 and Operator.EQ.value in entry and not isinstance(entry[Operator.EQ.value], dict):
            selector[path] = entry[Operator.EQ.value]
        else:
            selector[path] = entry

    keys = [next(iter(i)) for i in combinators]
    if len(set(keys)) == len(keys):
        for combinator in combinators:
            selector.update(combinator)
    else:
        selector[AND] = combinators
    return selector


def _flatten(operands: Iterable[LogicalExpression]) -> Iterable[LogicalExpression]:
    for operand in operands:
        if isinstance(operand, AndExpression):
            yield from _flatten(operand.operands)
        else:
            yield operand


def _leaf_path(condition: ConditionExpression, element_scope: bool) -> str:
    if isinstance(condition.field, ElementExpression):
        if not element_scope:
            raise TranslationUnsupportedError(
                "the array element can only be referenced inside elem_match, all_match or key_map_match"
            )
        return ""
    if not isinstance(condition.field, FieldExpression):
        raise TranslationUnsupportedError(f"{condition.field!r} is not a document field")
    return condition.field.path


def _translate_value(condition: ConditionExpression) -> Any:
    value = condition.value
    if condition.operator in SUB_SELECTOR_OPERATORS:
        if not isinstance(value, LogicalExpression):
            raise TranslationUnsupportedError(f"{condition.operator.value} expects a predicate, got {value!r}")
        return translate_selector(value, element_scope=True)
    if isinstance(value, FieldExpression):
        raise TranslationUnsupportedError(
            f"comparing field {condition.field.path!r} to field {value.path!r} is not supported"
        )
    if isinstance(value, Expression):
        raise TranslationUnsupportedError(f"{condition.operator.value} expects a literal value, got {value!r}")
    return jsonable_encoder(value)


def _constrained_fields(selector: Selector) -> set[str]:
    fields: set[str] = set()
    for key, value in selector.items():
        if key == AND:
            for i in value:
                fields |= _constrained_fields(i)
        elif not key.startswith("$"):
            fields.add(key)
    return fields


def normalize_selector(selector: Selector) -> Selector:
    """Expand ``{field: value}`` shorthands into ``{field: {"$eq": value}}``."""
    normalized: Selector = {}
    for key, value in selector.items():
        if key in (AND, OR, NOR):
            normalized[key] = [normalize_selector(i) for i in value]
        elif key == NOT:
            normalized[key] = normalize_selector(value)
        elif key.startswith("$"):
            normalized[key] = value
        elif isinstance(value, dict) and value and all(k.startswith("$") for k in value):
            normalized[key] = value
        else:
            normalized[key] = {Operator.EQ.value: value}
    return normalized
