from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping, Optional, Sequence, TypeAlias, Union

from pycouch.query.expressions import FieldExpression, LogicalExpression, SortExpression
from pycouch.query.translator import translate_selector

IndexField: TypeAlias = Union[str, FieldExpression, SortExpression]


def _field_definition(index_field: IndexField) -> Union[str, dict[str, str]]:
    if isinstance(index_field, SortExpression):
        return {index_field.field.path: index_field.direction.value}
    if isinstance(index_field, FieldExpression):
        return index_field.path
    return index_field


@dataclass()
class Index:
    name: Optional[str] = field(default=None, kw_only=True)
    ddoc: Optional[str] = field(default=None, kw_only=True)
    partitioned: Optional[bool] = field(default=None, kw_only=True)

    type: ClassVar[str] = ""

    def definition(self) -> dict[str, Any]:
        raise NotImplementedError

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"index": self.definition(), "type": self.type}
        if self.name is not None:
            body["name"] = self.name
        if self.ddoc is not None:
            body["ddoc"] = self.ddoc
        if self.partitioned is not None:
            body["partitioned"] = self.partitioned
        return body


@dataclass
class JsonIndex(Index):
    """A Mango index over ``fields``; sort expressions keep their direction."""

    fields: Sequence[IndexField]
    partial_filter_selector: Optional[Union[LogicalExpression, Mapping[str, Any]]] = None

    type: ClassVar[str] = "json"

    def definition(self) -> dict[str, Any]:
        if not self.fields:
            raise ValueError("an index requires at least one field")
        definition: dict[str, Any] = {"fields": [_field_definition(i) for i in self.fields]}
        if isinstance(self.partial_filter_selector, LogicalExpression):
            definition["partial_filter_selector"] = translate_selector(self.partial_filter_selector)
        elif self.partial_filter_selector is not None:
            definition["partial_filter_selector"] = dict(self.partial_filter_selector)
        return definition


@dataclass
class TextIndex(Index):
    fields: Optional[Mapping[str, str]] = None
    default_field: Optional[Mapping[str, Any]] = None
    analyzer: Optional[Union[str, Mapping[str, Any]]] = None

    type: ClassVar[str] = "text"

    def definition(self) -> dict[str, Any]:
        definition: dict[str, Any] = {}
        if self.fields:
            definition["fields"] = [{"name": k, "type": v} for k, v in self.fields.items()]
        if self.default_field is not None:
            definition["default_field"] = dict(self.default_field)
        if self.analyzer is not None:
            definition["analyzer"] = self.analyzer
        return definition


Indexes: TypeAlias = Union[JsonIndex, TextIndex]
