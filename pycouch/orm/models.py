from typing import Any, Optional, Type, get_args

from pydantic import BaseModel, ConfigDict, Field, model_validator

from pycouch.query.consts import ATTACHMENTS, CONFLICTS, ID, REV
from pycouch.query.expressions import FieldExpression

OPERATIONAL_FIELDS = {"id", "rev", "conflicts", "attachments"}

ModelMetaclass = type(BaseModel)


def _own_fields(cls: type) -> Optional[dict]:
    # only completed classes; pydantic inspects attributes while it collects fields
    namespace = cls.__dict__
    if not namespace.get("__pydantic_complete__", False):
        return None
    for key in ("__pydantic_fields__", "model_fields"):
        fields = namespace.get(key)
        if isinstance(fields, dict):
            return fields
    return None


def _nested_model(annotation: Any) -> Optional[Type[BaseModel]]:
    candidates = (annotation, *get_args(annotation))
    for candidate in candidates:
        if isinstance(candidate, type) and issubclass(candidate, BaseModel):
            return candidate
    return None


class ModelFieldExpression(FieldExpression):
    """
    Field expression bound to a model; nested model fields resolve to their aliases.
    """

    __slots__ = ("model",)

    def __init__(self, path: str, model: Optional[Type[BaseModel]]):
        super().__init__(path)
        object.__setattr__(self, "model", model)

    def __getattr__(self, item) -> FieldExpression:
        if item.startswith("__"):
            raise AttributeError(item)
        if self.model is not None:
            field_info = self.model.model_fields.get(item)
            if field_info is not None:
                return ModelFieldExpression(
                    f"{self.path}.{field_info.alias or item}", _nested_model(field_info.annotation)
                )
        return FieldExpression(f"{self.path}.{item}")

    def __repr__(self):
        return f"<ModelFieldExpression: {self.path}>"


class CouchDocumentMeta(ModelMetaclass):
    def __getattr__(cls, item: str) -> Any:
        if not item.startswith("_"):
            fields = _own_fields(cls)
            if fields and item in fields:
                field_info = fields[item]
                return ModelFieldExpression(field_info.alias or item, _nested_model(field_info.annotation))
        return super().__getattr__(item)


class CouchAttachment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field("", exclude=True)
    content_type: Optional[str] = None
    length: Optional[int] = None
    digest: Optional[str] = None
    revpos: Optional[int] = None
    stub: bool = False
    data: Optional[str] = None

    @property
    def stored(self) -> bool:
        return self.stub


class CouchDocument(BaseModel, metaclass=CouchDocumentMeta):
    """
    Base class of typed documents.

    Accessing a field on the class yields a :class:`FieldExpression` usable in
    queries (``User.age > 10``); on an instance it yields the value.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(None, alias=ID)
    rev: Optional[str] = Field(None, alias=REV)
    conflicts: Optional[list[str]] = Field(None, alias=CONFLICTS)
    attachments: Optional[dict[str, CouchAttachment]] = Field(None, alias=ATTACHMENTS)

    @model_validator(mode="after")
    def name_attachments(self):
        for name, attachment in (self.attachments or {}).items():
            attachment.name = name
        return self

    def save_dict(self) -> dict[str, Any]:
        exclude = {name for name in OPERATIONAL_FIELDS if getattr(self, name) is None}
        exclude.add("conflicts")
        return self.model_dump(mode="json", by_alias=True, exclude=exclude)
