from typing import TYPE_CHECKING, Any, Mapping, Optional, Type, TypeVar, Union, overload

from pydantic import BaseModel, ValidationError
from pydantic_core import to_jsonable_python

from pycouch.connection.exceptions import ProtocolMalformedError

if TYPE_CHECKING:
    from pycouch.orm.models import CouchDocument

TDocument = TypeVar("TDocument", bound="CouchDocument")


def jsonable_encoder(obj: Any, *, by_alias: bool = True, exclude_none: bool = False) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", by_alias=by_alias, exclude_none=exclude_none)
    return to_jsonable_python(obj, by_alias=by_alias, exclude_none=exclude_none)


def encode_document(document: Union["CouchDocument", Mapping[str, Any]]) -> dict[str, Any]:
    save_dict = getattr(document, "save_dict", None)
    if save_dict is not None:
        return save_dict()
    return jsonable_encoder(dict(document))


@overload
def decode_document(model: Type[TDocument], data: Any) -> TDocument: ...


@overload
def decode_document(model: None, data: Any) -> dict[str, Any]: ...


def decode_document(model: Optional[Type[TDocument]], data: Any) -> Union[TDocument, dict[str, Any]]:
    if not isinstance(data, dict):
        raise ProtocolMalformedError(f"expected a document object, got {type(data).__name__}")
    if model is None:
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ProtocolMalformedError(f"cannot decode {model.__name__}: {e}") from e
