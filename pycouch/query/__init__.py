from .expressions import ELEMENT, FieldExpression, Operator, nor
from .options import QueryOptions
from .query import MangoQuery
from .translator import QueryDocument, translate, translate_selector
from .utils import SortDirection

__all__ = [
    "MangoQuery",
    "FieldExpression",
    "ELEMENT",
    "Operator",
    "QueryOptions",
    "QueryDocument",
    "SortDirection",
    "nor",
    "translate",
    "translate_selector",
]
