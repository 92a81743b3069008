from .changes import ChangesFeedOptions, ChangesFeedReader, FeedState
from .connection.client import make_client
from .connection.session import CouchSession
from .index import JsonIndex, TextIndex
from .orm import CouchAttachment, CouchDocument
from .query import ELEMENT, MangoQuery, nor

__version__ = "0.1.0"
__all__ = [
    "CouchSession",
    "CouchDocument",
    "CouchAttachment",
    "MangoQuery",
    "ChangesFeedOptions",
    "ChangesFeedReader",
    "FeedState",
    "ELEMENT",
    "nor",
    "make_client",
    "JsonIndex",
    "TextIndex",
]
