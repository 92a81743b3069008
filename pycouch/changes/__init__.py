from .options import (
    ChangesFeedOptions,
    ChangesStyle,
    DesignDocumentFilter,
    DocumentIdsFilter,
    FeedMode,
    SelectorFilter,
    ViewFilter,
)
from .reader import ChangesFeedReader, FeedState
from .responses import ChangesFeedResponse, ChangesFeedResult

__all__ = [
    "ChangesFeedReader",
    "ChangesFeedOptions",
    "ChangesFeedResponse",
    "ChangesFeedResult",
    "ChangesStyle",
    "FeedMode",
    "FeedState",
    "DocumentIdsFilter",
    "SelectorFilter",
    "DesignDocumentFilter",
    "ViewFilter",
]
