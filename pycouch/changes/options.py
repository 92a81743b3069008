from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Union

from pycouch.query.expressions import LogicalExpression
from pycouch.query.translator import translate_selector
from pycouch.query.types import JsonType, SequenceToken


class FeedMode(str, Enum):
    NORMAL = "normal"
    LONGPOLL = "longpoll"
    CONTINUOUS = "continuous"


class ChangesStyle(str, Enum):
    MAIN_ONLY = "main_only"
    ALL_DOCS = "all_docs"


@dataclass
class ChangesFeedOptions:
    since: Optional[SequenceToken] = None
    limit: Optional[int] = None
    include_docs: Optional[bool] = None
    descending: Optional[bool] = None
    conflicts: Optional[bool] = None
    attachments: Optional[bool] = None
    att_encoding_info: Optional[bool] = None
    heartbeat: Optional[int] = None
    timeout: Optional[int] = None
    style: Optional[ChangesStyle] = None
    seq_interval: Optional[int] = None
    last_event_id: Optional[str] = None

    @property
    def _map(self) -> dict[str, Any]:
        return {
            "since": self.since,
            "limit": self.limit,
            "include_docs": self.include_docs,
            "descending": self.descending,
            "conflicts": self.conflicts,
            "attachments": self.attachments,
            "att_encoding_info": self.att_encoding_info,
            "heartbeat": self.heartbeat,
            "timeout": self.timeout,
            "style": self.style.value if self.style else None,
            "seq_interval": self.seq_interval,
            "last-event-id": self.last_event_id,
        }

    def to_params(self) -> dict[str, Any]:
        params = {}
        for name, value in self._map.items():
            if value is None:
                continue
            params[name] = value
        return params


class ChangesFeedFilter(ABC):
    """Restricts the documents a change feed reports on."""

    @abstractmethod
    def to_params(self) -> dict[str, Any]: ...

    def to_body(self) -> Optional[dict[str, JsonType]]:
        return None


@dataclass(frozen=True)
class DocumentIdsFilter(ChangesFeedFilter):
    ids: Sequence[str]

    def to_params(self) -> dict[str, Any]:
        return {"filter": "_doc_ids"}

    def to_body(self) -> dict[str, JsonType]:
        return {"doc_ids": list(self.ids)}


@dataclass(frozen=True)
class SelectorFilter(ChangesFeedFilter):
    selector: Union[LogicalExpression, Mapping[str, Any]]

    def to_params(self) -> dict[str, Any]:
        return {"filter": "_selector"}

    def to_body(self) -> dict[str, JsonType]:
        if isinstance(self.selector, LogicalExpression):
            return {"selector": translate_selector(self.selector)}
        return {"selector": dict(self.selector)}


@dataclass(frozen=True)
class DesignDocumentFilter(ChangesFeedFilter):
    """A filter function stored in a design document, named ``ddoc/filter``."""

    name: str
    query_params: Mapping[str, Any] = field(default_factory=dict)

    def to_params(self) -> dict[str, Any]:
        return {**self.query_params, "filter": self.name}


@dataclass(frozen=True)
class ViewFilter(ChangesFeedFilter):
    """Uses the map function of a view, named ``ddoc/view``."""

    view: str

    def to_params(self) -> dict[str, Any]:
        return {"filter": "_view", "view": self.view}
