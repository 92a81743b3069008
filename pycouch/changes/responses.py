from typing import Any, Optional

from pydantic import BaseModel, Field

from pycouch.query.types import SequenceToken


class ChangesFeedRevision(BaseModel):
    rev: str


class ChangesFeedResult(BaseModel):
    """
    One change notification.

    ``seq`` is the resume point: persisting it and passing it as ``since`` to a
    new feed continues right after this record. ``doc`` holds the decoded
    document when the feed was opened with ``include_docs``; for deleted
    documents it is left as the raw tombstone.
    """

    seq: SequenceToken
    id: str
    changes: list[ChangesFeedRevision] = Field(default_factory=list)
    deleted: bool = False
    doc: Any = None

    @property
    def rev(self) -> Optional[str]:
        return self.changes[0].rev if self.changes else None


class ChangesFeedResponse(BaseModel):
    last_seq: SequenceToken
    pending: Optional[int] = None
    results: list[ChangesFeedResult] = Field(default_factory=list)
