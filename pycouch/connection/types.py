from dataclasses import dataclass, field
from typing import Any, Generic, Iterator, Optional, TypeVar, Union, overload

from pydantic import BaseModel, ConfigDict, Field

from pycouch.query.types import SequenceToken

T = TypeVar("T")


class ExecutionStats(BaseModel):
    total_keys_examined: int = 0
    total_docs_examined: int = 0
    total_quorum_docs_examined: int = 0
    results_returned: int = 0
    execution_time_ms: float = 0.0


@dataclass
class QueryResult(Generic[T]):
    """
    Documents returned by a ``_find`` request, in server order.

    ``warning`` carries the server's advice (e.g. no matching index was
    found); it is also logged.
    """

    docs: list[T] = field(default_factory=list)
    warning: Optional[str] = None
    bookmark: Optional[str] = None
    execution_stats: Optional[ExecutionStats] = None

    def __iter__(self) -> Iterator[T]:
        return iter(self.docs)

    def __len__(self) -> int:
        return len(self.docs)

    @overload
    def __getitem__(self, item: int) -> T: ...

    @overload
    def __getitem__(self, item: slice) -> list[T]: ...

    def __getitem__(self, item: Union[int, slice]) -> Union[T, list[T]]:
        return self.docs[item]


class DatabaseSizes(BaseModel):
    active: int = 0
    external: int = 0
    file: int = 0


class DatabaseInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    db_name: str
    doc_count: int = 0
    doc_del_count: int = 0
    update_seq: Optional[SequenceToken] = None
    purge_seq: Optional[SequenceToken] = None
    compact_running: bool = False
    sizes: DatabaseSizes = Field(default_factory=DatabaseSizes)
    instance_start_time: Optional[str] = None
    props: dict[str, Any] = Field(default_factory=dict)


class SecurityRole(BaseModel):
    names: list[str] = Field(default_factory=list)
    roles: list[str] = Field(default_factory=list)


class SecurityInfo(BaseModel):
    admins: SecurityRole = Field(default_factory=SecurityRole)
    members: SecurityRole = Field(default_factory=SecurityRole)


class IndexCreated(BaseModel):
    result: str
    id: str
    name: str

    @property
    def created(self) -> bool:
        return self.result == "created"


class IndexInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ddoc: Optional[str] = None
    name: str
    type: str
    definition: dict[str, Any] = Field(default_factory=dict, alias="def")
    partitioned: Optional[bool] = None
