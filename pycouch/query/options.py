from dataclasses import dataclass
from typing import Optional, Union

from pycouch.query.types import JsonType


@dataclass(frozen=True)
class QueryOptions:
    """Execution flags sent alongside the selector of a ``_find`` request."""

    use_index: Optional[Union[str, tuple[str, ...]]] = None
    conflicts: Optional[bool] = None
    execution_stats: Optional[bool] = None
    bookmark: Optional[str] = None
    r: Optional[int] = None
    update: Optional[bool] = None
    stable: Optional[bool] = None

    @property
    def _map(self) -> dict[str, JsonType]:
        use_index = list(self.use_index) if isinstance(self.use_index, tuple) else self.use_index
        return {
            "use_index": use_index,
            "conflicts": self.conflicts,
            "execution_stats": self.execution_stats,
            "bookmark": self.bookmark,
            "r": self.r,
            "update": self.update,
            "stable": self.stable,
        }

    def translate(self) -> dict[str, JsonType]:
        return {field: value for field, value in self._map.items() if value is not None}
