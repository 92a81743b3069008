import sys
from typing import Any, Dict, List, Union

if sys.version_info >= (3, 10):
    from typing import TypeAlias
else:
    from typing_extensions import TypeAlias

JsonType: TypeAlias = Union[None, int, float, str, bool, List["JsonType"], Dict[str, "JsonType"]]
Selector: TypeAlias = Dict[str, Any]
SequenceToken: TypeAlias = Union[str, int]
